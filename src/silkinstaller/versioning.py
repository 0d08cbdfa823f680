"""
Version comparison and compatibility ranges.

Comparison is pluggable through :class:`VersionComparator`. The default
:class:`SemanticVersionComparator` implements SemVer 2.0.0 precedence; the
:class:`Pep440VersionComparator` delegates to ``packaging``.

Range syntax:

* ``[1.0,1.5)`` interval notation, ``[``/``]`` inclusive, ``(``/``)`` exclusive,
  an empty side is unbounded (``[1.0,)``)
* ``1.2`` a bare version is an exact match
* ``{"min": "1.0", "max": "1.5"}`` inclusive min, exclusive max unless
  ``minInclusive``/``maxInclusive`` say otherwise
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple, Union

from packaging.version import InvalidVersion, Version

_SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)"
    r"(?:\.(?P<minor>0|[1-9]\d*))?"
    r"(?:\.(?P<patch>0|[1-9]\d*))?"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


class ReleaseChannel(str, Enum):
    """Release channels, most stable first."""

    STABLE = "stable"
    BETA = "beta"
    NIGHTLY = "nightly"

    @property
    def rank(self) -> int:
        return _CHANNEL_ORDER.index(self)

    @classmethod
    def parse(cls, value: Union[str, "ReleaseChannel", None]) -> "ReleaseChannel":
        if isinstance(value, ReleaseChannel):
            return value
        if value is None:
            return cls.STABLE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown release channel: {value}")


_CHANNEL_ORDER = (ReleaseChannel.STABLE, ReleaseChannel.BETA, ReleaseChannel.NIGHTLY)


@dataclass(frozen=True)
class SemanticVersion:
    """
    A parsed semantic version. Missing minor/patch components read as 0 and a
    leading ``v`` is ignored. Build metadata does not take part in precedence.
    """

    major: int
    minor: int
    patch: int
    prerelease: Tuple[str, ...] = ()
    build: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "SemanticVersion":
        if not isinstance(text, str):
            raise ValueError(f"Version must be a string, got {type(text).__name__}")
        candidate = text.strip()
        if candidate[:1] in ("v", "V"):
            candidate = candidate[1:]
        match = _SEMVER_PATTERN.match(candidate)
        if match is None:
            raise ValueError(f"Invalid semantic version: {text!r}")
        prerelease = tuple(match.group("pre").split(".")) if match.group("pre") else ()
        for identifier in prerelease:
            if identifier.isdigit() and len(identifier) > 1 and identifier.startswith("0"):
                raise ValueError(f"Numeric pre-release identifiers must not have leading zeros: {text!r}")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor") or 0),
            patch=int(match.group("patch") or 0),
            prerelease=prerelease,
            build=tuple(match.group("build").split(".")) if match.group("build") else (),
        )

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def precedence_key(self) -> tuple:
        if not self.prerelease:
            pre_key: tuple = (1,)
        else:
            pre_key = (
                0,
                tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in self.prerelease),
            )
        return (self.major, self.minor, self.patch, pre_key)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + ".".join(self.build)
        return text


class VersionComparator(Protocol):
    """
    Protocol for version schemes. ``key`` raises ``ValueError`` for versions
    the scheme cannot parse.
    """

    name: str

    def key(self, version: str) -> Any:
        ...

    def compare(self, left: str, right: str) -> int:
        ...


class SemanticVersionComparator:
    """SemVer 2.0.0 precedence."""

    name = "semver"

    def key(self, version: str) -> Any:
        return SemanticVersion.parse(version).precedence_key()

    def compare(self, left: str, right: str) -> int:
        left_key, right_key = self.key(left), self.key(right)
        if left_key == right_key:
            return 0
        return 1 if left_key > right_key else -1


class Pep440VersionComparator:
    """PEP 440 ordering through ``packaging.version``."""

    name = "pep440"

    def key(self, version: str) -> Any:
        try:
            return Version(version)
        except InvalidVersion as e:
            raise ValueError(f"Invalid PEP 440 version: {version!r}") from e

    def compare(self, left: str, right: str) -> int:
        left_key, right_key = self.key(left), self.key(right)
        if left_key == right_key:
            return 0
        return 1 if left_key > right_key else -1


def get_comparator(scheme: str) -> VersionComparator:
    """
    Return the comparator registered under ``scheme`` (``semver`` or ``pep440``).
    """
    lowered = (scheme or "semver").strip().lower()
    if lowered in ("semver", "semantic"):
        return SemanticVersionComparator()
    if lowered in ("pep440", "python"):
        return Pep440VersionComparator()
    raise ValueError(f"Unknown version scheme: {scheme}")


@dataclass(frozen=True)
class VersionRange:
    """
    A compatibility range over counterpart versions. ``None`` bounds are open.
    """

    lower: Optional[str] = None
    upper: Optional[str] = None
    lower_inclusive: bool = True
    upper_inclusive: bool = False

    def contains(self, version: str, comparator: VersionComparator) -> bool:
        if self.lower is not None:
            cmp = comparator.compare(version, self.lower)
            if cmp < 0 or (cmp == 0 and not self.lower_inclusive):
                return False
        if self.upper is not None:
            cmp = comparator.compare(version, self.upper)
            if cmp > 0 or (cmp == 0 and not self.upper_inclusive):
                return False
        return True

    def __str__(self) -> str:
        if self.lower is not None and self.lower == self.upper and self.lower_inclusive and self.upper_inclusive:
            return self.lower
        return (
            ("[" if self.lower_inclusive else "(")
            + (self.lower or "")
            + ","
            + (self.upper or "")
            + ("]" if self.upper_inclusive else ")")
        )


def parse_range(spec: Union[str, Dict[str, Any]], comparator: VersionComparator) -> VersionRange:
    """
    Parse a range in string or object form and check its bounds with ``comparator``.

    Raises:
        ValueError: If the range is syntactically invalid, a bound is not a
            valid version, or the lower bound lies above the upper bound.
    """
    if isinstance(spec, dict):
        version_range = VersionRange(
            lower=_optional_bound(spec.get("min")),
            upper=_optional_bound(spec.get("max")),
            lower_inclusive=bool(spec.get("minInclusive", True)),
            upper_inclusive=bool(spec.get("maxInclusive", False)),
        )
    elif isinstance(spec, str):
        version_range = _parse_range_text(spec)
    else:
        raise ValueError(f"Range must be a string or an object, got {type(spec).__name__}")

    for bound in (version_range.lower, version_range.upper):
        if bound is not None:
            comparator.key(bound)

    if version_range.lower is not None and version_range.upper is not None:
        cmp = comparator.compare(version_range.lower, version_range.upper)
        if cmp > 0:
            raise ValueError(f"Empty range {spec!r}: lower bound is above upper bound")
        if cmp == 0 and not (version_range.lower_inclusive and version_range.upper_inclusive):
            raise ValueError(f"Empty range {spec!r}")
    return version_range


def _parse_range_text(text: str) -> VersionRange:
    stripped = text.strip()
    if not stripped:
        raise ValueError("Range must not be empty")

    if stripped[0] in "[(" and stripped[-1] in "])":
        inner = stripped[1:-1]
        parts = inner.split(",")
        if len(parts) != 2:
            raise ValueError(f"Range {text!r} must contain exactly one comma")
        return VersionRange(
            lower=_optional_bound(parts[0]),
            upper=_optional_bound(parts[1]),
            lower_inclusive=stripped[0] == "[",
            upper_inclusive=stripped[-1] == "]",
        )

    if any(char in stripped for char in "[](),"):
        raise ValueError(f"Malformed range: {text!r}")
    return VersionRange(lower=stripped, upper=stripped, lower_inclusive=True, upper_inclusive=True)


def _optional_bound(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Range bound must be a string, got {type(value).__name__}")
    value = value.strip()
    return value or None
