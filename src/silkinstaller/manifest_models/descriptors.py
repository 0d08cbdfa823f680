"""
Immutable records that flow through one installation run, and the pydantic
models of the two durable JSON files the run leaves behind.
"""

import pathlib
import posixpath
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from silkinstaller.installer_exceptions import BootstrapInconsistent
from silkinstaller.installer_settings import InstallerSettings


@dataclass(frozen=True)
class Checksum:
    """Checksum of an artifact: hashlib algorithm name plus lowercase hex digest."""

    algorithm: str
    digest: str

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.digest}"

    @classmethod
    def parse(cls, text: str) -> "Checksum":
        algorithm, _, digest = text.partition(":")
        if not algorithm or not digest:
            raise ValueError(f"Invalid checksum: {text!r}")
        return cls(algorithm.lower(), digest.lower())


@dataclass(frozen=True, eq=False)
class ArtifactDescriptor:
    """
    A single file to fetch. Equality and hashing use ``id`` and ``checksum`` only.
    """

    id: str
    urls: Tuple[str, ...]
    checksum: Checksum
    size: int
    path: str
    depends_on: Tuple[str, ...] = ()
    role: str = "library"

    def __post_init__(self) -> None:
        if not self.urls:
            raise ValueError(f"Artifact {self.id} has no source URLs")
        if self.size < 0:
            raise ValueError(f"Artifact {self.id} has a negative size")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArtifactDescriptor):
            return NotImplemented
        return self.id == other.id and self.checksum == other.checksum

    def __hash__(self) -> int:
        return hash((self.id, self.checksum))


def normalise_relative_path(path: str) -> str:
    """
    Normalise a manifest destination path to POSIX form and reject anything
    that is absolute or escapes the installation root.
    """
    if not path or not path.strip():
        raise ValueError("Destination path must not be empty")
    candidate = path.strip().replace("\\", "/")
    if candidate.startswith("/") or (len(candidate) > 1 and candidate[1] == ":"):
        raise ValueError(f"Destination path must be relative: {path}")
    normalised = posixpath.normpath(candidate)
    if normalised == "." or normalised == ".." or normalised.startswith("../"):
        raise ValueError(f"Destination path escapes the installation root: {path}")
    if normalised.split("/")[0] == InstallerSettings.state_dir_name:
        raise ValueError(f"Destination path points into the installer state directory: {path}")
    return normalised


@dataclass(frozen=True)
class InstallPlan:
    """
    Ordered artifacts for one run plus the chosen loader and runtime versions.

    Invariant: artifact ids and destination paths are unique within the plan.
    """

    loader_version: str
    runtime_version: str
    artifacts: Tuple[ArtifactDescriptor, ...]
    entry_point: Optional[str] = None
    jvm_args: Tuple[str, ...] = ()
    channel: str = "stable"

    def __post_init__(self) -> None:
        seen_ids = set()
        seen_paths = {}
        for artifact in self.artifacts:
            if artifact.id in seen_ids:
                raise ValueError(f"Duplicate artifact id in plan: {artifact.id}")
            seen_ids.add(artifact.id)
            key = normalise_relative_path(artifact.path).lower()
            if key in seen_paths:
                raise ValueError(
                    f"Artifacts {seen_paths[key]} and {artifact.id} share the destination {artifact.path}"
                )
            seen_paths[key] = artifact.id
        for artifact in self.artifacts:
            for dependency in artifact.depends_on:
                if dependency not in seen_ids:
                    raise ValueError(f"Artifact {artifact.id} depends on unknown artifact {dependency}")
        self.dependency_order()

    def dependency_order(self) -> Tuple[ArtifactDescriptor, ...]:
        """
        Return the artifacts with every dependency before its dependents. Among
        artifacts that are ready at the same time, plan order is kept.

        Raises:
            ValueError: If the ``depends_on`` edges contain a cycle.
        """
        placed: List[ArtifactDescriptor] = []
        placed_ids = set()
        remaining = list(self.artifacts)
        while remaining:
            for index, artifact in enumerate(remaining):
                if all(dependency in placed_ids for dependency in artifact.depends_on):
                    placed.append(artifact)
                    placed_ids.add(artifact.id)
                    del remaining[index]
                    break
            else:
                cycle = ", ".join(artifact.id for artifact in remaining)
                raise ValueError(f"Dependency cycle between artifacts: {cycle}")
        return tuple(placed)

    def get_artifact(self, artifact_id: str) -> Optional[ArtifactDescriptor]:
        for artifact in self.artifacts:
            if artifact.id == artifact_id:
                return artifact
        return None

    @property
    def total_bytes(self) -> int:
        return sum(artifact.size for artifact in self.artifacts)


@dataclass(frozen=True)
class InstallationTarget:
    """
    The external application's installation root and the profile name. Only the
    subpaths the installer writes are owned by it.
    """

    root: pathlib.Path
    profile: str = "default"

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", pathlib.Path(self.root))
        if not self.profile or any(c in self.profile for c in "/\\:") or self.profile in (".", ".."):
            raise ValueError(f"Invalid profile name: {self.profile!r}")

    def resolve(self, relative_path: str) -> pathlib.Path:
        return self.root.joinpath(*normalise_relative_path(relative_path).split("/"))

    @property
    def launch_descriptor_path(self) -> pathlib.Path:
        return InstallerSettings.get_launch_descriptor_path(self.root, self.profile)

    @property
    def profile_path(self) -> pathlib.Path:
        return InstallerSettings.get_profile_path(self.root, self.profile)


@dataclass
class DownloadResult:
    """
    Outcome of fetching one artifact. ``skipped`` results were already present
    and verified at their destination, so ``staged_path`` is None.
    """

    descriptor: ArtifactDescriptor
    staged_path: Optional[pathlib.Path]
    verified: bool
    attempts: int
    source_url: Optional[str] = None
    skipped: bool = False
    attempted_urls: List[str] = field(default_factory=list)


class ClasspathEntry(BaseModel):
    """One classpath entry of a launch descriptor, relative to the install root."""

    id: str
    path: str
    checksum: str
    size: int

    model_config = ConfigDict(populate_by_name=True)


class LaunchDescriptor(BaseModel):
    """
    Committed record of the classpath and entry point. Written last; its
    presence signals a complete installation.
    """

    format_version: int = Field(1, alias="formatVersion")
    profile: str
    loader_version: str = Field(..., alias="loaderVersion")
    runtime_version: str = Field(..., alias="runtimeVersion")
    entry_point: str = Field(..., alias="entryPoint")
    classpath: List[ClasspathEntry]
    jvm_args: List[str] = Field(default_factory=list, alias="jvmArgs")
    created_at: str = Field(..., alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

    def classpath_paths(self) -> List[str]:
        return [entry.path for entry in self.classpath]


class ProfileRecord(BaseModel):
    """Record of the installed loader version for a profile."""

    profile: str
    loader_version: str = Field(..., alias="loaderVersion")
    runtime_version: str = Field(..., alias="runtimeVersion")
    channel: str = "stable"
    installed_at: str = Field(..., alias="installedAt")
    launch_command: str = Field(..., alias="launchCommand")

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


def read_launch_descriptor(path: pathlib.Path) -> Optional[LaunchDescriptor]:
    """
    Load a committed launch descriptor.

    Returns:
        The descriptor, or None if no descriptor has been committed at ``path``

    Raises:
        BootstrapInconsistent: If the file exists but cannot be read or parsed
    """
    path = pathlib.Path(path)
    if not path.exists():
        return None
    try:
        return LaunchDescriptor.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        raise BootstrapInconsistent(f"Launch descriptor {path} is corrupt: {e}", descriptor_path=str(path)) from e
