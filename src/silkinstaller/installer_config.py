"""
Configuration parameters for an installation run.

Configuration can come from a dictionary (camelCase or snake_case keys), from
the ``[installer]`` table of a ``silk.toml`` file, and from ``SILK_*``
environment variables, in increasing order of precedence.
"""

import dataclasses
import os
import pathlib
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

try:
    import tomllib
except ModuleNotFoundError:
    # Python < 3.11
    import tomli as tomllib

from silkinstaller.installer_exceptions import ConfigurationError
from silkinstaller.installer_settings import DEFAULT_MANIFEST_URL, DEFAULT_PROFILE_NAME, ENV_PREFIX
from silkinstaller.versioning import ReleaseChannel, get_comparator

LATEST_ALIASES = ("", "latest", "latest-stable", "latest_stable")

CONFIG_EXAMPLE = """
# Installer configuration for silkinstaller

[installer]
# Version of the target application (runtime) the loader must support
targetRuntimeVersion = "1.2.0"

# Installation root of the target application
installRoot = "/path/to/Equilinox"

# Loader version to install (optional, defaults to the latest stable version)
# requestedLoaderVersion = "2.3.0"

# Optional tuning
# manifestUrl = "https://meta.silkloader.dev/v1/loader/manifest.json"
# releaseChannel = "stable"
# maxConcurrentDownloads = 4
# maxRetryAttempts = 3
"""


@dataclass
class InstallerConfig:
    """
    Configuration structure handed to the installation engine.
    """

    target_runtime_version: str
    install_root: str
    requested_loader_version: Optional[str] = None
    max_concurrent_downloads: int = 4
    max_retry_attempts: int = 3
    manifest_url: str = DEFAULT_MANIFEST_URL
    profile_name: str = DEFAULT_PROFILE_NAME
    release_channel: str = ReleaseChannel.STABLE.value
    attempt_timeout: float = 30.0
    plan_timeout: Optional[float] = None
    backoff_base_delay: float = 0.5
    backoff_max_delay: float = 8.0
    staging_root: Optional[str] = None
    version_scheme: str = "semver"
    progress_interval: float = 0.25
    rollback_on_failure: bool = False

    @classmethod
    def from_dict(cls, config_dict: Mapping[str, Any]) -> "InstallerConfig":
        """
        Create an InstallerConfig from a dictionary.

        Args:
            config_dict: Options keyed by camelCase (``targetRuntimeVersion``) or
                snake_case (``target_runtime_version``) names

        Returns:
            InstallerConfig instance

        Raises:
            ConfigurationError: If an option is unknown, has the wrong type, or
                a required option is missing
        """
        values: Dict[str, Any] = {}
        for key, value in config_dict.items():
            name = _normalise_key(key)
            if name not in _FIELD_TYPES:
                raise ConfigurationError(f"Unknown configuration option: {key}")
            values[name] = _coerce(name, value)

        if values.get("requested_loader_version") is not None:
            if str(values["requested_loader_version"]).strip().lower() in LATEST_ALIASES:
                values["requested_loader_version"] = None

        missing = [name for name in ("target_runtime_version", "install_root") if not values.get(name)]
        if missing:
            raise ConfigurationError(
                "Missing required configuration option(s): " + ", ".join(_camel(name) for name in missing)
            )
        return cls(**values)

    @classmethod
    def from_toml(cls, path: os.PathLike, overrides: Optional[Mapping[str, Any]] = None) -> "InstallerConfig":
        """
        Load the ``[installer]`` table of a TOML file. Relative ``installRoot`` and
        ``stagingRoot`` values are resolved against the file's directory.
        """
        path = pathlib.Path(path)
        try:
            with open(path, "rb") as f:
                toml_dict = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(f"Failed to load configuration from {path}: {e}") from e

        section = toml_dict.get("installer")
        if not isinstance(section, dict):
            raise ConfigurationError(f"{path} has no [installer] table")

        merged = dict(section)
        for key in ("installRoot", "install_root", "stagingRoot", "staging_root"):
            if isinstance(merged.get(key), str) and not os.path.isabs(merged[key]):
                merged[key] = str((path.parent / merged[key]).resolve())
        if overrides:
            merged.update(overrides)
        return cls.from_dict(merged)

    @classmethod
    def env_overrides(cls, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """
        Collect ``SILK_<OPTION>`` variables, e.g. ``SILK_MAX_RETRY_ATTEMPTS=5``.
        """
        environ = os.environ if environ is None else environ
        overrides = {}
        for name in _FIELD_TYPES:
            env_name = ENV_PREFIX + name.upper()
            if env_name in environ:
                overrides[name] = environ[env_name]
        return overrides

    def with_overrides(self, **changes: Any) -> "InstallerConfig":
        values = self.to_dict()
        values.update(changes)
        return InstallerConfig.from_dict(values)

    def validate(self) -> Tuple[bool, Optional[str]]:
        """
        Validate the configuration.

        Returns:
            Tuple of (is_valid, error_message)
        """
        for name in _FIELD_TYPES:
            if getattr(self, name) is None and name not in _OPTIONAL_FIELDS:
                return False, f"{_camel(name)} must be set"
        if not self.target_runtime_version.strip():
            return False, "targetRuntimeVersion must not be empty"
        if not self.install_root.strip():
            return False, "installRoot must not be empty"
        if self.max_concurrent_downloads < 1:
            return False, "maxConcurrentDownloads must be at least 1"
        if self.max_retry_attempts < 1:
            return False, "maxRetryAttempts must be at least 1"
        if self.attempt_timeout <= 0:
            return False, "attemptTimeout must be positive"
        if self.plan_timeout is not None and self.plan_timeout <= 0:
            return False, "planTimeout must be positive"
        if self.backoff_base_delay < 0 or self.backoff_max_delay < 0:
            return False, "backoff delays must not be negative"
        if self.progress_interval < 0:
            return False, "progressInterval must not be negative"
        try:
            ReleaseChannel.parse(self.release_channel)
        except ValueError as e:
            return False, str(e)
        try:
            comparator = get_comparator(self.version_scheme)
            comparator.key(self.target_runtime_version)
        except ValueError as e:
            return False, f"Invalid targetRuntimeVersion for scheme {self.version_scheme}: {e}"
        if any(c in self.profile_name for c in "/\\:") or not self.profile_name.strip():
            return False, f"Invalid profileName: {self.profile_name!r}"
        return True, None

    def ensure_valid(self) -> "InstallerConfig":
        is_valid, error_msg = self.validate()
        if not is_valid:
            raise ConfigurationError(error_msg)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_camel_dict(self) -> Dict[str, Any]:
        return {_camel(name): value for name, value in asdict(self).items()}


_FIELD_TYPES: Dict[str, Any] = {f.name: f.type for f in dataclasses.fields(InstallerConfig)}

_INT_FIELDS = ("max_concurrent_downloads", "max_retry_attempts")
_FLOAT_FIELDS = ("attempt_timeout", "plan_timeout", "backoff_base_delay", "backoff_max_delay", "progress_interval")
_BOOL_FIELDS = ("rollback_on_failure",)
_OPTIONAL_FIELDS = tuple(f.name for f in dataclasses.fields(InstallerConfig) if f.default is None)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


_CAMEL_TO_SNAKE = {_camel(name): name for name in _FIELD_TYPES}


def _normalise_key(key: str) -> str:
    if key in _FIELD_TYPES:
        return key
    return _CAMEL_TO_SNAKE.get(key, key)


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        if name in _OPTIONAL_FIELDS:
            return None
        raise ConfigurationError(f"Invalid value for {_camel(name)}: a value is required")
    try:
        if name in _BOOL_FIELDS:
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes", "on", "0", "false", "no", "off"):
                return value.strip().lower() in ("1", "true", "yes", "on")
            raise ValueError(f"expected a boolean, got {value!r}")
        if name in _INT_FIELDS:
            if isinstance(value, bool) or isinstance(value, float):
                raise ValueError(f"expected an integer, got {value!r}")
            return int(value)
        if name in _FLOAT_FIELDS:
            if isinstance(value, bool):
                raise ValueError(f"expected a number, got {value!r}")
            return float(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {_camel(name)}: {e}") from e
    if isinstance(value, os.PathLike):
        return os.fspath(value)
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid value for {_camel(name)}: expected a string, got {value!r}")
    return value
