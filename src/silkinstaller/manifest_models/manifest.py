"""
Pydantic data models for the remote loader version manifest.

The manifest format is selected by an explicit ``schemaVersion`` field:

Schema 1 (no ``schemaVersion``), a flat mapping of loader version to entry::

    {
      "_description": "...",
      "2.3.0": {
        "channel": "stable",
        "runtime": "[1.0,1.5)",
        "mainClass": "de.rhm176.loader.Main",
        "artifacts": [
          {"id": "silk-loader", "urls": ["https://..."], "checksum": "sha256:...",
           "size": 1234, "path": "silk-loader.jar", "role": "loader",
           "dependsOn": ["fabric-loader"]}
        ]
      }
    }

Schema 2 adds a manifest-level mirror list and lets artifacts use Maven
coordinates instead of URLs::

    {
      "schemaVersion": 2,
      "mirrors": ["https://maven.fabricmc.net/", "https://maven2.fabricmc.net/"],
      "versions": {
        "2.3.0": {"runtime": "[1.0,1.5)", "artifacts": [
          {"id": "fabric-loader", "maven": "net.fabricmc:fabric-loader:0.15.7",
           "checksum": {"algorithm": "sha1", "digest": "..."}, "size": 1234}
        ]}
      }
    }
"""

import hashlib
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError, field_validator

from silkinstaller.installer_exceptions import ManifestMalformed
from silkinstaller.installer_settings import InstallerSettings
from silkinstaller.installer_utils import SUPPORTED_HASH_ALGORITHMS
from silkinstaller.versioning import ReleaseChannel

ARTIFACT_ROLE_LOADER = "loader"
ARTIFACT_ROLE_LIBRARY = "library"


class ChecksumModel(BaseModel):
    """
    Checksum as declared in the manifest. Accepts ``"sha256:<hex>"`` or
    ``{"algorithm": "sha256", "digest": "<hex>"}``.
    """

    algorithm: StrictStr
    digest: StrictStr

    @field_validator("algorithm")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm: {value}")
        return value

    @field_validator("digest")
    @classmethod
    def _check_digest(cls, value: str, info) -> str:
        value = value.strip().lower()
        algorithm = info.data.get("algorithm")
        if algorithm:
            expected_length = hashlib.new(algorithm).digest_size * 2
            if len(value) != expected_length or any(c not in "0123456789abcdef" for c in value):
                raise ValueError(f"Digest is not a valid {algorithm} hex string")
        return value

    @classmethod
    def from_raw(cls, raw: Any) -> "ChecksumModel":
        if isinstance(raw, str):
            if ":" in raw:
                algorithm, digest = raw.split(":", 1)
            elif "=" in raw:
                algorithm, digest = raw.split("=", 1)
            else:
                raise ValueError("Checksum string must look like '<algorithm>:<digest>'")
            return cls(algorithm=algorithm, digest=digest)
        if isinstance(raw, dict):
            return cls(**raw)
        if isinstance(raw, ChecksumModel):
            return raw
        raise ValueError("Checksum must be a string or an object")


class ArtifactReference(BaseModel):
    """
    A single artifact required by a loader version.
    """

    id: StrictStr = Field(..., min_length=1, description="Artifact id, unique within a version")
    urls: List[StrictStr] = Field(default_factory=list, description="Mirror URLs, tried in order")
    url: Optional[StrictStr] = Field(None, description="Single URL shorthand")
    maven: Optional[StrictStr] = Field(None, description="Maven coordinates (schema 2)")
    repository: Optional[StrictStr] = Field(None, description="Preferred Maven repository (schema 2)")
    checksum: ChecksumModel
    size: StrictInt = Field(..., ge=0, description="Expected size in bytes")
    path: Optional[StrictStr] = Field(None, description="Destination relative to the install root")
    depends_on: List[StrictStr] = Field(default_factory=list, alias="dependsOn")
    role: StrictStr = Field(ARTIFACT_ROLE_LIBRARY)
    description: Optional[str] = Field(None, alias="_description")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("checksum", mode="before")
    @classmethod
    def _parse_checksum(cls, value: Any) -> ChecksumModel:
        return ChecksumModel.from_raw(value)

    def all_urls(self) -> List[str]:
        """Return the explicit URLs in declared order, without duplicates."""
        urls = list(self.urls)
        if self.url and self.url not in urls:
            urls.insert(0, self.url)
        return urls


class VersionEntry(BaseModel):
    """
    Metadata of one loader version.
    """

    channel: StrictStr = Field(ReleaseChannel.STABLE.value)
    runtime: Union[StrictStr, Dict[str, Any]] = Field(..., description="Compatible runtime range")
    artifacts: List[ArtifactReference] = Field(..., min_length=1)
    main_class: Optional[StrictStr] = Field(None, alias="mainClass")
    jvm_args: List[StrictStr] = Field(default_factory=list, alias="jvmArgs")
    description: Optional[str] = Field(None, alias="_description")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("channel")
    @classmethod
    def _check_channel(cls, value: str) -> str:
        return ReleaseChannel.parse(value).value

    @property
    def release_channel(self) -> ReleaseChannel:
        return ReleaseChannel(self.channel)


class VersionManifest(BaseModel):
    """
    Complete version manifest, normalised across schema versions.
    """

    schema_version: int = Field(1, alias="schemaVersion")
    mirrors: List[StrictStr] = Field(default_factory=list)
    versions: Dict[str, VersionEntry] = Field(default_factory=dict)
    description: Optional[str] = Field(None, alias="_description")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def artifact_urls(self, artifact: ArtifactReference) -> List[str]:
        """
        Resolve the URLs of ``artifact``: explicit URLs first, then Maven
        coordinates expanded against its repository and the manifest mirrors.
        """
        urls = artifact.all_urls()
        if artifact.maven:
            bases = []
            if artifact.repository:
                bases.append(artifact.repository)
            bases.extend(m for m in self.mirrors if m not in bases)
            relative = maven_relative_path(artifact.maven)
            for base in bases:
                candidate = base + ("" if base.endswith("/") else "/") + relative
                if candidate not in urls:
                    urls.append(candidate)
        return urls

    def artifact_destination(self, artifact: ArtifactReference) -> str:
        if artifact.path:
            return artifact.path
        if artifact.maven:
            return f"{InstallerSettings.library_dir_name}/{maven_file_name(artifact.maven)}"
        raise ManifestMalformed(f"Artifact {artifact.id} declares neither a path nor Maven coordinates")


def _split_maven(coordinates: str) -> List[str]:
    parts = coordinates.split(":")
    if len(parts) < 3 or len(parts) > 4 or not all(parts):
        raise ValueError(
            f"Invalid Maven coordinates: {coordinates}. Expected format: group:artifact:version[:classifier]"
        )
    return parts


def maven_file_name(coordinates: str) -> str:
    """
    ``net.fabricmc:fabric-loader:0.15.7`` -> ``fabric-loader-0.15.7.jar``
    """
    parts = _split_maven(coordinates)
    classifier = f"-{parts[3]}" if len(parts) == 4 else ""
    return f"{parts[1]}-{parts[2]}{classifier}.jar"


def maven_relative_path(coordinates: str) -> str:
    """
    ``net.fabricmc:fabric-loader:0.15.7`` ->
    ``net/fabricmc/fabric-loader/0.15.7/fabric-loader-0.15.7.jar``
    """
    parts = _split_maven(coordinates)
    group_path = parts[0].replace(".", "/")
    return f"{group_path}/{parts[1]}/{parts[2]}/{maven_file_name(coordinates)}"


def _parse_flat_manifest(data: Dict[str, Any]) -> VersionManifest:
    description = data.get("_description")
    versions = {key: value for key, value in data.items() if key not in ("_description", "schemaVersion")}
    for key, value in versions.items():
        if not isinstance(value, dict):
            raise ManifestMalformed(f"Manifest entry for version {key} must be an object")
        for artifact in value.get("artifacts") or []:
            if isinstance(artifact, dict) and artifact.get("maven"):
                raise ManifestMalformed(
                    f"Artifact {artifact.get('id')} of version {key} uses Maven coordinates, "
                    "which require schemaVersion 2"
                )
    return VersionManifest(schemaVersion=1, versions=versions, _description=description)


def _parse_mirrored_manifest(data: Dict[str, Any]) -> VersionManifest:
    if "versions" not in data:
        raise ManifestMalformed("Manifest with schemaVersion 2 must contain a 'versions' object")
    if not isinstance(data["versions"], dict):
        raise ManifestMalformed("'versions' must be an object")
    return VersionManifest(**data)


_SCHEMA_PARSERS: Dict[int, Callable[[Dict[str, Any]], VersionManifest]] = {
    1: _parse_flat_manifest,
    2: _parse_mirrored_manifest,
}


def parse_manifest(data: Any) -> VersionManifest:
    """
    Parse raw manifest JSON into a :class:`VersionManifest`.

    Raises:
        ManifestMalformed: If the document does not match the schema its
            ``schemaVersion`` selects.
    """
    if not isinstance(data, dict):
        raise ManifestMalformed(f"Manifest must be a JSON object, got {type(data).__name__}")

    schema_version = data.get("schemaVersion", 1)
    if isinstance(schema_version, bool) or not isinstance(schema_version, int):
        raise ManifestMalformed(f"schemaVersion must be an integer, got {schema_version!r}")
    parser = _SCHEMA_PARSERS.get(schema_version)
    if parser is None:
        raise ManifestMalformed(f"Unsupported manifest schemaVersion {schema_version}")

    try:
        manifest = parser(data)
    except ValidationError as e:
        raise ManifestMalformed(f"Manifest does not match schema {schema_version}: {e}") from e
    except ValueError as e:
        raise ManifestMalformed(f"Manifest does not match schema {schema_version}: {e}") from e

    if not manifest.versions:
        raise ManifestMalformed("Manifest does not declare any versions")
    return manifest
