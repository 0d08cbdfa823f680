"""
Data models for the installer.

This package provides the Pydantic models used to parse the remote version
manifest, the immutable records that flow through an installation run
(artifact descriptors, install plans, download results) and the models of the
durable launch descriptor and profile record.
"""

from .manifest import (
    ARTIFACT_ROLE_LIBRARY,
    ARTIFACT_ROLE_LOADER,
    ArtifactReference,
    ChecksumModel,
    VersionEntry,
    VersionManifest,
    maven_file_name,
    maven_relative_path,
    parse_manifest,
)
from .descriptors import (
    ArtifactDescriptor,
    Checksum,
    ClasspathEntry,
    DownloadResult,
    InstallationTarget,
    InstallPlan,
    LaunchDescriptor,
    ProfileRecord,
    normalise_relative_path,
    read_launch_descriptor,
)

__all__ = [
    # Manifest
    "ARTIFACT_ROLE_LIBRARY",
    "ARTIFACT_ROLE_LOADER",
    "ArtifactReference",
    "ChecksumModel",
    "VersionEntry",
    "VersionManifest",
    "maven_file_name",
    "maven_relative_path",
    "parse_manifest",
    # Run records
    "ArtifactDescriptor",
    "Checksum",
    "ClasspathEntry",
    "DownloadResult",
    "InstallationTarget",
    "InstallPlan",
    "LaunchDescriptor",
    "ProfileRecord",
    "normalise_relative_path",
    "read_launch_descriptor",
]
