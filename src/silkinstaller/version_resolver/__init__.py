"""
Version resolution against the remote manifest.
"""

from .manifest_source import (
    HttpManifestSource,
    LocalManifestSource,
    ManifestCache,
    ManifestSource,
    RunManifestCache,
    create_manifest_source,
)
from .resolver import VersionCandidate, VersionResolver

__all__ = [
    "HttpManifestSource",
    "LocalManifestSource",
    "ManifestCache",
    "ManifestSource",
    "RunManifestCache",
    "create_manifest_source",
    "VersionCandidate",
    "VersionResolver",
]
