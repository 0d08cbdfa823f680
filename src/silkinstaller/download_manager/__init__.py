"""
Concurrent, verified artifact downloads into a staging directory.
"""

from .downloader import (
    ArtifactState,
    ArtifactTracker,
    AttemptOutcome,
    AttemptReport,
    DownloadManager,
)

__all__ = [
    "ArtifactState",
    "ArtifactTracker",
    "AttemptOutcome",
    "AttemptReport",
    "DownloadManager",
]
