"""
This module contains the exceptions raised by the installation engine.

Every exception carries a ``retryable`` flag so that a presentation layer can
tell a state worth retrying apart from a terminal failure without inspecting
messages.
"""

from typing import Dict, List, Optional


class InstallerException(Exception):
    """
    Base class for every error raised by the installer.
    """

    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ConfigurationError(InstallerException):
    """Raised when the installer configuration is invalid."""


class ManifestUnavailable(InstallerException):
    """The manifest source could not be reached after the configured retries."""

    retryable = True

    def __init__(self, message: str, source: Optional[str] = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.source = source
        self.attempts = attempts


class ManifestMalformed(InstallerException):
    """The manifest does not match the expected schema."""


class NoCompatibleVersion(InstallerException):
    """No manifest entry satisfies the requested runtime/loader constraints."""

    def __init__(
        self,
        message: str,
        runtime_version: Optional[str] = None,
        requested_loader_version: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.runtime_version = runtime_version
        self.requested_loader_version = requested_loader_version


class DownloadFailed(InstallerException):
    """
    One or more artifacts could not be downloaded from any mirror.

    ``failures`` maps artifact ids to the last error observed for them.
    """

    retryable = True

    def __init__(self, message: str, failures: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.failures = dict(failures or {})


class IntegrityViolation(InstallerException):
    """
    A downloaded artifact did not match its declared checksum on any mirror
    it was allowed to try. Never downgraded to a warning.
    """

    def __init__(
        self,
        message: str,
        artifact_id: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        urls: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.artifact_id = artifact_id
        self.expected = expected
        self.actual = actual
        self.urls = list(urls or [])


class InstallationIncomplete(InstallerException):
    """
    Some files were committed into the installation target and others were not.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        committed: Optional[List[str]] = None,
        failed: Optional[List[str]] = None,
        skipped: Optional[List[str]] = None,
        rolled_back: bool = False,
    ) -> None:
        super().__init__(message)
        self.committed = list(committed or [])
        self.failed = list(failed or [])
        self.skipped = list(skipped or [])
        self.rolled_back = rolled_back


class BootstrapInconsistent(InstallerException):
    """
    The launch descriptor is missing or corrupt. Callers re-run resolution and
    installation instead of launching a broken classpath.
    """

    retryable = True

    def __init__(self, message: str, descriptor_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.descriptor_path = descriptor_path


class InstallCancelled(InstallerException):
    """Raised when a cancellation request has been observed."""
