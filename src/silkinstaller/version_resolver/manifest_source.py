"""
Sources the version manifest is fetched from, and the per-run cache in front
of them.
"""

import json
import logging
import pathlib
import threading
from typing import Any, Dict, Optional, Protocol
from urllib.parse import unquote, urlparse

import requests

from silkinstaller.installer_exceptions import ManifestMalformed, ManifestUnavailable
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_utils import RetryPolicy
from silkinstaller.manifest_models import VersionManifest, parse_manifest
from silkinstaller.progress import CancellationToken


class ManifestSource(Protocol):
    """
    Anything that can produce a parsed :class:`VersionManifest`.
    """

    location: str

    def fetch(self) -> VersionManifest:
        ...


class ManifestCache(Protocol):
    """
    Cache collaborator consulted before a source is fetched.
    """

    def get(self, key: str) -> Optional[VersionManifest]:
        ...

    def put(self, key: str, manifest: VersionManifest) -> None:
        ...


class RunManifestCache:
    """
    Keeps fetched manifests for the lifetime of one resolver. Nothing is shared
    between processes or between runs.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, VersionManifest] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[VersionManifest]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, manifest: VersionManifest) -> None:
        with self._lock:
            self._entries[key] = manifest

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def _decode_document(raw: Any, location: str) -> VersionManifest:
    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ManifestMalformed(f"Manifest at {location} is not valid JSON: {e}") from e
    return parse_manifest(raw)


class HttpManifestSource:
    """
    Fetches the manifest over HTTP(S). Connection errors, timeouts and non-2xx
    responses are retried with exponential backoff; a body that is not a valid
    manifest fails immediately.
    """

    def __init__(
        self,
        url: str,
        logger: InstallerLogger,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        self.location = url
        self.logger = logger
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.cancellation = cancellation

    def fetch(self) -> VersionManifest:
        last_error = "no attempt made"
        for attempt in range(1, self.retry_policy.max_attempts + 1):
            if self.cancellation is not None:
                self.cancellation.raise_if_cancelled()
            try:
                self.logger.log(f"Fetching manifest from {self.location} (attempt {attempt})", logging.DEBUG)
                response = self.session.get(self.location, timeout=self.timeout)
                try:
                    if 200 <= response.status_code < 300:
                        body = response.text
                        return _decode_document(body, self.location)
                    last_error = f"HTTP {response.status_code}"
                finally:
                    response.close()
            except requests.exceptions.RequestException as e:
                last_error = f"{type(e).__name__}: {e}"

            self.logger.log(
                f"Manifest fetch from {self.location} failed on attempt {attempt}: {last_error}",
                logging.WARNING,
            )
            if attempt < self.retry_policy.max_attempts:
                self.retry_policy.wait(attempt)

        raise ManifestUnavailable(
            f"Manifest at {self.location} is unavailable after "
            f"{self.retry_policy.max_attempts} attempt(s): {last_error}",
            source=self.location,
            attempts=self.retry_policy.max_attempts,
        )


class LocalManifestSource:
    """
    Reads the manifest from a local JSON file, for offline installs.
    """

    def __init__(self, path: Any) -> None:
        self.path = pathlib.Path(path)
        self.location = str(self.path)

    def fetch(self) -> VersionManifest:
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ManifestUnavailable(
                f"Manifest file {self.path} cannot be read: {e}", source=self.location, attempts=1
            ) from e
        return _decode_document(content, self.location)


def create_manifest_source(
    location: str,
    logger: InstallerLogger,
    session: Optional[requests.Session] = None,
    timeout: float = 30.0,
    retry_policy: Optional[RetryPolicy] = None,
    cancellation: Optional[CancellationToken] = None,
) -> ManifestSource:
    """
    Pick a source for ``location``: ``http(s)://`` URLs are fetched over the
    network, ``file://`` URLs and plain paths are read from disk.
    """
    parsed = urlparse(location)
    if parsed.scheme in ("http", "https"):
        return HttpManifestSource(
            location,
            logger,
            session=session,
            timeout=timeout,
            retry_policy=retry_policy,
            cancellation=cancellation,
        )
    if parsed.scheme == "file":
        return LocalManifestSource(unquote(parsed.path))
    return LocalManifestSource(location)
