"""
This file contains various utility functions like hashing files, atomic file
writes, retry timing and platform checks.
"""

import hashlib
import logging
import os
import pathlib
import platform
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from silkinstaller.installer_logger import InstallerLogger

PathLike = Union[str, os.PathLike]

SUPPORTED_HASH_ALGORITHMS = ("md5", "sha1", "sha256", "sha384", "sha512")
CHUNK_SIZE = 64 * 1024


class FileUtils:
    """
    Utility functions for files and directories
    """

    @staticmethod
    def compute_digest(path: PathLike, algorithm: str = "sha256") -> str:
        """
        Hash the file at ``path`` in chunks and return the hex digest.
        """
        digest = hashlib.new(algorithm.lower())
        with open(path, "rb") as source:
            for chunk in iter(lambda: source.read(CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest()

    @staticmethod
    def file_matches(path: PathLike, size: Optional[int], algorithm: str, digest: str) -> bool:
        """
        Return True if the file exists with the expected size and digest.
        """
        path = pathlib.Path(path)
        if not path.is_file():
            return False
        if size is not None and path.stat().st_size != size:
            return False
        return FileUtils.compute_digest(path, algorithm) == digest.lower()

    @staticmethod
    def fsync_directory(directory: PathLike) -> None:
        """
        Flush directory metadata so a completed rename survives a crash.
        Not supported on Windows, where it is skipped.
        """
        if os.name == "nt":
            return
        fd = os.open(str(directory), os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    @staticmethod
    def atomic_write_text(path: PathLike, content: str, encoding: str = "utf-8") -> None:
        """
        Write ``content`` to a temporary sibling of ``path`` and rename it into place.
        """
        path = pathlib.Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding=encoding) as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            FileUtils.safe_unlink(tmp_name)
            raise
        FileUtils.fsync_directory(path.parent)

    @staticmethod
    def safe_unlink(path: PathLike) -> bool:
        """
        Remove a file if it exists. Returns True if something was removed.
        """
        try:
            os.unlink(path)
            return True
        except FileNotFoundError:
            return False

    @staticmethod
    def remove_tree(path: PathLike, logger: Optional[InstallerLogger] = None) -> None:
        """
        Recursively delete ``path``; a file is deleted as a file.
        """
        path = pathlib.Path(path)
        if path.is_dir() and not path.is_symlink():
            if logger:
                logger.log(f"Deleting directory: {path}", logging.DEBUG)
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            if logger:
                logger.log(f"Path exists but is not a directory, deleting as file: {path}", logging.DEBUG)
            path.unlink()

    @staticmethod
    def is_within_directory(directory: PathLike, target: PathLike) -> bool:
        """
        Check that ``target`` resolves to a location inside ``directory``.
        """
        directory = os.path.abspath(directory)
        target = os.path.abspath(target)
        return os.path.commonpath([directory, target]) == directory

    @staticmethod
    def prune_empty_directories(start: PathLike, stop_at: PathLike) -> None:
        """
        Remove ``start`` and its parents while they are empty, never going above ``stop_at``.
        """
        current = pathlib.Path(start)
        stop_at = pathlib.Path(stop_at)
        while current != stop_at and FileUtils.is_within_directory(stop_at, current):
            try:
                current.rmdir()
            except OSError:
                return
            current = current.parent


@dataclass
class RetryPolicy:
    """
    Exponential backoff timing for a bounded number of attempts.

    ``delay_for(1)`` is the wait after the first failed attempt.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    factor: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def delay_for(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        return min(self.max_delay, self.base_delay * (self.factor ** (attempt - 1)))

    def wait(self, attempt: int) -> None:
        delay = self.delay_for(attempt)
        if delay > 0:
            self.sleep(delay)


class OsFamily(str, Enum):
    """
    Operating system families the installer distinguishes.
    """

    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    OTHER = "other"


class PlatformUtils:
    """
    Utilities for platform detection
    """

    @staticmethod
    def get_os_family() -> OsFamily:
        system = platform.system().lower()
        if system.startswith("win"):
            return OsFamily.WINDOWS
        if system == "darwin":
            return OsFamily.MACOS
        if system in ("linux", "freebsd", "aix") or "nix" in system or "nux" in system:
            return OsFamily.LINUX
        return OsFamily.OTHER

    @staticmethod
    def classpath_separator(os_family: Optional[OsFamily] = None) -> str:
        if os_family is None:
            return os.pathsep
        return ";" if os_family == OsFamily.WINDOWS else ":"


def unique_ordered(items: Iterable[str]) -> list:
    """Deduplicate while keeping first occurrences in order."""
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
