"""
Shared helpers for the installer tests: an in-memory HTTP session and
manifest builders.
"""

import hashlib
import threading
from typing import Any, Callable, Dict, List, Optional, Union

import requests


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


class FakeResponse:
    """
    Minimal stand-in for ``requests.Response`` as used by the installer.

    ``fail_after`` raises a ConnectionError once that many bytes were streamed.
    """

    def __init__(
        self,
        status_code: int = 200,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        chunk_size: int = 4,
        fail_after: Optional[int] = None,
        on_chunk: Optional[Callable[[int], None]] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.chunk_size = chunk_size
        self.fail_after = fail_after
        self.on_chunk = on_chunk
        self.closed = False

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def iter_content(self, chunk_size: int = 1):
        sent = 0
        for start in range(0, len(self.body), self.chunk_size):
            if self.fail_after is not None and sent >= self.fail_after:
                raise requests.exceptions.ConnectionError("connection reset")
            chunk = self.body[start : start + self.chunk_size]
            sent += len(chunk)
            if self.on_chunk is not None:
                self.on_chunk(sent)
            yield chunk

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


Handler = Union[FakeResponse, BaseException, Callable[[Dict[str, str]], Any]]


class FakeSession:
    """
    Routes GET requests to queued responses per URL. The last queued handler
    of a URL is reused once the queue is drained. Unknown URLs raise
    ConnectionError.
    """

    def __init__(self):
        self.routes: Dict[str, List[Handler]] = {}
        self.requests: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def add(self, url: str, *handlers: Handler) -> "FakeSession":
        self.routes.setdefault(url, []).extend(handlers)
        return self

    def serve(self, url: str, body: bytes, chunk_size: int = 4) -> "FakeSession":
        """Serve ``body`` at ``url``, honouring ``Range`` requests."""

        def handler(headers: Dict[str, str]) -> FakeResponse:
            range_header = headers.get("Range")
            if range_header:
                start = int(range_header.split("=")[1].rstrip("-"))
                return FakeResponse(
                    206,
                    body[start:],
                    headers={"Content-Range": f"bytes {start}-{len(body) - 1}/{len(body)}"},
                    chunk_size=chunk_size,
                )
            return FakeResponse(200, body, chunk_size=chunk_size)

        return self.add(url, handler)

    def get(self, url: str, stream: bool = False, timeout: Any = None, headers: Optional[Dict[str, str]] = None):
        headers = dict(headers or {})
        with self._lock:
            self.requests.append({"url": url, "headers": headers, "timeout": timeout, "stream": stream})
            queue = self.routes.get(url)
            if not queue:
                raise requests.exceptions.ConnectionError(f"no route to {url}")
            handler = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(handler, BaseException):
            raise handler
        if callable(handler) and not isinstance(handler, FakeResponse):
            return handler(headers)
        return handler

    def urls(self) -> List[str]:
        return [request["url"] for request in self.requests]

    def count(self, url: str) -> int:
        return self.urls().count(url)


def artifact_dict(
    artifact_id: str,
    body: bytes,
    urls: List[str],
    path: Optional[str] = None,
    role: str = "library",
    depends_on: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "id": artifact_id,
        "urls": urls,
        "checksum": f"sha256:{sha256(body)}",
        "size": len(body),
        "path": path or f"lib/{artifact_id}.jar",
        "role": role,
        "dependsOn": depends_on or [],
    }


def version_dict(
    runtime: Any,
    artifacts: List[Dict[str, Any]],
    channel: str = "stable",
    main_class: Optional[str] = None,
    jvm_args: Optional[List[str]] = None,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"channel": channel, "runtime": runtime, "artifacts": artifacts}
    if main_class:
        entry["mainClass"] = main_class
    if jvm_args:
        entry["jvmArgs"] = jvm_args
    return entry
