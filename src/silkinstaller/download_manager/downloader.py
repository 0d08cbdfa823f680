"""
Artifact downloader.

Fetches every artifact of an install plan into a per-run staging directory,
verifies it and reports one :class:`DownloadResult` per artifact. Each
artifact walks an explicit state machine::

    PENDING -> ATTEMPTING(mirror i) -> VERIFIED | EXHAUSTED_MIRRORS

where every attempt yields an :class:`AttemptOutcome` instead of raising.
"""

import concurrent.futures
import logging
import pathlib
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import requests

from silkinstaller.installer_exceptions import DownloadFailed, InstallCancelled, IntegrityViolation
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_utils import CHUNK_SIZE, FileUtils, RetryPolicy
from silkinstaller.manifest_models import ArtifactDescriptor, DownloadResult, InstallationTarget, InstallPlan
from silkinstaller.progress import Phase, ProgressBus, ProgressEvent, ProgressThrottle


class AttemptOutcome(str, Enum):
    """Result of a single download attempt against one mirror."""

    VERIFIED = "verified"
    TRANSIENT = "transient"
    MISMATCH = "mismatch"


class ArtifactState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    VERIFIED = "verified"
    EXHAUSTED_MIRRORS = "exhausted_mirrors"


@dataclass
class AttemptReport:
    outcome: AttemptOutcome
    url: str
    detail: str = ""
    actual_digest: Optional[str] = None


@dataclass
class ArtifactTracker:
    """
    Mutable bookkeeping of one artifact while it is being downloaded.
    """

    descriptor: ArtifactDescriptor
    staged_path: pathlib.Path
    state: ArtifactState = ArtifactState.PENDING
    mirror_index: int = -1
    attempts: int = 0
    attempted_urls: List[str] = field(default_factory=list)
    last_error: str = ""

    def begin_mirror(self, index: int) -> str:
        self.state = ArtifactState.ATTEMPTING
        self.mirror_index = index
        url = self.descriptor.urls[index]
        self.attempted_urls.append(url)
        return url


class _RunControl:
    """
    Stop signal for one ``download`` call: the bus' cancellation token plus
    the plan timeout.
    """

    def __init__(self, bus: ProgressBus) -> None:
        self.bus = bus
        self.timed_out = threading.Event()
        self.failed = threading.Event()

    def raise_if_stopped(self) -> None:
        if self.timed_out.is_set():
            raise InstallCancelled("Download plan timeout exceeded")
        self.bus.cancellation.raise_if_cancelled()


class _NotStarted(Exception):
    """Raised by queued work once a sibling artifact has already failed."""


_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class DownloadManager:
    """
    Downloads the artifacts of an install plan in parallel into staging.

    Transient failures (timeouts, connection errors, non-2xx statuses, short
    bodies) are retried on the same mirror with exponential backoff and then
    move on to the next mirror. A checksum mismatch is never retried on the same
    mirror: exactly one further mirror is tried and, if that does not verify
    either, the artifact fails with :class:`IntegrityViolation`.
    """

    def __init__(
        self,
        logger: InstallerLogger,
        bus: Optional[ProgressBus] = None,
        session: Optional[requests.Session] = None,
        max_concurrent_downloads: int = 4,
        retry_policy: Optional[RetryPolicy] = None,
        attempt_timeout: float = 30.0,
        plan_timeout: Optional[float] = None,
        progress_interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the download manager.

        Args:
            logger: Logger for progress and error messages
            bus: Progress bus; its cancellation token stops the downloads
            session: Shared HTTP session
            max_concurrent_downloads: Upper bound of parallel transfers
            retry_policy: Attempts per mirror and backoff timing
            attempt_timeout: Connect/read timeout of a single request
            plan_timeout: Optional limit for the whole plan, in seconds
            progress_interval: Minimum seconds between progress events per artifact
        """
        if max_concurrent_downloads < 1:
            raise ValueError("max_concurrent_downloads must be at least 1")
        self.logger = logger
        self.bus = bus or ProgressBus(logger)
        self.session = session or requests.Session()
        self.max_concurrent_downloads = max_concurrent_downloads
        self.retry_policy = retry_policy or RetryPolicy()
        self.attempt_timeout = attempt_timeout
        self.plan_timeout = plan_timeout
        self.progress_interval = progress_interval
        self.clock = clock

    def download(
        self, plan: InstallPlan, target: InstallationTarget, staging_dir: pathlib.Path
    ) -> List[DownloadResult]:
        """
        Download every artifact of ``plan``.

        Args:
            plan: The plan to fetch
            target: Installation target, consulted to skip artifacts that are
                already installed and verified
            staging_dir: Per-run directory that receives the staged files

        Returns:
            One DownloadResult per artifact, in plan order

        Raises:
            IntegrityViolation: If any artifact failed verification on every
                mirror it was allowed to try
            DownloadFailed: If any artifact exhausted its mirrors transiently,
                or the plan timeout was exceeded
            InstallCancelled: If cancellation was requested
        """
        staging_dir = pathlib.Path(staging_dir)
        staging_dir.mkdir(parents=True, exist_ok=True)
        self.bus.phase(Phase.DOWNLOAD, f"Downloading {len(plan.artifacts)} artifact(s)")
        self.bus.cancellation.raise_if_cancelled()

        if not plan.artifacts:
            return []

        control = _RunControl(self.bus)
        deadline = None if self.plan_timeout is None else self.clock() + self.plan_timeout
        workers = min(self.max_concurrent_downloads, len(plan.artifacts))

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="silk-download")
        futures: Dict[concurrent.futures.Future, int] = {}
        errors: Dict[int, BaseException] = {}
        try:
            for index, descriptor in enumerate(plan.artifacts):
                future = executor.submit(self._run_queued, descriptor, target, staging_dir, index, control)
                futures[future] = index

            pending = set(futures)
            while pending:
                timeout = None if deadline is None else max(0.0, deadline - self.clock())
                done, pending = concurrent.futures.wait(
                    pending, timeout=timeout, return_when=concurrent.futures.FIRST_COMPLETED
                )
                if not done and deadline is not None and self.clock() >= deadline:
                    self.logger.log(f"Download plan timeout of {self.plan_timeout}s exceeded", logging.ERROR)
                    control.timed_out.set()
                    for future in pending:
                        future.cancel()
                    concurrent.futures.wait(pending)
                    for future in pending:
                        if future.cancelled() or isinstance(future.exception(), InstallCancelled):
                            errors[futures[future]] = DownloadFailed(
                                "plan timeout", failures={plan.artifacts[futures[future]].id: "plan timeout"}
                            )
                        elif future.exception() is not None and not isinstance(future.exception(), _NotStarted):
                            errors[futures[future]] = future.exception()
                    break
                for future in done:
                    if future.cancelled():
                        continue
                    error = future.exception()
                    if error is not None and not isinstance(error, _NotStarted):
                        errors[futures[future]] = error
                        # Siblings already running finish; queued ones never start
                        for other in pending:
                            other.cancel()
        finally:
            executor.shutdown(wait=True)

        if errors:
            raise self._select_error(plan, errors)

        ordered = sorted(futures.items(), key=lambda item: item[1])
        return [future.result() for future, _ in ordered]

    def _select_error(self, plan: InstallPlan, errors: Dict[int, BaseException]) -> BaseException:
        ordered = [errors[index] for index in sorted(errors)]
        for error in ordered:
            if isinstance(error, IntegrityViolation):
                return error
        for error in ordered:
            if not isinstance(error, (DownloadFailed, InstallCancelled)):
                return error
        for error in ordered:
            if isinstance(error, InstallCancelled):
                return error
        failures: Dict[str, str] = {}
        for error in ordered:
            failures.update(error.failures)
        return DownloadFailed(
            f"Failed to download {len(failures)} artifact(s) of loader {plan.loader_version}: "
            + ", ".join(sorted(failures)),
            failures=failures,
        )

    def _run_queued(
        self,
        descriptor: ArtifactDescriptor,
        target: InstallationTarget,
        staging_dir: pathlib.Path,
        index: int,
        control: _RunControl,
    ) -> DownloadResult:
        if control.failed.is_set():
            raise _NotStarted(descriptor.id)
        try:
            return self._download_one(descriptor, target, staging_dir, index, control)
        except InstallCancelled:
            raise
        except Exception:
            # Set before the worker picks up its next queued artifact
            control.failed.set()
            raise

    def _download_one(
        self,
        descriptor: ArtifactDescriptor,
        target: InstallationTarget,
        staging_dir: pathlib.Path,
        index: int,
        control: _RunControl,
    ) -> DownloadResult:
        control.raise_if_stopped()

        destination = target.resolve(descriptor.path)
        if FileUtils.file_matches(destination, descriptor.size, descriptor.checksum.algorithm, descriptor.checksum.digest):
            self.logger.log(f"{descriptor.id} is already installed at {destination}, skipping", logging.INFO)
            self.bus.publish(
                ProgressEvent(
                    phase=Phase.DOWNLOAD,
                    artifact_id=descriptor.id,
                    bytes_done=descriptor.size,
                    bytes_total=descriptor.size,
                    message="already installed",
                )
            )
            return DownloadResult(
                descriptor=descriptor, staged_path=None, verified=True, attempts=0, skipped=True
            )

        staged_name = f"{index:03d}-{_UNSAFE_NAME_CHARS.sub('_', descriptor.id)}.part"
        tracker = ArtifactTracker(descriptor=descriptor, staged_path=staging_dir / staged_name)
        throttle = ProgressThrottle(
            self.bus,
            Phase.DOWNLOAD,
            descriptor.id,
            descriptor.size,
            min_interval=self.progress_interval,
            clock=self.clock,
        )

        mismatch: Optional[AttemptReport] = None
        for mirror_index in range(len(descriptor.urls)):
            url = tracker.begin_mirror(mirror_index)
            report = self._try_mirror(tracker, url, throttle, control)

            if report.outcome == AttemptOutcome.VERIFIED:
                tracker.state = ArtifactState.VERIFIED
                self.logger.log(
                    f"Downloaded and verified {descriptor.id} from {url} after {tracker.attempts} attempt(s)",
                    logging.INFO,
                )
                return DownloadResult(
                    descriptor=descriptor,
                    staged_path=tracker.staged_path,
                    verified=True,
                    attempts=tracker.attempts,
                    source_url=url,
                    attempted_urls=list(tracker.attempted_urls),
                )

            if mismatch is not None:
                break
            if report.outcome == AttemptOutcome.MISMATCH:
                mismatch = report
                FileUtils.safe_unlink(tracker.staged_path)
                self.bus.warn(
                    Phase.DOWNLOAD,
                    f"Checksum mismatch for {descriptor.id} from {url}: {report.detail}",
                    artifact_id=descriptor.id,
                )

        tracker.state = ArtifactState.EXHAUSTED_MIRRORS
        FileUtils.safe_unlink(tracker.staged_path)
        if mismatch is not None:
            error = IntegrityViolation(
                f"Artifact {descriptor.id} failed integrity verification: expected {descriptor.checksum}, "
                f"mirror {mismatch.url} served {mismatch.detail}",
                artifact_id=descriptor.id,
                expected=str(descriptor.checksum),
                actual=mismatch.actual_digest,
                urls=list(tracker.attempted_urls),
            )
            self.logger.log(str(error), logging.ERROR)
            self.bus.error(Phase.DOWNLOAD, error, artifact_id=descriptor.id)
            raise error

        error = DownloadFailed(
            f"Artifact {descriptor.id} could not be downloaded from any of {len(descriptor.urls)} mirror(s): "
            f"{tracker.last_error}",
            failures={descriptor.id: tracker.last_error},
        )
        self.logger.log(str(error), logging.ERROR)
        self.bus.error(Phase.DOWNLOAD, error, artifact_id=descriptor.id)
        raise error

    def _try_mirror(
        self, tracker: ArtifactTracker, url: str, throttle: ProgressThrottle, control: _RunControl
    ) -> AttemptReport:
        """
        Attempt ``url`` until it verifies, mismatches, or the transient retry
        budget is used up. Returns the last attempt's report.
        """
        report = AttemptReport(AttemptOutcome.TRANSIENT, url, "no attempt made")
        for attempt in range(1, self.retry_policy.max_attempts + 1):
            control.raise_if_stopped()
            tracker.attempts += 1
            report = self._attempt(tracker, url, throttle, control)
            if report.outcome != AttemptOutcome.TRANSIENT:
                return report

            tracker.last_error = f"{url}: {report.detail}"
            self.logger.log(
                f"Attempt {attempt}/{self.retry_policy.max_attempts} for {tracker.descriptor.id} "
                f"from {url} failed: {report.detail}",
                logging.WARNING,
            )
            if attempt < self.retry_policy.max_attempts:
                self.retry_policy.wait(attempt)
        return report

    def _attempt(
        self, tracker: ArtifactTracker, url: str, throttle: ProgressThrottle, control: _RunControl
    ) -> AttemptReport:
        descriptor = tracker.descriptor
        staged = tracker.staged_path

        existing = staged.stat().st_size if staged.exists() else 0
        if existing and existing >= descriptor.size:
            FileUtils.safe_unlink(staged)
            existing = 0

        headers = {}
        if existing:
            headers["Range"] = f"bytes={existing}-"

        try:
            response = self.session.get(url, stream=True, timeout=self.attempt_timeout, headers=headers)
        except requests.exceptions.RequestException as e:
            return AttemptReport(AttemptOutcome.TRANSIENT, url, f"{type(e).__name__}: {e}")

        try:
            if response.status_code == 416:
                FileUtils.safe_unlink(staged)
                return AttemptReport(AttemptOutcome.TRANSIENT, url, "HTTP 416, discarded partial download")
            if not 200 <= response.status_code < 300:
                return AttemptReport(AttemptOutcome.TRANSIENT, url, f"HTTP {response.status_code}")

            resume = bool(existing) and response.status_code == 206
            if resume:
                content_range = response.headers.get("Content-Range", "")
                if content_range and not content_range.startswith(f"bytes {existing}-"):
                    FileUtils.safe_unlink(staged)
                    return AttemptReport(
                        AttemptOutcome.TRANSIENT, url, f"unexpected Content-Range {content_range!r}"
                    )
                self.logger.log(f"Resuming {descriptor.id} at byte {existing}", logging.DEBUG)
            written = existing if resume else 0

            with open(staged, "ab" if resume else "wb") as handle:
                try:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        control.raise_if_stopped()
                        if not chunk:
                            continue
                        if written + len(chunk) > descriptor.size:
                            handle.close()
                            FileUtils.safe_unlink(staged)
                            return AttemptReport(
                                AttemptOutcome.MISMATCH,
                                url,
                                f"more than the expected {descriptor.size} bytes",
                            )
                        handle.write(chunk)
                        written += len(chunk)
                        throttle.update(written)
                except requests.exceptions.RequestException as e:
                    return AttemptReport(AttemptOutcome.TRANSIENT, url, f"{type(e).__name__}: {e}")
        finally:
            response.close()

        if written < descriptor.size:
            return AttemptReport(
                AttemptOutcome.TRANSIENT, url, f"truncated body, {written} of {descriptor.size} bytes"
            )

        actual = FileUtils.compute_digest(staged, descriptor.checksum.algorithm)
        if actual != descriptor.checksum.digest:
            FileUtils.safe_unlink(staged)
            return AttemptReport(
                AttemptOutcome.MISMATCH, url, f"{descriptor.checksum.algorithm}:{actual}", actual_digest=actual
            )

        throttle.update(written, force=True)
        return AttemptReport(AttemptOutcome.VERIFIED, url)
