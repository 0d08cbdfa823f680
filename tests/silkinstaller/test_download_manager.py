"""
Tests for the download manager: mirror fallback, integrity checks, resume,
skipping of installed artifacts and cancellation.
"""

import threading

import pytest
import requests

from silkinstaller.download_manager import DownloadManager
from silkinstaller.installer_exceptions import DownloadFailed, InstallCancelled, IntegrityViolation
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.installer_utils import RetryPolicy
from silkinstaller.manifest_models import ArtifactDescriptor, Checksum, InstallationTarget, InstallPlan
from silkinstaller.progress import EventKind, ProgressBus
from tests.fakes import FakeResponse, FakeSession, sha256

MIRROR_A = "https://mirror-a.invalid"
MIRROR_B = "https://mirror-b.invalid"
MIRROR_C = "https://mirror-c.invalid"


def _artifact(artifact_id, body, mirrors=(MIRROR_A, MIRROR_B), path=None):
    return ArtifactDescriptor(
        id=artifact_id,
        urls=tuple(f"{mirror}/{artifact_id}.jar" for mirror in mirrors),
        checksum=Checksum("sha256", sha256(body)),
        size=len(body),
        path=path or f"lib/{artifact_id}.jar",
    )


def _plan(*artifacts):
    return InstallPlan(loader_version="2.3.0", runtime_version="1.2", artifacts=tuple(artifacts))


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def bus():
    return ProgressBus(InstallerLogger())


@pytest.fixture
def target(tmp_path):
    return InstallationTarget(tmp_path / "game")


@pytest.fixture
def staging(tmp_path):
    return tmp_path / "staging"


@pytest.fixture
def manager(session, bus):
    return DownloadManager(
        InstallerLogger(),
        bus=bus,
        session=session,
        max_concurrent_downloads=2,
        retry_policy=RetryPolicy(max_attempts=3, sleep=lambda delay: None),
        progress_interval=0.0,
    )


class TestDownloadManager:
    """Tests for DownloadManager.download."""

    def test_downloads_into_staging_in_plan_order(self, manager, session, target, staging):
        bodies = {"a": b"alpha bytes", "b": b"beta", "c": b"gamma gamma gamma"}
        artifacts = [_artifact(name, body) for name, body in bodies.items()]
        for name, body in bodies.items():
            session.serve(f"{MIRROR_A}/{name}.jar", body)

        results = manager.download(_plan(*artifacts), target, staging)

        assert [r.descriptor.id for r in results] == ["a", "b", "c"]
        for result in results:
            assert result.verified
            assert result.attempts == 1
            assert result.source_url == f"{MIRROR_A}/{result.descriptor.id}.jar"
            assert result.staged_path.parent == staging
            assert result.staged_path.read_bytes() == bodies[result.descriptor.id]
        assert not target.root.exists()

    def test_mismatch_on_first_mirror_falls_back_to_second(self, manager, session, target, staging, bus):
        body = b"the real artifact"
        session.add(f"{MIRROR_A}/a.jar", FakeResponse(200, b"a tampered copy!!"))
        session.serve(f"{MIRROR_B}/a.jar", body)
        warnings = []
        bus.subscribe(lambda event: warnings.append(event) if event.kind == EventKind.WARNING else None)

        [result] = manager.download(_plan(_artifact("a", body)), target, staging)

        assert result.source_url == f"{MIRROR_B}/a.jar"
        assert result.attempted_urls == [f"{MIRROR_A}/a.jar", f"{MIRROR_B}/a.jar"]
        assert result.staged_path.read_bytes() == body
        assert session.count(f"{MIRROR_A}/a.jar") == 1
        assert len(warnings) == 1

    def test_mismatch_on_two_mirrors_is_integrity_violation(self, manager, session, target, staging):
        body = b"the real artifact"
        artifact = _artifact("a", body, mirrors=(MIRROR_A, MIRROR_B, MIRROR_C))
        session.add(f"{MIRROR_A}/a.jar", FakeResponse(200, b"a tampered copy!!"))
        session.add(f"{MIRROR_B}/a.jar", FakeResponse(200, b"another bad copy!"))
        session.serve(f"{MIRROR_C}/a.jar", body)

        with pytest.raises(IntegrityViolation) as exc_info:
            manager.download(_plan(artifact), target, staging)

        assert exc_info.value.artifact_id == "a"
        assert exc_info.value.expected == f"sha256:{sha256(body)}"
        assert not exc_info.value.retryable
        assert session.count(f"{MIRROR_C}/a.jar") == 0
        assert list(staging.iterdir()) == []

    def test_mismatch_without_further_mirror_is_integrity_violation(self, manager, session, target, staging):
        session.add(f"{MIRROR_A}/a.jar", FakeResponse(200, b"xxxx"))
        with pytest.raises(IntegrityViolation):
            manager.download(_plan(_artifact("a", b"yyyy", mirrors=(MIRROR_A,))), target, staging)

    def test_oversized_body_is_a_mismatch(self, manager, session, target, staging):
        body = b"exact"
        session.add(f"{MIRROR_A}/a.jar", FakeResponse(200, body + b" plus trailing garbage"))
        session.serve(f"{MIRROR_B}/a.jar", body)
        [result] = manager.download(_plan(_artifact("a", body)), target, staging)
        assert result.source_url == f"{MIRROR_B}/a.jar"
        assert session.count(f"{MIRROR_A}/a.jar") == 1

    def test_transient_failures_retry_same_mirror(self, manager, session, target, staging):
        body = b"retry me please"
        session.add(
            f"{MIRROR_A}/a.jar",
            requests.exceptions.ReadTimeout("slow"),
            FakeResponse(502),
            FakeResponse(200, body),
        )
        [result] = manager.download(_plan(_artifact("a", body)), target, staging)
        assert result.attempts == 3
        assert result.source_url == f"{MIRROR_A}/a.jar"
        assert session.count(f"{MIRROR_B}/a.jar") == 0

    def test_exhausted_mirror_moves_to_next(self, manager, session, target, staging):
        body = b"from b"
        session.add(f"{MIRROR_A}/a.jar", FakeResponse(503))
        session.serve(f"{MIRROR_B}/a.jar", body)
        [result] = manager.download(_plan(_artifact("a", body)), target, staging)
        assert session.count(f"{MIRROR_A}/a.jar") == 3
        assert result.attempts == 4
        assert result.source_url == f"{MIRROR_B}/a.jar"

    def test_all_mirrors_transient_is_download_failed(self, manager, session, target, staging):
        session.add(f"{MIRROR_A}/a.jar", FakeResponse(500))
        with pytest.raises(DownloadFailed) as exc_info:
            manager.download(_plan(_artifact("a", b"never")), target, staging)
        assert "a" in exc_info.value.failures
        assert exc_info.value.retryable
        assert session.count(f"{MIRROR_A}/a.jar") == 3
        assert session.count(f"{MIRROR_B}/a.jar") == 3

    def test_truncated_body_resumes_with_range(self, manager, session, target, staging):
        body = b"0123456789abcdef"
        url = f"{MIRROR_A}/a.jar"
        session.add(url, FakeResponse(200, body, chunk_size=4, fail_after=8))
        session.serve(url, body)

        [result] = manager.download(_plan(_artifact("a", body)), target, staging)

        assert result.staged_path.read_bytes() == body
        assert session.requests[-1]["headers"] == {"Range": "bytes=8-"}
        assert result.attempts == 2

    def test_full_response_to_range_request_restarts(self, manager, session, target, staging):
        body = b"0123456789abcdef"
        url = f"{MIRROR_A}/a.jar"
        session.add(url, FakeResponse(200, body, chunk_size=4, fail_after=8), FakeResponse(200, body))
        [result] = manager.download(_plan(_artifact("a", body)), target, staging)
        assert result.staged_path.read_bytes() == body

    def test_range_not_satisfiable_discards_partial(self, manager, session, target, staging):
        body = b"0123456789abcdef"
        url = f"{MIRROR_A}/a.jar"
        session.add(url, FakeResponse(200, body, chunk_size=4, fail_after=8), FakeResponse(416), FakeResponse(200, body))
        [result] = manager.download(_plan(_artifact("a", body)), target, staging)
        assert result.staged_path.read_bytes() == body
        assert "Range" not in session.requests[-1]["headers"]
        assert result.attempts == 3

    def test_installed_artifact_is_skipped(self, manager, session, target, staging):
        body = b"already here"
        destination = target.resolve("lib/a.jar")
        destination.parent.mkdir(parents=True)
        destination.write_bytes(body)

        [result] = manager.download(_plan(_artifact("a", body)), target, staging)

        assert result.skipped
        assert result.attempts == 0
        assert result.staged_path is None
        assert session.requests == []

    def test_outdated_installed_artifact_is_downloaded(self, manager, session, target, staging):
        body = b"new contents"
        destination = target.resolve("lib/a.jar")
        destination.parent.mkdir(parents=True)
        destination.write_bytes(b"old contents")
        session.serve(f"{MIRROR_A}/a.jar", body)

        [result] = manager.download(_plan(_artifact("a", body)), target, staging)

        assert not result.skipped
        assert destination.read_bytes() == b"old contents"

    def test_integrity_violation_takes_precedence(self, session, target, staging, bus):
        manager = DownloadManager(
            InstallerLogger(),
            bus=bus,
            session=session,
            max_concurrent_downloads=2,
            retry_policy=RetryPolicy(max_attempts=1, sleep=lambda delay: None),
        )
        b_started = threading.Event()

        def fail_once_b_runs(headers):
            b_started.wait(5)
            return FakeResponse(500)

        def serve_tampered(headers):
            b_started.set()
            return FakeResponse(200, b"bad!")

        session.add(f"{MIRROR_A}/a.jar", fail_once_b_runs)
        session.add(f"{MIRROR_A}/b.jar", serve_tampered)
        plan = _plan(_artifact("a", b"good", mirrors=(MIRROR_A,)), _artifact("b", b"good", mirrors=(MIRROR_A,)))

        with pytest.raises(IntegrityViolation) as exc_info:
            manager.download(plan, target, staging)
        assert exc_info.value.artifact_id == "b"

    def test_failure_stops_queued_downloads(self, session, target, staging, bus):
        manager = DownloadManager(
            InstallerLogger(),
            bus=bus,
            session=session,
            max_concurrent_downloads=1,
            retry_policy=RetryPolicy(max_attempts=1, sleep=lambda delay: None),
        )
        session.add(f"{MIRROR_A}/a.jar", FakeResponse(404))
        session.serve(f"{MIRROR_A}/b.jar", b"b")
        session.serve(f"{MIRROR_A}/c.jar", b"c")
        plan = _plan(*(_artifact(name, name.encode(), mirrors=(MIRROR_A,)) for name in "abc"))

        with pytest.raises(DownloadFailed) as exc_info:
            manager.download(plan, target, staging)

        assert list(exc_info.value.failures) == ["a"]
        assert session.urls() == [f"{MIRROR_A}/a.jar"]

    def test_cancellation_at_chunk_boundary(self, manager, session, target, staging, bus):
        body = b"0123456789abcdef"

        def cancel_midway(sent):
            if sent >= 8:
                bus.cancel("user pressed cancel")

        session.add(f"{MIRROR_A}/a.jar", FakeResponse(200, body, chunk_size=4, on_chunk=cancel_midway))

        with pytest.raises(InstallCancelled):
            manager.download(_plan(_artifact("a", body)), target, staging)

        assert session.count(f"{MIRROR_B}/a.jar") == 0
        assert not target.root.exists()

    def test_cancelled_before_start(self, manager, session, target, staging, bus):
        bus.cancel()
        with pytest.raises(InstallCancelled):
            manager.download(_plan(_artifact("a", b"a")), target, staging)
        assert session.requests == []

    def test_progress_events_end_with_completion(self, manager, session, target, staging, bus):
        body = b"0123456789abcdef"
        session.serve(f"{MIRROR_A}/a.jar", body, chunk_size=4)
        events = []
        bus.subscribe(events.append)

        manager.download(_plan(_artifact("a", body)), target, staging)

        progress = [e for e in events if e.kind == EventKind.PROGRESS and e.artifact_id == "a"]
        assert progress[-1].bytes_done == len(body)
        assert progress[-1].percent == 100.0
        assert [e.bytes_done for e in progress] == sorted(e.bytes_done for e in progress)

    def test_requests_use_attempt_timeout(self, session, target, staging, bus):
        manager = DownloadManager(InstallerLogger(), bus=bus, session=session, attempt_timeout=7.5)
        session.serve(f"{MIRROR_A}/a.jar", b"a")
        manager.download(_plan(_artifact("a", b"a")), target, staging)
        assert session.requests[0]["timeout"] == 7.5
        assert session.requests[0]["stream"] is True

    def test_plan_timeout_fails_unfinished_artifacts(self, session, target, staging, bus):
        body = b"arrives too late"

        def slow(headers):
            threading.Event().wait(0.5)
            return FakeResponse(200, body)

        session.add(f"{MIRROR_A}/a.jar", slow)
        manager = DownloadManager(
            InstallerLogger(),
            bus=bus,
            session=session,
            retry_policy=RetryPolicy(max_attempts=1, sleep=lambda delay: None),
            plan_timeout=0.05,
        )

        with pytest.raises(DownloadFailed) as exc_info:
            manager.download(_plan(_artifact("a", body, mirrors=(MIRROR_A,))), target, staging)

        assert exc_info.value.failures == {"a": "plan timeout"}
        assert not bus.is_cancelled
