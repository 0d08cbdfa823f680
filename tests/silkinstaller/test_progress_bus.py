"""
Tests for the progress and cancellation bus.
"""

import threading

import pytest

from silkinstaller.installer_exceptions import InstallCancelled
from silkinstaller.installer_logger import InstallerLogger
from silkinstaller.progress import CancellationToken, EventKind, Phase, ProgressBus, ProgressEvent, ProgressThrottle


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def bus():
    return ProgressBus(InstallerLogger())


class TestProgressBus:
    def test_subscribers_receive_events_in_order(self, bus):
        received = []
        bus.subscribe(received.append)
        bus.phase(Phase.RESOLVE, "resolving")
        bus.warn(Phase.DOWNLOAD, "slow mirror", artifact_id="asm")
        assert [e.kind for e in received] == [EventKind.PHASE, EventKind.WARNING]
        assert received[1].artifact_id == "asm"

    def test_unsubscribe(self, bus):
        received = []
        unsubscribe = bus.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        bus.phase(Phase.WRITE)
        assert received == []

    def test_failing_subscriber_does_not_stop_others(self, bus):
        received = []

        def broken(event):
            raise RuntimeError("presentation layer crashed")

        bus.subscribe(broken)
        bus.subscribe(received.append)
        bus.phase(Phase.BOOTSTRAP)
        assert len(received) == 1

    def test_error_event_carries_exception(self, bus):
        received = []
        bus.subscribe(received.append)
        error = ValueError("boom")
        bus.error(Phase.WRITE, error)
        assert received[0].error is error
        assert received[0].message == "boom"

    def test_publish_from_many_threads(self, bus):
        received = []
        lock = threading.Lock()

        def collect(event):
            with lock:
                received.append(event)

        bus.subscribe(collect)
        threads = [
            threading.Thread(target=lambda: [bus.publish(ProgressEvent(Phase.DOWNLOAD)) for _ in range(50)])
            for _ in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(received) == 200

    def test_cancel(self, bus):
        assert not bus.is_cancelled
        bus.cancel("user")
        assert bus.is_cancelled
        with pytest.raises(InstallCancelled, match="user"):
            bus.cancellation.raise_if_cancelled()


class TestCancellationToken:
    def test_first_reason_wins(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"

    def test_wait_returns_early_when_cancelled(self):
        token = CancellationToken()
        assert token.wait(0.0) is False
        token.cancel()
        assert token.wait(10.0) is True


class TestProgressEvent:
    def test_percent(self):
        assert ProgressEvent(Phase.DOWNLOAD, bytes_done=25, bytes_total=100).percent == 25.0
        assert ProgressEvent(Phase.DOWNLOAD, bytes_done=25).percent is None
        assert ProgressEvent(Phase.DOWNLOAD, bytes_done=5, bytes_total=0).percent is None


class TestProgressThrottle:
    def test_coalesces_updates_within_interval(self, bus):
        clock = FakeClock()
        received = []
        bus.subscribe(received.append)
        throttle = ProgressThrottle(bus, Phase.DOWNLOAD, "asm", 100, min_interval=1.0, clock=clock)

        throttle.update(10)
        throttle.update(20)
        clock.now = 0.5
        throttle.update(30)
        clock.now = 1.0
        throttle.update(40)

        assert [e.bytes_done for e in received] == [10, 40]

    def test_completion_and_forced_updates_are_emitted(self, bus):
        received = []
        bus.subscribe(received.append)
        throttle = ProgressThrottle(bus, Phase.DOWNLOAD, "asm", 100, min_interval=60.0, clock=FakeClock())

        throttle.update(10)
        throttle.update(50, force=True)
        throttle.update(100)
        throttle.update(100, force=True)

        assert [e.bytes_done for e in received] == [10, 50, 100]
        assert throttle.emitted == 3
