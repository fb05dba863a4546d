"""
Progress broadcast tests.
"""

import threading
import time

import pytest

from verimed.data.records import Modality
from verimed.training import ProgressBroadcaster, TrainingProgress, TrainingStatus


def _progress(epoch, status=TrainingStatus.TRAINING):
    return TrainingProgress(
        model_type=Modality.PILL, epoch=epoch, total_epochs=10,
        loss=1.0 / epoch, accuracy=0.5, status=status
    )


@pytest.fixture
def broadcaster():
    current = ProgressBroadcaster(max_pending=4)
    yield current
    current.close()


class TestDelivery:
    def test_in_order_delivery(self, broadcaster):
        received = []
        broadcaster.subscribe(received.append)

        for epoch in range(1, 4):
            broadcaster.publish(_progress(epoch))

        assert broadcaster.flush(timeout=5.0)
        assert [p.epoch for p in received] == [1, 2, 3]

    def test_latest(self, broadcaster):
        assert broadcaster.latest is None

        broadcaster.publish(_progress(1))
        broadcaster.publish(_progress(2, TrainingStatus.COMPLETED))

        assert broadcaster.latest.epoch == 2
        assert broadcaster.latest.is_final

    def test_unsubscribed_callback_not_called(self, broadcaster):
        received = []
        subscription = broadcaster.subscribe(received.append)
        broadcaster.publish(_progress(1))
        broadcaster.flush(timeout=5.0)

        subscription.unsubscribe()
        broadcaster.publish(_progress(2))
        time.sleep(0.05)

        assert [p.epoch for p in received] == [1]
        assert not subscription.active

    def test_failing_callback_keeps_delivering(self, broadcaster):
        received = []

        def flaky(progress):
            if progress.epoch == 1:
                raise RuntimeError("boom")
            received.append(progress)

        broadcaster.subscribe(flaky)
        broadcaster.publish(_progress(1))
        broadcaster.publish(_progress(2))

        assert broadcaster.flush(timeout=5.0)
        assert [p.epoch for p in received] == [2]


class TestSlowSubscriber:
    def test_publish_does_not_wait(self, broadcaster):
        release = threading.Event()
        broadcaster.subscribe(lambda progress: release.wait(timeout=5.0))

        start = time.monotonic()
        for epoch in range(1, 21):
            broadcaster.publish(_progress(epoch))
        elapsed = time.monotonic() - start
        release.set()

        assert elapsed < 1.0

    def test_oldest_pending_dropped(self, broadcaster):
        entered = threading.Event()
        release = threading.Event()
        received = []

        def slow(progress):
            entered.set()
            release.wait(timeout=5.0)
            received.append(progress.epoch)

        subscription = broadcaster.subscribe(slow)
        broadcaster.publish(_progress(1))
        assert entered.wait(timeout=5.0)

        for epoch in range(2, 12):
            broadcaster.publish(_progress(epoch))
        release.set()

        assert broadcaster.flush(timeout=5.0)
        assert received == [1, 8, 9, 10, 11]
        assert subscription.dropped == 6

    def test_fast_subscriber_unaffected_by_slow_one(self, broadcaster):
        release = threading.Event()
        fast = []
        broadcaster.subscribe(lambda progress: release.wait(timeout=5.0))
        broadcaster.subscribe(fast.append)

        broadcaster.publish(_progress(1))
        broadcaster.publish(_progress(2))
        deadline = time.monotonic() + 5.0
        while len(fast) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        release.set()

        assert [p.epoch for p in fast] == [1, 2]


def test_progress_to_dict():
    data = _progress(2, TrainingStatus.EARLY_STOPPED).to_dict()

    assert data["model_type"] == "pill"
    assert data["status"] == "early_stopped"
    assert data["val_loss"] is None
