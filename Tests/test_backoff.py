import logging

from shared.backoff import BackoffState, FailureTracker

logger = logging.getLogger("ha-addons-tests")


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_tracker(clock=None):
    return FailureTracker(clock=clock or FakeClock())


class TestFailureTracker:
    def test_allows_below_threshold(self):
        logger.info("backoff: fewer than three failures never block")
        tracker = make_tracker()
        tracker.record_failure()
        tracker.record_failure()

        decision = tracker.check()
        assert decision.allowed
        assert decision.message == ""

    def test_blocks_after_three_failures(self):
        clock = FakeClock()
        tracker = make_tracker(clock)
        for _ in range(3):
            tracker.record_failure()

        decision = tracker.check()
        assert not decision.allowed
        assert decision.wait_minutes == 15
        assert decision.message == (
            "Too many recent failures. Waiting 15 minutes to prevent account lockout."
        )
        assert tracker.state == BackoffState.BACKING_OFF

    def test_wait_rounds_up_to_whole_minutes(self):
        clock = FakeClock()
        tracker = make_tracker(clock)
        for _ in range(3):
            tracker.record_failure()
        clock.advance(14 * 60 + 1)

        decision = tracker.check()
        assert not decision.allowed
        assert decision.wait_minutes == 1

    def test_allows_again_when_window_elapsed(self):
        clock = FakeClock()
        tracker = make_tracker(clock)
        for _ in range(3):
            tracker.record_failure()
        clock.advance(15 * 60)

        assert tracker.check().allowed
        assert tracker.state == BackoffState.READY

    def test_window_is_capped_at_one_hour(self):
        tracker = make_tracker()
        for _ in range(20):
            tracker.record_failure()

        assert tracker.failure_count == 10
        assert tracker.backoff_seconds == 3600
        assert tracker.check().wait_minutes == 60

    def test_success_resets(self):
        tracker = make_tracker()
        for _ in range(5):
            tracker.record_failure()
        tracker.record_success()

        assert tracker.failure_count == 0
        assert tracker.check().allowed
