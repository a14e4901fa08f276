import logging
import threading

from shared.poller import PollState, Poller, SingleFlight

logger = logging.getLogger("ha-addons-tests")


class TestPollState:
    def test_first_compare_is_baseline(self):
        state = PollState()
        change = state.compare("ip", "203.0.113.7")
        assert change.changed
        assert change.is_baseline
        assert change.previous is None

    def test_identical_value_is_unchanged(self):
        state = PollState()
        state.commit("ip", "203.0.113.7")
        change = state.compare("ip", "203.0.113.7")
        assert not change.changed
        assert not change.is_baseline

    def test_compare_does_not_commit(self):
        state = PollState()
        state.compare("ip", "203.0.113.7")
        assert state.get("ip") is None

    def test_structured_values(self):
        state = PollState()
        state.commit("sensor", ("3", {"alert_state": "PENDING"}))
        assert not state.compare("sensor", ("3", {"alert_state": "PENDING"})).changed
        assert state.compare("sensor", ("4", {"alert_state": "PENDING"})).changed


class TestSingleFlight:
    def test_runs_when_idle(self):
        guard = SingleFlight()
        calls = []
        assert guard.run(lambda: calls.append(1))
        assert calls == [1]
        assert not guard.running

    def test_concurrent_triggers_coalesce_into_one_follow_up(self):
        logger.info("poller: triggers during a cycle fold into a single extra run")
        guard = SingleFlight()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow():
            calls.append("run")
            if len(calls) == 1:
                started.set()
                release.wait(5)

        worker = threading.Thread(target=guard.run, args=(slow,))
        worker.start()
        assert started.wait(5)

        assert guard.run(slow) is False
        assert guard.run(slow) is False
        release.set()
        worker.join(5)

        assert calls == ["run", "run"]
        assert not guard.running

    def test_exception_releases_guard(self):
        guard = SingleFlight()

        def boom():
            raise RuntimeError("boom")

        try:
            guard.run(boom)
        except RuntimeError:
            pass
        assert not guard.running
        assert guard.run(lambda: None)


class CountingPoller(Poller):
    name = "counting"

    def __init__(self, fail=False):
        super().__init__(60)
        self.fail = fail
        self.polls = 0
        self.errors = []

    def poll(self):
        self.polls += 1
        if self.fail:
            raise RuntimeError("upstream down")

    def on_cycle_error(self, exc):
        self.errors.append(str(exc))


class TestPoller:
    def test_run_cycle_counts(self):
        poller = CountingPoller()
        assert poller.run_cycle()
        assert poller.polls == 1
        assert poller.cycle_count == 1

    def test_failed_cycle_is_reported_not_raised(self):
        poller = CountingPoller(fail=True)
        assert poller.run_cycle()
        assert poller.errors == ["upstream down"]

    def test_run_once_stops_after_first_cycle(self):
        poller = CountingPoller()
        poller.run(run_once=True)
        assert poller.polls == 1
