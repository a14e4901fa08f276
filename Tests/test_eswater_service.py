import logging

from eswater.data_fetcher import WaterUsageFetcher
from eswater.hybrid_client import EswaterError
from eswater.main import EswaterService
from eswater.models import AuthData, EswaterConfig, LoginOutcome, LoginResult, UsageSummary
from eswater.publisher import (
    CONNECTION_STATUS_TOPIC,
    DAILY_USAGE_TOPIC,
    STATUS_TOPIC,
    EswaterPublisher,
)
from shared.backoff import FailureTracker

logger = logging.getLogger("ha-addons-tests")


def make_config(**overrides):
    values = dict(username="bob@example.com", password="pw")
    values.update(overrides)
    return EswaterConfig(**values)


def make_usage(daily=12.5, timestamp="2024-05-01T23:00:00"):
    return UsageSummary(daily_usage=daily, latest_reading=1.5, reading_count=24, timestamp=timestamp, days_back=3)


class FakeClient:
    def __init__(self, login=LoginOutcome.SUCCESS, usage=None, error=None):
        self.login = login
        self.usage = usage or make_usage()
        self.error = error
        self.auth = AuthData(authorization="jwt", account_id="12345", meter_serial="SN42")
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True

    def login_and_extract_auth(self, username, password):
        if self.error:
            raise self.error
        return LoginResult(self.login, "portal said so")

    def get_usage_data(self, min_days_back, max_days_back):
        return self.usage


class ClientFactory:
    def __init__(self, *clients):
        self.clients = list(clients)
        self.created = 0

    def __call__(self, config):
        self.created += 1
        return self.clients.pop(0) if len(self.clients) > 1 else self.clients[0]


class TestWaterUsageFetcher:
    def test_success(self):
        fetcher = WaterUsageFetcher(make_config(), FailureTracker(), ClientFactory(FakeClient()))
        result = fetcher.fetch()

        assert result.success
        assert result.status == "online"
        assert result.meter_serial == "SN42"
        assert result.usage.daily_usage == 12.5

    def test_lockout_guard_stops_browser_start(self):
        logger.info("eswater: after three failures the next attempt waits without a browser")
        factory = ClientFactory(FakeClient(login=LoginOutcome.FAILURE))
        fetcher = WaterUsageFetcher(make_config(), FailureTracker(), factory)

        for _ in range(3):
            assert fetcher.fetch().status == "error"
        assert factory.created == 3

        result = fetcher.fetch()
        assert not result.success
        assert result.status == "waiting"
        assert "Too many recent failures" in result.error
        assert factory.created == 3

    def test_ambiguous_login_allowed(self):
        fetcher = WaterUsageFetcher(make_config(), FailureTracker(), ClientFactory(FakeClient(LoginOutcome.AMBIGUOUS)))
        assert fetcher.fetch().success

    def test_ambiguous_login_rejected(self):
        tracker = FailureTracker()
        fetcher = WaterUsageFetcher(
            make_config(allow_ambiguous_login=False), tracker, ClientFactory(FakeClient(LoginOutcome.AMBIGUOUS))
        )
        result = fetcher.fetch()
        assert not result.success
        assert tracker.failure_count == 1

    def test_client_error_counts_as_failure(self):
        tracker = FailureTracker()
        client = FakeClient(error=EswaterError("Your account has been locked"))
        result = WaterUsageFetcher(make_config(), tracker, ClientFactory(client)).fetch()

        assert result.status == "error"
        assert "locked" in result.error
        assert tracker.failure_count == 1
        assert client.closed

    def test_success_clears_failures(self):
        tracker = FailureTracker()
        tracker.record_failure()
        WaterUsageFetcher(make_config(), tracker, ClientFactory(FakeClient())).fetch()
        assert tracker.failure_count == 0


class TestEswaterService:
    def make_service(self, mqtt, *clients):
        fetcher = WaterUsageFetcher(make_config(), FailureTracker(), ClientFactory(*clients))
        return EswaterService(make_config(), EswaterPublisher(mqtt), fetcher)

    def test_publishes_new_data(self, mqtt):
        service = self.make_service(mqtt, FakeClient())
        service.run_cycle()

        assert mqtt.payloads(DAILY_USAGE_TOPIC) == [12.5]
        assert mqtt.payloads(CONNECTION_STATUS_TOPIC) == ["online"]
        assert mqtt.payloads(STATUS_TOPIC)[-1]["status"] == "online"

    def test_unchanged_data_not_republished(self, mqtt):
        service = self.make_service(mqtt, FakeClient())
        service.run_cycle()
        service.run_cycle()

        assert mqtt.payloads(DAILY_USAGE_TOPIC) == [12.5]
        assert mqtt.payloads(CONNECTION_STATUS_TOPIC) == ["online", "online"]

    def test_changed_data_republished(self, mqtt):
        service = self.make_service(mqtt, FakeClient(), FakeClient(usage=make_usage(daily=20.0)))
        service.run_cycle()
        service.run_cycle()
        assert mqtt.payloads(DAILY_USAGE_TOPIC) == [12.5, 20.0]

    def test_failure_publishes_error_status(self, mqtt):
        service = self.make_service(mqtt, FakeClient(login=LoginOutcome.FAILURE))
        service.run_cycle()

        assert mqtt.payloads(DAILY_USAGE_TOPIC) == []
        assert mqtt.payloads(CONNECTION_STATUS_TOPIC) == ["error"]
        assert mqtt.payloads(STATUS_TOPIC)[-1] == {
            "status": "error",
            "message": "portal said so",
            "timestamp": mqtt.payloads(STATUS_TOPIC)[-1]["timestamp"],
        }

    def test_discovery_and_offline(self, mqtt):
        service = self.make_service(mqtt, FakeClient())
        service.start()
        service.stop()

        assert len(mqtt.entities) == 7
        assert mqtt.payloads(CONNECTION_STATUS_TOPIC) == ["offline"]
        assert mqtt.payloads(STATUS_TOPIC)[-1]["status"] == "offline"
