import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeResponse
from ilert_oncall.ilert_api import PAGE_SIZE, IlertApiError, ILertApi

logger = logging.getLogger("ha-addons-tests")

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class RoutedSession:
    """Fake session answering by (method, path) and recording calls."""

    def __init__(self, routes=None):
        self.headers = {}
        self.routes = routes or {}
        self.calls = []

    def request(self, method, url, timeout=None, params=None, json=None):
        path = url.replace("https://api.ilert.com/api", "")
        self.calls.append((method, path, params, json))
        answer = self.routes.get((method, path))
        if callable(answer):
            answer = answer(params, json)
        if answer is None:
            return FakeResponse(404, text="not found")
        if isinstance(answer, Exception):
            raise answer
        return answer


def make_api(routes=None, now=NOW):
    session = RoutedSession(routes)
    clock = MagicMock(return_value=now)
    return ILertApi("key-123", "alice@example.com", session=session, clock=clock), session, clock


class TestRequests:
    def test_bearer_header(self):
        api, session, _ = make_api()
        assert session.headers["Authorization"] == "Bearer key-123"

    def test_existing_bearer_prefix_kept(self):
        session = RoutedSession()
        ILertApi("Bearer abc", session=session)
        assert session.headers["Authorization"] == "Bearer abc"

    def test_schedules_raise_on_error(self):
        api, _, _ = make_api()
        with pytest.raises(IlertApiError):
            api.get_schedules()

    def test_network_error_is_wrapped(self):
        api, _, _ = make_api({("GET", "/schedules"): requests.ConnectionError("down")})
        with pytest.raises(IlertApiError):
            api.get_schedules()

    def test_on_calls_empty_on_error(self):
        api, _, _ = make_api()
        assert api.get_on_calls() == []

    def test_on_calls_in_range_falls_back(self):
        calls = []

        def on_calls(params, body):
            calls.append(params)
            if params:
                return FakeResponse(400, text="bad range")
            return FakeResponse(200, [{"user": {"id": 1}}])

        api, _, _ = make_api({("GET", "/on-calls"): on_calls})
        assert api.get_on_calls_in_range("2024-05-01T00:00:00Z", "2024-05-29T00:00:00Z") == [{"user": {"id": 1}}]
        assert calls[0] == {"from": "2024-05-01T00:00:00Z", "until": "2024-05-29T00:00:00Z"}

    def test_user_lookup_is_cached(self):
        api, session, _ = make_api({("GET", "/users/7"): FakeResponse(200, {"id": 7, "firstName": "Al"})})
        api.get_user(7)
        api.get_user(7)
        assert len(session.calls) == 1

        api.clear_user_cache()
        api.get_user(7)
        assert len(session.calls) == 2


class TestAlerts:
    def test_count_pages_through_results(self):
        logger.info("ilert api: alert counts follow start-index across full pages")
        pages = {0: PAGE_SIZE, 100: PAGE_SIZE, 200: 3}

        def alerts(params, body):
            return FakeResponse(200, [{"id": i} for i in range(pages[params["start-index"]])])

        api, session, _ = make_api({("GET", "/alerts"): alerts})

        assert api.get_alert_count_by_state("PENDING") == 203
        assert [call[2]["start-index"] for call in session.calls] == [0, 100, 200]
        assert all(call[2]["max-results"] == 100 for call in session.calls)

    def test_count_zero_on_error(self):
        api, _, _ = make_api()
        assert api.get_alert_count_by_state("PENDING") == 0

    def test_open_alerts_query(self):
        api, session, _ = make_api({("GET", "/alerts"): FakeResponse(200, [{"id": 7}])})
        assert api.get_open_alerts() == [{"id": 7}]
        assert session.calls[0][2] == {"states": ["PENDING", "ACCEPTED"]}

    def test_accept_all_pending(self):
        routes = {
            ("GET", "/alerts"): FakeResponse(200, [{"id": 1}, {"id": 2}, {"id": 3}]),
            ("PUT", "/alerts/1/accept"): FakeResponse(200, {}),
            ("PUT", "/alerts/3/accept"): FakeResponse(200, {}),
        }
        api, _, _ = make_api(routes)
        assert api.accept_all_pending_alerts() == 2

    def test_accept_nothing_pending(self):
        api, session, _ = make_api({("GET", "/alerts"): FakeResponse(200, [])})
        assert api.accept_all_pending_alerts() == 0
        assert [call[0] for call in session.calls] == ["GET"]


class TestMute:
    def routes(self, user):
        return {
            ("GET", "/users/current"): lambda params, body: FakeResponse(200, dict(user)),
            ("PUT", "/users/42"): lambda params, body: FakeResponse(200, body),
        }

    def test_mute_puts_user_with_muted_until(self):
        api, session, _ = make_api(self.routes({"id": 42, "email": "alice@example.com", "mutedUntil": None}))
        assert api.mute_notifications(60)

        method, path, _, body = session.calls[-1]
        assert (method, path) == ("PUT", "/users/42")
        assert body["mutedUntil"] == (NOW + timedelta(minutes=60)).isoformat()
        assert body["email"] == "alice@example.com"

    def test_unmute_clears_muted_until(self):
        api, session, _ = make_api(self.routes({"id": 42, "mutedUntil": "2024-05-01T13:00:00Z"}))
        assert api.mute_notifications(0)
        assert session.calls[-1][3]["mutedUntil"] is None

    def test_local_value_wins_when_api_lags(self):
        api, _, _ = make_api(self.routes({"id": 42, "mutedUntil": None}))
        api.mute_notifications(30)

        status = api.get_mute_status()
        assert status.muted
        assert status.muted_until == (NOW + timedelta(minutes=30)).isoformat()

    def test_expiry_reported_once(self):
        logger.info("ilert api: an expired mute is reported as reset exactly once")
        api, _, clock = make_api(self.routes({"id": 42, "mutedUntil": None}))
        api.mute_notifications(15)

        clock.return_value = NOW + timedelta(minutes=16)
        first = api.get_mute_status()
        second = api.get_mute_status()

        assert not first.muted and first.was_reset
        assert not second.muted and not second.was_reset

    def test_no_user(self):
        api, _, _ = make_api()
        status = api.get_mute_status()
        assert not status.muted
        assert api.mute_notifications(15) is False
