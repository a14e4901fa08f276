import logging
from datetime import datetime, timedelta, timezone

import pytest

from ilert_oncall.fetchers import (
    collect_sensor_readings,
    fetch_heartbeat_monitors,
    fetch_is_on_call,
    fetch_latest_alert,
    fetch_next_shift,
    fetch_on_call_user,
    fetch_open_incidents,
    fetch_schedule_status,
    mute_reading,
)
from ilert_oncall.models import CalendarEvent, IlertConfig, MuteStatus
from ilert_oncall.schedule import fetch_on_call_schedule, sync_calendar
from shared.config_loader import ConfigError

logger = logging.getLogger("ha-addons-tests")

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

USERS = {
    1: {"id": 1, "firstName": "Alice", "lastName": "Smith", "email": "alice@example.com", "username": "alice"},
    2: {"id": 2, "username": "bob", "email": "Bob@Example.com"},
}


def iso(hours):
    return (NOW + timedelta(hours=hours)).isoformat()


class FakeIlertApi:
    def __init__(self, on_calls=None, schedules=None, shifts=None, alerts=None, incidents=None, monitors=None):
        self.on_calls = on_calls or []
        self.schedules = schedules or []
        self.shifts = shifts or {}
        self.alerts = alerts or []
        self.incidents = incidents or []
        self.monitors = monitors or []
        self.user_lookups = []

    def get_on_calls(self):
        return list(self.on_calls)

    def get_on_calls_in_range(self, start=None, until=None):
        return list(self.on_calls)

    def get_user(self, user_id):
        self.user_lookups.append(user_id)
        return USERS.get(user_id)

    def get_schedules(self):
        return list(self.schedules)

    def get_schedule_shifts(self, schedule_id, start, until):
        return list(self.shifts.get(schedule_id, []))

    def get_alerts(self, params=None):
        return list(self.alerts)

    def get_alert_count_by_state(self, state):
        return sum(1 for alert in self.alerts if alert.get("status") == state)

    def get_open_incidents(self):
        return list(self.incidents)

    def get_heartbeat_monitors(self):
        return list(self.monitors)


def on_call(user_id, start, end, level=1, schedule="Primary"):
    return {
        "user": {"id": user_id},
        "start": iso(start),
        "end": iso(end),
        "escalationLevel": level,
        "schedule": {"name": schedule},
    }


def make_config(**overrides):
    values = dict(api_key="k", email="alice@example.com")
    values.update(overrides)
    return IlertConfig(**values)


class TestIlertConfig:
    def test_missing_values_message(self):
        with pytest.raises(ConfigError) as excinfo:
            IlertConfig.from_config({"api_key": "", "ilert_email": ""})
        assert str(excinfo.value) == (
            "Missing configuration: API key and iLert email. Please configure in the addon settings."
        )

    def test_clamps(self):
        config = IlertConfig.from_config({
            "api_key": "k", "ilert_email": "a@b.c", "calendar_days_ahead": 365, "poll_interval": 5,
        })
        assert config.calendar_days_ahead == 90
        assert config.poll_interval == 30


class TestOnCallFetchers:
    def test_on_call_user(self):
        reading = fetch_on_call_user(FakeIlertApi([on_call(1, -1, 7, level=2)]))
        assert reading.state == "Alice Smith"
        assert reading.attributes["email"] == "alice@example.com"
        assert reading.attributes["escalation_level"] == 2

    def test_nobody_on_call(self):
        assert fetch_on_call_user(FakeIlertApi()).state == "No one on-call"

    def test_unknown_user(self):
        reading = fetch_on_call_user(FakeIlertApi([on_call(99, -1, 7)]))
        assert reading.state == "User 99"
        assert reading.attributes["user_id"] == 99

    def test_errors_become_error_state(self):
        logger.info("ilert fetchers: exceptions never escape a fetcher")
        api = FakeIlertApi([{"start": iso(0)}])
        api.get_user = None
        reading = fetch_on_call_user(api)
        assert reading.state == "error"
        assert "error" in reading.attributes

    def test_next_shift(self):
        api = FakeIlertApi([on_call(1, -1, 7), on_call(2, 7, 19)])
        reading = fetch_next_shift(api)
        assert reading.state == iso(7)
        assert reading.attributes["user_name"] == "bob"

    def test_next_shift_unknown(self):
        assert fetch_next_shift(FakeIlertApi([on_call(1, -1, 7)])).state == "unknown"

    def test_schedule_status(self):
        reading = fetch_schedule_status(FakeIlertApi([on_call(1, -1, 7)]))
        assert reading.state == "On-call"
        assert reading.attributes == {"on_call_count": 1}

    def test_is_on_call_matches_email_case_insensitively(self):
        api = FakeIlertApi([on_call(1, -1, 7), on_call(2, -1, 7)])
        assert fetch_is_on_call(api, "bob@example.com").state == "ON"
        assert fetch_is_on_call(api, "carol@example.com").state == "OFF"


class TestAlertFetchers:
    def test_open_incidents_lists_top_ten(self):
        incidents = [{"id": i, "summary": f"Incident {i}", "status": "PENDING"} for i in range(12)]
        reading = fetch_open_incidents(FakeIlertApi(incidents=incidents))
        assert reading.state == "12"
        assert len(reading.attributes["incident_list"]) == 10

    def test_latest_alert(self):
        alerts = [{"id": 5, "alertKey": "disk-full", "status": "PENDING", "priority": "HIGH"}]
        reading = fetch_latest_alert(FakeIlertApi(alerts=alerts))
        assert reading.state == "disk-full"
        assert reading.attributes["source"] == "Unknown"
        assert reading.attributes["priority"] == "HIGH"

    def test_no_alerts(self):
        assert fetch_latest_alert(FakeIlertApi()).state == "No alerts"

    def test_heartbeat_monitors(self):
        monitors = [
            {"name": "a", "state": "HEALTHY"},
            {"name": "b", "state": "EXPIRED"},
            {"name": "c", "state": "ALERTING"},
            {"name": "d", "state": "PAUSED"},
        ]
        reading = fetch_heartbeat_monitors(FakeIlertApi(monitors=monitors))
        assert reading.state == "4"
        assert (reading.attributes["healthy"], reading.attributes["unhealthy"], reading.attributes["disabled"]) == (1, 2, 1)

    def test_mute_reading(self):
        assert mute_reading(MuteStatus(muted=True, muted_until="x")).state == "Muted"
        assert mute_reading(MuteStatus(muted=False)).state == "Active"

    def test_collect_all(self):
        api = FakeIlertApi([on_call(1, -1, 7)], alerts=[{"status": "PENDING"}, {"status": "ACCEPTED"}])
        readings = collect_sensor_readings(api, make_config())
        assert readings["pending_alerts"].state == "1"
        assert readings["accepted_alerts"].state == "1"
        assert readings["is_on_call"].state == "ON"
        assert len(readings) == 10


class TestOnCallSchedule:
    def test_shift_matching_on_call_is_skipped(self):
        api = FakeIlertApi(
            on_calls=[on_call(1, -1, 7, schedule="Primary")],
            schedules=[{"id": 10, "name": "Primary"}],
            shifts={10: [
                {"user": {"id": 1}, "start": iso(-1), "end": iso(7)},
                {"user": {"id": 2}, "start": iso(7), "end": iso(19)},
            ]},
        )
        schedule = fetch_on_call_schedule(api, make_config(), NOW)

        assert [event.summary for event in schedule.events] == ["Alice Smith - On-Call", "bob - On-Call"]
        assert schedule.current_event.summary == "Alice Smith - On-Call"
        assert "Shift Type: Regular" in schedule.events[1].description
        assert "Escalation Level: 1" in schedule.events[0].description

    def test_shift_from_other_schedule_kept(self):
        api = FakeIlertApi(
            on_calls=[on_call(1, -1, 7, schedule="Primary")],
            schedules=[{"id": 11, "name": "Secondary"}],
            shifts={11: [{"user": {"id": 2}, "start": iso(-1), "end": iso(7)}]},
        )
        schedule = fetch_on_call_schedule(api, make_config(), NOW)
        assert len(schedule.events) == 2

    def test_exact_duplicates_removed_and_sorted(self):
        api = FakeIlertApi(on_calls=[on_call(2, 24, 30), on_call(1, 0, 8), on_call(1, 0, 8)])
        schedule = fetch_on_call_schedule(api, make_config(), NOW)
        assert [event.start for event in schedule.events] == [NOW, NOW + timedelta(hours=24)]

    def test_personal_filter(self):
        logger.info("ilert schedule: personal filter keeps only the configured user")
        api = FakeIlertApi(on_calls=[on_call(1, 0, 8), on_call(2, 8, 16)])
        schedule = fetch_on_call_schedule(api, make_config(email="BOB@example.com", calendar_personal_only=True), NOW)

        assert [event.summary for event in schedule.events] == ["bob - On-Call"]
        assert schedule.filtered_count == 1


class FakeHaApi:
    def __init__(self, existing):
        self.existing = existing
        self.created = []

    def get_calendar_events(self, entity_id, start, end):
        return self.existing

    def create_calendar_event(self, entity_id, summary, description, start, end):
        self.created.append((summary, start))
        return True


class TestSyncCalendar:
    def test_creates_only_missing_events(self):
        events = [
            CalendarEvent(NOW, NOW + timedelta(hours=8), "Alice Smith - On-Call"),
            CalendarEvent(NOW + timedelta(hours=8), NOW + timedelta(hours=16), "bob - On-Call"),
        ]
        ha_api = FakeHaApi([
            {"summary": "Alice Smith - On-Call", "start": {"dateTime": (NOW + timedelta(seconds=30)).isoformat()}},
        ])

        created = sync_calendar(ha_api, "calendar.oncall", events, NOW, NOW + timedelta(days=28))

        assert created == 1
        assert ha_api.created == [("bob - On-Call", NOW + timedelta(hours=8))]

    def test_same_summary_different_time_is_created(self):
        events = [CalendarEvent(NOW, NOW + timedelta(hours=8), "Alice Smith - On-Call")]
        ha_api = FakeHaApi([{"summary": "Alice Smith - On-Call", "start": {"dateTime": iso(24)}}])
        assert sync_calendar(ha_api, "calendar.oncall", events, NOW, NOW + timedelta(days=1)) == 1

    def test_unreadable_calendar_creates_nothing(self):
        events = [CalendarEvent(NOW, NOW + timedelta(hours=8), "Alice Smith - On-Call")]
        ha_api = FakeHaApi(None)

        for _ in range(2):
            assert sync_calendar(ha_api, "calendar.oncall", events, NOW, NOW + timedelta(days=1)) == 0

        assert ha_api.created == []
