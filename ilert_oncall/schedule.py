"""On-call schedule collection and Home Assistant calendar sync."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse

from shared.ha_api import HomeAssistantApi

from .ilert_api import IlertApiError, ILertApi
from .models import CalendarEvent, IlertConfig, OnCallSchedule, SensorReading, user_display_name

logger = logging.getLogger(__name__)

MATCH_TOLERANCE = timedelta(minutes=1)


def parse_time(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = isoparse(value) if isinstance(value, str) else value
    except (ValueError, OverflowError):
        logger.warning("Ignoring unparseable timestamp %r", value)
        return None
    if not isinstance(parsed, datetime):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _close(a: datetime, b: datetime) -> bool:
    return abs(a - b) < MATCH_TOLERANCE


def user_matches(api: ILertApi, user: Optional[Dict[str, Any]], email: str) -> bool:
    """Compare a (possibly partial) user reference with ``email``.

    When the reference only carries an id the full user is looked up.
    """
    if not user or not email:
        return False
    wanted = email.lower()
    if user.get("email"):
        return user["email"].lower() == wanted
    if user.get("id") is not None:
        full_user = api.get_user(user["id"])
        return bool(full_user and (full_user.get("email") or "").lower() == wanted)
    return False


def _display_name(api: ILertApi, user: Optional[Dict[str, Any]], fallback: str) -> str:
    if not user:
        return "Unknown"
    full_user = api.get_user(user.get("id")) if user.get("id") is not None else None
    if full_user:
        return user_display_name(full_user)
    return user.get("username") or user.get("email") or fallback


def event_from_on_call(api: ILertApi, on_call: Dict[str, Any]) -> Optional[CalendarEvent]:
    start, end = parse_time(on_call.get("start")), parse_time(on_call.get("end"))
    if start is None or end is None:
        return None
    name = _display_name(api, on_call.get("user"), "Unknown")
    schedule = (on_call.get("schedule") or {}).get("name") or "On-Call"
    return CalendarEvent(
        start=start,
        end=end,
        summary=f"{name} - On-Call",
        description=(
            f"On-call: {name}\nSchedule: {schedule}\n"
            f"Escalation Level: {on_call.get('escalationLevel') or 1}"
        ),
        schedule=schedule,
    )


def event_from_shift(api: ILertApi, shift: Dict[str, Any], schedule: Dict[str, Any]) -> Optional[CalendarEvent]:
    start, end = parse_time(shift.get("start")), parse_time(shift.get("end"))
    if start is None or end is None:
        return None
    user = shift.get("user")
    name = _display_name(api, user, f"User {(user or {}).get('id')}")
    schedule_name = schedule.get("name") or "On-Call"
    return CalendarEvent(
        start=start,
        end=end,
        summary=f"{name} - On-Call",
        description=(
            f"On-call: {name}\nSchedule: {schedule_name}\n"
            f"Shift Type: {shift.get('shiftType') or 'Regular'}"
        ),
        schedule=schedule_name,
    )


def _duplicates_existing(events: List[CalendarEvent], start: datetime, end: datetime, schedule: str) -> bool:
    return any(
        _close(event.start, start) and _close(event.end, end) and event.schedule == schedule
        for event in events
    )


def fetch_on_call_schedule(
    api: ILertApi,
    config: IlertConfig,
    now: Optional[datetime] = None,
) -> OnCallSchedule:
    """Collect on-call events for the next ``calendar_days_ahead`` days.

    Current on-calls come first; schedule shifts fill in the rest, skipping
    any shift that an on-call entry already covers.
    """
    now = now or datetime.now(timezone.utc)
    until = now + timedelta(days=config.calendar_days_ahead)
    start_iso, until_iso = now.isoformat(), until.isoformat()

    personal_only = config.calendar_personal_only and bool(config.email)
    if config.calendar_personal_only and not config.email:
        logger.warning("Calendar personal filter enabled but no iLert email configured")

    result = OnCallSchedule()

    def include(user: Optional[Dict[str, Any]]) -> bool:
        if personal_only and not user_matches(api, user, config.email):
            result.filtered_count += 1
            return False
        return True

    for on_call in api.get_on_calls_in_range(start_iso, until_iso):
        if not include(on_call.get("user")):
            continue
        event = event_from_on_call(api, on_call)
        if event:
            result.events.append(event)

    try:
        schedules = api.get_schedules()
    except IlertApiError as e:
        logger.warning("Failed to fetch schedules: %s", e)
        schedules = []

    for schedule in schedules:
        try:
            shifts = api.get_schedule_shifts(schedule.get("id"), start_iso, until_iso)
        except IlertApiError as e:
            logger.warning("Failed to fetch shifts for schedule %s: %s", schedule.get("name"), e)
            continue

        for shift in shifts:
            if not include(shift.get("user")):
                continue
            start, end = parse_time(shift.get("start")), parse_time(shift.get("end"))
            if start is None or end is None:
                continue
            if _duplicates_existing(result.events, start, end, schedule.get("name") or "On-Call"):
                continue
            event = event_from_shift(api, shift, schedule)
            if event:
                result.events.append(event)

    unique: Dict[str, CalendarEvent] = {}
    for event in result.events:
        unique.setdefault(event.key, event)
    result.events = sorted(unique.values(), key=lambda event: event.start)
    result.current_event = next((event for event in result.events if event.covers(now)), None)

    logger.info(
        "Fetched %d on-call events over %d days%s, current: %s",
        len(result.events),
        config.calendar_days_ahead,
        f" ({result.filtered_count} filtered out)" if personal_only else "",
        result.current_event.summary if result.current_event else "none",
    )
    return result


def schedule_reading(schedule: OnCallSchedule) -> SensorReading:
    """State and attributes for the on-call schedule sensor."""
    current = schedule.current_event
    return SensorReading(current.summary if current else "No active shift", {
        "current_event": current.to_dict() if current else None,
        "event_count": len(schedule.events),
        "filtered_count": schedule.filtered_count,
        "events": [event.to_dict() for event in schedule.events],
    })


def _ha_event_start(event: Dict[str, Any]) -> Optional[datetime]:
    start = event.get("start")
    if isinstance(start, dict):
        start = start.get("dateTime") or start.get("date")
    return parse_time(start)


def sync_calendar(
    ha_api: HomeAssistantApi,
    entity_id: str,
    events: List[CalendarEvent],
    start: datetime,
    end: datetime,
) -> int:
    """Create the events missing from a Home Assistant calendar.

    An event counts as present when the calendar has one with the same summary
    starting within a minute of it.

    Nothing is created when the calendar cannot be listed, since every event
    would look missing.

    Returns:
        Number of events created
    """
    listed = ha_api.get_calendar_events(entity_id, start, end)
    if listed is None:
        logger.warning("Skipping calendar sync, could not list events of %s", entity_id)
        return 0
    existing = [(item.get("summary"), _ha_event_start(item)) for item in listed]

    created = 0
    for event in events:
        present = any(
            summary == event.summary and existing_start is not None and _close(existing_start, event.start)
            for summary, existing_start in existing
        )
        if present:
            continue
        if ha_api.create_calendar_event(entity_id, event.summary, event.description, event.start, event.end):
            existing.append((event.summary, event.start))
            created += 1

    if created:
        logger.info("Added %d on-call events to %s", created, entity_id)
    else:
        logger.debug("Calendar %s already up to date", entity_id)
    return created
