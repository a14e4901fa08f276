"""Sensor fetchers.

Each fetcher turns one or two API calls into a :class:`SensorReading`.
Fetchers never raise: an unexpected failure becomes the sensor's error
state with the message in the ``error`` attribute.
"""

import functools
import logging
from typing import Any, Callable, Dict, List, Optional

from .ilert_api import ILertApi
from .models import IlertConfig, MuteStatus, SensorReading, user_display_name

logger = logging.getLogger(__name__)

INCIDENT_LIST_LIMIT = 10
UNHEALTHY_STATES = ("ALERTING", "EXPIRED")
DISABLED_STATES = ("PAUSED", "DISABLED")


def _fallback_on_error(error_state: str):
    """Return ``SensorReading(error_state, {"error": ...})`` if the fetcher raises."""
    def decorator(func: Callable[..., SensorReading]) -> Callable[..., SensorReading]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> SensorReading:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.error("Error in %s: %s", func.__name__, e)
                return SensorReading(error_state, {"error": str(e)})
        return wrapper
    return decorator


def _user_id(entry: Dict[str, Any]) -> Any:
    return (entry.get("user") or {}).get("id")


@_fallback_on_error("error")
def fetch_on_call_user(api: ILertApi) -> SensorReading:
    on_calls = api.get_on_calls()
    if not on_calls:
        return SensorReading("No one on-call")

    current = on_calls[0]
    user_id = _user_id(current)
    user = api.get_user(user_id)
    if not user:
        return SensorReading(f"User {user_id}", {
            "user_id": user_id,
            "escalation_level": current.get("escalationLevel"),
            "shift_start": current.get("start"),
            "shift_end": current.get("end"),
        })

    return SensorReading(user_display_name(user), {
        "email": user.get("email"),
        "username": user.get("username"),
        "escalation_level": current.get("escalationLevel"),
        "shift_start": current.get("start"),
        "shift_end": current.get("end"),
    })


@_fallback_on_error("unknown")
def fetch_next_shift(api: ILertApi) -> SensorReading:
    on_calls = api.get_on_calls()
    if len(on_calls) < 2:
        return SensorReading("unknown")

    upcoming = on_calls[1]
    user_id = _user_id(upcoming)
    user = api.get_user(user_id)
    return SensorReading(upcoming.get("start") or "unknown", {
        "user_name": user_display_name(user, fallback=f"User {user_id}"),
        "shift_start": upcoming.get("start"),
        "shift_end": upcoming.get("end"),
        "escalation_level": upcoming.get("escalationLevel"),
    })


@_fallback_on_error("unknown")
def fetch_current_shift_end(api: ILertApi) -> SensorReading:
    on_calls = api.get_on_calls()
    if not on_calls:
        return SensorReading("unknown")
    current = on_calls[0]
    return SensorReading(current.get("end") or "unknown", {
        "shift_start": current.get("start"),
        "escalation_level": current.get("escalationLevel"),
    })


@_fallback_on_error("error")
def fetch_open_incidents(api: ILertApi) -> SensorReading:
    incidents = api.get_open_incidents()
    return SensorReading(str(len(incidents)), {
        "incident_list": [
            {
                "id": incident.get("id"),
                "summary": incident.get("summary"),
                "status": incident.get("status"),
                "created_at": incident.get("reportTime") or incident.get("createdAt"),
            }
            for incident in incidents[:INCIDENT_LIST_LIMIT]
        ],
    })


def _alert_count(api: ILertApi, state: str) -> SensorReading:
    return SensorReading(str(api.get_alert_count_by_state(state)), {"alert_state": state})


@_fallback_on_error("error")
def fetch_pending_alerts(api: ILertApi) -> SensorReading:
    return _alert_count(api, "PENDING")


@_fallback_on_error("error")
def fetch_accepted_alerts(api: ILertApi) -> SensorReading:
    return _alert_count(api, "ACCEPTED")


@_fallback_on_error("error")
def fetch_schedule_status(api: ILertApi) -> SensorReading:
    on_calls = api.get_on_calls()
    return SensorReading("On-call" if on_calls else "Not on-call", {"on_call_count": len(on_calls)})


@_fallback_on_error("error")
def fetch_latest_alert(api: ILertApi) -> SensorReading:
    alerts = api.get_alerts({"start-index": 0, "max-results": 1})
    if not alerts:
        return SensorReading("No alerts")

    alert = alerts[0]
    return SensorReading(alert.get("summary") or alert.get("alertKey") or "Untitled Alert", {
        "id": alert.get("id"),
        "status": alert.get("status"),
        "created_at": alert.get("reportTime") or alert.get("createdAt"),
        "source": (alert.get("alertSource") or {}).get("name") or "Unknown",
        "priority": alert.get("priority"),
    })


@_fallback_on_error("error")
def fetch_heartbeat_monitors(api: ILertApi) -> SensorReading:
    monitors = api.get_heartbeat_monitors()
    states = [monitor.get("state") for monitor in monitors]
    return SensorReading(str(len(monitors)), {
        "healthy": states.count("HEALTHY"),
        "unhealthy": sum(1 for state in states if state in UNHEALTHY_STATES),
        "disabled": sum(1 for state in states if state in DISABLED_STATES),
        "monitors": [
            {
                "name": monitor.get("name"),
                "status": monitor.get("state"),
                "last_ping": monitor.get("lastPingAt"),
            }
            for monitor in monitors
        ],
    })


@_fallback_on_error("OFF")
def fetch_is_on_call(api: ILertApi, email: str) -> SensorReading:
    """``ON`` while the user with ``email`` is in the current on-call list."""
    for on_call in api.get_on_calls():
        user = api.get_user(_user_id(on_call))
        if user and (user.get("email") or "").lower() == email.lower():
            logger.debug("%s is on-call", email)
            return SensorReading("ON", {
                "user_name": user_display_name(user),
                "shift_end": on_call.get("end"),
                "escalation_level": on_call.get("escalationLevel"),
            })
    return SensorReading("OFF")


def mute_reading(status: MuteStatus) -> SensorReading:
    if status.muted:
        return SensorReading("Muted", {"muted_until": status.muted_until})
    return SensorReading("Active", {"muted_until": None})


def collect_sensor_readings(api: ILertApi, config: IlertConfig) -> Dict[str, SensorReading]:
    """Run every fetcher, keyed by sensor object id."""
    fetchers: List[tuple] = [
        ("on_call_user", fetch_on_call_user, ()),
        ("next_shift", fetch_next_shift, ()),
        ("current_shift_end", fetch_current_shift_end, ()),
        ("open_incidents", fetch_open_incidents, ()),
        ("pending_alerts", fetch_pending_alerts, ()),
        ("accepted_alerts", fetch_accepted_alerts, ()),
        ("schedule_status", fetch_schedule_status, ()),
        ("latest_alert", fetch_latest_alert, ()),
        ("heartbeat_monitors", fetch_heartbeat_monitors, ()),
        ("is_on_call", fetch_is_on_call, (config.email,)),
    ]
    readings: Dict[str, SensorReading] = {}
    for object_id, fetcher, extra in fetchers:
        readings[object_id] = fetcher(api, *extra)
    return readings


def describe(readings: Dict[str, SensorReading], keys: Optional[List[str]] = None) -> str:
    keys = keys or ["on_call_user", "pending_alerts", "open_incidents"]
    return ", ".join(f"{key}={readings[key].state}" for key in keys if key in readings)
