"""iLert REST API client."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests
from dateutil.parser import isoparse

from .models import MuteStatus

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.ilert.com/api"
PAGE_SIZE = 100


class IlertApiError(Exception):
    """An iLert API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = isoparse(value)
    except (ValueError, OverflowError):
        logger.debug("Could not parse timestamp %r", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class ILertApi:
    """Client for the iLert REST API.

    User lookups are cached until :meth:`clear_user_cache` is called, which the
    service does at the start of every poll cycle.
    """

    def __init__(
        self,
        api_key: str,
        email: str = "",
        base_url: str = API_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = 10,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.email = email
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._clock = clock
        self._session = session or requests.Session()
        token = api_key if api_key.lower().startswith("bearer ") else f"Bearer {api_key}"
        self._session.headers.update({
            "Authorization": token,
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        self._user_cache: Dict[Any, Optional[Dict[str, Any]]] = {}
        self._last_known_muted_until: Optional[str] = None
        self._was_muted = False

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise IlertApiError(f"{method} {path} failed: {e}") from e

        if not response.ok:
            raise IlertApiError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        logger.debug("%s %s - Status %d", method, path, response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise IlertApiError(f"{method} {path} returned invalid JSON") from e

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", path, params=params)

    def clear_user_cache(self) -> None:
        self._user_cache.clear()

    # Schedules and on-calls

    def get_schedules(self) -> List[Dict[str, Any]]:
        return self._get("/schedules", {"include": ["currentShift", "nextShift"]}) or []

    def get_schedule_shifts(self, schedule_id: Any, start: str, until: str) -> List[Dict[str, Any]]:
        return self._get(f"/schedules/{schedule_id}/shifts", {"from": start, "until": until}) or []

    def get_on_calls(self) -> List[Dict[str, Any]]:
        try:
            return self._get("/on-calls") or []
        except IlertApiError as e:
            logger.warning("Failed to fetch on-calls: %s", e)
            return []

    def get_on_calls_in_range(self, start: Optional[str] = None, until: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {key: value for key, value in (("from", start), ("until", until)) if value}
        try:
            return self._get("/on-calls", params) or []
        except IlertApiError as e:
            logger.warning("On-calls with date range failed (%s), falling back to current on-calls", e)
            return self.get_on_calls()

    # Users

    def get_user(self, user_id: Any) -> Optional[Dict[str, Any]]:
        if user_id in self._user_cache:
            return self._user_cache[user_id]
        try:
            user = self._get(f"/users/{user_id}")
        except IlertApiError as e:
            logger.warning("Failed to fetch user %s: %s", user_id, e)
            user = None
        self._user_cache[user_id] = user
        return user

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        try:
            return self._get("/users/current")
        except IlertApiError as e:
            logger.error("Failed to fetch current user: %s", e)
            return None

    # Incidents and alerts

    def get_open_incidents(self) -> List[Dict[str, Any]]:
        try:
            return self._get("/incidents", {"states": ["ACCEPTED", "PENDING"]}) or []
        except IlertApiError as e:
            logger.warning("Failed to fetch open incidents: %s", e)
            return []

    def get_alerts(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return self._get("/alerts", params or {}) or []

    def get_open_alerts(self) -> List[Dict[str, Any]]:
        return self.get_alerts({"states": ["PENDING", "ACCEPTED"]})

    def get_alert_count_by_state(self, state: str) -> int:
        """Count alerts in ``state`` by paging through the alert list.

        Paging stops at the first page shorter than the page size.
        """
        total = 0
        start_index = 0
        try:
            while True:
                page = self.get_alerts({
                    "states": state,
                    "max-results": PAGE_SIZE,
                    "start-index": start_index,
                })
                total += len(page)
                if len(page) < PAGE_SIZE:
                    break
                start_index += PAGE_SIZE
        except IlertApiError as e:
            logger.warning("Failed to count %s alerts: %s", state, e)
            return 0
        logger.debug("%s alerts: %d", state, total)
        return total

    def accept_alert(self, alert_id: Any) -> bool:
        try:
            self._request("PUT", f"/alerts/{alert_id}/accept")
        except IlertApiError as e:
            logger.error("Failed to accept alert %s: %s", alert_id, e)
            return False
        logger.info("Accepted alert %s", alert_id)
        return True

    def accept_all_pending_alerts(self) -> int:
        """Accept every pending alert (first page of 100).

        Returns:
            Number of alerts accepted
        """
        pending = self.get_alerts({"states": "PENDING", "max-results": PAGE_SIZE})
        if not pending:
            logger.info("No pending alerts to accept")
            return 0
        accepted = sum(1 for alert in pending if self.accept_alert(alert.get("id")))
        logger.info("Accepted %d of %d pending alerts", accepted, len(pending))
        return accepted

    # Notification mute

    def mute_notifications(self, minutes: int) -> bool:
        """Mute notifications for ``minutes``; 0 unmutes."""
        user = self.get_current_user()
        if not user:
            return False

        muted_until = None
        if minutes > 0:
            muted_until = (self._clock() + timedelta(minutes=minutes)).isoformat()

        payload = dict(user)
        payload["mutedUntil"] = muted_until
        try:
            self._request("PUT", f"/users/{user['id']}", json=payload)
        except IlertApiError as e:
            logger.error("Failed to update mute setting: %s", e)
            return False

        # The API can lag behind, keep our own copy
        self._last_known_muted_until = muted_until
        self._was_muted = muted_until is not None
        logger.info("Notifications %s", f"muted until {muted_until}" if muted_until else "unmuted")
        return True

    def get_mute_status(self) -> MuteStatus:
        user = self.get_current_user()
        if not user:
            return MuteStatus(muted=False)

        effective = user.get("mutedUntil")
        if self._last_known_muted_until:
            local_time = _parse_time(self._last_known_muted_until)
            api_time = _parse_time(effective)
            if api_time is None or (local_time and local_time > api_time):
                effective = self._last_known_muted_until

        until = _parse_time(effective)
        muted = until is not None and until > self._clock()
        was_reset = not muted and self._was_muted
        self._was_muted = muted
        if not muted:
            self._last_known_muted_until = None

        return MuteStatus(muted=muted, muted_until=effective if muted else None, was_reset=was_reset)

    # Heartbeats

    def get_heartbeat_monitors(self) -> List[Dict[str, Any]]:
        try:
            return self._get("/heartbeat-monitors") or []
        except IlertApiError as e:
            logger.warning("Failed to fetch heartbeat monitors: %s", e)
            return []
