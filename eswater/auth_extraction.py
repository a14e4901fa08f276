"""Parsing helpers for the ESWater portal login flow.

Everything here works on plain strings and dicts so it can be tested
without a browser.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from .models import AuthData, LoginOutcome, LoginResult, UsageSummary

logger = logging.getLogger(__name__)

JWT_PATTERN = re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")
ACCOUNT_ID_PATTERN = re.compile(r'"?AccountId"?\s*[:=]\s*"?(\d+)"?', re.IGNORECASE)
METER_SERIAL_PATTERN = re.compile(r'"?MeterSerial"?\s*[:=]\s*"?([A-Z0-9]+)"?', re.IGNORECASE)

TIMESTAMP_FIELDS = ("Date", "DateTime", "Timestamp")


def extract_auth_from_request_body(post_data: Optional[str]) -> AuthData:
    """Read the auth fields from an intercepted JSON request body."""
    if not post_data:
        return AuthData()
    try:
        data = json.loads(post_data)
    except ValueError:
        logger.debug("Could not parse intercepted request body")
        return AuthData()
    if not isinstance(data, dict):
        return AuthData()

    def _text(value: Any) -> Optional[str]:
        return str(value) if value not in (None, "") else None

    return AuthData(
        authorization=_text(data.get("Authorization")),
        account_id=_text(data.get("AccountId")),
        meter_serial=_text(data.get("MeterSerial")),
    )


def extract_auth_from_scripts(scripts: Iterable[str]) -> AuthData:
    """Search inline script text for a JWT, account id and meter serial.

    The first match of each pattern wins.
    """
    auth = AuthData()
    for content in scripts:
        if not content:
            continue
        if not auth.authorization:
            match = JWT_PATTERN.search(content)
            if match:
                auth.authorization = match.group(0)
        if not auth.account_id:
            match = ACCOUNT_ID_PATTERN.search(content)
            if match:
                auth.account_id = match.group(1)
        if not auth.meter_serial:
            match = METER_SERIAL_PATTERN.search(content)
            if match:
                auth.meter_serial = match.group(1)
        if auth.complete:
            break
    return auth


def classify_login_page(url: str, page: Dict[str, Any]) -> LoginResult:
    """Decide the login outcome from a page analysis snapshot.

    ``page`` carries ``errors`` (visible error texts), ``hasAccountContent``,
    ``stillOnLoginForm`` and ``title`` as collected in the browser.
    """
    errors: List[str] = [e for e in page.get("errors") or [] if e]
    if errors:
        return LoginResult(LoginOutcome.FAILURE, "Login failed with errors: " + ", ".join(errors))

    if page.get("hasAccountContent"):
        return LoginResult(LoginOutcome.SUCCESS, "Account content found")

    if page.get("stillOnLoginForm") and "login" in url.lower():
        return LoginResult(
            LoginOutcome.FAILURE,
            f"Login failed - still on login page. Page title: {page.get('title', '')}",
        )

    return LoginResult(LoginOutcome.AMBIGUOUS, f"Login status unclear at {url}")


def _reading_timestamp(reading: Dict[str, Any]) -> Optional[str]:
    for name in TIMESTAMP_FIELDS:
        if reading.get(name):
            return str(reading[name])
    return None


def _litres(reading: Dict[str, Any]) -> Optional[float]:
    value = reading.get("LitreValue")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def summarize_readings(readings: List[Dict[str, Any]], days_back: int) -> UsageSummary:
    """Aggregate hourly readings into the daily figures we publish."""
    values = [v for v in (_litres(r) for r in readings) if v is not None]

    latest = 0.0
    for value in reversed(values):
        if value > 0:
            latest = value
            break

    last = readings[-1] if readings else {}
    return UsageSummary(
        daily_usage=round(sum(values), 2),
        latest_reading=round(latest, 2),
        reading_count=len(readings),
        timestamp=_reading_timestamp(last) if last else None,
        days_back=days_back,
        min_hour=min(values) if values else None,
        max_hour=max(values) if values else None,
        mean_hour=round(sum(values) / len(values), 2) if values else None,
        latest_hour=_litres(last) if last else None,
        readings=list(readings),
    )
