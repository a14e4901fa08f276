"""Calendar entry summarising a batch of DNS record updates."""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from shared.ha_api import HomeAssistantApi

from .models import UpdateRecord

logger = logging.getLogger(__name__)

EVENT_SUMMARY = "DNS Records Updated"
EVENT_DURATION = timedelta(minutes=15)


def build_dns_update_event(
    records: List[UpdateRecord],
    now: Optional[datetime] = None,
) -> Tuple[str, str, datetime, datetime]:
    """Return (summary, description, start, end) for the update batch."""
    now = now or datetime.now(timezone.utc)
    lines = "\n".join(record.describe() for record in records)
    description = (
        "Azure Dynamic DNS updated the following records:\n\n"
        f"{lines}\n\n"
        f"Timestamp: {now.isoformat()}"
    )
    return EVENT_SUMMARY, description, now, now + EVENT_DURATION


def create_dns_update_calendar_event(
    ha_api: HomeAssistantApi,
    calendar_entity: str,
    records: List[UpdateRecord],
    now: Optional[datetime] = None,
) -> bool:
    if not calendar_entity or not records:
        return False

    summary, description, start, end = build_dns_update_event(records, now)
    created = ha_api.create_calendar_event(calendar_entity, summary, description, start, end)
    if not created:
        logger.warning("Could not create calendar event in %s", calendar_entity)
    return created
