"""Data models for the iLert add-on."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.config_loader import ConfigError


@dataclass
class IlertConfig:
    api_key: str
    email: str
    poll_interval: int = 300
    calendar_entity: str = ""
    calendar_personal_only: bool = False
    calendar_days_ahead: int = 28
    log_level: str = "info"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "IlertConfig":
        api_key = (config.get("api_key") or "").strip()
        email = (config.get("ilert_email") or "").strip()
        missing = [name for name, value in (("API key", api_key), ("iLert email", email)) if not value]
        if missing:
            raise ConfigError(
                f"Missing configuration: {' and '.join(missing)}. Please configure in the addon settings."
            )

        try:
            days_ahead = int(config.get("calendar_days_ahead") or 28)
        except (TypeError, ValueError):
            days_ahead = 28

        return cls(
            api_key=api_key,
            email=email,
            poll_interval=max(30, int(config.get("poll_interval") or 300)),
            calendar_entity=(config.get("calendar_entity") or "").strip(),
            calendar_personal_only=bool(config.get("calendar_personal_only")),
            calendar_days_ahead=max(1, min(90, days_ahead)),
            log_level=config.get("log_level", "info"),
        )


@dataclass
class SensorReading:
    """State and attributes produced by one fetcher."""

    state: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    def as_tuple(self):
        return self.state, self.attributes


@dataclass
class MuteStatus:
    muted: bool
    muted_until: Optional[str] = None
    was_reset: bool = False


@dataclass
class CalendarEvent:
    start: datetime
    end: datetime
    summary: str
    description: str = ""
    schedule: str = ""

    @property
    def key(self) -> str:
        return f"{self.start.isoformat()}|{self.end.isoformat()}|{self.summary}"

    def covers(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "summary": self.summary,
            "description": self.description,
        }


@dataclass
class OnCallSchedule:
    events: List[CalendarEvent] = field(default_factory=list)
    current_event: Optional[CalendarEvent] = None
    filtered_count: int = 0


def user_display_name(user: Optional[Dict[str, Any]], fallback: str = "Unknown") -> str:
    """``First Last`` when a first name is known, else username or e-mail."""
    if not user:
        return fallback
    if user.get("firstName"):
        return f"{user['firstName']} {user.get('lastName') or ''}".strip()
    return user.get("username") or user.get("email") or fallback
