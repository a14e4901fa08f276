"""Data models for the ESWater add-on."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from shared.config_loader import ConfigError


class LoginOutcome(Enum):
    """How sure we are that the portal login worked."""
    SUCCESS = "success"
    FAILURE = "failure"
    AMBIGUOUS = "ambiguous"


@dataclass
class LoginResult:
    outcome: LoginOutcome
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.outcome is LoginOutcome.SUCCESS


@dataclass
class AuthData:
    """Credentials the portal sends along with every usage API call."""

    authorization: Optional[str] = None
    account_id: Optional[str] = None
    meter_serial: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.authorization and self.account_id and self.meter_serial)

    def missing_fields(self) -> List[str]:
        names = {
            "Authorization": self.authorization,
            "AccountId": self.account_id,
            "MeterSerial": self.meter_serial,
        }
        return [name for name, value in names.items() if not value]

    def merge(self, other: "AuthData") -> None:
        """Fill in fields that are still empty, never overwriting captured ones."""
        self.authorization = self.authorization or other.authorization
        self.account_id = self.account_id or other.account_id
        self.meter_serial = self.meter_serial or other.meter_serial


@dataclass
class UsageSummary:
    """Summary of the hourly readings for one day."""

    daily_usage: float
    latest_reading: float
    reading_count: int
    timestamp: Optional[str]
    days_back: int
    min_hour: Optional[float] = None
    max_hour: Optional[float] = None
    mean_hour: Optional[float] = None
    latest_hour: Optional[float] = None
    readings: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def signature(self) -> str:
        """Value used to detect whether the meter data changed."""
        return f"{self.timestamp}|{self.daily_usage}|{self.reading_count}"

    def timestamp_iso(self) -> Optional[str]:
        if not self.timestamp:
            return None
        try:
            return datetime.fromisoformat(self.timestamp.replace("Z", "+00:00")).isoformat()
        except ValueError:
            return self.timestamp


@dataclass
class FetchResult:
    """Outcome of one fetch attempt as reported to MQTT."""

    success: bool
    status: str
    usage: Optional[UsageSummary] = None
    error: Optional[str] = None
    account_id: Optional[str] = None
    meter_serial: Optional[str] = None
    source: str = "hybrid_api"


@dataclass
class EswaterConfig:
    """Typed add-on options."""

    username: str
    password: str
    poll_interval_minutes: int = 60
    browser_executable: str = "/usr/bin/chromium-browser"
    headless: bool = True
    allow_ambiguous_login: bool = True
    min_days_back: int = 3
    max_days_back: int = 7
    log_level: str = "info"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "EswaterConfig":
        username = (config.get("eswater_username") or "").strip()
        password = config.get("eswater_password") or ""
        if not username or not password:
            raise ConfigError("eswater_username and eswater_password are required")
        if "@" not in username:
            raise ConfigError("eswater_username must be the e-mail address used on the portal")

        min_days = max(1, int(config.get("min_days_back", 3)))
        max_days = max(min_days, int(config.get("max_days_back", 7)))
        return cls(
            username=username,
            password=password,
            poll_interval_minutes=max(15, int(config.get("poll_interval_minutes", 60))),
            browser_executable=config.get("browser_executable") or "",
            headless=config.get("headless") is not False,
            allow_ambiguous_login=config.get("allow_ambiguous_login") is not False,
            min_days_back=min_days,
            max_days_back=max_days,
            log_level=config.get("log_level", "info"),
        )


def mask_username(username: str) -> str:
    """Mask an e-mail address for logging (``abc***@example.com``)."""
    local, _, domain = username.partition("@")
    return f"{local[:3]}***@{domain}" if domain else f"{local[:3]}***"
