"""
Pydantic models for the appointment monitoring domain.

Pydantic-Modelle für Termine, Prüfergebnisse und Status.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import ConfigurationError


CANONICAL_DATE_RE = re.compile(r"^\d{4}/\d{2}/\d{2}$")


def validate_date(value: str) -> str:
    """
    Return the canonical ``YYYY/MM/DD`` key or raise ConfigurationError.

    Only zero-padded ASCII digits of an existing calendar day are accepted.
    """
    if not isinstance(value, str) or not CANONICAL_DATE_RE.match(value) or not value.isascii():
        raise ConfigurationError(f"Invalid date format {value!r}, expected YYYY/MM/DD")
    try:
        datetime.strptime(value, "%Y/%m/%d")
    except ValueError as e:
        raise ConfigurationError(f"Invalid calendar date {value!r}") from e
    return value


def display_date(canonical: str) -> str:
    """2025/08/15 -> 15.08.2025"""
    yyyy, mm, dd = canonical.split("/")
    return f"{dd}.{mm}.{yyyy}"


def split_date(canonical: str) -> tuple[int, int, int]:
    yyyy, mm, dd = canonical.split("/")
    return int(yyyy), int(mm), int(dd)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


MAX_INTERVAL_SECONDS = 3600


def validate_interval(minutes: int, seconds: int) -> int:
    """Return the period in seconds or raise ConfigurationError."""
    # bool is an int subclass
    if any(isinstance(v, bool) or not isinstance(v, int) for v in (minutes, seconds)):
        raise ConfigurationError("Interval must be given as integers")
    if not 0 <= minutes <= 60:
        raise ConfigurationError(f"Minutes must be between 0 and 60, got {minutes}")
    if not 0 <= seconds <= 59:
        raise ConfigurationError(f"Seconds must be between 0 and 59, got {seconds}")
    total = minutes * 60 + seconds
    if not 1 <= total <= MAX_INTERVAL_SECONDS:
        raise ConfigurationError(
            f"Interval must be between 1 second and {MAX_INTERVAL_SECONDS // 60} minutes, got {total}s"
        )
    return total


class AppointmentInfo(BaseModel):
    """Best-effort details read from an available calendar cell."""

    time: str = "Not specified"
    type: str = "Standard"


class CheckResult(BaseModel):
    """Availability of one watched date in one cycle."""

    date: str
    available: bool
    timestamp: datetime = Field(default_factory=utc_now)
    reason: Optional[str] = None
    classes: Optional[str] = None
    metadata: Optional[AppointmentInfo] = None

    @property
    def display_date(self) -> str:
        return display_date(self.date)


class MonitoringStatus(BaseModel):
    is_active: bool = False
    is_initializing: bool = False
    is_currently_checking: bool = False
    last_check_time: Optional[datetime] = None
    interval_minutes: int = 0
    interval_seconds: int = 0
    target_url: str = ""
    last_error: Optional[str] = None
    checks_count: int = 0


class EventType(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    NEW_AVAILABLE = "new_available"


class AppointmentEvent(BaseModel):
    type: EventType
    date: str
    message: str
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: Optional[AppointmentInfo] = None


class ServiceSelection(BaseModel):
    """Which services to activate on the booking form (serviceKey -> enabled)."""

    services: Dict[str, bool] = Field(default_factory=dict)

    def enabled(self) -> List[str]:
        return [key for key, on in self.services.items() if on]


class LocationSelection(BaseModel):
    value: str = ""
    name: str = ""


class CycleError(BaseModel):
    """Serializable description of a failed cycle or step."""

    kind: str
    message: str
    step: Optional[str] = None
    date: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException, date: Optional[str] = None) -> "CycleError":
        return cls(
            kind=type(exc).__name__,
            message=str(exc) or type(exc).__name__,
            step=getattr(exc, "step", None),
            date=date,
        )


class CycleOutcome(BaseModel):
    """Everything a single Navigator cycle produced, including partial results."""

    results: List[CheckResult] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    date_errors: List[CycleError] = Field(default_factory=list)
    error: Optional[CycleError] = None


class EngineEventKind(str, Enum):
    APPOINTMENT = "appointment"
    ERROR = "error"
    STATUS_CHANGE = "status_change"


class EngineEvent(BaseModel):
    kind: EngineEventKind
    appointment: Optional[AppointmentEvent] = None
    error: Optional[CycleError] = None
    status: Optional[MonitoringStatus] = None
    timestamp: datetime = Field(default_factory=utc_now)


__all__ = [
    "validate_date",
    "display_date",
    "split_date",
    "validate_interval",
    "MAX_INTERVAL_SECONDS",
    "utc_now",
    "AppointmentInfo",
    "CheckResult",
    "MonitoringStatus",
    "EventType",
    "AppointmentEvent",
    "ServiceSelection",
    "LocationSelection",
    "CycleError",
    "CycleOutcome",
    "EngineEventKind",
    "EngineEvent",
]
