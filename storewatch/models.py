"""Domain records persisted by the monitoring engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_https(url: str) -> str:
    """Prefix bare hostnames with https:// so they can be fetched."""
    s = (url or "").strip()
    return s if s.startswith("http") else f"https://{s}"


class StoreStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class RunStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class AlertCategory(str, Enum):
    VISUAL = "visual"
    AVAILABILITY = "availability"


class Severity(str, Enum):
    HIGH = "high"
    LOW = "low"


@dataclass
class Store:
    """A monitored homepage and its mutable monitoring state."""

    id: int
    url: str
    status: StoreStatus = StoreStatus.ACTIVE
    baseline_url: str | None = None
    failed_attempts: int = 0
    last_checked: datetime | None = None
    owner_chat_id: str | None = None

    @property
    def full_url(self) -> str:
        return ensure_https(self.url)


@dataclass
class RunRecord:
    """One execution of the visual pipeline for a store."""

    store_id: int
    started_at: datetime
    finished_at: datetime | None = None
    status: RunStatus = RunStatus.SUCCESS
    error_message: str | None = None
    screenshot_url: str | None = None
    diff_percentage: float | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


@dataclass
class PingLog:
    """One availability probe of a store."""

    store_id: int
    is_up: bool
    response_time_ms: int | None = None
    status_code: int | None = None
    error_message: str | None = None
    checked_at: datetime = field(default_factory=utcnow)
    id: int | None = None


@dataclass
class Alert:
    """A visual change or availability alert; never modified after creation."""

    store_id: int
    category: AlertCategory
    severity: Severity
    step: str | None = None
    before_url: str | None = None
    after_url: str | None = None
    diff_url: str | None = None
    diff_percentage: float | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None


@dataclass(frozen=True)
class DiffResult:
    """Outcome of comparing a baseline screenshot with a fresh capture."""

    significant: bool
    percentage: float
    dimension_changed: bool = False
    overlay_url: str | None = None
    differing_pixels: int | None = None
    error: str | None = None
