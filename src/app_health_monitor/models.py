"""Data models for application health evaluation."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class HealthState(str, Enum):
    """Health of the monitored application."""
    
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    
    @classmethod
    def from_bool(cls, healthy: bool) -> "HealthState":
        return cls.HEALTHY if healthy else cls.UNHEALTHY


class StatusType(str, Enum):
    """Status values understood by the extension host."""
    
    TRANSITIONING = "transitioning"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProbeResult:
    """Outcome of a single reachability check."""
    
    healthy: bool
    detail: str | None = None
    timestamp: datetime = field(default_factory=utc_now)
    
    @property
    def state(self) -> HealthState:
        """Raw health state implied by this probe alone."""
        return HealthState.from_bool(self.healthy)
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestampUTC": self.timestamp.isoformat(),
            "healthy": self.healthy,
            "state": self.state.value,
            "detail": self.detail,
        }
