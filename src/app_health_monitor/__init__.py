"""
App Health Monitor - Application health reporting for VM extension hosts.

Periodically probes a local application over TCP, HTTP or HTTPS, debounces
the results and publishes the reported health as an extension status file.
"""

__version__ = "1.0.0"

from app_health_monitor.config import ConfigError, ProbeSettings, Protocol
from app_health_monitor.hysteresis import HysteresisEngine
from app_health_monitor.models import HealthState, ProbeResult, StatusType
from app_health_monitor.monitor import PollScheduler, SchedulerState
from app_health_monitor.status import StatusPublishError, StatusPublisher

__all__ = [
    "ConfigError",
    "ProbeSettings",
    "Protocol",
    "HysteresisEngine",
    "HealthState",
    "ProbeResult",
    "StatusType",
    "PollScheduler",
    "SchedulerState",
    "StatusPublishError",
    "StatusPublisher",
]
