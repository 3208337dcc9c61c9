"""Base probe interface."""

from abc import ABC, abstractmethod

from app_health_monitor.config import ProbeSettings
from app_health_monitor.models import ProbeResult


class BaseProbe(ABC):
    """Abstract base class for application reachability probes."""
    
    def __init__(self, settings: ProbeSettings) -> None:
        """Initialize probe with validated settings."""
        self.settings = settings
    
    @property
    def timeout(self) -> float:
        """Upper bound in seconds for a single evaluation."""
        return self.settings.probe_timeout
    
    @property
    @abstractmethod
    def target(self) -> str:
        """Human-readable endpoint description for logs."""
        ...
    
    @abstractmethod
    def evaluate(self) -> ProbeResult:
        """Run one reachability check against the endpoint.
        
        Transport failures are reported as an unhealthy result and never
        raised.
        
        Returns:
            ProbeResult with the raw verdict and diagnostic detail.
        """
        ...
