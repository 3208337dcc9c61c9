"""Debouncing of raw probe verdicts into a reported health state."""

import logging

from app_health_monitor.models import HealthState

logger = logging.getLogger(__name__)


class HysteresisEngine:
    """Turn noisy raw probe results into a stable derived health state.
    
    The derived state flips to unhealthy only after ``number_of_probes``
    consecutive unhealthy raw results, and returns to healthy on the first
    healthy one.
    """
    
    def __init__(self, number_of_probes: int) -> None:
        if number_of_probes < 1:
            raise ValueError(f"number_of_probes must be at least 1, got {number_of_probes}")
        self.number_of_probes = number_of_probes
        self._prev_raw: bool | None = None
        self._counter = 0
    
    @property
    def counter(self) -> int:
        """Consecutive unhealthy raw results, capped at ``number_of_probes``."""
        return self._counter
    
    @property
    def raw_state(self) -> HealthState | None:
        """Raw state of the last step, or None before the first one."""
        if self._prev_raw is None:
            return None
        return HealthState.from_bool(self._prev_raw)
    
    @property
    def derived_state(self) -> HealthState:
        if self._counter == self.number_of_probes:
            return HealthState.UNHEALTHY
        return HealthState.HEALTHY
    
    def step(self, raw_healthy: bool) -> HealthState:
        """Feed one raw verdict and return the derived state."""
        if raw_healthy != self._prev_raw:
            logger.info(f"state changed to {HealthState.from_bool(raw_healthy).value}")
            self._counter = 0
        
        if not raw_healthy:
            # Saturating: stays at the cap while the streak continues
            self._counter = min(self._counter + 1, self.number_of_probes)
        
        self._prev_raw = raw_healthy
        return self.derived_state
