"""Core health polling loop."""

import logging
import threading
from enum import Enum
from typing import Callable

from app_health_monitor.config import ProbeSettings
from app_health_monitor.hysteresis import HysteresisEngine
from app_health_monitor.models import HealthState, ProbeResult
from app_health_monitor.probes import BaseProbe, create_probe
from app_health_monitor.status import StatusPublisher

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Lifecycle of the polling loop."""
    
    RUNNING = "running"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class PollScheduler:
    """Probe, debounce and publish at a fixed interval until cancelled."""
    
    def __init__(
        self,
        settings: ProbeSettings,
        publisher: StatusPublisher,
        sequence_id: int,
        probe: BaseProbe | None = None,
        on_cycle: Callable[[ProbeResult, HealthState], None] | None = None,
    ) -> None:
        """Initialize the scheduler.
        
        Settings are validated and the probe selected once here, so
        configuration faults surface before polling starts, even when a
        probe is supplied.
        
        Args:
            settings: Probe settings.
            publisher: Owner of the status file.
            sequence_id: Sequence number the status is published under.
            probe: Optional probe override; built from settings by default.
            on_cycle: Optional callback with each raw result and derived state.
            
        Raises:
            ConfigError: If the settings are invalid or no probe can be built.
        """
        settings.validate()
        self.settings = settings
        self.probe = probe if probe is not None else create_probe(settings)
        self.engine = HysteresisEngine(settings.number_of_probes)
        self.publisher = publisher
        self.sequence_id = sequence_id
        self.on_cycle = on_cycle
        self.state: SchedulerState | None = None
        self.cycles = 0
    
    def run_cycle(self, cancel: threading.Event) -> HealthState | None:
        """Run one probe-debounce-publish cycle.
        
        Returns:
            The published derived state, or None if cancellation was observed
            before publishing.
            
        Raises:
            StatusPublishError: If the status could not be written.
        """
        result = self.probe.evaluate()
        if not result.healthy:
            logger.debug(f"Probe of {self.probe.target} unhealthy: {result.detail}")
        
        if cancel.is_set():
            return None
        
        derived = self.engine.step(result.healthy)
        self.publisher.publish(derived, self.sequence_id)
        self.cycles += 1
        
        if self.on_cycle is not None:
            try:
                self.on_cycle(result, derived)
            except Exception as e:
                logger.error(f"Cycle callback failed: {e}")
        
        return derived
    
    def run(self, cancel: threading.Event) -> SchedulerState:
        """Poll until ``cancel`` is set.
        
        Cancellation is checked before publishing and after each sleep, and
        the sleep itself wakes up as soon as ``cancel`` is set.
        
        Returns:
            SchedulerState.TERMINATED once cancellation was observed.
            
        Raises:
            StatusPublishError: If a status write fails; polling stops.
        """
        self.state = SchedulerState.RUNNING
        logger.info(
            f"Polling {self.probe.target} every {self.settings.interval_seconds}s "
            f"(unhealthy after {self.settings.number_of_probes} consecutive failures)"
        )
        
        try:
            while True:
                if self.run_cycle(cancel) is None:
                    break
                if cancel.wait(self.settings.interval_seconds):
                    break
            
            self.state = SchedulerState.TERMINATING
            logger.info(f"Termination requested after {self.cycles} cycles")
        finally:
            self.state = SchedulerState.TERMINATED
        
        return self.state
