"""Reachability probes, one per supported protocol."""

from app_health_monitor.config import ConfigError, ProbeSettings, Protocol
from app_health_monitor.probes.base import BaseProbe
from app_health_monitor.probes.http import HttpProbe, HttpsProbe
from app_health_monitor.probes.tcp import TcpProbe

PROBES: dict[Protocol, type[BaseProbe]] = {
    Protocol.TCP: TcpProbe,
    Protocol.HTTP: HttpProbe,
    Protocol.HTTPS: HttpsProbe,
}


def create_probe(settings: ProbeSettings) -> BaseProbe:
    """Validate settings and build the probe for their protocol.
    
    Raises:
        ConfigError: If the settings cannot drive a probe.
    """
    settings.validate()
    probe_cls = PROBES.get(settings.protocol)
    if probe_cls is None:
        raise ConfigError(f"unsupported protocol: {settings.protocol!r}")
    return probe_cls(settings)


__all__ = ["BaseProbe", "HttpProbe", "HttpsProbe", "TcpProbe", "PROBES", "create_probe"]
