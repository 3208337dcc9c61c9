"""TCP connect probe."""

import logging
import socket
import time

from app_health_monitor.models import ProbeResult
from app_health_monitor.probes.base import BaseProbe

logger = logging.getLogger(__name__)


class TcpProbe(BaseProbe):
    """Healthy when a TCP connection to host:port can be established."""
    
    @property
    def target(self) -> str:
        return f"tcp://{self.settings.host}:{self.settings.port}"
    
    def evaluate(self) -> ProbeResult:
        host, port = self.settings.host, self.settings.port
        try:
            self._connect(host, port)
        except (OSError, UnicodeError) as e:
            # Refused, timed out, unreachable or unresolvable
            logger.debug(f"TCP probe of {self.target} failed: {e}")
            return ProbeResult(
                healthy=False,
                detail=f"TCP connect to {host}:{port} failed: {type(e).__name__}: {e}",
            )
        
        return ProbeResult(healthy=True, detail=f"Port {port} open")
    
    def _connect(self, host: str, port: int) -> None:
        """Try each resolved address in turn within one overall deadline.
        
        The time left is shared evenly among the addresses not yet tried,
        so a blackholed first address cannot use up the whole budget.
        """
        deadline = time.monotonic() + self.timeout
        addresses = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        last_error: OSError | None = None
        
        for index, (family, sock_type, proto, _, address) in enumerate(addresses):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            sock = socket.socket(family, sock_type, proto)
            try:
                sock.settimeout(remaining / (len(addresses) - index))
                sock.connect(address)
                return
            except OSError as e:
                last_error = e
            finally:
                sock.close()
        
        if last_error is None:
            raise TimeoutError(f"timed out after {self.timeout:g}s")
        raise last_error
