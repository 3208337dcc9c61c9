"""HTTP and HTTPS GET probes."""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

import httpx

from app_health_monitor.config import ConfigError, ProbeSettings
from app_health_monitor.models import ProbeResult
from app_health_monitor.probes.base import BaseProbe

logger = logging.getLogger(__name__)


class HttpProbe(BaseProbe):
    """Healthy when a GET on the request path returns a 2xx status.
    
    Redirects are not followed, so a 3xx response counts as unhealthy. The
    verdict is taken from the status line; the body is never read.
    """
    
    verify_certificate = True
    
    def __init__(
        self,
        settings: ProbeSettings,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize HTTP probe.
        
        Args:
            settings: Validated probe settings.
            transport: Optional transport override, mainly for tests.
            
        Raises:
            ConfigError: If the settings do not form a usable URL.
        """
        super().__init__(settings)
        try:
            self.url = httpx.URL(settings.url)
        except httpx.InvalidURL as e:
            raise ConfigError(f"malformed endpoint {settings.url!r}: {e}") from e
        if not self.url.host:
            raise ConfigError(f"malformed endpoint {settings.url!r}: missing host")
        self._transport = transport
    
    @property
    def target(self) -> str:
        return str(self.url)
    
    def evaluate(self) -> ProbeResult:
        """Issue the GET, giving up once the probe timeout has elapsed.
        
        httpx applies its timeout to each connect and read separately, so the
        request runs in a worker and only ``self.timeout`` is spent waiting
        for it. Closing the client on expiry aborts the stalled request.
        """
        client = httpx.Client(
            timeout=self.timeout,
            follow_redirects=False,
            verify=self.verify_certificate,
            transport=self._transport,
        )
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="http-probe")
        try:
            future = executor.submit(self._request, client)
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            logger.debug(f"HTTP probe of {self.target} exceeded {self.timeout:g}s")
            return self._timed_out()
        finally:
            client.close()
            executor.shutdown(wait=False)
    
    def _request(self, client: httpx.Client) -> ProbeResult:
        try:
            with client.stream("GET", self.url) as response:
                status_code = response.status_code
                reason = response.reason_phrase
                success = response.is_success
        except httpx.TimeoutException:
            logger.debug(f"HTTP probe of {self.target} timed out")
            return self._timed_out()
        except httpx.HTTPError as e:
            logger.debug(f"HTTP probe of {self.target} failed: {e}")
            return ProbeResult(
                healthy=False,
                detail=f"Request to {self.target} failed: {type(e).__name__}: {e}",
            )
        
        if success:
            return ProbeResult(healthy=True, detail=f"{status_code} {reason}")
        return ProbeResult(healthy=False, detail=f"Unexpected status {status_code} {reason}")
    
    def _timed_out(self) -> ProbeResult:
        return ProbeResult(
            healthy=False,
            detail=f"Request to {self.target} timed out after {self.timeout:g}s",
        )


class HttpsProbe(HttpProbe):
    """HTTPS variant; the local endpoint's certificate is not verified."""
    
    verify_certificate = False
