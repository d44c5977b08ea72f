"""
Reachability tracking and operating mode for the remote service.

Mode transitions are one-directional during normal operation: any connectivity
failure moves REMOTE -> LOCAL_FALLBACK, and only retry() can move back.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Union

import httpx

from rollcall.core.config import Settings
from rollcall.core.enums import ConnectionMode, ErrorReason, Reachability
from rollcall.core.events import Observable, Subscription

from .schemas import Diagnosis, ProbeResult

logger = logging.getLogger(__name__)

LAYER_CONFIG = "configuration"
LAYER_NETWORK = "local-network"
LAYER_INTERNET = "internet"
LAYER_REMOTE = "remote-service"


class ConnectionManager:
    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._client = client
        self._network_available = True
        self._mode = ConnectionMode.REMOTE if settings.remote_configured else ConnectionMode.LOCAL_FALLBACK
        self._changes: Observable[ConnectionMode] = Observable()
        self.last_reachability: Optional[Reachability] = None
        self.degraded_reason: Optional[str] = None if self.remote_configured else "remote service not configured"

    @property
    def remote_configured(self) -> bool:
        return self._settings.remote_configured

    @property
    def remote_probe_url(self) -> str:
        return f"{(self._settings.remote_url or '').rstrip('/')}/rest/v1/"

    def get_mode(self) -> ConnectionMode:
        return self._mode

    def is_remote(self) -> bool:
        return self._mode == ConnectionMode.REMOTE

    def subscribe(self, callback: Callable[[ConnectionMode], None]) -> Subscription:
        return self._changes.subscribe(callback)

    def set_network_available(self, available: bool) -> None:
        """Host environment's online flag. Going offline degrades; coming back online does not promote."""
        self._network_available = available
        if not available:
            self.mark_degraded(ErrorReason.OFFLINE, "local network unavailable")

    @property
    def network_available(self) -> bool:
        return self._network_available

    def mark_degraded(self, reason: Union[ErrorReason, Reachability], message: str = "") -> None:
        """Record a connectivity-class failure; switches to LOCAL_FALLBACK immediately."""
        if self._mode == ConnectionMode.LOCAL_FALLBACK:
            return
        self.degraded_reason = f"{reason.value}: {message}" if message else reason.value
        logger.warning("Switching to local fallback (%s)", self.degraded_reason)
        self._set_mode(ConnectionMode.LOCAL_FALLBACK)

    def _set_mode(self, mode: ConnectionMode) -> None:
        if mode == self._mode:
            return
        self._mode = mode
        self._changes.publish(mode)

    # ----- Probing -----
    async def _probe(self, url: str, timeout: float, headers: Optional[Dict[str, str]] = None) -> ProbeResult:
        """GET url with a hard deadline; any HTTP answer below 500 counts as reachable."""
        started = time.monotonic()
        status = Reachability.REACHABLE
        detail: Optional[str] = None
        try:
            response = await asyncio.wait_for(
                self._client.get(url, headers=headers, timeout=timeout),
                timeout=timeout,
            )
            if response.status_code >= 500:
                status = Reachability.UNREACHABLE
                detail = f"HTTP {response.status_code}"
        except (asyncio.TimeoutError, httpx.TimeoutException):
            status = Reachability.TIMEOUT
            detail = f"no response within {timeout:g}s"
        except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError) as e:
            status = Reachability.UNREACHABLE
            detail = str(e) or e.__class__.__name__
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return ProbeResult(layer=url, status=status, elapsed_ms=elapsed_ms, detail=detail)

    def _remote_headers(self) -> Dict[str, str]:
        key = self._settings.remote_anon_key or ""
        return {"apikey": key, "Authorization": f"Bearer {key}"}

    async def check_reachability(self, timeout: Optional[float] = None) -> Reachability:
        """Probe the remote service. Never raises; a failed probe degrades the mode."""
        if timeout is None:
            timeout = self._settings.reachability_timeout_seconds
        if not self.remote_configured:
            result = Reachability.UNREACHABLE
        elif not self._network_available:
            result = Reachability.OFFLINE
        else:
            probe = await self._probe(self.remote_probe_url, timeout, self._remote_headers())
            result = probe.status
            if probe.detail:
                logger.info("Reachability probe: %s (%s)", result.value, probe.detail)
        self.last_reachability = result
        if result != Reachability.REACHABLE:
            self.mark_degraded(result, "reachability probe failed")
        return result

    async def retry(self) -> Reachability:
        """Re-run the reachability check; the only way back from LOCAL_FALLBACK to REMOTE."""
        result = await self.check_reachability()
        if result == Reachability.REACHABLE and self._mode != ConnectionMode.REMOTE:
            logger.info("Remote service reachable again; leaving local fallback")
            self.degraded_reason = None
            self._set_mode(ConnectionMode.REMOTE)
        return result

    async def diagnose(self) -> Diagnosis:
        """Layered diagnosis; stops at the first failing layer. Does not change the mode."""
        diagnosis = Diagnosis(mode=self._mode)

        if not self.remote_configured:
            diagnosis.probes.append(ProbeResult(layer=LAYER_CONFIG, status=Reachability.UNREACHABLE))
            diagnosis.failed_layer = LAYER_CONFIG
            diagnosis.issues.append("Remote service URL or key is not configured")
            diagnosis.recommendations.append("Set REMOTE_URL and REMOTE_ANON_KEY and restart")
            return diagnosis

        if not self._network_available:
            diagnosis.probes.append(ProbeResult(layer=LAYER_NETWORK, status=Reachability.OFFLINE))
            diagnosis.failed_layer = LAYER_NETWORK
            diagnosis.issues.append("This device reports no network connection")
            diagnosis.recommendations.append("Check your Wi-Fi or network cable")
            diagnosis.recommendations.append("Changes are saved locally until the connection returns")
            return diagnosis
        diagnosis.probes.append(ProbeResult(layer=LAYER_NETWORK, status=Reachability.REACHABLE))

        internet = await self._probe(
            self._settings.generic_probe_url, self._settings.diagnose_network_timeout_seconds
        )
        internet.layer = LAYER_INTERNET
        diagnosis.probes.append(internet)
        if internet.status != Reachability.REACHABLE:
            diagnosis.failed_layer = LAYER_INTERNET
            if internet.status == Reachability.TIMEOUT:
                diagnosis.issues.append("The internet connection is very slow or not responding")
            else:
                diagnosis.issues.append("Cannot reach external websites; internet access seems unavailable")
            diagnosis.recommendations.append("Check that you are connected to the internet")
            diagnosis.recommendations.append("A proxy or firewall may be blocking outgoing connections")
            return diagnosis

        remote = await self._probe(
            self.remote_probe_url, self._settings.diagnose_remote_timeout_seconds, self._remote_headers()
        )
        remote.layer = LAYER_REMOTE
        diagnosis.probes.append(remote)
        if remote.status == Reachability.TIMEOUT:
            diagnosis.failed_layer = LAYER_REMOTE
            diagnosis.issues.append(
                f"The remote service did not respond within {self._settings.diagnose_remote_timeout_seconds:g}s"
            )
            diagnosis.recommendations.append("The service may be paused or overloaded; try again later")
        elif remote.status != Reachability.REACHABLE:
            diagnosis.failed_layer = LAYER_REMOTE
            diagnosis.issues.append(
                "The internet works but the remote service is unreachable (DNS, CORS or firewall)"
            )
            diagnosis.recommendations.append("Verify REMOTE_URL points to the right project")
            diagnosis.recommendations.append("Check that a firewall or content blocker does not block the service domain")
        elif self._mode == ConnectionMode.LOCAL_FALLBACK:
            diagnosis.recommendations.append("The remote service is reachable again; retry to leave offline mode")
        return diagnosis
