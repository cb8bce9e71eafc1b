# core/network_probe.py
import asyncio
import logging
from typing import Optional
import httpx
from config.settings import settings
from core.network_monitor import NetworkMonitor
from model.network import ConnectionKind, NetworkStatus

logger = logging.getLogger(__name__)


class ReachabilityProbe:
    """
    Feeds a NetworkMonitor by polling a URL. Any HTTP response (even 5xx) means the
    network path works; only transport errors and timeouts count as offline.
    """

    def __init__(
        self,
        monitor: NetworkMonitor,
        url: Optional[str] = settings.NETWORK_PROBE_URL,
        interval: float = settings.NETWORK_PROBE_INTERVAL_SECONDS,
        timeout: float = settings.NETWORK_PROBE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._monitor = monitor
        self._url = url
        self._interval = max(0.01, float(interval))
        self._timeout = timeout
        self._transport = transport
        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def check_once(self) -> NetworkStatus:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                await client.get(self._url)
            status = NetworkStatus.online(kind=self._monitor.current().kind)
            if status.kind == ConnectionKind.none:
                status = NetworkStatus.online()
        except httpx.TransportError as e:
            logger.debug("network.probe.fail err=%s", type(e).__name__)
            status = NetworkStatus.offline()
        self._monitor.update(status)
        return status

    async def _run(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if not self.enabled:
            logger.info("network.probe.disabled")
            return
        if self._task is None or self._task.done():
            logger.info("network.probe.start url=%s every=%.1fs", self._url, self._interval)
            self._task = asyncio.create_task(self._run(), name="network-probe")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
