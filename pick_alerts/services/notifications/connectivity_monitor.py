import asyncio
from typing import Awaitable, Callable, List, Optional

import httpx

from pick_alerts.config.settings import settings
from pick_alerts.utils.logging import get_logger

logger = get_logger()

ReconnectCallback = Callable[[], Awaitable[object]]
StatusListener = Callable[[bool], None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """
    Tracks online/offline transitions.

    Going offline only flips the flag: armed timers keep firing. Coming back
    online runs the reconnect callbacks, typically a forced scheduler resync.
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._reconnect_callbacks: List[ReconnectCallback] = []
        self._listeners: List[StatusListener] = []
        self._probe_task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def on_reconnect(self, callback: ReconnectCallback) -> Callable[[], None]:
        self._reconnect_callbacks.append(callback)
        return lambda: self._reconnect_callbacks.remove(callback)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def report(self, online: bool) -> None:
        if online == self._online:
            return

        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        for listener in list(self._listeners):
            listener(online)

        if not online:
            return

        for callback in list(self._reconnect_callbacks):
            try:
                await callback()
            except Exception:
                logger.exception("Reconnect callback failed")

    def start_probe(self, probe: Probe, interval: float = 30.0) -> None:
        """Poll a probe periodically and report its result"""
        if self._probe_task is not None and not self._probe_task.done():
            return
        self._probe_task = asyncio.create_task(self._probe_loop(probe, interval))

    async def _probe_loop(self, probe: Probe, interval: float) -> None:
        while True:
            try:
                online = await probe()
            except Exception as e:
                logger.debug(f"Connectivity probe failed: {e}")
                online = False
            await self.report(online)
            await asyncio.sleep(interval)

    async def stop(self) -> None:
        if self._probe_task is None:
            return
        self._probe_task.cancel()
        await asyncio.gather(self._probe_task, return_exceptions=True)
        self._probe_task = None


def http_probe(url: str = settings.HEALTH_CHECK_URL, timeout: float = 5.0) -> Probe:
    """Probe reporting online when the health endpoint answers without a 5xx"""

    async def probe() -> bool:
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url)
            return response.status_code < 500
        except httpx.HTTPError:
            return False

    return probe
