"""
Network Monitor: online/offline state and the triggers that start syncs.
"""
from typing import Awaitable, Callable, Optional
import asyncio
import logging

import httpx

from fieldtracker.client.events import StatusBroadcaster
from fieldtracker.client.providers import ConnectivityProvider

logger = logging.getLogger(__name__)

SyncTrigger = Callable[[], Awaitable[object]]


class HttpConnectivityProvider:
    """
    Reachability of the sync server itself, checked with the liveness probe.

    A network interface being up is not enough: what matters is whether
    the server answers. Reachability is polled; there are no push
    notifications, so ``on_change`` never fires.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def is_online(self) -> bool:
        url = f"{self.base_url}/api/v1/health/live"
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity check failed: {e}")
            return False
        return response.status_code == 200

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        return lambda: None


class NetworkMonitor:
    """
    Track connectivity and start syncs.

    An offline to online transition starts exactly one sync. While online,
    a periodic timer starts another every ``interval`` seconds; the sync
    engine's own guard turns overlapping triggers into no-ops.
    """

    def __init__(self, provider: ConnectivityProvider, interval: float = 30.0):
        self.provider = provider
        self.interval = interval
        self.is_online = False
        self.changes = StatusBroadcaster()
        self._trigger: Optional[SyncTrigger] = None
        self._timer: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()
        self._unregister: Optional[Callable[[], None]] = None

    def set_sync_trigger(self, trigger: SyncTrigger):
        self._trigger = trigger

    @property
    def running(self) -> bool:
        return self._timer is not None

    async def start(self):
        if self._timer is not None:
            return
        self._unregister = self.provider.on_change(self._on_provider_change)
        await self.refresh()
        self._timer = asyncio.create_task(self._run_timer())
        logger.info(f"Network monitor started ({'online' if self.is_online else 'offline'})")

    async def stop(self):
        if self._unregister is not None:
            self._unregister()
            self._unregister = None
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()
        logger.info("Network monitor stopped")

    async def refresh(self) -> bool:
        """Ask the provider for the current state. Returns True on a reconnect."""
        try:
            online = await self.provider.is_online()
        except Exception:
            logger.error("Connectivity provider failed", exc_info=True)
            online = False
        return self._set_online(online)

    def _on_provider_change(self, online: bool):
        self._set_online(bool(online))

    def _set_online(self, online: bool) -> bool:
        if online == self.is_online:
            return False
        self.is_online = online
        self.changes.publish(online)
        if online:
            logger.info("Connectivity restored; starting sync")
            self._fire()
            return True
        logger.info("Connectivity lost")
        return False

    def _fire(self):
        if self._trigger is None:
            return
        task = asyncio.create_task(self._trigger())
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Triggered sync failed", exc_info=error)

    async def _run_timer(self):
        while True:
            await asyncio.sleep(self.interval)
            reconnected = await self.refresh()
            if self.is_online and not reconnected:
                self._fire()

    async def wait_idle(self):
        """Wait for syncs this monitor started; mainly for tests and shutdown."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
