"""Wires the offline client together and owns its lifecycle."""
from typing import Optional
from uuid import uuid4
import logging

import httpx

from fieldtracker.client.config import ClientSettings
from fieldtracker.client.engine import SyncEngine
from fieldtracker.client.network import HttpConnectivityProvider, NetworkMonitor
from fieldtracker.client.policies import EvictionPolicy, RetryClassifier
from fieldtracker.client.providers import (
    ConnectivityProvider,
    FilePhotoBlobReader,
    LocationProvider,
    PhotoBlobReader,
    PhotoCaptureProvider,
)
from fieldtracker.client.queue import MutationQueue
from fieldtracker.client.store import OfflineStore
from fieldtracker.client.tracking import TimeTrackingService
from fieldtracker.client.transport import SyncTransport

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"


class ClientRuntime:
    """
    One device: store, queue, network monitor, sync engine and tracking
    service, built from explicit settings and collaborators.

    Usage:
        runtime = ClientRuntime(ClientSettings())
        await runtime.start()
        await runtime.tracking.start_job(worker_id, job_id)
        ...
        await runtime.stop()
    """

    def __init__(
        self,
        settings: ClientSettings,
        connectivity: Optional[ConnectivityProvider] = None,
        location: Optional[LocationProvider] = None,
        camera: Optional[PhotoCaptureProvider] = None,
        blob_reader: Optional[PhotoBlobReader] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.store = OfflineStore(settings.DB_PATH)
        self.queue = MutationQueue(
            self.store,
            classifier=RetryClassifier(),
            eviction=EvictionPolicy(max_attempts=settings.MAX_RETRY_COUNT),
            backoff_base=settings.BACKOFF_BASE_SECONDS,
        )
        self.transport = SyncTransport(
            settings.SERVER_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            client=http_client,
        )
        self.network = NetworkMonitor(
            connectivity or HttpConnectivityProvider(settings.SERVER_URL, client=http_client),
            interval=settings.AUTO_SYNC_INTERVAL_SECONDS,
        )
        self._location = location
        self._camera = camera
        self._blob_reader = blob_reader or FilePhotoBlobReader()
        self.engine: Optional[SyncEngine] = None
        self.tracking: Optional[TimeTrackingService] = None
        self.device_id: Optional[str] = None
        self._started = False

    async def _resolve_device_id(self) -> str:
        if self.settings.DEVICE_ID:
            return self.settings.DEVICE_ID
        device_id = await self.store.get_state(DEVICE_ID_KEY)
        if device_id is None:
            device_id = f"device-{uuid4()}"
            await self.store.set_state(DEVICE_ID_KEY, device_id)
            logger.info(f"Registered new device id {device_id}")
        return device_id

    async def start(self):
        if self._started:
            return
        await self.store.open()
        self.device_id = await self._resolve_device_id()
        self.engine = SyncEngine(
            self.store,
            self.queue,
            self.transport,
            self.settings,
            self.device_id,
            network=self.network,
            blob_reader=self._blob_reader,
        )
        self.tracking = TimeTrackingService(
            self.store,
            self.queue,
            self.settings,
            location=self._location,
            camera=self._camera,
            on_change=self._on_local_change,
        )
        await self.engine.start()
        self.network.set_sync_trigger(self.engine.sync)
        await self.network.start()
        self._started = True
        logger.info(f"Client runtime started for {self.device_id}")

    def _on_local_change(self):
        if self.network.is_online:
            self.engine.schedule_sync()

    async def login(self, employee_id: str, pin: str) -> dict:
        """Authenticate a worker against the server; needed before any sync."""
        return await self.transport.login_worker(employee_id, pin, self.device_id)

    async def stop(self):
        if not self._started:
            return
        await self.network.stop()
        await self.engine.stop()
        await self.transport.close()
        await self.store.close()
        self._started = False
        logger.info("Client runtime stopped")
