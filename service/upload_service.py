# service/upload_service.py
import logging
from typing import Iterable, List, Optional
from config.cache import redis_configured
from config.settings import settings
from core.network_monitor import NetworkMonitor
from core.network_probe import ReachabilityProbe
from core.retry_policy import RetryPolicy
from core.scheduler import UploadScheduler
from core.transfer_client import HttpTransferClient, TransferClient
from model.job import JobSpec, QueueSnapshot, UploadJob
from model.network import NetworkStatus
from repository.kv_store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from repository.upload_queue import QueueListener, UploadQueue
from util.types import JobHook, Unsubscribe

logger = logging.getLogger(__name__)


class UploadService:
    """Single entry point for callers; owns the queue, the monitor and the scheduler."""

    def __init__(
        self,
        queue: UploadQueue,
        network: NetworkMonitor,
        scheduler: UploadScheduler,
        probe: Optional[ReachabilityProbe] = None,
    ) -> None:
        self._queue = queue
        self._network = network
        self._scheduler = scheduler
        self._probe = probe
        self._started = False

    # ---------------- Lifecycle ----------------

    async def start(self) -> None:
        if self._started:
            return
        restored = await self._queue.load()
        self._scheduler.start()
        if self._probe is not None:
            self._probe.start()
        self._started = True
        logger.info("service.start restored=%d", restored)

    async def stop(self) -> None:
        if not self._started:
            return
        if self._probe is not None:
            await self._probe.stop()
        await self._scheduler.stop()
        self._started = False
        logger.info("service.stop")

    # ---------------- Queue ----------------

    async def enqueue(self, files: Iterable[JobSpec]) -> List[str]:
        jobs = await self._queue.add_jobs(files)
        return [j.id for j in jobs]

    def get_stats(self) -> QueueSnapshot:
        return self._queue.snapshot()

    def list_jobs(self) -> List[UploadJob]:
        return self._queue.list_jobs()

    def get_job(self, job_id: str) -> UploadJob:
        return self._queue.get_job(job_id)

    def subscribe(self, callback: QueueListener) -> Unsubscribe:
        return self._queue.subscribe(callback)

    # ---------------- Job operations ----------------

    async def pause(self, job_id: str) -> UploadJob:
        return await self._scheduler.pause(job_id)

    async def resume(self, job_id: str) -> UploadJob:
        return await self._scheduler.resume(job_id)

    async def cancel(self, job_id: str) -> UploadJob:
        return await self._scheduler.cancel(job_id)

    async def retry(self, job_id: str) -> UploadJob:
        return await self._scheduler.retry(job_id)

    async def remove(self, job_id: str) -> None:
        await self._scheduler.remove(job_id)

    async def clear_completed(self) -> int:
        return await self._scheduler.clear_completed()

    async def clear_all(self) -> int:
        return len(await self._scheduler.clear_all())

    def has_active_uploads(self) -> bool:
        return self._scheduler.has_active_uploads()

    # ---------------- Network ----------------

    def get_network_status(self) -> NetworkStatus:
        return self._network.current()

    def update_network_status(self, status: NetworkStatus) -> NetworkStatus:
        self._network.update(status)
        return self._network.current()


def build_upload_service(
    store: Optional[KeyValueStore] = None,
    client: Optional[TransferClient] = None,
    on_complete: Optional[JobHook] = None,
    on_error: Optional[JobHook] = None,
) -> UploadService:
    """Wire the default object graph from settings."""
    if store is None:
        if redis_configured():
            store = RedisKeyValueStore()
        else:
            logger.warning("service.store.memory reason=REDIS_URL unset, queue is not durable")
            store = InMemoryKeyValueStore()
    queue = UploadQueue(store)
    network = NetworkMonitor()
    scheduler = UploadScheduler(
        queue,
        network,
        client or HttpTransferClient(),
        retry_policy=RetryPolicy(),
        max_concurrent_uploads=settings.MAX_CONCURRENT_UPLOADS,
        cancel_grace=settings.CANCEL_GRACE_SECONDS,
        on_complete=on_complete,
        on_error=on_error,
    )
    probe = ReachabilityProbe(network)
    return UploadService(queue, network, scheduler, probe)
