# core/scheduler.py
import asyncio
import inspect
import logging
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Dict, List, Optional, Set
from config.settings import settings
from core.cancellation import CancelToken
from core.network_monitor import NetworkMonitor
from core.retry_policy import RetryPolicy
from core.transfer_client import TransferClient
from model.job import JobStatus, UploadJob, UploadProgress
from model.network import NetworkStatus
from model.transfer import RemoteFileDescriptor
from repository.upload_queue import UploadQueue
from util.errors import (
    InvalidTransition,
    JobNotFound,
    TransferCancelled,
    TransferError,
)
from util.timing import timed
from util.types import JobHook

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    """Why a transfer was aborted; decides where the job lands."""

    requeue = "requeue"  # network drop or shutdown -> pending, no retry penalty
    pause = "pause"  # -> paused
    cancel = "cancel"  # -> cancelled
    remove = "remove"  # -> record dropped

    @property
    def rank(self) -> int:
        return _INTENT_RANK[self]


_INTENT_RANK = {Intent.requeue: 0, Intent.pause: 1, Intent.cancel: 2, Intent.remove: 3}


@dataclass
class ActiveTransfer:
    job_id: str
    token: CancelToken
    task: Optional[asyncio.Task] = None
    intent: Optional[Intent] = None
    settled: bool = False  # final state for this attempt has been written
    forced: bool = False  # task was killed after the grace period


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class UploadScheduler:
    """
    Binds queue, network monitor and transfer client.

    Flow:
    - One dispatch loop wakes on queue mutations, network changes, finished
      transfers and backoff timers, then promotes the oldest eligible pending
      jobs while connected and below max_concurrent_uploads.
    - Each promoted job runs as its own task: pending -> uploading -> outcome.
    - Outcomes: completed; pending again (transient error, retry_count += 1,
      backoff window); failed (permanent error or retries exhausted).
    - cancel / pause / remove / clear_all / disconnect abort in-flight transfers
      through their CancelToken; an adapter that ignores the token is killed
      after cancel_grace seconds and the job is settled locally.
    """

    def __init__(
        self,
        queue: UploadQueue,
        network: NetworkMonitor,
        client: TransferClient,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrent_uploads: int = settings.MAX_CONCURRENT_UPLOADS,
        cancel_grace: float = settings.CANCEL_GRACE_SECONDS,
        on_complete: Optional[JobHook] = None,
        on_error: Optional[JobHook] = None,
    ) -> None:
        self._queue = queue
        self._network = network
        self._client = client
        self._retry = retry_policy or RetryPolicy()
        self._max = max(1, int(max_concurrent_uploads))
        self._grace = float(cancel_grace)
        self._on_complete = on_complete
        self._on_error = on_error

        self._active: Dict[str, ActiveTransfer] = {}
        self._not_before: Dict[str, float] = {}  # job id -> loop time it may run again
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._background: Set[asyncio.Task] = set()
        self._wakeup = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._running = False

    # ---------------- Introspection ----------------

    @property
    def running(self) -> bool:
        return self._running

    def has_active_uploads(self) -> bool:
        return bool(self._active)

    def in_backoff(self, job_id: str) -> bool:
        return job_id in self._not_before

    # ---------------- Lifecycle ----------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._unsubscribers = [
            self._queue.subscribe(lambda _jobs: self.request_dispatch()),
            self._network.on_change(self._on_network_change),
        ]
        self._loop_task = asyncio.create_task(self._dispatch_loop(), name="upload-scheduler")
        logger.info("scheduler.start max_concurrent=%d", self._max)
        self.request_dispatch()

    async def stop(self) -> None:
        """Abort in-flight transfers and leave their jobs pending for the next start."""
        if not self._running:
            return
        self._running = False
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        # Backoff windows do not survive a restart
        for job_id in list(self._not_before):
            self._clear_backoff(job_id)

        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        entries = list(self._active.values())
        if entries:
            await asyncio.gather(*(self._abort_and_settle(e, Intent.requeue) for e in entries))

        pending = list(self._background)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        logger.info("scheduler.stop requeued=%d", len(entries))

    def request_dispatch(self) -> None:
        if self._running:
            self._wakeup.set()

    # ---------------- Dispatch ----------------

    async def _dispatch_loop(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            try:
                await self._dispatch()
            except Exception:
                # Keep the loop alive; the next event retries the scan
                logger.exception("scheduler.dispatch.error")

    async def _dispatch(self) -> None:
        if not self._network.current().is_connected:
            return
        now = asyncio.get_running_loop().time()
        for job in self._queue.pending_jobs():
            if len(self._active) >= self._max:
                break
            if job.id in self._active:
                continue
            not_before = self._not_before.get(job.id)
            if not_before is not None and not_before > now:
                continue
            self._launch(job)

    def _launch(self, job: UploadJob) -> None:
        # Slot is taken synchronously so the concurrency bound holds before the task runs
        entry = ActiveTransfer(job_id=job.id, token=CancelToken())
        self._active[job.id] = entry
        self._clear_backoff(job.id)
        entry.task = asyncio.create_task(self._run(entry), name=f"upload-{job.id}")
        logger.info(
            "upload.dispatch job=%s file=%s active=%d/%d",
            job.id,
            job.file_name,
            len(self._active),
            self._max,
        )

    # ---------------- One transfer ----------------

    async def _run(self, entry: ActiveTransfer) -> None:
        job_id = entry.job_id
        try:
            if entry.token.cancelled:
                await self._settle(entry)
                return
            job = self._queue.get_job(job_id)
            job = await self._queue.update_job(
                job_id,
                status=JobStatus.uploading,
                progress=UploadProgress(bytes_total=job.declared_size),
            )
            with timed(logger, "upload.transfer", job=job_id, bytes=job.declared_size) as fields:
                try:
                    descriptor = await self._client.transfer(
                        job, partial(self._on_progress, entry), entry.token
                    )
                except TransferError as exc:
                    fields["outcome"] = exc.kind
                    await self._on_transfer_error(entry, exc)
                except Exception as exc:
                    # Adapter bug: record it on the job rather than letting it escape
                    fields["outcome"] = "crash"
                    logger.exception("upload.transfer.crash job=%s", job_id)
                    await self._fail(entry, exc)
                else:
                    fields["outcome"] = "completed"
                    await self._complete(entry, descriptor)
        except (JobNotFound, InvalidTransition) as exc:
            # Job was removed or moved on while the transfer ran
            entry.settled = True
            logger.info("upload.transfer.stale job=%s err=%s", job_id, exc)
        finally:
            if not entry.forced:
                self._release(entry)

    async def _on_progress(self, entry: ActiveTransfer, bytes_sent: int, bytes_total: int) -> None:
        if entry.intent is not None or entry.settled:
            return
        try:
            job = self._queue.get_job(entry.job_id)
        except JobNotFound:
            return
        if job.status != JobStatus.uploading:
            return
        progress = UploadProgress.of(bytes_sent, bytes_total or job.declared_size)
        if progress == job.progress or progress.bytes_sent < job.progress.bytes_sent:
            return
        await self._queue.update_job(entry.job_id, progress=progress)

    async def _complete(self, entry: ActiveTransfer, descriptor: RemoteFileDescriptor) -> None:
        job = self._queue.get_job(entry.job_id)
        job = await self._queue.update_job(
            entry.job_id,
            status=JobStatus.completed,
            result=descriptor,
            progress=UploadProgress.complete(job.progress.bytes_total or job.declared_size),
        )
        entry.settled = True
        logger.info("upload.completed job=%s remote=%s retries=%d", job.id, descriptor.id, job.retry_count)
        await self._fire(self._on_complete, job)

    async def _fail(self, entry: ActiveTransfer, error: BaseException) -> None:
        job = await self._queue.update_job(
            entry.job_id, status=JobStatus.failed, last_error=_describe(error)
        )
        entry.settled = True
        logger.error(
            "upload.failed job=%s retries=%d/%d err=%s",
            job.id,
            job.retry_count,
            job.max_retries,
            _describe(error),
        )
        await self._fire(self._on_error, job, error)

    async def _on_transfer_error(self, entry: ActiveTransfer, exc: TransferError) -> None:
        if entry.intent is not None or isinstance(exc, TransferCancelled):
            await self._settle(entry)
            return

        job = self._queue.get_job(entry.job_id)
        if exc.transient and not self._network.current().is_connected:
            # Lost connectivity is not the job's fault: no retry charged, no backoff
            await self._queue.update_job(
                job.id,
                status=JobStatus.pending,
                progress=UploadProgress(bytes_total=job.declared_size),
            )
            entry.settled = True
            logger.info("upload.requeue.offline job=%s", job.id)
            return

        decision = self._retry.decide(job, exc)
        if not decision.retry:
            await self._fail(entry, exc)
            return

        self._defer(job.id, decision.delay)
        await self._queue.update_job(
            job.id,
            status=JobStatus.pending,
            retry_count=decision.attempt,
            progress=UploadProgress(bytes_total=job.declared_size),
        )
        entry.settled = True
        logger.warning(
            "upload.retry job=%s attempt=%d/%d delay=%.2fs err=%s",
            job.id,
            decision.attempt,
            job.max_retries,
            decision.delay,
            _describe(exc),
        )

    async def _settle(self, entry: ActiveTransfer) -> None:
        """Write the state an abort asked for. Runs at most once per attempt."""
        if entry.settled:
            return
        entry.settled = True
        intent = entry.intent or Intent.cancel
        try:
            job = self._queue.get_job(entry.job_id)
            reset = UploadProgress(bytes_total=job.declared_size)
            if intent == Intent.remove:
                await self._queue.remove_job(entry.job_id)
            elif intent == Intent.cancel:
                await self._queue.update_job(entry.job_id, status=JobStatus.cancelled)
            elif intent == Intent.pause:
                await self._queue.update_job(entry.job_id, status=JobStatus.paused, progress=reset)
            else:
                await self._queue.update_job(entry.job_id, status=JobStatus.pending, progress=reset)
        except (JobNotFound, InvalidTransition) as exc:
            logger.info("upload.settle.stale job=%s intent=%s err=%s", entry.job_id, intent.value, exc)
            return
        logger.info("upload.aborted job=%s intent=%s", entry.job_id, intent.value)

    # ---------------- Aborting ----------------

    def _signal(self, entry: ActiveTransfer, intent: Intent) -> None:
        if entry.intent is None or intent.rank > entry.intent.rank:
            entry.intent = intent
        entry.token.cancel(entry.intent.value)

    async def _abort(self, entry: ActiveTransfer, intent: Intent) -> bool:
        """Signal and wait for the adapter. Returns False if the task had to be killed."""
        self._signal(entry, intent)
        task = entry.task
        if task is None or task.done():
            return True
        done, _ = await asyncio.wait({task}, timeout=self._grace)
        if done:
            return True
        logger.warning(
            "upload.abort.timeout job=%s grace=%.1fs intent=%s",
            entry.job_id,
            self._grace,
            entry.intent.value if entry.intent else "-",
        )
        entry.forced = True
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return False

    async def _abort_and_settle(self, entry: ActiveTransfer, intent: Intent) -> None:
        acknowledged = await self._abort(entry, intent)
        if not acknowledged:
            await self._settle(entry)
            self._release(entry)

    def _release(self, entry: ActiveTransfer) -> None:
        if self._active.get(entry.job_id) is entry:
            del self._active[entry.job_id]
        self.request_dispatch()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_network_change(self, status: NetworkStatus) -> None:
        if not status.is_connected:
            aborted = 0
            for entry in list(self._active.values()):
                if entry.intent is None:
                    self._spawn(self._abort_and_settle(entry, Intent.requeue))
                    aborted += 1
            logger.info("scheduler.offline aborting=%d", aborted)
        self.request_dispatch()

    # ---------------- Backoff ----------------

    def _defer(self, job_id: str, delay: float) -> None:
        loop = asyncio.get_running_loop()
        self._clear_backoff(job_id)
        self._not_before[job_id] = loop.time() + delay
        self._timers[job_id] = loop.call_later(delay, self._backoff_elapsed, job_id)

    def _backoff_elapsed(self, job_id: str) -> None:
        # The timer may fire a hair before not_before on coarse clocks; firing is what counts
        self._timers.pop(job_id, None)
        self._not_before.pop(job_id, None)
        self.request_dispatch()

    def _clear_backoff(self, job_id: str) -> None:
        self._not_before.pop(job_id, None)
        handle = self._timers.pop(job_id, None)
        if handle is not None:
            handle.cancel()

    # ---------------- Caller operations ----------------

    async def cancel(self, job_id: str) -> UploadJob:
        job = self._queue.get_job(job_id)
        entry = self._active.get(job_id)
        if entry is not None:
            await self._abort_and_settle(entry, Intent.cancel)
            return self._queue.get_job(job_id)
        if job.status == JobStatus.cancelled:
            return job
        self._clear_backoff(job_id)
        return await self._queue.update_job(job_id, status=JobStatus.cancelled)

    async def pause(self, job_id: str) -> UploadJob:
        job = self._queue.get_job(job_id)
        entry = self._active.get(job_id)
        if entry is not None:
            await self._abort_and_settle(entry, Intent.pause)
            return self._queue.get_job(job_id)
        if job.status == JobStatus.paused:
            return job
        self._clear_backoff(job_id)
        return await self._queue.update_job(job_id, status=JobStatus.paused)

    async def resume(self, job_id: str) -> UploadJob:
        job = self._queue.get_job(job_id)
        if job.status in (JobStatus.pending, JobStatus.uploading):
            return job
        if job.status != JobStatus.paused:
            raise InvalidTransition(job_id, job.status.value, JobStatus.pending.value)
        return await self._queue.update_job(
            job_id,
            status=JobStatus.pending,
            progress=UploadProgress(bytes_total=job.declared_size),
        )

    async def retry(self, job_id: str) -> UploadJob:
        job = self._queue.get_job(job_id)
        if job.status != JobStatus.failed:
            raise InvalidTransition(job_id, job.status.value, JobStatus.pending.value)
        self._clear_backoff(job_id)
        return await self._queue.update_job(
            job_id,
            status=JobStatus.pending,
            retry_count=0,
            progress=UploadProgress(bytes_total=job.declared_size),
        )

    async def remove(self, job_id: str) -> None:
        self._queue.get_job(job_id)
        entry = self._active.get(job_id)
        if entry is not None:
            await self._abort_and_settle(entry, Intent.remove)
        self._clear_backoff(job_id)
        # A transfer that finished despite the abort leaves the record behind
        with suppress(JobNotFound):
            await self._queue.remove_job(job_id)

    async def clear_completed(self) -> int:
        return await self._queue.clear_completed()

    async def clear_all(self) -> List[str]:
        entries = list(self._active.values())
        for entry in entries:
            self._signal(entry, Intent.remove)
        removed = await self._queue.clear_all()
        for job_id in list(self._timers):
            self._clear_backoff(job_id)
        self._not_before.clear()
        if entries:
            await asyncio.gather(*(self._abort_and_settle(e, Intent.remove) for e in entries))
        logger.info("scheduler.clear_all removed=%d aborted=%d", len(removed), len(entries))
        return removed

    # ---------------- Hooks ----------------

    @staticmethod
    async def _fire(hook: Optional[JobHook], *args) -> None:
        if hook is None:
            return
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("upload.hook.error")
