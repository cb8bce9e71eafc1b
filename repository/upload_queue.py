# repository/upload_queue.py
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Final, FrozenSet, Iterable, List
from pydantic import TypeAdapter, ValidationError
from config.settings import settings
from core.state_machine import ensure_transition
from core.statistics import compute_snapshot
from model.job import JobSpec, JobStatus, QueueSnapshot, UploadJob, UploadProgress
from repository.kv_store import KeyValueStore
from util.errors import InvalidSpec, JobNotFound
from util.functions import new_upload_id, utc_now
from util.types import Unsubscribe

logger = logging.getLogger(__name__)

QueueListener = Callable[[List[UploadJob]], None]

MUTABLE_FIELDS: Final[FrozenSet[str]] = frozenset(
    {"status", "progress", "retry_count", "max_retries", "last_error", "result"}
)

_JOBS_ADAPTER: Final = TypeAdapter(List[UploadJob])


class UploadQueue:
    """
    Authoritative, persisted list of upload jobs.

    Flow:
    - Reads (get_job, list_jobs, pending_jobs, snapshot) are plain synchronous lookups.
    - Mutations run one at a time under a lock: apply in memory -> write the whole
      list to the key/value store -> notify subscribers, in that order.
    - Jobs leave the queue only through remove_job / clear_completed / clear_all.
    """

    def __init__(
        self,
        store: KeyValueStore,
        storage_key: str = settings.QUEUE_STORAGE_KEY,
        default_max_retries: int = settings.MAX_RETRIES,
    ) -> None:
        self._store = store
        self._key = storage_key
        self._default_max_retries = int(default_max_retries)
        self._jobs: Dict[str, UploadJob] = {}  # insertion order == enqueue order
        self._lock = asyncio.Lock()
        self._listeners: List[QueueListener] = []

    # ---------------- Restore ----------------

    async def load(self) -> int:
        """
        Restore the persisted list. In-flight transfers do not survive a restart,
        so pending/uploading jobs come back as pending with their progress reset.
        """
        raw = await self._store.get(self._key)
        if not raw:
            return 0
        try:
            items = json.loads(raw)
        except ValueError:
            logger.error("queue.load.corrupt key=%s", self._key)
            return 0

        restored: List[UploadJob] = []
        for item in items if isinstance(items, list) else []:
            try:
                job = UploadJob.model_validate(item)
            except ValidationError:
                # Skip malformed entries instead of dropping the whole queue
                logger.warning("queue.load.skip_malformed")
                continue
            if job.status in (JobStatus.pending, JobStatus.uploading):
                job = job.model_copy(
                    update={
                        "status": JobStatus.pending,
                        "progress": UploadProgress(bytes_total=job.declared_size),
                    }
                )
            restored.append(job)

        async with self._lock:
            merged = {j.id: j for j in restored if j.id not in self._jobs}
            merged.update(self._jobs)
            self._jobs = merged
            await self._commit()
        logger.info("queue.load.ok restored=%d", len(restored))
        return len(restored)

    # ---------------- Reads ----------------

    def get_job(self, job_id: str) -> UploadJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list_jobs(self) -> List[UploadJob]:
        return list(self._jobs.values())

    def pending_jobs(self) -> List[UploadJob]:
        """Pending jobs, oldest first; ties keep enqueue order (sorted() is stable)."""
        pending = [j for j in self._jobs.values() if j.status == JobStatus.pending]
        return sorted(pending, key=lambda j: j.created_at)

    def snapshot(self) -> QueueSnapshot:
        return compute_snapshot(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)

    # ---------------- Mutations ----------------

    async def add_jobs(self, specs: Iterable[JobSpec]) -> List[UploadJob]:
        specs = list(specs)
        # Validate the whole batch first so a bad entry adds nothing
        for spec in specs:
            if not (spec.file_name or "").strip():
                raise InvalidSpec("fileName must not be empty")
            if spec.declared_size < 0:
                raise InvalidSpec(f"declaredSize must be >= 0 (got {spec.declared_size})")
            if spec.max_retries is not None and spec.max_retries < 0:
                raise InvalidSpec(f"maxRetries must be >= 0 (got {spec.max_retries})")

        async with self._lock:
            created: List[UploadJob] = []
            for spec in specs:
                now = utc_now()
                job = UploadJob(
                    id=new_upload_id(),
                    source_ref=spec.source_ref,
                    file_name=spec.file_name,
                    declared_size=spec.declared_size,
                    destination_parent_id=spec.destination_parent_id,
                    mime_type=spec.mime_type,
                    progress=UploadProgress(bytes_total=spec.declared_size),
                    max_retries=(
                        spec.max_retries
                        if spec.max_retries is not None
                        else self._default_max_retries
                    ),
                    created_at=now,
                    updated_at=now,
                )
                self._jobs[job.id] = job
                created.append(job)
            if created:
                await self._commit()
        logger.info("queue.add count=%d total=%d", len(created), len(self._jobs))
        return created

    async def update_job(self, job_id: str, **changes: Any) -> UploadJob:
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        async with self._lock:
            current = self.get_job(job_id)
            target = JobStatus(changes.get("status", current.status))
            ensure_transition(job_id, current.status, target)

            progress = changes.get("progress")
            if isinstance(progress, dict):
                progress = UploadProgress(**progress)
            if (
                progress is not None
                and current.status == JobStatus.uploading
                and target == JobStatus.uploading
                and progress.bytes_sent < current.progress.bytes_sent
            ):
                # Progress only moves forward while a transfer is running
                progress = None
                changes.pop("progress")
            if target == JobStatus.completed:
                total = progress.bytes_total if progress is not None else current.progress.bytes_total
                progress = UploadProgress.complete(total or current.declared_size)
            elif progress is not None and progress.percentage >= 100:
                progress = UploadProgress.of(progress.bytes_sent, progress.bytes_total)
            if progress is not None:
                changes["progress"] = progress

            if target != JobStatus.failed:
                changes["last_error"] = None

            changes["status"] = target
            changes["updated_at"] = utc_now()
            updated = current.model_copy(update=changes)
            self._jobs[job_id] = updated
            await self._commit()
        if current.status != target:
            logger.debug(
                "queue.transition job=%s %s->%s", job_id, current.status.value, target.value
            )
        return updated

    async def remove_job(self, job_id: str) -> UploadJob:
        async with self._lock:
            job = self.get_job(job_id)
            del self._jobs[job_id]
            await self._commit()
        logger.info("queue.remove job=%s", job_id)
        return job

    async def clear_completed(self) -> int:
        async with self._lock:
            done = [jid for jid, j in self._jobs.items() if j.status == JobStatus.completed]
            if not done:
                return 0
            for jid in done:
                del self._jobs[jid]
            await self._commit()
        logger.info("queue.clear_completed removed=%d", len(done))
        return len(done)

    async def clear_all(self) -> List[str]:
        async with self._lock:
            removed = list(self._jobs)
            if not removed:
                return []
            self._jobs.clear()
            await self._commit()
        logger.info("queue.clear_all removed=%d", len(removed))
        return removed

    # ---------------- Subscriptions ----------------

    def subscribe(self, callback: QueueListener) -> Unsubscribe:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    # ---------------- Internals ----------------

    async def _commit(self) -> None:
        """Persist then notify. Caller holds the lock, so listeners see mutations in order."""
        jobs = list(self._jobs.values())
        try:
            payload = _JOBS_ADAPTER.dump_json(jobs).decode("utf-8")
            await self._store.set(self._key, payload)
        except Exception:
            # Memory stays authoritative; the next mutation rewrites the full list
            logger.exception("queue.persist.error key=%s jobs=%d", self._key, len(jobs))

        for listener in list(self._listeners):
            try:
                listener(jobs)
            except Exception:
                logger.exception("queue.listener.error")
