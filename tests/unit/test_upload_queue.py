import json

import pytest

from model.job import JobStatus, UploadProgress
from repository.kv_store import InMemoryKeyValueStore
from repository.upload_queue import UploadQueue
from util.errors import InvalidSpec, InvalidTransition, JobNotFound


class _BrokenStore(InMemoryKeyValueStore):
    async def set(self, key: str, value: str) -> None:
        raise ConnectionError("disk full")


class TestAddJobs:
    """Enqueue validation and defaults."""

    @pytest.mark.asyncio
    async def test_new_jobs_start_pending_with_zero_progress(self, queue, spec_factory):
        jobs = await queue.add_jobs([spec_factory("a.bin", 1024), spec_factory("b.bin", 2048)])

        assert [j.status for j in jobs] == [JobStatus.pending, JobStatus.pending]
        assert jobs[0].progress == UploadProgress(bytes_sent=0, bytes_total=1024, percentage=0)
        assert jobs[0].retry_count == 0
        assert jobs[0].max_retries == 3
        assert jobs[0].id != jobs[1].id
        assert jobs[0].id.startswith("upload_")

    @pytest.mark.asyncio
    async def test_per_job_max_retries_overrides_default(self, queue, spec_factory):
        (job,) = await queue.add_jobs([spec_factory(max_retries=0)])

        assert job.max_retries == 0

    @pytest.mark.asyncio
    async def test_invalid_entry_rejects_whole_batch(self, queue, spec_factory):
        with pytest.raises(InvalidSpec):
            await queue.add_jobs([spec_factory("ok.bin"), spec_factory("bad.bin", -1)])

        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_blank_file_name_rejected(self, queue, spec_factory):
        with pytest.raises(InvalidSpec):
            await queue.add_jobs([spec_factory("   ")])

    @pytest.mark.asyncio
    async def test_empty_batch_is_a_no_op(self, queue, store):
        assert await queue.add_jobs([]) == []
        assert store.writes == 0


class TestReads:
    @pytest.mark.asyncio
    async def test_get_job_unknown_id(self, queue):
        with pytest.raises(JobNotFound):
            queue.get_job("nope")

    @pytest.mark.asyncio
    async def test_pending_jobs_oldest_first(self, queue, spec_factory):
        jobs = await queue.add_jobs([spec_factory(f"{i}.bin") for i in range(4)])
        await queue.update_job(jobs[1].id, status=JobStatus.paused)

        pending = queue.pending_jobs()

        assert [j.id for j in pending] == [jobs[0].id, jobs[2].id, jobs[3].id]

    @pytest.mark.asyncio
    async def test_snapshot_reflects_queue(self, queue, spec_factory):
        jobs = await queue.add_jobs([spec_factory("a"), spec_factory("b")])
        await queue.update_job(jobs[0].id, status=JobStatus.uploading)

        snap = queue.snapshot()

        assert (snap.total, snap.pending, snap.uploading) == (2, 1, 1)


class TestUpdateJob:
    """Transition rules and progress handling inside update_job."""

    @pytest.mark.asyncio
    async def test_illegal_transition_leaves_job_untouched(self, queue, spec_factory):
        (job,) = await queue.add_jobs([spec_factory()])
        await queue.update_job(job.id, status=JobStatus.uploading)
        await queue.update_job(job.id, status=JobStatus.completed)

        with pytest.raises(InvalidTransition):
            await queue.update_job(job.id, status=JobStatus.pending)

        assert queue.get_job(job.id).status == JobStatus.completed

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, queue, spec_factory):
        (job,) = await queue.add_jobs([spec_factory()])

        with pytest.raises(ValueError):
            await queue.update_job(job.id, file_name="other")

    @pytest.mark.asyncio
    async def test_unknown_job(self, queue):
        with pytest.raises(JobNotFound):
            await queue.update_job("nope", status=JobStatus.cancelled)

    @pytest.mark.asyncio
    async def test_progress_never_moves_backwards_while_uploading(self, queue, spec_factory):
        (job,) = await queue.add_jobs([spec_factory(size=1000)])
        await queue.update_job(job.id, status=JobStatus.uploading)
        await queue.update_job(job.id, progress=UploadProgress.of(600, 1000))

        updated = await queue.update_job(job.id, progress=UploadProgress.of(300, 1000))

        assert updated.progress.bytes_sent == 600
        assert updated.progress.percentage == 60

    @pytest.mark.asyncio
    async def test_completion_forces_full_progress(self, queue, spec_factory):
        (job,) = await queue.add_jobs([spec_factory(size=1000)])
        await queue.update_job(job.id, status=JobStatus.uploading)

        done = await queue.update_job(job.id, status=JobStatus.completed)

        assert done.progress.percentage == 100
        assert done.progress.bytes_sent == 1000

    @pytest.mark.asyncio
    async def test_hundred_percent_reserved_for_completed(self, queue, spec_factory):
        (job,) = await queue.add_jobs([spec_factory(size=1000)])
        await queue.update_job(job.id, status=JobStatus.uploading)

        updated = await queue.update_job(
            job.id, progress=UploadProgress(bytes_sent=1000, bytes_total=1000, percentage=100)
        )

        assert updated.progress.percentage == 99

    @pytest.mark.asyncio
    async def test_last_error_cleared_when_leaving_failed(self, queue, spec_factory):
        (job,) = await queue.add_jobs([spec_factory()])
        await queue.update_job(job.id, status=JobStatus.uploading)
        failed = await queue.update_job(job.id, status=JobStatus.failed, last_error="boom")

        retried = await queue.update_job(job.id, status=JobStatus.pending, retry_count=0)

        assert failed.last_error == "boom"
        assert retried.last_error is None

    @pytest.mark.asyncio
    async def test_updated_at_advances(self, queue, spec_factory):
        (job,) = await queue.add_jobs([spec_factory()])

        updated = await queue.update_job(job.id, status=JobStatus.paused)

        assert updated.updated_at >= job.updated_at
        assert updated.created_at == job.created_at


class TestRemoval:
    @pytest.mark.asyncio
    async def test_clear_completed_is_idempotent(self, queue, spec_factory):
        jobs = await queue.add_jobs([spec_factory("a"), spec_factory("b")])
        await queue.update_job(jobs[0].id, status=JobStatus.uploading)
        await queue.update_job(jobs[0].id, status=JobStatus.completed)

        assert await queue.clear_completed() == 1
        assert await queue.clear_completed() == 0
        assert [j.id for j in queue.list_jobs()] == [jobs[1].id]

    @pytest.mark.asyncio
    async def test_clear_all_returns_removed_ids(self, queue, spec_factory):
        jobs = await queue.add_jobs([spec_factory("a"), spec_factory("b")])

        removed = await queue.clear_all()

        assert removed == [j.id for j in jobs]
        assert len(queue) == 0
        assert await queue.clear_all() == []

    @pytest.mark.asyncio
    async def test_remove_job(self, queue, spec_factory):
        (job,) = await queue.add_jobs([spec_factory()])

        await queue.remove_job(job.id)

        with pytest.raises(JobNotFound):
            await queue.remove_job(job.id)


class TestPersistenceAndRestore:
    """Every mutation writes the full list; load() restores it."""

    @pytest.mark.asyncio
    async def test_each_mutation_persists_full_list(self, queue, store, spec_factory):
        jobs = await queue.add_jobs([spec_factory("a"), spec_factory("b")])
        await queue.update_job(jobs[0].id, status=JobStatus.paused)

        saved = json.loads(store.data["queue"])

        assert store.writes == 2
        assert [item["id"] for item in saved] == [j.id for j in jobs]
        assert saved[0]["status"] == "paused"

    @pytest.mark.asyncio
    async def test_restore_requeues_in_flight_jobs(self, queue, store, spec_factory):
        jobs = await queue.add_jobs([spec_factory("a", 1000), spec_factory("b"), spec_factory("c")])
        await queue.update_job(jobs[0].id, status=JobStatus.uploading)
        await queue.update_job(jobs[0].id, progress=UploadProgress.of(500, 1000))
        await queue.update_job(jobs[1].id, status=JobStatus.uploading)
        await queue.update_job(jobs[1].id, status=JobStatus.failed, last_error="boom")
        await queue.update_job(jobs[2].id, status=JobStatus.paused)

        restored = UploadQueue(InMemoryKeyValueStore(dict(store.data)), storage_key="queue")
        count = await restored.load()

        by_id = {j.id: j for j in restored.list_jobs()}
        assert count == 3
        assert by_id[jobs[0].id].status == JobStatus.pending
        assert by_id[jobs[0].id].progress.bytes_sent == 0
        assert by_id[jobs[1].id].status == JobStatus.failed
        assert by_id[jobs[1].id].last_error == "boom"
        assert by_id[jobs[2].id].status == JobStatus.paused

    @pytest.mark.asyncio
    async def test_restore_skips_malformed_entries(self, queue, store, spec_factory):
        (job,) = await queue.add_jobs([spec_factory()])
        items = json.loads(store.data["queue"]) + [{"id": "broken"}]
        restored = UploadQueue(InMemoryKeyValueStore({"queue": json.dumps(items)}), storage_key="queue")

        assert await restored.load() == 1
        assert restored.get_job(job.id).file_name == job.file_name

    @pytest.mark.asyncio
    async def test_restore_of_corrupt_payload_starts_empty(self):
        restored = UploadQueue(InMemoryKeyValueStore({"queue": "{not json"}), storage_key="queue")

        assert await restored.load() == 0
        assert len(restored) == 0

    @pytest.mark.asyncio
    async def test_store_failure_keeps_memory_authoritative(self, spec_factory):
        q = UploadQueue(_BrokenStore(), storage_key="queue")

        (job,) = await q.add_jobs([spec_factory()])

        assert q.get_job(job.id).status == JobStatus.pending


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_listener_sees_every_mutation_in_order(self, queue, spec_factory):
        seen = []
        queue.subscribe(lambda jobs: seen.append([j.status for j in jobs]))

        (job,) = await queue.add_jobs([spec_factory()])
        await queue.update_job(job.id, status=JobStatus.uploading)
        await queue.update_job(job.id, status=JobStatus.completed)

        assert seen == [
            [JobStatus.pending],
            [JobStatus.uploading],
            [JobStatus.completed],
        ]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_notifications(self, queue, spec_factory):
        seen = []
        unsubscribe = queue.subscribe(seen.append)
        await queue.add_jobs([spec_factory()])

        unsubscribe()
        unsubscribe()
        await queue.add_jobs([spec_factory()])

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_mutation(self, queue, spec_factory):
        def _boom(jobs):
            raise RuntimeError("listener bug")

        seen = []
        queue.subscribe(_boom)
        queue.subscribe(seen.append)

        (job,) = await queue.add_jobs([spec_factory()])

        assert queue.get_job(job.id)
        assert len(seen) == 1
