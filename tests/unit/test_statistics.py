from datetime import datetime, timezone

from core.statistics import compute_snapshot
from model.job import JobStatus, UploadJob, UploadProgress

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _job(job_id: str, status: JobStatus, pct: int) -> UploadJob:
    return UploadJob(
        id=job_id,
        source_ref=f"/tmp/{job_id}",
        file_name=job_id,
        declared_size=100,
        status=status,
        progress=UploadProgress(bytes_sent=pct, bytes_total=100, percentage=pct),
        created_at=NOW,
        updated_at=NOW,
    )


class TestComputeSnapshot:
    def test_empty_queue(self):
        snap = compute_snapshot([])

        assert snap.total == 0
        assert snap.total_progress == 0

    def test_counts_per_status_and_mean_progress(self):
        jobs = [
            _job("a", JobStatus.completed, 100),
            _job("b", JobStatus.uploading, 50),
            _job("c", JobStatus.pending, 0),
            _job("d", JobStatus.failed, 0),
        ]

        snap = compute_snapshot(jobs)

        assert snap.total == 4
        assert (snap.completed, snap.uploading, snap.pending, snap.failed) == (1, 1, 1, 1)
        assert snap.paused == 0 and snap.cancelled == 0
        assert snap.total_progress == 37.5

    def test_counts_always_sum_to_total(self):
        jobs = [_job(str(i), status, 0) for i, status in enumerate(JobStatus)]

        snap = compute_snapshot(jobs)

        assert (
            snap.pending + snap.uploading + snap.paused + snap.completed + snap.failed + snap.cancelled
            == snap.total
            == len(JobStatus)
        )
