# core/statistics.py
from collections import Counter
from typing import Iterable
from model.job import JobStatus, QueueSnapshot, UploadJob


def compute_snapshot(jobs: Iterable[UploadJob]) -> QueueSnapshot:
    """
    Recomputed from scratch on every call; there is no running tally to drift.
    total_progress is the mean percentage over all jobs, 0 for an empty queue.
    """
    items = list(jobs)
    if not items:
        return QueueSnapshot()

    counts = Counter(j.status for j in items)
    mean = sum(j.progress.percentage for j in items) / len(items)
    return QueueSnapshot(
        total=len(items),
        pending=counts[JobStatus.pending],
        uploading=counts[JobStatus.uploading],
        paused=counts[JobStatus.paused],
        completed=counts[JobStatus.completed],
        failed=counts[JobStatus.failed],
        cancelled=counts[JobStatus.cancelled],
        total_progress=mean,
    )
