# core/streaming.py
import asyncio
import json
import logging
from typing import AsyncIterator, Dict, Final, Iterable, List, Protocol
from core.statistics import compute_snapshot
from model.api import JobResponse, StatsResponse, StreamEvent
from model.job import QueueSnapshot, UploadJob
from util.types import EventType, QueuePayload, Unsubscribe

LINE_SEP: Final[str] = "\n"
logger = logging.getLogger(__name__)


class QueueSource(Protocol):
    def list_jobs(self) -> List[UploadJob]: ...

    def get_stats(self) -> QueueSnapshot: ...

    def subscribe(self, callback) -> Unsubscribe: ...


def ndjson_line(obj: Dict[str, object]) -> bytes:
    return (json.dumps(obj, separators=(",", ":")) + LINE_SEP).encode("utf-8")


def queue_payload(snapshot: QueueSnapshot, jobs: Iterable[UploadJob]) -> QueuePayload:
    return {
        "stats": StatsResponse.from_snapshot(snapshot).model_dump(),
        "jobs": [JobResponse.from_job(j).model_dump(mode="json") for j in jobs],
    }


def _event(kind: EventType, payload: QueuePayload) -> bytes:
    return ndjson_line(StreamEvent(type=kind, payload=dict(payload)).model_dump())


async def make_queue_stream(source: QueueSource) -> AsyncIterator[bytes]:
    """
    NDJSON feed of the queue:
      - one `snapshot` event with the state at connect time
      - `queue` events as the queue changes, in mutation order
    Subscribes before the snapshot is taken so no mutation falls in between.
    A reader that falls behind only holds the newest job list: pending updates
    are replaced, so the final state is always delivered.
    """
    updates: "asyncio.Queue[List[UploadJob]]" = asyncio.Queue(maxsize=1)

    def _keep_latest(jobs: List[UploadJob]) -> None:
        if updates.full():
            updates.get_nowait()
        updates.put_nowait(jobs)

    unsubscribe = source.subscribe(_keep_latest)
    logger.info("stream.open")
    try:
        yield _event("snapshot", queue_payload(source.get_stats(), source.list_jobs()))
        while True:
            jobs = await updates.get()
            yield _event("queue", queue_payload(compute_snapshot(jobs), jobs))
    finally:
        unsubscribe()
        logger.info("stream.close")
