# util/types.py
from typing import Any, Awaitable, Callable, Literal, TypedDict, Union


# Flow: Narrow types for NDJSON events on the upload event stream.
EventType = Literal["snapshot", "queue"]

Unsubscribe = Callable[[], None]

# (bytes_sent, bytes_total); awaited by the transfer client
ProgressCallback = Callable[[int, int], Awaitable[None]]

# on_complete / on_error hooks may be plain functions or coroutines
JobHook = Callable[..., Union[None, Awaitable[None]]]


class StatsPayload(TypedDict):
    total: int
    pending: int
    uploading: int
    paused: int
    completed: int
    failed: int
    cancelled: int
    totalProgress: float


class QueuePayload(TypedDict):
    stats: StatsPayload
    jobs: list[dict[str, Any]]
