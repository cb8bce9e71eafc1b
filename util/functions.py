# util/functions.py
import time
from datetime import datetime, timezone
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_upload_id() -> str:
    """`upload_<epoch-ms>_<7 hex chars>`; sortable by creation time at a glance."""
    return f"upload_{int(time.time() * 1000)}_{uuid4().hex[:7]}"


def percentage_of(bytes_sent: int, bytes_total: int, *, completed: bool = False) -> int:
    """
    - 100 only for completed transfers, 0 only when nothing was sent.
    - Anything in between is the rounded ratio clamped into 1..99.
    """
    if completed:
        return 100
    if bytes_sent <= 0 or bytes_total <= 0:
        return 0
    pct = round(bytes_sent / bytes_total * 100)
    return min(99, max(1, pct))


def strip_file_scheme(source_ref: str) -> str:
    return source_ref[len("file://"):] if source_ref.startswith("file://") else source_ref


def chunk_count(size: int, chunk_size: int) -> int:
    if size <= 0:
        return 0
    return (size + chunk_size - 1) // chunk_size
