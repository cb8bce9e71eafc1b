# model/job.py
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from model.transfer import RemoteFileDescriptor
from util.functions import percentage_of


class JobStatus(str, Enum):
    pending = "pending"
    uploading = "uploading"
    paused = "paused"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class UploadProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    bytes_sent: int = 0
    bytes_total: int = 0
    percentage: int = 0

    @classmethod
    def of(cls, bytes_sent: int, bytes_total: int) -> "UploadProgress":
        sent = max(0, min(bytes_sent, bytes_total))
        return cls(
            bytes_sent=sent,
            bytes_total=bytes_total,
            percentage=percentage_of(sent, bytes_total),
        )

    @classmethod
    def complete(cls, bytes_total: int) -> "UploadProgress":
        return cls(bytes_sent=bytes_total, bytes_total=bytes_total, percentage=100)


class JobSpec(BaseModel):
    source_ref: str
    file_name: str
    declared_size: int
    destination_parent_id: Optional[str] = None
    mime_type: Optional[str] = None
    max_retries: Optional[int] = None


class UploadJob(BaseModel):
    # Frozen: every update goes through UploadQueue.update_job and yields a new instance
    model_config = ConfigDict(frozen=True)

    id: str
    source_ref: str
    file_name: str
    declared_size: int
    destination_parent_id: Optional[str] = None
    mime_type: Optional[str] = None
    status: JobStatus = JobStatus.pending
    progress: UploadProgress = Field(default_factory=UploadProgress)
    retry_count: int = 0
    max_retries: int = 0
    last_error: Optional[str] = None
    result: Optional[RemoteFileDescriptor] = None
    created_at: datetime
    updated_at: datetime


class QueueSnapshot(BaseModel):
    total: int = 0
    pending: int = 0
    uploading: int = 0
    paused: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total_progress: float = 0.0
