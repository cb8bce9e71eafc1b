# model/api.py
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field
from model.job import JobSpec, QueueSnapshot, UploadJob
from model.network import ConnectionKind, NetworkStatus


class EnqueueFile(BaseModel):
    sourceRef: str = Field(min_length=1)
    fileName: str
    declaredSize: int
    destinationParentId: Optional[str] = None
    mimeType: Optional[str] = None
    maxRetries: Optional[int] = None

    def to_spec(self) -> JobSpec:
        return JobSpec(
            source_ref=self.sourceRef,
            file_name=self.fileName,
            declared_size=self.declaredSize,
            destination_parent_id=self.destinationParentId,
            mime_type=self.mimeType,
            max_retries=self.maxRetries,
        )


class EnqueueRequest(BaseModel):
    files: list[EnqueueFile] = Field(min_length=1)


class EnqueueResponse(BaseModel):
    jobIds: list[str]


class JobResponse(BaseModel):
    id: str
    fileName: str
    declaredSize: int
    destinationParentId: Optional[str] = None
    status: str
    bytesSent: int
    bytesTotal: int
    percentage: int
    retryCount: int
    maxRetries: int
    lastError: Optional[str] = None
    remoteFileId: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_job(cls, job: UploadJob) -> "JobResponse":
        return cls(
            id=job.id,
            fileName=job.file_name,
            declaredSize=job.declared_size,
            destinationParentId=job.destination_parent_id,
            status=job.status.value,
            bytesSent=job.progress.bytes_sent,
            bytesTotal=job.progress.bytes_total,
            percentage=job.progress.percentage,
            retryCount=job.retry_count,
            maxRetries=job.max_retries,
            lastError=job.last_error,
            remoteFileId=job.result.id if job.result else None,
            createdAt=job.created_at,
            updatedAt=job.updated_at,
        )


class StatsResponse(BaseModel):
    total: int
    pending: int
    uploading: int
    paused: int
    completed: int
    failed: int
    cancelled: int
    totalProgress: float

    @classmethod
    def from_snapshot(cls, snap: QueueSnapshot) -> "StatsResponse":
        return cls(
            total=snap.total,
            pending=snap.pending,
            uploading=snap.uploading,
            paused=snap.paused,
            completed=snap.completed,
            failed=snap.failed,
            cancelled=snap.cancelled,
            totalProgress=snap.total_progress,
        )


class ClearResponse(BaseModel):
    removed: int


class NetworkStatusBody(BaseModel):
    isConnected: bool
    isInternetReachable: Optional[bool] = None
    kind: ConnectionKind = ConnectionKind.unknown

    def to_status(self) -> NetworkStatus:
        return NetworkStatus(
            is_connected=self.isConnected,
            is_internet_reachable=self.isInternetReachable,
            kind=self.kind,
        )

    @classmethod
    def from_status(cls, status: NetworkStatus) -> "NetworkStatusBody":
        return cls(
            isConnected=status.is_connected,
            isInternetReachable=status.is_internet_reachable,
            kind=status.kind,
        )


class StreamEvent(BaseModel):
    type: Literal["snapshot", "queue"]
    payload: dict
