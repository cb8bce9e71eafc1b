# util/errors.py
from typing import Optional
from fastapi import HTTPException, status


class AppError(HTTPException):
    # Flow: raise AppError to short-circuit with a typed status & message.
    def __init__(
        self, message: str, http_status: int = status.HTTP_400_BAD_REQUEST
    ) -> None:
        super().__init__(status_code=http_status, detail=message)


# ---------------- Queue / state errors (raised synchronously to callers) ----------------


class UploadQueueError(Exception):
    """Base for errors a caller of the queue or scheduler must handle."""


class InvalidSpec(UploadQueueError):
    pass


class JobNotFound(UploadQueueError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Upload job {job_id} not found")
        self.job_id = job_id


class InvalidTransition(UploadQueueError):
    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"Job {job_id}: {current} -> {target} is not allowed")
        self.job_id = job_id
        self.current = current
        self.target = target


# ---------------- Transfer errors (recorded on jobs, never raised past the scheduler) ----------------


class TransferError(Exception):
    kind: str = "transfer_error"
    transient: bool = False


class NetworkError(TransferError):
    kind = "network_error"
    transient = True


class TransferTimeout(TransferError):
    kind = "timeout"
    transient = True


class TransferCancelled(TransferError):
    kind = "cancelled"


class SourceUnavailable(TransferError):
    kind = "source_unavailable"


class ServerRejected(TransferError):
    kind = "server_rejected"

    def __init__(self, status_code: int, message: Optional[str] = None) -> None:
        self.status_code = status_code
        self.message = message or "Upload rejected"
        super().__init__(f"{status_code}: {self.message}")

    @property
    def transient(self) -> bool:  # type: ignore[override]
        # 4xx is a client error; only server-side failures are worth retrying
        return self.status_code >= 500
