# util/enums.py
from enum import Enum
from typing import NamedTuple
from fastapi import status


class Color(str, Enum):
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    BOLD = "\033[1m"

    def __str__(self):
        return self.value


class Environment(str, Enum):
    DEV = "dev"
    PROD = "prod"


class ErrorInfo(NamedTuple):
    code: str
    message: str
    http_status: int


class ErrorMessage(Enum):
    JOB_NOT_FOUND = ErrorInfo(
        "job_not_found", "Unknown upload job", status.HTTP_404_NOT_FOUND
    )
    INVALID_SPEC = ErrorInfo(
        "invalid_spec", "Invalid upload request", status.HTTP_422_UNPROCESSABLE_ENTITY
    )
    INVALID_TRANSITION = ErrorInfo(
        "invalid_transition", "Operation not allowed for job state", status.HTTP_409_CONFLICT
    )
    SERVICE_UNAVAILABLE = ErrorInfo(
        "service_unavailable", "Upload service is not running", status.HTTP_503_SERVICE_UNAVAILABLE
    )
    INTERNAL_ERROR = ErrorInfo(
        "internal_error", "Internal Error", status.HTTP_500_INTERNAL_SERVER_ERROR
    )
