# controller/controller_dependencies.py
from fastapi import Request
from service.upload_service import UploadService
from util.enums import ErrorMessage
from util.errors import AppError


def get_upload_service(request: Request) -> UploadService:
    # One service per process; built and started in main.lifespan
    service = getattr(request.app.state, "upload_service", None)
    if service is None:
        info = ErrorMessage.SERVICE_UNAVAILABLE.value
        raise AppError(info.message, info.http_status)
    return service
