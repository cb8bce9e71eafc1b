# controller/upload_controller.py
from typing import List
from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import StreamingResponse
from controller.controller_dependencies import get_upload_service
from core.streaming import make_queue_stream
from model.api import (
    ClearResponse,
    EnqueueRequest,
    EnqueueResponse,
    JobResponse,
    NetworkStatusBody,
    StatsResponse,
)
from service.upload_service import UploadService
from util.constants import InternalURIs

upload_router = APIRouter()

# Static paths are registered before /uploads/{job_id} so they are not captured by it.


@upload_router.post(
    InternalURIs.UPLOADS,
    response_model=EnqueueResponse,
    status_code=status.HTTP_201_CREATED,
)
async def enqueue_uploads(
    payload: EnqueueRequest,
    service: UploadService = Depends(get_upload_service),
) -> EnqueueResponse:
    job_ids = await service.enqueue([f.to_spec() for f in payload.files])
    return EnqueueResponse(jobIds=job_ids)


@upload_router.get(InternalURIs.UPLOADS, response_model=List[JobResponse])
async def list_uploads(service: UploadService = Depends(get_upload_service)):
    return [JobResponse.from_job(j) for j in service.list_jobs()]


@upload_router.get(InternalURIs.UPLOAD_STATS, response_model=StatsResponse)
async def upload_stats(service: UploadService = Depends(get_upload_service)):
    return StatsResponse.from_snapshot(service.get_stats())


@upload_router.get(InternalURIs.UPLOAD_EVENTS)
async def upload_events(service: UploadService = Depends(get_upload_service)):
    return StreamingResponse(make_queue_stream(service), media_type="application/x-ndjson")


@upload_router.delete(InternalURIs.UPLOADS_COMPLETED, response_model=ClearResponse)
async def clear_completed(service: UploadService = Depends(get_upload_service)):
    return ClearResponse(removed=await service.clear_completed())


@upload_router.delete(InternalURIs.UPLOADS, response_model=ClearResponse)
async def clear_all(service: UploadService = Depends(get_upload_service)):
    return ClearResponse(removed=await service.clear_all())


@upload_router.get(InternalURIs.UPLOAD, response_model=JobResponse)
async def get_upload(job_id: str, service: UploadService = Depends(get_upload_service)):
    return JobResponse.from_job(service.get_job(job_id))


@upload_router.delete(InternalURIs.UPLOAD, status_code=status.HTTP_204_NO_CONTENT)
async def remove_upload(job_id: str, service: UploadService = Depends(get_upload_service)):
    await service.remove(job_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@upload_router.post(InternalURIs.UPLOAD_PAUSE, response_model=JobResponse)
async def pause_upload(job_id: str, service: UploadService = Depends(get_upload_service)):
    return JobResponse.from_job(await service.pause(job_id))


@upload_router.post(InternalURIs.UPLOAD_RESUME, response_model=JobResponse)
async def resume_upload(job_id: str, service: UploadService = Depends(get_upload_service)):
    return JobResponse.from_job(await service.resume(job_id))


@upload_router.post(InternalURIs.UPLOAD_CANCEL, response_model=JobResponse)
async def cancel_upload(job_id: str, service: UploadService = Depends(get_upload_service)):
    return JobResponse.from_job(await service.cancel(job_id))


@upload_router.post(InternalURIs.UPLOAD_RETRY, response_model=JobResponse)
async def retry_upload(job_id: str, service: UploadService = Depends(get_upload_service)):
    return JobResponse.from_job(await service.retry(job_id))


@upload_router.get(InternalURIs.NETWORK, response_model=NetworkStatusBody)
async def get_network(service: UploadService = Depends(get_upload_service)):
    return NetworkStatusBody.from_status(service.get_network_status())


@upload_router.put(InternalURIs.NETWORK, response_model=NetworkStatusBody)
async def put_network(
    payload: NetworkStatusBody,
    service: UploadService = Depends(get_upload_service),
):
    return NetworkStatusBody.from_status(service.update_network_status(payload.to_status()))
