# core/transfer_client.py
import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol, Tuple, Union
import httpx
from config.settings import settings
from core.cancellation import CancelToken
from model.job import UploadJob
from model.transfer import RemoteFileDescriptor
from util.constants import BODY_BLOCK_SIZE, ExternalURIs
from util.errors import (
    NetworkError,
    ServerRejected,
    SourceUnavailable,
    TransferError,
    TransferTimeout,
)
from util.functions import chunk_count, strip_file_scheme
from util.types import ProgressCallback

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class TransferClient(Protocol):
    async def transfer(
        self, job: UploadJob, on_progress: ProgressCallback, cancel_token: CancelToken
    ) -> RemoteFileDescriptor: ...


def _static_token() -> Optional[str]:
    return settings.UPLOAD_API_TOKEN


def _read_range(path: Path, offset: int, length: int) -> bytes:
    with path.open("rb") as fh:
        fh.seek(offset)
        return fh.read(length)


class HttpTransferClient:
    """
    Moves one job's bytes to the file server.

    - declared_size > chunk_threshold: POST /initialize, then POST /chunk for each
      chunk strictly in order (chunk i+1 only after chunk i is acknowledged), then
      GET /progress/{uploadId} for the stored file.
    - otherwise: a single POST /file.
    Both send multipart/form-data: `chunk` with `uploadId` and `chunkIndex` fields,
    or `file` with an optional `parentId`. Any failure after /initialize releases
    the server session with DELETE /cancel/{uploadId}.
    Bodies are streamed in small blocks so on_progress sees bytes of finished
    chunks plus what the in-flight request has consumed.
    """

    def __init__(
        self,
        base_url: str = settings.UPLOAD_API_BASE_URL,
        token_provider: TokenProvider = _static_token,
        timeout: float = settings.UPLOAD_REQUEST_TIMEOUT_SECONDS,
        chunk_threshold: int = settings.CHUNK_THRESHOLD_BYTES,
        chunk_size: int = settings.CHUNK_SIZE_BYTES,
        block_size: int = BODY_BLOCK_SIZE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._timeout = httpx.Timeout(timeout, connect=min(10.0, timeout))
        self._threshold = int(chunk_threshold)
        self._chunk_size = int(chunk_size)
        self._block_size = max(1, int(block_size))
        self._transport = transport

    def is_chunked(self, job: UploadJob) -> bool:
        return job.declared_size > self._threshold

    async def transfer(
        self, job: UploadJob, on_progress: ProgressCallback, cancel_token: CancelToken
    ) -> RemoteFileDescriptor:
        path = self._resolve_source(job)
        headers = await self._auth_headers()
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        ) as client:
            if self.is_chunked(job):
                return await self._send_chunked(client, job, path, on_progress, cancel_token)
            return await self._send_whole(client, job, path, on_progress, cancel_token)

    # ---------------- Strategies ----------------

    async def _send_whole(
        self,
        client: httpx.AsyncClient,
        job: UploadJob,
        path: Path,
        on_progress: ProgressCallback,
        token: CancelToken,
    ) -> RemoteFileDescriptor:
        data = await self._read(path, 0, job.declared_size)
        fields = {"parentId": job.destination_parent_id} if job.destination_parent_id else {}
        encoded, headers = self._form(job, fields, "file", data)
        body = await self._request(
            client,
            token,
            "POST",
            ExternalURIs.FILE,
            content=self._stream(encoded, len(data), 0, job.declared_size, on_progress),
            headers=headers,
        )
        return self._descriptor(body, job)

    async def _send_chunked(
        self,
        client: httpx.AsyncClient,
        job: UploadJob,
        path: Path,
        on_progress: ProgressCallback,
        token: CancelToken,
    ) -> RemoteFileDescriptor:
        size = job.declared_size
        total_chunks = chunk_count(size, self._chunk_size)
        init = await self._request(
            client,
            token,
            "POST",
            ExternalURIs.INITIALIZE,
            json={
                "fileName": job.file_name,
                "fileSize": size,
                "mimeType": job.mime_type,
                "parentId": job.destination_parent_id,
                "totalChunks": total_chunks,
            },
        )
        upload_id = str(init.get("uploadId") or "")
        if not upload_id:
            raise ServerRejected(200, "initialize returned no uploadId")
        logger.info(
            "transfer.chunked.init job=%s upload=%s chunks=%d", job.id, upload_id, total_chunks
        )

        try:
            for index in range(total_chunks):
                offset = index * self._chunk_size
                length = min(self._chunk_size, size - offset)
                data = await self._read(path, offset, length)
                encoded, headers = self._form(
                    job, {"uploadId": upload_id, "chunkIndex": str(index)}, "chunk", data
                )
                await self._request(
                    client,
                    token,
                    "POST",
                    ExternalURIs.CHUNK,
                    content=self._stream(encoded, len(data), offset, size, on_progress),
                    headers=headers,
                )
            final = await self._request(
                client, token, "GET", ExternalURIs.PROGRESS.format(upload_id=upload_id)
            )
        except TransferError:
            await self._release(client, upload_id)
            raise
        return self._descriptor(final, job, fallback_id=upload_id)

    # ---------------- HTTP plumbing ----------------

    async def _request(
        self,
        client: httpx.AsyncClient,
        token: CancelToken,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        try:
            res = await token.guard(client.request(method, url, **kwargs))
        except httpx.TimeoutException as e:
            raise TransferTimeout(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {url}: {type(e).__name__}") from e
        return self._parse(res)

    @staticmethod
    def _parse(res: httpx.Response) -> Dict[str, Any]:
        try:
            body = res.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if res.status_code // 100 != 2:
            message = body.get("error") or body.get("message") or res.reason_phrase
            raise ServerRejected(res.status_code, str(message))
        if body.get("error"):
            raise ServerRejected(res.status_code, str(body["error"]))

        data = body.get("data", body)
        return data if isinstance(data, dict) else {}

    async def _release(self, client: httpx.AsyncClient, upload_id: str) -> None:
        """Best effort: tell the server to drop a half-finished chunked session."""
        try:
            await client.delete(ExternalURIs.CANCEL.format(upload_id=upload_id), timeout=5.0)
            logger.info("transfer.chunked.released upload=%s", upload_id)
        except httpx.HTTPError as e:
            logger.warning("transfer.chunked.release_failed upload=%s err=%s", upload_id, type(e).__name__)

    async def _stream(
        self, body: bytes, payload_len: int, base: int, total: int, on_progress: ProgressCallback
    ) -> AsyncIterator[bytes]:
        # form overhead is spread over the payload so the last block reports payload_len exactly
        for start in range(0, len(body), self._block_size):
            block = body[start : start + self._block_size]
            yield block
            sent = (start + len(block)) * payload_len // len(body)
            await on_progress(base + sent, total)

    async def _auth_headers(self) -> Dict[str, str]:
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _form(
        self, job: UploadJob, fields: Dict[str, str], part: str, data: bytes
    ) -> Tuple[bytes, Dict[str, str]]:
        """Encode a multipart/form-data body up front so it can be streamed block by block."""
        encoded = httpx.Request(
            "POST",
            self._base_url,
            data=fields,
            files={part: (job.file_name, data, job.mime_type or "application/octet-stream")},
        )
        body = encoded.read()
        return body, {
            "Content-Type": encoded.headers["Content-Type"],
            "Content-Length": str(len(body)),
        }

    # ---------------- Source & result ----------------

    @staticmethod
    def _resolve_source(job: UploadJob) -> Path:
        path = Path(strip_file_scheme(job.source_ref))
        if not path.is_file():
            raise SourceUnavailable(f"source not found: {job.source_ref}")
        return path

    @staticmethod
    async def _read(path: Path, offset: int, length: int) -> bytes:
        if length <= 0:
            return b""
        try:
            data = await asyncio.to_thread(_read_range, path, offset, length)
        except OSError as e:
            raise SourceUnavailable(f"cannot read {path.name}: {e.strerror or e}") from e
        if len(data) < length:
            raise SourceUnavailable(
                f"{path.name} is shorter than declared ({offset + len(data)} < {offset + length} bytes)"
            )
        return data

    @staticmethod
    def _descriptor(
        body: Dict[str, Any], job: UploadJob, fallback_id: Optional[str] = None
    ) -> RemoteFileDescriptor:
        file_id = body.get("id") or body.get("fileId") or fallback_id
        if not file_id:
            raise ServerRejected(200, "response carried no file id")
        extra = {
            k: v
            for k, v in body.items()
            if k not in {"id", "fileId", "name", "size", "parentId", "parent_id"}
        }
        return RemoteFileDescriptor(
            **extra,
            id=str(file_id),
            name=body.get("name") or job.file_name,
            size=body.get("size", job.declared_size),
            parent_id=body.get("parentId") or body.get("parent_id") or job.destination_parent_id,
        )
