# main.py
import logging
import routes
from contextlib import asynccontextmanager
from util.enums import Environment, Color, ErrorMessage
from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware
from config.settings import settings
from config.cache import close_redis
from fastapi.responses import JSONResponse
from service.upload_service import build_upload_service
from util.errors import InvalidSpec, InvalidTransition, JobNotFound, UploadQueueError
from util.logger import init_logger

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(fastApi: FastAPI):
    try:
        init_logger()
        print(f"{Color.GREEN}Initializing...{Color.RESET}")
        service = build_upload_service()
        # Restores the persisted queue; fails fast if Redis is configured but unreachable
        await service.start()
        fastApi.state.upload_service = service
        print(f"{Color.BLUE}Server Started{Color.RESET}")
    except Exception as e:
        print("Failed to start upload service:", e)
        raise

    try:
        yield
    finally:
        try:
            await service.stop()
            await close_redis()
        except Exception as e:
            print("Error during shutdown:", e)

        fastApi.state.upload_service = None
        print(f"{Color.RED}Server Shutdown{Color.RESET}")


app: FastAPI = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.ALLOWED_ORIGIN],
    allow_credentials=True,  # Allow cookies and other credentials
    allow_methods=["GET", "POST", "PUT", "DELETE"],  # Allowed HTTP Methods
    allow_headers=["Authorization", "Content-Type", "Accept"],  # Allowed HTTP Headers
)


@app.get("/healthz")
async def healthz():
    return {"ok": True}


_QUEUE_ERRORS = {
    JobNotFound: ErrorMessage.JOB_NOT_FOUND,
    InvalidSpec: ErrorMessage.INVALID_SPEC,
    InvalidTransition: ErrorMessage.INVALID_TRANSITION,
}


@app.exception_handler(UploadQueueError)
async def queue_error_handler(request: Request, exc: UploadQueueError):
    info = _QUEUE_ERRORS.get(type(exc), ErrorMessage.INTERNAL_ERROR).value
    logger.info("api.error path=%s error=%s", request.url.path, info.code)
    return JSONResponse(
        status_code=info.http_status,
        content={"ok": False, "error": info.code, "message": str(exc) or info.message},
    )


routes.register_routes(app)

if __name__ == "__main__":
    import uvicorn

    reload = settings.APP_ENV == Environment.DEV
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=reload)
