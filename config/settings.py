# config/settings.py
import os
import sys
from typing import Optional
from dotenv import load_dotenv
from pydantic import ValidationError, Field, field_validator
from pydantic_settings import BaseSettings
from util.constants import MIB
from util.enums import Environment
import logging


if os.getenv("APP_ENV", Environment.DEV) == Environment.DEV:
    load_dotenv()

_log = logging.getLogger("config.settings")


class Settings(BaseSettings):
    # App
    APP_ENV: str = Field(default=Environment.DEV.value, validation_alias="APP_ENV")
    ALLOWED_ORIGIN: str = Field(
        default="http://localhost:3000", validation_alias="ALLOWED_ORIGIN"
    )

    # Durable queue storage; without Redis the queue lives in process memory only
    REDIS_URL: Optional[str] = Field(default=None, validation_alias="REDIS_URL")
    QUEUE_STORAGE_KEY: str = Field(default="queue", validation_alias="QUEUE_STORAGE_KEY")

    # Remote file server
    UPLOAD_API_BASE_URL: str = Field(
        default="http://localhost:8080/api/file-uploader",
        validation_alias="UPLOAD_API_BASE_URL",
    )
    UPLOAD_API_TOKEN: Optional[str] = Field(default=None, validation_alias="UPLOAD_API_TOKEN")
    UPLOAD_REQUEST_TIMEOUT_SECONDS: float = Field(
        default=60.0, validation_alias="UPLOAD_REQUEST_TIMEOUT_SECONDS"
    )

    # Scheduling
    MAX_CONCURRENT_UPLOADS: int = Field(default=3, ge=1, validation_alias="MAX_CONCURRENT_UPLOADS")
    MAX_RETRIES: int = Field(default=3, ge=0, validation_alias="MAX_RETRIES")
    CHUNK_THRESHOLD_BYTES: int = Field(default=5 * MIB, validation_alias="CHUNK_THRESHOLD_BYTES")
    CHUNK_SIZE_BYTES: int = Field(default=1 * MIB, gt=0, validation_alias="CHUNK_SIZE_BYTES")
    RETRY_BASE_DELAY_SECONDS: float = Field(default=1.0, validation_alias="RETRY_BASE_DELAY_SECONDS")
    RETRY_MAX_DELAY_SECONDS: float = Field(default=30.0, validation_alias="RETRY_MAX_DELAY_SECONDS")
    CANCEL_GRACE_SECONDS: float = Field(default=5.0, validation_alias="CANCEL_GRACE_SECONDS")

    # Connectivity probe (disabled when no URL is set)
    NETWORK_PROBE_URL: Optional[str] = Field(default=None, validation_alias="NETWORK_PROBE_URL")
    NETWORK_PROBE_INTERVAL_SECONDS: float = Field(
        default=10.0, validation_alias="NETWORK_PROBE_INTERVAL_SECONDS"
    )
    NETWORK_PROBE_TIMEOUT_SECONDS: float = Field(
        default=5.0, validation_alias="NETWORK_PROBE_TIMEOUT_SECONDS"
    )

    # Logging knobs
    LOGGER_NAME: str = "upload-queue"
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    LOG_TO_FILE: bool = Field(default=False, validation_alias="LOG_TO_FILE")
    LOG_DIR: str = Field(default="logs", validation_alias="LOG_DIR")
    LOG_FILE_NAME: str = Field(default="uploads.log", validation_alias="LOG_FILE_NAME")
    LOG_MAX_BYTES: int = Field(
        default=50 * 1024 * 1024, validation_alias="LOG_MAX_BYTES"
    )
    LOG_BACKUP_COUNT: int = Field(default=5, validation_alias="LOG_BACKUP_COUNT")

    @field_validator("UPLOAD_API_BASE_URL")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


try:
    settings = Settings()
except ValidationError as e:
    print("❌ Missing/invalid environment variables:", file=sys.stderr)
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", []))
        msg = err.get("msg", "")
        print(f" - {loc}: {msg}", file=sys.stderr)
    sys.exit(1)
except Exception as e:
    print(f"❌ Settings initialization failed: {e}", file=sys.stderr)
    sys.exit(1)
