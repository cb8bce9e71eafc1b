# core/retry_policy.py
from dataclasses import dataclass
from typing import Optional
from config.settings import settings
from model.job import UploadJob
from util.errors import TransferError


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0  # seconds before the job is eligible again
    attempt: int = 0  # retry_count the job carries if retried


class RetryPolicy:
    """
    Capped exponential backoff: base, 2*base, 4*base, ... never above max_delay.
    Only transient errors are retried, and only while retry_count < max_retries.
    """

    def __init__(
        self,
        base_delay: float = settings.RETRY_BASE_DELAY_SECONDS,
        max_delay: float = settings.RETRY_MAX_DELAY_SECONDS,
    ) -> None:
        self._base = max(0.0, float(base_delay))
        self._cap = max(self._base, float(max_delay))

    def backoff_delay(self, attempt: int) -> float:
        if attempt <= 0:
            return 0.0
        return min(self._base * (2 ** (attempt - 1)), self._cap)

    @staticmethod
    def is_transient(error: Optional[BaseException]) -> bool:
        return isinstance(error, TransferError) and bool(error.transient)

    def decide(self, job: UploadJob, error: BaseException) -> RetryDecision:
        if not self.is_transient(error) or job.retry_count >= job.max_retries:
            return RetryDecision(retry=False, attempt=job.retry_count)
        attempt = job.retry_count + 1
        return RetryDecision(retry=True, delay=self.backoff_delay(attempt), attempt=attempt)
