"""
Shared fixtures for the upload queue test suite.

Provides: in-memory store, queue, network monitor, a scriptable transfer
client and a scheduler factory wired with millisecond backoffs.
"""

import asyncio
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, List, Optional, Set

import pytest

from core.cancellation import CancelToken
from core.network_monitor import NetworkMonitor
from core.retry_policy import RetryPolicy
from core.scheduler import UploadScheduler
from model.job import JobSpec, UploadJob
from model.network import NetworkStatus
from model.transfer import RemoteFileDescriptor
from repository.kv_store import InMemoryKeyValueStore
from repository.upload_queue import UploadQueue
from util.types import ProgressCallback


class FakeTransferClient:
    """
    Stand-in for HttpTransferClient.

    - script(job_id, *outcomes): each call pops one outcome; an exception is raised,
      anything else (or an empty script) completes the transfer.
    - hold(job_id) / hold_all(): the transfer waits on a gate, honouring the cancel
      token unless the job is listed in `deaf` (an adapter that ignores cancellation).
    """

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.cancelled: List[str] = []
        self.active = 0
        self.max_active = 0
        self.deaf: Set[str] = set()
        self._outcomes: Dict[str, Deque[object]] = defaultdict(deque)
        self._gates: Dict[str, asyncio.Event] = {}
        self._global_gate: Optional[asyncio.Event] = None

    def script(self, job_id: str, *outcomes: object) -> None:
        self._outcomes[job_id].extend(outcomes)

    def hold(self, job_id: str) -> asyncio.Event:
        gate = self._gates.setdefault(job_id, asyncio.Event())
        gate.clear()
        return gate

    def hold_all(self) -> asyncio.Event:
        self._global_gate = asyncio.Event()
        return self._global_gate

    def release(self, job_id: str) -> None:
        self._gates.pop(job_id).set()

    def calls_for(self, job_id: str) -> int:
        return self.calls.count(job_id)

    async def transfer(
        self, job: UploadJob, on_progress: ProgressCallback, cancel_token: CancelToken
    ) -> RemoteFileDescriptor:
        self.calls.append(job.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await on_progress(job.declared_size // 2, job.declared_size)
            gate = self._gates.get(job.id) or self._global_gate
            if gate is not None:
                if job.id in self.deaf:
                    await gate.wait()
                else:
                    try:
                        await cancel_token.guard(gate.wait())
                    except Exception:
                        self.cancelled.append(job.id)
                        raise
            queue = self._outcomes.get(job.id)
            outcome = queue.popleft() if queue else None
            if isinstance(outcome, BaseException):
                raise outcome
            await on_progress(job.declared_size, job.declared_size)
            return RemoteFileDescriptor(
                id=f"remote-{job.id}", name=job.file_name, size=job.declared_size
            )
        finally:
            self.active -= 1


def make_spec(name: str = "a.bin", size: int = 1000, **kw) -> JobSpec:
    return JobSpec(source_ref=f"file:///tmp/{name}", file_name=name, declared_size=size, **kw)


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def queue(store) -> UploadQueue:
    return UploadQueue(store, storage_key="queue", default_max_retries=3)


@pytest.fixture
def network() -> NetworkMonitor:
    return NetworkMonitor(NetworkStatus.online())


@pytest.fixture
def fake_client() -> FakeTransferClient:
    return FakeTransferClient()


@pytest.fixture
def spec_factory() -> Callable[..., JobSpec]:
    return make_spec


@pytest.fixture
def make_scheduler(queue, network, fake_client):
    """Build a scheduler over the shared queue/monitor/client; not started."""

    def _make(**kw) -> UploadScheduler:
        kw.setdefault("retry_policy", RetryPolicy(base_delay=0.01, max_delay=0.05))
        kw.setdefault("max_concurrent_uploads", 3)
        kw.setdefault("cancel_grace", 0.2)
        return UploadScheduler(queue, network, fake_client, **kw)

    return _make


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop; fail the test if it never holds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError(f"condition not met within {timeout:.1f}s")
            await asyncio.sleep(0.005)

    return _wait
