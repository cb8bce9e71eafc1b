import asyncio

import pytest

from core.cancellation import CancelToken
from util.errors import TransferCancelled


class TestCancelToken:
    def test_first_reason_wins(self):
        token = CancelToken()

        token.cancel("pause")
        token.cancel("cancel")

        assert token.cancelled
        assert token.reason == "pause"

    def test_raise_if_cancelled(self):
        token = CancelToken()
        token.raise_if_cancelled()

        token.cancel()

        with pytest.raises(TransferCancelled):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_guard_returns_result_when_not_cancelled(self):
        async def work():
            return 42

        assert await CancelToken().guard(work()) == 42

    @pytest.mark.asyncio
    async def test_guard_aborts_pending_work_on_cancel(self):
        token = CancelToken()
        started = asyncio.Event()
        aborted = asyncio.Event()

        async def slow():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                aborted.set()
                raise

        guarded = asyncio.create_task(token.guard(slow()))
        await started.wait()
        token.cancel("cancel")

        with pytest.raises(TransferCancelled):
            await guarded
        assert aborted.is_set()

    @pytest.mark.asyncio
    async def test_guard_refuses_to_start_after_cancel(self):
        token = CancelToken()
        token.cancel()
        ran = []

        async def work():
            ran.append(True)

        coro = work()
        with pytest.raises(TransferCancelled):
            await token.guard(coro)
        coro.close()

        assert ran == []

    @pytest.mark.asyncio
    async def test_guard_propagates_work_errors(self):
        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await CancelToken().guard(broken())
