# core/cancellation.py
import asyncio
from typing import Awaitable, Optional, TypeVar
from util.errors import TransferCancelled

T = TypeVar("T")


class CancelToken:
    """One per in-flight transfer. Signalled by the scheduler, honoured by the transfer client."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TransferCancelled(self.reason or "cancelled")

    async def guard(self, aw: Awaitable[T]) -> T:
        """
        Await `aw` unless the token fires first; then the pending work is
        cancelled and TransferCancelled raised.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise TransferCancelled(self.reason or "cancelled")
