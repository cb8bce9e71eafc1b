# core/network_monitor.py
import logging
from typing import Callable, List, Optional
from model.network import NetworkStatus
from util.types import Unsubscribe

logger = logging.getLogger(__name__)

NetworkListener = Callable[[NetworkStatus], None]


class NetworkMonitor:
    """
    Holds the current connectivity and reports transitions. It never retries or
    schedules anything; listeners decide what a transition means.

    Consecutive identical statuses are coalesced. Every distinct change fires,
    so a drop followed by a reconnect is always seen as two events.
    """

    def __init__(self, initial: Optional[NetworkStatus] = None) -> None:
        self._status = initial or NetworkStatus.online()
        self._listeners: List[NetworkListener] = []

    def current(self) -> NetworkStatus:
        return self._status

    def on_change(self, callback: NetworkListener) -> Unsubscribe:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def update(self, status: NetworkStatus) -> bool:
        previous = self._status
        if status == previous:
            return False
        self._status = status
        logger.info(
            "network.change connected=%s->%s reachable=%s->%s kind=%s",
            previous.is_connected,
            status.is_connected,
            previous.is_internet_reachable,
            status.is_internet_reachable,
            status.kind.value,
        )
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("network.listener.error")
        return True
