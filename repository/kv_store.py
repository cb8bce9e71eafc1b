# repository/kv_store.py
from typing import Dict, Optional, Protocol
from redis.asyncio import Redis
from config.cache import get_redis
from repository.namespaces import ROOT


class KeyValueStore(Protocol):
    """Durable local storage as the upload queue sees it: string keys, string values."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class RedisKeyValueStore:
    """
    Redis-backed store. Keys are namespaced under `uploadq:`; values never expire,
    the queue is only emptied by explicit clear operations.
    """

    def __init__(self, namespace: str = ROOT) -> None:
        self._ns = namespace

    @staticmethod
    async def _client() -> Redis:
        return await get_redis()

    def _key(self, key: str) -> str:
        return f"{self._ns}:{key}"

    async def get(self, key: str) -> Optional[str]:
        r = await self._client()
        raw = await r.get(self._key(key))
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)

    async def set(self, key: str, value: str) -> None:
        r = await self._client()
        await r.set(self._key(key), value)

    async def remove(self, key: str) -> None:
        r = await self._client()
        await r.delete(self._key(key))


class InMemoryKeyValueStore:
    """Process-local store for tests and for running without Redis (nothing survives a restart)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})
        self.writes = 0

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.writes += 1
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)
