from __future__ import annotations
import threading
from typing import Any, Dict, Optional

from pydantic import BaseModel
from redis.asyncio import Redis
from redis.exceptions import RedisError
from typing_extensions import Literal

from .config import settings
from .errors import DependencyUnavailable
from .rate_limit_store import LOCK_STRIPES, redis_client


class IdempotencyRecord(BaseModel):
    key: str
    requester: str
    fingerprint: str
    state: Literal["pending", "completed"] = "pending"
    status_code: Optional[int] = None
    body: Any = None
    created_at: float

    @property
    def scoped_key(self) -> str:
        # las claves son por solicitante
        return f"{self.requester}:{self.key}"

    def expired(self, now: float, ttl_s: float) -> bool:
        return now >= self.created_at + ttl_s


class IdempotencyStore:
    """
    Contrato: reserve() es un create-if-absent atómico por clave.
    Devuelve None si la reserva es nuestra o el registro vigente si ya existía.
    """

    async def reserve(self, record: IdempotencyRecord, now: float, ttl_s: float) -> Optional[IdempotencyRecord]:
        raise NotImplementedError

    async def complete(self, record: IdempotencyRecord, ttl_s: float) -> None:
        raise NotImplementedError

    async def release(self, record: IdempotencyRecord) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        pass


class MemoryIdempotencyStore(IdempotencyStore):
    """
    Registros en memoria del proceso. Cada clave se serializa con uno de LOCK_STRIPES
    locks (número fijo, no crece con las claves). Los registros vencidos se barren,
    como mucho una vez por ventana.
    """

    def __init__(self) -> None:
        self._records: Dict[str, IdempotencyRecord] = {}
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._last_sweep: Optional[float] = None

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % LOCK_STRIPES]

    def _sweep(self, now: float, ttl_s: float) -> None:
        if self._last_sweep is not None and now - self._last_sweep < ttl_s:
            return
        self._last_sweep = now
        for k, r in list(self._records.items()):
            if not r.expired(now, ttl_s):
                continue
            with self._lock_for(k):
                current = self._records.get(k)
                if current is not None and current.expired(now, ttl_s):
                    del self._records[k]

    async def reserve(self, record: IdempotencyRecord, now: float, ttl_s: float) -> Optional[IdempotencyRecord]:
        self._sweep(now, ttl_s)
        k = record.scoped_key
        with self._lock_for(k):
            existing = self._records.get(k)
            if existing is not None and not existing.expired(now, ttl_s):
                return existing
            self._records[k] = record
            return None

    async def complete(self, record: IdempotencyRecord, ttl_s: float) -> None:
        with self._lock_for(record.scoped_key):
            self._records[record.scoped_key] = record

    async def release(self, record: IdempotencyRecord) -> None:
        k = record.scoped_key
        with self._lock_for(k):
            current = self._records.get(k)
            if current is not None and current.created_at == record.created_at:
                del self._records[k]

    def __len__(self) -> int:
        return len(self._records)

    def clear(self) -> None:
        self._records.clear()
        self._last_sweep = None


class RedisIdempotencyStore(IdempotencyStore):
    """SET NX PX para la reserva; la expiración de Redis implementa la ventana de replay."""

    def __init__(self, client: Redis) -> None:
        self._redis = client

    @staticmethod
    def _rkey(record: IdempotencyRecord) -> str:
        return f"idem:{record.scoped_key}"

    async def reserve(self, record: IdempotencyRecord, now: float, ttl_s: float) -> Optional[IdempotencyRecord]:
        rkey = self._rkey(record)
        try:
            # si la clave expira entre SET y GET se reintenta la reserva
            for _ in range(3):
                if await self._redis.set(rkey, record.model_dump_json(), nx=True, px=int(ttl_s * 1000)):
                    return None
                raw = await self._redis.get(rkey)
                if raw is not None:
                    return IdempotencyRecord.model_validate_json(raw)
        except RedisError as exc:
            raise DependencyUnavailable("idempotency store") from exc
        raise DependencyUnavailable("idempotency store", "Could not reserve idempotency key")

    async def complete(self, record: IdempotencyRecord, ttl_s: float) -> None:
        try:
            await self._redis.set(self._rkey(record), record.model_dump_json(), xx=True, keepttl=True)
        except RedisError as exc:
            raise DependencyUnavailable("idempotency store") from exc

    async def release(self, record: IdempotencyRecord) -> None:
        try:
            await self._redis.delete(self._rkey(record))
        except RedisError as exc:
            raise DependencyUnavailable("idempotency store") from exc


def build_store() -> IdempotencyStore:
    if settings.redis_url:
        return RedisIdempotencyStore(redis_client())
    return MemoryIdempotencyStore()


store = build_store()
