from __future__ import annotations
import threading
from typing import Dict, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .config import settings
from .errors import DependencyUnavailable
from .services.rate_limiter import BucketPolicy, RateLimitDecision, decide, take

SWEEP_INTERVAL_S = 60.0
LOCK_STRIPES = 64

# Refill + consumo atómico en Redis. Devuelve {admitido, tokens restantes (string)}
_TOKEN_BUCKET_LUA = """
local capacity = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local data = redis.call('HMGET', KEYS[1], 'tokens', 'ts')
local tokens = tonumber(data[1])
local ts = tonumber(data[2])
if tokens == nil or ts == nil then
  tokens = capacity
  ts = now
end
tokens = math.min(capacity, tokens + math.max(0, now - ts) * rate)
local allowed = 0
if tokens >= 1 then
  tokens = tokens - 1
  allowed = 1
end
redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'ts', tostring(now))
redis.call('PEXPIRE', KEYS[1], math.ceil(capacity / rate * 1000) + 1000)
return {allowed, tostring(tokens)}
"""


class RateLimitStore:
    """Contrato común: consumo atómico de un token por clave."""

    async def take(self, key: str, now: float, policy: BucketPolicy) -> RateLimitDecision:
        raise NotImplementedError

    def clear(self) -> None:
        pass


class MemoryRateLimitStore(RateLimitStore):
    """
    Buckets en memoria del proceso. Cada clave se serializa con uno de LOCK_STRIPES
    locks (número fijo, no hay lock global). Un bucket que ya se habría rellenado
    del todo equivale a uno nuevo: se poda.
    """

    def __init__(self, sweep_interval_s: float = SWEEP_INTERVAL_S) -> None:
        # clave -> (tokens, último acceso, instante en que vuelve a estar lleno)
        self._local: Dict[str, Tuple[float, float, float]] = {}
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._sweep_interval_s = sweep_interval_s
        self._last_sweep: Optional[float] = None

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % LOCK_STRIPES]

    def _sweep(self, now: float) -> None:
        if self._last_sweep is not None and now - self._last_sweep < self._sweep_interval_s:
            return
        self._last_sweep = now
        for k, (_, _, full_at) in list(self._local.items()):
            if now < full_at:
                continue
            with self._lock_for(k):
                current = self._local.get(k)
                if current is not None and now >= current[2]:
                    del self._local[k]

    async def take(self, key: str, now: float, policy: BucketPolicy) -> RateLimitDecision:
        self._sweep(now)
        with self._lock_for(key):
            tokens, last, _ = self._local.get(key, (float(policy.capacity), now, now))
            tokens, decision = take(tokens, last, now, policy)
            self._local[key] = (tokens, now, now + decision.reset_after_s)
        return decision

    def __len__(self) -> int:
        return len(self._local)

    def clear(self) -> None:
        self._local.clear()
        self._last_sweep = None


class RedisRateLimitStore(RateLimitStore):
    """
    Buckets compartidos entre procesos. Si Redis no responde se falla cerrado
    (DependencyUnavailable), nunca se degrada a memoria local.
    """

    def __init__(self, client: Redis) -> None:
        self._redis = client
        self._script = client.register_script(_TOKEN_BUCKET_LUA)

    async def take(self, key: str, now: float, policy: BucketPolicy) -> RateLimitDecision:
        try:
            allowed, tokens = await self._script(
                keys=[f"rl:{key}"],
                args=[policy.capacity, policy.refill_per_s, now],
            )
        except RedisError as exc:
            raise DependencyUnavailable("rate limit store") from exc
        return decide(float(tokens), bool(int(allowed)), policy)


_redis: Optional[Redis] = None


def redis_client() -> Redis:
    assert settings.redis_url, "redis_url no configurado"
    global _redis
    if _redis is None:
        _redis = Redis.from_url(settings.redis_url, password=settings.redis_password)
    return _redis


def build_store() -> RateLimitStore:
    if settings.redis_url:
        return RedisRateLimitStore(redis_client())
    return MemoryRateLimitStore()


store = build_store()
