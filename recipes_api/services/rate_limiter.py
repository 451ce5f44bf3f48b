"""
Token bucket con recarga continua por (solicitante, clase de endpoint).
La aritmética es pura; el almacén (memoria o Redis) sólo garantiza la atomicidad por clave.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Tuple

from ..config import settings

READ = "read"
WRITE = "write"

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True)
class BucketPolicy:
    capacity: int
    refill_per_s: float

    @classmethod
    def per_minute(cls, capacity: int, per_minute: float) -> "BucketPolicy":
        return cls(capacity=capacity, refill_per_s=per_minute / 60.0)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after_s: float   # hasta llenar el bucket
    retry_after_s: float   # hasta el siguiente token (0 si admitido)

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after_s)),
        }


def refill(tokens: float, last: float, now: float, policy: BucketPolicy) -> float:
    elapsed = max(0.0, now - last)
    return min(float(policy.capacity), tokens + elapsed * policy.refill_per_s)


def take(tokens: float, last: float, now: float, policy: BucketPolicy) -> Tuple[float, RateLimitDecision]:
    """
    Consume un token si hay. Devuelve (tokens restantes, decisión).
    """
    current = refill(tokens, last, now, policy)
    allowed = current >= 1.0
    if allowed:
        current -= 1.0
    return current, decide(current, allowed, policy)


def decide(current: float, allowed: bool, policy: BucketPolicy) -> RateLimitDecision:
    """Decisión a partir de los tokens que quedan tras el intento."""
    retry_after = 0.0 if allowed else (1.0 - current) / policy.refill_per_s
    reset_after = (policy.capacity - current) / policy.refill_per_s
    return RateLimitDecision(
        allowed=allowed,
        limit=policy.capacity,
        remaining=int(current),
        reset_after_s=reset_after,
        retry_after_s=retry_after,
    )


def endpoint_class(method: str) -> str:
    return WRITE if method.upper() in WRITE_METHODS else READ


def policies_from_settings() -> Dict[str, BucketPolicy]:
    return {
        READ: BucketPolicy.per_minute(settings.rate_limit_read_capacity, settings.rate_limit_read_per_minute),
        WRITE: BucketPolicy.per_minute(settings.rate_limit_write_capacity, settings.rate_limit_write_per_minute),
    }
