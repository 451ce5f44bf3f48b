"""
Puerta de idempotencia para peticiones mutantes (POST/PUT/PATCH).

    execute(key, requester, fingerprint, operation)

- sin registro: ejecuta, guarda el resultado y lo devuelve
- mismo fingerprint: devuelve el resultado guardado tal cual, sin re-ejecutar
- fingerprint distinto: conflicto (clave reutilizada para otra petición)
- pasada la ventana de replay la clave vuelve a estar libre
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import orjson

from ..config import settings
from ..errors import ConflictError, IdempotencyKeyConflict
from ..idempotency_store import IdempotencyRecord, IdempotencyStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredResponse:
    status_code: int
    body: Any


@dataclass(frozen=True)
class GateResult:
    response: StoredResponse
    replayed: bool


def request_fingerprint(method: str, path: str, body: bytes, query: str = "") -> str:
    """SHA-256 del contenido lógico de la petición (JSON canónico si el cuerpo lo es)."""
    try:
        canonical = orjson.dumps(orjson.loads(body), option=orjson.OPT_SORT_KEYS) if body else b""
    except (orjson.JSONDecodeError, orjson.JSONEncodeError):
        # no es JSON: cuenta el cuerpo tal cual
        canonical = body
    head = "\n".join([method.upper(), path, query, ""]).encode("utf-8")
    return hashlib.sha256(head + canonical).hexdigest()


class IdempotencyGate:
    def __init__(
        self,
        store: IdempotencyStore,
        replay_window_s: float,
        wait_timeout_s: float = 10.0,
        poll_interval_s: float = 0.05,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.replay_window_s = replay_window_s
        self.wait_timeout_s = wait_timeout_s
        self.poll_interval_s = poll_interval_s
        self.clock = clock

    async def execute(
        self,
        key: Optional[str],
        requester: str,
        fingerprint: str,
        operation: Callable[[], Awaitable[StoredResponse]],
    ) -> GateResult:
        if not key:
            return GateResult(await operation(), replayed=False)

        deadline = self.clock() + self.wait_timeout_s
        while True:
            now = self.clock()
            mine = IdempotencyRecord(key=key, requester=requester, fingerprint=fingerprint, created_at=now)
            existing = await self.store.reserve(mine, now, self.replay_window_s)
            if existing is None:
                # una vez empezada, la operación termina y se registra aunque el cliente se vaya
                response = await asyncio.shield(self._run_and_record(mine, operation))
                return GateResult(response, replayed=False)

            if existing.fingerprint != fingerprint:
                logger.info("Idempotency key reused with a different request: requester=%s key=%s", requester, key)
                raise IdempotencyKeyConflict(
                    "Idempotency-Key was already used for a different request; use a new key",
                    extra={"idempotency_key": key},
                )
            if existing.state == "completed":
                logger.debug("Idempotent replay: requester=%s key=%s", requester, key)
                return GateResult(StoredResponse(existing.status_code or 200, existing.body), replayed=True)
            if self.clock() >= deadline:
                raise ConflictError(
                    "A request with this Idempotency-Key is still being processed; retry later",
                    extra={"idempotency_key": key},
                )
            await asyncio.sleep(self.poll_interval_s)

    async def _run_and_record(
        self,
        record: IdempotencyRecord,
        operation: Callable[[], Awaitable[StoredResponse]],
    ) -> StoredResponse:
        try:
            response = await operation()
        except Exception:
            # sólo se guardan resultados correctos; la clave queda libre para reintentar
            await self.store.release(record)
            raise
        done = record.model_copy(update={"state": "completed", "status_code": response.status_code, "body": response.body})
        await self.store.complete(done, self.replay_window_s)
        return response


def build_gate(store: IdempotencyStore) -> IdempotencyGate:
    return IdempotencyGate(
        store,
        replay_window_s=settings.idempotency_replay_window_s,
        wait_timeout_s=settings.idempotency_wait_timeout_s,
        poll_interval_s=settings.idempotency_poll_interval_s,
    )
