# Dependencias compartidas por los routers: puerta de idempotencia y reloj.
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import ORJSONResponse
from starlette.concurrency import run_in_threadpool

from .errors import FieldProblem, FilterValidationError
from .idempotency_store import store as idempotency_store
from .services.idempotency import IdempotencyGate, StoredResponse, build_gate, request_fingerprint
from .services.timeutil import now_utc

IDEMPOTENCY_HEADER = "Idempotency-Key"
MAX_KEY_LENGTH = 255

_gate: IdempotencyGate | None = None


def get_gate() -> IdempotencyGate:
    global _gate
    if _gate is None:
        _gate = build_gate(idempotency_store)
    return _gate


def get_now() -> datetime:
    return now_utc()


async def run_idempotent(
    request: Request,
    user_id: str,
    operation: Callable[[], Any],
    status_code: int = 200,
) -> ORJSONResponse:
    """
    Ejecuta una mutación a través de la puerta de idempotencia.
    Sin cabecera Idempotency-Key es un paso directo. La operación es síncrona
    (SQLModel) y corre en el threadpool, igual que las rutas `def`.
    """
    key = request.headers.get(IDEMPOTENCY_HEADER)
    if key is not None:
        key = key.strip()
        if not key or len(key) > MAX_KEY_LENGTH:
            raise FilterValidationError(
                [FieldProblem(field=IDEMPOTENCY_HEADER, message=f"must be 1-{MAX_KEY_LENGTH} characters")]
            )
    body = await request.body()
    fingerprint = request_fingerprint(request.method, request.url.path, body, request.url.query)

    async def _op() -> StoredResponse:
        return StoredResponse(status_code, jsonable_encoder(await run_in_threadpool(operation)))

    result = await get_gate().execute(key, user_id, fingerprint, _op)
    headers = {"Idempotent-Replayed": "true"} if result.replayed else None
    return ORJSONResponse(status_code=result.response.status_code, content=result.response.body, headers=headers)
