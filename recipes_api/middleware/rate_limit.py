from __future__ import annotations
import logging
import time
from typing import Dict, Set
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..errors import DependencyUnavailable, RateLimitExceeded, internal_error, problem_response
from ..rate_limit_store import store
from ..security import identity_for_rate_limit
from ..services.rate_limiter import BucketPolicy, endpoint_class, policies_from_settings

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Token bucket por (usuario, clase de endpoint): 'read' para GET, 'write' para mutaciones.
    Añade cabeceras X-RateLimit-* a todas las respuestas limitadas, también a los 500.
    Si el almacén de buckets no responde, rechaza con 503 (falla cerrado).
    Salud, métricas, documentación y OPTIONS no consumen tokens ni llevan cabeceras.
    """
    def __init__(self, app):
        super().__init__(app)
        self.exempt: Set[str] = {"/health", "/health/deep", "/metrics", "/docs", "/redoc", "/openapi.json"}
        self.policies: Dict[str, BucketPolicy] = policies_from_settings()

    def _instance(self, request: Request) -> str:
        return request.url.path + (f"?{request.url.query}" if request.url.query else "")

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt or request.method == "OPTIONS":
            return await call_next(request)

        who = identity_for_rate_limit(request.headers, request.client.host if request.client else None)
        klass = endpoint_class(request.method)
        try:
            decision = await store.take(f"{who}:{klass}", time.time(), self.policies[klass])
        except DependencyUnavailable as exc:
            logger.error("Rate limit store unavailable; rejecting %s %s", request.method, request.url.path)
            return problem_response(exc.to_problem(self._instance(request)))

        if not decision.allowed:
            err = RateLimitExceeded(
                f"Rate limit exceeded for '{klass}' requests",
                retry_after=round(decision.retry_after_s, 3),
                remaining=decision.remaining,
            )
            return problem_response(err.to_problem(self._instance(request)), headers={**decision.headers(), **err.headers()})

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            return problem_response(internal_error(self._instance(request)), headers=decision.headers())
        for name, value in decision.headers().items():
            response.headers[name] = value
        return response
