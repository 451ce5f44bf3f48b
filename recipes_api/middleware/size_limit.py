from __future__ import annotations
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from ..errors import PayloadTooLarge, problem_response
from ..config import settings

class SizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Rechaza peticiones cuyo Content-Length excede MAX_BODY_BYTES.
    Si no hay Content-Length, permite (evitamos leer el body en middleware).
    """
    def __init__(self, app):
        super().__init__(app)
        self.max_bytes = settings.max_body_bytes

    async def dispatch(self, request: Request, call_next):
        cl = request.headers.get("content-length")
        if cl and cl.isdigit() and int(cl) > self.max_bytes:
            err = PayloadTooLarge(f"Body too large (> {self.max_bytes} bytes)", extra={"max": self.max_bytes})
            return problem_response(err.to_problem(request.url.path))
        return await call_next(request)
