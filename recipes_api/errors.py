from __future__ import annotations
import logging
import math
from typing import Any, Dict, List, Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"


class FieldProblem(BaseModel):
    field: str = Field(examples=["calories_min"])
    message: str = Field(examples=["must be <= calories_max"])


class ProblemDetail(BaseModel):
    """Documento RFC 7807; los miembros de extensión se admiten como extra."""
    model_config = ConfigDict(extra="allow")

    type: str = Field(default="about:blank", examples=["https://nutrition-app.com/problems/validation-error"])
    title: str = Field(examples=["Validation Error"])
    status: int = Field(examples=[400])
    detail: str = Field(examples=["Request validation failed"])
    instance: str = Field(default="", examples=["/recipes/search?protein_min=-1"])


def problem_type(slug: str) -> str:
    return f"{settings.problem_type_base.rstrip('/')}/{slug}"


class AppError(Exception):
    status: int = 500
    title: str = "Internal Server Error"
    slug: Optional[str] = None

    def __init__(self, detail: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        self.extra: Dict[str, Any] = extra or {}

    @property
    def type(self) -> str:
        return problem_type(self.slug) if self.slug else "about:blank"

    def to_problem(self, instance: str) -> ProblemDetail:
        return ProblemDetail(
            type=self.type,
            title=self.title,
            status=self.status,
            detail=self.detail,
            instance=instance,
            **self.extra,
        )

    def headers(self) -> Dict[str, str]:
        return {}


class FilterValidationError(AppError):
    status = 400
    title = "Validation Error"
    slug = "validation-error"

    def __init__(self, errors: List[FieldProblem], detail: str = "Request validation failed"):
        super().__init__(detail, extra={"errors": [e.model_dump() for e in errors]})
        self.errors = errors


class NotFoundError(AppError):
    status = 404
    title = "Not Found"
    slug = "not-found"


class ForbiddenError(AppError):
    status = 403
    title = "Forbidden"
    slug = "forbidden"


class ConflictError(AppError):
    status = 409
    title = "Conflict"
    slug = "conflict"


class IdempotencyKeyConflict(ConflictError):
    title = "Idempotency Key Reused"
    slug = "idempotency-key-reused"


class RateLimitExceeded(AppError):
    status = 429
    title = "Too Many Requests"
    slug = "rate-limited"

    def __init__(self, detail: str, retry_after: float, remaining: int = 0):
        super().__init__(detail, extra={"retry_after": retry_after, "remaining": remaining})
        self.retry_after = retry_after
        self.remaining = remaining

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(max(1, math.ceil(self.retry_after)))}


class DependencyUnavailable(AppError):
    status = 503
    title = "Service Unavailable"
    slug = "dependency-unavailable"

    def __init__(self, dependency: str, detail: Optional[str] = None):
        super().__init__(detail or f"{dependency} is temporarily unavailable", extra={"dependency": dependency, "retryable": True})
        self.dependency = dependency


class PayloadTooLarge(AppError):
    status = 413
    title = "Payload Too Large"
    slug = "payload-too-large"


def problem_response(problem: ProblemDetail, headers: Optional[Dict[str, str]] = None) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=problem.status,
        content=problem.model_dump(),
        headers=headers,
        media_type=PROBLEM_MEDIA_TYPE,
    )


def _instance(request: Request) -> str:
    url = request.url
    return url.path + (f"?{url.query}" if url.query else "")


def _loc_to_field(loc: Any) -> str:
    parts = [str(p) for p in loc if p not in ("query", "body", "path", "header")]
    return ".".join(parts) or "request"


def internal_error(instance: Optional[str] = None) -> ProblemDetail:
    """500 genérico: nunca expone el detalle de la excepción."""
    return ProblemDetail(
        title="Internal Server Error",
        status=500,
        detail="An unexpected error occurred",
        instance=instance,
    )


def install_exception_handlers(app: FastAPI):
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status >= 500:
            logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status, exc.detail)
        return problem_response(exc.to_problem(_instance(request)), headers=exc.headers())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        problem = ProblemDetail(
            title=_reason(exc.status_code),
            status=exc.status_code,
            detail=str(exc.detail),
            instance=_instance(request),
        )
        return problem_response(problem, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [FieldProblem(field=_loc_to_field(e.get("loc", ())), message=e.get("msg", "invalid")) for e in exc.errors()]
        err = FilterValidationError(errors)
        return problem_response(err.to_problem(_instance(request)))

    @app.exception_handler(OperationalError)
    async def db_unavailable_handler(request: Request, exc: OperationalError):
        logger.error("Database unavailable on %s %s: %s", request.method, request.url.path, exc)
        err = DependencyUnavailable("database")
        return problem_response(err.to_problem(_instance(request)))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return problem_response(internal_error(_instance(request)))


def _reason(status: int) -> str:
    return {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        413: "Payload Too Large",
        429: "Too Many Requests",
    }.get(status, "Error")
