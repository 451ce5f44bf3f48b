import logging
import time

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

from .config import settings
from .db import init_db, ping_db
from .routes.recipes import router as recipes_router
from .routes.saved import router as saved_router
from .routes.history import router as history_router
from .routes.user_recipes import router as user_recipes_router
from .routes.admin import router as admin_router
from .middleware.rate_limit import RateLimitMiddleware
from .middleware.size_limit import SizeLimitMiddleware
from .errors import install_exception_handlers
from .rate_limit_store import redis_client
from .services.popularity import refresher
from prometheus_fastapi_instrumentator import Instrumentator

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

TAGS_METADATA = [
    {"name": "recipes", "description": "Búsqueda filtrada y rankeada, detalle y guardado de recetas publicadas."},
    {"name": "saved", "description": "Recetas guardadas por el usuario."},
    {"name": "history", "description": "Historial de recetas vistas y cocinadas."},
    {"name": "user-recipes", "description": "Recetas propias: privadas, compartidas por enlace o enviadas a revisión."},
    {"name": "admin", "description": "Curación de envíos, popularidad y healthchecks."},
]

app = FastAPI(
    title="Recipes API",
    version="0.3.0",
    description="Descubrimiento de recetas: filtros nutricionales, ranking personalizado, guardados e historial.",
    default_response_class=ORJSONResponse,
    openapi_tags=TAGS_METADATA,
    contact={"name": "Equipo Recipes", "email": "dev@nutrition-app.com"},
    license_info={"name": "MIT", "url": "https://opensource.org/licenses/MIT"},
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_allow_origins.split(",")] if settings.cors_allow_origins != "*" else ["*"],
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=[m.strip() for m in settings.cors_allow_methods.split(",")] if settings.cors_allow_methods != "*" else ["*"],
    allow_headers=[h.strip() for h in settings.cors_allow_headers.split(",")] if settings.cors_allow_headers != "*" else ["*"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Idempotent-Replayed"],
)

# Middlewares
app.add_middleware(SizeLimitMiddleware)     # 413 si Content-Length excede
app.add_middleware(RateLimitMiddleware)     # 429 por bucket (usuario, clase)

# Prometheus
instrumentator = Instrumentator().instrument(app)
instrumentator.expose(app, include_in_schema=False, endpoint="/metrics")

# Exception handlers
install_exception_handlers(app)


@app.on_event("startup")
async def startup():
    init_db()
    refresher.start()
    logger.info("Recipes API started (env=%s)", settings.service_env)


@app.on_event("shutdown")
async def shutdown():
    await refresher.stop()


# Routers
app.include_router(recipes_router)
app.include_router(saved_router)
app.include_router(history_router)
app.include_router(user_recipes_router)
app.include_router(admin_router)


@app.get("/health", tags=["admin"], summary="Healthcheck simple")
async def health():
    return {"status": "ok", "env": settings.service_env, "redis": bool(settings.redis_url)}


@app.get("/health/deep", tags=["admin"], summary="Healthcheck profundo (base de datos + Redis)")
async def health_deep():
    out = {"status": "ok", "checks": {}}

    # Base de datos
    t0 = time.perf_counter()
    d_ok, d_err = True, None
    try:
        ping_db()
    except Exception as e:
        d_ok, d_err = False, str(e)
        out["status"] = "degraded"
    out["checks"]["database"] = {"ok": d_ok, "latency_ms": round((time.perf_counter()-t0)*1000, 1), "error": d_err}

    # Redis (sólo si está configurado; si no, los almacenes son locales)
    if settings.redis_url:
        t1 = time.perf_counter()
        r_ok, r_err = True, None
        try:
            await redis_client().ping()
        except Exception as e:
            r_ok, r_err = False, str(e)
            out["status"] = "degraded"
        out["checks"]["redis"] = {"ok": r_ok, "latency_ms": round((time.perf_counter()-t1)*1000, 1), "error": r_err}

    return out


# --- OpenAPI servers ---
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=TAGS_METADATA,
    )
    schema["servers"] = [{"url": settings.server_public_url, "description": f"{settings.service_env}"}]
    app.openapi_schema = schema
    return app.openapi_schema
app.openapi = custom_openapi  # type: ignore
