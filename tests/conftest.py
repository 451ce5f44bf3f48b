import os
import sys
from datetime import timedelta
from pathlib import Path

# Antes de importar la app: sin bucle de popularidad, sin Redis y límites amplios
# (los tests del rate limiter ajustan las políticas explícitamente).
os.environ.setdefault("SERVICE_ENV", "dev")
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("API_KEYS", "default:demo123,alice:alice-token,admin:admin-token")
os.environ.setdefault("ADMIN_USERS", "admin")
os.environ.setdefault("POPULARITY_REFRESH_INTERVAL_S", "0")
os.environ.setdefault("RATE_LIMIT_READ_CAPACITY", "10000")
os.environ.setdefault("RATE_LIMIT_WRITE_CAPACITY", "10000")
os.environ.pop("REDIS_URL", None)

# Ensure project root on path for imports when executing from tests dir
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import recipes_api.main as main
from recipes_api.db import get_session
from recipes_api.deps import get_now
from recipes_api.idempotency_store import store as idempotency_store
from recipes_api.models_db import Recipe, RecipeStatus
from recipes_api.rate_limit_store import store as rate_limit_store
from recipes_api.services.recipes import refresh_search_text
from recipes_api.services.timeutil import now_utc

ALICE = {"X-API-Key": "alice-token"}
ADMIN = {"X-API-Key": "admin-token"}


class FakeClock:
    """Reloj controlable para las dependencias que usan get_now."""

    def __init__(self, start=None):
        self.now = start or now_utc()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(eng)
    yield eng
    SQLModel.metadata.drop_all(eng)


@pytest.fixture
def session(engine):
    with Session(engine, expire_on_commit=False) as s:
        yield s


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(engine, clock):
    """
    TestClient sin context manager: no se ejecuta el startup (ni create_all sobre el
    engine real ni el bucle de popularidad). Cada test usa su propia base en memoria.
    """
    def _session():
        with Session(engine, expire_on_commit=False) as s:
            yield s

    main.app.dependency_overrides[get_session] = _session
    main.app.dependency_overrides[get_now] = clock
    rate_limit_store.clear()
    idempotency_store.clear()
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
    rate_limit_store.clear()
    idempotency_store.clear()


@pytest.fixture
def make_recipe(session):
    """Crea recetas publicadas con valores por defecto razonables."""
    def _make(**kwargs):
        values = dict(
            title="Recipe",
            calories=400,
            protein_g=20,
            sugar_g=5,
            sodium_mg=300,
            fiber_g=4,
            prep_time_min=10,
            cook_time_min=10,
            cuisines=[],
            diet_tags=[],
            allergens=[],
            status=RecipeStatus.published,
        )
        values.update(kwargs)
        r = Recipe(**values)
        refresh_search_text(r)
        session.add(r)
        session.commit()
        session.refresh(r)
        return r

    return _make
