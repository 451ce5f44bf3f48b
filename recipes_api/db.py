from typing import Iterator
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text
from .config import settings
from . import models_db, models_user_recipes  # noqa: F401  (registra tablas en metadata)

# las mutaciones con idempotencia usan la sesión desde el hilo del event loop
_connect_args = {"check_same_thread": False} if settings.db_url.startswith("sqlite") else {}
engine = create_engine(settings.db_url, echo=False, connect_args=_connect_args)

def init_db() -> None:
    SQLModel.metadata.create_all(engine)

def ping_db() -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))

def get_session() -> Iterator[Session]:
    # Desactiva la expiración de atributos tras commit (evita {} en respuestas)
    with Session(engine, expire_on_commit=False) as session:
        yield session
