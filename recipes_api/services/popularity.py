"""
Agregado de popularidad (interacciones en ventana de N días por receta).

Se recalcula periódicamente fuera del camino de escritura; el ranking usa la última
instantánea tal cual, aunque esté desactualizada.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import delete, func
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, col, select
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import settings
from ..db import engine
from ..models_db import HistoryEvent, PopularityAggregate, SavedRecipe
from .timeutil import now_utc

logger = logging.getLogger(__name__)


def refresh_popularity(session: Session, now: datetime, window_days: Optional[int] = None) -> int:
    """
    Recalcula el agregado completo (eventos de historial + guardadas en la ventana).
    Devuelve el número de recetas con interacciones.
    """
    days = window_days or settings.popularity_window_days
    since = now - timedelta(days=days)
    counts: Dict[str, int] = {}

    hist = session.exec(
        select(HistoryEvent.recipe_id, func.count())
        .where(HistoryEvent.occurred_at >= since)
        .group_by(HistoryEvent.recipe_id)
    ).all()
    saves = session.exec(
        select(SavedRecipe.recipe_id, func.count())
        .where(SavedRecipe.created_at >= since)
        .group_by(SavedRecipe.recipe_id)
    ).all()
    for recipe_id, n in list(hist) + list(saves):
        counts[recipe_id] = counts.get(recipe_id, 0) + int(n)

    session.execute(delete(PopularityAggregate))
    for recipe_id, n in counts.items():
        session.add(PopularityAggregate(recipe_id=recipe_id, interactions=n, window_days=days, computed_at=now))
    session.commit()
    logger.info("Popularity aggregate refreshed: %d recipes, window=%dd", len(counts), days)
    return len(counts)


def load_popularity(session: Session, recipe_ids: Iterable[str]) -> Tuple[Dict[str, int], int]:
    """Devuelve ({recipe_id: interacciones}, máximo del corpus)."""
    ids = list(recipe_ids)
    counts: Dict[str, int] = {}
    if ids:
        rows = session.exec(
            select(PopularityAggregate).where(col(PopularityAggregate.recipe_id).in_(ids))
        ).all()
        counts = {r.recipe_id: r.interactions for r in rows}
    max_count = session.exec(select(func.max(PopularityAggregate.interactions))).one()
    return counts, int(max_count or 0)


@retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(OperationalError),
)
def _refresh_job() -> int:
    with Session(engine, expire_on_commit=False) as session:
        return refresh_popularity(session, now_utc())


class PopularityRefresher:
    """Bucle en segundo plano arrancado en el startup de la app."""

    def __init__(self, interval_s: int):
        self.interval_s = interval_s
        self._task: Optional[asyncio.Task] = None

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(_refresh_job)
            except Exception:
                logger.exception("Popularity refresh failed; keeping previous snapshot")
            await asyncio.sleep(self.interval_s)

    def start(self) -> None:
        if self.interval_s <= 0 or self._task is not None:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


refresher = PopularityRefresher(settings.popularity_refresh_interval_s)
