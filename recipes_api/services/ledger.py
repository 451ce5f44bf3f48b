"""
Registro de interacciones (guardadas + historial visto/cocinado).

Las mutaciones se expresan como transiciones explícitas con estado previo/posterior
(SAVE_TRANSITIONS, view_transition) y se aplican por compare-and-set sobre el almacén.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from ..config import settings
from ..models_db import HistoryEvent, HistoryKind, SavedRecipe, ViewHead
from .timeutil import age_days, as_aware

logger = logging.getLogger(__name__)


class SaveState(str, Enum):
    absent = "absent"
    saved = "saved"


SAVE_TRANSITIONS: Dict[SaveState, SaveState] = {
    SaveState.absent: SaveState.saved,
    SaveState.saved: SaveState.absent,
}


class ViewOutcome(str, Enum):
    recorded = "recorded"
    collapsed = "collapsed"


def next_save_state(current: SaveState) -> SaveState:
    return SAVE_TRANSITIONS[current]


def view_transition(last_view_at: Optional[datetime], now: datetime, window_s: int) -> ViewOutcome:
    """Un 'viewed' dentro de la ventana desde el último colapsa en ese evento."""
    if last_view_at is None:
        return ViewOutcome.recorded
    if as_aware(now) - as_aware(last_view_at) < timedelta(seconds=window_s):
        return ViewOutcome.collapsed
    return ViewOutcome.recorded


# --- guardadas ---

def current_save_state(session: Session, user_id: str, recipe_id: str) -> SaveState:
    row = session.exec(
        select(SavedRecipe).where(SavedRecipe.user_id == user_id, SavedRecipe.recipe_id == recipe_id)
    ).first()
    return SaveState.saved if row else SaveState.absent


def is_saved(session: Session, user_id: str, recipe_id: str) -> bool:
    return current_save_state(session, user_id, recipe_id) is SaveState.saved


def _cas_save(session: Session, user_id: str, recipe_id: str, expected: SaveState, now: datetime) -> bool:
    """Aplica expected -> next. Devuelve False si otro escritor cambió el estado antes."""
    target = next_save_state(expected)
    if target is SaveState.saved:
        session.add(SavedRecipe(user_id=user_id, recipe_id=recipe_id, created_at=now))
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            return False
        return True
    res = session.execute(
        delete(SavedRecipe).where(SavedRecipe.user_id == user_id, SavedRecipe.recipe_id == recipe_id)
    )
    session.commit()
    return res.rowcount > 0


def toggle_save(session: Session, user_id: str, recipe_id: str, now: datetime) -> SaveState:
    """
    Invierte la pertenencia y devuelve el estado posterior.
    Si el CAS pierde la carrera, el estado ganador ya es el destino: se relee y se devuelve.
    """
    expected = current_save_state(session, user_id, recipe_id)
    if _cas_save(session, user_id, recipe_id, expected, now):
        return next_save_state(expected)
    logger.info("Concurrent save toggle on user=%s recipe=%s; converged", user_id, recipe_id)
    return current_save_state(session, user_id, recipe_id)


def list_saved(session: Session, user_id: str, limit: int, offset: int) -> List[SavedRecipe]:
    stmt = (
        select(SavedRecipe)
        .where(SavedRecipe.user_id == user_id)
        .order_by(SavedRecipe.created_at.desc(), SavedRecipe.recipe_id)
        .offset(offset)
        .limit(limit)
    )
    return list(session.exec(stmt).all())


# --- historial ---

def _last_view(session: Session, user_id: str, recipe_id: str) -> Optional[HistoryEvent]:
    return session.exec(
        select(HistoryEvent)
        .where(
            HistoryEvent.user_id == user_id,
            HistoryEvent.recipe_id == recipe_id,
            HistoryEvent.kind == HistoryKind.viewed,
        )
        .order_by(HistoryEvent.occurred_at.desc())
    ).first()


def _view_head(session: Session, user_id: str, recipe_id: str) -> Optional[str]:
    # columna, no entidad: el identity map no debe servir una cabeza vieja
    return session.exec(
        select(ViewHead.event_id).where(ViewHead.user_id == user_id, ViewHead.recipe_id == recipe_id)
    ).first()


def _cas_view(session: Session, ev: HistoryEvent, expected_head: Optional[str]) -> bool:
    """
    Mueve la cabeza expected_head -> ev.id e inserta ev en la misma transacción.
    Devuelve False si otro escritor movió la cabeza antes.
    """
    if expected_head is None:
        session.add(ViewHead(user_id=ev.user_id, recipe_id=ev.recipe_id, event_id=ev.id))
    else:
        res = session.execute(
            update(ViewHead)
            .where(
                ViewHead.user_id == ev.user_id,
                ViewHead.recipe_id == ev.recipe_id,
                ViewHead.event_id == expected_head,
            )
            .values(event_id=ev.id)
        )
        if res.rowcount == 0:
            session.rollback()
            return False
    session.add(ev)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return False
    return True


def record_event(
    session: Session,
    user_id: str,
    recipe_id: str,
    kind: HistoryKind,
    now: datetime,
    dedup_window_s: Optional[int] = None,
) -> Tuple[HistoryEvent, bool]:
    """
    Añade un evento. Devuelve (evento, colapsado). Los 'cooked' nunca se deduplican.
    Un 'viewed' que pierde la carrera contra otro simultáneo colapsa en el ganador.
    """
    ev = HistoryEvent(user_id=user_id, recipe_id=recipe_id, kind=kind, occurred_at=now)
    if kind is not HistoryKind.viewed:
        session.add(ev)
        session.commit()
        session.refresh(ev)
        return ev, False

    window = settings.view_dedup_window_s if dedup_window_s is None else dedup_window_s
    head = _view_head(session, user_id, recipe_id)
    last = _last_view(session, user_id, recipe_id)
    if view_transition(last.occurred_at if last else None, now, window) is ViewOutcome.collapsed:
        return last, True
    if not _cas_view(session, ev, head):
        logger.info("Concurrent view on user=%s recipe=%s; collapsed", user_id, recipe_id)
        return _last_view(session, user_id, recipe_id), True
    session.refresh(ev)
    return ev, False


def history_feed(session: Session, user_id: str, now: datetime, days: int, limit: int, offset: int) -> List[HistoryEvent]:
    since = now - timedelta(days=days)
    stmt = (
        select(HistoryEvent)
        .where(HistoryEvent.user_id == user_id, HistoryEvent.occurred_at >= since)
        .order_by(HistoryEvent.occurred_at.desc(), HistoryEvent.id)
        .offset(offset)
        .limit(limit)
    )
    return list(session.exec(stmt).all())


def kind_weight(kind: HistoryKind) -> float:
    if kind is HistoryKind.cooked:
        return settings.cooked_event_weight
    return settings.viewed_event_weight


def interaction_weights(
    session: Session,
    user_id: str,
    recipe_ids: Iterable[str],
    now: datetime,
    half_life_days: Optional[float] = None,
    horizon_days: Optional[int] = None,
) -> Dict[str, float]:
    """
    Peso reciente de interacción (usuario, receta): sum(peso_tipo * 0.5^(edad/semivida)).
    """
    ids = list(recipe_ids)
    if not ids:
        return {}
    half_life = half_life_days or settings.repeat_half_life_days
    since = now - timedelta(days=horizon_days or settings.history_feed_days)
    rows = session.exec(
        select(HistoryEvent).where(
            HistoryEvent.user_id == user_id,
            col(HistoryEvent.recipe_id).in_(ids),
            HistoryEvent.occurred_at >= since,
        )
        .order_by(HistoryEvent.occurred_at, HistoryEvent.id)
    ).all()
    out: Dict[str, float] = {}
    for ev in rows:
        decay = 0.5 ** (max(0.0, age_days(ev.occurred_at, now)) / half_life)
        out[ev.recipe_id] = out.get(ev.recipe_id, 0.0) + kind_weight(ev.kind) * decay
    return out
