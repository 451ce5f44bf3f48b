from __future__ import annotations

from datetime import datetime, timedelta
from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session

from ..config import settings
from ..db import get_session
from ..deps import get_now, run_idempotent
from ..errors import ProblemDetail
from ..models_db import HistoryEvent
from ..schemas import HistoryEventIn, HistoryEventOut, HistoryFeed
from ..security import get_current_user
from ..services import ledger
from ..services.corpus import get_published

router = APIRouter(prefix="/history", tags=["history"])


def _event_out(ev: HistoryEvent, collapsed: bool = False) -> HistoryEventOut:
    return HistoryEventOut(id=ev.id, recipe_id=ev.recipe_id, kind=ev.kind, occurred_at=ev.occurred_at, collapsed=collapsed)


@router.post(
    "",
    response_model=HistoryEventOut,
    status_code=201,
    summary="Registrar visto/cocinado ('viewed' se colapsa dentro de la hora)",
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
async def record_event(
    data: HistoryEventIn,
    request: Request,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    def op() -> HistoryEventOut:
        get_published(session, data.recipe_id)
        ev, collapsed = ledger.record_event(session, user_id, data.recipe_id, data.kind, now)
        return _event_out(ev, collapsed)

    return await run_idempotent(request, user_id, op, status_code=201)


@router.get("", response_model=HistoryFeed, summary="Historial de los últimos 180 días")
def feed(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    days = settings.history_feed_days
    rows = ledger.history_feed(session, user_id, now, days, limit, offset)
    return HistoryFeed(items=[_event_out(ev) for ev in rows], since=now - timedelta(days=days), limit=limit, offset=offset)
