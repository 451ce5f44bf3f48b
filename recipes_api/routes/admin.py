from __future__ import annotations
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Body, Depends, Query, Request
from sqlmodel import Session, select

from ..db import get_session
from ..deps import get_now, run_idempotent
from ..errors import NotFoundError, ProblemDetail
from ..models_user_recipes import CurationState, UserRecipe
from ..schemas import RecipeOut
from ..schemas_user_recipes import ReviewDecision, UserRecipeOut
from ..security import require_reviewer
from ..services import curation, popularity
from .recipes import recipe_out

router = APIRouter(prefix="/admin", tags=["admin"])


def _submission(session: Session, recipe_id: str) -> UserRecipe:
    r = session.get(UserRecipe, recipe_id)
    if not r or r.curation_state is None:
        raise NotFoundError("Envío no encontrado")
    return r


@router.get("/submissions", response_model=List[UserRecipeOut], summary="Envíos por estado de curación")
def list_submissions(
    state: CurationState = Query(CurationState.pending),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    reviewer_id: str = Depends(require_reviewer),
):
    stmt = (
        select(UserRecipe)
        .where(UserRecipe.curation_state == state)
        .order_by(UserRecipe.updated_at, UserRecipe.id)
        .offset(offset)
        .limit(limit)
    )
    return [UserRecipeOut.model_validate(r) for r in session.exec(stmt).all()]


@router.post(
    "/submissions/{recipe_id}/approve",
    response_model=RecipeOut,
    summary="Aprobar: copia a una receta publicada ligada por procedencia",
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
async def approve_submission(
    recipe_id: str,
    request: Request,
    decision: Optional[ReviewDecision] = Body(None),
    session: Session = Depends(get_session),
    reviewer_id: str = Depends(require_reviewer),
    now: datetime = Depends(get_now),
):
    def op() -> RecipeOut:
        ur = _submission(session, recipe_id)
        recipe = curation.approve(session, ur, reviewer_id, now, decision.note if decision else None)
        return recipe_out(recipe)

    return await run_idempotent(request, reviewer_id, op)


@router.post(
    "/submissions/{recipe_id}/reject",
    response_model=UserRecipeOut,
    summary="Rechazar un envío",
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
async def reject_submission(
    recipe_id: str,
    request: Request,
    decision: Optional[ReviewDecision] = Body(None),
    session: Session = Depends(get_session),
    reviewer_id: str = Depends(require_reviewer),
    now: datetime = Depends(get_now),
):
    def op() -> UserRecipeOut:
        ur = _submission(session, recipe_id)
        curation.reject(session, ur, reviewer_id, now, decision.note if decision else None)
        session.refresh(ur)
        return UserRecipeOut.model_validate(ur)

    return await run_idempotent(request, reviewer_id, op)


@router.post("/popularity/refresh", summary="Recalcular ahora el agregado de popularidad")
async def refresh_popularity(
    request: Request,
    session: Session = Depends(get_session),
    reviewer_id: str = Depends(require_reviewer),
    now: datetime = Depends(get_now),
):
    def op() -> dict:
        n = popularity.refresh_popularity(session, now)
        return {"ok": True, "recipes": n, "computed_at": now}

    return await run_idempotent(request, reviewer_id, op)
