from __future__ import annotations

from typing import List
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from ..db import get_session
from ..schemas import SavedRecipeOut, SaveStateOut
from ..security import get_current_user
from ..services import ledger

router = APIRouter(prefix="/saved", tags=["saved"])


@router.get("", response_model=List[SavedRecipeOut], summary="Listar recetas guardadas")
def list_saved(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    rows = ledger.list_saved(session, user_id, limit, offset)
    return [SavedRecipeOut(recipe_id=r.recipe_id, created_at=r.created_at) for r in rows]


@router.get("/{recipe_id}", response_model=SaveStateOut, summary="¿Está guardada?")
def saved_state(
    recipe_id: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    return SaveStateOut(recipe_id=recipe_id, saved=ledger.is_saved(session, user_id, recipe_id))
