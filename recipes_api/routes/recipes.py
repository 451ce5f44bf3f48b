from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session

from ..db import get_session
from ..deps import get_now, run_idempotent
from ..errors import ProblemDetail
from ..models_db import Recipe
from ..schemas import RecipeOut, SaveStateOut, SearchPage, SearchQuery
from ..security import get_current_user
from ..services import ledger
from ..services.corpus import get_published
from ..services.search import nutrition_of, search_recipes

router = APIRouter(prefix="/recipes", tags=["recipes"])


def recipe_out(r: Recipe) -> RecipeOut:
    return RecipeOut(
        id=r.id,
        title=r.title,
        summary=r.summary,
        ingredients=r.ingredients,
        nutrition=nutrition_of(r),
        prep_time_min=r.prep_time_min,
        cook_time_min=r.cook_time_min,
        total_time_min=r.total_time_min,
        cuisines=r.cuisines or [],
        diet_tags=r.diet_tags or [],
        flags=r.flags or [],
        allergens=r.allergens or [],
        status=r.status.value if hasattr(r.status, "value") else str(r.status),
        version=r.version,
        source_user_recipe_id=r.source_user_recipe_id,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


@router.get(
    "/search",
    response_model=SearchPage,
    summary="Búsqueda filtrada y rankeada de recetas publicadas",
    responses={400: {"model": ProblemDetail}, 503: {"model": ProblemDetail}},
)
def search(
    q: Optional[str] = Query(None, description="Texto libre (máx. 200 caracteres)"),
    diet: List[str] = Query([], description="Todas requeridas (AND)"),
    allergens: List[str] = Query([], description="Excluye recetas con cualquiera"),
    cuisine: List[str] = Query([], description="Cualquiera (OR)"),
    # los números llegan como texto: compile_filters los convierte y reporta todo junto
    calories_min: Optional[str] = Query(None),
    calories_max: Optional[str] = Query(None),
    protein_min: Optional[str] = Query(None),
    sugar_max: Optional[str] = Query(None),
    sodium_max: Optional[str] = Query(None),
    fiber_min: Optional[str] = Query(None),
    saturated_fat_max: Optional[str] = Query(None),
    time_max: Optional[str] = Query(None, description="Minutos (prep + cocción)"),
    sort: str = Query("relevance", description="relevance | recent | quickest"),
    limit: Optional[str] = Query(None, description="Por defecto 50; se recorta a 200"),
    offset: Optional[str] = Query(None, description="Por defecto 0"),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    query = SearchQuery(
        q=q,
        diet=diet,
        allergens=allergens,
        cuisine=cuisine,
        calories_min=calories_min,
        calories_max=calories_max,
        protein_min=protein_min,
        sugar_max=sugar_max,
        sodium_max=sodium_max,
        fiber_min=fiber_min,
        saturated_fat_max=saturated_fat_max,
        time_max=time_max,
        sort=sort,
        limit=limit,
        offset=offset,
    )
    return search_recipes(session, user_id, query, now)


@router.get(
    "/{recipe_id}",
    response_model=RecipeOut,
    summary="Detalle de una receta publicada",
    responses={404: {"model": ProblemDetail}},
)
def get_recipe(
    recipe_id: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    return recipe_out(get_published(session, recipe_id))


@router.post(
    "/{recipe_id}/save/toggle",
    response_model=SaveStateOut,
    summary="Guardar / quitar de guardadas (devuelve el estado posterior)",
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
async def toggle_saved(
    recipe_id: str,
    request: Request,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    def op() -> SaveStateOut:
        get_published(session, recipe_id)
        state = ledger.toggle_save(session, user_id, recipe_id, now)
        return SaveStateOut(recipe_id=recipe_id, saved=state is ledger.SaveState.saved)

    return await run_idempotent(request, user_id, op)
