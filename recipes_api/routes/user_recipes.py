from __future__ import annotations

from typing import List
from datetime import datetime
from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session, select

from ..db import get_session
from ..deps import get_now, run_idempotent
from ..errors import ConflictError, FieldProblem, FilterValidationError, NotFoundError, ProblemDetail
from ..models_user_recipes import UserRecipe, Visibility
from ..schemas_user_recipes import UserRecipeCreate, UserRecipeUpdate, UserRecipeOut
from ..security import get_current_user
from ..services import curation
from ..services.filters import validate_taxonomy
from ..services.taxonomy import norm_tokens

router = APIRouter(prefix="/user-recipes", tags=["user-recipes"])

TAXONOMY_FIELDS = ("diet_tags", "cuisines", "allergens")
NULLABLE_FIELDS = ("summary", "saturated_fat_g")


def _normalized_taxonomy(values: dict) -> dict:
    """Normaliza dietas/cocinas/alérgenos y valida contra el vocabulario (todos los errores)."""
    out = dict(values)
    for f in TAXONOMY_FIELDS:
        if out.get(f) is not None:
            out[f] = norm_tokens(out[f])
    problems: List[FieldProblem] = []
    validate_taxonomy(out.get("diet_tags") or [], out.get("cuisines") or [], out.get("allergens") or [], problems)
    if problems:
        # los nombres de campo del cuerpo difieren de los de la búsqueda
        renamed = {"diet": "diet_tags", "cuisine": "cuisines", "allergens": "allergens"}
        raise FilterValidationError([FieldProblem(field=renamed[p.field], message=p.message) for p in problems])
    return out


def _owned(session: Session, recipe_id: str, user_id: str) -> UserRecipe:
    r = session.get(UserRecipe, recipe_id)
    if not r or r.user_id != user_id:
        raise NotFoundError("Receta no encontrada")
    return r


@router.post(
    "",
    response_model=UserRecipeOut,
    status_code=201,
    summary="Crear una receta del usuario (privada)",
    responses={400: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
async def create_user_recipe(
    data: UserRecipeCreate,
    request: Request,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    values = _normalized_taxonomy(data.model_dump())

    def op() -> UserRecipeOut:
        ur = UserRecipe(user_id=user_id, **values, created_at=now, updated_at=now)
        session.add(ur)
        session.commit()
        session.refresh(ur)
        return UserRecipeOut.model_validate(ur)

    return await run_idempotent(request, user_id, op, status_code=201)


@router.get(
    "",
    response_model=List[UserRecipeOut],
    summary="Listar recetas del usuario",
)
def list_user_recipes(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    stmt = (
        select(UserRecipe)
        .where(UserRecipe.user_id == user_id)
        .order_by(UserRecipe.created_at.desc(), UserRecipe.id)
        .offset(offset)
        .limit(limit)
    )
    return [UserRecipeOut.model_validate(r) for r in session.exec(stmt).all()]


@router.get(
    "/shared/{slug}",
    response_model=UserRecipeOut,
    summary="Obtener una receta compartida por enlace",
    responses={404: {"model": ProblemDetail}},
)
def get_shared_recipe(
    slug: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    r = session.exec(select(UserRecipe).where(UserRecipe.share_slug == slug)).first()
    if not r or r.visibility != Visibility.shared:
        raise NotFoundError("Receta no encontrada")
    return UserRecipeOut.model_validate(r)


@router.get(
    "/{recipe_id}",
    response_model=UserRecipeOut,
    summary="Obtener una receta del usuario por id",
    responses={404: {"model": ProblemDetail}},
)
def get_user_recipe(
    recipe_id: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    return UserRecipeOut.model_validate(_owned(session, recipe_id, user_id))


@router.put(
    "/{recipe_id}",
    response_model=UserRecipeOut,
    summary="Actualizar una receta del usuario (no mientras está en revisión)",
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
async def update_user_recipe(
    recipe_id: str,
    data: UserRecipeUpdate,
    request: Request,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    raw = data.model_dump(exclude_unset=True)
    # null sólo borra los campos opcionales
    raw = {k: v for k, v in raw.items() if v is not None or k in NULLABLE_FIELDS}
    changes = _normalized_taxonomy(raw)

    def op() -> UserRecipeOut:
        r = _owned(session, recipe_id, user_id)
        if curation.is_locked(r):
            raise ConflictError("Recipe is pending review and cannot be edited")
        for k, v in changes.items():
            setattr(r, k, v)
        r.updated_at = now
        session.add(r)
        session.commit()
        session.refresh(r)
        return UserRecipeOut.model_validate(r)

    return await run_idempotent(request, user_id, op)


@router.delete(
    "/{recipe_id}",
    summary="Eliminar una receta del usuario (la copia publicada, si existe, se conserva)",
    responses={200: {"description": "Eliminada"}, 404: {"model": ProblemDetail}},
)
def delete_user_recipe(
    recipe_id: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    r = _owned(session, recipe_id, user_id)
    session.delete(r)
    session.commit()
    return {"status": "ok", "deleted_id": recipe_id}


@router.post(
    "/{recipe_id}/share",
    response_model=UserRecipeOut,
    summary="Compartir por enlace (rota el slug en cada llamada)",
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
async def share_user_recipe(
    recipe_id: str,
    request: Request,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    def op() -> UserRecipeOut:
        r = _owned(session, recipe_id, user_id)
        curation.share(r, now)
        session.add(r)
        session.commit()
        session.refresh(r)
        return UserRecipeOut.model_validate(r)

    return await run_idempotent(request, user_id, op)


@router.delete(
    "/{recipe_id}/share",
    response_model=UserRecipeOut,
    summary="Revocar el enlace compartido",
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
def unshare_user_recipe(
    recipe_id: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    r = _owned(session, recipe_id, user_id)
    curation.unshare(r, now)
    session.add(r)
    session.commit()
    session.refresh(r)
    return UserRecipeOut.model_validate(r)


@router.post(
    "/{recipe_id}/submit",
    response_model=UserRecipeOut,
    summary="Enviar a revisión para su publicación",
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)
async def submit_user_recipe(
    recipe_id: str,
    request: Request,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    def op() -> UserRecipeOut:
        r = _owned(session, recipe_id, user_id)
        curation.submit(r, now)
        session.add(r)
        session.commit()
        session.refresh(r)
        return UserRecipeOut.model_validate(r)

    return await run_idempotent(request, user_id, op)
