"""
Transiciones de una receta de usuario: visibilidad (privada/compartida/enviada) y curación.
Aprobar copia el contenido a una Recipe publicada ligada por procedencia.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlmodel import Session

from ..errors import ConflictError
from ..models_db import Recipe, RecipeStatus
from ..models_user_recipes import CurationState, UserRecipe, Visibility
from .recipes import apply_recipe_changes, refresh_search_text

logger = logging.getLogger(__name__)

CONTENT_FIELDS = (
    "title", "summary", "ingredients",
    "calories", "protein_g", "sugar_g", "sodium_mg", "fiber_g", "saturated_fat_g",
    "prep_time_min", "cook_time_min", "cuisines", "diet_tags", "flags", "allergens",
)

# (estado actual, acción) -> estado siguiente
CURATION_TRANSITIONS: Dict[Tuple[Optional[CurationState], str], CurationState] = {
    (None, "submit"): CurationState.pending,
    (CurationState.rejected, "submit"): CurationState.pending,
    (CurationState.approved, "submit"): CurationState.pending,
    (CurationState.pending, "approve"): CurationState.approved,
    (CurationState.pending, "reject"): CurationState.rejected,
}

VISIBILITY_TRANSITIONS: Dict[Tuple[Visibility, str], Visibility] = {
    (Visibility.private, "share"): Visibility.shared,
    (Visibility.shared, "share"): Visibility.shared,  # rota el slug
    (Visibility.shared, "unshare"): Visibility.private,
    (Visibility.private, "submit"): Visibility.submitted,
    (Visibility.shared, "submit"): Visibility.submitted,
    (Visibility.submitted, "submit"): Visibility.submitted,
}


def next_curation_state(current: Optional[CurationState], action: str) -> CurationState:
    try:
        return CURATION_TRANSITIONS[(current, action)]
    except KeyError:
        state = current.value if current else "none"
        raise ConflictError(f"Cannot {action} a recipe in curation state '{state}'") from None


def next_visibility(current: Visibility, action: str) -> Visibility:
    try:
        return VISIBILITY_TRANSITIONS[(current, action)]
    except KeyError:
        raise ConflictError(f"Cannot {action} a recipe with visibility '{current.value}'") from None


def is_locked(ur: UserRecipe) -> bool:
    """Pendiente de revisión: el contenido no se puede editar."""
    return ur.curation_state == CurationState.pending


def share(ur: UserRecipe, now: datetime) -> None:
    ur.visibility = next_visibility(ur.visibility, "share")
    ur.share_slug = secrets.token_urlsafe(9)
    ur.updated_at = now


def unshare(ur: UserRecipe, now: datetime) -> None:
    ur.visibility = next_visibility(ur.visibility, "unshare")
    ur.share_slug = None
    ur.updated_at = now


def submit(ur: UserRecipe, now: datetime) -> None:
    state = next_curation_state(ur.curation_state, "submit")
    ur.visibility = next_visibility(ur.visibility, "submit")
    ur.share_slug = None
    ur.curation_state = state
    ur.reviewer_id = None
    ur.reviewed_at = None
    ur.review_note = None
    ur.updated_at = now


def _content(ur: UserRecipe) -> Dict:
    out = {}
    for f in CONTENT_FIELDS:
        v = getattr(ur, f)
        out[f] = list(v) if isinstance(v, list) else v
    return out


def publish_copy(session: Session, ur: UserRecipe, now: datetime) -> Recipe:
    """Copia el contenido a la Recipe publicada (creándola si no existe)."""
    recipe = session.get(Recipe, ur.published_recipe_id) if ur.published_recipe_id else None
    if recipe is None:
        recipe = Recipe(
            **_content(ur),
            status=RecipeStatus.published,
            version=1,
            source_user_recipe_id=ur.id,
            created_at=now,
            updated_at=now,
        )
        refresh_search_text(recipe)
    else:
        apply_recipe_changes(recipe, _content(ur), now)
        recipe.status = RecipeStatus.published
    session.add(recipe)
    return recipe


def approve(session: Session, ur: UserRecipe, reviewer_id: str, now: datetime, note: Optional[str] = None) -> Recipe:
    ur.curation_state = next_curation_state(ur.curation_state, "approve")
    recipe = publish_copy(session, ur, now)
    ur.published_recipe_id = recipe.id
    ur.reviewer_id = reviewer_id
    ur.reviewed_at = now
    ur.review_note = note
    session.add(ur)
    session.commit()
    session.refresh(recipe)
    logger.info("User recipe %s approved by %s -> recipe %s v%d", ur.id, reviewer_id, recipe.id, recipe.version)
    return recipe


def reject(session: Session, ur: UserRecipe, reviewer_id: str, now: datetime, note: Optional[str] = None) -> None:
    ur.curation_state = next_curation_state(ur.curation_state, "reject")
    ur.reviewer_id = reviewer_id
    ur.reviewed_at = now
    ur.review_note = note
    session.add(ur)
    session.commit()
    logger.info("User recipe %s rejected by %s", ur.id, reviewer_id)
