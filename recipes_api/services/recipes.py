from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from ..models_db import Recipe, RecipeStatus
from .recipe_text import recipe_search_text

# Campos que en una receta publicada sólo cambian con salto de versión
VERSIONED_FIELDS = ("calories", "protein_g", "sugar_g", "sodium_mg", "fiber_g", "saturated_fat_g", "allergens")

TEXT_FIELDS = ("title", "summary", "ingredients", "cuisines", "diet_tags")


def refresh_search_text(recipe: Recipe) -> None:
    recipe.search_text = recipe_search_text(
        recipe.title, recipe.summary, recipe.ingredients, recipe.cuisines, recipe.diet_tags
    )


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, list) or isinstance(b, list):
        return sorted(a or []) == sorted(b or [])
    return a == b


def apply_recipe_changes(recipe: Recipe, changes: Dict[str, Any], now: datetime) -> bool:
    """
    Aplica cambios a una Recipe. Si está publicada y cambian nutrición o alérgenos, sube la versión.
    Devuelve True si hubo cambios.
    """
    changed = {k: v for k, v in changes.items() if not _same(getattr(recipe, k), v)}
    if not changed:
        return False
    if recipe.status == RecipeStatus.published and any(k in VERSIONED_FIELDS for k in changed):
        recipe.version += 1
    for k, v in changed.items():
        setattr(recipe, k, v)
    if any(k in TEXT_FIELDS for k in changed):
        refresh_search_text(recipe)
    recipe.updated_at = now
    return True
