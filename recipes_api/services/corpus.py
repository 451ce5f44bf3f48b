from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..errors import DependencyUnavailable, NotFoundError
from ..models_db import Recipe, RecipeStatus
from .filters import PredicateSet

logger = logging.getLogger(__name__)


def fetch_candidates(session: Session, predicates: PredicateSet) -> List[Recipe]:
    """
    Pre-filtro grueso en SQL (estado publicado, límites numéricos, tiempo).
    Las etiquetas JSON y el texto se filtran después en memoria.
    """
    stmt = select(Recipe).where(Recipe.status == RecipeStatus.published)
    for r in predicates.ranges:
        column = getattr(Recipe, r.attr)
        if r.min is not None:
            stmt = stmt.where(column >= r.min)
        if r.max is not None:
            stmt = stmt.where(column <= r.max)
    if predicates.time_max is not None:
        stmt = stmt.where(Recipe.prep_time_min + Recipe.cook_time_min <= predicates.time_max)
    try:
        rows = session.exec(stmt).all()
    except SQLAlchemyError as exc:
        logger.error("Corpus query failed: %s", exc)
        raise DependencyUnavailable("recipe corpus") from exc
    return [r for r in rows if predicates.matches(r)]


def get_published(session: Session, recipe_id: str) -> Recipe:
    r: Optional[Recipe] = session.get(Recipe, recipe_id)
    if not r or r.status != RecipeStatus.published:
        raise NotFoundError("Recipe not found")
    return r
