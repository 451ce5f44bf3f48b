from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..config import settings
from ..errors import DependencyUnavailable
from ..schemas import NutritionOut, RecipeSummary, SearchPage, SearchQuery, SignalsOut
from . import ledger, popularity
from .corpus import fetch_candidates
from .filters import compile_filters
from .ordering import order_candidates, paginate
from .scoring import ScoreWeights, ScoredRecipe, score_candidates


def nutrition_of(r) -> NutritionOut:
    return NutritionOut(
        calories=r.calories,
        protein_g=r.protein_g,
        sugar_g=r.sugar_g,
        sodium_mg=r.sodium_mg,
        fiber_g=r.fiber_g,
        saturated_fat_g=r.saturated_fat_g,
    )


def _summary(s: ScoredRecipe) -> RecipeSummary:
    r = s.recipe
    return RecipeSummary(
        id=r.id,
        title=r.title,
        summary=r.summary,
        nutrition=nutrition_of(r),
        total_time_min=r.total_time_min,
        cuisines=r.cuisines or [],
        diet_tags=r.diet_tags or [],
        allergens=r.allergens or [],
        version=r.version,
        updated_at=r.updated_at,
        score=round(s.score, 6),
        signals=SignalsOut(
            text_relevance=s.signals.text_relevance,
            match_boost=s.signals.match_boost,
            recency=s.signals.recency,
            popularity=s.signals.popularity,
            repeat_penalty=s.signals.repeat_penalty,
        ),
    )


def search_recipes(
    session: Session,
    user_id: Optional[str],
    query: SearchQuery,
    now: datetime,
    weights: Optional[ScoreWeights] = None,
) -> SearchPage:
    """
    filtros -> candidatos -> 5 señales -> orden total -> página.
    Sin efectos secundarios: puede abandonarse o reintentarse libremente.
    """
    predicates = compile_filters(query)
    candidates = fetch_candidates(session, predicates)
    ids = [r.id for r in candidates]
    try:
        counts, max_count = popularity.load_popularity(session, ids)
        repeat = ledger.interaction_weights(session, user_id, ids, now) if user_id else {}
    except SQLAlchemyError as exc:
        raise DependencyUnavailable("interaction ledger") from exc

    scored = score_candidates(
        candidates,
        predicates,
        popularity_counts=counts,
        interaction_weights=repeat,
        now=now,
        weights=weights or ScoreWeights.from_settings(),
        horizon_days=settings.recency_horizon_days,
        popularity_max=max_count,
    )
    ordered = order_candidates(scored, predicates.sort)
    page = paginate(
        ordered,
        predicates.limit,
        predicates.offset,
        default=settings.search_default_limit,
        maximum=settings.search_max_limit,
    )
    return SearchPage(
        items=[_summary(s) for s in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        sort=predicates.sort,
    )
