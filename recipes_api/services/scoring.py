"""
Motor de ranking: cinco señales independientes combinadas por suma ponderada fija.

    score = w_text * text_relevance + w_match * match_boost + w_recency * recency
            + w_popularity * popularity - w_repeat * repeat_penalty

Todas las señales están en [0, 1] y se calculan siempre para cada candidato.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

from rank_bm25 import BM25Plus

from ..config import settings
from ..models_db import Recipe
from .filters import PredicateSet
from .recipe_text import tokenize
from .timeutil import age_days


@dataclass(frozen=True)
class ScoreWeights:
    text: float = 1.0
    match: float = 0.5
    recency: float = 0.3
    popularity: float = 0.2
    repeat: float = 0.4

    @classmethod
    def from_settings(cls) -> "ScoreWeights":
        return cls(
            text=settings.weight_text,
            match=settings.weight_match,
            recency=settings.weight_recency,
            popularity=settings.weight_popularity,
            repeat=settings.weight_repeat,
        )


@dataclass(frozen=True)
class Signals:
    text_relevance: float
    match_boost: float
    recency: float
    popularity: float
    repeat_penalty: float

    def combine(self, w: ScoreWeights) -> float:
        return (
            w.text * self.text_relevance
            + w.match * self.match_boost
            + w.recency * self.recency
            + w.popularity * self.popularity
            - w.repeat * self.repeat_penalty
        )


@dataclass(frozen=True)
class ScoredRecipe:
    recipe: Recipe
    signals: Signals
    score: float


# --- señales ---

def text_relevance_scores(terms: Sequence[str], documents: Mapping[str, List[str]]) -> Dict[str, float]:
    """
    BM25+ de los términos contra el texto tokenizado de cada candidato, normalizado por el máximo.
    Sin términos (o sin documentos) todas las relevancias son 0.
    """
    if not terms or not documents:
        return {rid: 0.0 for rid in documents}
    ids = list(documents.keys())
    bm25 = BM25Plus([documents[rid] or [""] for rid in ids])
    raw = bm25.get_scores(list(terms))
    out: Dict[str, float] = {}
    for rid, s in zip(ids, raw):
        # sólo cuenta si hay coincidencia real; BM25+ da un suelo delta a todos
        out[rid] = float(s) if not set(terms).isdisjoint(documents[rid]) else 0.0
    best = max(out.values())
    if best <= 0:
        return {rid: 0.0 for rid in ids}
    return {rid: s / best for rid, s in out.items()}


def match_boost(recipe: Recipe, predicates: PredicateSet) -> float:
    requested = len(predicates.diets) + len(predicates.cuisines)
    if requested == 0:
        return 0.0
    hits = len(predicates.diets & set(recipe.diet_tags or [])) + len(predicates.cuisines & set(recipe.cuisines or []))
    return hits / requested


def recency(updated_at: datetime, now: datetime, horizon_days: float) -> float:
    age = age_days(updated_at, now)
    if age <= 0:
        return 1.0
    return math.exp(-age / horizon_days)


def popularity(count: int, max_count: int) -> float:
    # escala logarítmica para que unas pocas recetas virales no dominen
    if max_count <= 0 or count <= 0:
        return 0.0
    return min(1.0, math.log1p(count) / math.log1p(max_count))


def repeat_penalty(weight: float) -> float:
    if weight <= 0:
        return 0.0
    return 1.0 - math.exp(-weight)


# --- combinación ---

def score_candidates(
    candidates: Sequence[Recipe],
    predicates: PredicateSet,
    popularity_counts: Mapping[str, int],
    interaction_weights: Mapping[str, float],
    now: datetime,
    weights: ScoreWeights,
    horizon_days: float,
    popularity_max: Optional[int] = None,
    documents: Optional[Mapping[str, List[str]]] = None,
) -> List[ScoredRecipe]:
    if documents is None:
        documents = {r.id: tokenize(r.search_text) for r in candidates}
    text = text_relevance_scores(predicates.terms, documents)
    # normalización contra el máximo del corpus (no sólo de los candidatos)
    max_count = popularity_max if popularity_max is not None else max(popularity_counts.values(), default=0)

    out: List[ScoredRecipe] = []
    for r in candidates:
        signals = Signals(
            text_relevance=text.get(r.id, 0.0),
            match_boost=match_boost(r, predicates),
            recency=recency(r.updated_at, now, horizon_days),
            popularity=popularity(popularity_counts.get(r.id, 0), max_count),
            repeat_penalty=repeat_penalty(interaction_weights.get(r.id, 0.0)),
        )
        out.append(ScoredRecipe(recipe=r, signals=signals, score=signals.combine(weights)))
    return out
