from __future__ import annotations

import math
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Tuple, Union

from ..errors import FieldProblem, FilterValidationError
from ..models_db import Recipe
from ..schemas import SearchQuery
from .recipe_text import tokenize
from .taxonomy import ALLERGENS, CUISINES, DIETS, norm_tokens

SORT_MODES = ("relevance", "recent", "quickest")
MAX_QUERY_LENGTH = 200

# (parámetro, atributo de Recipe, lado del límite)
NUMERIC_BOUNDS: Tuple[Tuple[str, str, str], ...] = (
    ("calories_min", "calories", "min"),
    ("calories_max", "calories", "max"),
    ("protein_min", "protein_g", "min"),
    ("sugar_max", "sugar_g", "max"),
    ("sodium_max", "sodium_mg", "max"),
    ("fiber_min", "fiber_g", "min"),
    ("saturated_fat_max", "saturated_fat_g", "max"),
)


@dataclass(frozen=True)
class NumericRange:
    """Rango inclusivo; None = sin límite por ese lado."""
    attr: str
    min: Optional[float] = None
    max: Optional[float] = None

    def contains(self, value: Optional[float]) -> bool:
        if value is None:
            # sin dato no se puede garantizar el límite
            return False
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


@dataclass(frozen=True)
class PredicateSet:
    diets: FrozenSet[str] = frozenset()
    allergens: FrozenSet[str] = frozenset()
    cuisines: FrozenSet[str] = frozenset()
    ranges: Tuple[NumericRange, ...] = ()
    time_max: Optional[int] = None
    terms: Tuple[str, ...] = ()
    sort: str = "relevance"
    limit: Optional[int] = None
    offset: int = 0

    def range_for(self, attr: str) -> Optional[NumericRange]:
        for r in self.ranges:
            if r.attr == attr:
                return r
        return None

    def matches_tags(self, recipe: Recipe) -> bool:
        tags = set(recipe.diet_tags or [])
        if not self.diets <= tags:
            return False
        if self.allergens & set(recipe.allergens or []):
            return False
        if self.cuisines and not (self.cuisines & set(recipe.cuisines or [])):
            return False
        return True

    def matches_numeric(self, recipe: Recipe) -> bool:
        for r in self.ranges:
            if not r.contains(getattr(recipe, r.attr)):
                return False
        if self.time_max is not None and recipe.total_time_min > self.time_max:
            return False
        return True

    def matches_text(self, recipe_terms: Iterable[str]) -> bool:
        if not self.terms:
            return True
        return not set(self.terms).isdisjoint(recipe_terms)

    def matches(self, recipe: Recipe) -> bool:
        return (
            self.matches_tags(recipe)
            and self.matches_numeric(recipe)
            and self.matches_text(tokenize(recipe.search_text))
        )


def _check_vocabulary(param: str, values: List[str], vocabulary: FrozenSet[str], problems: List[FieldProblem]) -> None:
    for v in values:
        if v not in vocabulary:
            problems.append(FieldProblem(field=param, message=f"unknown value '{v}'"))


def validate_taxonomy(diets: List[str], cuisines: List[str], allergens: List[str], problems: List[FieldProblem]) -> None:
    _check_vocabulary("diet", diets, DIETS, problems)
    _check_vocabulary("cuisine", cuisines, CUISINES, problems)
    _check_vocabulary("allergens", allergens, ALLERGENS, problems)


def _parse_number(
    param: str, raw: Union[float, int, str, None], problems: List[FieldProblem], integer: bool = False
) -> Optional[float]:
    """None si falta o no es válido (en ese caso deja el problema en la lista)."""
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip()
    try:
        value = int(raw) if integer and isinstance(raw, str) else float(raw)
    except (TypeError, ValueError):
        problems.append(FieldProblem(field=param, message="must be an integer" if integer else "must be a number"))
        return None
    if not math.isfinite(value):
        problems.append(FieldProblem(field=param, message="must be a finite number"))
        return None
    if integer:
        if value != int(value):
            problems.append(FieldProblem(field=param, message="must be an integer"))
            return None
        return int(value)
    return value


def compile_filters(query: SearchQuery) -> PredicateSet:
    """
    Traduce los parámetros de búsqueda a un PredicateSet normalizado.
    Acumula todos los problemas (de tipo y de rango) y lanza FilterValidationError
    con la lista completa.
    """
    problems: List[FieldProblem] = []

    if query.q and len(query.q) > MAX_QUERY_LENGTH:
        problems.append(FieldProblem(field="q", message=f"must be at most {MAX_QUERY_LENGTH} characters"))

    diets = norm_tokens(query.diet)
    cuisines = norm_tokens(query.cuisine)
    allergens = norm_tokens(query.allergens)
    validate_taxonomy(diets, cuisines, allergens, problems)

    bounds = {}
    for param, attr, side in NUMERIC_BOUNDS:
        value = _parse_number(param, getattr(query, param), problems)
        if value is None:
            continue
        if value < 0:
            problems.append(FieldProblem(field=param, message="must be >= 0"))
            continue
        bounds.setdefault(attr, {})[side] = value

    cal = bounds.get("calories", {})
    if "min" in cal and "max" in cal and cal["min"] > cal["max"]:
        problems.append(FieldProblem(field="calories_min", message="must be <= calories_max"))

    time_max = _parse_number("time_max", query.time_max, problems, integer=True)
    if time_max is not None and time_max < 0:
        problems.append(FieldProblem(field="time_max", message="must be >= 0"))

    if query.sort not in SORT_MODES:
        problems.append(FieldProblem(field="sort", message=f"must be one of {', '.join(SORT_MODES)}"))
    limit = _parse_number("limit", query.limit, problems, integer=True)
    if limit is not None and limit < 1:
        problems.append(FieldProblem(field="limit", message="must be >= 1"))
    offset = _parse_number("offset", query.offset, problems, integer=True)
    if offset is not None and offset < 0:
        problems.append(FieldProblem(field="offset", message="must be >= 0"))

    if problems:
        raise FilterValidationError(problems)

    ranges = tuple(
        NumericRange(attr=attr, min=sides.get("min"), max=sides.get("max"))
        for attr, sides in sorted(bounds.items())
    )
    # tokens únicos en orden de aparición
    terms = tuple(dict.fromkeys(tokenize(query.q or "")))

    return PredicateSet(
        diets=frozenset(diets),
        allergens=frozenset(allergens),
        cuisines=frozenset(cuisines),
        ranges=ranges,
        time_max=time_max,
        terms=terms,
        sort=query.sort,
        limit=limit,
        offset=offset or 0,
    )
