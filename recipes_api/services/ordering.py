from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Sequence, Tuple, TypeVar

from .scoring import ScoredRecipe
from .timeutil import as_aware

T = TypeVar("T")


def _tail(s: ScoredRecipe) -> Tuple[float, float, str]:
    # score desc, updated_at desc, id asc: el id cierra el orden total
    return (-s.score, -as_aware(s.recipe.updated_at).timestamp(), s.recipe.id)


SORT_KEYS: Dict[str, Callable[[ScoredRecipe], tuple]] = {
    "relevance": _tail,
    "recent": lambda s: (-as_aware(s.recipe.updated_at).timestamp(), -s.score, s.recipe.id),
    "quickest": lambda s: (s.recipe.total_time_min,) + _tail(s),
}


def order_candidates(scored: Sequence[ScoredRecipe], sort: str = "relevance") -> List[ScoredRecipe]:
    return sorted(scored, key=SORT_KEYS[sort])


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    total: int
    limit: int
    offset: int


def effective_limit(limit: int | None, default: int, maximum: int) -> int:
    """Sin límite -> default; por encima del máximo se recorta (no se rechaza)."""
    if limit is None:
        return default
    return max(1, min(limit, maximum))


def paginate(ordered: Sequence[T], limit: int | None, offset: int, default: int = 50, maximum: int = 200) -> Page[T]:
    lim = effective_limit(limit, default, maximum)
    return Page(items=list(ordered[offset:offset + lim]), total=len(ordered), limit=lim, offset=offset)
