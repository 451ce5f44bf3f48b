from __future__ import annotations

import re
import unicodedata
from typing import Iterable, List, Optional

_WORD = re.compile(r"[a-z0-9]+")

STOP_WORDS = frozenset({
    "a", "an", "and", "the", "of", "with", "in", "on", "for", "to", "or", "de", "la", "el", "con", "y",
})


def _fold(s: str) -> str:
    s = unicodedata.normalize("NFKD", s)
    return "".join(ch for ch in s if not unicodedata.combining(ch)).lower()


def tokenize(text: str) -> List[str]:
    """
    Tokens de palabra en minúsculas y sin acentos; descarta stop words y tokens de una letra.
    """
    return [t for t in _WORD.findall(_fold(text or "")) if len(t) > 1 and t not in STOP_WORDS]


def recipe_search_text(
    title: str,
    summary: Optional[str] = None,
    ingredients: Optional[Iterable[str]] = None,
    cuisines: Optional[Iterable[str]] = None,
    diet_tags: Optional[Iterable[str]] = None,
) -> str:
    """
    Aplana una receta a texto para búsqueda full-text.
    """
    lines: List[str] = [title.strip()]
    if summary:
        lines.append(summary.strip())
    if ingredients:
        lines.append(", ".join(i.strip() for i in ingredients if i))
    tags = [t.replace("_", " ") for t in list(cuisines or []) + list(diet_tags or [])]
    if tags:
        lines.append(" ".join(tags))
    return "\n".join(lines)
