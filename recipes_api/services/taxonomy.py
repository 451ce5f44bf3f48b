from __future__ import annotations
from typing import FrozenSet, Iterable, List

# Vocabularios cerrados de filtros
DIETS: FrozenSet[str] = frozenset({
    "vegan", "vegetarian", "pescatarian", "keto", "paleo", "low_carb",
    "high_protein", "gluten_free", "dairy_free", "low_sodium", "low_sugar", "mediterranean",
})

CUISINES: FrozenSet[str] = frozenset({
    "american", "chinese", "french", "greek", "indian", "italian", "japanese", "korean",
    "mediterranean", "mexican", "middle_eastern", "spanish", "thai", "vietnamese",
})

# Los 14 alérgenos de declaración obligatoria (UE)
ALLERGENS: FrozenSet[str] = frozenset({
    "celery", "gluten", "crustaceans", "eggs", "fish", "lupin", "milk", "molluscs",
    "mustard", "peanuts", "sesame", "soy", "sulphites", "tree_nuts",
})


def norm_token(raw: str) -> str:
    """'Gluten-Free ' -> 'gluten_free'"""
    return "_".join(raw.strip().lower().replace("-", " ").split())


def norm_tokens(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    for v in values:
        # admite tanto ?diet=a&diet=b como ?diet=a,b
        for part in str(v).split(","):
            t = norm_token(part)
            if t and t not in out:
                out.append(t)
    return out
