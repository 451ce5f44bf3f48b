from __future__ import annotations
from typing import List, Optional, Union
from datetime import datetime
from typing_extensions import Literal
from pydantic import BaseModel, ConfigDict, Field

from .models_db import HistoryKind

SortLiteral = Literal["relevance", "recent", "quickest"]

# === Búsqueda ===

class SearchQuery(BaseModel):
    """
    Parámetros crudos de búsqueda. Los números llegan tal cual (texto o número):
    el compilador de filtros los convierte y valida para poder devolver todos los
    errores a la vez, también los de tipo.
    """
    q: Optional[str] = None
    diet: List[str] = Field(default_factory=list)
    allergens: List[str] = Field(default_factory=list)
    cuisine: List[str] = Field(default_factory=list)
    calories_min: Optional[Union[float, str]] = None
    calories_max: Optional[Union[float, str]] = None
    protein_min: Optional[Union[float, str]] = None
    sugar_max: Optional[Union[float, str]] = None
    sodium_max: Optional[Union[float, str]] = None
    fiber_min: Optional[Union[float, str]] = None
    saturated_fat_max: Optional[Union[float, str]] = None
    time_max: Optional[Union[int, str]] = None
    sort: str = "relevance"
    limit: Optional[Union[int, str]] = None
    offset: Optional[Union[int, str]] = None


class SignalsOut(BaseModel):
    text_relevance: float
    match_boost: float
    recency: float
    popularity: float
    repeat_penalty: float


class NutritionOut(BaseModel):
    calories: float
    protein_g: float
    sugar_g: float
    sodium_mg: float
    fiber_g: float
    saturated_fat_g: Optional[float] = None


class RecipeSummary(BaseModel):
    id: str
    title: str
    summary: Optional[str] = None
    nutrition: NutritionOut
    total_time_min: int
    cuisines: List[str] = []
    diet_tags: List[str] = []
    allergens: List[str] = []
    version: int
    updated_at: datetime
    score: float
    signals: SignalsOut


class SearchPage(BaseModel):
    items: List[RecipeSummary]
    total: int
    limit: int
    offset: int
    sort: SortLiteral


class RecipeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    summary: Optional[str] = None
    ingredients: Optional[List[str]] = None
    nutrition: NutritionOut
    prep_time_min: int
    cook_time_min: int
    total_time_min: int
    cuisines: List[str] = []
    diet_tags: List[str] = []
    flags: List[str] = []
    allergens: List[str] = []
    status: str
    version: int
    source_user_recipe_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

# === Guardadas / historial ===

class SaveStateOut(BaseModel):
    recipe_id: str
    saved: bool


class SavedRecipeOut(BaseModel):
    recipe_id: str
    created_at: datetime


class HistoryEventIn(BaseModel):
    recipe_id: str
    kind: HistoryKind


class HistoryEventOut(BaseModel):
    id: str
    recipe_id: str
    kind: HistoryKind
    occurred_at: datetime
    collapsed: bool = False


class HistoryFeed(BaseModel):
    items: List[HistoryEventOut]
    since: datetime
    limit: int
    offset: int
