from __future__ import annotations

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field as PydField

from .models_user_recipes import Visibility, CurationState


class UserRecipeCreate(BaseModel):
    title: str = PydField(min_length=1, max_length=200)
    summary: Optional[str] = None
    ingredients: List[str] = []
    steps: List[str] = []
    calories: float = PydField(default=0, ge=0)
    protein_g: float = PydField(default=0, ge=0)
    sugar_g: float = PydField(default=0, ge=0)
    sodium_mg: float = PydField(default=0, ge=0)
    fiber_g: float = PydField(default=0, ge=0)
    saturated_fat_g: Optional[float] = PydField(default=None, ge=0)
    prep_time_min: int = PydField(default=0, ge=0)
    cook_time_min: int = PydField(default=0, ge=0)
    cuisines: List[str] = []
    diet_tags: List[str] = []
    flags: List[str] = []
    allergens: List[str] = []


class UserRecipeUpdate(BaseModel):
    title: Optional[str] = PydField(default=None, min_length=1, max_length=200)
    summary: Optional[str] = None
    ingredients: Optional[List[str]] = None
    steps: Optional[List[str]] = None
    calories: Optional[float] = PydField(default=None, ge=0)
    protein_g: Optional[float] = PydField(default=None, ge=0)
    sugar_g: Optional[float] = PydField(default=None, ge=0)
    sodium_mg: Optional[float] = PydField(default=None, ge=0)
    fiber_g: Optional[float] = PydField(default=None, ge=0)
    saturated_fat_g: Optional[float] = PydField(default=None, ge=0)
    prep_time_min: Optional[int] = PydField(default=None, ge=0)
    cook_time_min: Optional[int] = PydField(default=None, ge=0)
    cuisines: Optional[List[str]] = None
    diet_tags: Optional[List[str]] = None
    flags: Optional[List[str]] = None
    allergens: Optional[List[str]] = None


class UserRecipeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    summary: Optional[str] = None
    ingredients: Optional[List[str]] = None
    steps: Optional[List[str]] = None
    calories: float
    protein_g: float
    sugar_g: float
    sodium_mg: float
    fiber_g: float
    saturated_fat_g: Optional[float] = None
    prep_time_min: int
    cook_time_min: int
    cuisines: Optional[List[str]] = None
    diet_tags: Optional[List[str]] = None
    flags: Optional[List[str]] = None
    allergens: Optional[List[str]] = None
    visibility: Visibility
    share_slug: Optional[str] = None
    curation_state: Optional[CurationState] = None
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None
    published_recipe_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReviewDecision(BaseModel):
    note: Optional[str] = PydField(default=None, max_length=1000)
