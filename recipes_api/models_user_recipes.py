from __future__ import annotations

from typing import Optional, List
from datetime import datetime
from enum import Enum
import uuid

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field

from .services.timeutil import now_utc


class Visibility(str, Enum):
    private = "private"
    shared = "shared"  # compartida por enlace (share_slug)
    submitted = "submitted"


class CurationState(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class UserRecipe(SQLModel, table=True):
    """
    Recetas creadas por el usuario.
    Una receta aprobada se copia (no se referencia) a Recipe publicada; quedan ligadas por published_recipe_id.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, index=True)
    user_id: str = Field(index=True)

    title: str
    summary: Optional[str] = None
    ingredients: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    steps: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))

    calories: float = 0
    protein_g: float = 0
    sugar_g: float = 0
    sodium_mg: float = 0
    fiber_g: float = 0
    saturated_fat_g: Optional[float] = None
    prep_time_min: int = 0
    cook_time_min: int = 0

    cuisines: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    diet_tags: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    flags: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    allergens: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))

    visibility: Visibility = Field(default=Visibility.private)
    share_slug: Optional[str] = Field(default=None, unique=True, index=True)

    # curación
    curation_state: Optional[CurationState] = Field(default=None, index=True)
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None
    published_recipe_id: Optional[str] = None

    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
