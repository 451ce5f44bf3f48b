from __future__ import annotations
from typing import Optional, List
from datetime import datetime
from enum import Enum
import uuid

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON as SAJSON, UniqueConstraint, Index

from .services.timeutil import now_utc


class RecipeStatus(str, Enum):
    draft = "draft"
    private = "private"
    submitted = "submitted"
    published = "published"
    hidden = "hidden"
    rejected = "rejected"


class HistoryKind(str, Enum):
    viewed = "viewed"
    cooked = "cooked"


class Recipe(SQLModel, table=True):
    """
    Receta del catálogo. Los valores nutricionales son por ración.
    En estado 'published' los campos nutricionales y alérgenos sólo cambian con un salto de versión.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, index=True)
    title: str = Field(index=True)
    summary: Optional[str] = None
    ingredients: Optional[List[str]] = Field(default=None, sa_column=Column(SAJSON))

    calories: float = 0
    protein_g: float = 0
    sugar_g: float = 0
    sodium_mg: float = 0
    fiber_g: float = 0
    saturated_fat_g: Optional[float] = None

    prep_time_min: int = 0
    cook_time_min: int = 0

    cuisines: Optional[List[str]] = Field(default=None, sa_column=Column(SAJSON))
    diet_tags: Optional[List[str]] = Field(default=None, sa_column=Column(SAJSON))
    flags: Optional[List[str]] = Field(default=None, sa_column=Column(SAJSON))
    allergens: Optional[List[str]] = Field(default=None, sa_column=Column(SAJSON))
    search_text: str = ""

    status: RecipeStatus = Field(default=RecipeStatus.draft, index=True)
    version: int = 1
    source_user_recipe_id: Optional[str] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc, index=True)

    @property
    def total_time_min(self) -> int:
        return (self.prep_time_min or 0) + (self.cook_time_min or 0)


class SavedRecipe(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "recipe_id", name="uq_saved_user_recipe"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    recipe_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc)


class HistoryEvent(SQLModel, table=True):
    __table_args__ = (Index("ix_history_user_recipe_kind_time", "user_id", "recipe_id", "kind", "occurred_at"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    recipe_id: str = Field(index=True)
    kind: HistoryKind
    occurred_at: datetime = Field(default_factory=now_utc, index=True)


class ViewHead(SQLModel, table=True):
    """
    Último 'viewed' registrado por (usuario, receta). Es la celda sobre la que se hace el
    compare-and-set del colapso de vistas: insertar la cabeza o moverla de event_id.
    """
    user_id: str = Field(primary_key=True)
    recipe_id: str = Field(primary_key=True)
    event_id: str


class PopularityAggregate(SQLModel, table=True):
    """
    Conteo de interacciones por receta en ventana móvil. Se recalcula fuera del camino de escritura.
    """
    recipe_id: str = Field(primary_key=True)
    interactions: int = 0
    window_days: int = 30
    computed_at: datetime = Field(default_factory=now_utc)
