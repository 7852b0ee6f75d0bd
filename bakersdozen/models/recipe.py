"""
Recipe, recipe ingredient (Recipe x Ingredient join) and bake rows.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Recipe(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    name: str
    expected_yield: float = Field(gt=0)
    created_by: str
    created_at: Optional[str] = None


class RecipeIngredient(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    recipe_id: str
    ingredient_id: str
    quantity: float = Field(gt=0)


class Bake(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    recipe_id: str
    actual_yield: float = Field(ge=0)
    bake_date: str
    notes: Optional[str] = None
    created_by: str
    created_at: Optional[str] = None
