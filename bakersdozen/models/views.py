"""
Read-only projections computed by the backend.
"""
from typing import Optional

from pydantic import BaseModel


class InventoryStatus(BaseModel):
    id: str
    name: str
    current_quantity: float
    min_quantity: float
    unit: str
    last_updated: str
    status: str  # stock level classification


class RecipeDetails(BaseModel):
    id: str
    name: str
    expected_yield: float
    created_by_email: str
    created_at: str
    ingredient_count: int


class BakeEfficiency(BaseModel):
    id: str
    bake_date: str
    recipe_name: str
    actual_yield: float
    expected_yield: float
    efficiency: float  # actual / expected
    baker_email: str
    notes: Optional[str] = None
