"""
Stock rows: ingredients, deliveries and removals.

Server-defaulted columns (id, timestamps) are optional so the same models
validate insert payloads.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Ingredient(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    name: str
    current_quantity: float = Field(ge=0)
    min_quantity: float = Field(ge=0)
    unit: str
    last_updated: Optional[str] = None


class Delivery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    supplier: str
    delivery_date: str
    created_by: str
    created_at: Optional[str] = None


class DeliveryItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    delivery_id: str
    ingredient_id: str
    quantity: float = Field(gt=0)
    batch_number: str
    expiry_date: str


class Removal(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    reason: str
    removal_date: str
    created_by: str
    created_at: Optional[str] = None


class RemovalItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    removal_id: str
    ingredient_id: str
    quantity: float = Field(gt=0)
