"""Row models and table/view registries for the bakery schema."""
from typing import Any, Dict, Type

from pydantic import BaseModel

from bakersdozen.models.inventory import (
    Delivery,
    DeliveryItem,
    Ingredient,
    Removal,
    RemovalItem,
)
from bakersdozen.models.recipe import Bake, Recipe, RecipeIngredient
from bakersdozen.models.user import Role, User
from bakersdozen.models.views import BakeEfficiency, InventoryStatus, RecipeDetails

TABLE_MODELS: Dict[str, Type[BaseModel]] = {
    "users": User,
    "ingredients": Ingredient,
    "recipes": Recipe,
    "recipe_ingredients": RecipeIngredient,
    "bakes": Bake,
    "deliveries": Delivery,
    "delivery_items": DeliveryItem,
    "removals": Removal,
    "removal_items": RemovalItem,
}

VIEW_MODELS: Dict[str, Type[BaseModel]] = {
    "inventory_status": InventoryStatus,
    "recipe_details": RecipeDetails,
    "bake_efficiency": BakeEfficiency,
}

# Tracked by realtime subscriptions, in this order
TABLES = tuple(TABLE_MODELS)
VIEWS = tuple(VIEW_MODELS)


def validate_insert(table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate an insert payload against the table's row model.
    Returns only the fields the caller supplied (server defaults stay unset).
    Raises pydantic.ValidationError.
    """
    model = TABLE_MODELS[table]
    return model.model_validate(payload).model_dump(exclude_unset=True)


def unknown_fields(table: str, payload: Dict[str, Any]) -> list:
    """Field names in a partial update that the table does not have."""
    known = TABLE_MODELS[table].model_fields
    return sorted(k for k in payload if k not in known)


# Export all models
__all__ = [
    "User",
    "Role",
    "Ingredient",
    "Recipe",
    "RecipeIngredient",
    "Bake",
    "Delivery",
    "DeliveryItem",
    "Removal",
    "RemovalItem",
    "InventoryStatus",
    "RecipeDetails",
    "BakeEfficiency",
    "TABLE_MODELS",
    "VIEW_MODELS",
    "TABLES",
    "VIEWS",
    "validate_insert",
    "unknown_fields",
]
