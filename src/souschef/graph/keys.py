"""Canonical unique keys for ingredient, cuisine and recipe vertices."""

from typing import Any


def canonical_ingredient_key(ingredients: str) -> str:
    """
    Build an order-independent key for a comma-separated ingredient list.

    "Tomato, Onion" and "onion,tomato" both become "onion,tomato".
    """
    parts = [part.strip() for part in ingredients.strip().lower().split(",")]
    parts.sort()
    return ",".join(parts)


def canonical_cuisine_key(cuisine: str) -> str:
    """Lower-cased, trimmed cuisine name."""
    return cuisine.strip().lower()


def canonical_recipe_key(recipe_id: Any) -> str:
    """Recipe ids may arrive as numbers from the search API."""
    return f"{recipe_id}".strip().lower()
