"""Static per-100 g macro estimates used when the database has no confident match."""

from __future__ import annotations

from typing import NamedTuple


class Per100g(NamedTuple):
    calories: float
    protein: float
    carbs: float
    fats: float


FALLBACK_ESTIMATES: dict[str, Per100g] = {
    # Proteins
    "chicken breast": Per100g(165, 31, 0, 3.6),
    "chicken": Per100g(165, 31, 0, 3.6),
    "beef": Per100g(250, 26, 0, 15),
    "steak": Per100g(271, 26, 0, 18),
    "salmon": Per100g(208, 20, 0, 13),
    "fish": Per100g(180, 24, 0, 8),
    "tuna": Per100g(132, 28, 0, 1),
    "shrimp": Per100g(99, 24, 0, 0.3),
    "egg": Per100g(155, 13, 1, 11),
    "tofu": Per100g(76, 8, 2, 4),
    "pork": Per100g(242, 27, 0, 14),
    "turkey": Per100g(135, 30, 0, 1),
    # Carbs
    "white rice": Per100g(130, 2.7, 28, 0.3),
    "brown rice": Per100g(111, 2.6, 23, 0.9),
    "rice": Per100g(130, 2.7, 28, 0.3),
    "pasta": Per100g(131, 5, 25, 1.1),
    "bread": Per100g(265, 9, 49, 3.2),
    "sweet potato": Per100g(86, 1.6, 20, 0.1),
    "potato": Per100g(77, 2, 17, 0.1),
    "oatmeal": Per100g(68, 2.5, 12, 1.4),
    # Vegetables
    "broccoli": Per100g(34, 2.8, 7, 0.4),
    "spinach": Per100g(23, 2.9, 3.6, 0.4),
    "salad": Per100g(20, 1.5, 3, 0.2),
    "carrot": Per100g(41, 0.9, 10, 0.2),
    "tomato": Per100g(18, 0.9, 3.9, 0.2),
    "asparagus": Per100g(20, 2.2, 3.9, 0.1),
    "green beans": Per100g(31, 1.8, 7, 0.1),
    # Fruits
    "apple": Per100g(52, 0.3, 14, 0.2),
    "banana": Per100g(89, 1.1, 23, 0.3),
    "orange": Per100g(47, 0.9, 12, 0.1),
    "berries": Per100g(57, 0.7, 14, 0.3),
    "strawberry": Per100g(32, 0.7, 7.7, 0.3),
    "blueberry": Per100g(57, 0.7, 14, 0.3),
    # Dairy
    "greek yogurt": Per100g(59, 10, 3.6, 0.7),
    "yogurt": Per100g(59, 10, 3.6, 0.7),
    "milk": Per100g(42, 3.4, 5, 1),
    "cheese": Per100g(402, 25, 1.3, 33),
    # Fats
    "avocado": Per100g(160, 2, 9, 15),
    "olive oil": Per100g(884, 0, 0, 100),
    "butter": Per100g(717, 0.9, 0.1, 81),
    "almonds": Per100g(579, 21, 22, 50),
    "nuts": Per100g(607, 20, 21, 54),
}

# Last resort: treat an unknown food as a generic protein-like item.
GENERIC_ESTIMATE = Per100g(150, 20, 5, 5)


def fallback_estimate(food_name: str) -> Per100g | None:
    """Per-100 g macros for *food_name*: exact key, else first partial match."""
    name = food_name.lower().strip()
    if not name:
        return None
    exact = FALLBACK_ESTIMATES.get(name)
    if exact is not None:
        return exact
    for key, value in FALLBACK_ESTIMATES.items():
        if key in name or name in key:
            return value
    return None
