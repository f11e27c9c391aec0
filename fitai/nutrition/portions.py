"""Portion parsing and food-name normalisation.

Turns model-reported portions ("6oz", "1 cup", "medium") into grams and
strips cooking-method and adjective words from food names so that the
nutrition database search matches more often.
"""

from __future__ import annotations

import re

from fitai.nutrition.reconcile import round_half_up

# Grams per unit.  Volume units are approximate for foods.
PORTION_CONVERSIONS: dict[str, float] = {
    # Weight
    "oz": 28.35,
    "ounce": 28.35,
    "ounces": 28.35,
    "lb": 453.6,
    "lbs": 453.6,
    "pound": 453.6,
    "pounds": 453.6,
    "g": 1,
    "gram": 1,
    "grams": 1,
    "kg": 1000,
    # Volume
    "cup": 240,
    "cups": 240,
    "tbsp": 15,
    "tablespoon": 15,
    "tablespoons": 15,
    "tsp": 5,
    "teaspoon": 5,
    "teaspoons": 5,
    "ml": 1,
    "milliliter": 1,
    "milliliters": 1,
    # Generic sizes (protein portions)
    "small": 85,
    "medium": 170,
    "large": 255,
    # Pieces
    "piece": 100,
    "pieces": 100,
    "slice": 30,
    "slices": 30,
}

# Typical single portion by food keyword, used when no unit is given.
DEFAULT_PORTIONS: dict[str, int] = {
    # Proteins
    "chicken": 170,
    "beef": 170,
    "fish": 170,
    "salmon": 170,
    "tuna": 140,
    "steak": 200,
    "pork": 170,
    "shrimp": 115,
    "egg": 50,
    "tofu": 120,
    # Carbs
    "rice": 150,
    "pasta": 140,
    "bread": 30,
    "potato": 150,
    "oatmeal": 40,
    # Vegetables
    "broccoli": 90,
    "spinach": 30,
    "salad": 100,
    "carrot": 60,
    "tomato": 120,
    # Fruits
    "apple": 180,
    "banana": 120,
    "orange": 130,
    "berries": 140,
}
GENERIC_PORTION_GRAMS = 100
MAX_PORTION_GRAMS = 5000

_QUANTITY_UNIT = re.compile(r"^(\d+(?:\.\d+)?(?:\s*/\s*\d+)?)\s*([a-z]+)\.?$")

NAME_STOPWORDS: tuple[str, ...] = (
    "grilled", "fried", "baked", "roasted", "steamed", "sauteed", "raw",
    "fresh", "frozen", "organic", "homemade", "restaurant-style",
    "crispy", "tender", "juicy", "seasoned", "marinated",
    "sliced", "diced", "chopped", "shredded", "whole",
    "with", "and", "the", "a", "an",
)
_STOPWORDS_RE = re.compile(
    r"(?<![\w-])(?:" + "|".join(re.escape(w) for w in NAME_STOPWORDS) + r")(?![\w-])"
)


def _parse_quantity(text: str) -> float | None:
    if "/" in text:
        num, _, den = text.partition("/")
        try:
            denominator = float(den)
            return float(num) / denominator if denominator else None
        except ValueError:
            return None
    try:
        return float(text)
    except ValueError:
        return None


def default_portion_for(food_name: str) -> int:
    """Typical portion in grams for *food_name*, else the generic 100 g."""
    name = food_name.lower()
    for keyword, grams in DEFAULT_PORTIONS.items():
        if re.search(rf"\b{keyword}\b", name):
            return grams
    return GENERIC_PORTION_GRAMS


def parse_portion_to_grams(portion: str, food_name: str = "") -> int:
    """Parse a portion like ``"6oz"``, ``"1.5 cups"`` or ``"medium"`` into grams.

    Falls back to the food's default portion, then to 100 g.
    """
    normalized = (portion or "").lower().strip()

    match = _QUANTITY_UNIT.match(normalized)
    if match:
        quantity = _parse_quantity(match.group(1).replace(" ", ""))
        grams_per_unit = PORTION_CONVERSIONS.get(match.group(2))
        if quantity is not None and quantity > 0 and grams_per_unit:
            grams = quantity * grams_per_unit
            if grams <= MAX_PORTION_GRAMS:
                return max(1, round_half_up(grams))

    size = PORTION_CONVERSIONS.get(normalized)
    if size:
        return round_half_up(size)

    return default_portion_for(food_name)


def normalize_food_name(name: str) -> str:
    """Lowercase *name* and drop cooking methods, adjectives and filler words."""
    normalized = _STOPWORDS_RE.sub(" ", name.lower().strip())
    return re.sub(r"\s+", " ", normalized).strip()
