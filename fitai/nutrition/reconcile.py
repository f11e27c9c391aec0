"""Macro reconciliation for model-produced meal data.

Macros are the trusted signal and calories are derived from them:
``calories ≈ protein*4 + carbs*4 + fats*9``.  A per-food mismatch larger
than ``max(15, 10% of expected)`` kcal replaces the stated calories; the
summed totals are checked again with a flat 20 kcal tolerance.
"""

from __future__ import annotations

import math
from typing import Any

from fitai.ai.types import Food, MacroTotals, TextMealAnalysis

KCAL_PER_G_PROTEIN = 4
KCAL_PER_G_CARBS = 4
KCAL_PER_G_FAT = 9

FOOD_MIN_TOLERANCE_KCAL = 15
FOOD_TOLERANCE_RATIO = 0.10
TOTAL_TOLERANCE_KCAL = 20
MAX_MACRO_VALUE = 100_000


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def expected_calories(protein: float, carbs: float, fats: float) -> int:
    return round_half_up(protein * KCAL_PER_G_PROTEIN + carbs * KCAL_PER_G_CARBS + fats * KCAL_PER_G_FAT)


def food_tolerance(expected: float) -> float:
    return max(FOOD_MIN_TOLERANCE_KCAL, expected * FOOD_TOLERANCE_RATIO)


def is_consistent(totals: MacroTotals, tolerance: float | None = None) -> bool:
    """True when ``totals.calories`` matches its macros within *tolerance*."""
    expected = expected_calories(totals.protein, totals.carbs, totals.fats)
    limit = food_tolerance(expected) if tolerance is None else tolerance
    return abs(totals.calories - expected) <= limit


def correct_calories(calories: int, protein: int, carbs: int, fats: int) -> int:
    """Per-item rule: replace *calories* when it strays from its macros."""
    expected = expected_calories(protein, carbs, fats)
    if expected > 0 and abs(calories - expected) > food_tolerance(expected):
        return expected
    return calories


def reconcile_totals(totals: MacroTotals, tolerance: float = TOTAL_TOLERANCE_KCAL) -> MacroTotals:
    """Total-level rule: recompute calories when off by more than *tolerance*."""
    expected = expected_calories(totals.protein, totals.carbs, totals.fats)
    if abs(totals.calories - expected) > tolerance:
        return totals.model_copy(update={"calories": expected})
    return totals


def _macro(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0
    if value > MAX_MACRO_VALUE:
        return 0
    return max(0, round_half_up(value))


def reconcile(raw: Any) -> TextMealAnalysis | None:
    """Validate and numerically correct a raw text-meal payload.

    Returns ``None`` when the payload lacks a ``foods`` list and a
    ``totals`` object: malformed model output is an expected outcome the
    caller handles by trying another provider.
    """
    if not isinstance(raw, dict):
        return None
    if not isinstance(raw.get("foods"), list) or not isinstance(raw.get("totals"), dict):
        return None

    foods: list[Food] = []
    for item in raw["foods"]:
        if not isinstance(item, dict):
            continue
        protein = _macro(item.get("protein"))
        carbs = _macro(item.get("carbs"))
        fats = _macro(item.get("fats"))
        calories = correct_calories(_macro(item.get("calories")), protein, carbs, fats)
        name = item.get("name")
        portion = item.get("portion")
        foods.append(
            Food(
                name=name if isinstance(name, str) else "Unknown food",
                portion=portion if isinstance(portion, str) else "standard portion",
                calories=calories,
                protein=protein,
                carbs=carbs,
                fats=fats,
            )
        )

    totals = reconcile_totals(
        MacroTotals(
            calories=sum(f.calories for f in foods),
            protein=sum(f.protein for f in foods),
            carbs=sum(f.carbs for f in foods),
            fats=sum(f.fats for f in foods),
        )
    )

    confidence = raw.get("confidence")
    notes = raw.get("notes")
    return TextMealAnalysis(
        foods=foods,
        totals=totals,
        confidence=confidence if confidence in ("high", "medium", "low") else "medium",
        notes=notes if isinstance(notes, str) else "",
    )
