"""Second phase of meal-photo analysis: deterministic nutrition lookup.

The vision model only names foods and rough portions.  Quantities come
from here: portion → grams, database lookup with a confidence gate,
static per-100 g estimates otherwise, then totals.
"""

from __future__ import annotations

import asyncio
import logging

from fitai.ai.retry import Deadline
from fitai.ai.types import EnrichedFoods, FoodWithNutrition, IdentifiedFood, MacroTotals
from fitai.nutrition.estimates import GENERIC_ESTIMATE, fallback_estimate
from fitai.nutrition.portions import normalize_food_name, parse_portion_to_grams
from fitai.nutrition.reconcile import round_half_up
from fitai.nutrition.usda import USDAClient

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.6


def _scaled(
    food: IdentifiedFood,
    grams: float,
    per_100g: tuple[float, float, float, float],
    **extra: object,
) -> FoodWithNutrition:
    calories, protein, carbs, fats = per_100g
    scale = grams / 100
    return FoodWithNutrition(
        name=food.name,
        portion=food.portion,
        portion_grams=grams,
        confidence=food.confidence,
        calories=max(0, round_half_up(calories * scale)),
        protein=max(0, round_half_up(protein * scale)),
        carbs=max(0, round_half_up(carbs * scale)),
        fats=max(0, round_half_up(fats * scale)),
        **extra,
    )


async def lookup_single_food(
    food: IdentifiedFood,
    usda: USDAClient | None,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    deadline: Deadline | None = None,
) -> FoodWithNutrition:
    """Nutrition for one identified food, scaled to its portion.

    Database match first (only at or above *min_confidence*, and only
    while *deadline* has time left), then the static table, then a
    generic protein-like estimate.
    """
    grams = food.portion_grams or parse_portion_to_grams(food.portion, food.name)
    query = normalize_food_name(food.name)

    if usda is not None and usda.enabled and query:
        match = await usda.lookup_with_confidence(query, min_confidence, deadline=deadline)
        if match is not None:
            return _scaled(
                food,
                grams,
                (match.calories, match.protein, match.carbs, match.fats),
                source="database",
                external_id=match.fdc_id,
                database_description=match.description,
            )

    estimate = fallback_estimate(query) or GENERIC_ESTIMATE
    return _scaled(food, grams, estimate, source="estimate")


async def enrich_foods(
    foods: list[IdentifiedFood],
    usda: USDAClient | None,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    deadline: Deadline | None = None,
) -> EnrichedFoods:
    """Look up every food concurrently and sum the totals."""
    if not foods:
        return EnrichedFoods()

    enriched = list(
        await asyncio.gather(*(lookup_single_food(f, usda, min_confidence, deadline) for f in foods))
    )
    totals = MacroTotals(
        calories=sum(f.calories for f in enriched),
        protein=sum(f.protein for f in enriched),
        carbs=sum(f.carbs for f in enriched),
        fats=sum(f.fats for f in enriched),
    )
    has_database_data = any(f.source == "database" for f in enriched)

    logger.info(
        "Enriched %d foods (%d from database)",
        len(enriched),
        sum(1 for f in enriched if f.source == "database"),
        extra={"event": "foods_enriched"},
    )
    return EnrichedFoods(foods=enriched, totals=totals, has_database_data=has_database_data)


def _goal_fit(goal: str, totals: MacroTotals) -> str:
    goal = goal.upper()
    if goal == "CUT":
        high_protein = totals.protein >= 30
        if high_protein and totals.calories <= 600:
            return "This meal supports your cutting goal with good protein and moderate calories."
        if not high_protein:
            return "Consider adding more protein to support muscle retention during your cut."
        return "Portion sizes look generous for a cutting phase. Consider scaling back slightly."
    if goal == "BULK":
        if totals.protein >= 30 and totals.calories >= 500:
            return "Solid meal for bulking. Good protein and calorie density."
        return "You might need larger portions or an extra protein source to support your bulk."
    return "This meal provides balanced macros for body recomposition."


def generate_meal_markdown(
    foods: list[FoodWithNutrition],
    totals: MacroTotals,
    user_goal: str | None = None,
) -> str:
    """Human-readable summary; database-backed foods are marked ✓, estimates ~."""
    lines = ["## Meal Analysis\n", "### Foods Identified\n"]
    for food in foods:
        badge = "✓" if food.source == "database" else "~"
        lines.append(f"- **{food.name}** ({food.portion}) {badge}")
        lines.append(f"  {food.calories} cal | {food.protein}g P | {food.carbs}g C | {food.fats}g F\n")

    lines.append("### Total Macros\n")
    lines.append(f"- **Calories:** {totals.calories}")
    lines.append(f"- **Protein:** {totals.protein}g")
    lines.append(f"- **Carbs:** {totals.carbs}g")
    lines.append(f"- **Fats:** {totals.fats}g\n")

    if user_goal:
        lines.append("### Goal Fit\n")
        lines.append(_goal_fit(user_goal, totals))

    matched = sum(1 for f in foods if f.source == "database")
    estimated = len(foods) - matched
    if estimated:
        lines.append("\n---")
        lines.append(f"*{matched} food(s) matched the nutrition database (✓), {estimated} estimated (~)*")

    return "\n".join(lines)
