"""System prompts and user-prompt builders.

User-supplied text is sanitized here, at the single point where it is
interpolated into a prompt.
"""

from __future__ import annotations

from datetime import date, timedelta

from fitai.ai.types import WeeklyNutritionInput, WeeklyPlanGenerationInput, WorkoutGenerationInput
from fitai.services.precheck import sanitize_input

# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

TEXT_MEAL_ANALYSIS_PROMPT = """\
You are a nutrition assistant. Estimate the nutrition of the meal the user \
describes. Reply with a short markdown breakdown, then end with exactly one block:

---MACROS_JSON---
{"foods": [{"name": str, "portion": str, "calories": int, "protein": int, \
"carbs": int, "fats": int}], "totals": {"calories": int, "protein": int, \
"carbs": int, "fats": int}, "confidence": "high"|"medium"|"low", "notes": str}
---END_MACROS---

Calories must equal protein*4 + carbs*4 + fats*9. Use grams for macros.
"""

MEAL_PHOTO_PROMPT = """\
You are a nutrition assistant. Identify every food visible in the photo and \
estimate its portion. Give short feedback in markdown, then end with exactly one block:

---MACROS_JSON---
{"calories": int, "protein": int, "carbs": int, "fats": int, \
"foods": [{"name": str, "portion": str, "portion_grams": number, "confidence": number}]}
---END_MACROS---

Portions use units such as "6oz", "1 cup", "2 slices" or "medium".
"""

BODY_ANALYSIS_PROMPT = """\
You are a supportive fitness coach. Describe the visible physique in neutral, \
encouraging terms, estimate a body-fat range, and suggest training and \
nutrition focus areas. Answer in markdown. Never comment on attractiveness.
"""

PROGRESS_ANALYSIS_PROMPT = """\
You are a supportive fitness coach. Compare the progress photos in order and \
relate the visible changes to the metrics given. Answer in markdown with \
sections for observed changes, what is working and next steps.
"""

WORKOUT_GENERATION_PROMPT = """\
You are a strength coach. Generate one workout adapted to the user's recovery \
state; reduce volume and intensity when energy or sleep is low and avoid sore \
muscle groups. Respond with JSON only:
{"title": str, "duration_minutes": int, "intensity": "light"|"moderate"|"intense", \
"recovery_adjusted": bool, "recovery_notes": str, \
"warmup": {"duration_minutes": int, "exercises": [{"name": str, "duration": str}]}, \
"exercises": [{"name": str, "sets": int, "reps": str, "rest_seconds": int, \
"notes": str, "target_muscles": [str]}], \
"cooldown": {"duration_minutes": int, "exercises": [{"name": str, "duration": str}]}}
"""

WEEKLY_NUTRITION_PROMPT = """\
You are a nutrition coach reviewing a week of food logs against daily targets. \
Respond with JSON only:
{"adherence_score": number 0-100, "summary": str, "wins": [str], \
"focus_area": str, "tip": str}
"""

WEEKLY_PLANNING_PROMPT = """\
You are a periodization coach. Build a 7-day training plan from the history \
and recovery data, with progressive overload and rest days placed where \
recovery is weakest. Respond with JSON only:
{"id": str, "week_start": "YYYY-MM-DD", "days": [7 x {"day": 0-6, \
"day_name": str, "is_rest_day": bool, "rest_reason": str|null, \
"focus_areas": [str], "workout": <workout object>|null}], \
"reasoning": str, "progressive_overload_notes": str}
Day 0 is Sunday. Workout objects use the same shape as single workouts: \
title, duration_minutes, intensity, warmup, exercises, cooldown.
"""

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _goal(goal: str | None, default: str = "RECOMP") -> str:
    return sanitize_input(goal, "user_goal") if goal else default


def build_text_meal_prompt(description: str, user_goal: str | None) -> str:
    goal_context = (
        f"User's goal: {_goal(user_goal)}. Adjust portion estimates accordingly."
        if user_goal
        else "No specific goal set. Use standard portion estimates."
    )
    return f'Analyze this meal: "{sanitize_input(description, "description")}"\n\n{goal_context}'


def build_meal_photo_prompt(user_goal: str | None) -> str:
    if user_goal:
        return f"Analyze the attached meal photo. The user's current goal is: {_goal(user_goal)}."
    return "Analyze the attached meal photo. The user has not set a goal; give general advice."


def build_progress_prompt(metrics: str) -> str:
    return f"Analyze the attached progress photos and metrics:\n{sanitize_input(metrics, 'metrics')}"


def build_workout_prompt(data: WorkoutGenerationInput) -> str:
    profile, recovery = data.profile, data.recovery
    recent = (
        "\n".join(
            f"- {sanitize_input(w.title, 'title')} ({w.date}): {', '.join(w.muscles)}"
            for w in data.recent_workouts[:3]
        )
        or "No recent workouts recorded"
    )
    return "\n".join(
        [
            "Generate a workout for this user:",
            "",
            "USER PROFILE:",
            f"- Goal: {_goal(profile.goal)}",
            f"- Training Experience: {profile.training_experience or 'beginner'}",
            f"- Equipment Access: {profile.equipment_access or 'gym'}",
            f"- Days Per Week: {profile.days_per_week or 4}",
            "",
            "RECOVERY STATE:",
            f"- Energy Level: {recovery.energy_level}/5",
            f"- Sleep Last Night: {recovery.sleep_hours} hours",
            f"- Sore Areas: {', '.join(recovery.soreness_areas) or 'None'}",
            f"- Last Workout Rating: {recovery.last_workout_rating}/5",
            "",
            "RECENT WORKOUTS (last 3):",
            recent,
        ]
    )


def build_weekly_nutrition_prompt(data: WeeklyNutritionInput) -> str:
    logs = "\n".join(
        f"- {log.date}: {log.calories} cal, {log.protein}g P, {log.carbs}g C, {log.fats}g F"
        for log in data.logs
    )
    t = data.targets
    return "\n".join(
        [
            "Analyze this user's 7-day nutrition data:",
            "",
            f"USER GOAL: {_goal(data.goal)}",
            "",
            "DAILY TARGETS:",
            f"- Calories: {t.calories}",
            f"- Protein: {t.protein}g",
            f"- Carbs: {t.carbs}g",
            f"- Fats: {t.fats}g",
            "",
            "DAILY LOGS (last 7 days):",
            logs or "No logs recorded",
        ]
    )


def next_week_start(today: date | None = None) -> str:
    """ISO date of the next Monday (a Monday maps to the following one)."""
    today = today or date.today()
    days_until_monday = (7 - today.weekday()) % 7 or 7
    return (today + timedelta(days=days_until_monday)).isoformat()


def build_week_plan_prompt(data: WeeklyPlanGenerationInput, week_start: str) -> str:
    history = (
        "\n\n".join(
            f"{w.date} - {sanitize_input(w.title, 'title')} (Volume: {w.volume} total reps)\n"
            f"  Muscles: {', '.join(w.muscles)}\n"
            + "\n".join(
                f"  - {sanitize_input(e.name, 'title')}: {e.sets}x{e.reps}"
                + (f" @ {e.weight}lbs" if e.weight else "")
                for e in w.exercises
            )
            for w in data.recent_workouts
        )
        or "No recent workout history available."
    )

    patterns = data.recovery_patterns
    recovery = (
        "\n".join(
            f"{r.date}: Energy {r.energy_level}/5, Sleep {r.sleep_hours}hrs"
            + (f", Sore: {', '.join(r.soreness_areas)}" if r.soreness_areas else "")
            for r in patterns
        )
        or "No recovery data available."
    )
    avg_energy = f"{sum(r.energy_level for r in patterns) / len(patterns):.1f}" if patterns else "N/A"
    avg_sleep = f"{sum(r.sleep_hours for r in patterns) / len(patterns):.1f}" if patterns else "N/A"

    profile = data.profile
    lines = [
        f"Create a complete 7-day training plan for the upcoming week starting {week_start}.",
        "",
        "USER PROFILE:",
        f"- Goal: {_goal(profile.goal)}",
        f"- Training Experience: {profile.training_experience or 'intermediate'}",
        f"- Equipment Access: {profile.equipment_access or 'gym'}",
        f"- Preferred Days Per Week: {profile.days_per_week or 4}",
    ]
    if data.preferred_schedule:
        days = ", ".join(DAY_NAMES[d] for d in data.preferred_schedule if 0 <= d <= 6)
        lines.append(f"- Preferred Training Days: {days}")
    lines += [
        "",
        "WORKOUT HISTORY (Last 3-4 weeks):",
        history,
        "",
        "RECOVERY PATTERNS (Recent):",
        recovery,
        "",
        "RECOVERY AVERAGES:",
        f"- Average Energy Level: {avg_energy}/5",
        f"- Average Sleep: {avg_sleep} hours",
        "",
        f'Use week_start: "{week_start}" in your response.',
    ]
    return "\n".join(lines)
