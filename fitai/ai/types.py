"""Provider-neutral data model for AI operations.

Everything here is a value object: callers get copies, never references
into orchestration state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

Role = Literal["system", "user", "assistant"]

# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """An image given as a ``data:`` URL (base64) or an https URL."""

    model_config = ConfigDict(frozen=True)

    type: Literal["image"] = "image"
    image_url: str


ContentPart = Union[TextPart, ImagePart]


class ChatMessage(BaseModel):
    """A single provider-neutral chat message."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Union[str, tuple[ContentPart, ...]]

    @classmethod
    def system(cls, text: str) -> ChatMessage:
        return cls(role="system", content=text)

    @classmethod
    def user(cls, text: str, *images: str) -> ChatMessage:
        """User message; when *images* are given the content becomes multi-part."""
        if not images:
            return cls(role="user", content=text)
        parts: list[ContentPart] = [TextPart(text=text)]
        parts.extend(ImagePart(image_url=url) for url in images)
        return cls(role="user", content=tuple(parts))

    @property
    def parts(self) -> tuple[ContentPart, ...]:
        """Content normalised to a tuple of parts."""
        if isinstance(self.content, str):
            return (TextPart(text=self.content),)
        return self.content

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))


class ChatOptions(BaseModel):
    """Per-call generation options."""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)
    json_mode: bool = False
    timeout_seconds: float | None = Field(default=None, gt=0)
    is_vision: bool = False


@dataclass(frozen=True, slots=True)
class ProviderResult(Generic[T]):
    """A successful dispatch: the value plus the provider that produced it."""

    value: T
    provider: str


# ---------------------------------------------------------------------------
# Meal analysis
# ---------------------------------------------------------------------------


class MacroTotals(BaseModel):
    calories: int = Field(default=0, ge=0)
    protein: int = Field(default=0, ge=0)
    carbs: int = Field(default=0, ge=0)
    fats: int = Field(default=0, ge=0)


class Food(BaseModel):
    """One food item of a text meal analysis."""

    name: str
    portion: str
    calories: int = Field(ge=0)
    protein: int = Field(ge=0)
    carbs: int = Field(ge=0)
    fats: int = Field(ge=0)


class TextMealAnalysis(BaseModel):
    foods: list[Food]
    totals: MacroTotals
    confidence: Literal["high", "medium", "low"] = "medium"
    notes: str = ""
    markdown: str = ""


class IdentifiedFood(BaseModel):
    """A food recognised by the vision pass, before any nutrition lookup."""

    name: str
    portion: str = "standard portion"
    portion_grams: float | None = Field(default=None, gt=0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class FoodWithNutrition(IdentifiedFood):
    calories: int = Field(ge=0)
    protein: int = Field(ge=0)
    carbs: int = Field(ge=0)
    fats: int = Field(ge=0)
    source: Literal["database", "estimate"]
    external_id: int | None = None
    database_description: str | None = None


class EnrichedFoods(BaseModel):
    foods: list[FoodWithNutrition] = Field(default_factory=list)
    totals: MacroTotals = Field(default_factory=MacroTotals)
    has_database_data: bool = False


class PhotoMealAnalysis(BaseModel):
    markdown: str
    macros: MacroTotals | None = None
    foods: list[IdentifiedFood] = Field(default_factory=list)
    enriched_foods: list[FoodWithNutrition] | None = None
    has_database_data: bool = False


# ---------------------------------------------------------------------------
# Workouts and plans
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    goal: str | None = None
    training_experience: str | None = None
    equipment_access: str | None = None
    days_per_week: int | None = Field(default=None, ge=1, le=7)


class RecoveryState(BaseModel):
    energy_level: int = Field(ge=1, le=5)
    sleep_hours: float = Field(ge=0, le=24)
    soreness_areas: list[str] = Field(default_factory=list)
    last_workout_rating: int = Field(ge=1, le=5)


class RecentWorkout(BaseModel):
    title: str
    date: str
    muscles: list[str] = Field(default_factory=list)


class WorkoutGenerationInput(BaseModel):
    profile: UserProfile = Field(default_factory=UserProfile)
    recovery: RecoveryState
    recent_workouts: list[RecentWorkout] = Field(default_factory=list)


class WorkoutExercise(BaseModel):
    name: str
    sets: int = Field(ge=0)
    reps: str
    rest_seconds: int = Field(default=60, ge=0)
    notes: str | None = None
    target_muscles: list[str] = Field(default_factory=list)


class SectionExercise(BaseModel):
    name: str
    duration: str


class WorkoutSection(BaseModel):
    duration_minutes: int = Field(ge=0)
    exercises: list[SectionExercise] = Field(default_factory=list)


class GeneratedWorkout(BaseModel):
    title: str
    duration_minutes: int = Field(ge=0)
    intensity: Literal["light", "moderate", "intense"]
    recovery_adjusted: bool = False
    recovery_notes: str | None = None
    warmup: WorkoutSection
    exercises: list[WorkoutExercise]
    cooldown: WorkoutSection


class HistoryExercise(BaseModel):
    name: str
    sets: int
    reps: str
    weight: float | None = None


class WorkoutHistoryItem(BaseModel):
    date: str
    title: str
    muscles: list[str] = Field(default_factory=list)
    volume: int = 0
    exercises: list[HistoryExercise] = Field(default_factory=list)


class RecoveryPattern(BaseModel):
    date: str
    energy_level: int = Field(ge=1, le=5)
    sleep_hours: float = Field(ge=0, le=24)
    soreness_areas: list[str] = Field(default_factory=list)


class WeeklyPlanGenerationInput(BaseModel):
    profile: UserProfile = Field(default_factory=UserProfile)
    recent_workouts: list[WorkoutHistoryItem] = Field(default_factory=list)
    recovery_patterns: list[RecoveryPattern] = Field(default_factory=list)
    preferred_schedule: list[int] | None = None


class DayPlan(BaseModel):
    day: int = Field(ge=0, le=6)
    day_name: str
    workout: GeneratedWorkout | None = None
    is_rest_day: bool
    rest_reason: str | None = None
    focus_areas: list[str] = Field(default_factory=list)


class WeeklyPlan(BaseModel):
    id: str
    week_start: str
    days: list[DayPlan] = Field(min_length=7, max_length=7)
    reasoning: str
    progressive_overload_notes: str = ""
    created_at: str = ""


# ---------------------------------------------------------------------------
# Weekly nutrition
# ---------------------------------------------------------------------------


class NutritionLog(BaseModel):
    date: str
    calories: int = Field(ge=0)
    protein: int = Field(ge=0)
    carbs: int = Field(ge=0)
    fats: int = Field(ge=0)


class WeeklyNutritionInput(BaseModel):
    logs: list[NutritionLog]
    targets: MacroTotals
    goal: str | None = None


class WeeklyNutritionInsights(BaseModel):
    adherence_score: float
    summary: str
    wins: list[str]
    focus_area: str
    tip: str


# ---------------------------------------------------------------------------
# Response envelope
# ---------------------------------------------------------------------------


class ErrorInfo(BaseModel):
    kind: str
    message: str
    retryable: bool = False
    retry_after_ms: int | None = None


class AIResponse(BaseModel, Generic[T]):
    """Envelope returned by every public operation; nothing raises past it."""

    success: bool
    data: T | None = None
    provider: str | None = None
    duration_ms: int | None = None
    error: ErrorInfo | None = None
