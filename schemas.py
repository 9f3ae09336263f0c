"""
Schemas for the RIZQ habit ledger

The ledger persists a single document per user/device (LedgerState). Field
names are snake_case in Python; the aliases are the camelCase keys of the
stored JSON document.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


TimeSlot = Literal["morning", "anytime", "evening"]

TIME_SLOTS: List[str] = ["morning", "anytime", "evening"]


def custom_habit_id(dua_id: int) -> str:
    return f"custom-{dua_id}"


def journey_habit_id(journey_id: int, dua_id: int) -> str:
    return f"journey-{journey_id}-dua-{dua_id}"


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CustomHabit(_Document):
    """
    A dua the user added to their routine outside of any journey.
    One entry per dua: id is "custom-<duaId>".
    """
    id: str = Field(..., description="Stable habit id, e.g. custom-7")
    dua_id: int = Field(..., alias="duaId", description="Content dua id")
    time_slot: TimeSlot = Field(..., alias="timeSlot", description="Display slot")
    added_at: datetime = Field(..., alias="addedAt", description="When the habit was added")


class HabitCompletion(_Document):
    """
    A habit practiced on a local calendar day.
    At most one per (habitId, date).
    """
    habit_id: str = Field(..., alias="habitId", description="Habit id")
    date: str = Field(..., description="Local calendar day (YYYY-MM-DD)")
    completed_at: datetime = Field(..., alias="completedAt", description="Instant of completion")
    xp_earned: int = Field(..., alias="xpEarned", description="XP awarded for this completion")


class LedgerState(_Document):
    """
    The whole persisted ledger: journey subscriptions, custom habits and the
    completion log.
    """
    active_journey_ids: List[int] = Field(default_factory=list, alias="activeJourneyIds")
    custom_habits: List[CustomHabit] = Field(default_factory=list, alias="customHabits")
    habit_completions: List[HabitCompletion] = Field(default_factory=list, alias="habitCompletions")


class TodayProgress(_Document):
    completed: int = Field(0, description="Completions recorded today")
    total: int = Field(0, description="Habits scheduled today (supplied by the caller)")
    xp_earned: int = Field(0, alias="xpEarned", description="XP earned today")

    @computed_field
    @property
    def percentage(self) -> float:
        return self.completed / self.total if self.total > 0 else 0.0


class TimeSlotProgress(_Document):
    slot: TimeSlot
    completed: int = 0
    total: int = 0

    @computed_field
    @property
    def percentage(self) -> float:
        return self.completed / self.total if self.total > 0 else 0.0


# -----------------------------
# Content catalog records
# -----------------------------

class Dua(_Document):
    """
    A supplication from the content catalog. Only the fields the habit list
    needs are modelled.
    """
    id: int
    title: str = Field(..., description="English title")
    xp_value: int = Field(0, alias="xpValue", description="XP awarded per completion")
    repetitions: int = Field(1, ge=1)
    category: Optional[str] = Field(None)


class JourneyDua(_Document):
    """A dua scheduled inside a journey."""
    journey_id: int = Field(..., alias="journeyId")
    dua_id: int = Field(..., alias="duaId")
    time_slot: TimeSlot = Field(..., alias="timeSlot")
    sort_order: int = Field(0, alias="sortOrder")


class UserHabit(_Document):
    """
    A habit resolved against the catalog for display: either a journey dua
    or a custom habit.
    """
    id: str
    dua_id: int = Field(..., alias="duaId")
    journey_id: Optional[int] = Field(None, alias="journeyId")
    time_slot: TimeSlot = Field(..., alias="timeSlot")
    sort_order: int = Field(0, alias="sortOrder")
    title: str
    xp_value: int = Field(0, alias="xpValue")
    is_custom: bool = Field(False, alias="isCustom")
    is_completed_today: bool = Field(False, alias="isCompletedToday")
