"""
Local habit-completion and streak ledger.

Every operation loads the full ledger from its store, works on it and, when
it mutates, saves the full ledger back. A per-instance lock keeps those
load-modify-save cycles from interleaving; the ledger is meant for a single
writer (one user on one device).
"""

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from schemas import (
    CustomHabit,
    HabitCompletion,
    LedgerState,
    TimeSlot,
    TodayProgress,
    custom_habit_id,
)

logger = logging.getLogger(__name__)

STREAK_LOOKBACK_DAYS = 365
DEFAULT_KEEP_DAYS = 30

# What add_custom_habit does when the dua is already a custom habit.
KEEP_FIRST_SLOT = "keep_first"
REPLACE_SLOT = "replace_slot"


def _local_now() -> datetime:
    return datetime.now().astimezone()


class HabitLedger:
    def __init__(
        self,
        store,
        clock: Callable[[], datetime] = _local_now,
        readd_policy: str = KEEP_FIRST_SLOT,
    ):
        if readd_policy not in (KEEP_FIRST_SLOT, REPLACE_SLOT):
            raise ValueError(f"Unknown readd_policy: {readd_policy!r}")
        self.store = store
        self.clock = clock
        self.readd_policy = readd_policy
        self._lock = threading.RLock()

    # -----------------------------
    # Dates
    # -----------------------------

    def today(self) -> date:
        return self.clock().date()

    def today_str(self) -> str:
        return self.today().isoformat()

    def _day_str(self, days_ago: int) -> str:
        return (self.today() - timedelta(days=days_ago)).isoformat()

    # -----------------------------
    # Load / save
    # -----------------------------

    def load_state(self) -> LedgerState:
        """
        Read the whole ledger. A missing blob is an empty ledger; so is a
        blob that cannot be decoded (logged, not raised). StorageError from
        the store propagates.
        """
        with self._lock:
            blob = self.store.load()
            if not blob:
                return LedgerState()
            try:
                return LedgerState.model_validate_json(blob)
            except ValidationError as e:
                logger.warning("Habit ledger could not be decoded, starting empty: %s", e)
                return LedgerState()

    def save_state(self, state: LedgerState) -> None:
        with self._lock:
            self.store.save(state.model_dump_json(by_alias=True))

    # -----------------------------
    # Journeys
    # -----------------------------

    def get_active_journey_ids(self) -> Set[int]:
        return set(self.load_state().active_journey_ids)

    def set_active_journey_ids(self, journey_ids) -> None:
        with self._lock:
            state = self.load_state()
            state.active_journey_ids = list(dict.fromkeys(journey_ids))
            self.save_state(state)

    def add_journey(self, journey_id: int) -> None:
        with self._lock:
            state = self.load_state()
            if journey_id in state.active_journey_ids:
                return
            state.active_journey_ids.append(journey_id)
            self.save_state(state)

    def remove_journey(self, journey_id: int) -> None:
        with self._lock:
            state = self.load_state()
            if journey_id not in state.active_journey_ids:
                return
            state.active_journey_ids = [j for j in state.active_journey_ids if j != journey_id]
            self.save_state(state)

    def is_journey_active(self, journey_id: int) -> bool:
        return journey_id in self.load_state().active_journey_ids

    # -----------------------------
    # Custom habits
    # -----------------------------

    def get_custom_habits(self) -> List[CustomHabit]:
        return self.load_state().custom_habits

    def add_custom_habit(self, dua_id: int, time_slot: TimeSlot) -> CustomHabit:
        """
        Add a dua as a custom habit. Re-adding the same dua returns the stored
        entry; its time slot is only changed under REPLACE_SLOT.
        """
        habit_id = custom_habit_id(dua_id)
        with self._lock:
            state = self.load_state()
            for i, existing in enumerate(state.custom_habits):
                if existing.id != habit_id:
                    continue
                if self.readd_policy == REPLACE_SLOT and existing.time_slot != time_slot:
                    updated = existing.model_copy(update={"time_slot": time_slot})
                    state.custom_habits[i] = updated
                    self.save_state(state)
                    return updated
                return existing

            habit = CustomHabit(id=habit_id, dua_id=dua_id, time_slot=time_slot, added_at=self.clock())
            state.custom_habits.append(habit)
            self.save_state(state)
            return habit

    def remove_custom_habit(self, habit_id: str) -> None:
        # Completions for the habit stay; they still count toward the streak.
        with self._lock:
            state = self.load_state()
            kept = [h for h in state.custom_habits if h.id != habit_id]
            if len(kept) == len(state.custom_habits):
                return
            state.custom_habits = kept
            self.save_state(state)

    # -----------------------------
    # Completions
    # -----------------------------

    def get_completions_for_date(self, day: str) -> List[HabitCompletion]:
        return [c for c in self.load_state().habit_completions if c.date == day]

    def get_completions_for_today(self) -> List[HabitCompletion]:
        return self.get_completions_for_date(self.today_str())

    def get_completed_habit_ids_for_today(self) -> Set[str]:
        return {c.habit_id for c in self.get_completions_for_today()}

    def is_completed_today(self, habit_id: str) -> bool:
        return habit_id in self.get_completed_habit_ids_for_today()

    def complete_habit(self, habit_id: str, xp_earned: int) -> HabitCompletion:
        """
        Record that habit_id was practiced today and return the record.

        Idempotent per day: when a completion for (habit_id, today) exists it
        is returned unchanged and nothing is written, so XP is awarded at
        most once per habit per day.
        """
        return self.record_completion(habit_id, xp_earned)[0]

    def record_completion(self, habit_id: str, xp_earned: int) -> Tuple[HabitCompletion, bool]:
        """complete_habit, also telling whether this call created the record."""
        with self._lock:
            now = self.clock()
            today = now.date().isoformat()
            state = self.load_state()
            for existing in state.habit_completions:
                if existing.habit_id == habit_id and existing.date == today:
                    return existing, False

            completion = HabitCompletion(
                habit_id=habit_id,
                date=today,
                completed_at=now,
                xp_earned=xp_earned,
            )
            state.habit_completions.append(completion)
            self.save_state(state)
            return completion, True

    def uncomplete_habit(self, habit_id: str, day: Optional[str] = None) -> None:
        if day is None:
            day = self.today_str()
        with self._lock:
            state = self.load_state()
            kept = [
                c for c in state.habit_completions
                if not (c.habit_id == habit_id and c.date == day)
            ]
            if len(kept) == len(state.habit_completions):
                return
            state.habit_completions = kept
            self.save_state(state)

    # -----------------------------
    # Statistics
    # -----------------------------

    def get_today_progress(self, total_habits: int) -> TodayProgress:
        completions = self.get_completions_for_today()
        return TodayProgress(
            completed=len(completions),
            total=total_habits,
            xp_earned=sum(c.xp_earned for c in completions),
        )

    def calculate_streak(self) -> int:
        """
        Count consecutive days with at least one completion, walking back
        from today. A missing today does not break the streak; any other
        missing day ends it.
        """
        with self._lock:
            dates = {c.date for c in self.load_state().habit_completions}
            if not dates:
                return 0

            streak = 0
            for offset in range(STREAK_LOOKBACK_DAYS):
                if self._day_str(offset) in dates:
                    streak += 1
                elif offset > 0:
                    break
            return streak

    def get_completion_history(self, days: int) -> Dict[str, List[HabitCompletion]]:
        """Completions for each of the last `days` days, newest first."""
        with self._lock:
            completions = self.load_state().habit_completions
            history = {}
            for offset in range(days):
                day = self._day_str(offset)
                history[day] = [c for c in completions if c.date == day]
            return history

    # -----------------------------
    # Cleanup
    # -----------------------------

    def clear_old_completions(self, keep_days: int = DEFAULT_KEEP_DAYS) -> int:
        """Drop completions dated before today - keep_days. Returns how many went."""
        with self._lock:
            cutoff = self._day_str(keep_days)
            state = self.load_state()
            kept = [c for c in state.habit_completions if c.date >= cutoff]
            removed = len(state.habit_completions) - len(kept)
            if removed:
                state.habit_completions = kept
                self.save_state(state)
                logger.info("Removed %d habit completions before %s", removed, cutoff)
            return removed

    def clear_all_data(self) -> None:
        with self._lock:
            self.save_state(LedgerState())
            logger.info("Habit ledger reset")
