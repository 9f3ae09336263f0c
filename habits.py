"""
Today's habit list: the ledger joined with the content catalog.

The ledger only knows habit ids and completions. Which duas make up "today"
comes from the catalog, so the join lives here, with the catalog passed in.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from ledger import HabitLedger
from schemas import (
    TIME_SLOTS,
    Dua,
    HabitCompletion,
    JourneyDua,
    TimeSlotProgress,
    TodayProgress,
    UserHabit,
    journey_habit_id,
)

logger = logging.getLogger(__name__)

SLOT_PRIORITY = {slot: i for i, slot in enumerate(TIME_SLOTS)}

CompletionListener = Callable[[HabitCompletion], None]


class ContentProvider(Protocol):
    def get_journey_duas(self, journey_id: int) -> List[JourneyDua]: ...

    def get_dua(self, dua_id: int) -> Optional[Dua]: ...


class StaticContentProvider:
    """Catalog held in memory, e.g. seeded from a JSON export."""

    def __init__(self, duas: Iterable[Dua] = (), journey_duas: Iterable[JourneyDua] = ()):
        self.duas = {d.id: d for d in duas}
        self.journey_duas: Dict[int, List[JourneyDua]] = {}
        for jd in journey_duas:
            self.journey_duas.setdefault(jd.journey_id, []).append(jd)

    def get_journey_duas(self, journey_id: int) -> List[JourneyDua]:
        return sorted(self.journey_duas.get(journey_id, []), key=lambda jd: jd.sort_order)

    def get_dua(self, dua_id: int) -> Optional[Dua]:
        return self.duas.get(dua_id)


def build_todays_habits(ledger: HabitLedger, content: ContentProvider) -> List[UserHabit]:
    """
    Journey habits for every active journey, then custom habits for duas no
    journey already covers. A dua appears once; duas missing from the
    catalog are skipped.
    """
    state = ledger.load_state()
    today = ledger.today_str()
    completed = {c.habit_id for c in state.habit_completions if c.date == today}

    habits: List[UserHabit] = []
    seen_duas = set()

    for journey_id in sorted(set(state.active_journey_ids)):
        for jd in content.get_journey_duas(journey_id):
            dua = content.get_dua(jd.dua_id)
            if dua is None or dua.id in seen_duas:
                continue
            seen_duas.add(dua.id)
            habit_id = journey_habit_id(journey_id, dua.id)
            habits.append(UserHabit(
                id=habit_id,
                dua_id=dua.id,
                journey_id=journey_id,
                time_slot=jd.time_slot,
                sort_order=jd.sort_order,
                title=dua.title,
                xp_value=dua.xp_value,
                is_custom=False,
                is_completed_today=habit_id in completed,
            ))

    for order, custom in enumerate(state.custom_habits):
        if custom.dua_id in seen_duas:
            continue
        dua = content.get_dua(custom.dua_id)
        if dua is None:
            logger.debug("Custom habit %s refers to unknown dua %s", custom.id, custom.dua_id)
            continue
        seen_duas.add(dua.id)
        habits.append(UserHabit(
            id=custom.id,
            dua_id=dua.id,
            time_slot=custom.time_slot,
            sort_order=order,
            title=dua.title,
            xp_value=dua.xp_value,
            is_custom=True,
            is_completed_today=custom.id in completed,
        ))

    return habits


def group_by_time_slot(habits: Iterable[UserHabit]) -> Dict[str, List[UserHabit]]:
    grouped: Dict[str, List[UserHabit]] = {slot: [] for slot in TIME_SLOTS}
    for habit in habits:
        grouped[habit.time_slot].append(habit)
    for slot_habits in grouped.values():
        slot_habits.sort(key=lambda h: h.sort_order)
    return grouped


def time_slot_progress(habits: Iterable[UserHabit]) -> List[TimeSlotProgress]:
    return [
        TimeSlotProgress(
            slot=slot,
            completed=sum(1 for h in slot_habits if h.is_completed_today),
            total=len(slot_habits),
        )
        for slot, slot_habits in group_by_time_slot(habits).items()
    ]


def next_uncompleted_habit(habits: Iterable[UserHabit]) -> Optional[UserHabit]:
    pending = [h for h in habits if not h.is_completed_today]
    if not pending:
        return None
    return min(pending, key=lambda h: (SLOT_PRIORITY[h.time_slot], h.sort_order))


class HabitPractice:
    """
    Ledger plus catalog, as used by a screen that lists today's habits.

    Listeners get each new completion after it is saved locally (e.g. to push
    XP to a profile service). They are fire-and-forget: a failing listener is
    logged and the local completion stands.
    """

    def __init__(
        self,
        ledger: HabitLedger,
        content: ContentProvider,
        listeners: Iterable[CompletionListener] = (),
    ):
        self.ledger = ledger
        self.content = content
        self.listeners = list(listeners)

    def todays_habits(self) -> List[UserHabit]:
        return build_todays_habits(self.ledger, self.content)

    def progress(self) -> TodayProgress:
        return self.ledger.get_today_progress(len(self.todays_habits()))

    def streak(self) -> int:
        return self.ledger.calculate_streak()

    def complete(self, habit: UserHabit) -> HabitCompletion:
        completion, created = self.ledger.record_completion(habit.id, habit.xp_value)
        if created:
            self._notify(completion)
        return completion

    def uncomplete(self, habit: UserHabit) -> None:
        self.ledger.uncomplete_habit(habit.id)

    def _notify(self, completion: HabitCompletion) -> None:
        for listener in self.listeners:
            try:
                listener(completion)
            except Exception:
                logger.exception("Completion listener failed for %s", completion.habit_id)
