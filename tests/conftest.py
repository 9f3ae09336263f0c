from datetime import datetime, timedelta, timezone

import pytest

from database import MemoryStore
from ledger import HabitLedger
from schemas import HabitCompletion

LOCAL_TZ = timezone(timedelta(hours=3))


class FixedClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 15, 10, 0, tzinfo=LOCAL_TZ))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(store, clock):
    return HabitLedger(store, clock=clock)


def days_ago(clock, n):
    return (clock().date() - timedelta(days=n)).isoformat()


def seed_completions(ledger, clock, offsets, habit_id="custom-1", xp=10):
    """Write one completion per day offset (0 = today) straight into the store."""
    state = ledger.load_state()
    for n in offsets:
        state.habit_completions.append(HabitCompletion(
            habit_id=habit_id,
            date=days_ago(clock, n),
            completed_at=clock() - timedelta(days=n),
            xp_earned=xp,
        ))
    ledger.save_state(state)
    return state
