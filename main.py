import json
import logging
import os
from typing import Optional

from database import get_store
from ledger import DEFAULT_KEEP_DAYS, HabitLedger, KEEP_FIRST_SLOT


logger = logging.getLogger(__name__)


# -----------------------------
# Wiring
# -----------------------------

def create_ledger(store=None) -> HabitLedger:
    """Ledger over the store chosen by the environment (see database.get_store)."""
    return HabitLedger(
        store if store is not None else get_store(),
        readd_policy=os.getenv("LEDGER_READD_POLICY", KEEP_FIRST_SLOT),
    )


def retention_days() -> int:
    return int(os.getenv("LEDGER_RETENTION_DAYS", DEFAULT_KEEP_DAYS))


# -----------------------------
# Maintenance & export
# -----------------------------

def run_maintenance(ledger: HabitLedger, keep_days: Optional[int] = None) -> int:
    keep_days = retention_days() if keep_days is None else keep_days
    removed = ledger.clear_old_completions(keep_days)
    logger.info("Maintenance kept %d days of completions, removed %d", keep_days, removed)
    return removed


def export_state(ledger: HabitLedger) -> dict:
    """The full persisted document, in its stored JSON shape."""
    return ledger.load_state().model_dump(mode="json", by_alias=True)


def ledger_summary(ledger: HabitLedger, total_habits: int = 0) -> dict:
    progress = ledger.get_today_progress(total_habits)
    return {
        "today": ledger.today_str(),
        "activeJourneyIds": sorted(ledger.get_active_journey_ids()),
        "customHabits": len(ledger.get_custom_habits()),
        "progress": progress.model_dump(mode="json", by_alias=True),
        "streak": ledger.calculate_streak(),
    }


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    ledger = create_ledger()
    run_maintenance(ledger)
    print(json.dumps(ledger_summary(ledger), indent=2))
