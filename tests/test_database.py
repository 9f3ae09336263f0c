"""
Tests for the ledger stores and the persisted document shape.
"""

import json
from unittest.mock import MagicMock

import pytest
from pymongo.errors import PyMongoError

import database
from conftest import seed_completions
from database import JsonFileStore, MemoryStore, MongoStore, StorageError, get_store
from ledger import HabitLedger


class FakeCollection:
    """The slice of a pymongo collection the store uses."""

    def __init__(self):
        self.docs = {}

    def find_one(self, query):
        return self.docs.get(query["_id"])

    def update_one(self, query, update, upsert=False):
        key = query["_id"]
        doc = self.docs.get(key)
        if doc is None:
            if not upsert:
                return
            doc = {"_id": key, **update.get("$setOnInsert", {})}
            self.docs[key] = doc
        doc.update(update.get("$set", {}))

    def delete_one(self, query):
        self.docs.pop(query["_id"], None)


def populate(ledger, clock):
    ledger.add_journey(2)
    ledger.add_journey(1)
    ledger.add_custom_habit(7, "anytime")
    ledger.add_custom_habit(9, "evening")
    ledger.complete_habit("custom-7", 15)
    seed_completions(ledger, clock, [1, 2], habit_id="journey-1-dua-3", xp=20)


class TestDocumentShape:

    def test_stored_json_uses_camel_case_keys(self, ledger, store, clock):
        populate(ledger, clock)
        doc = json.loads(store.blob)
        assert doc["activeJourneyIds"] == [2, 1]
        assert doc["customHabits"][0] == {
            "id": "custom-7",
            "duaId": 7,
            "timeSlot": "anytime",
            "addedAt": "2024-03-15T10:00:00+03:00",
        }
        assert doc["habitCompletions"][0] == {
            "habitId": "custom-7",
            "date": "2024-03-15",
            "completedAt": "2024-03-15T10:00:00+03:00",
            "xpEarned": 15,
        }

    def test_round_trip(self, ledger, store, clock):
        populate(ledger, clock)
        original = ledger.load_state()
        reloaded = HabitLedger(MemoryStore(store.blob), clock=clock).load_state()
        assert reloaded == original
        assert len(reloaded.habit_completions) == 3


class TestJsonFileStore:

    def test_missing_file_loads_none(self, tmp_path):
        assert JsonFileStore(tmp_path / "habits.json").load() is None

    def test_round_trip_through_disk(self, tmp_path, clock):
        path = tmp_path / "nested" / "habits.json"
        ledger = HabitLedger(JsonFileStore(path), clock=clock)
        populate(ledger, clock)

        reopened = HabitLedger(JsonFileStore(path), clock=clock)
        assert reopened.load_state() == ledger.load_state()
        assert reopened.calculate_streak() == 3
        assert not (tmp_path / "nested" / "habits.json.tmp").exists()

    def test_corrupt_file_loads_empty(self, tmp_path, clock):
        path = tmp_path / "habits.json"
        path.write_text("\x00garbage", encoding="utf-8")
        ledger = HabitLedger(JsonFileStore(path), clock=clock)
        assert ledger.get_custom_habits() == []

    def test_invalid_utf8_file_loads_empty(self, tmp_path, clock, caplog):
        path = tmp_path / "habits.json"
        path.write_bytes(b'{"activeJourneyIds": [1]\xff\xfe}')
        ledger = HabitLedger(JsonFileStore(path), clock=clock)
        with caplog.at_level("WARNING", logger="ledger"):
            assert ledger.get_active_journey_ids() == set()
        assert "could not be decoded" in caplog.text

        ledger.add_journey(4)
        assert ledger.get_active_journey_ids() == {4}

    def test_unreadable_file_raises(self, tmp_path):
        path = tmp_path / "habits.json"
        path.mkdir()
        with pytest.raises(StorageError):
            JsonFileStore(path).load()

    def test_unwritable_location_raises(self, tmp_path, clock):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        ledger = HabitLedger(JsonFileStore(blocker / "habits.json"), clock=clock)
        with pytest.raises(StorageError):
            ledger.add_journey(1)

    def test_clear(self, tmp_path):
        store = JsonFileStore(tmp_path / "habits.json")
        store.save("{}")
        store.clear()
        store.clear()
        assert store.load() is None


class TestMongoStore:

    def test_upserts_one_document_per_key(self, clock):
        collection = FakeCollection()
        ledger = HabitLedger(MongoStore(collection, key="user-1"), clock=clock)
        ledger.add_journey(1)
        clock.advance(minutes=5)
        ledger.complete_habit("custom-7", 15)

        doc = collection.docs["user-1"]
        assert list(collection.docs) == ["user-1"]
        assert "created_at" in doc
        assert doc["updated_at"] >= doc["created_at"]
        assert json.loads(doc["state"])["activeJourneyIds"] == [1]

    def test_keys_are_isolated(self, clock):
        collection = FakeCollection()
        HabitLedger(MongoStore(collection, key="a"), clock=clock).add_journey(1)
        other = HabitLedger(MongoStore(collection, key="b"), clock=clock)
        assert other.get_active_journey_ids() == set()

    def test_clear_removes_document(self):
        collection = FakeCollection()
        store = MongoStore(collection)
        store.save("{}")
        store.clear()
        assert store.load() is None

    def test_driver_errors_become_storage_errors(self, clock):
        collection = MagicMock()
        collection.find_one.side_effect = PyMongoError("connection refused")
        ledger = HabitLedger(MongoStore(collection), clock=clock)
        with pytest.raises(StorageError):
            ledger.calculate_streak()

        collection.find_one.side_effect = None
        collection.find_one.return_value = None
        collection.update_one.side_effect = PyMongoError("not primary")
        with pytest.raises(StorageError):
            ledger.add_journey(1)


class TestGetStore:

    def test_defaults_to_file_store(self, monkeypatch, tmp_path):
        monkeypatch.delenv("LEDGER_STORE", raising=False)
        monkeypatch.setenv("LEDGER_PATH", str(tmp_path / "h.json"))
        store = get_store()
        assert isinstance(store, JsonFileStore)
        assert store.path == tmp_path / "h.json"

    def test_memory_store(self, monkeypatch):
        monkeypatch.setenv("LEDGER_STORE", "memory")
        assert isinstance(get_store(), MemoryStore)

    def test_mongo_requires_database(self, monkeypatch):
        monkeypatch.setenv("LEDGER_STORE", "mongo")
        monkeypatch.setattr(database, "db", None)
        with pytest.raises(StorageError):
            get_store()

    def test_mongo_store_uses_ledger_collection(self, monkeypatch):
        fake_db = MagicMock()
        monkeypatch.setenv("LEDGER_STORE", "mongo")
        monkeypatch.setenv("LEDGER_KEY", "device-9")
        monkeypatch.setattr(database, "db", fake_db)
        store = get_store()
        fake_db.__getitem__.assert_called_once_with("habitledger")
        assert store.key == "device-9"

    def test_unknown_store(self, monkeypatch):
        monkeypatch.setenv("LEDGER_STORE", "floppy")
        with pytest.raises(ValueError):
            get_store()


def test_seeded_dates_are_local_days(ledger, clock):
    seed_completions(ledger, clock, [0])
    clock.advance(hours=13, minutes=59)
    assert ledger.today_str() == "2024-03-15"
    clock.advance(minutes=1)
    assert ledger.today_str() == "2024-03-16"
    assert ledger.calculate_streak() == 1
