"""
Persistence for the habit ledger

A store keeps one opaque JSON blob per ledger. Stores only move bytes; the
ledger owns encoding and decoding. Any I/O failure surfaces as StorageError.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_PATH = Path.home() / ".local" / "share" / "rizq" / "habits.json"
LEDGER_COLLECTION = "habitledger"


class StorageError(Exception):
    """Reading or writing the persisted ledger failed."""


def _connect():
    url = os.getenv("DATABASE_URL")
    name = os.getenv("DATABASE_NAME")
    if not url or not name:
        return None
    # MongoClient connects lazily; nothing is contacted until first use.
    return MongoClient(url)[name]


db = _connect()


class MemoryStore:
    def __init__(self, blob: Optional[str] = None):
        self.blob = blob

    def load(self) -> Optional[str]:
        return self.blob

    def save(self, blob: str) -> None:
        self.blob = blob

    def clear(self) -> None:
        self.blob = None


class JsonFileStore:
    """Ledger blob in a file on the local disk. Writes go through a temp file."""

    def __init__(self, path=DEFAULT_LEDGER_PATH):
        self.path = Path(path)

    def load(self) -> Optional[bytes]:
        # Raw bytes: undecodable UTF-8 is a corrupt ledger, not an I/O error.
        if not self.path.exists():
            return None
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e

    def save(self, blob: str) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(blob, encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Could not write {self.path}: {e}") from e

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Could not remove {self.path}: {e}") from e


class MongoStore:
    """
    Ledger blob in a MongoDB collection, one document per ledger key:
    {"_id": key, "state": <json>, "created_at": ..., "updated_at": ...}
    """

    def __init__(self, collection, key: str = "default"):
        self.collection = collection
        self.key = key

    def load(self) -> Optional[str]:
        try:
            doc = self.collection.find_one({"_id": self.key})
        except PyMongoError as e:
            raise StorageError(f"Could not read ledger {self.key!r}: {e}") from e
        if not doc:
            return None
        return doc.get("state")

    def save(self, blob: str) -> None:
        now = datetime.now(timezone.utc)
        try:
            self.collection.update_one(
                {"_id": self.key},
                {"$set": {"state": blob, "updated_at": now}, "$setOnInsert": {"created_at": now}},
                upsert=True,
            )
        except PyMongoError as e:
            raise StorageError(f"Could not write ledger {self.key!r}: {e}") from e

    def clear(self) -> None:
        try:
            self.collection.delete_one({"_id": self.key})
        except PyMongoError as e:
            raise StorageError(f"Could not remove ledger {self.key!r}: {e}") from e


def get_store():
    """Build the store selected by LEDGER_STORE (file, mongo or memory)."""
    kind = os.getenv("LEDGER_STORE", "file").lower()
    logger.debug("Ledger store: %s", kind)
    if kind == "memory":
        return MemoryStore()
    if kind == "mongo":
        if db is None:
            raise StorageError("LEDGER_STORE=mongo requires DATABASE_URL and DATABASE_NAME")
        return MongoStore(db[LEDGER_COLLECTION], key=os.getenv("LEDGER_KEY", "default"))
    if kind == "file":
        return JsonFileStore(os.getenv("LEDGER_PATH") or DEFAULT_LEDGER_PATH)
    raise ValueError(f"Unknown LEDGER_STORE: {kind!r}")
