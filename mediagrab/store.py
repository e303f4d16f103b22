"""Process-wide embedded store for resolved entities.

The store handle is created lazily by `init_store` and shared by every caller of
`get_store`. It backs the history of resolved links; the schema is a single
key/JSON table keyed by entity kind and entity key.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from mediagrab.configs import settings
from mediagrab.exceptions import PersistenceError, StoreNotInitializedError
from mediagrab.resolver.protocol import StoredEntity

logger = logging.getLogger(__name__)

MEMORY_PATH: str = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS entities (
    kind TEXT NOT NULL,
    key TEXT NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (kind, key)
);
"""

store: "SqliteEntityStore | None" = None
_store_lock = threading.Lock()


class SqliteEntityStore:
    """SQLite backed entity store.

    The connection is shared between threads (sessions persist from the default
    worker pool) and every statement runs under a lock.
    """

    path: str

    def __init__(self, path: str | Path = settings.database.path) -> None:
        self.path = str(path)
        if self.path != MEMORY_PATH:
            db_path = Path(self.path).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self.path = str(db_path)

        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            if self.path != MEMORY_PATH:
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as ex:
            raise PersistenceError(f"Unable to open store at {self.path}: {ex}") from ex

    def persist(self, entity: StoredEntity) -> None:
        """Store an entity (upsert).

        Raises:
            PersistenceError: If the entity could not be written.
        """
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT OR REPLACE INTO entities (kind, key, data) VALUES (?, ?, ?)",
                    (entity.kind, entity.key, entity.model_dump_json()),
                )
                self._conn.commit()
        except sqlite3.Error as ex:
            raise PersistenceError(f"Failed to persist {entity.kind} {entity.key}: {ex}") from ex
        logger.debug(f"Persisted {entity.kind} {entity.key}")

    def load(self, kind: str, key: str) -> dict[str, Any] | None:
        """Return the stored data of an entity, or None if it is unknown."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT data FROM entities WHERE kind = ? AND key = ?", (kind, key)
                ).fetchone()
        except sqlite3.Error as ex:
            raise PersistenceError(f"Failed to load {kind} {key}: {ex}") from ex
        if row is None:
            return None
        return json.loads(row[0])

    def count(self, kind: str) -> int:
        """Return the number of stored entities of a kind."""
        with self._lock:
            (total,) = self._conn.execute(
                "SELECT COUNT(*) FROM entities WHERE kind = ?", (kind,)
            ).fetchone()
        return total

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()


def init_store(path: str | Path | None = None) -> SqliteEntityStore:
    """Initialize the process-wide store and return it.

    Only the first call creates the store, later calls return the existing handle
    whatever `path` they pass.
    """
    global store

    with _store_lock:
        if store is None:
            store = SqliteEntityStore(path if path is not None else settings.database.path)
            logger.info("Store initialized", extra={"path": store.path})
        return store


def get_store() -> SqliteEntityStore:
    """Return the process-wide store."""
    if store is None:
        raise StoreNotInitializedError("The store has not been initialized.")
    return store


def close_store() -> None:
    """Close the process-wide store. Calling it when no store is open is a no-op."""
    global store

    with _store_lock:
        if store is not None:
            store.close()
            store = None
