from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .errors import StorageError

BOOKMARKS_KEY = "saved_links"
TRASH_KEY = "saved_links_trash"
CUSTOM_FOLDERS_KEY = "custom_folders"
FOLDER_ICONS_KEY = "folder_icons"
SYNC_STATUS_KEY = "sync_status"
DAILY_ATTEMPT_KEY = "sync_daily_attempt"
SETTINGS_KEY = "app_settings"


class BlobStore:
    """Named text blobs. Every write replaces the whole value."""

    def get(self, name: str) -> Optional[str]:
        raise NotImplementedError

    def put(self, name: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, name: str) -> None:
        raise NotImplementedError

    def names(self) -> List[str]:
        raise NotImplementedError


class MemoryBlobStore(BlobStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, name: str) -> Optional[str]:
        return self._data.get(name)

    def put(self, name: str, value: str) -> None:
        self._data[name] = value

    def delete(self, name: str) -> None:
        self._data.pop(name, None)

    def names(self) -> List[str]:
        return sorted(self._data)


class SqliteBlobStore(BlobStore):
    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS blobs (
                        name TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"cannot open blob store {self.db_path}: {e}") from e

    def get(self, name: str) -> Optional[str]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute("SELECT value FROM blobs WHERE name = ?", (name,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"read of {name!r} failed: {e}") from e
        return row[0] if row else None

    def put(self, name: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO blobs (name, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    (name, value, now),
                )
        except sqlite3.Error as e:
            raise StorageError(f"write of {name!r} failed: {e}") from e

    def delete(self, name: str) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("DELETE FROM blobs WHERE name = ?", (name,))
        except sqlite3.Error as e:
            raise StorageError(f"delete of {name!r} failed: {e}") from e

    def names(self) -> List[str]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                return [r[0] for r in conn.execute("SELECT name FROM blobs ORDER BY name")]
        except sqlite3.Error as e:
            raise StorageError(f"listing blobs failed: {e}") from e
