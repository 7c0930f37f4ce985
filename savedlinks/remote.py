from __future__ import annotations

import asyncio
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from .errors import RemoteStoreError
from .log import get_logger

log = get_logger(__name__)

BOOKMARKS_TABLE = "cloud_bookmarks"
TRASH_TABLE = "cloud_trash"

_COLUMNS = {
    BOOKMARKS_TABLE: ("url", "title", "description", "folder", "created_at"),
    TRASH_TABLE: (
        "url",
        "title",
        "description",
        "folder",
        "deleted_at",
        "retention_days",
        "original_created_at",
    ),
}

Row = Dict[str, Any]


class RemoteStore:
    """Per-user tables unique on (user_id, url).

    Implementations raise on transport or server errors; the sync engine
    decides what a failure means.
    """

    async def upsert(self, table: str, rows: List[Row]) -> int:
        raise NotImplementedError

    async def fetch(self, table: str, user_id: str) -> List[Row]:
        raise NotImplementedError

    async def delete_all(self, table: str, user_id: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def _check_table(table: str) -> None:
    if table not in _COLUMNS:
        raise RemoteStoreError(f"unknown remote table: {table}")


class SupabaseRemoteStore(RemoteStore):
    """PostgREST client for a Supabase project."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        access_token: str = "",
        timeout_s: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, connect=timeout_s))
        self._headers = headers

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    async def upsert(self, table: str, rows: List[Row]) -> int:
        _check_table(table)
        if not rows:
            return 0
        r = await self._client.post(
            self._url(table),
            params={"on_conflict": "user_id,url"},
            headers={**self._headers, "Prefer": "resolution=merge-duplicates,return=minimal"},
            json=rows,
        )
        r.raise_for_status()
        log.debug("Upserted %d rows into %s.", len(rows), table)
        return len(rows)

    async def fetch(self, table: str, user_id: str) -> List[Row]:
        _check_table(table)
        r = await self._client.get(
            self._url(table),
            params={"select": "*", "user_id": f"eq.{user_id}"},
            headers=self._headers,
        )
        r.raise_for_status()
        data = r.json()
        if not isinstance(data, list):
            raise RemoteStoreError(f"unexpected response from {table}: {type(data).__name__}")
        return [x for x in data if isinstance(x, dict)]

    async def delete_all(self, table: str, user_id: str) -> None:
        _check_table(table)
        r = await self._client.delete(
            self._url(table),
            params={"user_id": f"eq.{user_id}"},
            headers=self._headers,
        )
        r.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()


class SqliteRemoteStore(RemoteStore):
    """Self-hosted remote: same schema and upsert semantics in a sqlite file."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS {BOOKMARKS_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    url TEXT NOT NULL,
                    title TEXT,
                    description TEXT,
                    folder TEXT NOT NULL DEFAULT 'Uncategorized',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(user_id, url)
                );
                CREATE TABLE IF NOT EXISTS {TRASH_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    url TEXT NOT NULL,
                    title TEXT,
                    description TEXT,
                    folder TEXT NOT NULL DEFAULT 'Uncategorized',
                    deleted_at TEXT NOT NULL,
                    retention_days INTEGER NOT NULL DEFAULT 30,
                    original_created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(user_id, url)
                );
                """
            )

    # sqlite3 blocks, so every query runs on a worker thread.
    async def upsert(self, table: str, rows: List[Row]) -> int:
        _check_table(table)
        if not rows:
            return 0
        return await asyncio.to_thread(self._upsert, table, rows)

    async def fetch(self, table: str, user_id: str) -> List[Row]:
        _check_table(table)
        return await asyncio.to_thread(self._fetch, table, user_id)

    async def delete_all(self, table: str, user_id: str) -> None:
        _check_table(table)
        await asyncio.to_thread(self._delete_all, table, user_id)

    def _upsert(self, table: str, rows: List[Row]) -> int:
        cols = _COLUMNS[table]
        now = datetime.now(timezone.utc).isoformat()
        insert_cols = ("id", "user_id") + cols + ("updated_at",)
        placeholders = ", ".join(["?"] * len(insert_cols))
        updates = ",\n".join(f"{c}=excluded.{c}" for c in cols + ("updated_at",))
        sql = (
            f"INSERT INTO {table} ({', '.join(insert_cols)}) VALUES ({placeholders})\n"
            f"ON CONFLICT(user_id, url) DO UPDATE SET\n{updates}"
        )
        params = [
            (str(uuid.uuid4()), row["user_id"]) + tuple(row.get(c) for c in cols) + (now,)
            for row in rows
        ]
        with sqlite3.connect(self.db_path) as conn:
            conn.executemany(sql, params)
        log.debug("Upserted %d rows into %s (%s).", len(rows), table, self.db_path)
        return len(rows)

    def _fetch(self, table: str, user_id: str) -> List[Row]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(f"SELECT * FROM {table} WHERE user_id = ? ORDER BY rowid", (user_id,)).fetchall()
        return [dict(r) for r in rows]

    def _delete_all(self, table: str, user_id: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))
