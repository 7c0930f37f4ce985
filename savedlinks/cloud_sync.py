from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .log import get_logger
from .model import DEFAULT_TRASH_RETENTION_DAYS, BookmarkRecord, TrashedRecord, new_id, now_ms
from .records import RecordStore
from .remote import BOOKMARKS_TABLE, TRASH_TABLE, RemoteStore, Row
from .url_norm import normalize_url, url_key

log = get_logger(__name__)

UNCATEGORIZED = "Uncategorized"
NOT_AUTHENTICATED = "not authenticated"


@dataclass
class UploadResult:
    success: bool
    uploaded: int = 0
    error: Optional[str] = None


@dataclass
class DownloadResult:
    success: bool
    downloaded: int = 0
    error: Optional[str] = None


@dataclass
class SyncResult:
    success: bool
    uploaded: int = 0
    downloaded: int = 0
    trash_uploaded: int = 0
    trash_downloaded: int = 0
    error: Optional[str] = None
    completed_at: Optional[int] = None


def ms_to_iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def iso_to_ms(value: Any, default: int = 0) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if not isinstance(value, str) or not value:
        return default
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return default
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def record_to_row(user_id: str, r: BookmarkRecord) -> Row:
    return {
        "user_id": user_id,
        "url": normalize_url(r.url),
        "title": r.title or None,
        "description": r.description or None,
        "folder": r.tag or UNCATEGORIZED,
        "created_at": ms_to_iso(r.created_at),
    }


def trashed_to_row(user_id: str, t: TrashedRecord) -> Row:
    r = t.record
    return {
        "user_id": user_id,
        "url": normalize_url(r.url),
        "title": r.title or None,
        "description": r.description or None,
        "folder": r.tag or UNCATEGORIZED,
        "deleted_at": ms_to_iso(t.deleted_at),
        "retention_days": t.retention_days,
        "original_created_at": ms_to_iso(r.created_at),
    }


def row_to_record(row: Row, *, created_field: str = "created_at") -> BookmarkRecord:
    folder = row.get("folder")
    return BookmarkRecord(
        id=str(row.get("id") or new_id()),
        url=str(row.get("url") or ""),
        title=row.get("title") or "",
        description=row.get("description") or "",
        tag=None if not folder or folder == UNCATEGORIZED else str(folder),
        created_at=iso_to_ms(row.get(created_field)),
        is_shortlisted=False,
    )


def row_to_trashed(row: Row) -> TrashedRecord:
    retention = row.get("retention_days")
    return TrashedRecord(
        record=row_to_record(row, created_field="original_created_at"),
        deleted_at=iso_to_ms(row.get("deleted_at")),
        retention_days=int(retention) if isinstance(retention, int) else DEFAULT_TRASH_RETENTION_DAYS,
    )


def _chunks(rows: List[Row], size: int) -> List[List[Row]]:
    size = max(1, size)
    return [rows[i : i + size] for i in range(0, len(rows), size)]


def _describe(e: Exception) -> str:
    return str(e) or type(e).__name__


class CloudSyncEngine:
    """Upload/download exchange with the remote store.

    Local state is authoritative: uploads overwrite remote rows, downloads
    only ever append rows whose URL is unknown locally. Never call this
    directly from UI code; go through ``SyncGuard.run``.
    """

    def __init__(
        self,
        records: RecordStore,
        remote: RemoteStore,
        *,
        user_id_provider: Callable[[], Optional[str]],
        batch_size: int = 200,
        clock: Callable[[], int] = now_ms,
    ):
        self.records = records
        self.remote = remote
        self.user_id_provider = user_id_provider
        self.batch_size = batch_size
        self.clock = clock

    def _user_id(self) -> Optional[str]:
        return self.user_id_provider() or None

    async def _upload(self, table: str, rows: List[Row]) -> int:
        uploaded = 0
        for chunk in _chunks(rows, self.batch_size):
            uploaded += await self.remote.upsert(table, chunk)
        return uploaded

    async def upload_all(self) -> UploadResult:
        user_id = self._user_id()
        if not user_id:
            return UploadResult(success=False, error=NOT_AUTHENTICATED)
        rows = _dedupe_rows(record_to_row(user_id, r) for r in self.records.list_links())
        try:
            uploaded = await self._upload(BOOKMARKS_TABLE, rows)
        except Exception as e:
            log.warning("Bookmark upload failed: %s", e)
            return UploadResult(success=False, error=_describe(e))
        log.info("Uploaded %d bookmarks.", uploaded)
        return UploadResult(success=True, uploaded=uploaded)

    async def upload_trash(self) -> UploadResult:
        user_id = self._user_id()
        if not user_id:
            return UploadResult(success=False, error=NOT_AUTHENTICATED)
        rows = _dedupe_rows(trashed_to_row(user_id, t) for t in self.records.trash_entries())
        try:
            uploaded = await self._upload(TRASH_TABLE, rows)
        except Exception as e:
            log.warning("Trash upload failed: %s", e)
            return UploadResult(success=False, error=_describe(e))
        log.info("Uploaded %d trash entries.", uploaded)
        return UploadResult(success=True, uploaded=uploaded)

    async def download_all(self) -> DownloadResult:
        user_id = self._user_id()
        if not user_id:
            return DownloadResult(success=False, error=NOT_AUTHENTICATED)
        try:
            rows = await self.remote.fetch(BOOKMARKS_TABLE, user_id)
            known = {url_key(r.url) for r in self.records.list_links()}
            fresh: List[BookmarkRecord] = []
            for row in rows:
                key = url_key(str(row.get("url") or ""))
                if not key or key in known:
                    continue
                known.add(key)
                fresh.append(row_to_record(row))
            downloaded = self.records.append_records(fresh) if fresh else 0
        except Exception as e:
            log.warning("Bookmark download failed: %s", e)
            return DownloadResult(success=False, error=_describe(e))
        log.info("Downloaded %d new bookmarks.", downloaded)
        return DownloadResult(success=True, downloaded=downloaded)

    async def download_trash(self) -> DownloadResult:
        user_id = self._user_id()
        if not user_id:
            return DownloadResult(success=False, error=NOT_AUTHENTICATED)
        try:
            rows = await self.remote.fetch(TRASH_TABLE, user_id)
            known = {url_key(t.url) for t in self.records.trash_entries()}
            known |= {url_key(r.url) for r in self.records.list_links()}
            fresh: List[TrashedRecord] = []
            for row in rows:
                key = url_key(str(row.get("url") or ""))
                if not key or key in known:
                    continue
                known.add(key)
                fresh.append(row_to_trashed(row))
            downloaded = self.records.append_trash(fresh) if fresh else 0
        except Exception as e:
            log.warning("Trash download failed: %s", e)
            return DownloadResult(success=False, error=_describe(e))
        log.info("Downloaded %d trash entries.", downloaded)
        return DownloadResult(success=True, downloaded=downloaded)

    async def sync_all(self) -> SyncResult:
        if not self._user_id():
            return SyncResult(success=False, error=NOT_AUTHENTICATED, completed_at=self.clock())

        up = await self.upload_all()
        if not up.success:
            return SyncResult(success=False, error=up.error, completed_at=self.clock())

        trash_up = await self.upload_trash()
        if not trash_up.success:
            log.warning("Continuing without trash upload: %s", trash_up.error)

        down = await self.download_all()
        trash_down = await self.download_trash()
        if not trash_down.success:
            log.warning("Continuing without trash download: %s", trash_down.error)

        return SyncResult(
            success=down.success,
            uploaded=up.uploaded,
            downloaded=down.downloaded,
            trash_uploaded=trash_up.uploaded,
            trash_downloaded=trash_down.downloaded,
            error=down.error,
            completed_at=self.clock(),
        )

    async def clear_remote(self) -> UploadResult:
        """Delete every remote row for the signed-in user."""
        user_id = self._user_id()
        if not user_id:
            return UploadResult(success=False, error=NOT_AUTHENTICATED)
        try:
            await self.remote.delete_all(BOOKMARKS_TABLE, user_id)
            await self.remote.delete_all(TRASH_TABLE, user_id)
        except Exception as e:
            log.warning("Clearing remote data failed: %s", e)
            return UploadResult(success=False, error=_describe(e))
        return UploadResult(success=True)


def _dedupe_rows(rows) -> List[Row]:
    # Two local records can normalize to the same URL after an edit; the
    # upsert conflict target would reject both in one batch.
    out: Dict[str, Row] = {}
    for row in rows:
        if row["url"]:
            out.setdefault(row["url"], row)
    return list(out.values())
