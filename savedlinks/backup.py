from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .folders import FolderRegistry
from .log import get_logger
from .model import (
    DEFAULT_TRASH_RETENTION_DAYS,
    AppSettings,
    BookmarkRecord,
    TrashedRecord,
    new_id,
    now_ms,
)
from .records import RecordStore
from .repository import SettingsRepository
from .url_norm import normalize_url

log = get_logger(__name__)

BACKUP_VERSION = 1
IMPORT_MERGE = "merge"
IMPORT_REPLACE = "replace"


class BookmarkPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    url: str
    title: Optional[str] = ""
    description: Optional[str] = ""
    tag: Optional[str] = None
    created_at: int = Field(0, alias="createdAt")
    is_shortlisted: bool = Field(False, alias="isShortlisted")

    @model_validator(mode="before")
    @classmethod
    def _legacy_tags(cls, data: Any) -> Any:
        if isinstance(data, dict) and "tag" not in data and isinstance(data.get("tags"), list):
            tags = data["tags"]
            data = {**data, "tag": tags[0] if tags else None}
        return data

    @classmethod
    def from_record(cls, r: BookmarkRecord) -> "BookmarkPayload":
        return cls(
            id=r.id,
            url=r.url,
            title=r.title,
            description=r.description,
            tag=r.tag,
            created_at=r.created_at,
            is_shortlisted=r.is_shortlisted,
        )

    def to_record(self) -> BookmarkRecord:
        return BookmarkRecord(
            id=self.id or new_id(),
            url=self.url,
            title=self.title or "",
            description=self.description or "",
            tag=self.tag or None,
            created_at=self.created_at,
            is_shortlisted=self.is_shortlisted,
        )


class TrashPayload(BookmarkPayload):
    deleted_at: int = Field(0, alias="deletedAt")
    retention_days: int = Field(DEFAULT_TRASH_RETENTION_DAYS, alias="retentionDays")

    @classmethod
    def from_trashed(cls, t: TrashedRecord) -> "TrashPayload":
        base = BookmarkPayload.from_record(t.record).model_dump()
        return cls(**base, deleted_at=t.deleted_at, retention_days=t.retention_days)

    def to_trashed(self) -> TrashedRecord:
        return TrashedRecord(record=self.to_record(), deleted_at=self.deleted_at, retention_days=self.retention_days)


class BackupData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    bookmarks: List[BookmarkPayload]
    trash: Optional[List[TrashPayload]] = None
    custom_folders: Optional[List[str]] = Field(None, alias="customFolders")
    folder_icons: Optional[Dict[str, str]] = Field(None, alias="folderIcons")
    settings: Optional[Dict[str, Any]] = None


class BackupDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: int
    exported_at: int = Field(0, alias="exportedAt")
    app_name: str = Field("", alias="appName")
    data: BackupData

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


@dataclass
class BackupStats:
    bookmark_count: int
    trash_count: int
    folder_count: int
    exported_at: int


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    stats: Optional[BackupStats] = None


@dataclass
class ImportResult:
    success: bool
    imported: int = 0
    skipped: int = 0
    error: Optional[str] = None


def backup_filename(now: Optional[datetime] = None) -> str:
    day = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"savedlinks-backup-{day}.json"


def _structural_error(raw: Any) -> Optional[str]:
    if not isinstance(raw, dict):
        return "Invalid file format"
    version = raw.get("version")
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        return "Missing or invalid version"
    if version > BACKUP_VERSION:
        return "Backup version is newer than app. Please update the app."
    data = raw.get("data")
    if not isinstance(data, dict):
        return "Missing backup data"
    if not isinstance(data.get("bookmarks"), list):
        return "Invalid bookmarks data"
    return None


def _list_len(value: Any) -> int:
    return len(value) if isinstance(value, list) else 0


def validate(raw: Any) -> ValidationResult:
    """Check a decoded backup without touching any state."""
    if isinstance(raw, BackupDocument):
        raw = raw.to_dict()
    error = _structural_error(raw)
    if error:
        return ValidationResult(valid=False, error=error)
    data = raw["data"]
    stats = BackupStats(
        bookmark_count=len(data["bookmarks"]),
        trash_count=_list_len(data.get("trash")),
        folder_count=_list_len(data.get("customFolders")),
        exported_at=raw.get("exportedAt") if isinstance(raw.get("exportedAt"), int) else 0,
    )
    return ValidationResult(valid=True, stats=stats)


def _load_document(raw: Any) -> Tuple[Optional[BackupDocument], Optional[str]]:
    if isinstance(raw, BackupDocument):
        raw = raw.to_dict()
    error = _structural_error(raw)
    if error:
        return None, error
    try:
        return BackupDocument.model_validate(raw), None
    except ValidationError as e:
        return None, f"Invalid backup data: {e.error_count()} problem(s), first: {e.errors()[0]['msg']}"


def parse_backup_text(text: str) -> Tuple[Optional[BackupDocument], Optional[str]]:
    try:
        raw = json.loads(text)
    except (TypeError, ValueError):
        return None, "Invalid JSON file"
    return _load_document(raw)


class BackupCodec:
    def __init__(
        self,
        records: RecordStore,
        folders: FolderRegistry,
        settings: SettingsRepository,
        *,
        app_name: str = "SavedLinks",
        clock: Callable[[], int] = now_ms,
    ):
        self.records = records
        self.folders = folders
        self.settings = settings
        self.app_name = app_name
        self.clock = clock

    def export_state(self) -> BackupDocument:
        return BackupDocument(
            version=BACKUP_VERSION,
            exported_at=self.clock(),
            app_name=self.app_name,
            data=BackupData(
                bookmarks=[BookmarkPayload.from_record(r) for r in self.records.list_links()],
                trash=[TrashPayload.from_trashed(t) for t in self.records.trash_entries()],
                custom_folders=self.folders.custom_folders(),
                folder_icons=self.folders.folder_icons(),
                settings=self.settings.load().to_dict(),
            ),
        )

    def validate(self, raw: Any) -> ValidationResult:
        return validate(raw)

    def import_backup(self, raw: Any, mode: str) -> ImportResult:
        if mode not in (IMPORT_MERGE, IMPORT_REPLACE):
            return ImportResult(success=False, error=f"Unknown import mode: {mode}")
        doc, error = _load_document(raw)
        if doc is None:
            log.warning("Backup rejected: %s", error)
            return ImportResult(success=False, error=error)

        snapshot = self.export_state()
        try:
            if mode == IMPORT_REPLACE:
                imported, skipped = self._apply_replace(doc), 0
            else:
                imported, skipped = self._apply_merge(doc)
        except Exception as e:
            log.error("Import failed, restoring previous state: %s", e)
            self._rollback(snapshot)
            return ImportResult(success=False, error=str(e) or "Import failed")

        log.info("Imported backup (%s): %d imported, %d skipped.", mode, imported, skipped)
        return ImportResult(success=True, imported=imported, skipped=skipped)

    def _apply_replace(self, doc: BackupDocument) -> int:
        data = doc.data
        links = [p.to_record() for p in data.bookmarks]
        trash = [p.to_trashed() for p in data.trash or []]
        self.records.replace_all(links, trash)
        self.folders.replace_all(list(data.custom_folders or []), dict(data.folder_icons or {}))
        if data.settings is not None:
            self.settings.save(AppSettings.from_dict(data.settings))
        return len(links)

    def _apply_merge(self, doc: BackupDocument) -> Tuple[int, int]:
        seen = {normalize_url(r.url) for r in self.records.list_links()}
        incoming: List[BookmarkRecord] = []
        skipped = 0
        for p in doc.data.bookmarks:
            record = p.to_record()
            key = normalize_url(record.url)
            if not key or key in seen:
                skipped += 1
                continue
            seen.add(key)
            incoming.append(replace(record, url=key, is_shortlisted=False))

        imported = self.records.append_records(incoming) if incoming else 0
        self.folders.merge(doc.data.custom_folders or [], doc.data.folder_icons or {})
        return imported, skipped

    def _rollback(self, snapshot: BackupDocument) -> None:
        try:
            self._apply_replace(snapshot)
        except Exception as e:
            log.error("Rollback after failed import also failed: %s", e)

    def write_backup(self, path: Path) -> Path:
        if path.is_dir():
            path = path / backup_filename()
        path.write_text(self.export_state().to_json(), encoding="utf-8")
        log.info("Wrote backup: %s", path)
        return path

    def read_backup(self, path: Path) -> Tuple[Optional[BackupDocument], Optional[str]]:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            return None, f"Cannot read {path}: {e}"
        return parse_backup_text(text)
