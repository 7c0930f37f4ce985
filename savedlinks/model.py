from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

DAY_MS = 24 * 60 * 60 * 1000
TRASH_RETENTION_CHOICES = (7, 14, 30, 60)
DEFAULT_TRASH_RETENTION_DAYS = 30


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default


@dataclass
class BookmarkRecord:
    id: str
    url: str
    title: str
    description: str = ""
    tag: Optional[str] = None
    created_at: int = field(default_factory=now_ms)
    is_shortlisted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "tag": self.tag,
            "createdAt": self.created_at,
            "isShortlisted": self.is_shortlisted,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "BookmarkRecord":
        if "tag" in data:
            tag = data.get("tag")
        else:
            # Older blobs stored a list of tags; the first one became the folder.
            tags = data.get("tags") or []
            tag = tags[0] if isinstance(tags, list) and tags else None
        return BookmarkRecord(
            id=str(data.get("id") or new_id()),
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            tag=str(tag) if tag else None,
            created_at=_as_int(data.get("createdAt"), 0),
            is_shortlisted=bool(data.get("isShortlisted", False)),
        )


@dataclass
class TrashedRecord:
    record: BookmarkRecord
    deleted_at: int
    retention_days: int = DEFAULT_TRASH_RETENTION_DAYS

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def url(self) -> str:
        return self.record.url

    def expires_at(self) -> int:
        return self.deleted_at + self.retention_days * DAY_MS

    def to_dict(self) -> Dict[str, Any]:
        out = self.record.to_dict()
        out["deletedAt"] = self.deleted_at
        out["retentionDays"] = self.retention_days
        return out

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TrashedRecord":
        return TrashedRecord(
            record=BookmarkRecord.from_dict(data),
            deleted_at=_as_int(data.get("deletedAt"), 0),
            retention_days=_as_int(data.get("retentionDays"), DEFAULT_TRASH_RETENTION_DAYS),
        )


@dataclass
class AppSettings:
    clipboard_detection_enabled: bool = True
    trash_retention_days: int = DEFAULT_TRASH_RETENTION_DAYS
    auto_sync_enabled: bool = True
    scheduled_reminders_enabled: bool = True
    reminder_sound_enabled: bool = True
    pip_mode_enabled: bool = True

    WIRE_KEYS = {
        "clipboard_detection_enabled": "clipboardDetectionEnabled",
        "trash_retention_days": "trashRetentionDays",
        "auto_sync_enabled": "autoSyncEnabled",
        "scheduled_reminders_enabled": "scheduledRemindersEnabled",
        "reminder_sound_enabled": "reminderSoundEnabled",
        "pip_mode_enabled": "pipModeEnabled",
    }

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        return {wire: values[attr] for attr, wire in self.WIRE_KEYS.items()}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "AppSettings":
        s = AppSettings()
        for attr, wire in AppSettings.WIRE_KEYS.items():
            if wire not in data:
                continue
            default = getattr(s, attr)
            value = data[wire]
            if isinstance(default, bool):
                if isinstance(value, bool):
                    setattr(s, attr, value)
            else:
                setattr(s, attr, _as_int(value, default))
        if s.trash_retention_days not in TRASH_RETENTION_CHOICES:
            s.trash_retention_days = DEFAULT_TRASH_RETENTION_DAYS
        return s


@dataclass
class SyncStatus:
    last_sync_at: Optional[int] = None
    last_upload_count: int = 0
    last_download_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastSyncAt": self.last_sync_at,
            "lastUploadCount": self.last_upload_count,
            "lastDownloadCount": self.last_download_count,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SyncStatus":
        last = data.get("lastSyncAt")
        return SyncStatus(
            last_sync_at=_as_int(last, 0) or None,
            last_upload_count=_as_int(data.get("lastUploadCount"), 0),
            last_download_count=_as_int(data.get("lastDownloadCount"), 0),
        )
