from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

from .errors import StorageError
from .log import get_logger
from .model import AppSettings, BookmarkRecord, SyncStatus, TrashedRecord
from .storage import (
    BOOKMARKS_KEY,
    CUSTOM_FOLDERS_KEY,
    DAILY_ATTEMPT_KEY,
    FOLDER_ICONS_KEY,
    SETTINGS_KEY,
    SYNC_STATUS_KEY,
    TRASH_KEY,
    BlobStore,
)

log = get_logger(__name__)

ChangeListener = Callable[[str], None]


class _JsonRepository:
    """Shared plumbing: JSON blobs on a BlobStore plus change listeners.

    Reads never raise. A missing, unreadable or malformed blob is reported
    as ``None`` and the caller substitutes its empty value. Writes raise
    whatever the store raises; owners decide how to degrade.
    """

    def __init__(self, store: BlobStore):
        self.store = store
        self._listeners: List[ChangeListener] = []

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, name: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(name)
            except Exception as e:
                log.warning("Change listener failed for %s: %s", name, e)

    def _read_json(self, name: str) -> Any:
        try:
            raw = self.store.get(name)
        except StorageError as e:
            log.warning("Failed to read %s, treating as empty: %s", name, e)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            log.warning("Stored %s is corrupt, treating as empty: %s", name, e)
            return None

    def _write_json(self, name: str, value: Any) -> None:
        self.store.put(name, json.dumps(value, ensure_ascii=False))
        self._notify(name)


def _dict_items(data: Any, name: str) -> List[Dict[str, Any]]:
    if not isinstance(data, list):
        if data is not None:
            log.warning("Stored %s is not a list, treating as empty.", name)
        return []
    return [x for x in data if isinstance(x, dict)]


class BookmarkRepository(_JsonRepository):
    def load_links(self) -> List[BookmarkRecord]:
        return [BookmarkRecord.from_dict(d) for d in _dict_items(self._read_json(BOOKMARKS_KEY), BOOKMARKS_KEY)]

    def save_links(self, links: List[BookmarkRecord]) -> None:
        self._write_json(BOOKMARKS_KEY, [r.to_dict() for r in links])

    def load_trash(self) -> List[TrashedRecord]:
        return [TrashedRecord.from_dict(d) for d in _dict_items(self._read_json(TRASH_KEY), TRASH_KEY)]

    def save_trash(self, trash: List[TrashedRecord]) -> None:
        self._write_json(TRASH_KEY, [t.to_dict() for t in trash])


class FolderRepository(_JsonRepository):
    def load_custom_folders(self) -> List[str]:
        data = self._read_json(CUSTOM_FOLDERS_KEY)
        if not isinstance(data, list):
            return []
        return [str(x) for x in data if isinstance(x, str)]

    def save_custom_folders(self, folders: List[str]) -> None:
        self._write_json(CUSTOM_FOLDERS_KEY, list(folders))

    def load_icons(self) -> Dict[str, str]:
        data = self._read_json(FOLDER_ICONS_KEY)
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if isinstance(v, str)}

    def save_icons(self, icons: Dict[str, str]) -> None:
        self._write_json(FOLDER_ICONS_KEY, dict(icons))


class SyncStatusRepository(_JsonRepository):
    def load(self) -> SyncStatus:
        data = self._read_json(SYNC_STATUS_KEY)
        if not isinstance(data, dict):
            return SyncStatus()
        return SyncStatus.from_dict(data)

    def save(self, status: SyncStatus) -> None:
        self._write_json(SYNC_STATUS_KEY, status.to_dict())

    def load_daily_attempt(self) -> Optional[int]:
        """When the last automatic daily sync was started, kept apart from the status."""
        data = self._read_json(DAILY_ATTEMPT_KEY)
        if isinstance(data, bool) or not isinstance(data, int):
            return None
        return data

    def save_daily_attempt(self, at: int) -> None:
        self._write_json(DAILY_ATTEMPT_KEY, at)

    def clear(self) -> None:
        for name in (SYNC_STATUS_KEY, DAILY_ATTEMPT_KEY):
            self.store.delete(name)
            self._notify(name)


class SettingsRepository(_JsonRepository):
    def load(self) -> AppSettings:
        data = self._read_json(SETTINGS_KEY)
        if not isinstance(data, dict):
            return AppSettings()
        return AppSettings.from_dict(data)

    def save(self, settings: AppSettings) -> None:
        self._write_json(SETTINGS_KEY, settings.to_dict())

    def update(self, **changes: Any) -> AppSettings:
        current = self.load().to_dict()
        for attr, value in changes.items():
            wire = AppSettings.WIRE_KEYS.get(attr)
            if wire is None:
                raise KeyError(f"unknown app setting: {attr}")
            current[wire] = value
        updated = AppSettings.from_dict(current)
        self.save(updated)
        return updated
