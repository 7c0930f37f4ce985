from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .errors import StorageError
from .log import get_logger
from .records import RecordStore
from .repository import FolderRepository

log = get_logger(__name__)

PRESET_FOLDERS = ("Work", "Personal", "Social", "News", "Entertainment", "Shopping")


@dataclass
class FolderResult:
    success: bool
    error: Optional[str] = None


class FolderRegistry:
    """Preset folders, user folders and their icons.

    A folder name is also the ``tag`` stored on records, so renames and
    deletes cascade into the record store.
    """

    def __init__(
        self,
        repo: FolderRepository,
        records: RecordStore,
        *,
        presets: Iterable[str] = PRESET_FOLDERS,
    ):
        self.repo = repo
        self.records = records
        self.presets = tuple(presets)

    def is_preset(self, name: str) -> bool:
        return name in self.presets

    def custom_folders(self) -> List[str]:
        return self.repo.load_custom_folders()

    def folder_icons(self) -> Dict[str, str]:
        return self.repo.load_icons()

    def get_icon(self, name: str) -> Optional[str]:
        return self.repo.load_icons().get(name)

    def list_folders(self) -> List[str]:
        combined = set(self.presets) | set(self.repo.load_custom_folders()) | self.records.all_tags()
        return sorted(combined)

    def _restore(self, folders: List[str], icons: Dict[str, str]) -> None:
        for save, value in ((self.repo.save_custom_folders, folders), (self.repo.save_icons, icons)):
            try:
                save(value)
            except StorageError as e:
                log.error("Could not put folders back after a failed write: %s", e)

    def create_folder(self, name: str, icon: Optional[str] = None) -> FolderResult:
        trimmed = (name or "").strip()
        if not trimmed:
            return FolderResult(False, "Folder name cannot be empty")
        folders = self.repo.load_custom_folders()
        if trimmed in folders or self.is_preset(trimmed):
            return FolderResult(False, f"A folder named {trimmed!r} already exists")

        icons = self.repo.load_icons()
        try:
            self.repo.save_custom_folders(folders + [trimmed])
            if icon:
                self.repo.save_icons({**icons, trimmed: icon})
        except StorageError as e:
            log.error("Failed to create folder %s: %s", trimmed, e)
            self._restore(folders, icons)
            return FolderResult(False, "Could not save folder")
        return FolderResult(True)

    def set_icon(self, name: str, icon: str) -> FolderResult:
        if name not in self.repo.load_custom_folders():
            return FolderResult(False, f"{name!r} is not a custom folder")
        icons = self.repo.load_icons()
        icons[name] = icon
        try:
            self.repo.save_icons(icons)
        except StorageError as e:
            log.error("Failed to set icon for %s: %s", name, e)
            return FolderResult(False, "Could not save folder icon")
        return FolderResult(True)

    def rename_folder(self, old_name: str, new_name: str) -> FolderResult:
        new = (new_name or "").strip()
        if not new:
            return FolderResult(False, "Folder name cannot be empty")
        if new == old_name:
            return FolderResult(True)
        if self.is_preset(old_name):
            return FolderResult(False, "Preset folders cannot be renamed")

        folders = self.repo.load_custom_folders()
        if old_name not in folders and old_name not in self.records.all_tags():
            return FolderResult(False, f"No folder named {old_name!r}")
        if self.is_preset(new) or any(f == new for f in folders if f != old_name):
            return FolderResult(False, f"A folder named {new!r} already exists")

        icons = self.repo.load_icons()
        renamed = [new if f == old_name else f for f in folders]
        new_icons = {(new if k == old_name else k): v for k, v in icons.items()}
        try:
            if renamed != folders:
                self.repo.save_custom_folders(renamed)
            if new_icons != icons:
                self.repo.save_icons(new_icons)
        except StorageError as e:
            log.error("Failed to rename folder %s: %s", old_name, e)
            self._restore(folders, icons)
            return FolderResult(False, "Could not save folder")

        moved = self.records.retag(old_name, new)
        if moved is None:
            self._restore(folders, icons)
            return FolderResult(False, "Could not save folder")
        log.info("Renamed folder %s -> %s (%d links).", old_name, new, moved)
        return FolderResult(True)

    def delete_folder(self, name: str) -> FolderResult:
        if self.is_preset(name):
            return FolderResult(False, "Preset folders cannot be deleted")
        folders = self.repo.load_custom_folders()
        icons = self.repo.load_icons()
        try:
            if name in folders:
                self.repo.save_custom_folders([f for f in folders if f != name])
            if name in icons:
                self.repo.save_icons({k: v for k, v in icons.items() if k != name})
        except StorageError as e:
            log.error("Failed to delete folder %s: %s", name, e)
            self._restore(folders, icons)
            return FolderResult(False, "Could not save folder")

        cleared = self.records.retag(name, None)
        if cleared is None:
            self._restore(folders, icons)
            return FolderResult(False, "Could not save folder")
        log.info("Deleted folder %s (%d links now uncategorized).", name, cleared)
        return FolderResult(True)

    def merge(self, folders: Iterable[str], icons: Dict[str, str]) -> int:
        """Union incoming folders and icons into ours; existing entries win."""
        existing = self.repo.load_custom_folders()
        added = [f for f in dict.fromkeys(folders) if f and f not in existing and not self.is_preset(f)]
        if added:
            self.repo.save_custom_folders(existing + added)
        current_icons = self.repo.load_icons()
        merged_icons = {**icons, **current_icons}
        if merged_icons != current_icons:
            self.repo.save_icons(merged_icons)
        return len(added)

    def replace_all(self, folders: List[str], icons: Dict[str, str]) -> None:
        self.repo.save_custom_folders(list(folders))
        self.repo.save_icons(dict(icons))
