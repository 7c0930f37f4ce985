from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Set

from .errors import StorageError
from .log import get_logger
from .model import DAY_MS, BookmarkRecord, TrashedRecord, new_id, now_ms
from .repository import BookmarkRepository, SettingsRepository
from .url_norm import normalize_url, title_from_url

log = get_logger(__name__)

ADD_ADDED = "added"
ADD_DUPLICATE = "duplicate"
ADD_FAILED = "failed"

_UPDATABLE_FIELDS = ("url", "title", "description", "tag")


@dataclass
class AddResult:
    record: Optional[BookmarkRecord]
    status: str


def days_remaining(trashed: TrashedRecord, now: int) -> int:
    left = trashed.expires_at() - now
    if left <= 0:
        return 0
    return math.ceil(left / DAY_MS)


class RecordStore:
    """Live bookmarks and their trash.

    Every mutation reads the full list, changes it in memory and writes the
    full list back. Storage failures never escape: reads degrade to empty
    lists and writes report ``failed``, ``None`` or ``False``.
    """

    def __init__(
        self,
        repo: BookmarkRepository,
        settings: SettingsRepository,
        *,
        clock: Callable[[], int] = now_ms,
    ):
        self.repo = repo
        self.settings = settings
        self.clock = clock

    # -- live records ------------------------------------------------------

    def list_links(self) -> List[BookmarkRecord]:
        return self.repo.load_links()

    def get(self, record_id: str) -> Optional[BookmarkRecord]:
        return next((r for r in self.repo.load_links() if r.id == record_id), None)

    def find_by_url(self, url: str, *, exclude_id: Optional[str] = None) -> Optional[BookmarkRecord]:
        if not url.strip():
            return None
        key = normalize_url(url)
        for r in self.repo.load_links():
            if r.id != exclude_id and normalize_url(r.url) == key:
                return r
        return None

    def add(
        self,
        url: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> AddResult:
        links = self.repo.load_links()
        norm = normalize_url(url)
        if not norm:
            return AddResult(record=None, status=ADD_FAILED)

        existing = next((r for r in links if normalize_url(r.url) == norm), None)
        if existing is not None:
            log.info("Duplicate link, not adding: %s", norm)
            return AddResult(record=existing, status=ADD_DUPLICATE)

        record = BookmarkRecord(
            id=new_id(),
            url=norm,
            title=title or title_from_url(norm),
            description=description or "",
            tag=tag or None,
            created_at=self.clock(),
        )
        links.insert(0, record)
        if not self._save_links(links):
            return AddResult(record=None, status=ADD_FAILED)

        if not any(r.id == record.id for r in self.repo.load_links()):
            log.error("Saved link could not be read back: %s", norm)
            return AddResult(record=None, status=ADD_FAILED)

        log.info("Saved link: %s", norm)
        return AddResult(record=record, status=ADD_ADDED)

    def update(self, record_id: str, **changes) -> Optional[BookmarkRecord]:
        # The new URL is normalized but not checked against other live
        # records; callers that care use find_by_url(..., exclude_id=...).
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise TypeError(f"cannot update fields: {', '.join(sorted(unknown))}")

        links = self.repo.load_links()
        record = next((r for r in links if r.id == record_id), None)
        if record is None:
            return None
        for name in _UPDATABLE_FIELDS:
            if name not in changes:
                continue
            value = changes[name]
            if name == "url":
                value = normalize_url(value)
                if not value:
                    log.warning("Refusing to blank the URL of %s", record_id)
                    return None
            elif name == "tag":
                value = value or None
            elif name in ("title", "description"):
                value = value or ""
            setattr(record, name, value)
        if not self._save_links(links):
            return None
        return record

    def move_to_folder(self, record_id: str, tag: Optional[str]) -> Optional[BookmarkRecord]:
        return self.update(record_id, tag=tag)

    def remove(self, record_id: str) -> Optional[BookmarkRecord]:
        links = self.repo.load_links()
        removed = next((r for r in links if r.id == record_id), None)
        if removed is None:
            return None
        if not self._save_links([r for r in links if r.id != record_id]):
            return None
        return removed

    def restore(self, record: BookmarkRecord) -> bool:
        links = self.repo.load_links()
        index = next((i for i, r in enumerate(links) if r.created_at < record.created_at), None)
        if index is None:
            links.append(record)
        else:
            links.insert(index, record)
        return self._save_links(links)

    def toggle_shortlist(self, record_id: str) -> Optional[BookmarkRecord]:
        links = self.repo.load_links()
        record = next((r for r in links if r.id == record_id), None)
        if record is None:
            return None
        record.is_shortlisted = not record.is_shortlisted
        if not self._save_links(links):
            return None
        return record

    def shortlisted(self) -> List[BookmarkRecord]:
        return [r for r in self.repo.load_links() if r.is_shortlisted]

    def clear_all_shortlist(self) -> bool:
        links = self.repo.load_links()
        for r in links:
            r.is_shortlisted = False
        return self._save_links(links)

    def reorder(self, ordered_ids: Iterable[str]) -> bool:
        links = self.repo.load_links()
        by_id = {r.id: r for r in links}
        reordered: List[BookmarkRecord] = []
        for record_id in ordered_ids:
            record = by_id.pop(record_id, None)
            if record is not None:
                reordered.append(record)
        # Ids the caller left out keep their relative order at the end.
        reordered.extend(r for r in links if r.id in by_id)
        return self._save_links(reordered)

    def search(self, query: str) -> List[BookmarkRecord]:
        q = query.lower()
        return [r for r in self.repo.load_links() if q in r.title.lower() or q in r.url.lower()]

    def links_by_tag(self, tag: Optional[str]) -> List[BookmarkRecord]:
        return [r for r in self.repo.load_links() if r.tag == tag]

    def all_tags(self) -> Set[str]:
        return {r.tag for r in self.repo.load_links() if r.tag}

    def retag(self, old: str, new: Optional[str]) -> Optional[int]:
        """Move every record tagged ``old`` to ``new``; ``None`` if the write failed."""
        links = self.repo.load_links()
        touched = 0
        for r in links:
            if r.tag == old:
                r.tag = new
                touched += 1
        if touched and not self._save_links(links):
            return None
        return touched

    def append_records(self, records: Iterable[BookmarkRecord]) -> int:
        """Append records at the end, skipping any whose URL is already live."""
        links = self.repo.load_links()
        seen = {normalize_url(r.url) for r in links}
        ids = {r.id for r in links}
        added = 0
        for record in records:
            key = normalize_url(record.url)
            if not key or key in seen:
                continue
            if record.id in ids:
                record = replace(record, id=new_id())
            links.append(record)
            seen.add(key)
            ids.add(record.id)
            added += 1
        if added:
            self.repo.save_links(links)
        return added

    def replace_all(self, links: List[BookmarkRecord], trash: List[TrashedRecord]) -> None:
        self.repo.save_links(list(links))
        self.repo.save_trash(list(trash))

    # -- trash -------------------------------------------------------------

    def move_to_trash(self, record_id: str) -> Optional[TrashedRecord]:
        retention = self.settings.load().trash_retention_days
        removed = self.remove(record_id)
        if removed is None:
            return None
        trashed = TrashedRecord(record=removed, deleted_at=self.clock(), retention_days=retention)
        trash = self.repo.load_trash()
        trash.insert(0, trashed)
        if not self._save_trash(trash):
            # Put the record back rather than lose it.
            self.restore(removed)
            return None
        log.info("Moved to trash (%d days): %s", retention, removed.url)
        return trashed

    def trash_entries(self) -> List[TrashedRecord]:
        return self.repo.load_trash()

    def list_trash(self) -> List[TrashedRecord]:
        self.purge_expired_trash()
        return self.repo.load_trash()

    def purge_expired_trash(self, now: Optional[int] = None) -> int:
        now = self.clock() if now is None else now
        trash = self.repo.load_trash()
        kept = [t for t in trash if t.expires_at() > now]
        expired = len(trash) - len(kept)
        if expired and self._save_trash(kept):
            log.info("Purged %d expired trash entries.", expired)
            return expired
        return 0

    def restore_from_trash(self, record_id: str) -> Optional[BookmarkRecord]:
        trash = self.repo.load_trash()
        entry = next((t for t in trash if t.id == record_id), None)
        if entry is None:
            return None
        live = self.find_by_url(entry.url)
        if live is None and not self.restore(entry.record):
            return None
        if not self._save_trash([t for t in trash if t.id != record_id]):
            return None
        if live is not None:
            log.info("Link is already saved, dropped trash copy: %s", entry.url)
            return live
        return entry.record

    def restore_all_from_trash(self) -> List[BookmarkRecord]:
        restored = []
        for entry in self.repo.load_trash():
            record = self.restore_from_trash(entry.id)
            if record is not None:
                restored.append(record)
        return restored

    def permanently_erase(self, record_id: str) -> bool:
        trash = self.repo.load_trash()
        kept = [t for t in trash if t.id != record_id]
        if len(kept) == len(trash):
            return False
        return self._save_trash(kept)

    def empty_trash(self) -> int:
        count = len(self.repo.load_trash())
        if count and not self._save_trash([]):
            return 0
        return count

    def append_trash(self, entries: Iterable[TrashedRecord]) -> int:
        trash = self.repo.load_trash()
        seen = {normalize_url(t.url) for t in trash}
        added = 0
        for entry in entries:
            key = normalize_url(entry.url)
            if not key or key in seen:
                continue
            trash.append(entry)
            seen.add(key)
            added += 1
        if added:
            self.repo.save_trash(trash)
        return added

    # -- helpers -----------------------------------------------------------

    def _save_links(self, links: List[BookmarkRecord]) -> bool:
        try:
            self.repo.save_links(links)
        except StorageError as e:
            log.error("Failed to write saved links: %s", e)
            return False
        return True

    def _save_trash(self, trash: List[TrashedRecord]) -> bool:
        try:
            self.repo.save_trash(trash)
        except StorageError as e:
            log.error("Failed to write trash: %s", e)
            return False
        return True
