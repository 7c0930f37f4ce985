import json

import pytest

from savedlinks.backup import (
    BACKUP_VERSION,
    IMPORT_MERGE,
    IMPORT_REPLACE,
    BackupCodec,
    backup_filename,
    parse_backup_text,
    validate,
)
from savedlinks.errors import StorageError
from savedlinks.folders import FolderRegistry
from savedlinks.model import BookmarkRecord
from savedlinks.records import RecordStore
from savedlinks.repository import BookmarkRepository, FolderRepository, SettingsRepository
from savedlinks.storage import BOOKMARKS_KEY, MemoryBlobStore


def _app(store=None, clock=None):
    store = store or MemoryBlobStore()
    settings = SettingsRepository(store)
    kwargs = {"clock": clock} if clock else {}
    records = RecordStore(BookmarkRepository(store), settings, **kwargs)
    folders = FolderRegistry(FolderRepository(store), records)
    return records, folders, settings, BackupCodec(records, folders, settings, **kwargs)


def _doc(bookmarks, version=BACKUP_VERSION, **data):
    return {"version": version, "exportedAt": 1, "appName": "SavedLinks", "data": {"bookmarks": bookmarks, **data}}


@pytest.mark.parametrize(
    "raw, message",
    [
        ([], "Invalid file format"),
        ("text", "Invalid file format"),
        ({"data": {"bookmarks": []}}, "Missing or invalid version"),
        ({"version": "1", "data": {"bookmarks": []}}, "Missing or invalid version"),
        ({"version": 2, "data": {"bookmarks": []}}, "Backup version is newer than app. Please update the app."),
        ({"version": 1}, "Missing backup data"),
        ({"version": 1, "data": {"bookmarks": {}}}, "Invalid bookmarks data"),
    ],
)
def test_validate_reports_first_structural_problem(raw, message):
    res = validate(raw)
    assert res.valid is False
    assert res.error == message


def test_validate_returns_counts():
    raw = _doc(
        [{"url": "https://a.example"}, {"url": "https://b.example"}],
        trash=[{"url": "https://c.example", "deletedAt": 5}],
        customFolders=["Reading"],
    )
    res = validate(raw)
    assert res.valid
    assert (res.stats.bookmark_count, res.stats.trash_count, res.stats.folder_count) == (2, 1, 1)


def test_newer_version_is_refused_without_mutation():
    records, _, _, codec = _app()
    records.add("keep.example")
    res = codec.import_backup(_doc([{"url": "https://new.example"}], version=BACKUP_VERSION + 1), IMPORT_REPLACE)
    assert res.success is False
    assert res.imported == 0 and res.skipped == 0
    assert [r.url for r in records.list_links()] == ["https://keep.example"]


def test_parse_backup_text_rejects_bad_json():
    doc, error = parse_backup_text("{nope")
    assert doc is None
    assert error == "Invalid JSON file"


def test_export_then_merge_into_empty_store(clock):
    records, _, settings, codec = _app(clock=clock)
    settings.update(trash_retention_days=14)
    records.add("example.com")
    assert records.add("https://example.com/").status == "duplicate"
    second = records.add("gone.example").record
    trashed = records.move_to_trash(second.id)
    assert trashed.retention_days == 14

    exported = json.loads(codec.export_state().to_json())
    assert exported["version"] == BACKUP_VERSION
    assert exported["data"]["bookmarks"][0]["url"] == "https://example.com"
    assert exported["data"]["trash"][0]["retentionDays"] == 14

    fresh_records, _, _, fresh_codec = _app()
    res = fresh_codec.import_backup(exported, IMPORT_MERGE)
    assert (res.success, res.imported, res.skipped) == (True, 1, 0)
    assert [r.url for r in fresh_records.list_links()] == ["https://example.com"]


def test_merge_never_creates_duplicates():
    records, folders, settings, codec = _app()
    records.add("a.example")
    folders.create_folder("Reading", icon="book")
    settings.update(auto_sync_enabled=False)

    raw = _doc(
        [
            {"url": "HTTPS://A.example/", "title": "dup"},
            {"url": "b.example", "title": "B", "isShortlisted": True},
            {"url": "https://b.example/#x", "title": "dup in doc"},
        ],
        customFolders=["Reading", "Later"],
        folderIcons={"Reading": "glasses", "Later": "clock"},
        settings={"autoSyncEnabled": True},
    )
    res = codec.import_backup(raw, IMPORT_MERGE)
    assert (res.imported, res.skipped) == (1, 2)

    urls = [r.url for r in records.list_links()]
    assert urls == ["https://a.example", "https://b.example"]
    assert records.list_links()[1].is_shortlisted is False
    assert folders.custom_folders() == ["Reading", "Later"]
    assert folders.get_icon("Reading") == "book"
    assert settings.load().auto_sync_enabled is False


def test_replace_overwrites_everything():
    records, folders, settings, codec = _app()
    records.add("old.example")
    folders.create_folder("Old")

    raw = _doc(
        [{"id": "n1", "url": "https://new.example", "title": "New", "tag": "Fresh", "createdAt": 10}],
        trash=[{"id": "t1", "url": "https://bin.example", "deletedAt": 5, "retentionDays": 7}],
        customFolders=["Fresh"],
        folderIcons={"Fresh": "leaf"},
        settings={"trashRetentionDays": 60, "autoSyncEnabled": False},
    )
    res = codec.import_backup(raw, IMPORT_REPLACE)
    assert res.success and res.imported == 1

    assert [(r.id, r.url, r.tag) for r in records.list_links()] == [("n1", "https://new.example", "Fresh")]
    assert [(t.id, t.retention_days) for t in records.trash_entries()] == [("t1", 7)]
    assert folders.custom_folders() == ["Fresh"]
    assert folders.folder_icons() == {"Fresh": "leaf"}
    s = settings.load()
    assert (s.trash_retention_days, s.auto_sync_enabled) == (60, False)


def test_export_then_merge_into_same_store_skips_everything(clock):
    records, folders, _, codec = _app(clock=clock)
    for url in ("a.example", "b.example", "c.example"):
        records.add(url)
        clock.advance(1)
    folders.create_folder("Reading")
    before = [r.to_dict() for r in records.list_links()]

    exported = json.loads(codec.export_state().to_json())
    res = codec.import_backup(exported, IMPORT_MERGE)
    assert (res.success, res.imported, res.skipped) == (True, 0, 3)
    assert [r.to_dict() for r in records.list_links()] == before
    assert folders.custom_folders() == ["Reading"]


def test_replace_keeps_document_order_and_fields():
    records, _, _, codec = _app()
    records.add("old.example")
    bookmarks = [
        {"id": "n1", "url": "https://one.example", "title": "One", "description": "first", "createdAt": 30},
        {"id": "n2", "url": "https://two.example", "title": "Two", "tag": "Reading", "createdAt": 10},
        {"id": "n3", "url": "https://three.example", "title": "Three", "isShortlisted": True, "createdAt": 20},
    ]
    res = codec.import_backup(_doc(bookmarks), IMPORT_REPLACE)
    assert (res.success, res.imported, res.skipped) == (True, 3, 0)

    got = [(r.id, r.url, r.title, r.description, r.tag, r.created_at, r.is_shortlisted) for r in records.list_links()]
    assert got == [
        ("n1", "https://one.example", "One", "first", None, 30, False),
        ("n2", "https://two.example", "Two", "", "Reading", 10, False),
        ("n3", "https://three.example", "Three", "", None, 20, True),
    ]


def test_legacy_tags_in_backup_are_read():
    records, _, _, codec = _app()
    res = codec.import_backup(_doc([{"url": "https://x.example", "tags": ["News"]}]), IMPORT_MERGE)
    assert res.imported == 1
    assert records.list_links()[0].tag == "News"


def test_unknown_mode_is_rejected():
    _, _, _, codec = _app()
    res = codec.import_backup(_doc([]), "overwrite")
    assert res.success is False
    assert "overwrite" in res.error


def test_failed_import_rolls_back():
    class _Flaky(MemoryBlobStore):
        fail = False

        def put(self, name, value):
            if self.fail and name == BOOKMARKS_KEY:
                self.fail = False
                raise StorageError("disk full")
            super().put(name, value)

    store = _Flaky()
    records, _, _, codec = _app(store)
    records.add("keep.example")

    store.fail = True
    res = codec.import_backup(_doc([{"url": "https://new.example"}]), IMPORT_REPLACE)
    assert res.success is False
    assert (res.imported, res.skipped) == (0, 0)
    assert [r.url for r in records.list_links()] == ["https://keep.example"]


def test_write_and_read_backup_file(tmp_path):
    records, _, _, codec = _app()
    records.repo.save_links([BookmarkRecord(id="1", url="https://a.example", title="A", created_at=1)])
    path = codec.write_backup(tmp_path)
    assert path.name.startswith("savedlinks-backup-") and path.suffix == ".json"

    doc, error = codec.read_backup(path)
    assert error is None
    assert doc.data.bookmarks[0].url == "https://a.example"


def test_read_backup_missing_file(tmp_path):
    _, _, _, codec = _app()
    doc, error = codec.read_backup(tmp_path / "missing.json")
    assert doc is None
    assert "Cannot read" in error


def test_backup_filename_uses_date():
    from datetime import datetime, timezone

    assert backup_filename(datetime(2024, 3, 9, tzinfo=timezone.utc)) == "savedlinks-backup-2024-03-09.json"
