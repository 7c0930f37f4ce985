from savedlinks.errors import StorageError
from savedlinks.model import DAY_MS, BookmarkRecord, TrashedRecord
from savedlinks.records import ADD_ADDED, ADD_DUPLICATE, ADD_FAILED, RecordStore, days_remaining
from savedlinks.repository import BookmarkRepository
from savedlinks.storage import BOOKMARKS_KEY, TRASH_KEY, MemoryBlobStore


class _FailingWrites(MemoryBlobStore):
    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = set(fail_on)

    def put(self, name, value):
        if name in self.fail_on:
            raise StorageError(f"disk full writing {name}")
        super().put(name, value)


def test_add_normalizes_and_defaults_title(records):
    res = records.add("example.com")
    assert res.status == ADD_ADDED
    assert res.record.url == "https://example.com"
    assert res.record.title == "example.com"


def test_add_detects_duplicate_after_normalization(records, store):
    first = records.add("example.com")
    before = store.get(BOOKMARKS_KEY)

    dup = records.add("https://example.com/")
    assert dup.status == ADD_DUPLICATE
    assert dup.record.id == first.record.id
    assert store.get(BOOKMARKS_KEY) == before
    assert len(records.list_links()) == 1


def test_add_prepends_most_recent_first(records, clock):
    records.add("a.example")
    clock.advance(1000)
    records.add("b.example")
    assert [r.url for r in records.list_links()] == ["https://b.example", "https://a.example"]


def test_add_reports_failed_when_write_fails(settings_repo, clock):
    store = _FailingWrites({BOOKMARKS_KEY})
    rs = RecordStore(BookmarkRepository(store), settings_repo, clock=clock)
    res = rs.add("example.com")
    assert res.status == ADD_FAILED
    assert res.record is None


def test_add_blank_url_fails(records):
    assert records.add("   ").status == ADD_FAILED


def test_corrupt_blob_reads_as_empty(store, records):
    store.put(BOOKMARKS_KEY, "{not json")
    assert records.list_links() == []
    # and the store keeps working afterwards
    assert records.add("example.com").status == ADD_ADDED
    assert len(records.list_links()) == 1


def test_non_list_blob_reads_as_empty(store, records):
    store.put(TRASH_KEY, '{"oops": true}')
    assert records.list_trash() == []


def test_update_renormalizes_url_without_duplicate_check(records, clock):
    a = records.add("a.example").record
    clock.advance(1)
    records.add("b.example")

    updated = records.update(a.id, url="B.EXAMPLE/", title="Renamed")
    assert updated.url == "https://b.example"
    assert updated.title == "Renamed"
    assert len(records.list_links()) == 2
    assert records.find_by_url("b.example", exclude_id=a.id) is not None


def test_update_rejects_unknown_fields(records):
    a = records.add("a.example").record
    try:
        records.update(a.id, created_at=1)
    except TypeError as e:
        assert "created_at" in str(e)
    else:
        raise AssertionError("expected TypeError")


def test_update_missing_record_returns_none(records):
    assert records.update("nope", title="x") is None


def test_update_refuses_blank_url(records, store):
    a = records.add("a.example").record
    before = store.get(BOOKMARKS_KEY)
    assert records.update(a.id, url="  ", title="Renamed") is None
    assert store.get(BOOKMARKS_KEY) == before
    assert records.get(a.id).url == "https://a.example"
    assert records.get(a.id).title == a.title


def test_restore_inserts_by_created_at(records):
    links = [
        BookmarkRecord(id="c", url="https://c.example", title="c", created_at=300),
        BookmarkRecord(id="a", url="https://a.example", title="a", created_at=100),
    ]
    records.repo.save_links(links)
    assert records.restore(BookmarkRecord(id="b", url="https://b.example", title="b", created_at=200))
    assert [r.id for r in records.list_links()] == ["c", "b", "a"]

    assert records.restore(BookmarkRecord(id="z", url="https://z.example", title="z", created_at=1))
    assert records.list_links()[-1].id == "z"


def test_reorder_keeps_missing_ids_at_end(records, clock):
    ids = []
    for host in ("a", "b", "c", "d"):
        ids.append(records.add(f"{host}.example").record.id)
        clock.advance(1)
    # list is d, c, b, a
    assert records.reorder([ids[0], ids[2]])
    assert [r.id for r in records.list_links()] == [ids[0], ids[2], ids[3], ids[1]]


def test_shortlist_toggle_and_clear(records):
    a = records.add("a.example").record
    assert records.toggle_shortlist(a.id).is_shortlisted is True
    assert [r.id for r in records.shortlisted()] == [a.id]
    assert records.clear_all_shortlist()
    assert records.shortlisted() == []


def test_search_matches_title_and_url(records):
    records.add("docs.python.org", title="Python docs")
    records.add("example.com", title="Example")
    assert [r.title for r in records.search("PYTHON")] == ["Python docs"]
    assert [r.title for r in records.search("example.com")] == ["Example"]


def test_move_to_trash_uses_retention_setting_at_delete_time(records, settings_repo, clock):
    settings_repo.update(trash_retention_days=7)
    a = records.add("example.com").record

    trashed = records.move_to_trash(a.id)
    assert trashed.retention_days == 7
    assert trashed.deleted_at == clock()
    assert records.list_links() == []

    settings_repo.update(trash_retention_days=60)
    assert records.list_trash()[0].retention_days == 7


def test_move_to_trash_restores_record_when_trash_write_fails(settings_repo, clock):
    store = _FailingWrites({TRASH_KEY})
    rs = RecordStore(BookmarkRepository(store), settings_repo, clock=clock)
    a = rs.add("example.com").record
    assert rs.move_to_trash(a.id) is None
    assert [r.id for r in rs.list_links()] == [a.id]


def test_expired_trash_is_purged_on_list(records, clock):
    a = records.add("a.example").record
    b = records.add("b.example").record
    records.move_to_trash(a.id)
    clock.advance(20 * DAY_MS)
    records.move_to_trash(b.id)

    clock.advance(11 * DAY_MS)  # a is now 31 days old, b 11 days
    remaining = records.list_trash()
    assert [t.id for t in remaining] == [b.id]


def test_days_remaining_rounds_up_and_floors_at_zero():
    t = TrashedRecord(record=BookmarkRecord(id="x", url="https://x", title="x"), deleted_at=0, retention_days=7)
    assert days_remaining(t, 0) == 7
    assert days_remaining(t, 1) == 7
    assert days_remaining(t, 6 * DAY_MS + 1) == 1
    assert days_remaining(t, 7 * DAY_MS) == 0
    assert days_remaining(t, 100 * DAY_MS) == 0


def test_restore_from_trash_puts_record_back(records):
    a = records.add("example.com").record
    records.move_to_trash(a.id)
    restored = records.restore_from_trash(a.id)
    assert restored.id == a.id
    assert records.trash_entries() == []
    assert [r.id for r in records.list_links()] == [a.id]


def test_restore_from_trash_when_url_already_live_drops_trash_copy(records):
    a = records.add("example.com").record
    records.move_to_trash(a.id)
    again = records.add("https://example.com/").record

    restored = records.restore_from_trash(a.id)
    assert restored.id == again.id
    assert records.trash_entries() == []
    assert len(records.list_links()) == 1


def test_permanently_erase_and_empty_trash(records):
    a = records.add("a.example").record
    b = records.add("b.example").record
    records.move_to_trash(a.id)
    records.move_to_trash(b.id)

    assert records.permanently_erase(a.id) is True
    assert records.permanently_erase(a.id) is False
    assert records.empty_trash() == 1
    assert records.trash_entries() == []


def test_retag_moves_records_between_folders(records):
    records.add("a.example", tag="Reading")
    records.add("b.example", tag="Reading")
    records.add("c.example", tag="Other")
    assert records.retag("Reading", "Later") == 2
    assert records.all_tags() == {"Later", "Other"}


def test_retag_reports_failed_write(settings_repo, clock):
    store = _FailingWrites(())
    records = RecordStore(BookmarkRepository(store), settings_repo, clock=clock)
    records.add("a.example", tag="Reading")
    store.fail_on.add(BOOKMARKS_KEY)
    assert records.retag("Reading", "Later") is None
    assert records.retag("Missing", "Later") == 0
    assert records.all_tags() == {"Reading"}


def test_append_records_skips_live_urls_and_rekeys_ids(records):
    a = records.add("a.example").record
    incoming = [
        BookmarkRecord(id=a.id, url="https://new.example", title="new"),
        BookmarkRecord(id="other", url="HTTPS://A.example/", title="dup"),
    ]
    assert records.append_records(incoming) == 1
    links = records.list_links()
    assert len(links) == 2
    assert links[-1].url == "https://new.example"
    assert links[-1].id != a.id


def test_legacy_tags_field_becomes_folder(store, records):
    store.put(BOOKMARKS_KEY, '[{"id": "1", "url": "https://x.example", "title": "x", "tags": ["Work", "Misc"]}]')
    assert records.list_links()[0].tag == "Work"
