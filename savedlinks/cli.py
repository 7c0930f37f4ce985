from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .backup import IMPORT_MERGE, IMPORT_REPLACE, BackupCodec
from .cloud_sync import CloudSyncEngine
from .config import Settings, load_settings
from .errors import StorageError
from .folders import FolderRegistry
from .log import LogConfig, get_logger, setup_logging
from .model import TRASH_RETENTION_CHOICES, BookmarkRecord, now_ms
from .records import ADD_ADDED, ADD_DUPLICATE, RecordStore, days_remaining
from .remote import RemoteStore, SqliteRemoteStore, SupabaseRemoteStore
from .repository import BookmarkRepository, FolderRepository, SettingsRepository, SyncStatusRepository
from .storage import BlobStore, SqliteBlobStore
from .sync_guard import SyncGuard, SyncTrigger

log = get_logger(__name__)

SHORT_ID = 8


@dataclass
class App:
    cfg: Settings
    console: Console
    records: RecordStore
    folders: FolderRegistry
    backup: BackupCodec
    settings: SettingsRepository
    status: SyncStatusRepository


def build_app(cfg: Settings, store: Optional[BlobStore] = None, console: Optional[Console] = None) -> App:
    store = store or SqliteBlobStore(cfg.db_path)
    settings = SettingsRepository(store)
    records = RecordStore(BookmarkRepository(store), settings)
    folders = FolderRegistry(FolderRepository(store), records)
    return App(
        cfg=cfg,
        console=console or Console(no_color=cfg.no_color, highlight=False),
        records=records,
        folders=folders,
        backup=BackupCodec(records, folders, settings, app_name=cfg.app_name),
        settings=settings,
        status=SyncStatusRepository(store),
    )


def open_remote(cfg: Settings) -> Optional[RemoteStore]:
    backend = (cfg.remote_backend or "none").strip().lower()
    if backend == "sqlite":
        path = cfg.remote_sqlite_path or str(Path(cfg.data_dir).expanduser() / "remote.sqlite")
        return SqliteRemoteStore(path)
    if backend == "supabase":
        if not cfg.supabase_url or not cfg.supabase_anon_key:
            log.error("Supabase backend needs supabase_url and supabase_anon_key.")
            return None
        return SupabaseRemoteStore(
            cfg.supabase_url,
            cfg.supabase_anon_key,
            access_token=cfg.supabase_access_token,
            timeout_s=cfg.http_timeout_s,
        )
    if backend != "none":
        log.error("Unknown remote backend: %s", cfg.remote_backend)
    return None


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="savedlinks",
        description="Local-first saved links with trash, folders, backups and guarded cloud sync.",
    )
    p.add_argument("-V", "--version", action="version", version=f"savedlinks {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    p.add_argument("--log-level", default=None, help="DEBUG/INFO/WARN/ERROR (overrides env/config).")
    p.add_argument("--no-color", action="store_true", help="Disable colored output.")
    sub = p.add_subparsers(dest="cmd", required=True)

    add = sub.add_parser("add", help="Save a link.")
    add.add_argument("url")
    add.add_argument("--title", default=None)
    add.add_argument("--description", default=None)
    add.add_argument("--folder", default=None)

    ls = sub.add_parser("list", help="List saved links.")
    ls.add_argument("--folder", default=None)
    ls.add_argument("--search", default=None)
    ls.add_argument("--shortlisted", action="store_true")

    edit = sub.add_parser("edit", help="Edit a saved link.")
    edit.add_argument("id")
    edit.add_argument("--url", default=None)
    edit.add_argument("--title", default=None)
    edit.add_argument("--description", default=None)
    edit.add_argument("--folder", default=None, help="Folder name, or '' to clear.")

    rm = sub.add_parser("rm", help="Move a link to the trash.")
    rm.add_argument("id")

    sub.add_parser("trash", help="List trashed links with days left.")

    restore = sub.add_parser("restore", help="Restore links from the trash.")
    restore.add_argument("id", nargs="?")
    restore.add_argument("--all", action="store_true")

    erase = sub.add_parser("erase", help="Permanently delete trashed links.")
    erase.add_argument("id", nargs="?")
    erase.add_argument("--all", action="store_true")

    sl = sub.add_parser("shortlist", help="Toggle or clear the shortlist.")
    sl.add_argument("id", nargs="?")
    sl.add_argument("--clear", action="store_true")

    fol = sub.add_parser("folders", help="List or manage folders.")
    fsub = fol.add_subparsers(dest="folder_cmd")
    fc = fsub.add_parser("create")
    fc.add_argument("name")
    fc.add_argument("--icon", default=None)
    fr = fsub.add_parser("rename")
    fr.add_argument("old")
    fr.add_argument("new")
    fd = fsub.add_parser("delete")
    fd.add_argument("name")
    fi = fsub.add_parser("icon")
    fi.add_argument("name")
    fi.add_argument("icon")

    st = sub.add_parser("settings", help="Show or change app settings.")
    st.add_argument("--retention", type=int, choices=TRASH_RETENTION_CHOICES, default=None)
    st.add_argument("--auto-sync", choices=("on", "off"), default=None)

    exp = sub.add_parser("export", help="Write a JSON backup.")
    exp.add_argument("path", nargs="?", default=".")

    imp = sub.add_parser("import", help="Import a JSON backup.")
    imp.add_argument("path")
    imp.add_argument("--mode", choices=(IMPORT_MERGE, IMPORT_REPLACE), default=IMPORT_MERGE)
    imp.add_argument("--yes", action="store_true", help="Confirm a destructive replace import.")

    sy = sub.add_parser("sync", help="Sync with the remote store.")
    sy.add_argument("--trigger", choices=[t.value for t in SyncTrigger], default=SyncTrigger.EXPLICIT.value)

    sub.add_parser("status", help="Show sync status.")

    args = p.parse_args(argv)
    cfg = load_settings(args.config)
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    setup_logging(LogConfig(level=cfg.log_level, no_color=cfg.no_color, log_file=cfg.log_file or None))

    try:
        app = build_app(cfg)
    except StorageError as e:
        log.error("%s", e)
        return 1
    handler = _COMMANDS.get(args.cmd)
    if handler is None:
        return 2
    return handler(args, app)


# -- helpers -----------------------------------------------------------------


def format_relative_time(ts: Optional[int], now: Optional[int] = None) -> str:
    if not ts:
        return "Never synced"
    now = now_ms() if now is None else now
    seconds = max(0, now - ts) // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if seconds < 60:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    if days < 7:
        return f"{days} day{'s' if days != 1 else ''} ago"
    return datetime.fromtimestamp(ts / 1000).strftime("%Y-%m-%d")


def match_id(ids: Iterable[str], ident: str) -> Optional[str]:
    """Exact id, or a unique prefix of one."""
    ids = list(ids)
    if ident in ids:
        return ident
    hits = [i for i in ids if i.startswith(ident)]
    if len(hits) == 1:
        return hits[0]
    if len(hits) > 1:
        log.error("Id prefix %r is ambiguous (%d matches).", ident, len(hits))
    else:
        log.error("No link with id %r.", ident)
    return None


def _links_table(links: List[BookmarkRecord]) -> Table:
    t = Table(show_header=True, header_style="bold")
    t.add_column("ID", no_wrap=True)
    t.add_column("Title")
    t.add_column("URL", overflow="fold")
    t.add_column("Folder")
    t.add_column("★", justify="center")
    for r in links:
        t.add_row(
            r.id[:SHORT_ID],
            escape(r.title),
            escape(r.url),
            escape(r.tag or "-"),
            "★" if r.is_shortlisted else "",
        )
    return t


# -- commands ----------------------------------------------------------------


def _cmd_add(args, app: App) -> int:
    res = app.records.add(args.url, title=args.title, description=args.description, tag=args.folder)
    if res.status == ADD_ADDED:
        app.console.print(f"Saved {res.record.id[:SHORT_ID]} {escape(res.record.url)}")
        return 0
    if res.status == ADD_DUPLICATE:
        app.console.print(f"Already saved as {res.record.id[:SHORT_ID]} {escape(res.record.url)}")
        return 0
    log.error("Could not save %s", args.url)
    return 1


def _cmd_list(args, app: App) -> int:
    links = app.records.search(args.search) if args.search else app.records.list_links()
    if args.folder is not None:
        want = args.folder or None
        links = [r for r in links if r.tag == want]
    if args.shortlisted:
        links = [r for r in links if r.is_shortlisted]
    if not links:
        app.console.print("No saved links.")
        return 0
    app.console.print(_links_table(links))
    return 0


def _cmd_edit(args, app: App) -> int:
    record_id = match_id((r.id for r in app.records.list_links()), args.id)
    if record_id is None:
        return 1
    changes: Dict[str, Optional[str]] = {}
    for name in ("url", "title", "description"):
        value = getattr(args, name)
        if value is not None:
            changes[name] = value
    if args.folder is not None:
        changes["tag"] = args.folder
    if not changes:
        log.error("Nothing to change.")
        return 2
    if "url" in changes:
        clash = app.records.find_by_url(changes["url"], exclude_id=record_id)
        if clash is not None:
            log.warning("Another saved link already has this URL: %s", clash.id[:SHORT_ID])
    updated = app.records.update(record_id, **changes)
    if updated is None:
        log.error("Could not update %s", args.id)
        return 1
    app.console.print(f"Updated {updated.id[:SHORT_ID]} {escape(updated.url)}")
    return 0


def _cmd_rm(args, app: App) -> int:
    record_id = match_id((r.id for r in app.records.list_links()), args.id)
    if record_id is None:
        return 1
    trashed = app.records.move_to_trash(record_id)
    if trashed is None:
        log.error("Could not move %s to the trash.", args.id)
        return 1
    app.console.print(f"Moved to trash for {trashed.retention_days} days: {escape(trashed.url)}")
    return 0


def _cmd_trash(args, app: App) -> int:
    entries = app.records.list_trash()
    if not entries:
        app.console.print("Trash is empty.")
        return 0
    now = now_ms()
    t = Table(show_header=True, header_style="bold")
    t.add_column("ID", no_wrap=True)
    t.add_column("Title")
    t.add_column("URL", overflow="fold")
    t.add_column("Days left", justify="right")
    for e in entries:
        t.add_row(e.id[:SHORT_ID], escape(e.record.title), escape(e.url), str(days_remaining(e, now)))
    app.console.print(t)
    return 0


def _cmd_restore(args, app: App) -> int:
    if args.all:
        restored = app.records.restore_all_from_trash()
        app.console.print(f"Restored {len(restored)} links.")
        return 0
    if not args.id:
        log.error("Give an id or --all.")
        return 2
    record_id = match_id((t.id for t in app.records.trash_entries()), args.id)
    if record_id is None:
        return 1
    record = app.records.restore_from_trash(record_id)
    if record is None:
        log.error("Could not restore %s", args.id)
        return 1
    app.console.print(f"Restored {escape(record.url)}")
    return 0


def _cmd_erase(args, app: App) -> int:
    if args.all:
        count = app.records.empty_trash()
        app.console.print(f"Erased {count} links.")
        return 0
    if not args.id:
        log.error("Give an id or --all.")
        return 2
    record_id = match_id((t.id for t in app.records.trash_entries()), args.id)
    if record_id is None:
        return 1
    if not app.records.permanently_erase(record_id):
        log.error("Could not erase %s", args.id)
        return 1
    app.console.print("Erased 1 link.")
    return 0


def _cmd_shortlist(args, app: App) -> int:
    if args.clear:
        return 0 if app.records.clear_all_shortlist() else 1
    if not args.id:
        links = app.records.shortlisted()
        if not links:
            app.console.print("Shortlist is empty.")
        else:
            app.console.print(_links_table(links))
        return 0
    record_id = match_id((r.id for r in app.records.list_links()), args.id)
    if record_id is None:
        return 1
    record = app.records.toggle_shortlist(record_id)
    if record is None:
        return 1
    state = "added to" if record.is_shortlisted else "removed from"
    app.console.print(f"{escape(record.title)} {state} the shortlist.")
    return 0


def _cmd_folders(args, app: App) -> int:
    reg = app.folders
    cmd = args.folder_cmd
    if cmd == "create":
        res = reg.create_folder(args.name, icon=args.icon)
    elif cmd == "rename":
        res = reg.rename_folder(args.old, args.new)
    elif cmd == "delete":
        res = reg.delete_folder(args.name)
    elif cmd == "icon":
        res = reg.set_icon(args.name, args.icon)
    else:
        links = app.records.list_links()
        icons = reg.folder_icons()
        t = Table(show_header=True, header_style="bold")
        t.add_column("Folder")
        t.add_column("Icon")
        t.add_column("Links", justify="right")
        t.add_column("Kind")
        for name in reg.list_folders():
            count = sum(1 for r in links if r.tag == name)
            kind = "preset" if reg.is_preset(name) else "custom"
            t.add_row(escape(name), escape(icons.get(name, "")), str(count), kind)
        app.console.print(t)
        return 0

    if not res.success:
        log.error("%s", res.error)
        return 1
    app.console.print("OK")
    return 0


def _cmd_settings(args, app: App) -> int:
    changes = {}
    if args.retention is not None:
        changes["trash_retention_days"] = args.retention
    if args.auto_sync is not None:
        changes["auto_sync_enabled"] = args.auto_sync == "on"
    if changes:
        try:
            current = app.settings.update(**changes)
        except StorageError as e:
            log.error("Could not save settings: %s", e)
            return 1
    else:
        current = app.settings.load()
    t = Table(show_header=False)
    for key, value in current.to_dict().items():
        t.add_row(key, str(value))
    app.console.print(t)
    return 0


def _cmd_export(args, app: App) -> int:
    try:
        path = app.backup.write_backup(Path(args.path).expanduser())
    except OSError as e:
        log.error("Could not write backup: %s", e)
        return 1
    app.console.print(f"Wrote {escape(str(path))}")
    return 0


def _cmd_import(args, app: App) -> int:
    doc, error = app.backup.read_backup(Path(args.path).expanduser())
    if doc is None:
        log.error("%s", error)
        return 1
    check = app.backup.validate(doc)
    if not check.valid:
        log.error("%s", check.error)
        return 1
    stats = check.stats
    app.console.print(
        f"Backup has {stats.bookmark_count} links, {stats.trash_count} trashed, {stats.folder_count} folders."
    )
    if args.mode == IMPORT_REPLACE and not args.yes:
        log.error("Replace import overwrites all local data. Re-run with --yes to confirm.")
        return 2

    res = app.backup.import_backup(doc, args.mode)
    if not res.success:
        log.error("Import failed: %s", res.error)
        return 1
    app.console.print(f"Imported {res.imported}, skipped {res.skipped}.")
    return 0


async def _run_sync(guard: SyncGuard, trigger: SyncTrigger, engine: CloudSyncEngine, remote: RemoteStore):
    try:
        return await guard.run(trigger, engine)
    finally:
        await remote.aclose()


def _cmd_sync(args, app: App) -> int:
    cfg = app.cfg
    remote = open_remote(cfg)
    if remote is None:
        log.error("No remote store configured (remote_backend=%s).", cfg.remote_backend)
        return 1
    engine = CloudSyncEngine(
        app.records,
        remote,
        user_id_provider=lambda: cfg.user_id or None,
        batch_size=cfg.upload_batch_size,
    )
    guard = SyncGuard(app.status, settings_repo=app.settings, interval_ms=cfg.sync_interval_hours * 3_600_000)
    outcome = asyncio.run(_run_sync(guard, SyncTrigger(args.trigger), engine, remote))
    if outcome.blocked:
        log.info("Sync skipped: %s", outcome.reason)
        return 0
    result = outcome.result
    if not result.success:
        log.error("Sync failed: %s", result.error)
        return 1
    app.console.print(
        f"Synced: {result.uploaded} up, {result.downloaded} down "
        f"(trash {result.trash_uploaded} up, {result.trash_downloaded} down)."
    )
    return 0


def _cmd_status(args, app: App) -> int:
    status = app.status.load()
    cfg = app.cfg
    t = Table(show_header=False)
    t.add_row("Last sync", format_relative_time(status.last_sync_at))
    t.add_row("Last upload", str(status.last_upload_count))
    t.add_row("Last download", str(status.last_download_count))
    t.add_row("Remote", escape(cfg.remote_backend))
    t.add_row("Signed in", "yes" if cfg.user_id else "no")
    t.add_row("Links", str(len(app.records.list_links())))
    t.add_row("Trash", str(len(app.records.trash_entries())))
    app.console.print(t)
    return 0


_COMMANDS = {
    "add": _cmd_add,
    "list": _cmd_list,
    "edit": _cmd_edit,
    "rm": _cmd_rm,
    "trash": _cmd_trash,
    "restore": _cmd_restore,
    "erase": _cmd_erase,
    "shortlist": _cmd_shortlist,
    "folders": _cmd_folders,
    "settings": _cmd_settings,
    "export": _cmd_export,
    "import": _cmd_import,
    "sync": _cmd_sync,
    "status": _cmd_status,
}
