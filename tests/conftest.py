import os
import sys
from pathlib import Path

import pytest

# Allow `import savedlinks` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from savedlinks.folders import FolderRegistry  # noqa: E402
from savedlinks.records import RecordStore  # noqa: E402
from savedlinks.repository import (  # noqa: E402
    BookmarkRepository,
    FolderRepository,
    SettingsRepository,
    SyncStatusRepository,
)
from savedlinks.storage import MemoryBlobStore  # noqa: E402


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Tests must never touch the real ~/.savedlinks or a real remote."""
    for name in list(os.environ):
        if name.startswith("SAVEDLINKS_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SAVEDLINKS_DATA_DIR", str(tmp_path / "data"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryBlobStore()


@pytest.fixture
def settings_repo(store):
    return SettingsRepository(store)


@pytest.fixture
def records(store, settings_repo, clock):
    return RecordStore(BookmarkRepository(store), settings_repo, clock=clock)


@pytest.fixture
def folders(store, records):
    return FolderRegistry(FolderRepository(store), records)


@pytest.fixture
def status_repo(store):
    return SyncStatusRepository(store)
