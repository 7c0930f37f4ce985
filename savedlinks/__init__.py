"""savedlinks: local-first saved links with trash, backups and a calm cloud sync."""

from importlib import metadata
from pathlib import Path


def _read_version() -> str:
    # A source checkout carries VERSION at the repo root; an installed wheel
    # only has package metadata.
    p = Path(__file__).resolve().parents[1] / "VERSION"
    if p.is_file():
        return p.read_text(encoding="utf-8").strip()
    try:
        return metadata.version("savedlinks")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__version__ = _read_version()
