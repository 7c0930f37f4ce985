from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Per-request lines from the HTTP stack drown out sync progress.
_NOISY_LOGGERS = ("httpx", "httpcore")


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    no_color: bool = False
    log_file: Optional[str] = None


def _console_handler(cfg: LogConfig) -> logging.Handler:
    use_rich = not (cfg.no_color or os.getenv("NO_COLOR") is not None) and sys.stderr.isatty()
    if use_rich:
        handler: logging.Handler = RichHandler(rich_tracebacks=True, show_time=False, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    return handler


def setup_logging(cfg: LogConfig) -> None:
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
        if isinstance(h, logging.FileHandler):
            h.close()

    handlers = [_console_handler(cfg)]
    if cfg.log_file:
        path = Path(cfg.log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(logging.Formatter(PLAIN_FORMAT))
        handlers.append(fh)

    for handler in handlers:
        handler.setLevel(level)
        root.addHandler(handler)

    noisy_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
