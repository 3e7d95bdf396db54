"""Logging configuration for applications embedding taskflow_sync."""

from __future__ import annotations

import logging
import sys
from pathlib import Path


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable:
    - allow all taskflow_sync logs
    - HTTP and Redis client chatter only at WARNING+ (unless debug_http)
    - any other third party only at ERROR+
    """

    def __init__(self, *, debug_http: bool = False) -> None:
        super().__init__()
        self._debug_http = debug_http

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("taskflow_sync"):
            return True

        if name.startswith(("httpx", "httpcore")):
            if self._debug_http:
                return True
            return record.levelno >= logging.WARNING

        if name.startswith("redis"):
            return record.levelno >= logging.WARNING

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    console_level: int | str = logging.INFO,
    log_dir: str | Path | None = None,
    file_level: int = logging.DEBUG,
    debug_http: bool = False,
) -> None:
    """
    Configure the root logger with:
    - Console handler: filtered for interactive use
    - File handler (only when log_dir is given): everything at file_level

    Call this once, early. Library code only ever uses module loggers.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter(debug_http=debug_http))
    root.addHandler(ch)

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_path / "taskflow.log"), encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    logging.captureWarnings(True)
