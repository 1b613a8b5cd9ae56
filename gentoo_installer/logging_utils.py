from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from .lib.env import PATHS

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"
FALLBACK_LOG = "gentoo-installer.log"


def default_log_path(state_dir: str, *, now: Optional[datetime] = None) -> str:
    """One log file per invocation: <state_dir>/install-YYYYmmdd-HHMMSS.log."""

    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return str(Path(state_dir) / f"{PATHS.log_prefix}-{stamp}.log")


def _open_log_file(log_path: str) -> tuple[logging.Handler, str]:
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        # read-only media or a state dir we cannot create
        fallback = str(Path.cwd() / FALLBACK_LOG)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Send every record to the per-run log file and a short form to stderr.

    The file always captures DEBUG so a failed phase can be diagnosed after
    the fact; ``level`` only governs the console. Calling this twice keeps
    the first configuration.

    Returns the log file actually opened.
    """

    root = logging.getLogger()
    if getattr(root, "_gentoo_installer_log_path", None):
        return root._gentoo_installer_log_path

    root.setLevel(logging.DEBUG)

    file_handler, chosen_path = _open_log_file(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT))
        root.addHandler(console)

    root._gentoo_installer_log_path = chosen_path
    if chosen_path != log_path:
        logging.getLogger(__name__).warning("Cannot write %s, logging to %s", log_path, chosen_path)
    return chosen_path
