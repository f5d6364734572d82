"""
Logging configuration: rich console output plus one log file per service.
"""

import logging
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

from config import LOG_DIR, LOG_FORMAT, LOG_LEVEL, FILE_ENCODING

_installed: List[logging.Handler] = []


def setup_logging(
    service: str,
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
    console: Optional[Console] = None,
) -> Path:
    """
    Configure the root logger for a service run.

    Installs a RichHandler for the terminal and a FileHandler writing
    ``<log_dir>/<service>.log``. Calling it again replaces the handlers
    installed by the previous call.

    Returns:
        Path of the log file.
    """
    log_dir = Path(log_dir or LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{service}.log"

    root = logging.getLogger()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()

    console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    console_handler.setFormatter(logging.Formatter("%(message)s"))

    file_handler = logging.FileHandler(log_file, encoding=FILE_ENCODING)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    for handler in (console_handler, file_handler):
        root.addHandler(handler)
        _installed.append(handler)

    root.setLevel((level or LOG_LEVEL).upper())

    # aiohttp is chatty at DEBUG
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    return log_file
