"""
Location of the scheduler's on-disk state and built-in defaults.

Environment variables:
- RAT_DB: explicit path of the SQLite database file
- RAT_DATA_DIR: directory holding rat.db (default: $XDG_DATA_HOME/rat)
- RAT_LOG_FILE: optional log file used by the CLI
"""

import os
from pathlib import Path

APP_NAME = "rat"
DB_FILENAME = "rat.db"

DEFAULT_POLL_INTERVAL = 1.0
POLL_INTERVAL_KEY = "poll_interval"


def get_data_dir() -> Path:
    """Get the data directory for the job database."""
    data_dir = os.environ.get("RAT_DATA_DIR")
    if data_dir:
        return Path(data_dir).expanduser()

    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    if xdg_data_home:
        return Path(xdg_data_home).expanduser() / APP_NAME

    return Path.home() / ".local" / "share" / APP_NAME


def get_db_path() -> Path:
    """Get the path to the job database."""
    db_path = os.environ.get("RAT_DB")
    if db_path:
        return Path(db_path).expanduser()
    return get_data_dir() / DB_FILENAME


def get_log_file():
    log_file = os.environ.get("RAT_LOG_FILE")
    return Path(log_file).expanduser() if log_file else None


def ensure_data_dir(db_path: Path) -> Path:
    """Create the directory that will hold the database, if missing."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path
