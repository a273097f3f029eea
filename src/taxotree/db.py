"""SQLite connections for the node store."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


def connect_rw(db_path: Path) -> sqlite3.Connection:
    """Open a writable connection with foreign key enforcement.

    Used by the loader only; the live store is never written in place.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def connect_ro(db_path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open db read-only: no write lock, safe for any number of concurrent readers."""
    conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    return conn

