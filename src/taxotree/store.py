"""Build the SQLite node store from a flattened node stream.

The store is an adjacency table (each row points at its parent) with:
    idx_nodes_parent_sort   children of X in (sort_label, id) order
    idx_nodes_sort          all nodes in (sort_label, id) order, for search
    nodes_fts               FTS5 trigram index over sort_label, for substring search

Loading is all-or-nothing. A fresh database is built next to the live one and
swapped in with os.replace() only after every row, the FK check and the
single-root check succeed. Any error leaves the previous store untouched.

Entry points:
    bulk_load(nodes, db_path)   # full replace
    open_store(db_path)         # read-only connection for queries
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from itertools import islice
from typing import TYPE_CHECKING

from taxotree.db import connect_ro, connect_rw
from taxotree.models import normalize_label

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from taxotree.models import Node

logger = logging.getLogger("taxotree.store")

DEFAULT_BATCH_SIZE = 5000
_LOADING_SUFFIX = ".loading"


class StoreError(RuntimeError):
    """The store failed to load or answer a query. A server-side failure."""


class StoreNotReadyError(StoreError):
    """No loaded store at the configured path."""


@dataclass
class LoadStats:
    nodes: int
    root_id: str
    max_depth: int
    elapsed: float


def ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS nodes (
            id TEXT PRIMARY KEY,
            parent_id TEXT REFERENCES nodes(id) DEFERRABLE INITIALLY DEFERRED,
            label TEXT NOT NULL,
            sort_label TEXT NOT NULL,       -- lower(label), computed in Python
            path TEXT NOT NULL,
            descendant_count INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_nodes_parent_sort ON nodes(parent_id, sort_label, id);
        CREATE INDEX IF NOT EXISTS idx_nodes_sort ON nodes(sort_label, id);

        -- Trigram tokens make MATCH a substring search; rowid mirrors nodes.rowid
        CREATE VIRTUAL TABLE IF NOT EXISTS nodes_fts USING fts5(
            sort_label,
            tokenize = 'trigram'
        );

        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT
        );
    """)
    conn.commit()


def _loading_path(db_path: Path) -> Path:
    return db_path.with_name(db_path.name + _LOADING_SUFFIX)


def _remove_db_files(db_path: Path) -> None:
    for suffix in ("", "-journal", "-wal", "-shm"):
        db_path.with_name(db_path.name + suffix).unlink(missing_ok=True)


def _insert_batches(conn: sqlite3.Connection, nodes: Iterable[Node], batch_size: int) -> int:
    it = iter(nodes)
    total = 0
    while batch := list(islice(it, batch_size)):
        conn.executemany(
            "INSERT INTO nodes(id, parent_id, label, sort_label, path, descendant_count) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                (n.id, n.parent_id, n.label, normalize_label(n.label), n.path, n.descendant_count)
                for n in batch
            ],
        )
        total += len(batch)
        logger.debug("loaded %d nodes", total)
    return total


def _verify(conn: sqlite3.Connection, count: int) -> tuple[str, int]:
    """Check referential integrity, the single root and reachability.

    Returns (root id, max depth). A node whose ancestor chain never reaches
    the root sits on a parent cycle.
    """
    dangling = conn.execute("PRAGMA foreign_key_check(nodes)").fetchall()
    if dangling:
        msg = f"{len(dangling)} node(s) reference a missing parent"
        raise StoreError(msg)
    roots = conn.execute("SELECT id FROM nodes WHERE parent_id IS NULL LIMIT 2").fetchall()
    if len(roots) != 1:
        msg = f"expected exactly one root node, found {len(roots)}"
        raise StoreError(msg)
    root_id = roots[0][0]
    # Members of a parent cycle never join a walk that starts at the root
    reached, max_depth = conn.execute(
        """
        WITH RECURSIVE reachable(id, depth) AS (
            SELECT ?, 1
            UNION ALL
            SELECT n.id, r.depth + 1 FROM nodes n JOIN reachable r ON n.parent_id = r.id
        )
        SELECT COUNT(*), MAX(depth) FROM reachable
        """,
        (root_id,),
    ).fetchone()
    if reached != count:
        msg = f"{count - reached} node(s) not reachable from root (cycle)"
        raise StoreError(msg)
    return root_id, max_depth


def bulk_load(
    nodes: Iterable[Node],
    db_path: Path,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    source: str = "",
) -> LoadStats:
    """Replace the store at db_path with the given nodes, atomically.

    Exceptions from the nodes iterable (e.g. ParseError mid-stream) propagate
    unchanged; integrity failures raise StoreError. Either way the partially
    built file is discarded and db_path keeps its previous contents.
    """
    started = time.monotonic()
    tmp_path = _loading_path(db_path)
    _remove_db_files(tmp_path)

    logger.info("loading store %s", db_path)
    conn = connect_rw(tmp_path)
    try:
        # Scratch file: swapped in on success, deleted on failure
        conn.execute("PRAGMA journal_mode=OFF")
        conn.execute("PRAGMA synchronous=OFF")
        ensure_schema(conn)
        with conn:
            try:
                count = _insert_batches(conn, nodes, batch_size)
            except sqlite3.IntegrityError as exc:
                raise StoreError(f"duplicate node id: {exc}") from exc
            root_id, max_depth = _verify(conn, count)
            conn.execute("INSERT INTO nodes_fts(rowid, sort_label) SELECT rowid, sort_label FROM nodes")
            conn.executemany(
                "INSERT OR REPLACE INTO meta(key, value) VALUES (?, ?)",
                [
                    ("node_count", str(count)),
                    ("root_id", root_id),
                    ("max_depth", str(max_depth)),
                    ("loaded_at", datetime.now(UTC).isoformat()),
                    ("source", source),
                ],
            )
        conn.execute("ANALYZE")
    except sqlite3.Error as exc:
        conn.close()
        _remove_db_files(tmp_path)
        logger.error("load failed, previous store kept: %s", exc)
        raise StoreError(f"failed to build store: {exc}") from exc
    except BaseException:
        conn.close()
        _remove_db_files(tmp_path)
        logger.error("load aborted, previous store kept")
        raise
    conn.close()

    # Stale journal files from a previous store must not be paired with the new file
    for suffix in ("-journal", "-wal", "-shm"):
        db_path.with_name(db_path.name + suffix).unlink(missing_ok=True)
    os.replace(tmp_path, db_path)

    elapsed = time.monotonic() - started
    stats = LoadStats(nodes=count, root_id=root_id, max_depth=max_depth, elapsed=elapsed)
    logger.info("store ready: %d nodes, max depth %d, %.2fs", stats.nodes, stats.max_depth, stats.elapsed)
    return stats


def open_store(db_path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Read-only connection to a loaded store."""
    if not db_path.exists() or db_path.stat().st_size == 0:
        msg = f"no node store at {db_path}; run `taxotree ingest <file.xml>` first"
        raise StoreNotReadyError(msg)
    try:
        conn = connect_ro(db_path, check_same_thread=check_same_thread)
    except sqlite3.Error as exc:
        raise StoreNotReadyError(f"cannot open node store at {db_path}: {exc}") from exc
    try:
        conn.execute("SELECT 1 FROM nodes LIMIT 1")
    except sqlite3.Error as exc:
        conn.close()
        raise StoreNotReadyError(f"node store at {db_path} is not readable: {exc}") from exc
    return conn


def store_info(conn: sqlite3.Connection) -> dict[str, str]:
    """Return load metadata: node_count, root_id, max_depth, loaded_at, source."""
    try:
        rows = conn.execute("SELECT key, value FROM meta").fetchall()
    except sqlite3.Error as exc:
        raise StoreError(str(exc)) from exc
    return {r[0]: r[1] for r in rows}
