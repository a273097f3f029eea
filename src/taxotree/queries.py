"""Read queries over the node store: root, children pages, search with ancestors.

Children and search matches share one total order, (sort_label, id). Labels
repeat among siblings, so the id tiebreak is what keeps keyset pagination from
skipping or repeating rows at page boundaries.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from taxotree.cursor import decode_cursor, encode_cursor
from taxotree.models import DEFAULT_LIMIT, Node, Page, SearchPage, normalize_label
from taxotree.store import StoreError

if TYPE_CHECKING:
    from taxotree.models import CursorKey

logger = logging.getLogger("taxotree.queries")

_NODE_COLUMNS = "id, parent_id, label, descendant_count, path"
_AFTER_CURSOR = "AND (sort_label > ? OR (sort_label = ? AND id > ?))"
# Trigram FTS only matches terms of 3+ characters; shorter terms scan
_MIN_FTS_TERM = 3


def _row_to_node(row: sqlite3.Row | tuple) -> Node:
    return Node(id=row[0], parent_id=row[1], label=row[2], descendant_count=row[3], path=row[4])


def _check_limit(limit: int) -> None:
    if limit < 1:
        msg = f"limit must be a positive integer, got {limit}"
        raise ValueError(msg)


def _cursor_params(key: CursorKey | None) -> tuple[str, list[str]]:
    if key is None:
        return "", []
    label = normalize_label(key.label)
    return _AFTER_CURSOR, [label, label, key.id]


def _paginate(rows: list[Node], limit: int) -> tuple[list[Node], bool, str | None]:
    """Trim the limit+1 probe row; derive hasMore and the next cursor."""
    if len(rows) <= limit:
        return rows, False, None
    kept = rows[:limit]
    last = kept[-1].sort_key
    return kept, True, encode_cursor(last.label, last.id)


def get_root(conn: sqlite3.Connection) -> Node | None:
    try:
        row = conn.execute(
            f"SELECT {_NODE_COLUMNS} FROM nodes WHERE parent_id IS NULL LIMIT 1"  # noqa: S608
        ).fetchone()
    except sqlite3.Error as exc:
        raise StoreError(f"root lookup failed: {exc}") from exc
    return _row_to_node(row) if row else None


def get_node(conn: sqlite3.Connection, node_id: str) -> Node | None:
    try:
        row = conn.execute(
            f"SELECT {_NODE_COLUMNS} FROM nodes WHERE id = ?", (node_id,)  # noqa: S608
        ).fetchone()
    except sqlite3.Error as exc:
        raise StoreError(f"node lookup failed: {exc}") from exc
    return _row_to_node(row) if row else None


def get_children(
    conn: sqlite3.Connection,
    parent_id: str,
    limit: int = DEFAULT_LIMIT,
    cursor: str | None = None,
) -> Page:
    """One page of parent_id's direct children in (label, id) order.

    An unknown parent_id yields an empty page, not an error. Raises
    InvalidCursorError for a malformed cursor and StoreError if the query fails.
    """
    _check_limit(limit)
    where_after, after_params = _cursor_params(decode_cursor(cursor))
    sql = (
        f"SELECT {_NODE_COLUMNS} FROM nodes "  # noqa: S608
        f"WHERE parent_id = ? {where_after} "
        "ORDER BY sort_label ASC, id ASC LIMIT ?"
    )
    try:
        rows = conn.execute(sql, [parent_id, *after_params, limit + 1]).fetchall()
    except sqlite3.Error as exc:
        raise StoreError(f"children query failed: {exc}") from exc

    nodes, has_more, next_cursor = _paginate([_row_to_node(r) for r in rows], limit)
    return Page(nodes=nodes, limit=limit, has_more=has_more, next_cursor=next_cursor)


def _match_clause(term: str) -> tuple[str, str]:
    """WHERE fragment + parameter for a case-insensitive substring match."""
    if len(term) >= _MIN_FTS_TERM:
        phrase = '"' + term.replace('"', '""') + '"'
        return "rowid IN (SELECT rowid FROM nodes_fts WHERE nodes_fts MATCH ?)", phrase
    return "instr(sort_label, ?) > 0", term


def _fetch_matches(
    conn: sqlite3.Connection, term: str, key: CursorKey | None, limit: int
) -> list[Node]:
    match_sql, match_param = _match_clause(term)
    where_after, after_params = _cursor_params(key)
    sql = (
        f"SELECT {_NODE_COLUMNS} FROM nodes "  # noqa: S608
        f"WHERE {match_sql} {where_after} "
        "ORDER BY sort_label ASC, id ASC LIMIT ?"
    )
    rows = conn.execute(sql, [match_param, *after_params, limit + 1]).fetchall()
    return [_row_to_node(r) for r in rows]


def _fetch_ancestor_paths(conn: sqlite3.Connection, matches: list[Node]) -> list[tuple[int, Node]]:
    """Walk parent links from every match to the root.

    Returns (match_rank, node) rows ordered by match, then root → match.
    A shared ancestor appears once per match that reaches it.
    """
    if not matches:
        return []
    seeds = ",".join("(?, ?)" for _ in matches)
    params: list[object] = []
    for rank, m in enumerate(matches):
        params.extend((rank, m.id))
    sql = f"""
        WITH RECURSIVE
        seeds(match_rank, id) AS (VALUES {seeds}),
        ancestry(match_rank, depth, id, parent_id, label, descendant_count, path) AS (
            SELECT s.match_rank, 0, n.id, n.parent_id, n.label, n.descendant_count, n.path
            FROM seeds s JOIN nodes n ON n.id = s.id
            UNION ALL
            SELECT a.match_rank, a.depth + 1, n.id, n.parent_id, n.label, n.descendant_count, n.path
            FROM ancestry a JOIN nodes n ON n.id = a.parent_id
        )
        SELECT match_rank, id, parent_id, label, descendant_count, path
        FROM ancestry
        ORDER BY match_rank ASC, depth DESC
    """  # noqa: S608
    rows = conn.execute(sql, params).fetchall()
    return [(r[0], _row_to_node(tuple(r)[1:])) for r in rows]


def search(
    conn: sqlite3.Connection,
    q: str | None,
    limit: int = DEFAULT_LIMIT,
    cursor: str | None = None,
) -> SearchPage:
    """One page of label matches for q, plus every ancestor of every match.

    Matches are paginated in (label, id) order; hasMore looks at matches only.
    Output nodes are grouped per match (root first, match last) and
    deduplicated by id, so a shared ancestor is emitted once, in the first
    group that reaches it.
    """
    _check_limit(limit)
    term = normalize_label(q.strip()) if q else ""
    if not term:
        return SearchPage(limit=limit)
    key = decode_cursor(cursor)

    try:
        matches = _fetch_matches(conn, term, key, limit)
        matches, has_more, next_cursor = _paginate(matches, limit)
        paths = _fetch_ancestor_paths(conn, matches)
    except sqlite3.Error as exc:
        logger.exception("search failed for %r", term)
        raise StoreError(f"search query failed: {exc}") from exc

    seen: set[str] = set()
    nodes: list[Node] = []
    for _rank, node in paths:
        if node.id in seen:
            continue
        seen.add(node.id)
        nodes.append(node)

    return SearchPage(
        nodes=nodes,
        limit=limit,
        has_more=has_more,
        next_cursor=next_cursor,
        match_ids=[m.id for m in matches],
    )
