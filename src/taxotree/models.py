"""Data models for the flattened taxonomy."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, NamedTuple

# Joins ancestor labels into a node's full path: "Root > Alpha > Beta"
PATH_SEPARATOR = " > "

DEFAULT_LIMIT = 10


def node_id(disambiguator: str, path_label: str) -> str:
    """Return the stable id for a node: md5 hex of '<disambiguator>::<path>'.

    The path alone is not unique (two synsets can share a label path), so the
    source id is folded in.
    """
    key = f"{disambiguator}::{path_label}"
    return hashlib.md5(key.encode("utf-8")).hexdigest()  # noqa: S324


def normalize_label(label: str) -> str:
    """Case-insensitive sort/search key for a label."""
    return label.lower()


class CursorKey(NamedTuple):
    """Composite pagination position: (normalized label, id)."""

    label: str
    id: str


@dataclass
class Node:
    """One row of the flattened hierarchy."""

    id: str
    parent_id: str | None
    label: str                 # own segment only, not the full path
    descendant_count: int = 0  # subtree size excluding self; 0 = leaf
    path: str = ""             # "Root > Alpha > Beta"

    @property
    def has_children(self) -> bool:
        return self.descendant_count > 0

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def sort_key(self) -> CursorKey:
        return CursorKey(normalize_label(self.label), self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "parentId": self.parent_id,
            "label": self.label,
            "path": self.path,
            "descendantCount": self.descendant_count,
        }


@dataclass
class Page:
    """One bounded, resumable slice of an ordered node set."""

    nodes: list[Node] = field(default_factory=list)
    limit: int = DEFAULT_LIMIT
    has_more: bool = False
    next_cursor: str | None = None

    def pagination_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"limit": self.limit, "hasMore": self.has_more}
        if self.next_cursor:
            d["nextCursor"] = self.next_cursor
        return d


@dataclass
class SearchPage(Page):
    """A page of search matches plus the ancestors needed to place them."""

    match_ids: list[str] = field(default_factory=list)

    @property
    def matches(self) -> list[Node]:
        wanted = set(self.match_ids)
        return [n for n in self.nodes if n.id in wanted]

    def is_match(self, node: Node) -> bool:
        return node.id in self.match_ids
