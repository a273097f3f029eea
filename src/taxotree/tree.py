"""Rebuild a nested tree from a flat, parent-linked node set.

Works on a full export or on a search page: parent links are self-describing,
so the order rows arrive in does not matter.

Time O(n), space O(n).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from taxotree.models import Node

logger = logging.getLogger("taxotree.tree")


@dataclass
class TreeNode:
    node: Node
    children: list[TreeNode] = field(default_factory=list)

    def walk(self) -> Iterator[tuple[int, TreeNode]]:
        """Yield (depth, TreeNode) pre-order, iteratively."""
        stack: list[tuple[int, TreeNode]] = [(0, self)]
        while stack:
            depth, tn = stack.pop()
            yield depth, tn
            stack.extend((depth + 1, c) for c in reversed(tn.children))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        pending: list[tuple[TreeNode, dict[str, Any]]] = [(self, out)]
        while pending:
            tn, d = pending.pop()
            d.update(id=tn.node.id, label=tn.node.label, descendantCount=tn.node.descendant_count)
            d["children"] = [{} for _ in tn.children]
            pending.extend(zip(tn.children, d["children"], strict=True))
        return out


def build_tree(nodes: Iterable[Node]) -> TreeNode | None:
    """Link nodes under their parents and return the root, or None if absent.

    Nodes whose parent is not in the set are logged and dropped.
    """
    by_id: dict[str, TreeNode] = {}
    for n in nodes:
        by_id.setdefault(n.id, TreeNode(n))

    root: TreeNode | None = None
    for tn in by_id.values():
        parent_id = tn.node.parent_id
        if parent_id is None:
            root = tn
            continue
        parent = by_id.get(parent_id)
        if parent is None:
            logger.warning("parent %s not found for node %s", parent_id, tn.node.id)
            continue
        parent.children.append(tn)
    return root
