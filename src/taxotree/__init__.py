"""Flattened taxonomy store: streaming XML ingest, SQLite adjacency table, paginated queries.

Layout:
    taxotree.toml
    .taxotree/
        index/
            tree.db       # SQLite: nodes(id, parent_id, label, ...) + FTS5 trigram index

Pipeline:
    iter_nodes(xml)  →  bulk_load(nodes, db_path)  →  get_children / search / get_root

Node ids are md5("<wnid>::<full path>") so they are stable across re-ingests
of the same file. Cursors are opaque (label, id) keys, never offsets.
"""

from taxotree.config import TaxoConfig, init_config, load_config
from taxotree.cursor import InvalidCursorError, decode_cursor, encode_cursor
from taxotree.flattener import ParseError, flatten, iter_nodes
from taxotree.models import CursorKey, Node, Page, SearchPage, node_id
from taxotree.queries import get_children, get_node, get_root, search
from taxotree.store import StoreError, StoreNotReadyError, bulk_load, open_store
from taxotree.tree import TreeNode, build_tree

__all__ = [
    "CursorKey",
    "InvalidCursorError",
    "Node",
    "Page",
    "ParseError",
    "SearchPage",
    "StoreError",
    "StoreNotReadyError",
    "TaxoConfig",
    "TreeNode",
    "build_tree",
    "bulk_load",
    "decode_cursor",
    "encode_cursor",
    "flatten",
    "get_children",
    "get_node",
    "get_root",
    "init_config",
    "iter_nodes",
    "load_config",
    "node_id",
    "open_store",
    "search",
]
