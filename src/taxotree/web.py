"""JSON HTTP API over the node store.

Routes:
    GET /                                  → service info
    GET /entries                           → root node
    GET /entries/<id>/children?limit&cursor → one page of direct children
    GET /entries/search?q&limit&cursor      → one page of matches + their ancestors

Every node payload carries ``childrenUrl`` (null for leaves). Pagination
blocks carry ``nextCursor`` plus a ready-made next-page URL when hasMore.
"""

from __future__ import annotations

import json
import logging
import socketserver
import urllib.parse
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any

from taxotree.cursor import InvalidCursorError
from taxotree.queries import get_children, get_root, search
from taxotree.store import StoreError, StoreNotReadyError, open_store, store_info

if TYPE_CHECKING:
    import sqlite3

    from taxotree.config import TaxoConfig
    from taxotree.models import Node

logger = logging.getLogger("taxotree.web")

_CHILDREN_PREFIX = "/entries/"
_CHILDREN_SUFFIX = "/children"


class _BadRequest(Exception):
    pass


def _children_url(node_id: str) -> str:
    return f"{_CHILDREN_PREFIX}{urllib.parse.quote(node_id)}{_CHILDREN_SUFFIX}"


def _node_payload(node: Node) -> dict[str, Any]:
    d = node.to_dict()
    d["childrenUrl"] = _children_url(node.id) if node.has_children else None
    return d


# ─── HTTP handler ─────────────────────────────────────────────────────────────

class _Handler(BaseHTTPRequestHandler):
    cfg: TaxoConfig  # injected via make_handler()

    def do_GET(self) -> None:  # noqa: N802
        parsed = urllib.parse.urlparse(self.path)
        path = parsed.path.rstrip("/") or "/"
        qs = urllib.parse.parse_qs(parsed.query)
        try:
            if path == "/":
                self._info()
            elif path == "/entries":
                self._root()
            elif path == "/entries/search":
                self._search(qs)
            elif path.startswith(_CHILDREN_PREFIX) and path.endswith(_CHILDREN_SUFFIX):
                node_id = urllib.parse.unquote(path[len(_CHILDREN_PREFIX):-len(_CHILDREN_SUFFIX)])
                if not node_id or "/" in node_id:
                    self._json({"error": f"Not found: {parsed.path}"}, 404)
                else:
                    self._children(node_id, qs)
            else:
                self._json({"error": f"Not found: {parsed.path}"}, 404)
        except _BadRequest as exc:
            self._json({"error": str(exc)}, 400)
        except InvalidCursorError:
            self._json({"error": "Invalid cursor format"}, 400)
        except StoreNotReadyError as exc:
            self._json({"error": str(exc)}, 503)
        except StoreError:
            logger.exception("store failure on %s", self.path)
            self._json({"error": "Internal server error"}, 500)

    def do_OPTIONS(self) -> None:  # noqa: N802
        self.send_response(204)
        self._cors_headers()
        self.send_header("Access-Control-Allow-Methods", "GET, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.send_header("Content-Length", "0")
        self.end_headers()

    # ─── routes ──────────────────────────────────────────────────────────────

    def _conn(self) -> sqlite3.Connection:
        return open_store(self.cfg.db_path)

    def _info(self) -> None:
        conn = self._conn()
        try:
            info = store_info(conn)
        finally:
            conn.close()
        self._json({"message": "taxotree API", "name": self.cfg.name, "nodes": int(info.get("node_count", 0))})

    def _root(self) -> None:
        conn = self._conn()
        try:
            root = get_root(conn)
        finally:
            conn.close()
        if root is None:
            self._json({"error": "Root entry not found"}, 404)
            return
        self._json({"data": _node_payload(root)})

    def _children(self, node_id: str, qs: dict[str, list[str]]) -> None:
        limit = self._limit(qs)
        cursor = qs.get("cursor", [""])[0] or None
        conn = self._conn()
        try:
            page = get_children(conn, node_id, limit=limit, cursor=cursor)
        finally:
            conn.close()
        pagination = page.pagination_dict()
        if page.next_cursor:
            pagination["nextChildrenUrl"] = (
                f"{_children_url(node_id)}?"
                + urllib.parse.urlencode({"limit": limit, "cursor": page.next_cursor})
            )
        self._json({"data": [_node_payload(n) for n in page.nodes], "pagination": pagination})

    def _search(self, qs: dict[str, list[str]]) -> None:
        limit = self._limit(qs)
        q = qs.get("q", [""])[0]
        cursor = qs.get("cursor", [""])[0] or None
        if not q.strip():
            self._json({"data": [], "pagination": {"limit": limit, "hasMore": False}})
            return
        conn = self._conn()
        try:
            page = search(conn, q, limit=limit, cursor=cursor)
        finally:
            conn.close()
        data = []
        for n in page.nodes:
            d = _node_payload(n)
            d["match"] = page.is_match(n)
            data.append(d)
        pagination = page.pagination_dict()
        if page.next_cursor:
            pagination["nextSearchUrl"] = "/entries/search?" + urllib.parse.urlencode(
                {"q": q, "limit": limit, "cursor": page.next_cursor}
            )
        self._json({"data": data, "pagination": pagination})

    def _limit(self, qs: dict[str, list[str]]) -> int:
        """Missing or non-numeric → configured default; < 1 → 400; capped at max_limit."""
        raw = qs.get("limit", [""])[0].strip()
        try:
            value: int | None = int(raw) if raw else None
        except ValueError:
            value = None
        if value is not None and value < 1:
            msg = f"limit must be a positive integer, got {value}"
            raise _BadRequest(msg)
        return self.cfg.clamp_limit(value)

    # ─── responses ───────────────────────────────────────────────────────────

    def _cors_headers(self) -> None:
        if self.cfg.server.cors_origin:
            self.send_header("Access-Control-Allow-Origin", self.cfg.server.cors_origin)

    def _json(self, payload: object, status: int = 200) -> None:
        encoded = json.dumps(payload, ensure_ascii=False).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self._cors_headers()
        self.end_headers()
        self.wfile.write(encoded)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.info("%s %s", self.address_string(), format % args)


class _ThreadingHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


def make_handler(cfg: TaxoConfig) -> type[_Handler]:
    class _Bound(_Handler):
        pass
    _Bound.cfg = cfg
    return _Bound


def make_server(cfg: TaxoConfig, host: str, port: int) -> HTTPServer:
    """Bind the API server without starting it (port 0 picks a free port)."""
    return _ThreadingHTTPServer((host, port), make_handler(cfg))


def serve(cfg: TaxoConfig, host: str, port: int) -> None:
    """Start the API server (blocking until Ctrl+C)."""
    server = make_server(cfg, host, port)
    bound_host, bound_port = server.server_address[:2]
    print(f"taxotree api  →  http://{bound_host}:{bound_port}  (Ctrl+C to stop)")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
