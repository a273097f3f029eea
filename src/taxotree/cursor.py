"""Opaque pagination cursors.

A cursor is the URL-safe base64 (padding stripped) of a compact JSON object
``{"label": <normalized label>, "id": <node id>}`` naming the last row of the
previous page. It marks a position in (label, id) order, never an offset.
"""

from __future__ import annotations

import base64
import binascii
import json

from taxotree.models import CursorKey


class InvalidCursorError(ValueError):
    """Cursor token is present but cannot be decoded. A client error."""


def encode_cursor(label: str, node_id: str) -> str:
    payload = json.dumps({"label": label, "id": node_id}, separators=(",", ":"), ensure_ascii=False)
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(token: str | None) -> CursorKey | None:
    """Return the cursor's key, or None when no cursor was given.

    Raises InvalidCursorError for anything that is not a well-formed token.
    """
    if not token:
        return None
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidCursorError(f"Invalid cursor format: {token!r}") from exc
    if not isinstance(data, dict):
        raise InvalidCursorError(f"Invalid cursor format: {token!r}")
    label, node_id = data.get("label"), data.get("id")
    if not isinstance(label, str) or not isinstance(node_id, str):
        raise InvalidCursorError(f"Invalid cursor format: {token!r}")
    return CursorKey(label, node_id)
