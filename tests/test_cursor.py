from __future__ import annotations

import base64

import pytest

from taxotree.cursor import InvalidCursorError, decode_cursor, encode_cursor
from taxotree.models import CursorKey


@pytest.mark.parametrize(
    "key",
    [
        CursorKey("beta", "0f343b0931126a20f133d67c2b018a3b"),
        CursorKey("", "x"),
        CursorKey("hot dog, red hot, wiener", "abc"),
        CursorKey("café crème", "id-1"),
        CursorKey('quote " and \\ slash', "id-2"),
        CursorKey("Mixed Case", "id-3"),
    ],
)
def test_roundtrip(key):
    assert decode_cursor(encode_cursor(key.label, key.id)) == key


def test_token_is_url_safe():
    token = encode_cursor("???>>>~~~", "ÿÿÿ")
    assert "=" not in token
    assert "+" not in token and "/" not in token


@pytest.mark.parametrize("token", [None, ""])
def test_absent_cursor_means_start(token):
    assert decode_cursor(token) is None


@pytest.mark.parametrize(
    "token",
    [
        "not-a-cursor",
        "!!!!",
        "a",
        base64.urlsafe_b64encode(b"[1, 2]").decode(),
        base64.urlsafe_b64encode(b'{"label": "x"}').decode(),
        base64.urlsafe_b64encode(b'{"label": 1, "id": "x"}').decode(),
        base64.urlsafe_b64encode(b"\xff\xfe").decode(),
        # characters outside the alphabet inside an otherwise valid token
        "eyJs$$$$YWJlbCI6ImJldGEiLCJpZCI6IngifQ",
        encode_cursor("beta", "x")[:10] + " " + encode_cursor("beta", "x")[10:],
        "café",
    ],
)
def test_malformed_cursor_is_an_error(token):
    with pytest.raises(InvalidCursorError):
        decode_cursor(token)


def test_invalid_cursor_is_a_value_error():
    assert issubclass(InvalidCursorError, ValueError)
