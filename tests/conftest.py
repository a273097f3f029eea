"""Shared fixtures: small taxonomy documents and loaded stores."""

from __future__ import annotations

import random
from xml.sax.saxutils import quoteattr

import pytest

from taxotree.flattener import iter_nodes
from taxotree.store import bulk_load, open_store

# Root(w0) > Alpha(w1) > {Beta(w2), Beta(w3)} inside a wrapper with release metadata
EXAMPLE_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<ImageNetStructure>
  <releaseData>fall2011</releaseData>
  <synset wnid="w0" words="Root">
    <synset wnid="w1" words="Alpha">
      <synset wnid="w2" words="Beta"/>
      <synset wnid="w3" words="Beta"/>
    </synset>
  </synset>
</ImageNetStructure>
"""


def synset_xml(tree: tuple) -> bytes:
    """Render (wnid, words, [children...]) tuples as nested <synset> elements.

    Iterative so very deep trees can be generated.
    """
    parts: list[str] = ["<ImageNetStructure>"]
    stack: list[tuple | str] = [tree]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            parts.append(item)
            continue
        wnid, words, kids = item
        parts.append(f"<synset wnid={quoteattr(wnid)} words={quoteattr(words)}>")
        stack.append("</synset>")
        stack.extend(reversed(kids))
    parts.append("</ImageNetStructure>")
    return "".join(parts).encode("utf-8")


def random_tree(seed: int, size: int, labels: list[str]) -> tuple:
    """Random tree of `size` nodes with labels drawn (and repeated) from `labels`."""
    rng = random.Random(seed)
    root: tuple = ("n0", "Root", [])
    all_nodes = [root]
    for i in range(1, size):
        parent = rng.choice(all_nodes)
        node: tuple = (f"n{i}", rng.choice(labels), [])
        parent[2].append(node)
        all_nodes.append(node)
    return root


# Siblings whose labels collide case-insensitively, each with a few children
DUPLICATE_SIBLINGS = (
    "r", "Animals",
    [
        ("c1", "cat", [("c1a", "tabby", []), ("c1b", "Siamese", [])]),
        ("c2", "Cat", []),
        ("c3", "dog", [("c3a", "beagle", [])]),
        ("c4", "cat", []),
        ("c5", "ant", []),
        ("c6", "Dog", [("c6a", "hot dog", [])]),
        ("c7", "bee", []),
        ("c8", "CAT", []),
    ],
)


@pytest.fixture
def example_xml(tmp_path):
    path = tmp_path / "structure.xml"
    path.write_bytes(EXAMPLE_XML)
    return path


@pytest.fixture
def make_store(tmp_path):
    """Load XML bytes into a fresh store; returns the db path."""
    counter = iter(range(1000))

    def _make(xml: bytes, name: str | None = None):
        n = next(counter)
        src = tmp_path / f"input{n}.xml"
        src.write_bytes(xml)
        db_path = tmp_path / (name or f"tree{n}.db")
        bulk_load(iter_nodes(src), db_path)
        return db_path

    return _make


@pytest.fixture
def example_conn(make_store):
    conn = open_store(make_store(EXAMPLE_XML))
    yield conn
    conn.close()


@pytest.fixture
def dup_conn(make_store):
    conn = open_store(make_store(synset_xml(DUPLICATE_SIBLINGS)))
    yield conn
    conn.close()
