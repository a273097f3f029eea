from __future__ import annotations

import sqlite3

import pytest
from conftest import random_tree, synset_xml

from taxotree.cursor import InvalidCursorError, encode_cursor
from taxotree.models import node_id
from taxotree.queries import get_children, get_node, get_root, search
from taxotree.store import StoreError, open_store

ROOT_ID = node_id("w0", "Root")
ALPHA_ID = node_id("w1", "Root > Alpha")
BETA_IDS = sorted([node_id("w2", "Root > Alpha > Beta"), node_id("w3", "Root > Alpha > Beta")])


def _all_children(conn, parent_id: str, limit: int) -> tuple[list[str], int]:
    """Follow cursors to the end; returns (ids, number of pages)."""
    ids: list[str] = []
    cursor = None
    pages = 0
    while True:
        page = get_children(conn, parent_id, limit=limit, cursor=cursor)
        pages += 1
        assert len(page.nodes) <= limit
        ids.extend(n.id for n in page.nodes)
        if not page.has_more:
            assert page.next_cursor is None
            return ids, pages
        cursor = page.next_cursor


def _parent_closed(page) -> bool:
    ids = {n.id for n in page.nodes}
    return all(n.parent_id is None or n.parent_id in ids for n in page.nodes)


class TestRoot:
    def test_get_root(self, example_conn):
        root = get_root(example_conn)
        assert root.id == ROOT_ID
        assert root.label == "Root"
        assert root.parent_id is None
        assert root.descendant_count == 3

    def test_get_node(self, example_conn):
        alpha = get_node(example_conn, ALPHA_ID)
        assert alpha.label == "Alpha"
        assert alpha.path == "Root > Alpha"
        assert alpha.descendant_count == 2
        assert get_node(example_conn, "nope") is None


class TestChildren:
    def test_first_page_breaks_label_tie_by_id(self, example_conn):
        page = get_children(example_conn, ALPHA_ID, limit=1)
        assert [n.id for n in page.nodes] == [BETA_IDS[0]]
        assert page.has_more
        assert page.next_cursor

    def test_cursor_resumes_after_tie(self, example_conn):
        first = get_children(example_conn, ALPHA_ID, limit=1)
        second = get_children(example_conn, ALPHA_ID, limit=1, cursor=first.next_cursor)
        assert [n.id for n in second.nodes] == [BETA_IDS[1]]
        assert not second.has_more
        assert second.next_cursor is None

    def test_exact_fit_has_no_more(self, example_conn):
        page = get_children(example_conn, ALPHA_ID, limit=2)
        assert [n.id for n in page.nodes] == BETA_IDS
        assert not page.has_more

    def test_root_children(self, example_conn):
        page = get_children(example_conn, ROOT_ID)
        assert [n.id for n in page.nodes] == [ALPHA_ID]
        assert page.limit == 10

    def test_unknown_parent_is_empty(self, example_conn):
        page = get_children(example_conn, "does-not-exist")
        assert page.nodes == []
        assert not page.has_more
        assert page.next_cursor is None

    def test_leaf_has_no_children(self, example_conn):
        assert get_children(example_conn, BETA_IDS[0]).nodes == []

    def test_order_is_case_insensitive(self, dup_conn):
        root = get_root(dup_conn)
        page = get_children(dup_conn, root.id, limit=200)
        labels = [n.label.lower() for n in page.nodes]
        assert labels == ["ant", "bee", "cat", "cat", "cat", "cat", "dog", "dog"]
        keys = [n.sort_key for n in page.nodes]
        assert keys == sorted(keys)

    @pytest.mark.parametrize("limit", [1, 2, 3, 4, 7, 8])
    def test_pages_concatenate_to_full_listing(self, dup_conn, limit):
        root = get_root(dup_conn)
        full = [n.id for n in get_children(dup_conn, root.id, limit=200).nodes]
        ids, pages = _all_children(dup_conn, root.id, limit)
        assert ids == full
        assert len(set(ids)) == len(ids)
        assert pages == -(-len(full) // limit)

    def test_cursor_label_case_is_ignored(self, example_conn):
        cursor = encode_cursor("BETA", BETA_IDS[0])
        page = get_children(example_conn, ALPHA_ID, cursor=cursor)
        assert [n.id for n in page.nodes] == [BETA_IDS[1]]

    def test_invalid_cursor(self, example_conn):
        with pytest.raises(InvalidCursorError):
            get_children(example_conn, ALPHA_ID, cursor="not-a-cursor")

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit(self, example_conn, limit):
        with pytest.raises(ValueError, match="limit"):
            get_children(example_conn, ALPHA_ID, limit=limit)

    def test_closed_connection_is_store_error(self):
        conn = sqlite3.connect(":memory:")
        conn.close()
        with pytest.raises(StoreError):
            get_children(conn, "x")


class TestSearch:
    def test_matches_with_ancestors(self, example_conn):
        page = search(example_conn, "Beta")
        assert [n.id for n in page.nodes] == [ROOT_ID, ALPHA_ID, *BETA_IDS]
        assert page.match_ids == BETA_IDS
        assert [n.id for n in page.matches] == BETA_IDS
        assert not page.has_more
        assert _parent_closed(page)

    def test_case_insensitive(self, example_conn):
        ids = [n.id for n in search(example_conn, "beta").nodes]
        assert [n.id for n in search(example_conn, "BETA").nodes] == ids
        assert [n.id for n in search(example_conn, "  bEtA ").nodes] == ids

    def test_substring_match(self, example_conn):
        page = search(example_conn, "lph")
        assert page.match_ids == [ALPHA_ID]
        assert [n.id for n in page.nodes] == [ROOT_ID, ALPHA_ID]

    def test_short_term_scans_labels(self, example_conn):
        page = search(example_conn, "oo")
        assert page.match_ids == [ROOT_ID]
        assert [n.id for n in page.nodes] == [ROOT_ID]

    def test_no_match(self, example_conn):
        page = search(example_conn, "zzz")
        assert page.nodes == []
        assert not page.has_more

    @pytest.mark.parametrize("q", [None, "", "   "])
    def test_empty_query_does_not_touch_store(self, q):
        conn = sqlite3.connect(":memory:")
        conn.close()
        page = search(conn, q, cursor="garbage")
        assert page.nodes == []
        assert not page.has_more
        assert page.next_cursor is None

    def test_shared_ancestor_emitted_once(self, dup_conn):
        page = search(dup_conn, "dog")
        ids = [n.id for n in page.nodes]
        assert len(ids) == len(set(ids))
        assert len(page.match_ids) == 3
        # "hot dog" sits under one of the matched "Dog" nodes
        assert len(page.nodes) == 4
        assert page.nodes[0].label == "Animals"
        assert page.nodes[-1].label == "hot dog"
        assert _parent_closed(page)

    def test_short_and_long_terms_agree(self, dup_conn):
        assert search(dup_conn, "do").match_ids == search(dup_conn, "dog").match_ids

    def test_matches_in_label_id_order(self, dup_conn):
        page = search(dup_conn, "cat", limit=200)
        keys = [n.sort_key for n in page.matches]
        assert len(keys) == 4
        assert keys == sorted(keys)

    def test_pagination_over_matches(self, dup_conn):
        first = search(dup_conn, "cat", limit=3)
        assert len(first.match_ids) == 3
        assert first.has_more
        assert _parent_closed(first)

        second = search(dup_conn, "cat", limit=3, cursor=first.next_cursor)
        assert len(second.match_ids) == 1
        assert not second.has_more
        assert second.next_cursor is None
        assert _parent_closed(second)

        everything = search(dup_conn, "cat", limit=200).match_ids
        assert first.match_ids + second.match_ids == everything

    def test_ancestors_follow_each_match(self, dup_conn):
        page = search(dup_conn, "beagle")
        assert [n.label for n in page.nodes] == ["Animals", "dog", "beagle"]

    def test_quotes_in_term(self, example_conn):
        assert search(example_conn, 'be"ta').nodes == []

    def test_invalid_cursor(self, example_conn):
        with pytest.raises(InvalidCursorError):
            search(example_conn, "beta", cursor="not-a-cursor")

    def test_non_positive_limit(self, example_conn):
        with pytest.raises(ValueError, match="limit"):
            search(example_conn, "beta", limit=0)

    def test_closed_connection_is_store_error(self):
        conn = sqlite3.connect(":memory:")
        conn.close()
        with pytest.raises(StoreError):
            search(conn, "beta")


class TestSearchOnRandomTree:
    @pytest.fixture
    def random_conn(self, make_store):
        tree = random_tree(seed=7, size=300, labels=["alpha", "Beta", "gamma", "alphabet", "ab"])
        conn = open_store(make_store(synset_xml(tree)))
        yield conn
        conn.close()

    @pytest.mark.parametrize(("q", "limit"), [("alp", 4), ("BET", 7), ("ab", 5), ("mm", 50)])
    def test_every_ancestor_leads_to_a_match(self, random_conn, q, limit):
        seen_matches: list[str] = []
        cursor = None
        while True:
            page = search(random_conn, q, limit=limit, cursor=cursor)
            by_id = {n.id: n for n in page.nodes}
            assert len(by_id) == len(page.nodes)
            assert set(page.match_ids) <= set(by_id)
            assert all(q.lower() in by_id[m].label.lower() for m in page.match_ids)

            # walk up from every match; whatever is left unmarked has no matching descendant
            covered: set[str] = set()
            for m in page.match_ids:
                nid: str | None = m
                while nid is not None and nid not in covered:
                    covered.add(nid)
                    nid = by_id[nid].parent_id
            assert covered == set(by_id)

            seen_matches.extend(page.match_ids)
            if not page.has_more:
                break
            cursor = page.next_cursor

        assert len(seen_matches) == len(set(seen_matches))
        expected = [
            r[0]
            for r in random_conn.execute(
                "SELECT id FROM nodes WHERE instr(sort_label, ?) > 0 ORDER BY sort_label, id", (q.lower(),)
            )
        ]
        assert seen_matches == expected
