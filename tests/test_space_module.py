"""
Tests for the in-process space store.

Covers writes, reverse-map upkeep on overwrite, exact-match search over
several attributes and deferred propagation.
"""

import os
import sys
import unittest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bits_module import bits_encode
from space_module import MemoryStore, Space
from store_module import SearchTerm, StatusCode


def _terms(record):
    return [SearchTerm(i, v) for i, v in enumerate(record.attributes)]


class TestSpace(unittest.TestCase):
    """Space primary and reverse maps."""

    def setUp(self):
        self.space = Space("small", attribute_count=3)
        self.space.put(b"a", (b"x", b"y", b"z"))
        self.space.put(b"b", (b"x", b"y", b"w"))
        self.space.put(b"c", (b"q", b"y", b"z"))

    def test_single_term(self):
        self.assertEqual(list(self.space.match([SearchTerm(0, b"x")])), [b"a", b"b"])

    def test_all_terms(self):
        terms = [SearchTerm(0, b"x"), SearchTerm(1, b"y"), SearchTerm(2, b"z")]
        self.assertEqual(list(self.space.match(terms)), [b"a"])

    def test_no_match(self):
        self.assertEqual(list(self.space.match([SearchTerm(0, b"nope")])), [])

    def test_empty_terms_match_everything(self):
        self.assertEqual(list(self.space.match([])), [b"a", b"b", b"c"])

    def test_overwrite_reindexes(self):
        """Replacing a record drops its old attribute values from the reverse maps."""
        self.space.put(b"a", (b"q", b"q", b"q"))
        self.assertEqual(list(self.space.match([SearchTerm(0, b"x")])), [b"b"])
        self.assertEqual(list(self.space.match([SearchTerm(2, b"q")])), [b"a"])
        self.assertEqual(len(self.space), 3)
        self.assertEqual(self.space.value_to_keys[1][b"y"], {b"b", b"c"})


class TestMemoryStore(unittest.TestCase):
    """Store interface behaviour."""

    def setUp(self):
        self.store = MemoryStore()
        self.store.space_create("bits")

    def test_write_and_search(self):
        record = bits_encode(5)
        self.assertEqual(self.store.write("bits", record.key, record.attributes), StatusCode.SUCCESS)

        result = self.store.search("bits", _terms(record))
        self.assertEqual(result.status, StatusCode.SUCCESS)
        self.assertEqual(list(result.cursor), [record.key])

    def test_unknown_space(self):
        record = bits_encode(1)
        self.assertEqual(self.store.write("nope", record.key, record.attributes), StatusCode.NOTFOUND)
        result = self.store.search("nope", _terms(record))
        self.assertEqual(result.status, StatusCode.NOTFOUND)
        self.assertFalse(result.cursor.has_current())

    def test_wrong_attribute_count(self):
        self.assertEqual(self.store.write("bits", b"k", (b"one",) * 31), StatusCode.INVALID)

    def test_non_bytes_values(self):
        self.assertEqual(self.store.write("bits", b"k", ("one",) * 32), StatusCode.INVALID)
        self.assertEqual(self.store.write("bits", "k", (b"one",) * 32), StatusCode.INVALID)

    def test_term_index_out_of_range(self):
        result = self.store.search("bits", [SearchTerm(32, b"one")])
        self.assertEqual(result.status, StatusCode.INVALID)

    def test_space_create_is_idempotent(self):
        space = self.store.space_get("bits")
        self.assertIs(self.store.space_create("bits"), space)

    def test_space_create_rejects_no_attributes(self):
        with self.assertRaises(ValueError):
            self.store.space_create("empty", attribute_count=0)

    def test_only_exact_record_matches(self):
        for n in range(16):
            record = bits_encode(n)
            self.store.write("bits", record.key, record.attributes)
        for n in range(16):
            record = bits_encode(n)
            keys = list(self.store.search("bits", _terms(record)).cursor)
            self.assertEqual(keys, [record.key], f"Search for {n}")


class TestDeferredPropagation(unittest.TestCase):
    """Writes only become visible after settle()."""

    def test_pending_until_settle(self):
        store = MemoryStore(deferred=True)
        store.space_create("bits")
        record = bits_encode(9)

        self.assertEqual(store.write("bits", record.key, record.attributes), StatusCode.SUCCESS)
        self.assertEqual(len(store.pending), 1)
        self.assertFalse(store.search("bits", _terms(record)).cursor.has_current())

        self.assertEqual(store.settle(), StatusCode.SUCCESS)
        self.assertEqual(store.pending, [])
        self.assertEqual(list(store.search("bits", _terms(record)).cursor), [record.key])


if __name__ == '__main__':
    unittest.main()
