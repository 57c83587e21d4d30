"""
In-Process Space Store Module

A small key-value store with secondary-attribute exact-match search,
used for dry runs of the harness and as the store under test in the suite.

Each space keeps:
1. A primary map: key -> attribute vector
2. One reverse map per attribute: value -> set of keys

A search intersects the reverse-map entries for every term, starting with the
most selective one, and streams the surviving keys in insertion order.

With deferred propagation, writes are parked in a pending queue and only
become searchable after settle(), the way a replicated store's search path
may lag behind its write path.
"""

import logging
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from bits_module import BIT_WIDTH
from store_module import ResultCursor, SearchResult, SearchTerm, StatusCode, empty_result

logger = logging.getLogger(__name__)


class Space:
    """One named collection with a fixed number of secondary attributes."""

    def __init__(self, name: str, attribute_count: int = BIT_WIDTH):
        self.name = name
        self.attribute_count = attribute_count

        # Primary map: key -> attributes (dict keeps insertion order)
        self.key_to_values: Dict[bytes, Tuple[bytes, ...]] = {}

        # Reverse maps: attribute index -> {value: {keys}}
        self.value_to_keys: List[Dict[bytes, Set[bytes]]] = [{} for _ in range(attribute_count)]

    def put(self, key: bytes, attributes: Tuple[bytes, ...]) -> None:
        """Insert or replace a record, keeping the reverse maps in step."""
        old = self.key_to_values.get(key)
        if old is not None:
            for index, value in enumerate(old):
                keys = self.value_to_keys[index][value]
                keys.discard(key)
                if not keys:
                    del self.value_to_keys[index][value]

        self.key_to_values[key] = attributes
        for index, value in enumerate(attributes):
            self.value_to_keys[index].setdefault(value, set()).add(key)

    def match(self, terms: Sequence[SearchTerm]) -> Iterator[bytes]:
        """
        Stream keys whose attributes equal every term.

        Args:
            terms: Exact-match constraints (indices already validated)

        Yields:
            Matching keys in insertion order
        """
        if not terms:
            yield from list(self.key_to_values)
            return

        candidates = [self.value_to_keys[t.index].get(t.value, set()) for t in terms]
        candidates.sort(key=len)

        # Most selective set first, then narrow
        matched = set(candidates[0])
        for keys in candidates[1:]:
            matched &= keys
            if not matched:
                return

        for key in self.key_to_values:
            if key in matched:
                yield key

    def __len__(self) -> int:
        return len(self.key_to_values)


class MemoryStore:
    """Store-interface implementation backed by in-process Space objects."""

    def __init__(self, deferred: bool = False):
        """
        Args:
            deferred: If True, writes are only searchable after settle()
        """
        self.deferred = deferred
        self.spaces: Dict[str, Space] = {}
        self.pending: List[Tuple[str, bytes, Tuple[bytes, ...]]] = []

    def space_create(self, name: str, attribute_count: int = BIT_WIDTH) -> Space:
        """
        Declare a space (no-op if it already exists).

        Raises:
            ValueError: If attribute_count is not positive
        """
        if attribute_count <= 0:
            raise ValueError(f"Space '{name}' needs at least one attribute")
        if name not in self.spaces:
            self.spaces[name] = Space(name, attribute_count)
        return self.spaces[name]

    def space_get(self, name: str) -> Optional[Space]:
        return self.spaces.get(name)

    def write(self, space: str, key: bytes, attributes: Sequence[bytes]) -> StatusCode:
        target = self.spaces.get(space)
        if target is None:
            return StatusCode.NOTFOUND
        if len(attributes) != target.attribute_count:
            return StatusCode.INVALID
        if not isinstance(key, bytes) or not all(isinstance(v, bytes) for v in attributes):
            return StatusCode.INVALID

        if self.deferred:
            self.pending.append((space, key, tuple(attributes)))
        else:
            target.put(key, tuple(attributes))
        return StatusCode.SUCCESS

    def search(self, space: str, terms: Sequence[SearchTerm]) -> SearchResult:
        target = self.spaces.get(space)
        if target is None:
            return empty_result(StatusCode.NOTFOUND)
        for term in terms:
            if not 0 <= term.index < target.attribute_count:
                return empty_result(StatusCode.INVALID)
        return SearchResult(StatusCode.SUCCESS, ResultCursor(target.match(terms)))

    def settle(self) -> StatusCode:
        """Apply every pending write so searches see it."""
        if self.pending:
            logger.debug("Propagating %d pending writes", len(self.pending))
        for space, key, attributes in self.pending:
            self.spaces[space].put(key, attributes)
        self.pending = []
        return StatusCode.SUCCESS
