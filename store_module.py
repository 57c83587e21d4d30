"""
Store Interface Module

The narrow interface the harness uses to talk to a key-value store with
secondary-attribute search:

    write(space, key, attributes) -> StatusCode
    search(space, terms)          -> SearchResult(status, cursor)
    settle()                      -> StatusCode   (optional)

Operations report their outcome as a StatusCode instead of raising, so the
caller decides what is fatal. Two backends are provided: an adapter over the
HyperDex Python client and the in-process MemoryStore from space_module.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

BACKEND_HYPERDEX = "hyperdex"
BACKEND_MEMORY = "memory"
BACKENDS = (BACKEND_HYPERDEX, BACKEND_MEMORY)

DEFAULT_ATTRIBUTE_PREFIX = "bit"
DEFAULT_KEY_ATTRIBUTE = "key"


class StatusCode(Enum):
    """Closed set of outcomes a store operation may report."""
    SUCCESS = "SUCCESS"
    NOTFOUND = "NOTFOUND"
    INVALID = "INVALID"
    ERROR = "ERROR"
    UNRECOGNIZED = "UNRECOGNIZED"


class FaultKind(Enum):
    """Fatal conditions that stop a run."""
    ARGUMENT = "argument"
    CONNECTION = "connection"
    SYSTEM = "system"
    RUNTIME = "runtime"
    ALLOCATION = "allocation"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class Fault:
    """A fatal condition together with the message shown to the user."""
    kind: FaultKind
    message: str


@dataclass(frozen=True)
class SearchTerm:
    """Pins secondary attribute `index` to exactly `value`."""
    index: int
    value: bytes


class ResultCursor:
    """
    Forward-only, single-pass view over the keys a search returned.

    The underlying iterable is pulled lazily, one key at a time. Once a key
    has been advanced past it cannot be revisited, and iterating the cursor
    consumes it.
    """

    def __init__(self, keys: Iterable[bytes]):
        self._keys = iter(keys)
        self._current: Optional[bytes] = None
        self._primed = False

    def _prime(self) -> None:
        if not self._primed:
            self._current = next(self._keys, None)
            self._primed = True

    def has_current(self) -> bool:
        """True while the cursor points at a result."""
        self._prime()
        return self._current is not None

    def current_key(self) -> bytes:
        """
        Key of the result under the cursor.

        Raises:
            LookupError: If the cursor is exhausted
        """
        self._prime()
        if self._current is None:
            raise LookupError("Result cursor is exhausted")
        return self._current

    def advance(self) -> None:
        """Move to the next result (no-op once exhausted)."""
        self._prime()
        if self._current is not None:
            self._current = next(self._keys, None)

    def __iter__(self) -> Iterator[bytes]:
        while self.has_current():
            yield self.current_key()
            self.advance()


@dataclass
class SearchResult:
    """Outcome of a search: status plus a cursor (empty unless SUCCESS)."""
    status: StatusCode
    cursor: ResultCursor


def empty_result(status: StatusCode) -> SearchResult:
    """Build a SearchResult with no rows, for failed searches."""
    return SearchResult(status, ResultCursor(()))


# HyperDex client status symbols, grouped by the StatusCode they map to
_HYPERDEX_STATUS = {
    "HYPERDEX_CLIENT_SUCCESS": StatusCode.SUCCESS,
    "HYPERDEX_CLIENT_NOTFOUND": StatusCode.NOTFOUND,
    "HYPERDEX_CLIENT_UNKNOWNSPACE": StatusCode.NOTFOUND,
    "HYPERDEX_CLIENT_SEARCHDONE": StatusCode.NOTFOUND,
    "HYPERDEX_CLIENT_UNKNOWNATTR": StatusCode.INVALID,
    "HYPERDEX_CLIENT_WRONGTYPE": StatusCode.INVALID,
    "HYPERDEX_CLIENT_DUPEATTR": StatusCode.INVALID,
    "HYPERDEX_CLIENT_DONTUSEKEY": StatusCode.INVALID,
    "HYPERDEX_CLIENT_CMPFAIL": StatusCode.INVALID,
    "HYPERDEX_CLIENT_READONLY": StatusCode.INVALID,
    "HYPERDEX_CLIENT_SERVERERROR": StatusCode.ERROR,
    "HYPERDEX_CLIENT_COORDFAIL": StatusCode.ERROR,
    "HYPERDEX_CLIENT_RECONFIGURE": StatusCode.ERROR,
    "HYPERDEX_CLIENT_TIMEOUT": StatusCode.ERROR,
    "HYPERDEX_CLIENT_NOMEM": StatusCode.ERROR,
    "HYPERDEX_CLIENT_INTERNAL": StatusCode.ERROR,
}


def status_from_symbol(symbol) -> StatusCode:
    """
    Map a HyperDex client status symbol to a StatusCode.

    Args:
        symbol: Symbol name such as 'HYPERDEX_CLIENT_NOTFOUND' (str or bytes)

    Returns:
        Matching StatusCode, UNRECOGNIZED for anything unknown
    """
    if isinstance(symbol, bytes):
        symbol = symbol.decode('ascii', errors='replace')
    return _HYPERDEX_STATUS.get(str(symbol), StatusCode.UNRECOGNIZED)


class HyperDexStore:
    """Adapter that exposes a hyperdex.client.Client through the store interface."""

    def __init__(self, client, error_type, attribute_prefix: str = DEFAULT_ATTRIBUTE_PREFIX,
                 key_attribute: str = DEFAULT_KEY_ATTRIBUTE):
        """
        Args:
            client: Connected hyperdex.client.Client
            error_type: Exception class the client raises for non-success statuses
            attribute_prefix: Secondary attribute i is named f"{prefix}{i}"
            key_attribute: Name of the key attribute in returned objects
        """
        self.client = client
        self.error_type = error_type
        self.attribute_prefix = attribute_prefix
        self.key_attribute = key_attribute

    def attribute_name(self, index: int) -> str:
        """Name of secondary attribute `index` in the HyperDex space."""
        return f"{self.attribute_prefix}{index}"

    def _status_of(self, error) -> StatusCode:
        symbol = getattr(error, "symbol", None)
        return status_from_symbol(symbol() if callable(symbol) else symbol)

    def write(self, space: str, key: bytes, attributes: Sequence[bytes]) -> StatusCode:
        values = {self.attribute_name(i): value for i, value in enumerate(attributes)}
        try:
            stored = self.client.put(space, key, values)
        except self.error_type as e:
            return self._status_of(e)
        return StatusCode.SUCCESS if stored else StatusCode.NOTFOUND

    def search(self, space: str, terms: Sequence[SearchTerm]) -> SearchResult:
        """
        Run the search and read its first result before handing out a cursor.

        The client's result stream is lazy and reports failures while being
        read, so the first read happens here where it can become a status.
        Failures on later results end the cursor early and are logged.
        """
        predicates = {self.attribute_name(term.index): term.value for term in terms}
        try:
            objects = iter(self.client.search(space, predicates))
            first = next(objects, None)
            first_key = None if first is None else self._key_of(first)
        except self.error_type as e:
            return empty_result(self._status_of(e))
        except KeyError:
            logger.warning("Search result in '%s' has no '%s' attribute.", space, self.key_attribute)
            return empty_result(StatusCode.INVALID)

        if first_key is None:
            return SearchResult(StatusCode.SUCCESS, ResultCursor(()))
        return SearchResult(StatusCode.SUCCESS, ResultCursor(self._keys_after(space, first_key, objects)))

    def _key_of(self, obj) -> bytes:
        key = obj[self.key_attribute]
        return key.encode('latin-1') if isinstance(key, str) else bytes(key)

    def _keys_after(self, space: str, first_key: bytes, objects) -> Iterator[bytes]:
        yield first_key
        try:
            for obj in objects:
                yield self._key_of(obj)
        except self.error_type as e:
            logger.warning("Search in '%s' stopped early: %s.", space, self._status_of(e).value)
        except KeyError:
            logger.warning("Search result in '%s' has no '%s' attribute.", space, self.key_attribute)


def _connect_hyperdex(address: str, port: int, attribute_prefix: str,
                      key_attribute: str) -> Tuple[Optional[HyperDexStore], Optional[Fault]]:
    try:
        import hyperdex.client
    except ImportError as e:
        return None, Fault(FaultKind.CONNECTION, f"The HyperDex client library is not available: {e}")

    try:
        client = hyperdex.client.Client(address, port)
    except Exception as e:
        return None, Fault(FaultKind.CONNECTION, f"Could not connect to {address}:{port}: {e}")

    store = HyperDexStore(client, hyperdex.client.HyperDexClientException,
                          attribute_prefix=attribute_prefix, key_attribute=key_attribute)
    return store, None


def store_connect(address: str, port: int, backend: str = BACKEND_HYPERDEX,
                  spaces: Optional[List[str]] = None,
                  attribute_prefix: str = DEFAULT_ATTRIBUTE_PREFIX,
                  key_attribute: str = DEFAULT_KEY_ATTRIBUTE) -> Tuple[Optional[object], Optional[Fault]]:
    """
    Open a store for the harness.

    Args:
        address: Coordinator address
        port: Coordinator port
        backend: BACKEND_HYPERDEX or BACKEND_MEMORY
        spaces: Spaces to declare (memory backend only; HyperDex spaces
            must already exist on the cluster)
        attribute_prefix: Secondary attribute naming prefix (HyperDex only)
        key_attribute: Key attribute name (HyperDex only)

    Returns:
        Tuple of (store, None) on success or (None, Fault) on failure
    """
    if backend == BACKEND_MEMORY:
        from space_module import MemoryStore

        store = MemoryStore()
        for space in spaces or []:
            store.space_create(space)
        logger.info("Using in-process store with spaces %s", sorted(spaces or []))
        return store, None

    if backend == BACKEND_HYPERDEX:
        logger.info("Connecting to HyperDex coordinator at %s:%d", address, port)
        return _connect_hyperdex(address, port, attribute_prefix, key_attribute)

    return None, Fault(FaultKind.ARGUMENT, f"Unknown store backend '{backend}'")
