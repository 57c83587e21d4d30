"""
Search Harness Module

Loads N bit-encoded records into a space, waits for the store to settle, then
searches for every record by its 32 attributes and checks that exactly the
original key comes back. The search phase is timed as a whole.

Phases (strictly sequential, one store call in flight at a time):
1. harness_load        - write records 0..N-1
2. harness_settle      - store.settle() if offered, else a fixed sleep
3. harness_time_verification
                       - harness_verify_all between two monotonic timestamps

Write and search anomalies are logged and collected; they never stop a run.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, NamedTuple, Optional, Tuple

from bits_module import BitRecord, bits_encode, bits_key_hex, bits_pack_key
from store_module import SearchTerm, StatusCode

logger = logging.getLogger(__name__)

NANOS_PER_SECOND = 1_000_000_000
DEFAULT_SETTLE_SECONDS = 1.0


@dataclass
class HarnessConfig:
    """What to run: the space, how many records, how long to wait between phases."""
    space: str
    count: int
    settle_seconds: float = DEFAULT_SETTLE_SECONDS


class AnomalyKind(Enum):
    """Per-record problems found while searching."""
    SEARCH_FAILED = "search failed"
    NOT_FOUND = "not found"
    KEY_MISMATCH = "key mismatch"
    MULTIPLE_MATCHES = "multiple matches"


@dataclass
class WriteAnomaly:
    """A write for `number` that returned something other than SUCCESS."""
    number: int
    status: StatusCode


@dataclass
class SearchAnomaly:
    """A search for `number` that did not return exactly its own key."""
    number: int
    kind: AnomalyKind
    expected_key: bytes = b""
    actual_key: Optional[bytes] = None
    status: StatusCode = StatusCode.SUCCESS


@dataclass
class LoadReport:
    """Writes issued by harness_load and the anomalies among them."""
    writes: int = 0
    anomalies: List[WriteAnomaly] = field(default_factory=list)


@dataclass
class VerificationReport:
    """Searches issued by harness_verify_all and the anomalies found."""
    searches: int = 0
    anomalies: List[SearchAnomaly] = field(default_factory=list)

    def count_of(self, kind: AnomalyKind) -> int:
        return sum(1 for a in self.anomalies if a.kind == kind)


class Timestamp(NamedTuple):
    """A clock reading split into whole seconds and the sub-second part."""
    seconds: int
    nanoseconds: int


@dataclass
class TimingReport:
    elapsed_ns: int
    searches: int
    verification: VerificationReport
    load: Optional[LoadReport] = None


def harness_search_terms(record: BitRecord) -> Tuple[SearchTerm, ...]:
    """One exact-match term per attribute, pinned to the record's own value."""
    return tuple(SearchTerm(i, value) for i, value in enumerate(record.attributes))


def harness_load(store, space: str, count: int) -> LoadReport:
    """
    Write records 0..count-1 into a space.

    Any status other than SUCCESS is logged and recorded; the loop carries
    on with the next number.

    Args:
        store: Object implementing write(space, key, attributes)
        space: Target space name
        count: Number of records to write

    Returns:
        LoadReport with the number of writes issued and the anomalies seen
    """
    report = LoadReport()
    for n in range(count):
        record = bits_encode(n)
        status = store.write(space, record.key, record.attributes)
        report.writes += 1
        logger.debug("Put number %d key %s: %s", n, bits_key_hex(record.key), status.value)
        if status != StatusCode.SUCCESS:
            logger.warning("Put returned %s for number %d.", status.value, n)
            report.anomalies.append(WriteAnomaly(n, status))
    return report


def harness_settle(store, settle_seconds: float = DEFAULT_SETTLE_SECONDS,
                   sleep: Callable[[float], None] = time.sleep) -> None:
    """
    Wait until writes are visible to searches.

    Uses the store's own settle() acknowledgment when it has one and falls
    back to sleeping for settle_seconds otherwise.
    """
    settle = getattr(store, "settle", None)
    if callable(settle):
        status = settle()
        if status == StatusCode.SUCCESS:
            return
        logger.warning("Settle returned %s; sleeping %.3fs instead.", status.value, settle_seconds)
    sleep(settle_seconds)


def _verify_one(store, space: str, n: int) -> List[SearchAnomaly]:
    record = bits_encode(n)
    result = store.search(space, harness_search_terms(record))

    if result.status != StatusCode.SUCCESS:
        logger.warning("Number %d search returned %s.", n, result.status.value)
        return [SearchAnomaly(n, AnomalyKind.SEARCH_FAILED, record.key, status=result.status)]

    cursor = result.cursor
    if not cursor.has_current():
        logger.warning("Number %d found nothing.", n)
        return [SearchAnomaly(n, AnomalyKind.NOT_FOUND, record.key)]

    anomalies = []
    actual = cursor.current_key()
    if actual != record.key:
        logger.warning("Number %d returned wrong key: %s %s",
                       n, bits_key_hex(record.key), bits_key_hex(actual))
        anomalies.append(SearchAnomaly(n, AnomalyKind.KEY_MISMATCH, record.key, actual))

    cursor.advance()
    if cursor.has_current():
        logger.warning("Number %d found more than one result.", n)
        anomalies.append(SearchAnomaly(n, AnomalyKind.MULTIPLE_MATCHES, record.key,
                                       cursor.current_key()))
    return anomalies


def harness_verify_all(store, space: str, count: int) -> VerificationReport:
    """
    Search for every record 0..count-1 by its attributes.

    Each search must return exactly one key, equal to the record's own.
    Failures are logged and collected; every number is searched.

    Args:
        store: Object implementing search(space, terms)
        space: Space name
        count: Number of records to verify

    Returns:
        VerificationReport with the search count and anomalies
    """
    report = VerificationReport()
    for n in range(count):
        anomalies = _verify_one(store, space, n)
        report.anomalies.extend(anomalies)
        report.searches += 1
        logger.debug("Searched number %d key %s: %s", n, bits_key_hex(bits_pack_key(n)),
                     ", ".join(a.kind.value for a in anomalies) or "ok")
    return report


def timestamp_now(clock_ns: Callable[[], int] = time.monotonic_ns) -> Timestamp:
    """Read a monotonic clock as a (seconds, nanoseconds) pair."""
    seconds, nanoseconds = divmod(clock_ns(), NANOS_PER_SECOND)
    return Timestamp(seconds, nanoseconds)


def timestamp_elapsed_ns(start: Timestamp, end: Timestamp) -> int:
    """
    Nanoseconds between two timestamps.

    Borrows one second when the end's sub-second part is smaller than the
    start's, e.g. (10s, 500ns) -> (11s, 200ns) is 999,999,700ns.

    Raises:
        ValueError: If end is earlier than start
    """
    seconds = end.seconds - start.seconds
    nanoseconds = end.nanoseconds - start.nanoseconds
    if end.nanoseconds < start.nanoseconds:
        seconds -= 1
        nanoseconds += NANOS_PER_SECOND

    if seconds < 0:
        raise ValueError(f"End timestamp {end} is earlier than start {start}")
    return seconds * NANOS_PER_SECOND + nanoseconds


def harness_time_verification(store, space: str, count: int,
                              clock_ns: Callable[[], int] = time.monotonic_ns) -> TimingReport:
    """Run harness_verify_all between two clock readings."""
    start = timestamp_now(clock_ns)
    verification = harness_verify_all(store, space, count)
    end = timestamp_now(clock_ns)
    return TimingReport(timestamp_elapsed_ns(start, end), verification.searches, verification)


def harness_run(store, config: HarnessConfig,
                sleep: Callable[[float], None] = time.sleep,
                clock_ns: Callable[[], int] = time.monotonic_ns) -> TimingReport:
    """
    Load, settle, then time the verification pass.

    Args:
        store: Store implementing the write/search interface
        config: Space, record count and settle delay
        sleep: Sleep function for the fallback barrier
        clock_ns: Monotonic nanosecond clock for timing

    Returns:
        TimingReport including the load report
    """
    load = harness_load(store, config.space, config.count)
    logger.info("Loaded %d records into '%s' (%d anomalies).",
                load.writes, config.space, len(load.anomalies))

    harness_settle(store, config.settle_seconds, sleep)

    logger.info("Starting searches.")
    timing = harness_time_verification(store, config.space, config.count, clock_ns)
    timing.load = load
    return timing
