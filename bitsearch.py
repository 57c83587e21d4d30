#!/usr/bin/env python3
"""
Bit search harness command line.

Usage:
    bitsearch.py <coordinator ip> <coordinator port> <space name> <numbers>

Creates <numbers> points whose key is a number in [0, <numbers>), then searches
for each point over the bits of its number and reports how long the searches
took. The space must have 32 secondary attributes so every bit can be stored.

Exit status is 0 when the run completes (anomalies are logged, not fatal) and
1 on bad arguments, connection failure or any other fatal error.
"""

import argparse
import ipaddress
import logging
import sys
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from bits_module import UINT32_MAX
from harness_module import DEFAULT_SETTLE_SECONDS, HarnessConfig, harness_run
from store_module import (
    BACKEND_HYPERDEX, BACKENDS, DEFAULT_ATTRIBUTE_PREFIX, DEFAULT_KEY_ATTRIBUTE,
    Fault, FaultKind, store_connect
)

logger = logging.getLogger("bitsearch")

UINT16_MAX = 0xFFFF

USAGE = (
    "This will create <numbers> points whose key is a number [0, <numbers>) and "
    "then perform searches over the bits of the number.  The space should have 32 "
    "secondary dimensions so that all bits of a number may be stored."
)

_FAULT_PREFIX = {
    FaultKind.SYSTEM: "There was a system error: ",
    FaultKind.RUNTIME: "There was a runtime error: ",
    FaultKind.ALLOCATION: "There was a memory allocation error: ",
    FaultKind.UNEXPECTED: "There was a generic error: ",
}


@dataclass
class HarnessArgs:
    """Validated command-line arguments."""
    address: str
    port: int
    space: str
    count: int
    backend: str = BACKEND_HYPERDEX
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    attribute_prefix: str = DEFAULT_ATTRIBUTE_PREFIX
    key_attribute: str = DEFAULT_KEY_ATTRIBUTE
    verbose: bool = False


class _UsageError(Exception):
    pass


class _HarnessArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports problems to its caller instead of exiting."""

    def error(self, message):
        raise _UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _HarnessArgumentParser(prog="bitsearch", description=USAGE)
    parser.add_argument("address", help="coordinator IPv4 or IPv6 address")
    parser.add_argument("port", help="coordinator port")
    parser.add_argument("space", help="space with 32 secondary attributes")
    parser.add_argument("numbers", help="how many points to create and search for")
    parser.add_argument("--backend", choices=BACKENDS, default=BACKEND_HYPERDEX,
                        help="store to talk to (default: %(default)s)")
    parser.add_argument("--settle-seconds", type=float, default=DEFAULT_SETTLE_SECONDS,
                        help="pause between loading and searching when the store "
                             "has no settle acknowledgment (default: %(default)s)")
    parser.add_argument("--attribute-prefix", default=DEFAULT_ATTRIBUTE_PREFIX,
                        help="secondary attribute i is named <prefix><i> (default: %(default)s)")
    parser.add_argument("--key-attribute", default=DEFAULT_KEY_ATTRIBUTE,
                        help="name of the key attribute (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every record")
    return parser


def _parse_unsigned(text: str, maximum: int) -> Tuple[Optional[int], Optional[str]]:
    """Parse a decimal unsigned integer; returns (value, None) or (None, 'integer'|'small')."""
    if not (text.isascii() and text.isdigit()):
        return None, "integer"
    value = int(text)
    if value > maximum:
        return None, "small"
    return value, None


def parse_harness_args(argv: Optional[List[str]] = None) -> Tuple[Optional[HarnessArgs], Optional[Fault]]:
    """
    Parse and validate the command line.

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:])

    Returns:
        Tuple of (HarnessArgs, None) or (None, Fault) with an ARGUMENT fault
    """
    parser = build_parser()
    try:
        ns = parser.parse_args(argv)
    except _UsageError as e:
        return None, Fault(FaultKind.ARGUMENT, f"{e}\n{parser.format_usage()}{USAGE}")

    try:
        ipaddress.ip_address(ns.address)
    except ValueError:
        return None, Fault(FaultKind.ARGUMENT, "The IP address must be an IPv4 or IPv6 address.")

    port, problem = _parse_unsigned(ns.port, UINT16_MAX)
    if problem == "integer":
        return None, Fault(FaultKind.ARGUMENT, "The port number must be an integer.")
    if problem == "small":
        return None, Fault(FaultKind.ARGUMENT, "The port number must be suitably small.")

    count, problem = _parse_unsigned(ns.numbers, UINT32_MAX)
    if problem == "integer":
        return None, Fault(FaultKind.ARGUMENT, "The number must be an integer.")
    if problem == "small":
        return None, Fault(FaultKind.ARGUMENT, "The number must be suitably small.")

    if not ns.settle_seconds >= 0:
        return None, Fault(FaultKind.ARGUMENT, "The settle delay must not be negative.")

    args = HarnessArgs(
        address=ns.address,
        port=port,
        space=ns.space,
        count=count,
        backend=ns.backend,
        settle_seconds=ns.settle_seconds,
        attribute_prefix=ns.attribute_prefix,
        key_attribute=ns.key_attribute,
        verbose=ns.verbose,
    )
    return args, None


def classify_exception(error: BaseException) -> Fault:
    """Turn an exception that escaped the run into a Fault."""
    if isinstance(error, MemoryError):
        kind = FaultKind.ALLOCATION
    elif isinstance(error, OSError):
        kind = FaultKind.SYSTEM
    elif isinstance(error, RuntimeError):
        kind = FaultKind.RUNTIME
    else:
        kind = FaultKind.UNEXPECTED
    return Fault(kind, str(error))


def report_fault(fault: Fault) -> int:
    """Print a fatal fault to stderr and return the failure exit code."""
    print(f"{_FAULT_PREFIX.get(fault.kind, '')}{fault.message}", file=sys.stderr)
    return 1


def configure_logging(verbose: bool = False) -> None:
    """Log to stderr; -v adds a line per write and per search."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # basicConfig leaves an already configured root logger alone
    logging.getLogger().setLevel(level)


def run(args: HarnessArgs, connect=store_connect, sleep=time.sleep) -> int:
    """Connect, run the harness and print the timing line."""
    store, fault = connect(
        args.address,
        args.port,
        backend=args.backend,
        spaces=[args.space],
        attribute_prefix=args.attribute_prefix,
        key_attribute=args.key_attribute,
    )
    if fault:
        return report_fault(fault)

    config = HarnessConfig(space=args.space, count=args.count, settle_seconds=args.settle_seconds)
    timing = harness_run(store, config, sleep=sleep)

    logger.info("%d write anomalies, %d search anomalies.",
                len(timing.load.anomalies), len(timing.verification.anomalies))
    print(f"test took {timing.elapsed_ns} nanoseconds for {timing.searches} searches")
    return 0


def main(argv: Optional[List[str]] = None, connect=store_connect, sleep=time.sleep) -> int:
    """Entry point; every fatal condition ends here with exit status 1."""
    args, fault = parse_harness_args(argv)
    if fault:
        return report_fault(fault)

    configure_logging(args.verbose)
    try:
        return run(args, connect=connect, sleep=sleep)
    except Exception as e:
        return report_fault(classify_exception(e))


if __name__ == "__main__":
    sys.exit(main())
