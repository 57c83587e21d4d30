"""
Tests for the bitsearch command line: argument validation, exit codes and
the top-level handling of fatal errors.
"""

import io
import logging
import os
import sys
import unittest
from contextlib import redirect_stderr, redirect_stdout

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import bitsearch
from store_module import Fault, FaultKind, StatusCode


def _no_sleep(seconds):
    pass


def _run_main(argv, **kwargs):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = bitsearch.main(argv, sleep=_no_sleep, **kwargs)
    return code, out.getvalue(), err.getvalue()


class TestParseArgs(unittest.TestCase):
    """Argument validation."""

    def test_valid(self):
        args, fault = bitsearch.parse_harness_args(["127.0.0.1", "1982", "bits", "100"])
        self.assertIsNone(fault)
        self.assertEqual(args.address, "127.0.0.1")
        self.assertEqual(args.port, 1982)
        self.assertEqual(args.space, "bits")
        self.assertEqual(args.count, 100)
        self.assertEqual(args.backend, "hyperdex")
        self.assertEqual(args.settle_seconds, 1.0)

    def test_ipv6(self):
        args, fault = bitsearch.parse_harness_args(["::1", "1982", "bits", "1"])
        self.assertIsNone(fault)
        self.assertEqual(args.address, "::1")

    def test_options(self):
        args, fault = bitsearch.parse_harness_args(
            ["10.0.0.1", "1", "s", "0", "--backend", "memory", "--settle-seconds", "0",
             "--attribute-prefix", "b", "--key-attribute", "k", "-v"])
        self.assertIsNone(fault)
        self.assertEqual(args.backend, "memory")
        self.assertEqual(args.settle_seconds, 0.0)
        self.assertEqual(args.attribute_prefix, "b")
        self.assertEqual(args.key_attribute, "k")
        self.assertTrue(args.verbose)

    def _fault_message(self, argv):
        args, fault = bitsearch.parse_harness_args(argv)
        self.assertIsNone(args)
        self.assertEqual(fault.kind, FaultKind.ARGUMENT)
        return fault.message

    def test_wrong_argument_count_shows_usage(self):
        message = self._fault_message(["127.0.0.1", "1982", "bits"])
        self.assertIn("usage:", message)
        self.assertIn("32", message)

    def test_bad_address(self):
        self.assertEqual(self._fault_message(["not-an-ip", "1982", "bits", "1"]),
                         "The IP address must be an IPv4 or IPv6 address.")

    def test_bad_port(self):
        self.assertEqual(self._fault_message(["127.0.0.1", "port", "bits", "1"]),
                         "The port number must be an integer.")
        self.assertEqual(self._fault_message(["127.0.0.1", "65536", "bits", "1"]),
                         "The port number must be suitably small.")

    def test_bad_count(self):
        self.assertEqual(self._fault_message(["127.0.0.1", "1982", "bits", "ten"]),
                         "The number must be an integer.")
        self.assertEqual(self._fault_message(["127.0.0.1", "1982", "bits", "-1"]),
                         "The number must be an integer.")
        self.assertEqual(self._fault_message(["127.0.0.1", "1982", "bits", "4294967296"]),
                         "The number must be suitably small.")

    def test_count_limit(self):
        args, fault = bitsearch.parse_harness_args(["127.0.0.1", "1982", "bits", "4294967295"])
        self.assertIsNone(fault)
        self.assertEqual(args.count, 4294967295)

    def test_negative_settle(self):
        message = self._fault_message(["127.0.0.1", "1982", "bits", "1", "--settle-seconds", "-1"])
        self.assertIn("settle", message)

    def test_bad_backend(self):
        message = self._fault_message(["127.0.0.1", "1982", "bits", "1", "--backend", "nope"])
        self.assertIn("invalid choice", message)


class TestClassifyException(unittest.TestCase):

    def test_kinds(self):
        self.assertEqual(bitsearch.classify_exception(ConnectionResetError("x")).kind, FaultKind.SYSTEM)
        self.assertEqual(bitsearch.classify_exception(RuntimeError("x")).kind, FaultKind.RUNTIME)
        self.assertEqual(bitsearch.classify_exception(MemoryError("x")).kind, FaultKind.ALLOCATION)
        self.assertEqual(bitsearch.classify_exception(KeyError("x")).kind, FaultKind.UNEXPECTED)


class _ExplodingStore:
    def __init__(self, error):
        self.error = error

    def write(self, space, key, attributes):
        raise self.error

    def search(self, space, terms):
        raise self.error


class TestMain(unittest.TestCase):
    """End-to-end runs through main()."""

    def test_memory_run(self):
        code, out, err = _run_main(["127.0.0.1", "1982", "bits", "8", "--backend", "memory"])
        self.assertEqual(code, 0)
        self.assertRegex(out, r"^test took \d+ nanoseconds for 8 searches$")

    def test_argument_error_exits_1(self):
        code, out, err = _run_main(["127.0.0.1", "http", "bits", "8"])
        self.assertEqual(code, 1)
        self.assertIn("The port number must be an integer.", err)
        self.assertEqual(out, "")

    def test_connection_fault_exits_1(self):
        def connect(*args, **kwargs):
            return None, Fault(FaultKind.CONNECTION, "Could not connect to 127.0.0.1:1982: refused")

        code, out, err = _run_main(["127.0.0.1", "1982", "bits", "8"], connect=connect)
        self.assertEqual(code, 1)
        self.assertIn("Could not connect", err)

    def test_system_error_exits_1(self):
        def connect(*args, **kwargs):
            return _ExplodingStore(ConnectionResetError("peer went away")), None

        code, out, err = _run_main(["127.0.0.1", "1982", "bits", "8"], connect=connect)
        self.assertEqual(code, 1)
        self.assertIn("There was a system error: peer went away", err)

    def test_runtime_error_exits_1(self):
        def connect(*args, **kwargs):
            return _ExplodingStore(RuntimeError("bad state")), None

        code, out, err = _run_main(["127.0.0.1", "1982", "bits", "8"], connect=connect)
        self.assertEqual(code, 1)
        self.assertIn("There was a runtime error: bad state", err)

    def test_anomalies_do_not_change_exit_code(self):
        def connect(*args, **kwargs):
            store, fault = bitsearch.store_connect(*args, **dict(kwargs, backend="memory"))
            store.write = lambda space, key, attributes: StatusCode.ERROR
            return store, fault

        code, out, err = _run_main(["127.0.0.1", "1982", "bits", "4"], connect=connect)
        self.assertEqual(code, 0)
        self.assertIn("for 4 searches", out)

    def test_verbose_logs_each_record(self):
        root = logging.getLogger()
        saved = root.level
        try:
            with self.assertLogs("harness_module", level="DEBUG") as logs:
                code, out, err = _run_main(["127.0.0.1", "1982", "bits", "2",
                                            "--backend", "memory", "-v"])
            self.assertEqual(code, 0)
            self.assertEqual(root.level, logging.DEBUG)
            self.assertTrue(any("Put number 1" in line for line in logs.output))
            self.assertTrue(any("Searched number 1" in line for line in logs.output))
        finally:
            root.setLevel(saved)

    def test_zero_numbers(self):
        code, out, err = _run_main(["127.0.0.1", "1982", "bits", "0", "--backend", "memory"])
        self.assertEqual(code, 0)
        self.assertIn("for 0 searches", out)


if __name__ == '__main__':
    unittest.main()
