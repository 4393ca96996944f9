#!/usr/bin/env python3
"""
CLI test runner for Round1.

Usage: python run_tests.py [--verbose] [--failfast] [--list] [filter ...]
  filter     Keep tests whose id contains any of these strings
             (e.g. "api", "session", "aggregator", "TestBehaviorTracker")
  --list     Print the matching test ids and exit

The same tests also run under pytest (python -m pytest tests).
"""

import sys
import os
import argparse
import unittest
from collections import Counter

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
TESTS_DIR = os.path.join(PROJECT_ROOT, "tests")
sys.path.insert(0, PROJECT_ROOT)


def iter_tests(suite):
    for item in suite:
        if isinstance(item, unittest.TestSuite):
            yield from iter_tests(item)
        else:
            yield item


def load_suite(filters=None) -> unittest.TestSuite:
    """Discover tests/test_*.py; with filters, keep tests whose id matches any of them."""
    discovered = unittest.TestLoader().discover(TESTS_DIR, pattern="test_*.py", top_level_dir=TESTS_DIR)
    wanted = [f.lower() for f in filters or []]
    suite = unittest.TestSuite()
    for test in iter_tests(discovered):
        if not wanted or any(w in test.id().lower() for w in wanted):
            suite.addTest(test)
    return suite


def per_module(tests) -> Counter:
    return Counter(t.id().split(".")[0] for t in tests)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the Round1 test suite")
    parser.add_argument("filters", nargs="*", help="Substrings of test ids to run")
    parser.add_argument("--verbose", "-v", action="store_true", help="One line per test")
    parser.add_argument("--failfast", "-x", action="store_true", help="Stop at the first failure")
    parser.add_argument("--list", action="store_true", help="List matching tests and exit")
    args = parser.parse_args(argv)

    suite = load_suite(args.filters)
    tests = list(iter_tests(suite))
    if not tests:
        print("No tests match %s" % ", ".join(repr(f) for f in args.filters))
        return 2
    if args.list:
        for test in tests:
            print(test.id())
        return 0

    for module, count in sorted(per_module(tests).items()):
        print("%-28s %3d" % (module, count))
    print()

    result = unittest.TextTestRunner(verbosity=2 if args.verbose else 1, failfast=args.failfast).run(suite)
    broken = per_module(t for t, _ in result.failures + result.errors)
    if broken:
        print("Failing modules: " + ", ".join("%s (%d)" % item for item in sorted(broken.items())))
    return 0 if result.wasSuccessful() else 1


if __name__ == "__main__":
    sys.exit(main())
