# pytest hooks for running data_collection/tests from a checkout.
#
# The repository root goes first on sys.path so the package, and the worker entry points
# named by dotted location, resolve in spawned worker processes as well.
# DATA_COLLECTION_LOG_LEVEL (e.g. DEBUG) turns on the package loggers, showing the
# request/response traffic of failing tests in pytest's captured log output.
import logging
import os
import sys

ROOT = os.path.dirname(os.path.abspath(__file__))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


def pytest_configure(config):
    level = os.getenv('DATA_COLLECTION_LOG_LEVEL')
    if level:
        logging.getLogger('data_collection').setLevel(level.upper())
