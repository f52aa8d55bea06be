"""`pytest` config for `pytests/`.

This sets up our fixtures and logging.

"""

import logging

import pyarrow as pa
from pytest import fixture


@fixture
def left_schema():
    """Schema of primary series rows."""
    return pa.schema(
        [
            ("time", pa.int64()),
            ("id", pa.string()),
            ("price", pa.float64()),
        ]
    )


@fixture
def right_schema():
    """Schema of companion series rows."""
    return pa.schema(
        [
            ("time", pa.int64()),
            ("id", pa.string()),
            ("volume", pa.int64()),
        ]
    )


@fixture
def pools(monkeypatch):
    """Every proxy memory pool created during the test.

    The pools are kept alive so their accounting can be checked after
    the encoder is done with them.

    """
    created = []
    make = pa.proxy_memory_pool

    def recording(parent):
        pool = make(parent)
        created.append(pool)
        return pool

    monkeypatch.setattr(pa, "proxy_memory_pool", recording)
    return created


def pytest_addoption(parser):
    """Add a `--windowbatch-log-level` CLI option to pytest.

    This will control the level of the root logger.

    """
    parser.addoption(
        "--windowbatch-log-level",
        action="store",
        choices=["ERROR", "WARNING", "INFO", "DEBUG"],
    )


def pytest_configure(config):
    """This will run on pytest init."""
    log_level = config.getoption("--windowbatch-log-level")
    if log_level:
        logging.basicConfig(level=log_level)
