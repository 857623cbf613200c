"""Shared fixtures for the FigTreeLib test suite."""

import pytest

from figtreelib.caching.store import DocumentCache
from figtreelib.core.document import decode_document
from figtreelib.testing import FrozenClock, sample_file_payload


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: long-running stress tests (deselect with -m 'not slow')")


@pytest.fixture
def file_payload():
    return sample_file_payload()


@pytest.fixture
def document(file_payload):
    return decode_document(file_payload)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def cache(tmp_path, clock):
    return DocumentCache(tmp_path / "cache", default_ttl_seconds=3600, clock=clock)
