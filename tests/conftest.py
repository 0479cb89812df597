"""Shared fixtures for the resale engine tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from resale.storage.memory import MemoryStore
from resale.storage.registry import get_store


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture(autouse=True)
def _reset_store_registry() -> Iterator[None]:
    """The process-wide store is cached; start every test from a fresh one."""
    get_store.cache_clear()
    yield
    get_store.cache_clear()
