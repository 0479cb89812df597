"""Process-wide store selection.

``USE_MEMORY_STORE=true`` (the default) keeps everything in-process for local
runs and tests; production sets it to false and points DATABASE_URL at
PostgreSQL.
"""

from __future__ import annotations

from functools import lru_cache

from resale.config import settings
from resale.storage.base import Store
from resale.storage.memory import MemoryStore
from resale.storage.postgres import PostgresStore


@lru_cache(maxsize=1)
def get_store() -> Store:
    if settings.use_memory_store:
        return MemoryStore()
    return PostgresStore()
