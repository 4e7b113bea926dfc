"""Persistence layer for aflow workflows and executions."""

from __future__ import annotations

import os
from typing import Optional

from ..config import AflowConfig, load_config
from .inmemory import InMemoryExecutionStore
from .repository import ExecutionStore
from .sql import SQLExecutionStore

_store_instance: ExecutionStore | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[AflowConfig] = None
) -> ExecutionStore:
    """Factory function to obtain the execution store.

    The backend is selected from ``database_url``, which can be provided
    explicitly, via ``AFLOW_DATABASE_URL`` or ``DATABASE_URL``, or from the
    loaded configuration. Without a database an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("AFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _store_instance = InMemoryExecutionStore()
    else:
        _store_instance = SQLExecutionStore(database_url)
    return _store_instance


__all__ = [
    "ExecutionStore",
    "InMemoryExecutionStore",
    "SQLExecutionStore",
    "get_store",
]
