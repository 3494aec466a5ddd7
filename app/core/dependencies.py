"""
FastAPI Dependencies

Reusable dependencies for dependency injection. Tests override these to
hand each case a fresh table store.
"""

from typing import Optional

from fastapi import Depends

from app.batch import BatchExecutor
from app.infrastructure.memory.store import TableStore, get_table_store


_executor: Optional[BatchExecutor] = None


def get_store() -> TableStore:
    """Table store used by the request."""
    return get_table_store()


def get_batch_executor(store: TableStore = Depends(get_store)) -> BatchExecutor:
    """Batch executor bound to the request's table store."""
    global _executor

    if _executor is None or _executor.store is not store:
        if _executor is not None:
            _executor.shutdown()
        _executor = BatchExecutor(store)
    return _executor


def shutdown_batch_executor() -> None:
    global _executor

    if _executor is not None:
        _executor.shutdown()
        _executor = None
