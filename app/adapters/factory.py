"""
Adapter Factory for QueryGate

Maps a request's dataSource to a connected execution backend.

- memory/file sources get a fresh MemoryAdapter over the table store
- database sources get a pooled adapter, cached per (engine, config)
- unknown engines fail the whole request with ERR_4005

Usage:
    from app.adapters import get_adapter, get_adapter_for_source

    adapter = get_adapter("sqlite", {"database": "sales.db"})
    adapter = get_adapter_for_source(request.dataSource, store=store)
"""

import hashlib
import importlib
import json
import logging
import threading
from typing import Any, Dict, List, Optional, Type

from app.adapters.base import AdapterError, BaseAdapter
from app.errors import engine_unsupported
from app.infrastructure.memory.store import TableStore
from app.shared.types.models import DataSource

logger = logging.getLogger(__name__)


# =============================================================================
# REGISTRY
# =============================================================================

_ADAPTER_REGISTRY: Dict[str, Type[BaseAdapter]] = {}

# module, class, driver flag (None = always available), engine names
_BUILTIN_ADAPTERS = (
    ("memory_adapter", "MemoryAdapter", None, ("memory",)),
    ("sqlite_adapter", "SQLiteAdapter", None, ("sqlite", "sqlite3")),
    ("duckdb_adapter", "DuckDBAdapter", "DUCKDB_AVAILABLE", ("duckdb",)),
    ("postgres_adapter", "PostgresAdapter", "PSYCOPG2_AVAILABLE", ("postgres", "postgresql")),
    ("mysql_adapter", "MySQLAdapter", "MYSQL_AVAILABLE", ("mysql", "mariadb")),
)


def register_adapter(engine: str, adapter_class: Type[BaseAdapter]) -> None:
    """Register (or replace) the adapter class behind an engine name."""
    _ADAPTER_REGISTRY[engine.lower()] = adapter_class
    logger.debug(f"Registered {adapter_class.__name__} as '{engine.lower()}'")


def list_adapters() -> List[str]:
    return list(_ADAPTER_REGISTRY)


def _register_builtin_adapters() -> None:
    for module_name, class_name, flag, engines in _BUILTIN_ADAPTERS:
        module = importlib.import_module(f"app.adapters.{module_name}")
        if flag and not getattr(module, flag):
            logger.debug(f"{class_name} skipped, driver not installed")
            continue
        for engine in engines:
            register_adapter(engine, getattr(module, class_name))


_register_builtin_adapters()


# =============================================================================
# CONNECTED ADAPTER CACHE
# =============================================================================

_ADAPTER_CACHE: Dict[str, BaseAdapter] = {}
_CACHE_LOCK = threading.Lock()


def _cache_key(engine: str, config: Dict[str, Any]) -> str:
    payload = json.dumps({"engine": engine, "config": config}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


def _close_quietly(adapter: BaseAdapter) -> None:
    try:
        adapter.disconnect()
    except AdapterError as e:
        logger.warning(f"Error disconnecting {adapter.ENGINE} adapter: {e}")


def _take_cached(key: str) -> Optional[BaseAdapter]:
    """Cached adapter for key if it still answers SELECT 1. Caller holds the lock."""
    adapter = _ADAPTER_CACHE.get(key)
    if adapter is None:
        return None
    if adapter.health_check():
        return adapter
    logger.warning(f"Dropping unhealthy {adapter.ENGINE} adapter ({key})")
    del _ADAPTER_CACHE[key]
    _close_quietly(adapter)
    return None


def get_adapter(
    engine: str,
    config: Optional[Dict[str, Any]] = None,
    use_cache: bool = True
) -> BaseAdapter:
    """
    Connected adapter for an engine name.

    Raises:
        QueryGateError: ERR_4005 when no adapter is registered for engine
        ConnectionError: when the backend cannot be reached
    """
    config = config or {}
    name = engine.lower()
    adapter_class = _ADAPTER_REGISTRY.get(name)
    if adapter_class is None:
        raise engine_unsupported(engine, list_adapters())

    if not use_cache:
        adapter = adapter_class(config)
        adapter.connect()
        return adapter

    key = _cache_key(name, config)
    with _CACHE_LOCK:
        adapter = _take_cached(key)
        if adapter is None:
            adapter = adapter_class(config)
            adapter.connect()
            _ADAPTER_CACHE[key] = adapter
            logger.info(f"Opened {name} adapter ({key})")
    return adapter


def get_adapter_for_source(source: DataSource, store: Optional[TableStore] = None) -> BaseAdapter:
    """Adapter for a request's dataSource."""
    if source.is_memory:
        adapter = _ADAPTER_REGISTRY["memory"](source.config, store=store)
        adapter.connect()
        return adapter

    if not source.engine:
        raise engine_unsupported("(none)", list_adapters())
    return get_adapter(source.engine, source.config)


def close_all_adapters() -> int:
    """Disconnect and forget every cached adapter. Returns how many were closed."""
    with _CACHE_LOCK:
        adapters = list(_ADAPTER_CACHE.values())
        _ADAPTER_CACHE.clear()
    for adapter in adapters:
        _close_quietly(adapter)
    return len(adapters)


def get_adapters_status() -> Dict[str, Any]:
    with _CACHE_LOCK:
        cached = {key: adapter.get_engine_info() for key, adapter in _ADAPTER_CACHE.items()}
    return {
        "registered_engines": list_adapters(),
        "cached_adapters": cached,
        "cache_count": len(cached)
    }
