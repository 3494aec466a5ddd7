"""
SQLite Adapter for QueryGate

Serves dashboards whose data ships as a single SQLite file. Files open
through a read-only URI unless read_only is turned off, which only the
seeding helpers do.

Requirements:
    None, sqlite3 ships with Python
"""

import os
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional, Type

from app.adapters.base import ConnectionError, EmbeddedAdapter

logger = logging.getLogger(__name__)


class SQLiteAdapter(EmbeddedAdapter):
    """
    Adapter for SQLite databases.

    Extra config options:
        read_only: default True
        timeout: busy timeout in seconds (default: 30)
        create: allow a missing database file to be created (default: False)

    Example:
        adapter = SQLiteAdapter({"database": "/data/sales.db"})
        adapter.connect()
        result = adapter.execute("SELECT * FROM orders WHERE region = ?", ["EU"])
    """

    ENGINE = "sqlite"
    LABEL = "SQLite"
    READ_ONLY = True

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)

        if not self.is_memory and not self.config.get("create", False):
            if not os.path.exists(self.database):
                raise ConnectionError(
                    f"Database file not found: {self.database}",
                    engine=self.ENGINE
                )

        self.timeout = float(self.config.get("timeout", 30.0))

    def driver_error(self) -> Type[Exception]:
        return sqlite3.Error

    def _open(self):
        if self.read_only and not self.is_memory:
            target, uri = f"file:{Path(self.database).absolute()}?mode=ro", True
        else:
            target, uri = self.database, False
        return sqlite3.connect(target, uri=uri, timeout=self.timeout, check_same_thread=False)

    def _run_script(self, script: str) -> None:
        self._connection.executescript(script)
