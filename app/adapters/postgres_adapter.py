"""
PostgreSQL Adapter for QueryGate

Features:
- Connection pooling (ThreadedConnectionPool, one connection per query)
- SSL support
- Read-only sessions, rolled back after every statement

Requirements:
    pip install "querygate[postgres]"
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type

try:
    import psycopg2
    import psycopg2.pool
    PSYCOPG2_AVAILABLE = True
except ImportError:
    PSYCOPG2_AVAILABLE = False
    psycopg2 = None

from app.adapters.base import ConnectionError, PooledAdapter

logger = logging.getLogger(__name__)


class PostgresAdapter(PooledAdapter):
    """
    Adapter for PostgreSQL database.

    Extra config options:
        port: default 5432
        sslmode: SSL mode (default: prefer)

    Example:
        adapter = PostgresAdapter({
            "host": "localhost",
            "database": "analytics",
            "user": "readonly",
            "password": "secret"
        })
        adapter.connect()
        result = adapter.execute("SELECT * FROM orders WHERE region = ?", ["EU"])
    """

    ENGINE = "postgres"
    LABEL = "PostgreSQL"
    DEFAULT_PORT = 5432

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if not PSYCOPG2_AVAILABLE:
            raise ConnectionError(
                "psycopg2 not installed. Run: pip install psycopg2-binary",
                engine=self.ENGINE
            )
        super().__init__(config)
        self.sslmode = self.config.get("sslmode", "prefer")

    def driver_error(self) -> Type[Exception]:
        return psycopg2.Error

    def _open_pool(self):
        return psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=self.pool_size,
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=self.password,
            sslmode=self.sslmode,
            connect_timeout=self.connect_timeout,
            options="-c default_transaction_read_only=on",
        )

    def _borrow(self):
        return self._pool.getconn()

    def _release(self, conn) -> None:
        try:
            conn.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Discarding PostgreSQL connection after failed rollback: {e}")
            self._pool.putconn(conn, close=True)
            return
        self._pool.putconn(conn)

    def _close_pool(self) -> None:
        self._pool.closeall()

    def _run(self, conn, sql: str, params: List[Any]) -> Tuple[List[str], List[Dict[str, Any]]]:
        with conn.cursor() as cursor:
            cursor.execute(sql, params or None)
            if not cursor.description:
                return [], []
            columns = [desc[0] for desc in cursor.description]
            return columns, [dict(zip(columns, row)) for row in cursor.fetchall()]
