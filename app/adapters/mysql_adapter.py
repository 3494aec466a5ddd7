"""
MySQL Adapter for QueryGate

Also used for MariaDB, which speaks the same protocol.

Features:
- Connection pooling (one pooled connection per query)
- SSL/TLS encryption

Requirements:
    pip install "querygate[mysql]"
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type

try:
    import mysql.connector
    from mysql.connector import pooling
    MYSQL_AVAILABLE = True
except ImportError:
    MYSQL_AVAILABLE = False
    mysql = None

from app.adapters.base import ConnectionError, PooledAdapter

logger = logging.getLogger(__name__)


class MySQLAdapter(PooledAdapter):
    """
    Adapter for MySQL database.

    Extra config options:
        port: default 3306
        charset: Character set (default: utf8mb4)
        ssl_disabled: Disable SSL (default: False)
        ssl_ca: Path to CA certificate
        pool_name: Pool name (default: "querygate_pool")
    """

    ENGINE = "mysql"
    LABEL = "MySQL"
    DEFAULT_PORT = 3306

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if not MYSQL_AVAILABLE:
            raise ConnectionError(
                "mysql-connector-python not installed. "
                "Run: pip install mysql-connector-python",
                engine=self.ENGINE
            )
        super().__init__(config)
        self.charset = self.config.get("charset", "utf8mb4")
        self.ssl_disabled = self.config.get("ssl_disabled", False)
        self.ssl_ca = self.config.get("ssl_ca")
        self.pool_name = self.config.get("pool_name", "querygate_pool")

    def driver_error(self) -> Type[Exception]:
        return mysql.connector.Error

    def _connection_params(self) -> Dict[str, Any]:
        params = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "charset": self.charset,
            "connect_timeout": self.connect_timeout,
            "autocommit": True,
        }
        if self.ssl_disabled:
            params["ssl_disabled"] = True
        elif self.ssl_ca:
            params["ssl_ca"] = self.ssl_ca
        return params

    def _open_pool(self):
        logger.info(f"Connecting to MySQL: {self.location}")
        return pooling.MySQLConnectionPool(
            pool_name=self.pool_name,
            pool_size=self.pool_size,
            **self._connection_params()
        )

    def _borrow(self):
        return self._pool.get_connection()

    def _release(self, conn) -> None:
        # close() hands a pooled connection back
        conn.close()

    def _run(self, conn, sql: str, params: List[Any]) -> Tuple[List[str], List[Dict[str, Any]]]:
        cursor = conn.cursor(dictionary=True)
        try:
            if params:
                cursor.execute(sql, params)
            else:
                cursor.execute(sql)
            if not cursor.description:
                return [], []
            return [desc[0] for desc in cursor.description], list(cursor.fetchall())
        finally:
            cursor.close()
