"""
Base Adapter Interface for QueryGate

Every execution backend (the in-memory engine and real databases)
implements this interface, so the orchestrator never knows which one it
is talking to.

DESIGN PRINCIPLES:
-----------------
1. Query parameters use ? markers (adapter converts as needed)
2. Markers inside string literals are never converted
3. Results are returned as a list of dicts (engine-agnostic)
4. Errors are wrapped in AdapterError and keep the driver's message, which
   the column-error classifier inspects
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Type

from app.domain.query.sqltext import replace_markers

logger = logging.getLogger(__name__)


class AdapterError(Exception):
    """Base exception for adapter errors."""

    def __init__(self, message: str, engine: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.engine = engine
        self.original_error = original_error


class ConnectionError(AdapterError):
    """Failed to connect to the data source."""
    pass


class QueryError(AdapterError):
    """Query execution failed."""
    pass


@dataclass
class AdapterResult:
    """
    Standardized result from query execution.

    Attributes:
        rows: List of result rows as dicts
        columns: List of column names
        row_count: Number of rows returned
        execution_time_ms: Query execution time in milliseconds
        engine: Engine name
        sql: Executed SQL (with markers, not values)
    """
    rows: List[Dict[str, Any]]
    columns: List[str]
    row_count: int = 0
    execution_time_ms: float = 0.0
    engine: str = ""
    sql: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.row_count = len(self.rows)


class BaseAdapter(ABC):
    """
    Abstract base class for execution backends.

    Each adapter must implement:
    - connect(): Establish the connection
    - disconnect(): Close it
    - execute(): Run a query with parameters
    - health_check(): Verify the connection is usable

    Usage:
        adapter = SQLiteAdapter({"database": "sales.db"})
        adapter.connect()

        result = adapter.execute(
            sql="SELECT * FROM orders WHERE region = ?",
            params=["EU"]
        )

        adapter.disconnect()
    """

    ENGINE: str = "base"
    PLACEHOLDER: str = "?"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self._connection = None
        self._connected = False
        self._last_used = None

    @abstractmethod
    def connect(self) -> None:
        """
        Establish connection.

        Raises:
            ConnectionError: If connection fails
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close connection. Safe to call when not connected."""
        pass

    @abstractmethod
    def execute(self, sql: str, params: Optional[List[Any]] = None) -> AdapterResult:
        """
        Execute SQL and return results.

        Args:
            sql: SQL with ? markers for parameters
            params: Parameter values (order matches ? positions)

        Raises:
            QueryError: If query execution fails
        """
        pass

    @abstractmethod
    def health_check(self) -> bool:
        pass

    def convert_placeholders(self, sql: str, params: Optional[List[Any]] = None) -> Tuple[str, List[Any]]:
        """
        Convert ? markers to the driver's format.

        Default implementation returns sql unchanged (sqlite, duckdb).
        """
        return sql, list(params or [])

    def known_columns(self, sql: str) -> List[str]:
        """
        Real column names of the table a query reads, when cheaply known.

        Used to sharpen auto-inference. Database adapters return [] and
        inference falls back to the identifiers found in the SQL.
        """
        return []

    def is_connected(self) -> bool:
        return self._connected

    def get_engine_info(self) -> Dict[str, Any]:
        return {
            "engine": self.ENGINE,
            "connected": self._connected,
            "placeholder": self.PLACEHOLDER,
            "last_used": self._last_used.isoformat() if self._last_used else None
        }

    def _update_last_used(self):
        self._last_used = datetime.now(timezone.utc)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
        return False


# =============================================================================
# EMBEDDED DATABASES
# =============================================================================

class EmbeddedAdapter(BaseAdapter):
    """
    One in-process connection shared by every worker thread of a batch.

    Each use of the connection holds the adapter lock. Subclasses open
    the connection and name their driver's base exception.

    Config options (common):
        database: file path or ":memory:" (default)
        read_only: defaults to READ_ONLY
    """

    LABEL = "database"
    READ_ONLY = False

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.database = self.config.get("database", ":memory:")
        self.is_memory = self.database == ":memory:"
        self.read_only = self.config.get("read_only", self.READ_ONLY)
        self._lock = threading.Lock()

    @abstractmethod
    def driver_error(self) -> Type[Exception]:
        """Base exception class of the driver."""

    @abstractmethod
    def _open(self) -> Any:
        """Return a new connection to self.database."""

    def _run_script(self, script: str) -> None:
        self._connection.execute(script)

    def connect(self) -> None:
        try:
            self._connection = self._open()
        except Exception as e:
            raise ConnectionError(
                f"Failed to connect to {self.LABEL}: {e}",
                engine=self.ENGINE,
                original_error=e
            )
        self._connected = True
        logger.info(f"{self.LABEL} connected: {self.database} (read_only={self.read_only})")

    def disconnect(self) -> None:
        if self._connection is None:
            self._connected = False
            return
        try:
            self._connection.close()
        except self.driver_error() as e:
            logger.warning(f"Error closing {self.LABEL} connection: {e}")
        finally:
            self._connection = None
            self._connected = False

    def _require_connection(self) -> None:
        if not self._connected or self._connection is None:
            raise QueryError(f"Not connected to {self.LABEL}", engine=self.ENGINE)

    def execute(self, sql: str, params: Optional[List[Any]] = None) -> AdapterResult:
        self._require_connection()
        self._update_last_used()
        start_time = time.perf_counter()

        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute(sql, list(params or []))
                columns = [desc[0] for desc in cursor.description] if cursor.description else []
                records = cursor.fetchall() if columns else []
            except self.driver_error() as e:
                raise QueryError(
                    f"{self.LABEL} query failed: {e}",
                    engine=self.ENGINE,
                    original_error=e
                )
            finally:
                cursor.close()

        return AdapterResult(
            rows=[dict(zip(columns, record)) for record in records],
            columns=columns,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
            engine=self.ENGINE,
            sql=sql,
            metadata={"database": self.database, "read_only": self.read_only}
        )

    def execute_script(self, script: str) -> None:
        """Run several statements at once. Used for seeding, never for templates."""
        self._require_connection()
        with self._lock:
            try:
                self._run_script(script)
            except self.driver_error() as e:
                raise QueryError(
                    f"{self.LABEL} script failed: {e}",
                    engine=self.ENGINE,
                    original_error=e
                )

    def health_check(self) -> bool:
        if not self._connected or self._connection is None:
            return False
        try:
            with self._lock:
                self._connection.execute("SELECT 1").fetchone()
            return True
        except self.driver_error():
            return False


# =============================================================================
# POOLED NETWORK DATABASES
# =============================================================================

class PooledAdapter(BaseAdapter):
    """
    Shared flow for networked databases reached through a driver pool.

    Subclasses supply the pool and one round trip on a borrowed
    connection. Markers become %s, and driver messages pass through
    unchanged inside QueryError for the column-error classifier.

    Config options (common):
        host, database, user: required
        port: defaults to DEFAULT_PORT
        password: default ""
        connect_timeout: seconds (default: 10)
        pool_size: pooled connections (default: 5)
    """

    LABEL = "database"
    PLACEHOLDER = "%s"
    DEFAULT_PORT = 0
    REQUIRED_CONFIG: Tuple[str, ...] = ("host", "database", "user")

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)

        missing = [k for k in self.REQUIRED_CONFIG if k not in self.config]
        if missing:
            raise ConnectionError(
                f"Missing required config: {', '.join(missing)}",
                engine=self.ENGINE
            )

        self.host = self.config["host"]
        self.port = int(self.config.get("port", self.DEFAULT_PORT))
        self.database = self.config["database"]
        self.user = self.config["user"]
        self.password = self.config.get("password", "")
        self.connect_timeout = int(self.config.get("connect_timeout", 10))
        self.pool_size = max(1, int(self.config.get("pool_size", 5)))
        self._pool = None

    @property
    def location(self) -> str:
        return f"{self.host}:{self.port}/{self.database}"

    # -- driver hooks ---------------------------------------------------------

    @abstractmethod
    def driver_error(self) -> Type[Exception]:
        """Base exception class of the driver."""

    @abstractmethod
    def _open_pool(self) -> Any:
        pass

    @abstractmethod
    def _borrow(self) -> Any:
        pass

    @abstractmethod
    def _release(self, conn: Any) -> None:
        pass

    @abstractmethod
    def _run(self, conn: Any, sql: str, params: List[Any]) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Execute on a borrowed connection and return (columns, rows)."""

    def _close_pool(self) -> None:
        """Close pooled connections. Dropping the pool is enough for most drivers."""

    # -- BaseAdapter ----------------------------------------------------------

    def connect(self) -> None:
        driver_error = self.driver_error()
        try:
            self._pool = self._open_pool()
            self._release(self._borrow())
        except driver_error as e:
            self._pool = None
            raise ConnectionError(
                f"Failed to connect to {self.LABEL}: {e}",
                engine=self.ENGINE,
                original_error=e
            )

        self._connected = True
        logger.info(f"{self.LABEL} connected: {self.location}")

    def disconnect(self) -> None:
        try:
            if self._pool is not None:
                self._close_pool()
        except self.driver_error() as e:
            logger.warning(f"Error closing {self.LABEL} pool: {e}")
        finally:
            self._pool = None
            self._connected = False

    def convert_placeholders(self, sql: str, params: Optional[List[Any]] = None) -> Tuple[str, List[Any]]:
        """Drivers only apply %-formatting when values are passed."""
        values = list(params or [])
        if not values:
            return sql, values
        return to_pyformat(sql), values

    def execute(self, sql: str, params: Optional[List[Any]] = None) -> AdapterResult:
        if not self._connected:
            raise QueryError(f"Not connected to {self.LABEL}", engine=self.ENGINE)

        self._update_last_used()
        start_time = time.perf_counter()
        driver_sql, driver_params = self.convert_placeholders(sql, params)
        driver_error = self.driver_error()

        try:
            conn = self._borrow()
        except driver_error as e:
            raise ConnectionError(
                f"{self.LABEL} connection unavailable: {e}",
                engine=self.ENGINE,
                original_error=e
            )

        try:
            columns, rows = self._run(conn, driver_sql, driver_params)
        except driver_error as e:
            raise QueryError(
                f"{self.LABEL} query failed: {e}",
                engine=self.ENGINE,
                original_error=e
            )
        finally:
            self._release(conn)

        return AdapterResult(
            rows=rows,
            columns=columns,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
            engine=self.ENGINE,
            sql=sql,
            metadata={"host": self.host, "database": self.database}
        )

    def health_check(self) -> bool:
        if not self._connected or self._pool is None:
            return False

        driver_error = self.driver_error()
        try:
            conn = self._borrow()
        except driver_error:
            return False
        try:
            self._run(conn, "SELECT 1", [])
            return True
        except driver_error:
            return False
        finally:
            self._release(conn)


def to_pyformat(sql: str) -> str:
    """
    Rewrite ? markers as %s for pyformat drivers (psycopg2, mysql).

    Literal percent signs outside markers are doubled so the driver does
    not read them as format directives.
    """
    escaped = sql.replace("%", "%%")
    return replace_markers(escaped, "?", lambda _index: "%s")
