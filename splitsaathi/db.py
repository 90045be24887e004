import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional

from mysql.connector import pooling

from .config import Config

logger = logging.getLogger(__name__)


class Database:
    """Pooled access to the MySQL database backing ``MySQLStore``.

    The pool is opened on first use so that building a store never needs a
    running server.
    """

    def __init__(self, settings: Optional[Config] = None) -> None:
        self.settings = settings or Config()
        self._pool: Optional[pooling.MySQLConnectionPool] = None
        # connection holding a named lock, reused by the same thread while held
        self._pinned = threading.local()

    @property
    def pool(self) -> pooling.MySQLConnectionPool:
        if self._pool is None:
            logger.info(
                "opening MySQL pool of %d connections to %s:%s/%s",
                self.settings.DB_POOL_SIZE,
                self.settings.DB_HOST,
                self.settings.DB_PORT,
                self.settings.DB_NAME,
            )
            self._pool = pooling.MySQLConnectionPool(
                pool_name="splitsaathi_pool",
                pool_size=self.settings.DB_POOL_SIZE,
                host=self.settings.DB_HOST,
                port=self.settings.DB_PORT,
                user=self.settings.DB_USER,
                password=self.settings.DB_PASSWORD,
                database=self.settings.DB_NAME,
                auth_plugin="mysql_native_password",
            )
        return self._pool

    @contextmanager
    def connection(self):
        pinned = getattr(self._pinned, "conn", None)
        if pinned is not None:
            yield pinned
            return
        conn = self.pool.get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Yield a dictionary cursor whose statements commit or roll back together."""
        with self.connection() as conn:
            conn.start_transaction()
            cursor = conn.cursor(dictionary=True)
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    @contextmanager
    def named_lock(self, name: str, timeout: int) -> Iterator[None]:
        # GET_LOCK belongs to the session, so acquire and release share a connection
        with self.connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute("SELECT GET_LOCK(%s, %s)", (name, timeout))
                row = cursor.fetchone()
                if not row or row[0] != 1:
                    raise TimeoutError(f"could not acquire lock {name} within {timeout}s")
                previous = getattr(self._pinned, "conn", None)
                self._pinned.conn = conn
                try:
                    yield
                finally:
                    self._pinned.conn = previous
                    cursor.execute("SELECT RELEASE_LOCK(%s)", (name,))
                    cursor.fetchone()
            finally:
                cursor.close()

    def fetch_one(self, query: str, params: Optional[Iterable[Any]] = None) -> Optional[Dict[str, Any]]:
        with self.transaction() as cursor:
            cursor.execute(query, params or ())
            return cursor.fetchone()

    def fetch_all(self, query: str, params: Optional[Iterable[Any]] = None) -> Iterable[Dict[str, Any]]:
        with self.transaction() as cursor:
            cursor.execute(query, params or ())
            return cursor.fetchall()

    def execute(self, query: str, params: Optional[Iterable[Any]] = None) -> int:
        with self.transaction() as cursor:
            cursor.execute(query, params or ())
            return cursor.lastrowid
