"""Bounded pool of dictionary connections."""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..errors import ConnectionError

logger = logging.getLogger(__name__)


def _is_connected(conn: Any) -> bool:
    return getattr(conn, "is_connected", True)


def _close_quietly(conn: Any) -> None:
    close = getattr(conn, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as e:
        logger.debug(f"Error closing pooled connection: {e}")


class ConnectionPool:
    """
    Thread-safe pool handing out connections created by ``factory``.

    Callers must pair every ``acquire()`` with a ``release()``; the
    ``connection()`` context manager does this on every exit path.
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        size: int = 5,
        acquire_timeout: float = 10.0,
    ):
        """
        Initialize the pool.

        Args:
            factory: Zero-argument callable opening a new connection
            size: Maximum number of connections (available + busy)
            acquire_timeout: Seconds to wait for a free connection
        """
        self.factory = factory
        self.size = size
        self.acquire_timeout = acquire_timeout

        self._available: List[Any] = []
        self._busy: List[Any] = []
        self._waiting = 0
        self._drained = False
        self._condition = threading.Condition()

    def stats(self) -> Dict[str, int]:
        with self._condition:
            return {
                "total": len(self._available) + len(self._busy),
                "available": len(self._available),
                "busy": len(self._busy),
                "waiting": self._waiting,
            }

    def acquire(self) -> Any:
        """
        Take a connection, opening a new one while below ``size``.

        Raises:
            ConnectionError: If the pool is drained or the wait times out
        """
        deadline = time.monotonic() + self.acquire_timeout
        with self._condition:
            while True:
                if self._drained:
                    raise ConnectionError("Pool has been drained", {"code": "POOL_DRAINED"})

                while self._available:
                    conn = self._available.pop()
                    if _is_connected(conn):
                        self._busy.append(conn)
                        return conn
                    _close_quietly(conn)

                if len(self._busy) < self.size:
                    conn = self.factory()
                    self._busy.append(conn)
                    logger.debug(f"Opened pooled connection ({len(self._busy)}/{self.size})")
                    return conn

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ConnectionError(
                        f"Acquire timeout after {self.acquire_timeout}s",
                        {"code": "POOL_ACQUIRE_TIMEOUT", "busy": len(self._busy), "size": self.size},
                    )
                self._waiting += 1
                try:
                    self._condition.wait(remaining)
                finally:
                    self._waiting -= 1

    def release(self, conn: Any) -> None:
        """Return a connection; dead or post-drain connections are closed."""
        with self._condition:
            if conn in self._busy:
                self._busy.remove(conn)
            if self._drained or not _is_connected(conn):
                _close_quietly(conn)
            else:
                self._available.append(conn)
            self._condition.notify()

    @contextmanager
    def connection(self) -> Iterator[Any]:
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def drain(self) -> None:
        """Close every connection and refuse further acquires."""
        with self._condition:
            self._drained = True
            for conn in self._available + self._busy:
                _close_quietly(conn)
            self._available = []
            self._busy = []
            self._condition.notify_all()
        logger.info("Dictionary connection pool drained")

    @property
    def drained(self) -> bool:
        return self._drained

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, exc_type: Optional[type], exc: Optional[BaseException], tb: Any) -> None:
        self.drain()
