from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, TypeVar

import streamlit as st

from fishfarm.errors import ConflictError, TransientStoreError
from fishfarm.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = ("database is locked", "database is busy", "disk i/o error")


class FarmConnection(sqlite3.Connection):
    """sqlite3 connection that knows whether an explicit transaction is open."""

    tx_depth = 0


def connect(db_path: Path, *, timeout: float = 5.0) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=timeout, factory=FarmConnection)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@st.cache_resource
def get_conn(db_path: Path) -> sqlite3.Connection:
    return connect(db_path)


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    cols = [r["name"] for r in rows]
    return column in cols


def ensure_schema(conn: sqlite3.Connection) -> None:
    # Create base schema (for new installs)
    conn.executescript(SCHEMA_SQL)

    # ---- migrations for existing installs ----
    if not _column_exists(conn, "storage_locations", "temperature_c"):
        conn.execute("ALTER TABLE storage_locations ADD COLUMN temperature_c REAL;")
    if not _column_exists(conn, "storage_locations", "humidity_pct"):
        conn.execute("ALTER TABLE storage_locations ADD COLUMN humidity_pct REAL;")

    if not _column_exists(conn, "stock_records", "transfer_source_storage_id"):
        conn.execute("ALTER TABLE stock_records ADD COLUMN transfer_source_storage_id INTEGER;")

    conn.commit()


def _in_transaction(conn: sqlite3.Connection) -> bool:
    return getattr(conn, "tx_depth", 0) > 0


def q(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    cur = conn.execute(sql, tuple(params or ()))
    rows = cur.fetchall()
    cur.close()
    return rows


def x(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> int:
    cur = conn.execute(sql, tuple(params))
    if not _in_transaction(conn):
        conn.commit()
    last = cur.lastrowid
    cur.close()
    return int(last or 0)


def u(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> int:
    """Like x() but returns the number of rows touched (for conditional updates)."""
    cur = conn.execute(sql, tuple(params))
    if not _in_transaction(conn):
        conn.commit()
    n = cur.rowcount
    cur.close()
    return int(n)


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    All writes inside the block commit together or not at all.
    Nested blocks join the outermost transaction.
    """
    depth = getattr(conn, "tx_depth", 0)
    if depth == 0 and not conn.in_transaction:
        conn.execute("BEGIN IMMEDIATE")
    conn.tx_depth = depth + 1
    try:
        yield conn
    except BaseException:
        conn.tx_depth = depth
        if depth == 0:
            conn.rollback()
        raise
    conn.tx_depth = depth
    if depth == 0:
        conn.commit()


def is_transient(exc: BaseException) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    msg = str(exc).lower()
    return any(m in msg for m in _TRANSIENT_MARKERS)


def atomic(
    conn: sqlite3.Connection,
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    delay: float = 0.5,
) -> T:
    """
    Run operation() in one transaction. Transient store failures are retried
    with exponential backoff; integrity violations become ConflictError.
    """
    attempts = max(1, int(attempts))
    wait = float(delay)
    for attempt in range(1, attempts + 1):
        try:
            with transaction(conn):
                return operation()
        except sqlite3.IntegrityError as e:
            raise ConflictError(str(e)) from e
        except sqlite3.OperationalError as e:
            if not is_transient(e):
                raise
            if attempt == attempts:
                raise TransientStoreError(f"gave up after {attempts} attempts ({e})") from e
            logger.warning("Attempt %s failed (%s), retrying in %.2fs", attempt, e, wait)
            time.sleep(wait)
            wait *= 2
    raise TransientStoreError("no attempts made")
