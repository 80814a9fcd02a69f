# ledger/connection.py
import re
import sqlite3
import logging
from contextlib import contextmanager

import psycopg2

import settings
from ledger.errors import LedgerUnavailable

logging.basicConfig(level=logging.INFO)

# Read at call time so tests and scripts can point the ledger elsewhere.
DATABASE_URL = settings.DATABASE_URL

SQLITE_PREFIX = "sqlite:///"
INTEGRITY_ERRORS = (psycopg2.IntegrityError, sqlite3.IntegrityError)
UNAVAILABLE_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError, sqlite3.OperationalError)
PSYCOPG_TOKENS = re.compile(r"'(?:[^']|'')*'|%s|%%|\s+FOR UPDATE\b")


class SQLiteCursor:
    """Cursor wrapper that accepts psycopg2-style queries."""

    def __init__(self, cursor):
        self._cursor = cursor

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self._cursor.close()

    @staticmethod
    def _translate(query: str) -> str:
        # Same escaping as psycopg2: %% is a literal percent everywhere. FOR UPDATE is
        # only dropped outside quotes; sqlite serializes writers with BEGIN IMMEDIATE.
        def swap(match):
            token = match.group(0)
            if token.startswith("'"):
                return token.replace("%%", "%")
            if token == "%s":
                return "?"
            if token == "%%":
                return "%"
            return ""
        return PSYCOPG_TOKENS.sub(swap, query)

    def execute(self, query, params=()):
        self._cursor.execute(self._translate(query), tuple(params))
        return self

    def executemany(self, query, seq_of_params):
        self._cursor.executemany(self._translate(query), [tuple(p) for p in seq_of_params])
        return self

    def fetchone(self):
        return self._cursor.fetchone()

    def fetchall(self):
        return self._cursor.fetchall()

    @property
    def rowcount(self):
        return self._cursor.rowcount

    @property
    def description(self):
        return self._cursor.description


class SQLiteConnection:
    """
    Wraps a sqlite3 connection in the subset of the psycopg2 connection API the
    ledger uses (cursor/commit/rollback/close), so every query is written once.
    """

    def __init__(self, path: str):
        self._conn = sqlite3.connect(path, timeout=30, isolation_level=None)
        self._conn.execute("PRAGMA foreign_keys = ON;")

    def cursor(self):
        return SQLiteCursor(self._conn.cursor())

    def begin(self):
        self._conn.execute("BEGIN IMMEDIATE;")

    def commit(self):
        if self._conn.in_transaction:
            self._conn.execute("COMMIT;")

    def rollback(self):
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK;")

    def close(self):
        self._conn.close()


def is_sqlite(conn) -> bool:
    return isinstance(conn, SQLiteConnection)


def get_connection(database_url: str = None):
    """Opens a connection to the ledger database (PostgreSQL or SQLite)."""
    url = database_url or DATABASE_URL
    try:
        if url.startswith(SQLITE_PREFIX):
            return SQLiteConnection(url[len(SQLITE_PREFIX):])
        return psycopg2.connect(url)
    except (psycopg2.Error, sqlite3.Error) as e:
        logging.error(f"Error connecting to the ledger database: {e}")
        raise LedgerUnavailable(str(e)) from e


@contextmanager
def transaction(write: bool = True):
    """
    Yields a cursor inside a single transaction. Commits when the block exits
    cleanly, rolls back and re-raises otherwise, and always closes the connection.
    Lost connections and lock timeouts surface as LedgerUnavailable.
    """
    conn = get_connection()
    try:
        if write and is_sqlite(conn):
            conn.begin()
        with conn.cursor() as cursor:
            yield cursor
        conn.commit()
    except UNAVAILABLE_ERRORS as e:
        logging.error(f"Ledger transaction aborted, database unavailable: {e}")
        _safe_rollback(conn)
        raise LedgerUnavailable(str(e)) from e
    except Exception:
        _safe_rollback(conn)
        raise
    finally:
        conn.close()


def _safe_rollback(conn):
    try:
        conn.rollback()
    except (psycopg2.Error, sqlite3.Error) as e:
        logging.warning(f"Rollback failed: {e}")


def rows_to_dicts(cursor, rows) -> list:
    columns = [col[0] for col in cursor.description]
    return [dict(zip(columns, row)) for row in rows]


def row_to_dict(cursor, row):
    if row is None:
        return None
    return rows_to_dicts(cursor, [row])[0]
