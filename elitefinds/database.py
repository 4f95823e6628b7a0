"""
database.py — Document store and session for Elite Finds.
Supports both SQLite (local/offline) and PostgreSQL (cloud/online).
The engine is picked from the configured connection string:

    sqlite:///data/elitefinds.db      local SQLite file
    sqlite:///:memory:                throwaway in-memory store
    data/elitefinds.db                bare path ending in .db/.sqlite/.sqlite3
    postgresql://user:pw@host/db      PostgreSQL

Each collection is one table holding JSON documents keyed by a string id.
"""

import json
import logging
import re
import sqlite3
import threading
import uuid
from pathlib import Path

from elitefinds.errors import NoDatabaseConnection, StoreIOError

logger = logging.getLogger(__name__)

SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")
_COLLECTION_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")


# ---------------------------------------------------------------------------
# Engine detection
# ---------------------------------------------------------------------------

def detect_engine(connection_string):
    """Return ("postgres", url) or ("sqlite", path) for a connection string."""
    value = (connection_string or "").strip()
    if not value:
        raise ValueError("Connection string is empty")
    if value.startswith("postgres://") or value.startswith("postgresql://"):
        return "postgres", value.replace("postgres://", "postgresql://", 1)
    if value.startswith("sqlite:///"):
        path = value[len("sqlite:///"):]
        if not path:
            raise ValueError("SQLite connection string has no path")
        return "sqlite", path
    if value.lower().endswith(SQLITE_SUFFIXES):
        return "sqlite", value
    raise ValueError(f"Unsupported connection string: {value[:40]}")


# ---------------------------------------------------------------------------
# PostgreSQL wrapper: psycopg2 behind the sqlite3 interface
# ---------------------------------------------------------------------------

class PgCursorWrapper:
    """Wraps a psycopg2 RealDictCursor to behave like sqlite3.Cursor."""

    def __init__(self, real_cursor):
        self._cur = real_cursor

    @property
    def rowcount(self):
        return self._cur.rowcount

    def fetchone(self):
        row = self._cur.fetchone()
        if row is None:
            return None
        return DictRow(row)

    def fetchall(self):
        return [DictRow(r) for r in self._cur.fetchall()]


class DictRow(dict):
    """A dict that also supports integer index access like sqlite3.Row."""

    def __getitem__(self, key):
        if isinstance(key, int):
            return list(self.values())[key]
        return super().__getitem__(key)


class PgConnectionWrapper:
    """
    Wraps a psycopg2 connection to behave like a sqlite3 connection.
    Translates ? placeholders to %s; everything else in the store's SQL is
    portable between the two engines.
    """

    def __init__(self, real_conn):
        self._conn = real_conn

    def execute(self, sql, params=None):
        import psycopg2.extras

        sql = sql.replace("?", "%s")
        try:
            cur = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                cur.execute(sql, params)
            else:
                cur.execute(sql)
            return PgCursorWrapper(cur)
        except Exception:
            self._conn.rollback()
            raise

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def _connect_sqlite(path):
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    # Shared by the Flask worker threads; Session serialises access.
    conn = sqlite3.connect(path, timeout=10, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def _connect_postgres(url):
    import psycopg2

    raw_conn = psycopg2.connect(url)
    raw_conn.autocommit = False
    return PgConnectionWrapper(raw_conn)


# ---------------------------------------------------------------------------
# Document store
# ---------------------------------------------------------------------------

SQLITE_COLLECTION = """
CREATE TABLE IF NOT EXISTS {name} (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    data TEXT NOT NULL
)
"""

PG_COLLECTION = """
CREATE TABLE IF NOT EXISTS {name} (
    seq SERIAL PRIMARY KEY,
    id TEXT UNIQUE NOT NULL,
    data TEXT NOT NULL
)
"""


def new_document_id():
    return uuid.uuid4().hex[:24]


def _matches(document, filters):
    return all(document.get(field) == value for field, value in filters.items())


class DocumentStore:
    """
    JSON documents in one table per collection.

    Documents carry their id under "_id". Reads come back in insertion
    order; saving an existing id rewrites it in place.
    """

    def __init__(self, conn, engine):
        self._conn = conn
        self.engine = engine
        self._collections = set()
        self._lock = threading.RLock()

    def _table(self, collection):
        if not _COLLECTION_NAME.match(collection):
            raise ValueError(f"Invalid collection name: {collection!r}")
        return collection

    def ensure_collection(self, collection):
        table = self._table(collection)
        with self._lock:
            if table in self._collections:
                return
            template = PG_COLLECTION if self.engine == "postgres" else SQLITE_COLLECTION
            self._run(template.format(name=table))
            self._conn.commit()
            self._collections.add(table)

    def find(self, collection, filters=None):
        table = self._table(collection)
        with self._lock:
            rows = self._run(f"SELECT id, data FROM {table} ORDER BY seq").fetchall()
        documents = []
        for row in rows:
            document = json.loads(row["data"])
            document["_id"] = row["id"]
            if not filters or _matches(document, filters):
                documents.append(document)
        return documents

    def first(self, collection, filters):
        for document in self.find(collection, filters):
            return document
        return None

    def save(self, collection, document):
        """Insert or replace a document by _id; returns the stored id."""
        table = self._table(collection)
        doc_id = document.get("_id") or new_document_id()
        body = {k: v for k, v in document.items() if k != "_id"}
        with self._lock:
            try:
                self._run(
                    f"INSERT INTO {table} (id, data) VALUES (?, ?) "
                    f"ON CONFLICT (id) DO UPDATE SET data = excluded.data",
                    (doc_id, json.dumps(body)),
                )
                self._conn.commit()
            except StoreIOError:
                self._rollback()
                raise
        return doc_id

    def delete(self, collection, filters):
        ids = [doc["_id"] for doc in self.find(collection, filters)]
        return self.delete_ids(collection, ids)

    def delete_ids(self, collection, ids):
        table = self._table(collection)
        removed = 0
        with self._lock:
            try:
                for doc_id in ids:
                    removed += max(self._run(f"DELETE FROM {table} WHERE id = ?", (doc_id,)).rowcount, 0)
                self._conn.commit()
            except StoreIOError:
                self._rollback()
                raise
        return removed

    def ping(self):
        with self._lock:
            self._run("SELECT 1").fetchone()

    def close(self):
        with self._lock:
            self._conn.close()

    def _run(self, sql, params=None):
        try:
            if params:
                return self._conn.execute(sql, params)
            return self._conn.execute(sql)
        except Exception as e:
            raise StoreIOError(str(e)) from e

    def _rollback(self):
        try:
            self._conn.rollback()
        except Exception as e:
            logger.warning("Rollback failed: %s", e)


def open_store(connection_string):
    """Open a DocumentStore for the connection string; raises on failure."""
    engine, target = detect_engine(connection_string)
    if engine == "postgres":
        conn = _connect_postgres(target)
    else:
        conn = _connect_sqlite(target)
    store = DocumentStore(conn, engine)
    store.ping()
    return store


def describe_target(connection_string):
    """Connection target safe for logging (no credentials)."""
    engine, target = detect_engine(connection_string)
    if engine == "postgres":
        return target.split("@")[-1].split("/")[0] if "@" in target else "cloud"
    return target


def check_connection(connection_string):
    """Try a connection string without touching the live session."""
    if not (connection_string or "").strip():
        return False, "Connection string cannot be empty"
    try:
        store = open_store(connection_string)
        store.close()
    except Exception as e:
        logger.warning("Connection test failed: %s", e)
        return False, f"Failed to connect to database: {e}"
    return True, "Connection test successful!"


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class Session:
    """
    Owns the document store handle for the life of the process.

    A blank connection string or a failed open leaves the session
    disconnected; only the settings screens work in that mode.
    """

    def __init__(self, connection_string=None):
        self.connection_string = (connection_string or "").strip() or None
        self._store = None
        self._mapped = set()
        self._opened = False
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config):
        return cls(config.connection_string())

    def open(self):
        with self._lock:
            if self._opened:
                return self
            self._opened = True
            if not self.connection_string:
                logger.warning(
                    "No database connection string configured. Database features will be unavailable; "
                    "configure the connection string in Settings."
                )
                return self
            try:
                self._store = open_store(self.connection_string)
                logger.info("[DB] Engine: %s | %s", self._store.engine, describe_target(self.connection_string))
            except Exception:
                logger.exception("Error initializing database connection")
                self._store = None
            return self

    def close(self):
        with self._lock:
            if self._store is not None:
                try:
                    self._store.close()
                except Exception as e:
                    logger.warning("Error closing database connection: %s", e)
            self._store = None
            self._mapped.clear()
            self._opened = False

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def is_connected(self):
        return self._store is not None

    def require_connected(self):
        if not self.is_connected():
            raise NoDatabaseConnection()

    @property
    def store(self):
        return self._store

    @property
    def engine(self):
        return self._store.engine if self._store is not None else None

    def map_entity(self, entity_cls):
        """Register an entity's collection; a no-op when already mapped or offline."""
        collection = entity_cls.COLLECTION
        with self._lock:
            if self._store is None or collection in self._mapped:
                return
            self._store.ensure_collection(collection)
            self._mapped.add(collection)
