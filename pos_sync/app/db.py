import asyncio
import os
import sqlite3
from contextlib import contextmanager

from .errors import StorageError
from .logs import json_log

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'sqlite_schema.sql')


@contextmanager
def db_connect(db_path: str, write: bool = False):
    """
    One connection per unit of work:
    - write=True opens with BEGIN IMMEDIATE so the whole read-modify-write holds the
      database write lock, even against another process on the same file
    - commit on success, rollback on exception, always close
    - sqlite3.Error surfaces as StorageError (fatal for the caller)
    """
    try:
        conn = sqlite3.connect(db_path, timeout=5.0, isolation_level=None)
    except sqlite3.Error as ex:
        json_log("error", "db.connect.error", db_path=db_path, error=str(ex))
        raise StorageError(f"cannot open local store: {ex}") from ex
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
        yield conn
        conn.execute("COMMIT")
    except sqlite3.Error as ex:
        _rollback(conn)
        json_log("error", "db.write.error" if write else "db.read.error", db_path=db_path, error=str(ex))
        raise StorageError(f"local store failure: {ex}") from ex
    except BaseException:
        _rollback(conn)
        raise
    finally:
        conn.close()


def _rollback(conn):
    if conn.in_transaction:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            pass


def init_db(db_path: str):
    if not os.path.exists(SCHEMA_PATH):
        raise RuntimeError(f"Missing schema file: {SCHEMA_PATH}")
    with open(SCHEMA_PATH, 'r', encoding='utf-8') as f:
        schema = f.read()
    parent = os.path.dirname(os.path.abspath(db_path))
    if parent:
        os.makedirs(parent, exist_ok=True)
    try:
        conn = sqlite3.connect(db_path)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(schema)
            conn.commit()
        finally:
            conn.close()
    except sqlite3.Error as ex:
        json_log("error", "db.init.error", db_path=db_path, error=str(ex))
        raise StorageError(f"cannot initialise local store: {ex}") from ex


async def run_db(fn, *args, **kwargs):
    # sqlite3 is blocking; keep the event loop free for UI work and background triggers.
    return await asyncio.to_thread(fn, *args, **kwargs)
