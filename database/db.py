"""
Database connection with persistent connection pooling.
The pool is created on first use so importing the app never opens sockets.
"""

import threading
from contextlib import contextmanager

import pymysql
from pymysql.cursors import DictCursor
from dbutils.pooled_db import PooledDB

import config

_pool = None
_pool_lock = threading.Lock()


def _get_pool():
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                # blocking=True queues callers once maxconnections is reached
                _pool = PooledDB(
                    creator=pymysql,
                    mincached=config.DB_POOL_MIN_CACHED,
                    maxcached=config.DB_POOL_MAX_CACHED,
                    maxconnections=config.DB_POOL_MAX_CONNECTIONS,
                    blocking=True,
                    ping=1,
                    host=config.DB_CONFIG['host'],
                    port=config.DB_CONFIG['port'],
                    user=config.DB_CONFIG['user'],
                    password=config.DB_CONFIG['password'],
                    database=config.DB_CONFIG['database'],
                    charset=config.DB_CONFIG['charset'],
                    cursorclass=DictCursor,
                    autocommit=False,
                )
    return _pool


def get_db_connection():
    """Borrow a connection from the pool (thread-safe)."""
    return _get_pool().connection()


@contextmanager
def get_db():
    """
    Context manager: borrow connection from pool, commit on success,
    rollback on error, and return connection to pool when done.
    """
    conn = get_db_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()   # returns connection to pool (does NOT close TCP socket)
