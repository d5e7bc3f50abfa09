from __future__ import annotations

from contextlib import contextmanager
from typing import Optional

import psycopg2
import psycopg2.extras
from psycopg2.pool import SimpleConnectionPool

from qrtrack import config

_pool: Optional[SimpleConnectionPool] = None


def get_pool() -> SimpleConnectionPool:
    """Create the shared connection pool on first use."""
    global _pool
    if _pool is None:
        if not config.DATABASE_URL:
            raise RuntimeError(
                "DATABASE_URL (or SUPABASE_DB_URL) must be set for persistent storage."
            )
        _pool = SimpleConnectionPool(minconn=1, maxconn=config.DB_POOL_MAX, dsn=config.DATABASE_URL)
    return _pool


@contextmanager
def get_cursor():
    """
    Yield a real-dict cursor inside a transaction.
    Rolls back on error and always returns the connection to the pool.
    """
    pool = get_pool()
    conn = pool.getconn()
    cur = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
    try:
        yield conn, cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()
        pool.putconn(conn)


def ping() -> bool:
    try:
        with get_cursor() as (_, cur):
            cur.execute("SELECT 1")
        return True
    except psycopg2.Error:
        return False


def init_db() -> None:
    """Create tables if they do not already exist."""
    with get_cursor() as (_, cur):
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id UUID PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                last_login TIMESTAMPTZ NULL
            );
            """
        )
        cur.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email_lower
            ON users ((lower(email)));
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS qr_codes (
                seq BIGSERIAL,
                id TEXT PRIMARY KEY,
                image_data TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'inactive',
                target_url TEXT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_qr_codes_seq
            ON qr_codes (seq);
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS retired_qr_ids (
                id TEXT PRIMARY KEY,
                retired_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )
        # qr_id is not a foreign key; events survive deletion of their record.
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS scan_events (
                id BIGSERIAL PRIMARY KEY,
                qr_id TEXT NOT NULL,
                action TEXT NOT NULL,
                status TEXT NULL,
                user_id UUID NULL,
                timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_scan_events_qr_ts
            ON scan_events (qr_id, timestamp DESC);
            """
        )
