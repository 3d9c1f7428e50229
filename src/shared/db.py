"""
Database helpers: connection pool management and schema initialisation.

Uses ``asyncpg`` for async PostgreSQL access.  The same database holds
the normalised Flickr metadata, the record of what is currently published
in the Telegram channel, the per-action cursors, the run lease and the
audit log.

Tables:
    - ``actions``: one cursor (epoch seconds) per named recurring action.
    - ``photos`` / ``photos_tags`` / ``photos_exifs`` / ``users``:
      normalised metadata, nested parts stored as JSONB documents.
    - ``photos_messages``: what is currently shown in the channel per photo.
    - ``sync_leases``: durable single-owner run lease.
    - ``audit_log``: structured audit events.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import asyncpg

logger = logging.getLogger("shared.db")


# ---------------------------------------------------------------------------
# Connection pool
# ---------------------------------------------------------------------------


async def get_connection_pool(config: Dict[str, Any]) -> asyncpg.Pool:
    """Create and return an ``asyncpg`` connection pool.

    Args:
        config: Database configuration dict with keys:
                ``host``, ``port``, ``database``, ``user``, optionally
                ``password``, ``min_size``, ``max_size``.

    Returns:
        An ``asyncpg.Pool`` instance.

    Raises:
        asyncpg.PostgresError: If the connection cannot be established.
    """
    pool = await asyncpg.create_pool(
        host=config.get("host"),
        port=config.get("port", 5432),
        database=config["database"],
        user=config["user"],
        password=config.get("password"),
        min_size=config.get("min_size", 1),
        max_size=config.get("max_size", 4),
    )
    logger.info(
        "Database pool created: %s@%s/%s",
        config["user"],
        config.get("host") or "(socket)",
        config["database"],
    )
    return pool


# ---------------------------------------------------------------------------
# Schema initialisation
# ---------------------------------------------------------------------------

SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS actions (
        action     TEXT PRIMARY KEY,
        timestamp  BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS photos (
        id      TEXT PRIMARY KEY,
        server  TEXT NOT NULL,
        secret  TEXT NOT NULL,
        owner   TEXT NOT NULL,
        info    JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS photos_tags (
        photo_id  TEXT NOT NULL,
        tag_id    TEXT NOT NULL,
        tag_info  JSONB NOT NULL,
        PRIMARY KEY (photo_id, tag_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS photos_exifs (
        photo_id   TEXT PRIMARY KEY,
        exif_info  JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id        TEXT PRIMARY KEY,
        username  TEXT NOT NULL,
        realname  TEXT,
        location  TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS photos_messages (
        photo_id      TEXT PRIMARY KEY,
        chat_id       TEXT NOT NULL,
        message_id    BIGINT NOT NULL,
        message_hash  TEXT NOT NULL,
        photo_url     TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_leases (
        name         TEXT PRIMARY KEY,
        held         BOOLEAN NOT NULL DEFAULT FALSE,
        holder       TEXT,
        acquired_at  TIMESTAMPTZ,
        released_at  TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id         BIGSERIAL PRIMARY KEY,
        timestamp  TIMESTAMPTZ DEFAULT NOW(),
        service    TEXT NOT NULL,
        action     TEXT NOT NULL,
        run_id     TEXT,
        details    JSONB,
        success    BOOLEAN NOT NULL
    )
    """,
]


async def init_database(pool: asyncpg.Pool) -> None:
    """Create tables if they do not exist.

    Executed once at service startup.  Idempotent (uses IF NOT EXISTS).

    Security note:
        In production this should be run by a privileged role (see
        ``scripts/init-database.py``); the syncer role only needs
        SELECT/INSERT/UPDATE on the tables above.
    """
    async with pool.acquire() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
    logger.info("Database schema ensured (%d tables)", len(SCHEMA_STATEMENTS))

