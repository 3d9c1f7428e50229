"""
PostgreSQL storage for synced Flickr metadata, cursors and published
message state.

Uses ``asyncpg`` for async database access.  All queries use parameterized
placeholders ($1, $2, ...), **never** string interpolation.

Every upsert is a single ``INSERT ... ON CONFLICT DO UPDATE ... WHERE
<cols> IS DISTINCT FROM EXCLUDED.<cols>`` statement, so repeating a call
with identical input touches no row.  There is no locking here: only the
holder of the run lease (``syncer.lease``) writes.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import asyncpg

from syncer.models import (
    ActionCursor,
    ExifInfo,
    Owner,
    Photo,
    PhotoInfo,
    PublishedMessage,
    Tag,
)

logger = logging.getLogger("syncer.photo_store")

_UPSERT_PHOTO_SQL = """
    INSERT INTO photos (id, server, secret, owner, info)
    VALUES ($1, $2, $3, $4, $5::jsonb)
    ON CONFLICT (id)
    DO UPDATE SET
        server = EXCLUDED.server,
        secret = EXCLUDED.secret,
        owner = EXCLUDED.owner,
        info = EXCLUDED.info
    WHERE
        photos.server IS DISTINCT FROM EXCLUDED.server
        OR photos.secret IS DISTINCT FROM EXCLUDED.secret
        OR photos.owner IS DISTINCT FROM EXCLUDED.owner
        OR photos.info IS DISTINCT FROM EXCLUDED.info
"""

_UPSERT_TAG_SQL = """
    INSERT INTO photos_tags (photo_id, tag_id, tag_info)
    VALUES ($1, $2, $3::jsonb)
    ON CONFLICT (photo_id, tag_id)
    DO UPDATE SET tag_info = EXCLUDED.tag_info
    WHERE photos_tags.tag_info IS DISTINCT FROM EXCLUDED.tag_info
"""

_UPSERT_EXIF_SQL = """
    INSERT INTO photos_exifs (photo_id, exif_info)
    VALUES ($1, $2::jsonb)
    ON CONFLICT (photo_id)
    DO UPDATE SET exif_info = EXCLUDED.exif_info
    WHERE photos_exifs.exif_info IS DISTINCT FROM EXCLUDED.exif_info
"""

_UPSERT_OWNER_SQL = """
    INSERT INTO users (id, username, realname, location)
    VALUES ($1, $2, $3, $4)
    ON CONFLICT (id)
    DO UPDATE SET
        username = EXCLUDED.username,
        realname = EXCLUDED.realname,
        location = EXCLUDED.location
    WHERE
        users.username IS DISTINCT FROM EXCLUDED.username
        OR users.realname IS DISTINCT FROM EXCLUDED.realname
        OR users.location IS DISTINCT FROM EXCLUDED.location
"""

_UPSERT_MESSAGE_SQL = """
    INSERT INTO photos_messages (photo_id, chat_id, message_id, message_hash, photo_url)
    VALUES ($1, $2, $3, $4, $5)
    ON CONFLICT (photo_id)
    DO UPDATE SET
        chat_id = EXCLUDED.chat_id,
        message_id = EXCLUDED.message_id,
        message_hash = EXCLUDED.message_hash,
        photo_url = EXCLUDED.photo_url
    WHERE
        photos_messages.chat_id IS DISTINCT FROM EXCLUDED.chat_id
        OR photos_messages.message_id IS DISTINCT FROM EXCLUDED.message_id
        OR photos_messages.message_hash IS DISTINCT FROM EXCLUDED.message_hash
        OR photos_messages.photo_url IS DISTINCT FROM EXCLUDED.photo_url
"""

# The cursor only ever moves forward.
_SET_CURSOR_SQL = """
    INSERT INTO actions (action, timestamp)
    VALUES ($1, $2)
    ON CONFLICT (action)
    DO UPDATE SET timestamp = EXCLUDED.timestamp
    WHERE actions.timestamp < EXCLUDED.timestamp
"""


def _to_json(document: Dict[str, Any]) -> str:
    return json.dumps(document, sort_keys=True, ensure_ascii=False)


def _from_json(value: Any) -> Dict[str, Any]:
    """asyncpg hands back ``jsonb`` as text unless a codec is registered."""
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _rows_written(status: str) -> int:
    # asyncpg command status format: "INSERT 0 <rowcount>"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError, AttributeError):
        logger.debug("Unexpected command status string: %s", status)
        return 0


class PhotoStore:
    """Persistence for one Flickr account's synced state.

    Args:
        pool: An ``asyncpg`` connection pool (created via
              :func:`shared.db.get_connection_pool`).
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    # ------------------------------------------------------------------
    # Metadata upserts
    # ------------------------------------------------------------------

    async def upsert_photo(self, photo: Photo) -> bool:
        """Insert or update a photo row.

        Returns:
            ``True`` if a row was inserted or changed, ``False`` if the
            stored row already matched.
        """
        status = await self._pool.execute(
            _UPSERT_PHOTO_SQL,
            photo.id,
            photo.server,
            photo.secret,
            photo.owner_id,
            _to_json(photo.info_document()),
        )
        written = _rows_written(status) > 0
        logger.debug("upsert photo id=%s written=%s", photo.id, written)
        return written

    async def upsert_tag(self, tag: Tag) -> bool:
        status = await self._pool.execute(
            _UPSERT_TAG_SQL,
            tag.photo_id,
            tag.tag_id,
            _to_json(tag.info_document()),
        )
        return _rows_written(status) > 0

    async def upsert_exif(self, exif: ExifInfo) -> bool:
        status = await self._pool.execute(
            _UPSERT_EXIF_SQL,
            exif.photo_id,
            _to_json(exif.info_document()),
        )
        return _rows_written(status) > 0

    async def upsert_owner(self, owner: Owner) -> bool:
        status = await self._pool.execute(
            _UPSERT_OWNER_SQL,
            owner.id,
            owner.username,
            owner.realname,
            owner.location,
        )
        return _rows_written(status) > 0

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------

    async def get_cursor(self, action: str) -> Optional[int]:
        """Return the stored timestamp for ``action``, or ``None`` if the
        action has never completed a run."""
        value = await self._pool.fetchval(
            "SELECT timestamp FROM actions WHERE action = $1",
            action,
        )
        return int(value) if value is not None else None

    async def set_cursor(self, action: str, timestamp: int) -> bool:
        """Create or advance the cursor for ``action``.

        A ``timestamp`` older than the stored one is ignored.

        Returns:
            ``True`` if the cursor moved.
        """
        status = await self._pool.execute(_SET_CURSOR_SQL, action, int(timestamp))
        moved = _rows_written(status) > 0
        if not moved:
            logger.debug("Cursor for %s not moved (timestamp=%d)", action, timestamp)
        return moved

    # ------------------------------------------------------------------
    # Published message state
    # ------------------------------------------------------------------

    async def get_published_message(self, photo_id: str) -> Optional[PublishedMessage]:
        row = await self._pool.fetchrow(
            """
            SELECT photo_id, chat_id, message_id, message_hash, photo_url
            FROM photos_messages
            WHERE photo_id = $1
            """,
            photo_id,
        )
        if row is None:
            return None
        return PublishedMessage(
            photo_id=row["photo_id"],
            chat_id=str(row["chat_id"]),
            message_id=int(row["message_id"]),
            content_hash=row["message_hash"],
            photo_url=row["photo_url"],
        )

    async def put_published_message(self, message: PublishedMessage) -> bool:
        status = await self._pool.execute(
            _UPSERT_MESSAGE_SQL,
            message.photo_id,
            str(message.chat_id),
            int(message.message_id),
            message.content_hash,
            message.photo_url,
        )
        return _rows_written(status) > 0

    # ------------------------------------------------------------------
    # Point lookups
    # ------------------------------------------------------------------

    async def get_photo(self, photo_id: str) -> Optional[Photo]:
        row = await self._pool.fetchrow(
            "SELECT id, server, secret, owner, info FROM photos WHERE id = $1",
            photo_id,
        )
        if row is None:
            return None
        return Photo(
            id=row["id"],
            server=row["server"],
            secret=row["secret"],
            owner_id=row["owner"],
            info=PhotoInfo.from_document(_from_json(row["info"])),
        )

    async def get_tags(self, photo_id: str) -> List[Tag]:
        rows = await self._pool.fetch(
            """
            SELECT photo_id, tag_id, tag_info
            FROM photos_tags
            WHERE photo_id = $1
            ORDER BY tag_id
            """,
            photo_id,
        )
        return [
            Tag.from_document(row["photo_id"], row["tag_id"], _from_json(row["tag_info"]))
            for row in rows
        ]

    async def get_exif(self, photo_id: str) -> Optional[ExifInfo]:
        row = await self._pool.fetchrow(
            "SELECT photo_id, exif_info FROM photos_exifs WHERE photo_id = $1",
            photo_id,
        )
        if row is None:
            return None
        return ExifInfo.from_document(row["photo_id"], _from_json(row["exif_info"]))

    async def get_owner(self, owner_id: str) -> Optional[Owner]:
        row = await self._pool.fetchrow(
            "SELECT id, username, realname, location FROM users WHERE id = $1",
            owner_id,
        )
        if row is None:
            return None
        return Owner(
            id=row["id"],
            username=row["username"],
            realname=row["realname"],
            location=row["location"],
        )

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def get_sync_stats(self) -> Dict[str, Any]:
        """Return summary statistics for the operator tools."""
        async with self._pool.acquire() as conn:
            total_photos = await conn.fetchval("SELECT COUNT(*) FROM photos")
            total_published = await conn.fetchval("SELECT COUNT(*) FROM photos_messages")
            rows = await conn.fetch("SELECT action, timestamp FROM actions ORDER BY action")

        cursors = [ActionCursor(action=row["action"], timestamp=int(row["timestamp"])) for row in rows]
        return {
            "total_photos": total_photos or 0,
            "total_published": total_published or 0,
            "cursors": {cursor.action: cursor.timestamp for cursor in cursors},
        }
