"""
Shared fixtures: Flickr payload builders and in-memory stand-ins for the
store, lease and Flickr client used by the orchestrator tests.
"""

from __future__ import annotations

import copy
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

from publisher.telegram_publisher import TelegramPublisher
from shared.config import Settings
from syncer.flickr_client import Page
from syncer.models import ExifInfo, Owner, Photo, PublishedMessage, Tag


# ---------------------------------------------------------------------------
# Flickr payloads
# ---------------------------------------------------------------------------


def info_payload(
    photo_id: str = "5301",
    *,
    ispublic: Any = 1,
    title: str = "Sunset over Batumi",
    description: Optional[str] = "Golden hour on the Black Sea.",
    tags: Tuple[str, ...] = ("sunset", "sea"),
    secret: str = "abc123",
    server: str = "65535",
) -> Dict[str, Any]:
    """Inner ``photo`` object of ``flickr.photos.getInfo``."""
    payload: Dict[str, Any] = {
        "id": photo_id,
        "secret": secret,
        "server": server,
        "farm": 66,
        "dateuploaded": "1714550000",
        "originalformat": "jpg",
        "views": "42",
        "owner": {
            "nsid": "12345678@N00",
            "username": "alice",
            "realname": "Alice Example",
            "location": "Tbilisi, Georgia",
        },
        "title": {"_content": title},
        "description": {"_content": description or ""},
        "visibility": {"ispublic": ispublic, "isfriend": 0, "isfamily": 0},
        "dates": {
            "posted": "1714550000",
            "taken": "2024-05-01 19:42:10",
            "lastupdate": "1714560000",
        },
        "comments": {"_content": "3"},
        "tags": {
            "tag": [
                {
                    "id": f"{photo_id}-{name}",
                    "author": "12345678@N00",
                    "authorname": "alice",
                    "raw": name.title(),
                    "_content": name,
                }
                for name in tags
            ]
        },
        "location": {
            "latitude": "41.6168",
            "longitude": "41.6367",
            "locality": {"_content": "Batumi"},
            "country": {"_content": "Georgia"},
        },
        "urls": {
            "url": [
                {
                    "type": "photopage",
                    "_content": f"https://www.flickr.com/photos/alice/{photo_id}/",
                }
            ]
        },
    }
    return payload


def exif_payload(photo_id: str = "5301") -> Dict[str, Any]:
    """Inner ``photo`` object of ``flickr.photos.getExif``."""
    return {
        "id": photo_id,
        "secret": "abc123",
        "server": "65535",
        "camera": "Fujifilm X-T4",
        "exif": [
            {"tagspace": "IFD0", "tagspaceid": 0, "tag": "Make", "label": "Make", "raw": {"_content": "FUJIFILM"}},
            {"tagspace": "IFD0", "tagspaceid": 0, "tag": "Model", "label": "Model", "raw": {"_content": "X-T4"}},
            {"tagspace": "IFD0", "tagspaceid": 0, "tag": "Artist", "label": "Artist", "raw": {"_content": "Alice"}},
            {
                "tagspace": "ExifIFD",
                "tagspaceid": 0,
                "tag": "ExposureTime",
                "label": "Exposure",
                "raw": {"_content": "1/250"},
                "clean": {"_content": "0.004 sec (1/250)"},
            },
            {
                "tagspace": "ExifIFD",
                "tagspaceid": 0,
                "tag": "FNumber",
                "label": "Aperture",
                "raw": {"_content": "5.6"},
                "clean": {"_content": "f/5.6"},
            },
            {
                "tagspace": "ExifIFD",
                "tagspaceid": 0,
                "tag": "FocalLength",
                "label": "Focal Length",
                "raw": {"_content": "23.0 mm"},
                "clean": {"_content": "23 mm"},
            },
            {"tagspace": "ExifIFD", "tagspaceid": 0, "tag": "ISO", "label": "ISO Speed", "raw": {"_content": "160"}},
            {"tagspace": "XMP-x", "tagspaceid": 0, "tag": "XMPToolkit", "label": "XMP Toolkit", "raw": {"_content": "Image::ExifTool 12.40"}},
        ],
    }


def listed_record(photo_id: str = "5301", ispublic: Any = 1) -> Dict[str, Any]:
    """One entry of ``flickr.photos.recentlyUpdated``."""
    return {
        "id": photo_id,
        "owner": "12345678@N00",
        "secret": "abc123",
        "server": "65535",
        "farm": 66,
        "title": "Sunset over Batumi",
        "ispublic": ispublic,
        "isfriend": 0,
        "isfamily": 0,
        "lastupdate": "1714560000",
    }


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakeStore:
    """``PhotoStore`` semantics over dicts; counts real writes."""

    def __init__(self) -> None:
        self.photos: Dict[str, Photo] = {}
        self.tags: Dict[Tuple[str, str], Tag] = {}
        self.exifs: Dict[str, ExifInfo] = {}
        self.owners: Dict[str, Owner] = {}
        self.messages: Dict[str, PublishedMessage] = {}
        self.cursors: Dict[str, int] = {}
        self.writes: List[str] = []

    def _put(self, table: Dict[Any, Any], key: Any, value: Any, label: str) -> bool:
        current = table.get(key)
        if current is not None and asdict(current) == asdict(value):
            return False
        table[key] = copy.deepcopy(value)
        self.writes.append(label)
        return True

    async def upsert_photo(self, photo: Photo) -> bool:
        return self._put(self.photos, photo.id, photo, "photo")

    async def upsert_tag(self, tag: Tag) -> bool:
        return self._put(self.tags, (tag.photo_id, tag.tag_id), tag, "tag")

    async def upsert_exif(self, exif: ExifInfo) -> bool:
        return self._put(self.exifs, exif.photo_id, exif, "exif")

    async def upsert_owner(self, owner: Owner) -> bool:
        return self._put(self.owners, owner.id, owner, "owner")

    async def get_cursor(self, action: str) -> Optional[int]:
        return self.cursors.get(action)

    async def set_cursor(self, action: str, timestamp: int) -> bool:
        if self.cursors.get(action, -1) >= timestamp:
            return False
        self.cursors[action] = timestamp
        self.writes.append("cursor")
        return True

    async def get_published_message(self, photo_id: str) -> Optional[PublishedMessage]:
        message = self.messages.get(photo_id)
        return copy.deepcopy(message) if message else None

    async def put_published_message(self, message: PublishedMessage) -> bool:
        return self._put(self.messages, message.photo_id, message, "message")


class LeaseRow:
    """The single durable flag several ``FakeLease`` objects compete for."""

    def __init__(self) -> None:
        self.held = False
        self.holder: Optional[str] = None


class FakeLease:
    def __init__(self, row: Optional[LeaseRow] = None, holder: str = "node-a", name: str = "flickr-sync") -> None:
        self.row = row or LeaseRow()
        self.holder = holder
        self.name = name
        self.release_calls = 0

    async def acquire(self) -> bool:
        if self.row.held:
            return False
        self.row.held = True
        self.row.holder = self.holder
        return True

    async def release(self) -> bool:
        self.release_calls += 1
        if self.row.held and self.row.holder == self.holder:
            self.row.held = False
            return True
        return False


class FakeFlickr:
    """Serves fixed pages and per-photo payloads; records every call."""

    def __init__(
        self,
        pages: List[List[Dict[str, Any]]],
        infos: Dict[str, Dict[str, Any]],
        exifs: Dict[str, Dict[str, Any]],
    ) -> None:
        self.pages = pages
        self.infos = infos
        self.exifs = exifs
        self.page_calls: List[Tuple[str, int, int]] = []
        self.fail_on_page: Optional[int] = None
        self.error: Optional[BaseException] = None

    async def fetch_page(self, action: str, cursor: int, page_number: int) -> Page:
        self.page_calls.append((action, cursor, page_number))
        if self.fail_on_page == page_number and self.error is not None:
            raise self.error
        photos = self.pages[page_number - 1] if self.pages else []
        return Page(
            page=page_number,
            pages=len(self.pages),
            total=sum(len(p) for p in self.pages),
            photos=copy.deepcopy(photos),
        )

    async def get_info(self, photo_id: str, secret: Optional[str] = None) -> Dict[str, Any]:
        return copy.deepcopy(self.infos[photo_id])

    async def get_exif(self, photo_id: str, secret: Optional[str] = None) -> Dict[str, Any]:
        return copy.deepcopy(self.exifs[photo_id])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        telegram_bot_token="123456:TEST",
        error_reporting_chat_id="-1009999",
        photo_channel_id="@photos",
        flickr_consumer_key="consumer-key",
        flickr_consumer_secret="consumer-secret",
        flickr_oauth_token="oauth-token",
        flickr_oauth_token_secret="oauth-secret",
        reauthorize_url="https://example.com/flickr/oauth",
        release_max_attempts=3,
    )


@pytest.fixture
def publisher() -> AsyncMock:
    mock = AsyncMock(spec=TelegramPublisher)
    mock.publish.return_value = 777
    mock.edit.side_effect = lambda chat_id, message_id, body: message_id
    return mock
