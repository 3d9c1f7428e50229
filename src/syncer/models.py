"""
Normalised entities synced from Flickr.

Every entity is a plain dataclass keyed by Flickr's own identifiers.
Nested metadata is persisted as a JSON document (``info_document``) and
decoded back at the storage boundary (``from_document``).  Documents are
versionless but additive: new optional fields may appear, none disappear.
Absent values are *omitted* from documents, never stored as ``null``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional


def prune_absent(value: Any) -> Any:
    """Recursively drop ``None`` values and mappings left empty.

    Lists keep their length (items are pruned, not removed) so that
    positional data is not silently shifted.
    """
    if isinstance(value, Mapping):
        pruned: Dict[str, Any] = {}
        for key, item in value.items():
            item = prune_absent(item)
            if item is None:
                continue
            if isinstance(item, dict) and not item:
                continue
            pruned[key] = item
        return pruned
    if isinstance(value, list):
        return [prune_absent(item) for item in value]
    return value


def _known(cls: type, doc: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only keys ``cls`` declares; documents may carry newer fields."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in doc.items() if k in names}


# ---------------------------------------------------------------------------
# Photo
# ---------------------------------------------------------------------------


@dataclass
class Permission:
    is_public: bool = True


@dataclass
class PhotoDates:
    taken: Optional[str] = None
    uploaded: Optional[str] = None
    updated: Optional[str] = None


@dataclass
class PhotoCounts:
    views: Optional[int] = None
    comments: Optional[int] = None


@dataclass
class PhotoLocation:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    locality: Optional[str] = None
    neighbourhood: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None


@dataclass
class PhotoInfo:
    title: str = ""
    description: Optional[str] = None
    page_url: Optional[str] = None
    original_format: Optional[str] = None
    permission: Permission = field(default_factory=Permission)
    date: PhotoDates = field(default_factory=PhotoDates)
    count: PhotoCounts = field(default_factory=PhotoCounts)
    location: PhotoLocation = field(default_factory=PhotoLocation)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "PhotoInfo":
        return cls(
            title=doc.get("title", ""),
            description=doc.get("description"),
            page_url=doc.get("page_url"),
            original_format=doc.get("original_format"),
            permission=Permission(**_known(Permission, doc.get("permission", {}))),
            date=PhotoDates(**_known(PhotoDates, doc.get("date", {}))),
            count=PhotoCounts(**_known(PhotoCounts, doc.get("count", {}))),
            location=PhotoLocation(**_known(PhotoLocation, doc.get("location", {}))),
        )


@dataclass
class Photo:
    id: str
    server: str
    secret: str
    owner_id: str
    info: PhotoInfo = field(default_factory=PhotoInfo)

    @property
    def is_public(self) -> bool:
        return self.info.permission.is_public

    def info_document(self) -> Dict[str, Any]:
        return prune_absent(asdict(self.info))


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


@dataclass
class Tag:
    photo_id: str
    tag_id: str
    tag_name: str
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    raw: Optional[str] = None

    def info_document(self) -> Dict[str, Any]:
        return prune_absent(
            {
                "tag_name": self.tag_name,
                "author_id": self.author_id,
                "author_name": self.author_name,
                "raw": self.raw,
            }
        )

    @classmethod
    def from_document(cls, photo_id: str, tag_id: str, doc: Mapping[str, Any]) -> "Tag":
        return cls(
            photo_id=photo_id,
            tag_id=tag_id,
            tag_name=doc.get("tag_name", ""),
            author_id=doc.get("author_id"),
            author_name=doc.get("author_name"),
            raw=doc.get("raw"),
        )


# ---------------------------------------------------------------------------
# EXIF
# ---------------------------------------------------------------------------


@dataclass
class CleanExif:
    """Human-normalised variants Flickr provides for a few EXIF values."""

    exposure: Optional[str] = None
    aperture: Optional[str] = None
    focal_length: Optional[str] = None
    exposure_compensation: Optional[str] = None


@dataclass
class ExifInfo:
    photo_id: str
    make: Optional[str] = None
    model: Optional[str] = None
    lens_info: Optional[str] = None
    lens_model: Optional[str] = None
    exposure: Optional[str] = None
    aperture: Optional[str] = None
    focal_length: Optional[str] = None
    focal_length_in_35mm_format: Optional[str] = None
    iso: Optional[str] = None
    exposure_program: Optional[str] = None
    exposure_mode: Optional[str] = None
    flash: Optional[str] = None
    white_balance: Optional[str] = None
    artist: Optional[str] = None
    copyright: Optional[str] = None
    original_date: Optional[str] = None
    original_timezone: Optional[str] = None
    create_date: Optional[str] = None
    create_timezone: Optional[str] = None
    modify_date: Optional[str] = None
    timezone: Optional[str] = None
    max_aperture: Optional[str] = None
    brightness_value: Optional[str] = None
    exposure_compensation: Optional[str] = None
    metering_mode: Optional[str] = None
    light_source: Optional[str] = None
    clean: CleanExif = field(default_factory=CleanExif)

    def info_document(self) -> Dict[str, Any]:
        doc = asdict(self)
        doc.pop("photo_id")
        return prune_absent(doc)

    @classmethod
    def from_document(cls, photo_id: str, doc: Mapping[str, Any]) -> "ExifInfo":
        values = _known(cls, doc)
        values.pop("photo_id", None)
        values.pop("clean", None)
        return cls(photo_id=photo_id, clean=CleanExif(**_known(CleanExif, doc.get("clean", {}))), **values)


# ---------------------------------------------------------------------------
# Owner, published message, cursor
# ---------------------------------------------------------------------------


@dataclass
class Owner:
    id: str
    username: str
    realname: Optional[str] = None
    location: Optional[str] = None


@dataclass
class PublishedMessage:
    """What is currently shown in the channel for one photo."""

    photo_id: str
    chat_id: str
    message_id: int
    content_hash: str
    photo_url: str


@dataclass
class ActionCursor:
    action: str
    timestamp: int


@dataclass
class PhotoRecord:
    """Everything the mapper produced for one upstream photo."""

    photo: Photo
    tags: List[Tag] = field(default_factory=list)
    exif: Optional[ExifInfo] = None
    owner: Optional[Owner] = None
