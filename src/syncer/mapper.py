"""
Pure transforms from Flickr JSON payloads to the normalised entities in
``syncer.models``.

Inputs are the inner ``photo`` objects of ``flickr.photos.getInfo`` /
``flickr.photos.getExif`` and the slimmer records listed by
``flickr.photos.recentlyUpdated``.  Any field may be missing upstream;
missing or non-numeric numbers map to ``None`` (never 0), and the public
flag defaults to *public* unless Flickr explicitly says ``0``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from syncer.models import (
    CleanExif,
    ExifInfo,
    Owner,
    Permission,
    Photo,
    PhotoCounts,
    PhotoDates,
    PhotoInfo,
    PhotoLocation,
    PhotoRecord,
    Tag,
    prune_absent,
)

logger = logging.getLogger("syncer.mapper")

__all__ = [
    "EXIF_FIELDS",
    "CLEAN_EXIF_FIELDS",
    "map_photo",
    "map_tags",
    "map_owner",
    "map_exif",
    "map_record",
    "prune_absent",
]

# (tagspace, tag) -> ExifInfo field.  IFD0 holds camera-body data, ExifIFD
# the exposure data.  Anything not listed is dropped.
EXIF_FIELDS: Dict[Tuple[str, str], str] = {
    ("IFD0", "Make"): "make",
    ("IFD0", "Model"): "model",
    ("IFD0", "Artist"): "artist",
    ("IFD0", "Copyright"): "copyright",
    ("IFD0", "ModifyDate"): "modify_date",
    ("ExifIFD", "LensInfo"): "lens_info",
    ("ExifIFD", "LensModel"): "lens_model",
    ("ExifIFD", "ExposureTime"): "exposure",
    ("ExifIFD", "FNumber"): "aperture",
    ("ExifIFD", "FocalLength"): "focal_length",
    ("ExifIFD", "FocalLengthIn35mmFormat"): "focal_length_in_35mm_format",
    ("ExifIFD", "ISO"): "iso",
    ("ExifIFD", "ExposureProgram"): "exposure_program",
    ("ExifIFD", "ExposureMode"): "exposure_mode",
    ("ExifIFD", "Flash"): "flash",
    ("ExifIFD", "WhiteBalance"): "white_balance",
    ("ExifIFD", "DateTimeOriginal"): "original_date",
    ("ExifIFD", "OffsetTimeOriginal"): "original_timezone",
    ("ExifIFD", "CreateDate"): "create_date",
    ("ExifIFD", "OffsetTimeDigitized"): "create_timezone",
    ("ExifIFD", "OffsetTime"): "timezone",
    ("ExifIFD", "MaxApertureValue"): "max_aperture",
    ("ExifIFD", "BrightnessValue"): "brightness_value",
    ("ExifIFD", "ExposureCompensation"): "exposure_compensation",
    ("ExifIFD", "MeteringMode"): "metering_mode",
    ("ExifIFD", "LightSource"): "light_source",
}

# Tags whose Flickr "clean" rendering is kept alongside the raw value.
CLEAN_EXIF_FIELDS: Dict[Tuple[str, str], str] = {
    ("ExifIFD", "ExposureTime"): "exposure",
    ("ExifIFD", "FNumber"): "aperture",
    ("ExifIFD", "FocalLength"): "focal_length",
    ("ExifIFD", "ExposureCompensation"): "exposure_compensation",
}

_PRIVATE_MARKERS = {"0", 0, False}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _content(value: Any) -> Optional[str]:
    """Unwrap Flickr's ``{"_content": ...}`` convention."""
    if isinstance(value, Mapping):
        value = value.get("_content")
    if value is None:
        return None
    return str(value)


def _text(value: Any) -> Optional[str]:
    text = _content(value)
    if text is None or not text.strip():
        return None
    return text


def _int(value: Any) -> Optional[int]:
    raw = _content(value)
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _float(value: Any) -> Optional[float]:
    raw = _content(value)
    if raw is None:
        return None
    try:
        number = float(raw.strip())
    except ValueError:
        return None
    if number != number:  # NaN
        return None
    return number


def _is_public(raw: Mapping[str, Any]) -> bool:
    visibility = raw.get("visibility")
    if isinstance(visibility, Mapping) and "ispublic" in visibility:
        flag = visibility["ispublic"]
    else:
        flag = raw.get("ispublic")
    if flag is None:
        return True
    if isinstance(flag, str):
        flag = flag.strip()
    return flag not in _PRIVATE_MARKERS


def _page_url(raw: Mapping[str, Any]) -> Optional[str]:
    urls = raw.get("urls")
    if not isinstance(urls, Mapping):
        return None
    for url in urls.get("url") or []:
        if isinstance(url, Mapping) and url.get("type") == "photopage":
            return _text(url)
    return None


def _owner_id(raw: Mapping[str, Any]) -> str:
    owner = raw.get("owner")
    if isinstance(owner, Mapping):
        return str(owner.get("nsid", ""))
    return str(owner or "")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def map_photo(raw: Mapping[str, Any]) -> Photo:
    """Build a ``Photo`` from a getInfo ``photo`` or a recentlyUpdated record."""
    dates = raw.get("dates") if isinstance(raw.get("dates"), Mapping) else {}
    location = raw.get("location") if isinstance(raw.get("location"), Mapping) else {}

    info = PhotoInfo(
        title=_content(raw.get("title")) or "",
        description=_text(raw.get("description")),
        page_url=_page_url(raw),
        original_format=_text(raw.get("originalformat")),
        permission=Permission(is_public=_is_public(raw)),
        date=PhotoDates(
            taken=_text(dates.get("taken") or raw.get("datetaken")),
            uploaded=_text(raw.get("dateuploaded") or raw.get("dateupload")),
            updated=_text(dates.get("lastupdate") or raw.get("lastupdate")),
        ),
        count=PhotoCounts(
            views=_int(raw.get("views")),
            comments=_int(raw.get("comments")),
        ),
        location=PhotoLocation(
            latitude=_float(location.get("latitude")),
            longitude=_float(location.get("longitude")),
            locality=_text(location.get("locality")),
            neighbourhood=_text(location.get("neighbourhood")),
            region=_text(location.get("region")),
            country=_text(location.get("country")),
        ),
    )
    return Photo(
        id=str(raw["id"]),
        server=str(raw.get("server", "")),
        secret=str(raw.get("secret", "")),
        owner_id=_owner_id(raw),
        info=info,
    )


def map_tags(raw: Mapping[str, Any]) -> List[Tag]:
    tags = raw.get("tags")
    if not isinstance(tags, Mapping):
        return []
    photo_id = str(raw["id"])
    result: List[Tag] = []
    for tag in tags.get("tag") or []:
        if not isinstance(tag, Mapping) or tag.get("id") is None:
            continue
        result.append(
            Tag(
                photo_id=photo_id,
                tag_id=str(tag["id"]),
                tag_name=_content(tag) or "",
                author_id=_text(tag.get("author")),
                author_name=_text(tag.get("authorname")),
                raw=_text(tag.get("raw")),
            )
        )
    return result


def map_owner(raw: Mapping[str, Any]) -> Optional[Owner]:
    """Owner from a getInfo payload; ``None`` for slim list records."""
    owner = raw.get("owner")
    if not isinstance(owner, Mapping) or not owner.get("nsid"):
        return None
    return Owner(
        id=str(owner["nsid"]),
        username=str(owner.get("username") or ""),
        realname=_text(owner.get("realname")),
        location=_text(owner.get("location")),
    )


def map_exif(photo_id: str, raw: Optional[Mapping[str, Any]]) -> ExifInfo:
    """Build ``ExifInfo`` from a getExif ``photo`` payload.

    Entries are matched on ``(tagspace, tag)``; unknown entries are ignored.
    """
    values: Dict[str, str] = {}
    clean: Dict[str, str] = {}
    entries = (raw or {}).get("exif") or []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        key = (str(entry.get("tagspace", "")), str(entry.get("tag", "")))
        field_name = EXIF_FIELDS.get(key)
        if field_name is None:
            continue
        raw_value = _text(entry.get("raw"))
        if raw_value is not None:
            values[field_name] = raw_value
        clean_name = CLEAN_EXIF_FIELDS.get(key)
        clean_value = _text(entry.get("clean"))
        if clean_name and clean_value is not None:
            clean[clean_name] = clean_value
    return ExifInfo(photo_id=str(photo_id), clean=CleanExif(**clean), **values)


def map_record(
    info: Mapping[str, Any],
    exif: Optional[Mapping[str, Any]] = None,
) -> PhotoRecord:
    """Map one photo's getInfo (and optional getExif) payloads."""
    photo = map_photo(info)
    return PhotoRecord(
        photo=photo,
        tags=map_tags(info),
        exif=map_exif(photo.id, exif) if exif is not None else None,
        owner=map_owner(info),
    )
