"""
Photo caption formatter.

Builds the MarkdownV2 caption posted under each photo and fits it into
Telegram's caption cap.  The cap applies to the *rendered* text, so every
truncation candidate is re-rendered and measured with
``publisher.markdown.rendered_length``; nothing here estimates length from
the markup source.

Caption layout::

    *Title*  // Artist

    Description (or "...")

    [Flickr page](https://www.flickr.com/photos/...)

    [#tag](https://www.flickr.com/photos/tags/tag) ...

    `Copyright ©...`

    *Taken* | 2024-05-01 10:00:00
    *Camera* | Make Model
    ...

Header (title line) and footer (everything after the description) are
fixed; the description absorbs whatever room is left.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence
from urllib.parse import quote

from publisher.markdown import (
    escape_code,
    escape_link_url,
    escape_markdown,
    escape_safe_cut_points,
    rendered_length,
)
from syncer.models import ExifInfo, Photo, Tag

logger = logging.getLogger("publisher.formatter")

MAX_CAPTION_LENGTH = 1024

# Rendered as "..." wherever content was cut or is missing.
ELLIPSIS = escape_markdown("...")
# Appended after a footer that had to drop trailing components.
MORE_MARKER = "\n" + ELLIPSIS

# The header never takes more than this share of the caption.
HEADER_BUDGET = MAX_CAPTION_LENGTH // 4

TAG_URL = "https://www.flickr.com/photos/tags/"
_EXIF_REFERENCE = "https://www.awaresystems.be/imaging/tiff/tifftags/privateifd/exif/"
_SEPARATOR = " \\| "


@dataclass
class CaptionData:
    """Caption fields, already escaped for MarkdownV2.

    ``page_url`` is escaped for link-target context; ``tags`` hold raw tag
    names (escaped when rendered).
    """

    title: str = ""
    artist: Optional[str] = None
    description: Optional[str] = None
    page_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    copyright: Optional[str] = None
    taken: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    lens_model: Optional[str] = None
    max_aperture: Optional[str] = None
    focal_length: Optional[str] = None
    focal_length_35mm: Optional[str] = None
    exposure: Optional[str] = None
    aperture: Optional[str] = None
    iso: Optional[str] = None
    exposure_program: Optional[str] = None
    exposure_mode: Optional[str] = None
    flash: Optional[str] = None
    white_balance: Optional[str] = None
    metering_mode: Optional[str] = None
    light_source: Optional[str] = None
    brightness_value: Optional[str] = None
    exposure_compensation: Optional[str] = None


def _escaped(value: Optional[str]) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    return escape_markdown(str(value))


def caption_data(
    photo: Photo,
    exif: Optional[ExifInfo],
    tags: Sequence[Tag],
) -> CaptionData:
    """Collect and escape the caption fields for one photo.

    Flickr's "clean" EXIF renderings are preferred over raw values where
    both exist.
    """
    exif = exif or ExifInfo(photo_id=photo.id)
    clean = exif.clean
    info = photo.info
    return CaptionData(
        title=escape_markdown(info.title or ""),
        artist=_escaped(exif.artist),
        description=_escaped(info.description),
        page_url=escape_link_url(info.page_url) if info.page_url else None,
        tags=[tag.tag_name for tag in tags if tag.tag_name],
        copyright=escape_code(exif.copyright) if exif.copyright else None,
        taken=_escaped(info.date.taken),
        make=_escaped(exif.make),
        model=_escaped(exif.model),
        lens_model=_escaped(exif.lens_model),
        max_aperture=_escaped(exif.max_aperture),
        focal_length=_escaped(clean.focal_length or exif.focal_length),
        focal_length_35mm=_escaped(exif.focal_length_in_35mm_format),
        exposure=_escaped(clean.exposure or exif.exposure),
        aperture=_escaped(clean.aperture or exif.aperture),
        iso=_escaped(exif.iso),
        exposure_program=_escaped(exif.exposure_program),
        exposure_mode=_escaped(exif.exposure_mode),
        flash=_escaped(exif.flash),
        white_balance=_escaped(exif.white_balance),
        metering_mode=_escaped(exif.metering_mode),
        light_source=_escaped(exif.light_source),
        brightness_value=_escaped(exif.brightness_value),
        exposure_compensation=_escaped(
            clean.exposure_compensation or exif.exposure_compensation
        ),
    )


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def render_header(data: CaptionData) -> str:
    header = f"*{data.title}*"
    if data.artist:
        header += f"  // {data.artist}"
    return header + "\n\n"


def render_description(description: Optional[str]) -> str:
    return f"{description or ELLIPSIS}\n\n"


def _field(label: str, value: str, reference: Optional[str] = None) -> str:
    line = f"*{label}*"
    if reference:
        line += f" [\\(?\\)]({_EXIF_REFERENCE}{reference}.html)"
    return f"{line}{_SEPARATOR}{value}\n"


def footer_components(data: CaptionData) -> List[str]:
    """Ordered footer pieces; each is a valid truncation boundary."""
    parts: List[str] = []
    if data.page_url:
        parts.append(f"[Flickr page]({data.page_url})\n\n")
    if data.tags:
        for tag in data.tags:
            url = escape_link_url(TAG_URL + quote(tag, safe=""))
            parts.append(f"[\\#{escape_markdown(tag)}]({url}) ")
        parts.append("\n\n")
    if data.copyright:
        parts.append(f"`Copyright ©{data.copyright}`\n\n")

    parts.append("\n")
    if data.taken:
        parts.append(_field("Taken", data.taken))
    if data.make or data.model:
        camera = " ".join(value for value in (data.make, data.model) if value)
        parts.append(_field("Camera", camera))
    if data.lens_model:
        parts.append(_field("Lens", data.lens_model))
    if data.max_aperture:
        parts.append(_field("Max aperture", data.max_aperture))

    parts.append("\n")
    if data.focal_length or data.focal_length_35mm:
        labels = []
        values = []
        if data.focal_length:
            labels.append("Focal length")
            values.append(data.focal_length)
        if data.focal_length_35mm:
            labels.append("35mm equivalent")
            values.append(data.focal_length_35mm)
        parts.append(_field(" / ".join(labels), " / ".join(values)))
    if data.exposure:
        parts.append(_field("Exposure", data.exposure))
    if data.aperture:
        parts.append(_field("Aperture", data.aperture))
    if data.iso:
        parts.append(_field("ISO", data.iso))

    parts.append("\n")
    for label, value, reference in (
        ("Exposure program", data.exposure_program, "exposureprogram"),
        ("Exposure mode", data.exposure_mode, "exposuremode"),
        ("Flash", data.flash, "flash"),
        ("White balance", data.white_balance, "whitebalance"),
        ("Metering mode", data.metering_mode, "meteringmode"),
        ("Light source", data.light_source, "lightsource"),
    ):
        if value:
            parts.append(_field(label, value, reference))

    parts.append("\n")
    if data.brightness_value:
        parts.append(_field("Brightness", data.brightness_value, "brightnessvalue"))
    if data.exposure_compensation:
        parts.append(_field("Exposure compensation", data.exposure_compensation))
    return parts


def render_caption(
    data: CaptionData,
    *,
    description: Optional[str] = None,
    footer: Optional[Sequence[str]] = None,
) -> str:
    """Render the full caption.  Pure; safe to call repeatedly.

    Args:
        data: Escaped caption fields.
        description: Replacement description markup (defaults to
            ``data.description``).
        footer: Replacement footer components (defaults to
            ``footer_components(data)``).
    """
    if description is None:
        description = data.description
    if footer is None:
        footer = footer_components(data)
    return render_header(data) + render_description(description) + "".join(footer)


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------


def _largest_fitting(candidates: Sequence[int], fits: Callable[[int], bool]) -> Optional[int]:
    """Binary search for the largest candidate accepted by ``fits``.

    ``fits`` must be monotonic over ``candidates`` (true up to some point,
    false after).  Returns ``None`` if even the first candidate fails.
    """
    lo, hi = 0, len(candidates) - 1
    best: Optional[int] = None
    while lo <= hi:
        mid = (lo + hi) // 2
        if fits(candidates[mid]):
            best = candidates[mid]
            lo = mid + 1
        else:
            hi = mid - 1
    return best


def _shorten_title(data: CaptionData) -> CaptionData:
    """Cut the title (and drop the artist if needed) to fit ``HEADER_BUDGET``."""
    if rendered_length(render_header(data)) <= HEADER_BUDGET:
        return data

    for candidate in (data, replace(data, artist=None)):
        title = candidate.title

        def fits(cut: int, candidate: CaptionData = candidate, title: str = title) -> bool:
            trial = replace(candidate, title=title[:cut] + ELLIPSIS)
            return rendered_length(render_header(trial)) <= HEADER_BUDGET

        cut = _largest_fitting(escape_safe_cut_points(title), fits)
        if cut is not None:
            return replace(candidate, title=title[:cut] + ELLIPSIS)

    return replace(data, title=ELLIPSIS, artist=None)


def _shorten_footer(data: CaptionData, footer: List[str]) -> List[str]:
    """Drop trailing footer components until header + placeholder
    description + footer fit; mark the cut with ``MORE_MARKER``."""

    def total(parts: Sequence[str]) -> int:
        return rendered_length(render_caption(data, description=ELLIPSIS, footer=parts))

    if total(footer) <= MAX_CAPTION_LENGTH:
        return footer

    def fits(count: int) -> bool:
        return total(footer[:count] + [MORE_MARKER]) <= MAX_CAPTION_LENGTH

    count = _largest_fitting(range(len(footer)), fits)
    return footer[: count or 0] + [MORE_MARKER]


def _shorten_description(data: CaptionData, footer: List[str]) -> str:
    description = data.description or ""

    def length_with(markup: str) -> int:
        return rendered_length(render_caption(data, description=markup, footer=footer))

    if description and length_with(description) <= MAX_CAPTION_LENGTH:
        return description

    def fits(cut: int) -> bool:
        return length_with(description[:cut] + ELLIPSIS) <= MAX_CAPTION_LENGTH

    cut = _largest_fitting(escape_safe_cut_points(description)[:-1], fits)
    if not cut:
        return ELLIPSIS
    return description[:cut] + ELLIPSIS


def fit_caption(data: CaptionData) -> str:
    """Render ``data`` into at most ``MAX_CAPTION_LENGTH`` rendered units.

    Order of sacrifice: the description first, then (only if header and
    footer alone do not fit) the title and the tail of the footer.
    """
    caption = render_caption(data)
    if rendered_length(caption) <= MAX_CAPTION_LENGTH:
        return caption

    footer = footer_components(data)
    fixed = render_caption(data, description=ELLIPSIS, footer=footer)
    if rendered_length(fixed) > MAX_CAPTION_LENGTH:
        data = _shorten_title(data)
        footer = _shorten_footer(data, footer)

    description = _shorten_description(data, footer)
    caption = render_caption(data, description=description, footer=footer)
    logger.debug(
        "Caption truncated to %d rendered units (%d markup chars)",
        rendered_length(caption),
        len(caption),
    )
    return caption


def generate_photo_message(
    photo: Photo,
    exif: Optional[ExifInfo],
    tags: Sequence[Tag],
) -> str:
    """Caption for ``photo``, guaranteed to fit Telegram's caption cap."""
    return fit_caption(caption_data(photo, exif, tags))
