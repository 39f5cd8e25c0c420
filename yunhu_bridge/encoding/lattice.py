"""Content-type lattice for one outbound unit.

Text family is a chain ``text < markdown < html``. An image next to any text
reads as markdown (inline ``![]()``), or inline html once the unit is html.
Video and file cannot share a unit with anything, and neither can two images
that are still standalone media.
"""
from __future__ import annotations

from yunhu_bridge.domain.elements import MediaKind, Style
from yunhu_bridge.domain.models import ContentType

TEXT_FAMILY = (ContentType.text, ContentType.markdown, ContentType.html)
MEDIA = (ContentType.image, ContentType.video, ContentType.file)
EXCLUSIVE = (ContentType.video, ContentType.file)

_RANK = {ContentType.text: 0, ContentType.markdown: 1, ContentType.html: 2}

STYLE_REQUIREMENT = {
    Style.bold: ContentType.markdown,
    Style.italic: ContentType.markdown,
    Style.strike: ContentType.markdown,
    Style.code: ContentType.markdown,
    Style.underline: ContentType.html,
    Style.sup: ContentType.html,
    Style.sub: ContentType.html,
}

MEDIA_REQUIREMENT = {
    MediaKind.image: ContentType.image,
    MediaKind.video: ContentType.video,
    MediaKind.file: ContentType.file,
    MediaKind.audio: ContentType.video,  # audio ships as a video key
}


def is_text(t: ContentType) -> bool:
    return t in TEXT_FAMILY


def is_media(t: ContentType) -> bool:
    return t in MEDIA


def collides(current: ContentType, required: ContentType) -> bool:
    """True when ``required`` cannot join the unit without a flush first."""
    if current is ContentType.unset or required is ContentType.unset:
        return False
    if current in EXCLUSIVE or required in EXCLUSIVE:
        return True
    return current is ContentType.image and required is ContentType.image


def join(current: ContentType, required: ContentType) -> ContentType:
    """Least upper bound of two non-colliding types."""
    if collides(current, required):
        raise ValueError(f"{current.value} and {required.value} cannot share a unit")
    if current is ContentType.unset:
        return required
    if required is ContentType.unset:
        return current
    if current is ContentType.image:
        current = ContentType.markdown
    if required is ContentType.image:
        required = ContentType.markdown
    return current if _RANK[current] >= _RANK[required] else required


def promote(current: ContentType, required: ContentType) -> ContentType | None:
    """Next committed type, or None when the unit must be flushed first."""
    if collides(current, required):
        return None
    return join(current, required)


def least_upper_bound(types) -> ContentType:
    out = ContentType.unset
    for t in types:
        out = join(out, t)
    return out
