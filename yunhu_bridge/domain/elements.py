"""Abstract message-element tree shared by the encoder and the decoder.

The host framework hands us trees in its dict form
``{"type": "b", "attrs": {...}, "children": [...]}`` (bare strings are text).
``parse`` turns that into the closed set of variants below; any tag we do not
know becomes ``Unknown`` so it can still render its children.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Union


class Style(str, Enum):
    bold = "bold"
    italic = "italic"
    strike = "strike"
    code = "code"
    underline = "underline"
    sup = "sup"
    sub = "sub"


class MediaKind(str, Enum):
    image = "image"
    video = "video"
    file = "file"
    audio = "audio"


@dataclass
class Text:
    content: str


@dataclass
class Break:
    pass


@dataclass
class Paragraph:
    children: list[Element] = field(default_factory=list)


@dataclass
class Styled:
    style: Style
    children: list[Element] = field(default_factory=list)


@dataclass
class Heading:
    level: int = 1
    children: list[Element] = field(default_factory=list)


@dataclass
class Link:
    href: str
    children: list[Element] = field(default_factory=list)


@dataclass
class At:
    id: str | None = None
    name: str | None = None
    type: str | None = None  # "all" mentions everyone
    children: list[Element] = field(default_factory=list)


@dataclass
class Quote:
    id: str | None = None
    children: list[Element] = field(default_factory=list)


@dataclass
class Author:
    id: str | None = None
    name: str | None = None
    children: list[Element] = field(default_factory=list)


@dataclass
class Media:
    kind: MediaKind
    src: str
    name: str | None = None


@dataclass
class Button:
    type: str = "action"  # link | copy | action
    text: str | None = None
    href: str | None = None
    value: str | None = None
    children: list[Element] = field(default_factory=list)


@dataclass
class MessageGroup:
    forward: bool = False
    children: list[Element] = field(default_factory=list)


@dataclass
class MarkdownBlock:
    children: list[Element] = field(default_factory=list)


@dataclass
class RawHtml:
    content: str


@dataclass
class Fragment:
    children: list[Element] = field(default_factory=list)


@dataclass
class Unknown:
    tag: str
    attrs: dict[str, Any] = field(default_factory=dict)
    children: list[Element] = field(default_factory=list)


Element = Union[
    Text, Break, Paragraph, Styled, Heading, Link, At, Quote, Author, Media,
    Button, MessageGroup, MarkdownBlock, RawHtml, Fragment, Unknown,
]

Content = Union[str, Element, dict, Iterable[Union[str, Element, dict]], None]

_STYLE_TAGS = {
    "b": Style.bold, "strong": Style.bold,
    "i": Style.italic, "em": Style.italic,
    "s": Style.strike, "del": Style.strike,
    "code": Style.code,
    "u": Style.underline, "ins": Style.underline,
    "sup": Style.sup,
    "sub": Style.sub,
}

_MEDIA_TAGS = {
    "img": MediaKind.image, "image": MediaKind.image,
    "video": MediaKind.video,
    "file": MediaKind.file,
    "audio": MediaKind.audio,
}

_FRAGMENT_TAGS = {"i18n", "template", "execute"}


def parse(content: Content) -> list[Element]:
    """Normalize host content into a flat list of top-level elements."""
    if content is None:
        return []
    if isinstance(content, (str, dict)) or _is_element(content):
        content = [content]
    out: list[Element] = []
    for item in content:
        if isinstance(item, str):
            if item:
                out.append(Text(item))
        elif isinstance(item, dict):
            out.append(from_dict(item))
        elif _is_element(item):
            out.append(item)
        else:
            out.append(Text(str(item)))
    return out


def from_dict(node: dict[str, Any]) -> Element:
    tag = str(node.get("type") or "text")
    attrs = dict(node.get("attrs") or {})
    children = parse(node.get("children") or [])

    if tag == "text":
        return Text(str(attrs.get("content", "")))
    if tag == "br":
        return Break()
    if tag == "p":
        return Paragraph(children)
    if tag in _STYLE_TAGS:
        return Styled(_STYLE_TAGS[tag], children)
    if len(tag) == 2 and tag[0] == "h" and tag[1] in "123456":
        return Heading(int(tag[1]), children)
    if tag == "a":
        return Link(str(attrs.get("href", "")), children)
    if tag == "at":
        return At(_opt(attrs.get("id")), _opt(attrs.get("name")), _opt(attrs.get("type")), children)
    if tag == "quote":
        return Quote(_opt(attrs.get("id")), children)
    if tag == "author":
        return Author(_opt(attrs.get("id")), _opt(attrs.get("name")), children)
    if tag in _MEDIA_TAGS:
        src = attrs.get("src") or attrs.get("url") or ""
        return Media(_MEDIA_TAGS[tag], str(src), _opt(attrs.get("title") or attrs.get("name")))
    if tag == "button":
        return Button(
            type=str(attrs.get("type") or "action"),
            text=_opt(attrs.get("text")),
            href=_opt(attrs.get("href")),
            value=_opt(attrs.get("value") or attrs.get("id")),
            children=children,
        )
    if tag == "message":
        return MessageGroup(bool(attrs.get("forward")), children)
    if tag == "yunhu:markdown":
        return MarkdownBlock(children)
    if tag == "yunhu:html":
        return RawHtml(str(attrs.get("content", "")) or plain_text(children))
    if tag in _FRAGMENT_TAGS:
        return Fragment(children)
    return Unknown(tag, attrs, children)


def plain_text(elements: Iterable[Element]) -> str:
    """Concatenated text of a subtree; mentions read as ``@name``."""
    parts: list[str] = []
    for el in elements:
        if isinstance(el, Text):
            parts.append(el.content)
        elif isinstance(el, RawHtml):
            parts.append(el.content)
        elif isinstance(el, Break):
            parts.append("\n")
        elif isinstance(el, At):
            if el.type == "all":
                parts.append("@全体成员")
            else:
                parts.append(f"@{el.name or el.id or ''}")
        elif hasattr(el, "children"):
            parts.append(plain_text(el.children))
    return "".join(parts)


def _opt(v: Any) -> str | None:
    return None if v is None or v == "" else str(v)


def _is_element(obj: Any) -> bool:
    return isinstance(obj, ELEMENT_TYPES)


ELEMENT_TYPES = (
    Text, Break, Paragraph, Styled, Heading, Link, At, Quote, Author, Media,
    Button, MessageGroup, MarkdownBlock, RawHtml, Fragment, Unknown,
)
