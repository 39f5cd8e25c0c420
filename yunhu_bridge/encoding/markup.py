"""Inline markup collected while walking one outbound unit.

The encoder records what it saw; the unit's final content type is only known
at flush time, so rendering is a pure function run exactly once per send.
"""
from __future__ import annotations

import html
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Union

from yunhu_bridge.domain.models import ContentType

MENTION_MARKER = "\u200b"


class SpanKind(str, Enum):
    paragraph = "paragraph"
    heading = "heading"
    link = "link"
    bold = "bold"
    italic = "italic"
    strike = "strike"
    code = "code"
    underline = "underline"
    sup = "sup"
    sub = "sub"


@dataclass
class Literal:
    text: str


@dataclass
class LineBreak:
    pass


@dataclass
class Span:
    kind: SpanKind
    children: list[Node] = field(default_factory=list)
    href: str | None = None
    level: int = 1

    def shell(self) -> "Span":
        return Span(self.kind, [], self.href, self.level)


@dataclass
class MentionRef:
    name: str


@dataclass
class InlineImage:
    url: str | None


@dataclass
class Marker:
    label: str


@dataclass
class RawMarkup:
    html: str


@dataclass
class AuthorLine:
    name: str
    id: str


Node = Union[Literal, LineBreak, Span, MentionRef, InlineImage, Marker, RawMarkup, AuthorLine]

_MD_DELIMS = {
    SpanKind.bold: "**",
    SpanKind.italic: "*",
    SpanKind.strike: "~~",
    SpanKind.code: "`",
}

_HTML_TAGS = {
    SpanKind.bold: "b",
    SpanKind.italic: "em",
    SpanKind.strike: "del",
    SpanKind.code: "code",
    SpanKind.underline: "u",
    SpanKind.sup: "sup",
    SpanKind.sub: "sub",
    SpanKind.paragraph: "p",
}


def render(nodes: Iterable[Node], target: ContentType) -> str:
    if target is ContentType.html:
        return "".join(_html(n) for n in nodes)
    if target is ContentType.markdown:
        return "".join(_markdown(n) for n in nodes)
    return "".join(_text(n) for n in nodes)


def has_content(nodes: Iterable[Node]) -> bool:
    """Anything worth sending; whitespace and bare line breaks are not."""
    for n in nodes:
        if isinstance(n, Literal):
            if n.text.strip():
                return True
        elif isinstance(n, Span):
            if has_content(n.children):
                return True
        elif not isinstance(n, LineBreak):
            return True
    return False


def mention_text(name: str) -> str:
    return f"@{name}{MENTION_MARKER} "


def _text(n: Node) -> str:
    if isinstance(n, Literal):
        return n.text
    if isinstance(n, LineBreak):
        return "\n"
    if isinstance(n, MentionRef):
        return mention_text(n.name)
    if isinstance(n, InlineImage):
        return "[image]"
    if isinstance(n, Marker):
        return f"[{n.label}]"
    if isinstance(n, RawMarkup):
        return n.html
    if isinstance(n, AuthorLine):
        return f"{n.name}({n.id})\n"
    inner = "".join(_text(c) for c in n.children)
    if n.kind is SpanKind.link:
        if not inner or inner == n.href:
            return n.href or ""
        return f"{inner} ({n.href})"
    if n.kind in (SpanKind.paragraph, SpanKind.heading):
        return inner + "\n"
    return inner


def _markdown(n: Node) -> str:
    if isinstance(n, Literal):
        return n.text
    if isinstance(n, LineBreak):
        return "\n"
    if isinstance(n, MentionRef):
        return mention_text(n.name)
    if isinstance(n, InlineImage):
        if not n.url:
            return "[image]"
        return f"\n![image]({n.url})\n"
    if isinstance(n, Marker):
        return f"~~[{n.label}]~~ "
    if isinstance(n, RawMarkup):
        return n.html
    if isinstance(n, AuthorLine):
        return f"\n**{n.name}({n.id})**\n"
    inner = "".join(_markdown(c) for c in n.children)
    if n.kind is SpanKind.link:
        return f"[{inner or n.href}]({n.href})"
    if n.kind is SpanKind.heading:
        return f"{'#' * n.level} {inner}\n"
    if n.kind is SpanKind.paragraph:
        return inner + "\n"
    delim = _MD_DELIMS.get(n.kind)
    if delim and inner:
        return f"{delim}{inner}{delim}"
    return inner


def _html(n: Node) -> str:
    if isinstance(n, Literal):
        return html.escape(n.text, quote=False)
    if isinstance(n, LineBreak):
        return "<br>"
    if isinstance(n, MentionRef):
        return f"<span>{html.escape(mention_text(n.name), quote=False)}</span>"
    if isinstance(n, InlineImage):
        if not n.url:
            return "[image]"
        return f'<img src="{html.escape(n.url)}" alt="[image]">'
    if isinstance(n, Marker):
        return f'<span style="color: red;">[{html.escape(n.label, quote=False)}]</span>'
    if isinstance(n, RawMarkup):
        return n.html
    if isinstance(n, AuthorLine):
        return f"<strong>{html.escape(n.name, quote=False)}</strong><sub>{html.escape(n.id, quote=False)}</sub><br>"
    inner = "".join(_html(c) for c in n.children)
    if n.kind is SpanKind.link:
        return f'<a href="{html.escape(n.href or "")}">{inner or html.escape(n.href or "", quote=False)}</a>'
    if n.kind is SpanKind.heading:
        return f"<h{n.level}>{inner}</h{n.level}>"
    tag = _HTML_TAGS[n.kind]
    return f"<{tag}>{inner}</{tag}>"
