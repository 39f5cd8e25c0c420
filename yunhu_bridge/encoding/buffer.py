from __future__ import annotations

from dataclasses import dataclass, field

from yunhu_bridge.domain.models import Button, ContentType
from yunhu_bridge.encoding.markup import Node, Span, has_content


@dataclass
class ContentUnit:
    """State of the one outbound message currently being assembled.

    ``open_spans`` are the wrappers (bold, link, ...) the walk is inside of;
    new nodes land in the innermost one.
    """
    committed: ContentType = ContentType.unset
    media_key: str | None = None
    nodes: list[Node] = field(default_factory=list)
    open_spans: list[Span] = field(default_factory=list)
    mention_ids: list[str] = field(default_factory=list)
    quote_id: str | None = None
    buttons: list[Button] = field(default_factory=list)

    def append(self, node: Node) -> None:
        if self.open_spans:
            self.open_spans[-1].children.append(node)
        else:
            self.nodes.append(node)

    def open(self, span: Span) -> None:
        self.append(span)
        self.open_spans.append(span)

    def close(self, span: Span) -> None:
        # a flush may have swapped the span for its reopened copy
        if self.open_spans:
            self.open_spans.pop()

    def add_mention(self, user_id: str) -> None:
        if user_id not in self.mention_ids:
            self.mention_ids.append(user_id)

    def is_empty(self) -> bool:
        return not (self.media_key or self.buttons or has_content(self.nodes))

    def reset(self) -> None:
        """Start a fresh unit, reopening empty copies of the open wrappers."""
        reopened = [s.shell() for s in self.open_spans]
        self.committed = ContentType.unset
        self.media_key = None
        self.nodes = []
        self.open_spans = []
        self.mention_ids = []
        self.quote_id = None
        self.buttons = []
        for span in reopened:
            self.open(span)
