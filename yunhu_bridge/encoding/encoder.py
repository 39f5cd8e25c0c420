"""Outbound encoder: abstract element tree -> one or more ``/bot/send`` calls.

The walk is strictly sequential. Each element first settles the unit's content
type against the lattice (flushing when the element cannot share the unit),
then records itself into the unit's inline markup. Rendering to the one
committed representation happens in ``flush``.
"""
from __future__ import annotations

import time
from typing import Callable, Iterable, Optional

from yunhu_bridge.core.errors import ResolverFailure, SizeLimitExceeded
from yunhu_bridge.domain import elements as el
from yunhu_bridge.domain.models import (
    Button,
    ButtonAction,
    ContentType,
    OutboundContent,
    WirePayload,
    parse_channel_id,
)
from yunhu_bridge.domain.session import DecodedMessage, QuoteRef, Session
from yunhu_bridge.encoding import lattice
from yunhu_bridge.encoding.buffer import ContentUnit
from yunhu_bridge.encoding.markup import (
    AuthorLine,
    InlineImage,
    LineBreak,
    Literal,
    Marker,
    MentionRef,
    RawMarkup,
    Span,
    SpanKind,
    render,
)
from yunhu_bridge.observability import metrics
from yunhu_bridge.observability.logging import get_logger
from yunhu_bridge.resolvers import Resolvers, guarded

log = get_logger("encoder")

AT_ALL_ID = "all"
AT_ALL_NAME = "全体成员"

SPAN_REQUIREMENT = {
    SpanKind.paragraph: ContentType.text,
    SpanKind.link: ContentType.text,
    SpanKind.heading: ContentType.markdown,
    SpanKind.bold: ContentType.markdown,
    SpanKind.italic: ContentType.markdown,
    SpanKind.strike: ContentType.markdown,
    SpanKind.code: ContentType.markdown,
    SpanKind.underline: ContentType.html,
    SpanKind.sup: ContentType.html,
    SpanKind.sub: ContentType.html,
}

_BUTTON_ACTIONS = {
    "link": ButtonAction.jump_url,
    "copy": ButtonAction.copy,
    "input": ButtonAction.copy,
    "action": ButtonAction.report,
}


class MessageEncoder:
    """Encodes one outbound send. Build a fresh instance per send."""

    def __init__(
        self,
        channel_id: str,
        resolvers: Resolvers,
        *,
        reply_to: Optional[str] = None,
        emit: Optional[Callable[[Session], None]] = None,
        self_id: str = "",
    ):
        self.channel_id = channel_id
        self.recv_type, self.recv_id = parse_channel_id(channel_id)
        self.resolvers = resolvers
        self.reply_to = reply_to
        self.emit = emit
        self.self_id = self_id

        self.unit = ContentUnit()
        self.results: list[str] = []
        self._forward_depth = 0
        self._handlers = {
            el.Text: self._visit_text,
            el.Break: self._visit_break,
            el.Paragraph: self._visit_paragraph,
            el.Styled: self._visit_styled,
            el.Heading: self._visit_heading,
            el.Link: self._visit_link,
            el.At: self._visit_at,
            el.Quote: self._visit_quote,
            el.Author: self._visit_author,
            el.Media: self._visit_media,
            el.Button: self._visit_button,
            el.MessageGroup: self._visit_message,
            el.MarkdownBlock: self._visit_markdown_block,
            el.RawHtml: self._visit_raw_html,
            el.Fragment: self._visit_fragment,
        }

    async def send(self, content: el.Content) -> list[str]:
        """Encode ``content`` and return the ids of the messages that went out."""
        await self.render(el.parse(content))
        await self.flush()
        return list(self.results)

    async def render(self, children: Iterable[el.Element]) -> None:
        for child in children:
            await self.visit(child)

    async def visit(self, element: el.Element) -> None:
        handler = self._handlers.get(type(element), self._visit_unknown)
        await handler(element)

    # ------------------------------------------------------------------
    # type bookkeeping
    # ------------------------------------------------------------------

    async def _make_room(self, required: ContentType) -> None:
        if lattice.collides(self.unit.committed, required):
            await self.flush()
            if lattice.collides(self.unit.committed, required):
                # only reopened, still empty wrappers are left in the unit
                self.unit.committed = ContentType.unset

    async def _promote(self, required: ContentType) -> None:
        await self._make_room(required)
        self.unit.committed = lattice.join(self.unit.committed, required)

    async def _wrap(self, span: Span, children: list[el.Element]) -> None:
        self.unit.open(span)
        await self.render(children)
        self.unit.close(span)

    async def _append_marker(self, label: str) -> None:
        await self._promote(ContentType.text)
        self.unit.append(Marker(label))

    # ------------------------------------------------------------------
    # element handlers
    # ------------------------------------------------------------------

    async def _visit_text(self, node: el.Text) -> None:
        if not node.content:
            return
        await self._promote(ContentType.text)
        self.unit.append(Literal(node.content))

    async def _visit_break(self, node: el.Break) -> None:
        await self._promote(ContentType.text)
        self.unit.append(LineBreak())

    async def _visit_paragraph(self, node: el.Paragraph) -> None:
        await self._promote(ContentType.text)
        await self._wrap(Span(SpanKind.paragraph), node.children)

    async def _visit_styled(self, node: el.Styled) -> None:
        kind = SpanKind(node.style.value)
        await self._promote(SPAN_REQUIREMENT[kind])
        await self._wrap(Span(kind), node.children)

    async def _visit_heading(self, node: el.Heading) -> None:
        await self._promote(ContentType.markdown)
        await self._wrap(Span(SpanKind.heading, level=min(max(node.level, 1), 6)), node.children)

    async def _visit_link(self, node: el.Link) -> None:
        await self._promote(ContentType.text)
        await self._wrap(Span(SpanKind.link, href=node.href), node.children)

    async def _visit_at(self, node: el.At) -> None:
        if node.type == "all":
            user_id, name = AT_ALL_ID, node.name or AT_ALL_NAME
        elif node.id:
            user_id = node.id
            name = node.name or await self._resolve_name(node.id)
        else:
            await self.render(node.children)
            return
        await self._promote(ContentType.text)
        self.unit.add_mention(user_id)
        self.unit.append(MentionRef(name))

    async def _resolve_name(self, user_id: str) -> str:
        try:
            user = await guarded(
                self.resolvers.users.get_user(user_id),
                resolver="user",
                timeout=self.resolvers.timeout,
            )
        except ResolverFailure:
            return user_id
        return user.name or user_id

    async def _visit_quote(self, node: el.Quote) -> None:
        if node.id:
            self.unit.quote_id = node.id
        await self.render(node.children)

    async def _visit_author(self, node: el.Author) -> None:
        if node.name or node.id:
            await self._promote(ContentType.text)
            self.unit.append(AuthorLine(node.name or node.id or "", node.id or ""))
        await self.render(node.children)

    async def _visit_media(self, node: el.Media) -> None:
        required = lattice.MEDIA_REQUIREMENT[node.kind]
        label = node.kind.value

        url: Optional[str] = None
        try:
            media = self.resolvers.media
            timeout = self.resolvers.timeout
            if node.kind is el.MediaKind.image:
                upload = await guarded(media.upload_image(node.src), resolver="media", timeout=timeout)
                key, url = upload.key, upload.url
            elif node.kind is el.MediaKind.video:
                key = await guarded(media.upload_video(node.src), resolver="media", timeout=timeout)
            elif node.kind is el.MediaKind.audio:
                key = await guarded(media.upload_audio(node.src), resolver="media", timeout=timeout)
            else:
                key = await guarded(media.upload_file(node.src), resolver="media", timeout=timeout)
        except SizeLimitExceeded:
            metrics.media_uploads.labels(kind=label, outcome="too_large").inc()
            await self._append_marker(f"{label} too large")
            return
        except ResolverFailure:
            metrics.media_uploads.labels(kind=label, outcome="failed").inc()
            await self._append_marker(f"{label} upload failed")
            return

        metrics.media_uploads.labels(kind=label, outcome="ok").inc()
        await self._promote(required)
        if self.unit.committed is required:
            self.unit.media_key = key
        if node.kind is el.MediaKind.image:
            self.unit.append(InlineImage(url))

    async def _visit_button(self, node: el.Button) -> None:
        label = node.text or el.plain_text(node.children) or node.value or node.href or "button"
        action = _BUTTON_ACTIONS.get(node.type, ButtonAction.report)
        if action is ButtonAction.jump_url:
            button = Button(text=label, action_type=action, url=node.href)
        else:
            button = Button(text=label, action_type=action, value=node.value or label)
        self.unit.buttons.append(button)

    async def _visit_message(self, node: el.MessageGroup) -> None:
        if node.forward:
            await self.flush()
            self._forward_depth += 1
            try:
                for child in node.children:
                    await self.visit(child)
                    await self.flush()
            finally:
                self._forward_depth -= 1
        elif self._forward_depth:
            await self.render(node.children)
        else:
            await self.flush()
            await self.render(node.children)
            await self.flush()

    async def _visit_markdown_block(self, node: el.MarkdownBlock) -> None:
        await self.flush()
        await self._promote(ContentType.markdown)
        await self.render(node.children)
        await self.flush()

    async def _visit_raw_html(self, node: el.RawHtml) -> None:
        await self._promote(ContentType.html)
        self.unit.append(RawMarkup(node.content))

    async def _visit_fragment(self, node: el.Fragment) -> None:
        await self.render(node.children)

    async def _visit_unknown(self, node: el.Element) -> None:
        log.warning("unknown_element", tag=getattr(node, "tag", type(node).__name__))
        await self.render(getattr(node, "children", []))

    # ------------------------------------------------------------------
    # flush
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Send the current unit, if it holds anything, then reset it."""
        try:
            if self.unit.is_empty():
                return
            payload = self._build_payload()
            log.debug("send_payload", payload=payload.to_wire())
            started = time.perf_counter()
            try:
                result = await self.resolvers.transport.send_message(payload)
            except Exception as e:
                metrics.send_failures.labels(reason="transport").inc()
                log.error("send_failed", recv_id=self.recv_id, error=str(e), error_type=type(e).__name__)
                raise
            finally:
                metrics.send_latency.observe(time.perf_counter() - started)

            if result.ok:
                metrics.outbound_sends.labels(content_type=payload.content_type.value).inc()
                self.results.append(result.message_id)
                self._emit_sent(payload, result.message_id)
            else:
                metrics.send_failures.labels(reason="rejected").inc()
                log.warning("send_rejected", recv_id=self.recv_id, code=result.code, msg=result.msg)
        finally:
            self._reset()

    def _reset(self) -> None:
        self.unit.reset()
        for span in self.unit.open_spans:
            self.unit.committed = lattice.join(self.unit.committed, SPAN_REQUIREMENT[span.kind])

    def _build_payload(self) -> WirePayload:
        unit = self.unit
        content_type = unit.committed if unit.committed is not ContentType.unset else ContentType.text
        content = OutboundContent()
        if lattice.is_text(content_type):
            content.text = render(unit.nodes, content_type)
        elif content_type is ContentType.image:
            content.image_key = unit.media_key
        elif content_type is ContentType.video:
            content.video_key = unit.media_key
        else:
            content.file_key = unit.media_key
        if unit.mention_ids:
            content.at = list(unit.mention_ids)
        if unit.buttons:
            content.buttons = [list(unit.buttons)]
        return WirePayload(
            recv_id=self.recv_id,
            recv_type=self.recv_type,
            content_type=content_type,
            content=content,
            parent_id=unit.quote_id or self.reply_to,
        )

    def _emit_sent(self, payload: WirePayload, message_id: str) -> None:
        if self.emit is None:
            return
        session = Session(
            type="send",
            self_id=self.self_id,
            channel_id=self.channel_id,
            guild_id=self.recv_id if self.recv_type.value == "group" else None,
            is_direct=self.recv_type.value == "user",
            message_id=message_id,
            timestamp=int(time.time() * 1000),
            content=payload.content.text or "",
            message=DecodedMessage(
                id=message_id,
                content=payload.content.text or "",
                quote=QuoteRef(id=payload.parent_id) if payload.parent_id else None,
            ),
        )
        try:
            self.emit(session)
        except Exception as e:
            log.warning("emit_failed", error=str(e))
