"""Inbound decoder: one raw Yunhu message -> element tree + plain content.

Decoding degrades instead of failing: a mention that cannot be resolved stays
literal text, a quote that cannot be fetched becomes a stub carrying only its
id, and optional fields that do not validate are dropped. The one fatal case
is an event with no message at all.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional, Union

from yunhu_bridge.config import YUNHU_RESOURCE_ENDPOINT
from yunhu_bridge.core.errors import MalformedInput, ResolverFailure
from yunhu_bridge.domain.elements import At, Element, Media, MediaKind, Text, plain_text
from yunhu_bridge.domain.models import Chat, RawMessage, Sender, make_channel_id
from yunhu_bridge.domain.session import DecodedMessage, QuoteRef
from yunhu_bridge.observability.logging import get_logger
from yunhu_bridge.resolvers import Resolvers, guarded

log = get_logger("decoder")

ZERO_WIDTH = "\u200b\u200c\u200d\u2060\ufeff"
AT_ALL_ID = "all"
AT_ALL_TEXT = "@全体成员"

_STRIP_TABLE = str.maketrans("", "", ZERO_WIDTH)


def strip_markers(text: str) -> str:
    return text.translate(_STRIP_TABLE)


def normalize_command(text: str, command: Optional[str]) -> str:
    """Fold a slash-command into ``"<command> <args>"`` form.

    ``/ping`` -> ``ping``; ``/ping 123`` -> ``ping 123``; ``123`` -> ``ping 123``.
    """
    if not command:
        return text
    slash = "/" + command
    if text.strip() == slash:
        return command
    if text.startswith(slash) and (len(text) == len(slash) or text[len(slash)].isspace()):
        return text[1:]
    if not text.strip():
        return command
    if text.startswith("/"):
        return text
    return f"{command} {text}"


@dataclass
class _Span:
    start: int
    end: int
    element: At


@dataclass
class DecoderOptions:
    resource_endpoint: str = YUNHU_RESOURCE_ENDPOINT
    image_proxy: str = ""


class MessageDecoder:
    def __init__(self, resolvers: Resolvers, options: Optional[DecoderOptions] = None):
        self.resolvers = resolvers
        self.options = options or DecoderOptions()

    async def decode(
        self,
        message: Union[RawMessage, dict[str, Any], None],
        sender: Union[Sender, dict[str, Any], None] = None,
        chat: Union[Chat, dict[str, Any], None] = None,
        *,
        resolve_quote: bool = True,
    ) -> DecodedMessage:
        if message is None:
            raise MalformedInput("event carries no message")
        if isinstance(message, dict):
            message = RawMessage.lenient(message)
        elif not isinstance(message, RawMessage):
            raise MalformedInput(f"unexpected message type {type(message).__name__}")
        sender = _coerce(Sender, sender)
        chat = _coerce(Chat, chat)

        raw_text = message.content.text or ""
        elements = await self._split_mentions(raw_text, message.content.at)
        elements = _apply_command(elements, message.command_name)
        elements.extend(self._media_elements(message))

        decoded = DecodedMessage(
            id=message.msg_id,
            elements=elements,
            content=plain_text(e for e in elements if isinstance(e, (Text, At))),
            form=_parse_form(message.content.form_json),
        )
        if message.parent_id and resolve_quote:
            channel_id = _channel_for(message, sender, chat)
            decoded.quote = await self._decode_quote(message, channel_id)
        return decoded

    # ------------------------------------------------------------------
    # mentions
    # ------------------------------------------------------------------

    async def _split_mentions(self, raw: str, at_ids: list[str]) -> list[Element]:
        if not raw:
            return []
        if not at_ids:
            return _text_elements(strip_markers(raw))

        names = await self._resolve_names([i for i in dict.fromkeys(at_ids) if i != AT_ALL_ID])
        owners: dict[str, set[str]] = {}
        for user_id, name in names.items():
            owners.setdefault(name, set()).add(user_id)

        taken: list[_Span] = []
        for user_id in at_ids:
            if user_id == AT_ALL_ID:
                token, element = AT_ALL_TEXT, At(type="all", name=AT_ALL_TEXT[1:])
            else:
                name = names.get(user_id)
                if not name:
                    continue
                if len(owners[name]) > 1:
                    log.info("mention_ambiguous", name=name, ids=sorted(owners[name]))
                    continue
                token, element = f"@{name}", At(id=user_id, name=name)
            span = _find_free(raw, token, taken)
            if span is None:
                continue
            taken.append(_Span(span[0], span[1], element))

        taken.sort(key=lambda s: s.start)
        out: list[Element] = []
        cursor = 0
        for s in taken:
            out.extend(_text_elements(strip_markers(raw[cursor:s.start])))
            out.append(s.element)
            cursor = s.end
        out.extend(_text_elements(strip_markers(raw[cursor:])))
        return out

    async def _resolve_names(self, user_ids: list[str]) -> dict[str, str]:
        async def one(user_id: str) -> Optional[str]:
            try:
                user = await guarded(
                    self.resolvers.users.get_user(user_id),
                    resolver="user",
                    timeout=self.resolvers.timeout,
                )
            except ResolverFailure:
                return None
            return user.name or None

        names = await asyncio.gather(*(one(i) for i in user_ids))
        return {i: n for i, n in zip(user_ids, names) if n}

    # ------------------------------------------------------------------
    # media / quote
    # ------------------------------------------------------------------

    def _media_elements(self, message: RawMessage) -> list[Element]:
        content = message.content
        out: list[Element] = []
        if content.image_url:
            out.append(Media(MediaKind.image, self._image_src(content.image_url)))
        elif content.image_name:
            out.append(Media(MediaKind.image, self._image_src(self.options.resource_endpoint + content.image_name)))
        if content.video_key:
            out.append(Media(MediaKind.video, content.video_key))
        if content.file_key:
            out.append(Media(MediaKind.file, content.file_key, content.file_name))
        return out

    def _image_src(self, url: str) -> str:
        if self.options.image_proxy:
            return f"{self.options.image_proxy}?url={url}"
        return url

    async def _decode_quote(self, message: RawMessage, channel_id: Optional[str]) -> QuoteRef:
        parent_id = message.parent_id
        if not channel_id:
            return QuoteRef(id=parent_id)
        try:
            parent = await guarded(
                self.resolvers.messages.get_message(channel_id, parent_id),
                resolver="message",
                timeout=self.resolvers.timeout,
            )
        except ResolverFailure:
            return QuoteRef(id=parent_id)

        if parent is not None:
            decoded = await self.decode(parent, resolve_quote=False)
            return QuoteRef(
                id=parent_id,
                elements=decoded.elements,
                content=decoded.content,
                user_id=parent.sender_id or None,
            )

        hinted = self._parent_hints(message)
        if hinted:
            return QuoteRef(id=parent_id, elements=hinted, content=plain_text(hinted))
        return QuoteRef(id=parent_id)

    def _parent_hints(self, message: RawMessage) -> list[Element]:
        content = message.content
        if content.parent_img_name:
            return [Media(MediaKind.image, self._image_src(self.options.resource_endpoint + content.parent_img_name))]
        if content.parent and ":" in content.parent:
            # "<nickname>:<text>"
            text = strip_markers(content.parent.split(":", 1)[1])
            if text:
                return [Text(text)]
        return []


def _find_free(raw: str, token: str, taken: list[_Span]) -> Optional[tuple[int, int]]:
    start = 0
    while True:
        idx = raw.find(token, start)
        if idx < 0:
            return None
        end = idx + len(token)
        bounded = end == len(raw) or raw[end].isspace() or raw[end] in ZERO_WIDTH
        overlaps = any(idx < s.end and s.start < end for s in taken)
        if bounded and not overlaps:
            # swallow the delimiter the sender's client appends after a mention
            if end < len(raw) and raw[end] in ZERO_WIDTH:
                end += 1
            return idx, end
        start = idx + 1


def _text_elements(text: str) -> list[Element]:
    return [Text(text)] if text else []


def _apply_command(elements: list[Element], command: Optional[str]) -> list[Element]:
    if not command:
        return elements
    if elements and isinstance(elements[0], Text):
        head = normalize_command(elements[0].content, command)
        if len(elements) > 1 and head == command:
            # "/cmd" directly followed by a mention keeps its separator
            head += " "
        return [Text(head)] + elements[1:]
    return [Text(command if not elements else f"{command} ")] + elements


def _parse_form(raw: Any) -> Optional[dict[str, Any]]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            log.warning("form_json_invalid", error=str(e))
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _channel_for(message: RawMessage, sender: Sender, chat: Chat) -> Optional[str]:
    chat_type = chat.chat_type if chat.chat_id else message.chat_type
    if chat_type == "bot":
        user_id = sender.sender_id or message.sender_id
        return make_channel_id("user", user_id) if user_id else None
    chat_id = chat.chat_id or message.chat_id
    return make_channel_id("group", chat_id) if chat_id else None


def _coerce(model, value):
    if value is None:
        return model()
    if isinstance(value, model):
        return value
    if isinstance(value, dict):
        try:
            return model.model_validate(value)
        except ValueError as e:
            log.warning("metadata_invalid", model=model.__name__, error=str(e))
    return model()
