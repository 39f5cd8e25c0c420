from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from yunhu_bridge.channels.base import ChannelAdapter, EmitFn
from yunhu_bridge.client.api import YunhuClient
from yunhu_bridge.client.uploader import MediaUploader
from yunhu_bridge.config import Settings
from yunhu_bridge.core.errors import ResolverFailure
from yunhu_bridge.decoding.decoder import DecoderOptions, MessageDecoder
from yunhu_bridge.decoding.session import SessionAdapter
from yunhu_bridge.domain.elements import Content
from yunhu_bridge.domain.models import Channel, ChannelStatus, RawMessage
from yunhu_bridge.domain.session import Session
from yunhu_bridge.encoding.encoder import MessageEncoder
from yunhu_bridge.observability.logging import bind_event_id, clear_event_id, get_logger
from yunhu_bridge.resolvers import MediaResolver, Resolvers

log = get_logger("channel")


class YunhuChannel(ChannelAdapter):
    """One Yunhu bot: webhook in, ``/bot/send`` out."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[YunhuClient] = None,
        media: Optional[MediaResolver] = None,
        channel: Optional[Channel] = None,
    ):
        super().__init__(channel or Channel(id=f"yunhu:{settings.bot_id or 'bot'}", self_id=settings.bot_id or None))
        self.settings = settings
        self.client = client or YunhuClient(settings)
        self.media = media or MediaUploader(settings)
        self.resolvers = Resolvers(
            media=self.media,
            users=self.client,
            messages=self.client,
            transport=self.client,
            timeout=settings.resolver_timeout_s,
        )
        self.decoder = MessageDecoder(
            self.resolvers,
            DecoderOptions(resource_endpoint=settings.resource_endpoint, image_proxy=settings.image_proxy),
        )
        self._emit: Optional[EmitFn] = None

    @property
    def self_id(self) -> str:
        return self.channel.self_id or self.settings.bot_id

    async def start(self, emit: EmitFn) -> None:
        self._emit = emit
        if not self.settings.bot_id:
            log.warning("bot_id_missing", channel_id=self.channel.id)
            self.channel.status = ChannelStatus.ready
            return
        try:
            info = await self.client.get_bot_info(self.settings.bot_id)
        except ResolverFailure as e:
            self.channel.status = ChannelStatus.error
            log.error("bot_profile_failed", channel_id=self.channel.id, error=str(e))
            return
        self.channel.self_id = info.id
        self.channel.name = info.name or None
        self.channel.avatar = info.avatar
        self.channel.status = ChannelStatus.ready
        self.channel.last_seen = datetime.now(timezone.utc)
        log.info("channel_ready", channel_id=self.channel.id, self_id=info.id, name=info.name)

    async def stop(self) -> None:
        self.channel.status = ChannelStatus.offline
        await self.client.aclose()
        close = getattr(self.media, "aclose", None)
        if close is not None:
            await close()
        log.info("channel_stopped", channel_id=self.channel.id)

    async def send_message(self, channel_id: str, content: Content, reply_to: Optional[str] = None) -> list[str]:
        encoder = MessageEncoder(
            channel_id,
            self.resolvers,
            reply_to=reply_to,
            emit=self._emit,
            self_id=self.self_id,
        )
        ids = await encoder.send(content)
        self.channel.last_seen = datetime.now(timezone.utc)
        return ids

    async def handle_webhook(self, payload: dict[str, Any]) -> Optional[Session]:
        header = payload.get("header") if isinstance(payload, dict) else None
        if isinstance(header, dict):
            bind_event_id(header.get("eventId"), header.get("eventType"))
        else:
            bind_event_id(None)
        try:
            adapter = SessionAdapter(
                self.decoder,
                self_id=self.self_id,
                users=self.client,
                fetch_sender_profile=self.settings.fetch_sender_profile,
                resolver_timeout=self.settings.resolver_timeout_s,
            )
            session = await adapter.adapt(payload)
            self.channel.last_seen = datetime.now(timezone.utc)
            if session is not None and self._emit is not None:
                self._emit(session)
            return session
        finally:
            clear_event_id()

    async def get_message(self, channel_id: str, message_id: str) -> Optional[RawMessage]:
        return await self.client.get_message(channel_id, message_id)

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        await self.client.recall_message(channel_id, message_id)
