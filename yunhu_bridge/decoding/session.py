"""Webhook event -> Session."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from yunhu_bridge.core.errors import MalformedInput, ResolverFailure
from yunhu_bridge.decoding.decoder import MessageDecoder
from yunhu_bridge.domain.models import (
    ButtonReportEvent,
    Chat,
    MemberEvent,
    RawMessage,
    Sender,
    WebhookEvent,
    make_channel_id,
    validate_lenient,
)
from yunhu_bridge.domain.session import Role, Session, SessionUser
from yunhu_bridge.observability import metrics
from yunhu_bridge.observability.logging import get_logger
from yunhu_bridge.resolvers import UserResolver, guarded

log = get_logger("session")

ROLE_PERMISSIONS = {
    "owner": 0x1FFFFFFFFF,
    "administrator": 0x8,
    "member": 2048,
}


def role_for(level: str) -> Role:
    return Role(id=level, name=level, permissions=ROLE_PERMISSIONS.get(level, 0))


class SessionAdapter:
    """Maps one webhook event to the Session the host framework consumes.

    Unknown event types are logged and yield ``None``.
    """

    def __init__(
        self,
        decoder: MessageDecoder,
        *,
        self_id: str = "",
        users: Optional[UserResolver] = None,
        fetch_sender_profile: bool = False,
        resolver_timeout: Optional[float] = None,
    ):
        self.decoder = decoder
        self.self_id = self_id
        self.users = users
        self.fetch_sender_profile = fetch_sender_profile
        self.resolver_timeout = resolver_timeout
        self._handlers: dict[str, Callable[[Session, dict[str, Any]], Awaitable[Optional[Session]]]] = {
            "message.receive.normal": self._message,
            "message.receive.instruction": self._message,
            "bot.followed": self._friend("friend-added"),
            "bot.unfollowed": self._friend("friend-deleted"),
            "group.member.joined": self._member_joined,
            "group.member.leaved": self._member_leaved,
            "group.member.invited": self._member_invited,
            "group.member.kicked": self._member_kicked,
            "group.disbanded": self._group_disbanded,
            "button.report.inline": self._button_report,
        }

    async def adapt(self, event: Union[WebhookEvent, dict[str, Any]]) -> Optional[Session]:
        if isinstance(event, dict):
            try:
                event = WebhookEvent.model_validate(event)
            except ValidationError as e:
                raise MalformedInput(f"invalid webhook envelope: {e.error_count()} errors") from e

        event_type = event.header.event_type
        handler = self._handlers.get(event_type)
        if handler is None:
            log.info("event_ignored", event_type=event_type, event_id=event.header.event_id)
            metrics.inbound_events.labels(event_type="unknown").inc()
            return None

        session = Session(
            type="",
            self_id=self.self_id,
            timestamp=event.header.event_time,
            event_id=event.header.event_id or None,
            raw=event.event,
        )
        result = await handler(session, event.event)
        if result is not None:
            metrics.inbound_events.labels(event_type=event_type).inc()
        return result

    # ------------------------------------------------------------------
    # messages
    # ------------------------------------------------------------------

    async def _message(self, session: Session, body: dict[str, Any]) -> Session:
        raw = body.get("message")
        if not isinstance(raw, dict):
            raise MalformedInput("message event without a message")
        sender = _lenient(Sender, body.get("sender"))
        chat = _lenient(Chat, body.get("chat"))
        message = RawMessage.lenient(raw)

        decoded = await self.decoder.decode(message, sender, chat)

        session.type = "message"
        session.message = decoded
        session.message_id = decoded.id or None
        session.content = decoded.content
        session.timestamp = message.send_time or session.timestamp
        session.user = SessionUser(id=sender.sender_id or message.sender_id, name=sender.sender_nickname or message.sender_nickname)
        if self.fetch_sender_profile and session.user.id:
            await self._enrich(session.user)

        if chat.chat_type == "bot":
            session.is_direct = True
            session.channel_id = make_channel_id("user", session.user.id)
        else:
            session.channel_id = make_channel_id("group", chat.chat_id)
            session.guild_id = chat.chat_id
            session.role = role_for(sender.sender_user_level)
        return session

    async def _enrich(self, user: SessionUser) -> None:
        if self.users is None:
            return
        try:
            info = await guarded(self.users.get_user(user.id), resolver="user", timeout=self.resolver_timeout)
        except ResolverFailure:
            return
        user.avatar = info.avatar
        user.name = user.name or info.name

    # ------------------------------------------------------------------
    # membership
    # ------------------------------------------------------------------

    def _friend(self, kind: str):
        async def handle(session: Session, body: dict[str, Any]) -> Session:
            event = _lenient(MemberEvent, body)
            user_id = event.user_id or event.sender.sender_id
            session.type = kind
            session.is_direct = True
            session.user = SessionUser(id=user_id, name=event.nickname or event.sender.sender_nickname or None)
            session.channel_id = make_channel_id("user", user_id)
            return session

        return handle

    def _group(self, session: Session, event: MemberEvent) -> None:
        chat_id = event.chat.chat_id
        session.guild_id = chat_id
        session.channel_id = make_channel_id("group", chat_id)

    async def _member_joined(self, session: Session, body: dict[str, Any]) -> Session:
        event = _lenient(MemberEvent, body)
        self._group(session, event)
        member = event.joined_member
        session.type = "guild-member-added"
        session.user = _member_user(member, event.sender)
        session.operator_id = event.sender.sender_id or None
        return session

    async def _member_leaved(self, session: Session, body: dict[str, Any]) -> Session:
        event = _lenient(MemberEvent, body)
        self._group(session, event)
        session.type = "guild-member-removed"
        session.subtype = "leave" if event.leave_type in (None, "self") else "kick"
        session.user = _member_user(event.leaved_member, event.sender)
        session.operator_id = event.sender.sender_id or None
        return session

    async def _member_invited(self, session: Session, body: dict[str, Any]) -> Session:
        event = _lenient(MemberEvent, body)
        self._group(session, event)
        session.type = "guild-member-added"
        session.subtype = "invite"
        session.user = _member_user(event.invited_member, event.sender)
        session.operator_id = event.inviter.inviter_id if event.inviter else None
        return session

    async def _member_kicked(self, session: Session, body: dict[str, Any]) -> Session:
        event = _lenient(MemberEvent, body)
        self._group(session, event)
        session.type = "guild-member-removed"
        session.subtype = "kick"
        session.user = _member_user(event.kicked_member, event.sender)
        session.operator_id = event.operator.operator_id if event.operator else None
        return session

    async def _group_disbanded(self, session: Session, body: dict[str, Any]) -> Session:
        event = _lenient(MemberEvent, body)
        self._group(session, event)
        session.type = "guild-deleted"
        session.operator_id = (event.operator.operator_id if event.operator else None) or event.sender.sender_id or None
        return session

    # ------------------------------------------------------------------
    # interactions
    # ------------------------------------------------------------------

    async def _button_report(self, session: Session, body: dict[str, Any]) -> Session:
        event = _lenient(ButtonReportEvent, body)
        session.type = "interaction/button"
        session.user = SessionUser(id=event.user_id)
        session.message_id = event.msg_id or None
        session.content = event.value
        if event.recv_type == "group":
            session.channel_id = make_channel_id("group", event.recv_id)
            session.guild_id = event.recv_id
        else:
            session.is_direct = True
            session.channel_id = make_channel_id("user", event.user_id or event.recv_id)
        if event.time:
            session.timestamp = event.time
        return session


async def adapt_session(
    event: Union[WebhookEvent, dict[str, Any]],
    decoder: MessageDecoder,
    *,
    self_id: str = "",
    users: Optional[UserResolver] = None,
    fetch_sender_profile: bool = False,
) -> Optional[Session]:
    adapter = SessionAdapter(decoder, self_id=self_id, users=users, fetch_sender_profile=fetch_sender_profile)
    return await adapter.adapt(event)


def _member_user(member, sender: Sender) -> SessionUser:
    if member is not None and member.member_id:
        return SessionUser(id=member.member_id, name=member.member_nickname or None)
    return SessionUser(id=sender.sender_id, name=sender.sender_nickname or None)


def _lenient(model, data: Any):
    if not isinstance(data, dict):
        return model()
    return validate_lenient(model, data)
