"""Wire models for the Yunhu bot API and webhook events."""
from __future__ import annotations

import copy
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from yunhu_bridge.observability.logging import get_logger

log = get_logger("models")

WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


# ============================================================================
# Enums
# ============================================================================


class ContentType(str, Enum):
    """Representation of one outbound unit. ``unset`` never reaches the wire."""

    unset = "unset"
    text = "text"
    markdown = "markdown"
    html = "html"
    image = "image"
    video = "video"
    file = "file"


class RecvType(str, Enum):
    user = "user"
    group = "group"


class ChannelStatus(str, Enum):
    """Channel operational status."""

    offline = "offline"
    ready = "ready"
    error = "error"


class ButtonAction(IntEnum):
    """Wire ``actionType`` of a message button."""

    jump_url = 1
    copy = 2
    report = 3


# ============================================================================
# Outbound
# ============================================================================


class Button(BaseModel):
    model_config = WIRE_CONFIG

    text: str
    action_type: ButtonAction = ButtonAction.report
    url: Optional[str] = None
    value: Optional[str] = None


class OutboundContent(BaseModel):
    model_config = WIRE_CONFIG

    text: Optional[str] = None
    image_key: Optional[str] = None
    file_key: Optional[str] = None
    video_key: Optional[str] = None
    at: Optional[list[str]] = None
    buttons: Optional[list[list[Button]]] = None


class WirePayload(BaseModel):
    """Body of one ``/bot/send`` call."""

    model_config = WIRE_CONFIG

    recv_id: str
    recv_type: RecvType
    content_type: ContentType = ContentType.text
    content: OutboundContent = Field(default_factory=OutboundContent)
    parent_id: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class SendResult(BaseModel):
    code: int = 0
    msg: str = ""
    message_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.code == 1 and bool(self.message_id)


class UserInfo(BaseModel):
    id: str
    name: str
    avatar: Optional[str] = None


class Channel(BaseModel):
    """Channel lifecycle metadata."""

    id: str = Field(description="Unique channel identifier")
    status: ChannelStatus = Field(default=ChannelStatus.offline, description="Current status")
    self_id: Optional[str] = Field(default=None, description="Bot id once the profile is known")
    name: Optional[str] = Field(default=None, description="Bot nickname once the profile is known")
    avatar: Optional[str] = Field(default=None)
    last_seen: Optional[datetime] = Field(default=None, description="Last webhook or successful API call")
    metadata: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Inbound
# ============================================================================


class Sender(BaseModel):
    model_config = WIRE_CONFIG

    sender_id: str = ""
    sender_type: str = "user"
    sender_user_level: str = "unknown"
    sender_nickname: str = ""


class Chat(BaseModel):
    model_config = WIRE_CONFIG

    chat_id: str = ""
    chat_type: str = "bot"


class RawContent(BaseModel):
    model_config = WIRE_CONFIG

    text: Optional[str] = None
    at: list[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    image_name: Optional[str] = None
    file_key: Optional[str] = None
    file_name: Optional[str] = None
    video_key: Optional[str] = None
    form_json: Any = None
    parent: Optional[str] = None
    parent_img_name: Optional[str] = None

    @field_validator("at", mode="before")
    @classmethod
    def _coerce_at(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, (str, int)):
            return [str(v)]
        if isinstance(v, (list, tuple)):
            return [str(x) for x in v if isinstance(x, (str, int)) and str(x)]
        return []


class RawMessage(BaseModel):
    """One message as the webhook (or ``/bot/messages``) delivers it."""

    model_config = WIRE_CONFIG

    msg_id: str = ""
    parent_id: Optional[str] = None
    sender_id: str = ""
    sender_nickname: str = ""
    send_time: int = 0
    chat_id: str = ""
    chat_type: str = "bot"
    content_type: str = "text"
    content: RawContent = Field(default_factory=RawContent)
    command_id: Optional[int] = None
    command_name: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, RawContent)) else {}

    @field_validator("parent_id", "command_name", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        return v or None

    @classmethod
    def lenient(cls, data: dict[str, Any]) -> "RawMessage":
        """Validate ``data``, dropping optional fields that fail validation."""
        return validate_lenient(cls, data)


class EventHeader(BaseModel):
    model_config = WIRE_CONFIG

    event_id: str = ""
    event_time: int = 0
    event_type: str = ""


class WebhookEvent(BaseModel):
    model_config = WIRE_CONFIG

    version: str = "1.0"
    header: EventHeader = Field(default_factory=EventHeader)
    event: dict[str, Any] = Field(default_factory=dict)


class MemberRef(BaseModel):
    model_config = WIRE_CONFIG

    member_id: str = ""
    member_nickname: str = ""


class InviterRef(BaseModel):
    model_config = WIRE_CONFIG

    inviter_id: str = ""
    inviter_nickname: str = ""


class OperatorRef(BaseModel):
    model_config = WIRE_CONFIG

    operator_id: str = ""
    operator_nickname: str = ""


class MemberEvent(BaseModel):
    """Shape shared by the follow, group-member and group-disband events."""

    model_config = WIRE_CONFIG

    sender: Sender = Field(default_factory=Sender)
    chat: Chat = Field(default_factory=Chat)
    joined_member: Optional[MemberRef] = None
    leaved_member: Optional[MemberRef] = None
    invited_member: Optional[MemberRef] = None
    kicked_member: Optional[MemberRef] = None
    inviter: Optional[InviterRef] = None
    operator: Optional[OperatorRef] = None
    leave_type: Optional[str] = None
    # bot.followed / bot.unfollowed carry the user flat on the event
    user_id: Optional[str] = None
    nickname: Optional[str] = None


class ButtonReportEvent(BaseModel):
    model_config = WIRE_CONFIG

    time: int = 0
    msg_id: str = ""
    recv_id: str = ""
    recv_type: str = "user"
    user_id: str = ""
    value: str = ""


def validate_lenient(model: type[BaseModel], data: dict[str, Any]) -> Any:
    data = copy.deepcopy(data)
    while True:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            dropped = False
            for err in e.errors():
                loc = err.get("loc") or ()
                if not loc:
                    continue
                target: Any = data
                for key in loc[:-1]:
                    target = target.get(key) if isinstance(target, dict) else None
                if isinstance(target, dict) and loc[-1] in target:
                    log.warning("wire_field_dropped", model=model.__name__, field=".".join(map(str, loc)), error=err.get("msg"))
                    del target[loc[-1]]
                    dropped = True
            if not dropped:
                raise


def parse_channel_id(channel_id: str) -> tuple[RecvType, str]:
    """``private:<user>`` / ``user:<user>`` / ``group:<group>`` -> (recvType, recvId)."""
    kind, sep, target = (channel_id or "").partition(":")
    if not sep or not target:
        raise ValueError(f"invalid channel id: {channel_id!r}")
    if kind in ("private", "user"):
        return RecvType.user, target
    if kind == "group":
        return RecvType.group, target
    raise ValueError(f"invalid channel type in {channel_id!r}")


def make_channel_id(recv_type: RecvType | str, target: str) -> str:
    return f"{'private' if RecvType(recv_type) is RecvType.user else 'group'}:{target}"
