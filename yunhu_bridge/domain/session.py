from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from yunhu_bridge.domain.elements import Element

PLATFORM = "yunhu"


@dataclass
class QuoteRef:
    id: str
    elements: Optional[list[Element]] = None
    content: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class DecodedMessage:
    id: str
    elements: list[Element] = field(default_factory=list)
    content: str = ""
    quote: Optional[QuoteRef] = None
    form: Optional[dict[str, Any]] = None


@dataclass
class SessionUser:
    id: str
    name: Optional[str] = None
    avatar: Optional[str] = None
    is_bot: bool = False


@dataclass
class Role:
    id: str
    name: Optional[str] = None
    permissions: int = 0


@dataclass
class Session:
    """What the host framework's dispatch sink receives.

    Inbound webhook events and outbound sends are both reported this way;
    ``type`` tells them apart (``message``, ``send``, ``guild-member-added``...).
    """
    type: str
    self_id: str = ""
    platform: str = PLATFORM
    channel_id: Optional[str] = None
    guild_id: Optional[str] = None
    user: Optional[SessionUser] = None
    operator_id: Optional[str] = None
    subtype: Optional[str] = None
    is_direct: bool = False
    message_id: Optional[str] = None
    timestamp: int = 0
    message: Optional[DecodedMessage] = None
    role: Optional[Role] = None
    content: str = ""
    event_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    @property
    def quote(self) -> Optional[QuoteRef]:
        return self.message.quote if self.message else None
