from __future__ import annotations
import abc
from typing import Callable, Optional
from yunhu_bridge.domain.elements import Content
from yunhu_bridge.domain.models import Channel
from yunhu_bridge.domain.session import Session

EmitFn = Callable[[Session], None]

class ChannelAdapter(abc.ABC):
    """Channel adapter interface.

    Adapters are pure async. Everything they observe (inbound events and
    their own sends) is reported through the ``emit`` sink given to ``start``.
    """
    def __init__(self, channel: Channel):
        self.channel = channel

    @abc.abstractmethod
    async def start(self, emit: EmitFn) -> None:
        ...

    @abc.abstractmethod
    async def stop(self) -> None:
        ...

    @abc.abstractmethod
    async def send_message(self, channel_id: str, content: Content, reply_to: Optional[str] = None) -> list[str]:
        ...
