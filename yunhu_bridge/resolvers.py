"""Collaborator contracts consumed by the encoder and the decoder.

Both take one explicit ``Resolvers`` bundle; they never reach for a client,
settings or a bot object on their own.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Optional, Protocol, TypeVar

from yunhu_bridge.core.errors import ResolverFailure
from yunhu_bridge.domain.models import RawMessage, SendResult, UserInfo, WirePayload
from yunhu_bridge.observability import metrics
from yunhu_bridge.observability.logging import get_logger

T = TypeVar("T")
log = get_logger("resolvers")


@dataclass
class ImageUpload:
    key: str
    url: Optional[str] = None


class MediaResolver(Protocol):
    async def upload_image(self, ref: str) -> ImageUpload: ...
    async def upload_video(self, ref: str) -> str: ...
    async def upload_file(self, ref: str) -> str: ...
    async def upload_audio(self, ref: str) -> str: ...


class UserResolver(Protocol):
    async def get_user(self, user_id: str) -> UserInfo: ...


class MessageResolver(Protocol):
    async def get_message(self, channel_id: str, message_id: str) -> Optional[RawMessage]: ...


class Transport(Protocol):
    async def send_message(self, payload: WirePayload) -> SendResult: ...


@dataclass
class Resolvers:
    media: MediaResolver
    users: UserResolver
    messages: MessageResolver
    transport: Transport
    timeout: float = 10.0


async def guarded(call: Awaitable[T], *, resolver: str, timeout: float | None) -> T:
    """Await a resolver call; every way it can fail becomes ResolverFailure.

    SizeLimitExceeded (and any other ResolverFailure) passes through as is so
    callers can tell the kinds apart.
    """
    try:
        if timeout:
            return await asyncio.wait_for(call, timeout)
        return await call
    except ResolverFailure as e:
        metrics.resolver_failures.labels(resolver=resolver).inc()
        log.warning("resolver_failed", resolver=resolver, error=str(e), error_type=type(e).__name__)
        raise
    except asyncio.TimeoutError as e:
        metrics.resolver_failures.labels(resolver=resolver).inc()
        log.warning("resolver_timeout", resolver=resolver, timeout_s=timeout)
        raise ResolverFailure(f"{resolver} timed out after {timeout}s", resolver=resolver) from e
    except Exception as e:
        metrics.resolver_failures.labels(resolver=resolver).inc()
        log.warning("resolver_failed", resolver=resolver, error=str(e), error_type=type(e).__name__)
        raise ResolverFailure(str(e) or type(e).__name__, resolver=resolver) from e
