"""Yunhu open API + web API client over httpx.

The open API takes the bot token as a ``token`` query parameter; the web API
(profiles, bot info, group info) is unauthenticated. Every response carries
``{"code", "msg", "data"}`` with ``code == 1`` meaning success.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from yunhu_bridge.config import Settings
from yunhu_bridge.core.errors import RateLimitError, ResolverFailure, TransientError, TransportFailure
from yunhu_bridge.core.retry import DEFAULT_RETRYABLE, SEND_RETRYABLE, retry_async
from yunhu_bridge.domain.models import (
    ContentType,
    RawMessage,
    RecvType,
    SendResult,
    UserInfo,
    WirePayload,
    parse_channel_id,
)
from yunhu_bridge.observability.logging import get_logger

log = get_logger("client")


class YunhuClient:
    def __init__(
        self,
        settings: Settings,
        *,
        http: Optional[httpx.AsyncClient] = None,
        web: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.token = settings.token
        self._owns_clients = http is None and web is None
        self.retry_min_wait = 0.5
        self.retry_max_wait = 8.0
        self.http = http or httpx.AsyncClient(base_url=settings.endpoint, timeout=settings.request_timeout_s)
        self.web = web or httpx.AsyncClient(base_url=settings.web_endpoint, timeout=settings.request_timeout_s)

    async def aclose(self) -> None:
        if self._owns_clients:
            await self.http.aclose()
            await self.web.aclose()

    # ------------------------------------------------------------------
    # low level
    # ------------------------------------------------------------------

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        resp = await client.request(method, path, **kwargs)
        if resp.status_code == 429:
            raise RateLimitError(f"{method} {path}: rate limited")
        if resp.status_code >= 500:
            raise TransientError(f"{method} {path}: HTTP {resp.status_code}")
        resp.raise_for_status()
        body = resp.json()
        if not isinstance(body, dict):
            raise TransportFailure(f"{method} {path}: unexpected response body")
        return body

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        retryable: tuple[type[Exception], ...] = DEFAULT_RETRYABLE,
    ) -> dict[str, Any]:
        query = {"token": self.token, **(params or {})}
        try:
            return await retry_async(
                self._request,
                self.http,
                method,
                path,
                json=json,
                params=query,
                max_attempts=self.settings.send_retry,
                min_wait=self.retry_min_wait,
                max_wait=self.retry_max_wait,
                retryable_exceptions=retryable,
            )
        except TransportFailure:
            raise
        except (httpx.HTTPError, TransientError, RateLimitError, ValueError) as e:
            log.error("api_request_failed", method=method, path=path, error=str(e), error_type=type(e).__name__)
            raise TransportFailure(f"{method} {path} failed: {e}") from e

    async def _web(self, method: str, path: str, *, resolver: str, **kwargs: Any) -> dict[str, Any]:
        try:
            body = await self._request(self.web, method, path, **kwargs)
        except (httpx.HTTPError, TransientError, RateLimitError, TransportFailure, ValueError) as e:
            raise ResolverFailure(f"{path}: {e}", resolver=resolver) from e
        return _checked(body, path, resolver)

    # ------------------------------------------------------------------
    # messages
    # ------------------------------------------------------------------

    async def send_message(self, payload: WirePayload) -> SendResult:
        body = await self._call("POST", "/bot/send", json=payload.to_wire(), retryable=SEND_RETRYABLE)
        data = body.get("data") or {}
        info = data.get("messageInfo") if isinstance(data, dict) else None
        return SendResult(
            code=body.get("code", 0),
            msg=body.get("msg", ""),
            message_id=info.get("msgId") if isinstance(info, dict) else None,
        )

    async def recall_message(self, channel_id: str, message_id: str) -> None:
        recv_type, chat_id = parse_channel_id(channel_id)
        body = await self._call(
            "POST",
            "/bot/recall",
            json={"msgId": message_id, "chatId": chat_id, "chatType": recv_type.value},
        )
        if body.get("code") != 1:
            log.warning("recall_rejected", channel_id=channel_id, message_id=message_id, code=body.get("code"), msg=body.get("msg"))

    async def list_messages(
        self,
        channel_id: str,
        message_id: str = "",
        *,
        before: int = 0,
        after: int = 0,
    ) -> list[RawMessage]:
        recv_type, chat_id = parse_channel_id(channel_id)
        params = {
            "chat-id": chat_id,
            "chat-type": recv_type.value,
            "message-id": message_id,
            "before": before,
            "after": after,
        }
        try:
            body = await self._call("GET", "/bot/messages", params=params)
        except TransportFailure as e:
            raise ResolverFailure(str(e), resolver="message") from e
        data = _checked(body, "/bot/messages", "message")
        entries = data.get("list") or []
        out: list[RawMessage] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            msg = RawMessage.lenient(_flatten_listed(entry))
            if not msg.chat_id:
                msg.chat_id = chat_id
                msg.chat_type = "bot" if recv_type is RecvType.user else "group"
            out.append(msg)
        return out

    async def get_message(self, channel_id: str, message_id: str) -> Optional[RawMessage]:
        for msg in await self.list_messages(channel_id, message_id):
            if msg.msg_id == message_id:
                return msg
        return None

    # ------------------------------------------------------------------
    # profiles
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> UserInfo:
        data = await self._web("GET", "/user/homepage", resolver="user", params={"userId": user_id})
        user = data.get("user") or {}
        return UserInfo(id=user.get("userId") or user_id, name=user.get("nickname") or "", avatar=user.get("avatarUrl"))

    async def get_bot_info(self, bot_id: str) -> UserInfo:
        data = await self._web("POST", "/bot/bot-info", resolver="bot", json={"botId": bot_id})
        bot = data.get("bot") or {}
        return UserInfo(id=bot.get("botId") or bot_id, name=bot.get("nickname") or "", avatar=bot.get("avatarUrl"))

    async def get_group(self, group_id: str) -> dict[str, Any]:
        data = await self._web("POST", "/group/group-info", resolver="group", json={"groupId": group_id})
        return data.get("group") or {}

    # ------------------------------------------------------------------
    # boards
    # ------------------------------------------------------------------

    async def set_board(
        self,
        channel_id: str,
        content: str,
        *,
        content_type: ContentType = ContentType.text,
        member_id: Optional[str] = None,
        expire_time: Optional[int] = None,
    ) -> dict[str, Any]:
        recv_type, chat_id = parse_channel_id(channel_id)
        payload = _board_payload(content, content_type, expire_time)
        payload.update({"chatId": chat_id, "chatType": recv_type.value})
        if member_id:
            payload["memberId"] = member_id
        return await self._call("POST", "/bot/board", json=payload)

    async def set_all_board(
        self,
        content: str,
        *,
        content_type: ContentType = ContentType.text,
        expire_time: Optional[int] = None,
    ) -> dict[str, Any]:
        return await self._call("POST", "/bot/board-all", json=_board_payload(content, content_type, expire_time))

    async def dismiss_board(self, channel_id: str, *, member_id: Optional[str] = None) -> dict[str, Any]:
        recv_type, chat_id = parse_channel_id(channel_id)
        payload: dict[str, Any] = {"chatId": chat_id, "chatType": recv_type.value}
        if member_id:
            payload["memberId"] = member_id
        return await self._call("POST", "/bot/board-dismiss", json=payload)

    async def dismiss_all_board(self) -> dict[str, Any]:
        return await self._call("POST", "/bot/board-all-dismiss", json={})


def _checked(body: dict[str, Any], path: str, resolver: str) -> dict[str, Any]:
    if body.get("code") != 1:
        raise ResolverFailure(f"{path}: code={body.get('code')} msg={body.get('msg')}", resolver=resolver)
    data = body.get("data")
    return data if isinstance(data, dict) else {}


def _flatten_listed(entry: dict[str, Any]) -> dict[str, Any]:
    # /bot/messages lists senderId/contentType at the top level like the
    # webhook message, but names the id field msgId or messageId by version
    if "msgId" not in entry and "messageId" in entry:
        entry = {**entry, "msgId": entry["messageId"]}
    return entry


def _board_payload(content: str, content_type: ContentType, expire_time: Optional[int]) -> dict[str, Any]:
    payload: dict[str, Any] = {"contentType": ContentType(content_type).value, "content": content}
    if expire_time is not None:
        payload["expireTime"] = expire_time
    return payload

