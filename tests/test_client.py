import json
import httpx
import pytest
from yunhu_bridge.client.api import YunhuClient
from yunhu_bridge.config import Settings
from yunhu_bridge.core.errors import ResolverFailure, TransportFailure
from yunhu_bridge.domain.models import ContentType, OutboundContent, RecvType, WirePayload

SENT = {"code": 1, "msg": "success", "data": {"messageInfo": {"msgId": "abc", "recvId": "u9", "recvType": "user"}}}

def _client(handler, **settings):
    s = Settings(token="tok", bot_id="bot1", **settings)
    transport = httpx.MockTransport(handler)
    client = YunhuClient(
        s,
        http=httpx.AsyncClient(base_url=s.endpoint, transport=transport),
        web=httpx.AsyncClient(base_url=s.web_endpoint, transport=transport),
    )
    client.retry_min_wait = 0
    client.retry_max_wait = 0
    return client

def _read_timeout(request):
    raise httpx.ReadTimeout("slow", request=request)

def _payload():
    return WirePayload(recv_id="u9", recv_type=RecvType.user, content_type=ContentType.text, content=OutboundContent(text="hi"))

@pytest.mark.asyncio
async def test_send_message():
    seen = []
    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=SENT)
    res = await _client(handler).send_message(_payload())
    assert res.ok and res.message_id == "abc"
    [req] = seen
    assert req.method == "POST"
    assert req.url.path == "/open-apis/v1/bot/send"
    assert req.url.params["token"] == "tok"
    assert json.loads(req.content) == {"recvId": "u9", "recvType": "user", "contentType": "text", "content": {"text": "hi"}}

@pytest.mark.asyncio
async def test_send_rejected_by_api():
    res = await _client(lambda r: httpx.Response(200, json={"code": 1002, "msg": "bad token"})).send_message(_payload())
    assert not res.ok and res.code == 1002 and res.msg == "bad token"

@pytest.mark.asyncio
async def test_send_retries_only_undelivered_requests():
    calls = []
    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("refused", request=request)
        if len(calls) == 2:
            return httpx.Response(429)
        return httpx.Response(200, json=SENT)
    res = await _client(handler).send_message(_payload())
    assert res.message_id == "abc" and len(calls) == 3

@pytest.mark.asyncio
@pytest.mark.parametrize("fail", [
    lambda r: httpx.Response(503),
    _read_timeout,
])
async def test_send_is_not_retried_once_it_may_have_landed(fail):
    calls = []
    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return fail(request)
        return httpx.Response(200, json=SENT)
    with pytest.raises(TransportFailure):
        await _client(handler).send_message(_payload())
    assert len(calls) == 1

@pytest.mark.asyncio
async def test_lookups_retry_server_errors():
    calls = []
    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"code": 1, "data": {"list": []}})
    assert await _client(handler).list_messages("group:g1", "p1") == []
    assert len(calls) == 2

@pytest.mark.asyncio
async def test_send_persistent_failure_raises_transport_failure():
    calls = []
    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)
    with pytest.raises(TransportFailure):
        await _client(handler, send_retry=2).send_message(_payload())
    assert len(calls) == 2

@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = []
    def handler(request):
        calls.append(request)
        return httpx.Response(403, json={"code": -1})
    with pytest.raises(TransportFailure):
        await _client(handler).send_message(_payload())
    assert len(calls) == 1

@pytest.mark.asyncio
async def test_get_user():
    def handler(request):
        assert request.url.host == "chat-web-go.jwzhd.com"
        assert request.url.path == "/v1/user/homepage" and request.url.params["userId"] == "u1"
        return httpx.Response(200, json={"code": 1, "data": {"user": {"userId": "u1", "nickname": "Alice", "avatarUrl": "https://a.test/1"}}})
    user = await _client(handler).get_user("u1")
    assert (user.id, user.name, user.avatar) == ("u1", "Alice", "https://a.test/1")

@pytest.mark.asyncio
async def test_lookup_with_bad_code_raises_resolver_failure():
    client = _client(lambda r: httpx.Response(200, json={"code": 1002, "msg": "no such user"}))
    with pytest.raises(ResolverFailure):
        await client.get_user("u404")
    with pytest.raises(ResolverFailure):
        await client.get_bot_info("bot1")

@pytest.mark.asyncio
async def test_bot_info_and_group():
    def handler(request):
        body = json.loads(request.content)
        if request.url.path.endswith("/bot/bot-info"):
            assert body == {"botId": "bot1"}
            return httpx.Response(200, json={"code": 1, "data": {"bot": {"botId": "bot1", "nickname": "Helper", "avatarUrl": "x"}}})
        assert body == {"groupId": "g1"}
        return httpx.Response(200, json={"code": 1, "data": {"group": {"groupId": "g1", "name": "Team"}}})
    client = _client(handler)
    bot = await client.get_bot_info("bot1")
    assert bot.name == "Helper"
    assert (await client.get_group("g1"))["name"] == "Team"

@pytest.mark.asyncio
async def test_get_message_picks_matching_entry():
    def handler(request):
        p = request.url.params
        assert request.url.path == "/open-apis/v1/bot/messages"
        assert (p["chat-id"], p["chat-type"]) == ("g1", "group")
        assert p["message-id"] in ("p1", "zz")
        return httpx.Response(200, json={"code": 1, "data": {"list": [
            {"msgId": "p0", "senderId": "u1", "content": {"text": "older"}},
            {"msgId": "p1", "senderId": "u2", "contentType": "text", "content": {"text": "target"}},
        ]}})
    client = _client(handler)
    msg = await client.get_message("group:g1", "p1")
    assert msg.sender_id == "u2" and msg.content.text == "target" and msg.chat_id == "g1"
    assert await client.get_message("group:g1", "zz") is None

@pytest.mark.asyncio
async def test_recall_and_boards():
    seen = []
    def handler(request):
        seen.append((request.url.path.rsplit("/v1", 1)[1], json.loads(request.content)))
        return httpx.Response(200, json={"code": 1, "msg": "success"})
    client = _client(handler)
    await client.recall_message("private:u9", "m1")
    await client.set_board("group:g1", "notice", content_type=ContentType.markdown, expire_time=60)
    await client.set_all_board("all")
    await client.dismiss_board("group:g1")
    await client.dismiss_all_board()
    assert seen == [
        ("/bot/recall", {"msgId": "m1", "chatId": "u9", "chatType": "user"}),
        ("/bot/board", {"contentType": "markdown", "content": "notice", "expireTime": 60, "chatId": "g1", "chatType": "group"}),
        ("/bot/board-all", {"contentType": "text", "content": "all"}),
        ("/bot/board-dismiss", {"chatId": "g1", "chatType": "group"}),
        ("/bot/board-all-dismiss", {}),
    ]
