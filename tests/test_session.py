import pytest
from yunhu_bridge.core.errors import MalformedInput
from yunhu_bridge.decoding.decoder import MessageDecoder
from yunhu_bridge.decoding.session import SessionAdapter, adapt_session

def _event(event_type, body, event_id="e1"):
    return {"version": "1.0", "header": {"eventId": event_id, "eventTime": 1700000000000, "eventType": event_type}, "event": body}

def _message_body(chat_type="group", level="owner", text="hi"):
    return {
        "sender": {"senderId": "u1", "senderType": "user", "senderUserLevel": level, "senderNickname": "Alice"},
        "chat": {"chatId": "g1" if chat_type == "group" else "bot1", "chatType": chat_type},
        "message": {"msgId": "m1", "parentId": "", "sendTime": 1700000000001, "chatId": "g1", "chatType": chat_type,
                    "contentType": "text", "content": {"text": text}},
    }

@pytest.fixture
def adapter(resolvers):
    return SessionAdapter(MessageDecoder(resolvers), self_id="bot1", users=resolvers.users)

@pytest.mark.asyncio
async def test_group_message(adapter):
    s = await adapter.adapt(_event("message.receive.normal", _message_body()))
    assert s.type == "message"
    assert s.channel_id == "group:g1" and s.guild_id == "g1" and not s.is_direct
    assert s.user_id == "u1" and s.user.name == "Alice"
    assert s.role.permissions == 0x1FFFFFFFFF
    assert s.content == "hi" and s.message_id == "m1"
    assert s.timestamp == 1700000000001
    assert s.event_id == "e1" and s.self_id == "bot1" and s.platform == "yunhu"

@pytest.mark.asyncio
@pytest.mark.parametrize("level,perms", [("administrator", 0x8), ("member", 2048), ("unknown", 0)])
async def test_member_roles(adapter, level, perms):
    s = await adapter.adapt(_event("message.receive.normal", _message_body(level=level)))
    assert s.role.permissions == perms

@pytest.mark.asyncio
async def test_direct_instruction_message(adapter):
    body = _message_body(chat_type="bot", text="/ping")
    body["message"]["commandName"] = "ping"
    s = await adapter.adapt(_event("message.receive.instruction", body))
    assert s.is_direct and s.channel_id == "private:u1" and s.guild_id is None and s.role is None
    assert s.content == "ping"

@pytest.mark.asyncio
async def test_message_event_without_message_is_malformed(adapter):
    body = _message_body()
    del body["message"]
    with pytest.raises(MalformedInput):
        await adapter.adapt(_event("message.receive.normal", body))

@pytest.mark.asyncio
async def test_sender_profile_enrichment(resolvers):
    adapter = SessionAdapter(MessageDecoder(resolvers), users=resolvers.users, fetch_sender_profile=True)
    s = await adapter.adapt(_event("message.receive.normal", _message_body()))
    assert s.user.avatar == "https://avatar.test/u1"
    body = _message_body()
    body["sender"]["senderId"] = "u404"
    s = await adapter.adapt(_event("message.receive.normal", body))
    assert s.user.avatar is None and s.user.name == "Alice"

@pytest.mark.asyncio
async def test_follow_events(adapter):
    s = await adapter.adapt(_event("bot.followed", {"userId": "u5", "nickname": "Eve", "chatId": "bot1", "chatType": "bot"}))
    assert s.type == "friend-added" and s.user_id == "u5" and s.channel_id == "private:u5"
    s = await adapter.adapt(_event("bot.unfollowed", {"sender": {"senderId": "u6"}}))
    assert s.type == "friend-deleted" and s.user_id == "u6"

@pytest.mark.asyncio
async def test_member_events(adapter):
    chat = {"chatId": "g1", "chatType": "group"}
    s = await adapter.adapt(_event("group.member.joined", {
        "sender": {"senderId": "op"}, "chat": chat, "joinedMember": {"memberId": "u7", "memberNickname": "Neo"}}))
    assert (s.type, s.user_id, s.user.name, s.operator_id, s.guild_id) == ("guild-member-added", "u7", "Neo", "op", "g1")

    s = await adapter.adapt(_event("group.member.leaved", {
        "sender": {"senderId": "u7"}, "chat": chat, "leavedMember": {"memberId": "u7"}, "leaveType": "self"}))
    assert (s.type, s.subtype) == ("guild-member-removed", "leave")

    s = await adapter.adapt(_event("group.member.invited", {
        "chat": chat, "invitedMember": {"memberId": "u8"}, "inviter": {"inviterId": "u1"}}))
    assert (s.type, s.subtype, s.user_id, s.operator_id) == ("guild-member-added", "invite", "u8", "u1")

    s = await adapter.adapt(_event("group.member.kicked", {
        "chat": chat, "kickedMember": {"memberId": "u8"}, "operator": {"operatorId": "u1"}}))
    assert (s.type, s.subtype, s.user_id, s.operator_id) == ("guild-member-removed", "kick", "u8", "u1")

    s = await adapter.adapt(_event("group.disbanded", {"chat": chat, "operator": {"operatorId": "u1"}}))
    assert (s.type, s.guild_id, s.operator_id) == ("guild-deleted", "g1", "u1")

@pytest.mark.asyncio
async def test_button_report(adapter):
    s = await adapter.adapt(_event("button.report.inline", {
        "time": 1700000000123, "msgId": "m9", "recvId": "g1", "recvType": "group", "userId": "u1", "value": "vote:1"}))
    assert s.type == "interaction/button"
    assert s.content == "vote:1" and s.message_id == "m9" and s.channel_id == "group:g1" and s.user_id == "u1"

@pytest.mark.asyncio
async def test_unknown_event_is_ignored(resolvers):
    assert await adapt_session(_event("bot.setting", {}), MessageDecoder(resolvers)) is None

@pytest.mark.asyncio
async def test_invalid_sender_field_is_dropped(adapter):
    body = _message_body()
    body["sender"]["senderNickname"] = ["not", "a", "name"]
    s = await adapter.adapt(_event("message.receive.normal", body))
    assert s.user_id == "u1" and not s.user.name
    assert s.content == "hi"
