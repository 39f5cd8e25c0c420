import pytest
from yunhu_bridge.core.errors import MalformedInput
from yunhu_bridge.decoding.decoder import DecoderOptions, MessageDecoder, normalize_command
from yunhu_bridge.domain import elements as el
from conftest import FakeMessages

def _msg(text=None, **kw):
    content = kw.pop("content", {})
    if text is not None:
        content["text"] = text
    return {"msgId": "m1", "senderId": "u1", "chatType": "bot", "content": content, **kw}

@pytest.mark.asyncio
async def test_plain_text(resolvers):
    d = await MessageDecoder(resolvers).decode(_msg("hello"))
    assert d.id == "m1"
    assert d.elements == [el.Text("hello")]
    assert d.content == "hello"
    assert d.quote is None

@pytest.mark.parametrize("text,expected", [
    ("/ping", "ping"),
    ("/ping 123", "ping 123"),
    ("123", "ping 123"),
    ("", "ping"),
])
def test_normalize_command(text, expected):
    assert normalize_command(text, "ping") == expected

@pytest.mark.asyncio
async def test_command_normalization(resolvers):
    dec = MessageDecoder(resolvers)
    assert (await dec.decode(_msg("/ping", commandName="ping"))).content == "ping"
    assert (await dec.decode(_msg("/ping 123", commandName="ping"))).content == "ping 123"
    assert (await dec.decode(_msg("123", commandName="ping", commandId=7))).content == "ping 123"
    assert (await dec.decode(_msg(None, commandName="ping"))).content == "ping"

@pytest.mark.asyncio
async def test_mentions_resolved_and_markers_stripped(resolvers):
    d = await MessageDecoder(resolvers).decode(_msg("hi @Alice\u200b and @Bob", content={"at": ["u1", "u2"]}))
    assert d.elements == [
        el.Text("hi "), el.At(id="u1", name="Alice"), el.Text(" and "), el.At(id="u2", name="Bob"),
    ]
    assert d.content == "hi @Alice and @Bob"

@pytest.mark.asyncio
async def test_mention_lookups_run_concurrently(resolvers, users):
    await MessageDecoder(resolvers).decode(_msg("@Alice @Bob", content={"at": ["u1", "u2", "u1"]}))
    assert sorted(users.calls) == ["u1", "u2"]

@pytest.mark.asyncio
async def test_ambiguous_mention_stays_literal(resolvers):
    d = await MessageDecoder(resolvers).decode(_msg("ping @Alice\u200b now", content={"at": ["u1", "u3"]}))
    assert d.elements == [el.Text("ping @Alice now")]

@pytest.mark.asyncio
async def test_failed_mention_keeps_text(resolvers):
    d = await MessageDecoder(resolvers).decode(_msg("hey @Ghost", content={"at": ["u404"]}))
    assert d.elements == [el.Text("hey @Ghost")]
    assert "@Ghost" in d.content

@pytest.mark.asyncio
async def test_mention_must_end_at_boundary(resolvers):
    d = await MessageDecoder(resolvers).decode(_msg("@Alicex @Alice", content={"at": ["u1"]}))
    assert d.elements == [el.Text("@Alicex "), el.At(id="u1", name="Alice")]

@pytest.mark.asyncio
async def test_at_all(resolvers, users):
    d = await MessageDecoder(resolvers).decode(_msg("@全体成员 go", content={"at": ["all"]}))
    assert d.elements[0].type == "all"
    assert d.elements[1:] == [el.Text(" go")]
    assert users.calls == []

@pytest.mark.asyncio
async def test_media_references(resolvers):
    dec = MessageDecoder(resolvers, DecoderOptions(resource_endpoint="https://res.test/"))
    d = await dec.decode(_msg(None, contentType="image", content={"imageName": "abc.png"}))
    assert d.elements == [el.Media(el.MediaKind.image, "https://res.test/abc.png")]
    d = await dec.decode(_msg(None, content={"fileKey": "fk", "fileName": "a.pdf", "videoKey": "vk"}))
    assert d.elements == [el.Media(el.MediaKind.video, "vk"), el.Media(el.MediaKind.file, "fk", "a.pdf")]

@pytest.mark.asyncio
async def test_image_proxy(resolvers):
    dec = MessageDecoder(resolvers, DecoderOptions(image_proxy="https://proxy.test/img"))
    d = await dec.decode(_msg("look", content={"imageUrl": "https://cdn.test/x.jpg"}))
    assert d.elements == [el.Text("look"), el.Media(el.MediaKind.image, "https://proxy.test/img?url=https://cdn.test/x.jpg")]

@pytest.mark.asyncio
async def test_quote_resolved_one_level(resolvers):
    resolvers.messages = FakeMessages({"p1": {"msgId": "p1", "senderId": "u2", "parentId": "p0", "content": {"text": "original"}}})
    d = await MessageDecoder(resolvers).decode(
        _msg("reply", parentId="p1"), chat={"chatId": "g1", "chatType": "group"},
    )
    assert d.quote.id == "p1"
    assert d.quote.elements == [el.Text("original")]
    assert d.quote.content == "original"
    assert d.quote.user_id == "u2"
    assert resolvers.messages.calls == [("group:g1", "p1")]

@pytest.mark.asyncio
async def test_quote_failure_yields_stub(resolvers):
    resolvers.messages = FakeMessages(fail=True)
    d = await MessageDecoder(resolvers).decode(_msg("reply", parentId="p1"))
    assert d.elements == [el.Text("reply")]
    assert d.quote.id == "p1"
    assert d.quote.elements is None and d.quote.content is None
    assert resolvers.messages.calls == [("private:u1", "p1")]

@pytest.mark.asyncio
async def test_quote_falls_back_to_inline_hint(resolvers):
    d = await MessageDecoder(resolvers).decode(_msg("reply", parentId="p1", content={"parent": "Bob:hello"}))
    assert d.quote.elements == [el.Text("hello")]

@pytest.mark.asyncio
async def test_form_json(resolvers):
    d = await MessageDecoder(resolvers).decode(_msg(None, content={"formJson": '{"f1": {"value": "x"}}'}))
    assert d.form == {"f1": {"value": "x"}}
    d = await MessageDecoder(resolvers).decode(_msg("t", content={"formJson": "not json"}))
    assert d.form is None

@pytest.mark.asyncio
async def test_invalid_optional_fields_are_dropped(resolvers):
    d = await MessageDecoder(resolvers).decode(_msg("ok", sendTime="yesterday", content={"at": {"bad": 1}}))
    assert d.elements == [el.Text("ok")]

@pytest.mark.asyncio
async def test_missing_message_is_fatal(resolvers):
    with pytest.raises(MalformedInput):
        await MessageDecoder(resolvers).decode(None)
