import asyncio
import pytest
from yunhu_bridge.core.errors import ResolverFailure, SizeLimitExceeded
from yunhu_bridge.domain.models import RawMessage, SendResult, UserInfo
from yunhu_bridge.resolvers import ImageUpload, Resolvers


class FakeTransport:
    def __init__(self, fail: Exception | None = None, reject: bool = False):
        self.payloads = []
        self.fail = fail
        self.reject = reject

    async def send_message(self, payload):
        self.payloads.append(payload)
        if self.fail:
            raise self.fail
        if self.reject:
            return SendResult(code=1002, msg="rejected")
        return SendResult(code=1, msg="success", message_id=f"m{len(self.payloads)}")

    @property
    def wire(self):
        return [p.to_wire() for p in self.payloads]


class FakeMedia:
    """Refs starting with ``fail`` fail, ``big`` exceed the size limit."""
    def __init__(self):
        self.calls = []

    def _check(self, kind, ref):
        self.calls.append((kind, ref))
        if ref.startswith("fail"):
            raise ResolverFailure(f"cannot load {ref}", resolver="media")
        if ref.startswith("big"):
            raise SizeLimitExceeded(kind, 11 * 1024 * 1024, 10 * 1024 * 1024)

    async def upload_image(self, ref):
        self._check("image", ref)
        return ImageUpload(key=f"img-{ref}", url=f"https://img.test/{ref}.png")

    async def upload_video(self, ref):
        self._check("video", ref)
        return f"vid-{ref}"

    async def upload_file(self, ref):
        self._check("file", ref)
        return f"file-{ref}"

    async def upload_audio(self, ref):
        raise ResolverFailure("audio upload requires transcoding", resolver="media")


class FakeUsers:
    def __init__(self, names=None, slow=()):
        self.names = dict(names or {})
        self.slow = set(slow)
        self.calls = []

    async def get_user(self, user_id):
        self.calls.append(user_id)
        if user_id in self.slow:
            await asyncio.sleep(5)
        if user_id not in self.names:
            raise ResolverFailure(f"no user {user_id}", resolver="user")
        return UserInfo(id=user_id, name=self.names[user_id], avatar=f"https://avatar.test/{user_id}")


class FakeMessages:
    def __init__(self, messages=None, fail=False):
        self.messages = dict(messages or {})
        self.fail = fail
        self.calls = []

    async def get_message(self, channel_id, message_id):
        self.calls.append((channel_id, message_id))
        if self.fail:
            raise RuntimeError("history unavailable")
        raw = self.messages.get(message_id)
        return RawMessage.model_validate(raw) if raw else None


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def users():
    return FakeUsers({"u1": "Alice", "u2": "Bob", "u3": "Alice"})


@pytest.fixture
def messages():
    return FakeMessages()


@pytest.fixture
def resolvers(media, users, messages, transport):
    return Resolvers(media=media, users=users, messages=messages, transport=transport, timeout=0.5)
