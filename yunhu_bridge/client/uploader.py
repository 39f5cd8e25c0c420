from __future__ import annotations

import base64
import hashlib
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from yunhu_bridge.config import Settings
from yunhu_bridge.core.errors import ResolverFailure, SizeLimitExceeded
from yunhu_bridge.observability.logging import get_logger
from yunhu_bridge.resolvers import ImageUpload

log = get_logger("uploader")

MiB = 1024 * 1024
SIZE_LIMITS = {
    "image": 10 * MiB,
    "video": 20 * MiB,
    "file": 100 * MiB,
}
IMAGE_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
    "image/svg+xml",
    "image/x-icon",
}


@dataclass
class Resource:
    data: bytes
    filename: str
    mime: str


class MediaUploader:
    """Loads a media reference and uploads it to ``/{kind}/upload``.

    A reference is an http(s) url, a ``data:`` uri, a ``file://`` url or a
    local path.
    """

    def __init__(self, settings: Settings, *, http: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_client = http is None
        self.http = http or httpx.AsyncClient(timeout=settings.upload_timeout_s, follow_redirects=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def upload_image(self, ref: str) -> ImageUpload:
        res = await self.load(ref)
        if res.mime not in IMAGE_TYPES:
            raise ResolverFailure(f"unsupported image type {res.mime}", resolver="media")
        self._check_size("image", res)
        key = await self._post("image", res)
        ext = res.mime.split("/", 1)[1] or "png"
        url = f"{self.settings.resource_endpoint}{hashlib.md5(res.data).hexdigest()}.{ext}"
        return ImageUpload(key=key, url=url)

    async def upload_video(self, ref: str) -> str:
        res = await self.load(ref)
        self._check_size("video", res)
        return await self._post("video", res)

    async def upload_file(self, ref: str) -> str:
        res = await self.load(ref)
        self._check_size("file", res)
        return await self._post("file", res)

    async def upload_audio(self, ref: str) -> str:
        # the platform only accepts audio as video, which needs transcoding
        raise ResolverFailure("audio upload requires transcoding", resolver="media")

    # ------------------------------------------------------------------

    async def load(self, ref: str) -> Resource:
        if not ref:
            raise ResolverFailure("empty media reference", resolver="media")
        if ref.startswith("data:"):
            return _from_data_uri(ref)
        parsed = urlparse(ref)
        if parsed.scheme in ("http", "https"):
            try:
                resp = await self.http.get(ref)
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise ResolverFailure(f"fetch {ref} failed: {e}", resolver="media") from e
            name = Path(unquote(parsed.path)).name or "file"
            mime = resp.headers.get("content-type", "").split(";", 1)[0].strip() or _guess(name)
            return Resource(resp.content, name, mime)
        path = Path(unquote(parsed.path) if parsed.scheme == "file" else ref)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ResolverFailure(f"read {path} failed: {e}", resolver="media") from e
        return Resource(data, path.name, _guess(path.name))

    def _check_size(self, kind: str, res: Resource) -> None:
        limit = SIZE_LIMITS[kind]
        log.debug("media_loaded", kind=kind, mime=res.mime, size=len(res.data))
        if len(res.data) > limit:
            raise SizeLimitExceeded(kind, len(res.data), limit)

    async def _post(self, kind: str, res: Resource) -> str:
        url = f"{self.settings.endpoint}/{kind}/upload"
        try:
            resp = await self.http.post(
                url,
                params={"token": self.settings.token},
                files={kind: (res.filename, res.data, res.mime)},
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ResolverFailure(f"{kind} upload failed: {e}", resolver="media") from e
        if not isinstance(body, dict) or body.get("code") != 1:
            msg = body.get("msg") if isinstance(body, dict) else body
            raise ResolverFailure(f"{kind} upload rejected: {msg}", resolver="media")
        key = (body.get("data") or {}).get(f"{kind}Key")
        if not key:
            raise ResolverFailure(f"{kind} upload returned no key", resolver="media")
        log.info("media_uploaded", kind=kind, key=key, size=len(res.data))
        return key


def _from_data_uri(ref: str) -> Resource:
    header, sep, payload = ref[5:].partition(",")
    if not sep:
        raise ResolverFailure("malformed data uri", resolver="media")
    mime = header.split(";", 1)[0] or "application/octet-stream"
    try:
        data = base64.b64decode(payload) if header.endswith(";base64") else unquote(payload).encode()
    except ValueError as e:
        raise ResolverFailure(f"malformed data uri: {e}", resolver="media") from e
    ext = mimetypes.guess_extension(mime) or ""
    return Resource(data, f"file{ext}", mime)


def _guess(name: str) -> str:
    return mimetypes.guess_type(name)[0] or "application/octet-stream"
