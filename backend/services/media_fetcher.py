import asyncio
import base64
import binascii
import logging
from typing import Any, Optional
from urllib.parse import urlparse

import aiohttp

from models.errors import ProviderError, ValidationError
from models.job import ArtifactRole, GenerationJob, JobStatus, MediaArtifact
from utils.env import settings

logger = logging.getLogger("media_fetcher")

DEFAULT_MIME_TYPE = "application/octet-stream"

REQUEST_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
}


def infer_mime_type(data: bytes, default: str = DEFAULT_MIME_TYPE) -> str:
    """Best-effort MIME sniffing from magic numbers."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"RIFF") and data[8:12] == b"WAVE":
        return "audio/wav"
    if data[4:8] == b"ftyp":
        return "video/mp4"
    return default


def normalize_body(body: Any) -> bytes:
    """Collapse whatever the transport handed back into a single bytes buffer."""
    if isinstance(body, bytes):
        return body
    if isinstance(body, (bytearray, memoryview)):
        return bytes(body)
    if isinstance(body, str):
        # Binary payloads delivered as text map one char to one byte.
        return body.encode("latin-1")
    if isinstance(body, (list, tuple)):
        return bytes(body)
    raise ProviderError(f"Unsupported response body type: {type(body).__name__}")


def _content_type(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    mime_type = header.split(";")[0].strip().lower()
    if not mime_type or mime_type in ("application/octet-stream", "binary/octet-stream"):
        return None
    return mime_type


def _decode_data_url(uri: str) -> tuple[bytes, Optional[str]]:
    header, _, payload = uri.partition(",")
    mime_type = header[5:].split(";")[0] or None
    try:
        if ";base64" in header:
            return base64.b64decode(payload), mime_type
        return payload.encode("utf-8"), mime_type
    except (binascii.Error, ValueError):
        raise ValidationError("image", "Data URL is not valid base64")


class MediaFetcher:
    def __init__(self, api_key: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.timeout_seconds = timeout_seconds or settings.FETCH_TIMEOUT_SECONDS

    async def _get(self, url: str, params: Optional[dict] = None) -> tuple[Any, Optional[str]]:
        async with aiohttp.ClientSession(headers=REQUEST_HEADERS) as session:
            async with session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                allow_redirects=True,
            ) as response:
                if response.status != 200:
                    raise ProviderError(f"Failed to fetch {url}: HTTP {response.status}")
                return await response.read(), response.headers.get("Content-Type")

    async def fetch(self, uri: str, with_key: bool = False) -> tuple[bytes, str]:
        if not uri or not uri.strip():
            raise ValidationError("uri", "Media URL cannot be empty")
        uri = uri.strip()

        if uri.startswith("data:"):
            data, mime_type = _decode_data_url(uri)
            return data, mime_type or infer_mime_type(data)

        parsed = urlparse(uri)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("uri", f"Unsupported media URL: {uri[:100]}")

        params = {"key": self.api_key} if with_key and self.api_key else None
        try:
            body, content_type = await self._get(uri, params=params)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ProviderError(f"Failed to fetch {uri}: {exc}") from exc

        data = normalize_body(body)
        mime_type = _content_type(content_type) or infer_mime_type(data)
        logger.info(f"Fetched {len(data)} bytes ({mime_type}) from {parsed.netloc}")
        return data, mime_type

    async def resolve(self, artifact: MediaArtifact) -> MediaArtifact:
        """Resolve an input reference to bytes. Nothing is cached: every call
        fetches again, so separate submissions never share input bytes."""
        if artifact.role is ArtifactRole.OUTPUT_RESULT:
            raise ValueError("Output artifacts must be fetched with fetch_output()")
        if artifact.is_resolved:
            data = normalize_body(artifact.data)
            return MediaArtifact(
                role=artifact.role,
                uri=artifact.uri,
                data=data,
                mime_type=artifact.mime_type or infer_mime_type(data, default="image/png"),
            )
        try:
            data, mime_type = await self.fetch(artifact.uri or "")
        except ProviderError as exc:
            raise ProviderError(f"Failed to fetch image from URL: {artifact.uri}. Error: {exc}") from exc
        if mime_type == DEFAULT_MIME_TYPE:
            mime_type = "image/png"
        return MediaArtifact(
            role=artifact.role,
            uri=artifact.uri,
            data=data,
            mime_type=artifact.mime_type or mime_type,
        )

    async def fetch_output(self, job: GenerationJob, artifact: MediaArtifact) -> MediaArtifact:
        if job.status is not JobStatus.COMPLETED:
            raise RuntimeError(
                f"Job {job.job_id} is {job.status.value}; outputs can only be fetched once completed"
            )
        data, mime_type = await self.fetch(artifact.uri or "", with_key=True)
        if mime_type == DEFAULT_MIME_TYPE:
            mime_type = "video/mp4"
        return MediaArtifact(role=ArtifactRole.OUTPUT_RESULT, uri=artifact.uri, data=data, mime_type=mime_type)
