import asyncio
import logging
import mimetypes
import secrets
import socket
import time
from typing import Any, Awaitable, Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ConnectTimeoutError

from models.errors import TransientNetworkError, UploadError
from models.job import UploadResult
from utils.env import settings

logger = logging.getLogger("upload_manager")

# mimetypes knows these under odd or platform-dependent names.
_EXTENSION_OVERRIDES = {
    "image/jpeg": "jpg",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "video/mp4": "mp4",
    "image/webp": "webp",
}


def extension_for(mime_type: Optional[str]) -> str:
    base = (mime_type or "").split(";")[0].strip().lower()
    if not base:
        return "bin"
    if base in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[base]
    ext = mimetypes.guess_extension(base)
    return ext.lstrip(".") if ext else "bin"


def sortable_id(now: Optional[float] = None) -> str:
    """Millisecond timestamp plus random suffix, lexicographically sortable by
    creation time."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"{millis:013x}{secrets.token_hex(8)}"


def object_key(prefix: str, mime_type: Optional[str]) -> str:
    return f"{prefix}_{sortable_id()}.{extension_for(mime_type)}"


def build_public_url(
    bucket: str,
    key: str,
    region: str,
    endpoint: Optional[str] = None,
    force_path_style: bool = False,
    public_domain: Optional[str] = None,
) -> str:
    if public_domain:
        return f"{public_domain.rstrip('/')}/{key}"
    if endpoint:
        clean = endpoint.rstrip("/")
        if force_path_style:
            return f"{clean}/{bucket}/{key}"
        scheme, sep, host = clean.partition("://")
        if not sep:
            scheme, host = "https", clean
        return f"{scheme}://{bucket}.{host}/{key}"
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


def _causes(exc: BaseException):
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        # botocore keeps the underlying socket error in kwargs["error"].
        kwargs = getattr(current, "kwargs", None)
        if isinstance(kwargs, dict) and isinstance(kwargs.get("error"), BaseException):
            pending.append(kwargs["error"])
        pending.append(current.__cause__ or current.__context__)


def is_transient_error(exc: BaseException) -> bool:
    """Only name-resolution failures and connection timeouts are worth retrying."""
    for err in _causes(exc):
        if isinstance(err, (TransientNetworkError, socket.gaierror, ConnectTimeoutError, TimeoutError)):
            return True
    return False


def _s3_client():
    config = Config(s3={"addressing_style": "path" if settings.S3_FORCE_PATH_STYLE else "virtual"})
    return boto3.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT or None,
        region_name=settings.S3_REGION,
        aws_access_key_id=settings.S3_ACCESS_KEY_ID,
        aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
        config=config,
    )


class UploadManager:
    def __init__(
        self,
        client: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        backoff_base_seconds: Optional[float] = None,
    ):
        self._client = client
        self.sleep = sleep
        self.backoff_base_seconds = (
            settings.UPLOAD_BACKOFF_BASE_SECONDS if backoff_base_seconds is None else backoff_base_seconds
        )
        self.region = settings.S3_REGION
        self.endpoint = settings.S3_ENDPOINT
        self.force_path_style = settings.S3_FORCE_PATH_STYLE

    @property
    def client(self):
        if self._client is None:
            logger.info(f"Initializing S3 client (region={self.region}, endpoint={self.endpoint or 'aws'})")
            self._client = _s3_client()
        return self._client

    def _put_sync(self, bucket: str, key: str, data: bytes, mime_type: str) -> None:
        self.client.put_object(
            Bucket=bucket,
            Key=key,
            Body=data,
            ContentType=mime_type,
            ACL="public-read",
        )

    async def upload(
        self,
        data: bytes,
        mime_type: str,
        bucket: str,
        key_prefix: str = "img",
        max_retries: Optional[int] = None,
        public_domain: Optional[str] = None,
    ) -> UploadResult:
        if not bucket:
            raise UploadError("S3 bucket name is required for upload")
        max_retries = settings.UPLOAD_MAX_RETRIES if max_retries is None else max_retries
        max_retries = max(1, max_retries)
        key = object_key(key_prefix, mime_type)

        last_error: Optional[BaseException] = None
        for attempt in range(1, max_retries + 1):
            try:
                await asyncio.to_thread(self._put_sync, bucket, key, data, mime_type)
            except Exception as exc:
                last_error = exc
                if not is_transient_error(exc):
                    break
            else:
                url = build_public_url(
                    bucket,
                    key,
                    region=self.region,
                    endpoint=self.endpoint,
                    force_path_style=self.force_path_style,
                    public_domain=public_domain,
                )
                logger.info(f"Uploaded {len(data)} bytes to s3://{bucket}/{key}")
                return UploadResult(url=url, file_name=key, bucket=bucket, mime_type=mime_type)

            if attempt == max_retries:
                break
            delay = (2 ** attempt) * self.backoff_base_seconds
            logger.warning(f"Upload attempt {attempt}/{max_retries} failed ({last_error}), retrying in {delay:.1f}s")
            await self.sleep(delay)

        raise UploadError(
            f"Failed to upload to S3 after {attempt} attempt(s): {last_error}",
            last_error=last_error,
        )
