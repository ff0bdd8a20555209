import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import unquote

from models.errors import ProviderError, SafetyFilterError
from models.job import ArtifactRole, MediaArtifact

logger = logging.getLogger("response_validator")


def _get(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from an SDK model or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _error_detail(error: Any) -> str:
    message = _get(error, "message")
    if message:
        return str(message)
    return str(error)


def _result_payload(operation: Any) -> Any:
    # Depending on the API version the videos come back under either field;
    # take whichever shows up first.
    response = _get(operation, "response")
    if response is not None:
        return response
    return _get(operation, "result")


def extract_video_artifact(operation: Any) -> MediaArtifact:
    """Validate a terminal video operation and return its primary output.

    Only the first generated sample is used; any extra samples are dropped.
    """
    if operation is None:
        raise ProviderError("no response from provider")

    # A failed operation usually carries no response; report its error detail
    # rather than "no response from provider".
    error = _get(operation, "error")
    if error:
        detail = _error_detail(error)
        logger.error(f"Provider reported an error: {detail}")
        raise ProviderError(f"Video generation failed: {detail}", detail=error)

    response = _result_payload(operation)
    if response is None:
        raise ProviderError("no response from provider")

    filtered_count = _get(response, "rai_media_filtered_count") or 0
    if filtered_count > 0:
        reasons = list(_get(response, "rai_media_filtered_reasons") or [])
        logger.warning(f"Output filtered by provider safety checks ({filtered_count}): {reasons}")
        raise SafetyFilterError(reasons)

    samples = _get(response, "generated_videos")
    if not samples:
        raise ProviderError("no usable output: provider returned no generated videos")

    video = _get(samples[0], "video")
    uri = _get(video, "uri")
    if not uri:
        raise ProviderError("no usable output: generated video has no URI")

    if len(samples) > 1:
        logger.info(f"Provider returned {len(samples)} videos, using the first")

    return MediaArtifact(role=ArtifactRole.OUTPUT_RESULT, uri=unquote(uri))


@dataclass
class ImageResponse:
    text: str = ""
    images: list[MediaArtifact] = field(default_factory=list)


def _inline_bytes(data: Any) -> bytes:
    if isinstance(data, str):
        return base64.b64decode(data)
    return bytes(data or b"")


def extract_image_response(response: Any) -> ImageResponse:
    if response is None:
        raise ProviderError("no response from provider")

    feedback = _get(response, "prompt_feedback")
    block_reason = _get(feedback, "block_reason")
    if block_reason:
        reasons = [str(_get(block_reason, "value", block_reason))]
        message = _get(feedback, "block_reason_message")
        if message:
            reasons.append(str(message))
        raise SafetyFilterError(reasons)

    result = ImageResponse()
    candidates = _get(response, "candidates") or []
    if not candidates:
        return result

    content = _get(candidates[0], "content")
    for part in _get(content, "parts") or []:
        inline = _get(part, "inline_data")
        if inline is not None:
            result.images.append(MediaArtifact(
                role=ArtifactRole.OUTPUT_RESULT,
                data=_inline_bytes(_get(inline, "data")),
                mime_type=_get(inline, "mime_type") or "image/png",
            ))
            continue
        text: Optional[str] = _get(part, "text")
        if text:
            result.text += text
    return result
