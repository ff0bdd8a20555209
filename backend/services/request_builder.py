"""Turns raw caller parameters into typed requests and provider payloads.

Everything in this module is side-effect free: image and video references stay
unresolved `MediaArtifact`s here and are only fetched right before submission.
"""
import base64
import re
from typing import Any
from urllib.parse import urlparse

from models.errors import ValidationError
from models.job import ArtifactRole, GenerationMode, MediaArtifact
from models.requests import (
    DEFAULT_IMAGE_MODEL,
    DEFAULT_LIVE_PHOTO_PROMPT,
    DEFAULT_SPEECH_MODEL,
    DEFAULT_VIDEO_MODEL,
    DEFAULT_VOICE_INSTRUCTION,
    ExtendVideoRequest,
    FramesToVideoRequest,
    GenerationRequest,
    ImageMessage,
    ImagePayload,
    ImageRequest,
    LivePhotoRequest,
    PollingOptions,
    ReferencesToVideoRequest,
    SpeechPayload,
    SpeechRequest,
    TextToVideoRequest,
    UploadTarget,
    VideoPayload,
    VideoRequest,
)
from models.voices import DEFAULT_VOICE, SpeakerVoice

PROVIDER_HOST = "generativelanguage.googleapis.com"

ALLOWED_DURATIONS: dict[str, frozenset[int]] = {
    "720p": frozenset({4, 6, 8}),
    "1080p": frozenset({8}),
}
VIDEO_ASPECT_RATIOS = frozenset({"16:9", "9:16"})
IMAGE_ASPECT_RATIOS = frozenset({
    "", "1:1", "16:9", "2:3", "21:9", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16",
})
IMAGE_SIZES = frozenset({"1K", "2K", "4K"})
LIVE_PHOTO_EFFECTS = frozenset({"freeze", "crossfade"})

# Only these model tiers accept the grounding search tool.
GROUNDING_MODELS = frozenset({"gemini-3-pro-image-preview"})

SILENT_VIDEO_SUFFIX = "silent film, no audio, no sound effects, no background music"

_BARE_FILE_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_FILE_ID_IN_URI = re.compile(r"files/([^/?#]+)")

_MODE_ALIASES = {
    "generateContent": GenerationMode.IMAGE,
    "generateImage": GenerationMode.IMAGE,
    "generateTTS": GenerationMode.SPEECH,
    "textToVideo": GenerationMode.TEXT_TO_VIDEO,
    "framesToVideo": GenerationMode.FRAMES_TO_VIDEO,
    "referencesToVideo": GenerationMode.REFERENCES_TO_VIDEO,
    "extendVideo": GenerationMode.EXTEND_VIDEO,
    "generateLivePhoto": GenerationMode.LIVE_PHOTO,
}


def _text(raw: dict, *keys: str) -> str:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _int(raw: dict, default: int, *keys: str) -> int:
    for key in keys:
        if raw.get(key) in (None, ""):
            continue
        value = raw[key]
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            raise ValidationError(key, f"{key} must be an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(key, f"{key} must be an integer, got {value!r}")
    return default


_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


def parse_flag(value: Any, field: str, default: bool = False) -> bool:
    """Read a boolean switch that may arrive as a JSON bool, 0/1 or a string."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValidationError(field, f"{field} must be a boolean, got {value!r}")


def _flag(raw: dict, default: bool, *keys: str) -> bool:
    for key in keys:
        if raw.get(key) not in (None, ""):
            return parse_flag(raw[key], key, default)
    return default


def _optional_number(raw: dict, cast, *keys: str):
    for key in keys:
        value = raw.get(key)
        if value is None or value == "":
            continue
        try:
            return cast(value)
        except (TypeError, ValueError):
            raise ValidationError(key, f"{key} must be a number, got {value!r}")
    return None


def parse_mode(value: Any) -> GenerationMode:
    if isinstance(value, GenerationMode):
        return value
    if isinstance(value, str):
        if value in _MODE_ALIASES:
            return _MODE_ALIASES[value]
        try:
            return GenerationMode(value)
        except ValueError:
            pass
    raise ValidationError("mode", f"Unknown generation mode: {value!r}")


def allowed_durations(resolution: str) -> frozenset[int]:
    if resolution not in ALLOWED_DURATIONS:
        raise ValidationError(
            "resolution",
            f"Unsupported resolution {resolution!r}; expected one of {sorted(ALLOWED_DURATIONS)}",
        )
    return ALLOWED_DURATIONS[resolution]


def validate_duration(resolution: str, duration_seconds: int) -> None:
    allowed = allowed_durations(resolution)
    if duration_seconds not in allowed:
        raise ValidationError(
            "duration_seconds",
            f"{duration_seconds}s is not supported at {resolution}; "
            f"allowed: {', '.join(str(d) for d in sorted(allowed))}",
        )


def normalize_video_uri(uri: str) -> str:
    """Accept a provider file URL, `files/<id>`, or a bare id (→ `files/<id>`)."""
    trimmed = (uri or "").strip()
    if not trimmed:
        raise ValidationError("input_video_uri")

    if _BARE_FILE_ID.match(trimmed):
        return f"files/{trimmed}"
    if trimmed.startswith("files/"):
        return trimmed

    parsed = urlparse(trimmed)
    if parsed.scheme in ("http", "https") and PROVIDER_HOST in (parsed.netloc or ""):
        return trimmed

    raise ValidationError(
        "input_video_uri",
        "Invalid video URI format. Expected a Gemini files API URI like "
        f"https://{PROVIDER_HOST}/v1beta/files/abc123, files/abc123 or abc123. "
        f"Received: {trimmed[:100]}",
    )


def extract_file_id(uri: str) -> str:
    match = _FILE_ID_IN_URI.search(uri or "")
    if match:
        return match.group(1)
    raise ValidationError("uri", f"Could not extract file ID from URI: {uri}")


def _upload_target(raw: dict, required: bool) -> UploadTarget:
    enabled = required or _flag(raw, False, "upload_to_s3", "uploadToS3")
    bucket = _text(raw, "s3_bucket_name", "s3BucketName")
    if enabled and not bucket:
        raise ValidationError("s3_bucket_name")
    public_domain = _text(raw, "s3_public_domain", "s3PublicDomain") or None
    return UploadTarget(enabled=enabled, bucket=bucket, public_domain=public_domain)


def _polling(raw: dict) -> PollingOptions:
    options = raw.get("additional_options") or raw.get("additionalOptions") or {}
    interval = options.get("polling_interval", options.get("pollingInterval", 10))
    max_wait_minutes = options.get("max_wait_time", options.get("maxWaitTime", 30))
    try:
        interval = float(interval)
        max_wait_minutes = float(max_wait_minutes)
    except (TypeError, ValueError):
        raise ValidationError("additional_options", "polling interval and max wait must be numbers")
    if interval <= 0:
        raise ValidationError("polling_interval", "polling interval must be positive")
    if max_wait_minutes <= 0:
        raise ValidationError("max_wait_time", "max wait time must be positive")
    return PollingOptions(poll_interval_seconds=interval, max_wait_seconds=max_wait_minutes * 60)


def _video_common(raw: dict) -> dict:
    resolution = _text(raw, "resolution") or "720p"
    duration = _int(raw, 8, "duration_seconds", "durationSeconds")
    validate_duration(resolution, duration)
    return {
        "model": _text(raw, "model", "video_model", "videoModel") or DEFAULT_VIDEO_MODEL,
        "negative_prompt": _text(raw, "negative_prompt", "negativePrompt"),
        "resolution": resolution,
        "duration_seconds": duration,
        "generate_audio": _flag(raw, True, "generate_audio", "generateAudio"),
        "upload": _upload_target(raw, required=True),
        "polling": _polling(raw),
    }


def _aspect_ratio(raw: dict) -> str:
    aspect_ratio = _text(raw, "aspect_ratio", "aspectRatio") or "16:9"
    if aspect_ratio not in VIDEO_ASPECT_RATIOS:
        raise ValidationError("aspect_ratio", f"Unsupported aspect ratio {aspect_ratio!r}")
    return aspect_ratio


def _image_messages(raw: dict) -> tuple[ImageMessage, ...]:
    history = raw.get("message_history", raw.get("messageHistory")) or []
    if isinstance(history, dict):
        history = history.get("messages", [])
    messages = []
    for entry in history:
        content_type = entry.get("content_type", entry.get("contentType", "text"))
        messages.append(ImageMessage(
            role=entry.get("role", "user"),
            content_type=content_type,
            text=entry.get("text", "") or "",
            image_url=(entry.get("image_url", entry.get("imageUrl", "")) or "").strip(),
            image_base64=(entry.get("image_base64", entry.get("imageBase64", "")) or "").strip(),
            mime_type=entry.get("mime_type", entry.get("mimeType", "")) or "",
        ))
    return tuple(messages)


def _parse_image(raw: dict) -> ImageRequest:
    options = raw.get("additional_options") or raw.get("additionalOptions") or {}
    messages = _image_messages(raw)
    current_message = _text(raw, "current_message", "currentMessage")
    if not current_message and not messages:
        raise ValidationError("current_message")

    modalities = raw.get("response_modalities", raw.get("responseModalities")) or ["TEXT", "IMAGE"]
    aspect_ratio = raw.get("image_aspect_ratio", raw.get("imageAspectRatio", "")) or ""
    if aspect_ratio not in IMAGE_ASPECT_RATIOS:
        raise ValidationError("image_aspect_ratio", f"Unsupported aspect ratio {aspect_ratio!r}")
    image_size = raw.get("image_size", raw.get("imageSize", "1K")) or "1K"
    if image_size not in IMAGE_SIZES:
        raise ValidationError("image_size", f"Unsupported image size {image_size!r}")

    return ImageRequest(
        model=_text(raw, "model") or DEFAULT_IMAGE_MODEL,
        messages=messages,
        current_message=current_message,
        response_modalities=tuple(m.upper() for m in modalities),
        aspect_ratio=aspect_ratio,
        image_size=image_size,
        use_grounding_search=_flag(raw, False, "use_grounding_search", "useGroundingSearch"),
        temperature=_optional_number(options, float, "temperature"),
        max_output_tokens=_optional_number(options, int, "max_output_tokens", "maxOutputTokens"),
        top_p=_optional_number(options, float, "top_p", "topP"),
        top_k=_optional_number(options, int, "top_k", "topK"),
        upload=_upload_target(raw, required=False),
    )


def _parse_speech(raw: dict) -> SpeechRequest:
    options = raw.get("additional_options") or raw.get("additionalOptions") or {}
    transcript = _text(raw, "transcript", "voice_transcript", "voiceTranscript")
    if not transcript:
        raise ValidationError("transcript")

    multi_speaker = (raw.get("voice_mode", raw.get("voiceMode", "single")) or "single") == "multi"
    speakers: tuple[SpeakerVoice, ...] = ()
    if multi_speaker:
        entries = raw.get("speaker_voices", raw.get("speakerVoices")) or []
        if isinstance(entries, dict):
            entries = entries.get("speakers", [])
        speakers = tuple(
            SpeakerVoice(
                label=(entry.get("speaker_label", entry.get("speakerLabel", "")) or "").strip(),
                voice=entry.get("voice_name", entry.get("voiceName", DEFAULT_VOICE)) or DEFAULT_VOICE,
            )
            for entry in entries
        )
        if not speakers:
            raise ValidationError("speaker_voices", "At least one speaker is required in multi-speaker mode")
        for speaker in speakers:
            if not speaker.label:
                raise ValidationError("speaker_label")

    temperature = _optional_number(options, float, "temperature")
    return SpeechRequest(
        model=_text(raw, "model", "tts_model", "ttsModel") or DEFAULT_SPEECH_MODEL,
        transcript=transcript,
        voice_instruction=_text(raw, "voice_instruction", "voiceInstruction") or DEFAULT_VOICE_INSTRUCTION,
        multi_speaker=multi_speaker,
        voice=_text(raw, "voice_name", "voiceName") or DEFAULT_VOICE,
        speakers=speakers,
        temperature=0.65 if temperature is None else temperature,
        upload=_upload_target(raw, required=False),
    )


def _parse_text_to_video(raw: dict) -> TextToVideoRequest:
    prompt = _text(raw, "prompt", "video_prompt", "videoPrompt")
    if not prompt:
        raise ValidationError("prompt")
    return TextToVideoRequest(prompt=prompt, aspect_ratio=_aspect_ratio(raw), **_video_common(raw))


def _parse_frames_to_video(raw: dict) -> FramesToVideoRequest:
    start_frame_url = _text(raw, "start_frame_url", "startFrameUrl")
    if not start_frame_url:
        raise ValidationError("start_frame_url")
    return FramesToVideoRequest(
        prompt=_text(raw, "prompt", "video_prompt", "videoPrompt"),
        start_frame_url=start_frame_url,
        end_frame_url=_text(raw, "end_frame_url", "endFrameUrl") or None,
        enable_looping=_flag(raw, False, "enable_looping", "enableLooping"),
        aspect_ratio=_aspect_ratio(raw),
        **_video_common(raw),
    )


def _parse_references_to_video(raw: dict) -> ReferencesToVideoRequest:
    references = raw.get("reference_images", raw.get("referenceImages")) or []
    if isinstance(references, dict):
        references = references.get("images", [])
    urls = []
    for reference in references:
        url = reference if isinstance(reference, str) else reference.get("image_url", reference.get("imageUrl", ""))
        if url and url.strip():
            urls.append(url.strip())
    if not urls:
        raise ValidationError("reference_images", "At least one reference image is required")
    return ReferencesToVideoRequest(
        prompt=_text(raw, "prompt", "video_prompt", "videoPrompt"),
        reference_image_urls=tuple(urls),
        style_image_url=_text(raw, "style_image_url", "styleImageUrl") or None,
        aspect_ratio=_aspect_ratio(raw),
        **_video_common(raw),
    )


def _parse_extend_video(raw: dict) -> ExtendVideoRequest:
    input_video_uri = normalize_video_uri(_text(raw, "input_video_uri", "inputVideoUri"))
    return ExtendVideoRequest(
        prompt=_text(raw, "prompt", "video_prompt", "videoPrompt"),
        input_video_uri=input_video_uri,
        **_video_common(raw),
    )


def _parse_live_photo(raw: dict) -> LivePhotoRequest:
    image_url = _text(raw, "image_url", "live_photo_image_url", "livePhotoImageUrl")
    if not image_url:
        raise ValidationError("image_url")
    effect = _text(raw, "effect") or "freeze"
    if effect not in LIVE_PHOTO_EFFECTS:
        raise ValidationError("effect", f"Unknown live photo effect {effect!r}")
    return LivePhotoRequest(
        model=_text(raw, "model", "live_photo_model", "livePhotoModel") or DEFAULT_VIDEO_MODEL,
        prompt=_text(raw, "prompt", "live_photo_prompt", "livePhotoPrompt"),
        image_url=image_url,
        aspect_ratio=_aspect_ratio(raw),
        effect=effect,
        upload=_upload_target(raw, required=True),
        polling=_polling(raw),
    )


_PARSERS = {
    GenerationMode.IMAGE: _parse_image,
    GenerationMode.SPEECH: _parse_speech,
    GenerationMode.TEXT_TO_VIDEO: _parse_text_to_video,
    GenerationMode.FRAMES_TO_VIDEO: _parse_frames_to_video,
    GenerationMode.REFERENCES_TO_VIDEO: _parse_references_to_video,
    GenerationMode.EXTEND_VIDEO: _parse_extend_video,
    GenerationMode.LIVE_PHOTO: _parse_live_photo,
}


def parse_request(raw: dict) -> GenerationRequest:
    if not isinstance(raw, dict):
        raise ValidationError("item", "Each item must be an object")
    mode = parse_mode(raw.get("mode") or raw.get("generation_mode") or raw.get("generationMode"))
    return _PARSERS[mode](raw)


def _image_artifact(url: str, role: ArtifactRole = ArtifactRole.INPUT_REFERENCE) -> MediaArtifact:
    return MediaArtifact(role=role, uri=url)


def _video_prompt(request: VideoRequest) -> str:
    prompt = request.prompt
    if isinstance(request, LivePhotoRequest) and not prompt:
        prompt = DEFAULT_LIVE_PHOTO_PROMPT
    if not request.generate_audio:
        prompt = f"{prompt}\n\n{SILENT_VIDEO_SUFFIX}" if prompt else SILENT_VIDEO_SUFFIX
    return prompt


def build_video_payload(request: VideoRequest) -> VideoPayload:
    validate_duration(request.resolution, request.duration_seconds)

    config: dict[str, Any] = {
        "number_of_videos": 1,
        "resolution": request.resolution,
        "duration_seconds": request.duration_seconds,
        "reference_images": [],
        "tools": [],
    }
    if not isinstance(request, ExtendVideoRequest):
        config["aspect_ratio"] = request.aspect_ratio

    image = None
    video_uri = None
    if isinstance(request, (TextToVideoRequest, ExtendVideoRequest)):
        config["person_generation"] = "allow_all"
    else:
        config["person_generation"] = "allow_adult"

    if isinstance(request, FramesToVideoRequest):
        image = _image_artifact(request.start_frame_url)
        if request.enable_looping:
            config["last_frame"] = _image_artifact(request.start_frame_url)
        elif request.end_frame_url:
            config["last_frame"] = _image_artifact(request.end_frame_url)
    elif isinstance(request, ReferencesToVideoRequest):
        config["reference_images"] = [
            {"image": _image_artifact(url), "reference_type": "asset"}
            for url in request.reference_image_urls
        ]
        if request.style_image_url:
            config["reference_images"].append({
                "image": _image_artifact(request.style_image_url, ArtifactRole.STYLE_REFERENCE),
                "reference_type": "style",
            })
    elif isinstance(request, ExtendVideoRequest):
        video_uri = request.input_video_uri
    elif isinstance(request, LivePhotoRequest):
        image = _image_artifact(request.image_url)

    return VideoPayload(
        model=request.model,
        prompt=_video_prompt(request),
        negative_prompt=request.negative_prompt,
        config=config,
        image=image,
        video_uri=video_uri,
        strip_audio=not request.generate_audio and not isinstance(request, LivePhotoRequest),
    )


def _message_part(message: ImageMessage) -> dict | None:
    if message.content_type == "text":
        return {"text": message.text} if message.text else None
    if message.content_type == "imageUrl":
        if not message.image_url:
            raise ValidationError("image_url", "Image URL cannot be empty")
        return {"artifact": MediaArtifact(
            role=ArtifactRole.INPUT_REFERENCE,
            uri=message.image_url,
            mime_type=message.mime_type or None,
        )}
    if message.content_type == "imageBase64":
        if not message.image_base64:
            raise ValidationError("image_base64", "Image base64 data cannot be empty")
        try:
            data = base64.b64decode(message.image_base64, validate=True)
        except ValueError:
            raise ValidationError("image_base64", "Image base64 data is not valid base64")
        return {"artifact": MediaArtifact(
            role=ArtifactRole.INPUT_REFERENCE,
            data=data,
            mime_type=message.mime_type or None,
        )}
    raise ValidationError("content_type", f"Unknown content type {message.content_type!r}")


def build_image_payload(request: ImageRequest) -> ImagePayload:
    contents: list[dict[str, Any]] = []
    for message in request.messages:
        part = _message_part(message)
        if part is not None:
            contents.append({"role": message.role, "parts": [part]})
    if request.current_message:
        contents.append({"role": "user", "parts": [{"text": request.current_message}]})

    config: dict[str, Any] = {"response_modalities": list(request.response_modalities)}
    if "IMAGE" in request.response_modalities:
        image_config: dict[str, Any] = {"image_size": request.image_size}
        # An empty aspect ratio means "auto"; let the model decide.
        if request.aspect_ratio:
            image_config["aspect_ratio"] = request.aspect_ratio
        config["image_config"] = image_config

    if request.use_grounding_search and request.model in GROUNDING_MODELS:
        config["tools"] = [{"google_search": {}}]

    for key in ("temperature", "max_output_tokens", "top_p", "top_k"):
        value = getattr(request, key)
        if value is not None:
            config[key] = value

    return ImagePayload(model=request.model, contents=contents, config=config)


def build_speech_payload(request: SpeechRequest) -> SpeechPayload:
    prompt = request.transcript
    if request.voice_instruction:
        prompt = f"{request.voice_instruction}:\n{request.transcript}"
    return SpeechPayload(
        model=request.model,
        prompt=prompt,
        multi_speaker=request.multi_speaker,
        voice=request.voice,
        speakers=request.speakers,
        temperature=request.temperature,
    )


def build_payload(request: GenerationRequest):
    if isinstance(request, ImageRequest):
        return build_image_payload(request)
    if isinstance(request, SpeechRequest):
        return build_speech_payload(request)
    if isinstance(request, VideoRequest):
        return build_video_payload(request)
    raise ValidationError("mode", f"Unsupported request type: {type(request).__name__}")
