import logging
from typing import Any, AsyncIterator, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai.types import (
    Content,
    GenerateContentConfig,
    GenerateContentResponse,
    GenerateVideosConfig,
    GenerateVideosOperation,
    GoogleSearch,
    Image,
    ImageConfig,
    MultiSpeakerVoiceConfig,
    Part,
    PrebuiltVoiceConfig,
    SpeakerVoiceConfig,
    SpeechConfig,
    Tool,
    Video,
    VideoGenerationReferenceImage,
    VoiceConfig,
)

from models.errors import ProviderError, ValidationError
from models.job import MediaArtifact
from models.requests import ImagePayload, SpeechPayload, VideoPayload
from utils.env import settings

logger = logging.getLogger("gemini_service")

# Keys of the built config that map one-to-one onto GenerateVideosConfig.
_VIDEO_CONFIG_KEYS = (
    "number_of_videos",
    "resolution",
    "aspect_ratio",
    "duration_seconds",
    "person_generation",
)


def _image(artifact: MediaArtifact) -> Image:
    if not artifact.is_resolved:
        raise ValueError(f"Image artifact {artifact.uri} must be fetched before submission")
    return Image(image_bytes=artifact.data, mime_type=artifact.mime_type or "image/png")


def _voice(name: str) -> VoiceConfig:
    return VoiceConfig(prebuilt_voice_config=PrebuiltVoiceConfig(voice_name=name))


def _content_part(part: dict[str, Any]) -> Part:
    if "artifact" in part:
        artifact = part["artifact"]
        if not artifact.is_resolved:
            raise ValueError(f"Image artifact {artifact.uri} must be fetched before submission")
        return Part.from_bytes(data=artifact.data, mime_type=artifact.mime_type or "image/png")
    return Part(text=part["text"])


def _content_role(role: str) -> str:
    return "model" if role in ("model", "assistant") else "user"


class GeminiService:
    def __init__(self, api_key: Optional[str] = None, client: Any = None):
        if client is not None:
            self.client = client
            return
        api_key = api_key or settings.GEMINI_API_KEY
        if not api_key:
            raise ValidationError("GEMINI_API_KEY", "GEMINI_API_KEY is not configured")
        logger.info("Initializing Gemini client")
        self.client = genai.Client(api_key=api_key)

    def video_config(self, payload: VideoPayload) -> GenerateVideosConfig:
        config_kwargs: dict[str, Any] = {
            key: payload.config[key] for key in _VIDEO_CONFIG_KEYS if key in payload.config
        }
        if payload.negative_prompt:
            config_kwargs["negative_prompt"] = payload.negative_prompt
        if payload.config.get("last_frame") is not None:
            config_kwargs["last_frame"] = _image(payload.config["last_frame"])
        references = payload.config.get("reference_images") or []
        if references:
            config_kwargs["reference_images"] = [
                VideoGenerationReferenceImage(
                    image=_image(ref["image"]),
                    reference_type=ref["reference_type"],
                )
                for ref in references
            ]
        return GenerateVideosConfig(**config_kwargs)

    async def submit_video(self, payload: VideoPayload) -> GenerateVideosOperation:
        kwargs: dict[str, Any] = {
            "model": payload.model,
            "config": self.video_config(payload),
        }
        if payload.prompt:
            kwargs["prompt"] = payload.prompt
        if payload.image is not None:
            kwargs["image"] = _image(payload.image)
        if payload.video_uri:
            kwargs["video"] = Video(uri=payload.video_uri)

        logger.info(
            f"Calling {payload.model} (image={payload.image is not None}, "
            f"video={bool(payload.video_uri)}, refs={len(payload.config.get('reference_images') or [])})"
        )
        try:
            operation = await self.client.aio.models.generate_videos(**kwargs)
        except genai_errors.APIError as exc:
            raise ProviderError(f"Video generation failed: {exc}", detail=exc) from exc
        logger.info(f"Video operation started: {getattr(operation, 'name', None)}")
        return operation

    async def refresh(self, operation: GenerateVideosOperation) -> GenerateVideosOperation:
        return await self.client.aio.operations.get(operation)

    def image_config(self, payload: ImagePayload) -> GenerateContentConfig:
        config = dict(payload.config)
        image_config = config.pop("image_config", None)
        tools = config.pop("tools", None)
        if image_config:
            config["image_config"] = ImageConfig(**image_config)
        if tools:
            config["tools"] = [Tool(google_search=GoogleSearch()) for tool in tools if "google_search" in tool]
        return GenerateContentConfig(**config)

    async def generate_image(self, payload: ImagePayload) -> GenerateContentResponse:
        contents = [
            Content(role=_content_role(entry["role"]), parts=[_content_part(p) for p in entry["parts"]])
            for entry in payload.contents
        ]
        if not contents:
            raise ValidationError("current_message")
        logger.info(f"Calling {payload.model} with {len(contents)} content block(s)")
        try:
            return await self.client.aio.models.generate_content(
                model=payload.model,
                contents=contents,
                config=self.image_config(payload),
            )
        except genai_errors.APIError as exc:
            raise ProviderError(f"Image generation failed: {exc}", detail=exc) from exc

    def speech_config(self, payload: SpeechPayload, assignment: dict[str, str]) -> GenerateContentConfig:
        if payload.multi_speaker:
            speech_config = SpeechConfig(
                multi_speaker_voice_config=MultiSpeakerVoiceConfig(
                    speaker_voice_configs=[
                        SpeakerVoiceConfig(speaker=label, voice_config=_voice(voice))
                        for label, voice in assignment.items()
                    ]
                )
            )
        else:
            speech_config = SpeechConfig(voice_config=_voice(payload.voice))
        return GenerateContentConfig(
            temperature=payload.temperature,
            response_modalities=["AUDIO"],
            speech_config=speech_config,
        )

    async def stream_speech(self, payload: SpeechPayload, assignment: dict[str, str]) -> AsyncIterator[Any]:
        logger.info(f"Streaming speech from {payload.model} (multi_speaker={payload.multi_speaker})")
        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=payload.model,
                contents=[Content(role="user", parts=[Part(text=payload.prompt)])],
                config=self.speech_config(payload, assignment),
            )
        except genai_errors.APIError as exc:
            raise ProviderError(f"Speech generation failed: {exc}", detail=exc) from exc
        async for chunk in stream:
            yield chunk
