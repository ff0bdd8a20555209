"""Typed generation requests, one variant per mode, and the provider payloads
built from them."""
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Union

from models.job import GenerationMode, MediaArtifact
from models.voices import DEFAULT_VOICE, SpeakerVoice

DEFAULT_VIDEO_MODEL = "veo-3.1-fast-generate-preview"
DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image-preview"
DEFAULT_SPEECH_MODEL = "gemini-2.5-flash-preview-tts"
DEFAULT_VOICE_INSTRUCTION = "Read aloud in a warm, welcoming tone"
DEFAULT_LIVE_PHOTO_PROMPT = (
    "Subtle, natural ambient motion as in a live photo. Keep the camera still "
    "and the composition identical to the source image."
)


@dataclass(frozen=True)
class UploadTarget:
    enabled: bool = False
    bucket: str = ""
    public_domain: Optional[str] = None


@dataclass(frozen=True)
class PollingOptions:
    poll_interval_seconds: float = 10
    max_wait_seconds: float = 30 * 60


@dataclass(frozen=True)
class ImageMessage:
    role: str = "user"
    content_type: str = "text"
    text: str = ""
    image_url: str = ""
    image_base64: str = ""
    mime_type: str = ""


@dataclass(frozen=True, kw_only=True)
class ImageRequest:
    mode: ClassVar[GenerationMode] = GenerationMode.IMAGE
    model: str = DEFAULT_IMAGE_MODEL
    messages: tuple[ImageMessage, ...] = ()
    current_message: str = ""
    response_modalities: tuple[str, ...] = ("TEXT", "IMAGE")
    aspect_ratio: str = ""
    image_size: str = "1K"
    use_grounding_search: bool = False
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    upload: UploadTarget = field(default_factory=UploadTarget)


@dataclass(frozen=True, kw_only=True)
class SpeechRequest:
    mode: ClassVar[GenerationMode] = GenerationMode.SPEECH
    model: str = DEFAULT_SPEECH_MODEL
    transcript: str
    voice_instruction: str = DEFAULT_VOICE_INSTRUCTION
    multi_speaker: bool = False
    voice: str = DEFAULT_VOICE
    speakers: tuple[SpeakerVoice, ...] = ()
    temperature: float = 0.65
    upload: UploadTarget = field(default_factory=UploadTarget)


@dataclass(frozen=True, kw_only=True)
class VideoRequest:
    mode: ClassVar[GenerationMode]
    model: str = DEFAULT_VIDEO_MODEL
    prompt: str = ""
    negative_prompt: str = ""
    resolution: str = "720p"
    duration_seconds: int = 8
    generate_audio: bool = True
    upload: UploadTarget = field(default_factory=UploadTarget)
    polling: PollingOptions = field(default_factory=PollingOptions)


@dataclass(frozen=True, kw_only=True)
class TextToVideoRequest(VideoRequest):
    mode: ClassVar[GenerationMode] = GenerationMode.TEXT_TO_VIDEO
    prompt: str
    aspect_ratio: str = "16:9"


@dataclass(frozen=True, kw_only=True)
class FramesToVideoRequest(VideoRequest):
    mode: ClassVar[GenerationMode] = GenerationMode.FRAMES_TO_VIDEO
    start_frame_url: str
    end_frame_url: Optional[str] = None
    enable_looping: bool = False
    aspect_ratio: str = "16:9"


@dataclass(frozen=True, kw_only=True)
class ReferencesToVideoRequest(VideoRequest):
    mode: ClassVar[GenerationMode] = GenerationMode.REFERENCES_TO_VIDEO
    reference_image_urls: tuple[str, ...]
    style_image_url: Optional[str] = None
    aspect_ratio: str = "16:9"


@dataclass(frozen=True, kw_only=True)
class ExtendVideoRequest(VideoRequest):
    mode: ClassVar[GenerationMode] = GenerationMode.EXTEND_VIDEO
    input_video_uri: str


@dataclass(frozen=True, kw_only=True)
class LivePhotoRequest(VideoRequest):
    mode: ClassVar[GenerationMode] = GenerationMode.LIVE_PHOTO
    image_url: str
    duration_seconds: int = 4
    generate_audio: bool = False
    aspect_ratio: str = "16:9"
    effect: str = "freeze"


GenerationRequest = Union[
    ImageRequest,
    SpeechRequest,
    TextToVideoRequest,
    FramesToVideoRequest,
    ReferencesToVideoRequest,
    ExtendVideoRequest,
    LivePhotoRequest,
]


@dataclass
class VideoPayload:
    model: str
    prompt: str
    negative_prompt: str
    config: dict[str, Any]
    image: Optional[MediaArtifact] = None
    video_uri: Optional[str] = None
    strip_audio: bool = False


@dataclass
class ImagePayload:
    model: str
    contents: list[dict[str, Any]]
    config: dict[str, Any]


@dataclass
class SpeechPayload:
    model: str
    prompt: str
    multi_speaker: bool
    voice: str
    speakers: tuple[SpeakerVoice, ...]
    temperature: float
