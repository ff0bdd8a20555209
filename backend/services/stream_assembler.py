import base64
import logging
import random
import struct
from typing import Any, AsyncIterable, Iterable, Optional

from models.voices import VOICE_POOLS, SpeakerVoice, is_random_choice

logger = logging.getLogger("stream_assembler")

DEFAULT_SAMPLE_RATE = 24000
DEFAULT_BITS_PER_SAMPLE = 16
DEFAULT_CHANNELS = 1

PCM_MIME_TYPES = frozenset({"audio/l16", "audio/pcm"})


def parse_audio_mime(mime_type: Optional[str]) -> tuple[str, dict[str, str]]:
    """Split `audio/L16;codec=pcm;rate=24000` into its base type and params."""
    parts = [p.strip() for p in (mime_type or "").split(";") if p.strip()]
    if not parts:
        return "", {}
    params = {}
    for param in parts[1:]:
        key, _, value = param.partition("=")
        params[key.strip().lower()] = value.strip()
    return parts[0].lower(), params


def _int_param(params: dict[str, str], key: str, default: int) -> int:
    value = params.get(key)
    if not value:
        return default
    if not (value.isascii() and value.isdigit()) or int(value) == 0:
        logger.warning(f"Ignoring malformed audio parameter {key}={value!r}, using {default}")
        return default
    return int(value)


def wav_header(data_size: int, sample_rate: int, bits_per_sample: int, channels: int = DEFAULT_CHANNELS) -> bytes:
    block_align = channels * (bits_per_sample // 8)
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,  # PCM chunk size
        1,   # PCM format
        channels,
        sample_rate,
        sample_rate * block_align,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )


def _fragment_inline_data(fragment: Any) -> list[Any]:
    """Pull every inline_data blob out of a streamed response chunk."""
    blobs = []
    for candidate in getattr(fragment, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and getattr(inline, "data", None):
                blobs.append(inline)
    return blobs


class StreamAssembler:
    """Collects streamed audio fragments in arrival order into one playable file."""

    def __init__(self):
        self._chunks: list[bytes] = []
        self._mime_type: Optional[str] = None

    def add(self, fragment: Any) -> None:
        for inline in _fragment_inline_data(fragment):
            data = inline.data
            if isinstance(data, str):
                data = base64.b64decode(data)
            self._chunks.append(bytes(data))
            if self._mime_type is None:
                self._mime_type = getattr(inline, "mime_type", None)

    def finish(self) -> tuple[bytes, str]:
        raw = b"".join(self._chunks)
        if not raw:
            return b"", "audio/wav"

        base, params = parse_audio_mime(self._mime_type)
        if base not in PCM_MIME_TYPES:
            # Already a container format, pass it through untouched.
            return raw, base or "application/octet-stream"

        sample_rate = _int_param(params, "rate", DEFAULT_SAMPLE_RATE)
        bits = 16 if base == "audio/l16" else _int_param(params, "bits", DEFAULT_BITS_PER_SAMPLE)
        logger.info(f"Assembled {len(self._chunks)} audio fragment(s), {len(raw)} PCM bytes at {sample_rate}Hz")
        return wav_header(len(raw), sample_rate, bits) + raw, "audio/wav"

    async def assemble(self, stream: AsyncIterable[Any]) -> tuple[bytes, str]:
        async for fragment in stream:
            self.add(fragment)
        return self.finish()


def resolve_voice(choice: str, used: Optional[set[str]] = None, rng: Optional[random.Random] = None) -> str:
    """Turn a voice choice into a concrete voice id.

    Random choices skip voices already in `used`; once a pool is exhausted the
    pick falls back to the whole pool.
    """
    if not is_random_choice(choice):
        return choice
    rng = rng or random
    pool = VOICE_POOLS[choice]
    available = [voice for voice in pool if voice not in (used or set())]
    return rng.choice(available or list(pool))


def assign_voices(speakers: Iterable[SpeakerVoice], rng: Optional[random.Random] = None) -> dict[str, str]:
    """Build the speaker label -> voice id mapping for one request."""
    used: set[str] = set()
    assignment: dict[str, str] = {}
    speakers = list(speakers)
    # Literal picks are reserved first so random picks can steer around them.
    for speaker in speakers:
        if not is_random_choice(speaker.voice):
            used.add(speaker.voice)
    for speaker in speakers:
        voice = resolve_voice(speaker.voice, used, rng)
        assignment[speaker.label] = voice
        used.add(voice)
    logger.info(f"Voice assignment: {assignment}")
    return assignment
