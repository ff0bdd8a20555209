import base64
import random
import struct
from types import SimpleNamespace

import pytest

from models.voices import (
    ALL_VOICES,
    FEMALE_VOICES,
    MALE_VOICES,
    RANDOM_FEMALE_VOICE,
    RANDOM_MALE_VOICE,
    RANDOM_VOICE,
    SpeakerVoice,
)
from services.stream_assembler import StreamAssembler, assign_voices, parse_audio_mime, resolve_voice


def _chunk(data, mime_type="audio/L16;codec=pcm;rate=24000"):
    inline = SimpleNamespace(data=data, mime_type=mime_type)
    part = SimpleNamespace(inline_data=inline, text=None)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


async def _stream(*chunks):
    for chunk in chunks:
        yield chunk


def test_parse_audio_mime() -> None:
    base, params = parse_audio_mime("audio/L16;codec=pcm;rate=16000")
    assert base == "audio/l16"
    assert params == {"codec": "pcm", "rate": "16000"}


@pytest.mark.asyncio
async def test_pcm_fragments_are_joined_in_order_under_one_wav_header() -> None:
    pcm_a = b"\x01\x00\x02\x00"
    pcm_b = b"\x03\x00\x04\x00"
    audio, mime_type = await StreamAssembler().assemble(
        _stream(_chunk(pcm_a), _chunk(base64.b64encode(pcm_b).decode()))
    )

    assert mime_type == "audio/wav"
    assert audio[:4] == b"RIFF"
    assert audio[8:12] == b"WAVE"
    channels, sample_rate = struct.unpack_from("<HI", audio, 22)
    bits = struct.unpack_from("<H", audio, 34)[0]
    data_size = struct.unpack_from("<I", audio, 40)[0]
    assert (channels, sample_rate, bits) == (1, 24000, 16)
    assert data_size == 8
    assert audio[44:] == pcm_a + pcm_b


@pytest.mark.asyncio
async def test_sample_rate_comes_from_mime_params() -> None:
    audio, _ = await StreamAssembler().assemble(_stream(_chunk(b"\x00\x00", "audio/pcm;rate=16000")))
    assert struct.unpack_from("<I", audio, 24)[0] == 16000


@pytest.mark.asyncio
@pytest.mark.parametrize("mime_type", ["audio/L16;rate=abc", "audio/pcm;rate=0;bits=x", "audio/pcm;rate=-5"])
async def test_malformed_audio_params_fall_back_to_defaults(mime_type) -> None:
    audio, mime = await StreamAssembler().assemble(_stream(_chunk(b"\x00\x00", mime_type)))
    assert mime == "audio/wav"
    assert struct.unpack_from("<I", audio, 24)[0] == 24000
    assert struct.unpack_from("<H", audio, 34)[0] == 16


@pytest.mark.asyncio
async def test_empty_stream_yields_empty_bytes() -> None:
    empty = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[]))])
    audio, _ = await StreamAssembler().assemble(_stream(empty, SimpleNamespace(candidates=None)))
    assert audio == b""


@pytest.mark.asyncio
async def test_container_audio_passes_through() -> None:
    mp3 = b"ID3\x03\x00rest"
    audio, mime_type = await StreamAssembler().assemble(_stream(_chunk(mp3, "audio/mpeg")))
    assert audio == mp3
    assert mime_type == "audio/mpeg"


def test_literal_voice_is_kept() -> None:
    assert resolve_voice("Kore") == "Kore"


def test_random_voice_respects_category() -> None:
    rng = random.Random(7)
    for _ in range(20):
        assert resolve_voice(RANDOM_MALE_VOICE, rng=rng) in MALE_VOICES
        assert resolve_voice(RANDOM_FEMALE_VOICE, rng=rng) in FEMALE_VOICES
        assert resolve_voice(RANDOM_VOICE, rng=rng) in ALL_VOICES


@pytest.mark.parametrize("seed", range(5))
def test_random_speakers_get_distinct_voices(seed) -> None:
    speakers = [SpeakerVoice(label=f"S{i}", voice=RANDOM_FEMALE_VOICE) for i in range(len(FEMALE_VOICES))]
    assignment = assign_voices(speakers, rng=random.Random(seed))
    assert len(set(assignment.values())) == len(FEMALE_VOICES)


def test_random_pick_avoids_literal_voices_in_same_request() -> None:
    literal = [SpeakerVoice(label=f"L{i}", voice=v) for i, v in enumerate(FEMALE_VOICES[:-1])]
    speakers = literal + [SpeakerVoice(label="R", voice=RANDOM_FEMALE_VOICE)]
    assignment = assign_voices(speakers, rng=random.Random(1))
    assert assignment["R"] == FEMALE_VOICES[-1]


def test_exhausted_pool_falls_back_to_full_category() -> None:
    speakers = [SpeakerVoice(label=f"S{i}", voice=RANDOM_MALE_VOICE) for i in range(len(MALE_VOICES) + 3)]
    assignment = assign_voices(speakers, rng=random.Random(3))
    assert len(assignment) == len(MALE_VOICES) + 3
    assert set(assignment.values()) == set(MALE_VOICES)


def test_used_voices_do_not_leak_between_requests() -> None:
    speakers = [SpeakerVoice(label="A", voice=RANDOM_MALE_VOICE)]
    picks = {assign_voices(speakers, rng=random.Random(seed))["A"] for seed in range(200)}
    assert len(picks) > 1
