import base64
from types import SimpleNamespace

import pytest

from models.errors import ProviderError, SafetyFilterError
from models.job import ArtifactRole
from services.response_validator import extract_image_response, extract_video_artifact


def _video_op(uri="https://generativelanguage.googleapis.com/v1beta/files/abc%3Ddef:download?alt=media", **response):
    response.setdefault("generated_videos", [SimpleNamespace(video=SimpleNamespace(uri=uri))])
    return SimpleNamespace(done=True, error=None, response=SimpleNamespace(**response), result=None)


def test_missing_response_is_provider_error() -> None:
    with pytest.raises(ProviderError, match="no response from provider"):
        extract_video_artifact(None)
    with pytest.raises(ProviderError, match="no response from provider"):
        extract_video_artifact(SimpleNamespace(done=True, error=None, response=None, result=None))


def test_error_object_surfaces_provider_detail() -> None:
    op = SimpleNamespace(done=True, error={"code": 400, "message": "Prompt rejected"}, response=None)
    with pytest.raises(ProviderError) as exc_info:
        extract_video_artifact(op)
    assert "Prompt rejected" in exc_info.value.message
    assert "no response" not in exc_info.value.message
    assert not isinstance(exc_info.value, SafetyFilterError)


def test_filtered_output_raises_safety_error_with_reasons() -> None:
    reasons = ["The prompt could not be submitted.", "Support codes: 123"]
    op = _video_op(rai_media_filtered_count=1, rai_media_filtered_reasons=reasons, generated_videos=[])
    with pytest.raises(SafetyFilterError) as exc_info:
        extract_video_artifact(op)
    assert exc_info.value.reasons == reasons


def test_empty_samples_is_no_usable_output() -> None:
    with pytest.raises(ProviderError, match="no usable output"):
        extract_video_artifact(_video_op(generated_videos=[]))


def test_missing_uri_is_no_usable_output() -> None:
    op = _video_op(generated_videos=[SimpleNamespace(video=SimpleNamespace(uri=None))])
    with pytest.raises(ProviderError, match="no usable output"):
        extract_video_artifact(op)


def test_first_sample_wins_and_uri_is_decoded() -> None:
    first = SimpleNamespace(video=SimpleNamespace(uri="files/first%20one"))
    second = SimpleNamespace(video=SimpleNamespace(uri="files/second"))
    artifact = extract_video_artifact(_video_op(generated_videos=[first, second]))
    assert artifact.uri == "files/first one"
    assert artifact.role is ArtifactRole.OUTPUT_RESULT
    assert artifact.is_resolved is False


def test_result_field_is_used_when_response_is_absent() -> None:
    result = {"generated_videos": [{"video": {"uri": "files/from-result"}}]}
    op = {"done": True, "error": None, "response": None, "result": result}
    assert extract_video_artifact(op).uri == "files/from-result"


def test_image_response_collects_images_and_text() -> None:
    png = b"\x89PNG\r\n\x1a\ndata"
    response = SimpleNamespace(
        prompt_feedback=None,
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=[
            SimpleNamespace(text="Here you go. ", inline_data=None),
            SimpleNamespace(text=None, inline_data=SimpleNamespace(data=png, mime_type="image/png")),
            SimpleNamespace(text=None, inline_data=SimpleNamespace(data=base64.b64encode(png).decode(), mime_type=None)),
            SimpleNamespace(text="Enjoy!", inline_data=None),
        ]))],
    )
    parsed = extract_image_response(response)
    assert parsed.text == "Here you go. Enjoy!"
    assert [img.data for img in parsed.images] == [png, png]
    assert parsed.images[1].mime_type == "image/png"


def test_image_block_reason_is_safety_error() -> None:
    response = SimpleNamespace(
        prompt_feedback=SimpleNamespace(block_reason="SAFETY", block_reason_message="blocked"),
        candidates=[],
    )
    with pytest.raises(SafetyFilterError) as exc_info:
        extract_image_response(response)
    assert exc_info.value.reasons == ["SAFETY", "blocked"]
