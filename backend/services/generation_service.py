import asyncio
import base64
import dataclasses
import logging
import time
from typing import Any, Optional

from models.errors import GenerationError, ProviderError, ValidationError, sanitize_error_message
from models.job import ArtifactRole, GenerationMode, ItemResult, MediaArtifact
from models.requests import (
    ImagePayload,
    ImageRequest,
    LivePhotoRequest,
    SpeechPayload,
    SpeechRequest,
    UploadTarget,
    VideoPayload,
    VideoRequest,
)
from services.gemini_service import GeminiService
from services.job_poller import JobPoller
from services.media_fetcher import MediaFetcher
from services.post_processor import PostProcessor
from services.request_builder import build_payload, extract_file_id, parse_request
from services.response_validator import extract_image_response, extract_video_artifact
from services.stream_assembler import StreamAssembler, assign_voices, resolve_voice
from services.upload_manager import UploadManager, extension_for, sortable_id
from utils.env import settings

logger = logging.getLogger("generation_service")


class GenerationService:
    """Runs a batch of generation items one after another.

    Each item goes request -> payload -> provider -> (poll) -> validate ->
    fetch -> (post-process) -> upload. Failures either land in the item's
    result or abort the batch, depending on `continue_on_fail`.
    """

    def __init__(
        self,
        gemini_service: GeminiService,
        media_fetcher: MediaFetcher,
        post_processor: PostProcessor,
        upload_manager: UploadManager,
        clock=time.monotonic,
        sleep=asyncio.sleep,
    ):
        logger.info("Initializing GenerationService...")
        self.gemini_service = gemini_service
        self.media_fetcher = media_fetcher
        self.post_processor = post_processor
        self.upload_manager = upload_manager
        self.clock = clock
        self.sleep = sleep

    async def process_batch(self, items: list[dict], continue_on_fail: Optional[bool] = None) -> list[ItemResult]:
        if continue_on_fail is None:
            continue_on_fail = settings.CONTINUE_ON_FAIL
        results: list[ItemResult] = []
        for index, raw in enumerate(items):
            mode = _raw_mode(raw)
            try:
                results.append(await self.process_item(index, raw))
            except Exception as exc:
                message = sanitize_error_message(str(exc))
                logger.error(f"Item {index} ({mode}) failed: {message}")
                if not continue_on_fail:
                    if isinstance(exc, GenerationError):
                        raise
                    raise GenerationError(message) from exc
                results.append(ItemResult(index=index, mode=mode, json={"error": message}, error=message))
        return results

    async def process_item(self, index: int, raw: dict) -> ItemResult:
        request = parse_request(raw)
        # Fail before any network work when the mandatory transform can't run.
        if isinstance(request, LivePhotoRequest):
            await self.post_processor.ensure_available()

        payload = build_payload(request)
        if isinstance(request, ImageRequest):
            return await self._run_image(index, request, payload)
        if isinstance(request, SpeechRequest):
            return await self._run_speech(index, request, payload)
        if isinstance(request, VideoRequest):
            return await self._run_video(index, request, payload)
        raise ValidationError("mode", f"Unsupported request type: {type(request).__name__}")

    async def _upload(self, data: bytes, mime_type: str, target: UploadTarget, key_prefix: str):
        return await self.upload_manager.upload(
            data,
            mime_type,
            bucket=target.bucket,
            key_prefix=key_prefix,
            public_domain=target.public_domain,
        )

    async def _resolve_video_inputs(self, payload: VideoPayload) -> VideoPayload:
        # The same URL may back several inputs (a looping start/last frame);
        # fetch it once per submission.
        fetched: dict[tuple, MediaArtifact] = {}

        async def resolve(artifact: MediaArtifact) -> MediaArtifact:
            if artifact.uri is None:
                return await self.media_fetcher.resolve(artifact)
            key = (artifact.role, artifact.uri)
            if key not in fetched:
                fetched[key] = await self.media_fetcher.resolve(artifact)
            return fetched[key]

        image = payload.image
        if image is not None:
            image = await resolve(image)

        config = dict(payload.config)
        if config.get("last_frame") is not None:
            config["last_frame"] = await resolve(config["last_frame"])
        references = []
        for ref in config.get("reference_images") or []:
            references.append({**ref, "image": await resolve(ref["image"])})
        config["reference_images"] = references
        return dataclasses.replace(payload, image=image, config=config)

    async def _run_video(self, index: int, request: VideoRequest, payload: VideoPayload) -> ItemResult:
        payload = await self._resolve_video_inputs(payload)
        operation = await self.gemini_service.submit_video(payload)

        poller = JobPoller(
            poll_interval_seconds=request.polling.poll_interval_seconds,
            max_wait_seconds=request.polling.max_wait_seconds,
            clock=self.clock,
            sleep=self.sleep,
        )
        job = poller.submit(request.mode, payload, operation)
        jid = job.job_id[:8]
        job = await poller.wait(job, self.gemini_service.refresh)

        artifact = extract_video_artifact(job.handle)
        output = await self.media_fetcher.fetch_output(job, artifact)
        logger.info(f"[{jid}] downloaded {len(output.data)} bytes from {artifact.uri}")

        data, mime_type = output.data, output.mime_type or "video/mp4"
        audio_stripped = False
        if isinstance(request, LivePhotoRequest):
            data = await self.post_processor.create_live_photo(data, request.aspect_ratio, request.effect)
            mime_type = "video/mp4"
            key_prefix = "live_photo"
        else:
            if payload.strip_audio:
                data, audio_stripped = await self.post_processor.strip_audio(data)
            key_prefix = "video"

        upload = await self._upload(data, mime_type, request.upload, key_prefix)
        logger.info(f"[{jid}] uploaded to {upload.url}")

        result = {
            "success": True,
            "mode": request.mode.value,
            "model": request.model,
            **upload.to_dict(),
            "videoUri": artifact.uri,
            "fileId": _file_id(artifact.uri),
            "jobId": job.job_id,
            "resolution": request.resolution,
            "durationSeconds": request.duration_seconds,
        }
        if isinstance(request, LivePhotoRequest):
            result["effect"] = request.effect
            result["aspectRatio"] = request.aspect_ratio
        else:
            result["audioStripped"] = audio_stripped
        return ItemResult(index=index, mode=request.mode.value, json=result)

    async def _run_image(self, index: int, request: ImageRequest, payload: ImagePayload) -> ItemResult:
        contents = []
        for entry in payload.contents:
            parts = []
            for part in entry["parts"]:
                if "artifact" in part:
                    part = {"artifact": await self.media_fetcher.resolve(part["artifact"])}
                parts.append(part)
            contents.append({**entry, "parts": parts})
        payload = dataclasses.replace(payload, contents=contents)

        response = extract_image_response(await self.gemini_service.generate_image(payload))
        result: dict[str, Any] = {
            "text": response.text,
            "model": request.model,
            "responseModalities": list(request.response_modalities),
        }
        binary = None
        if response.images:
            if request.upload.enabled:
                uploads = []
                prefix = f"gemini_{sortable_id()}"
                for i, image in enumerate(response.images):
                    upload = await self._upload(image.data, image.mime_type, request.upload, f"{prefix}_{i}")
                    uploads.append({"url": upload.url, "fileName": upload.file_name, "mimeType": upload.mime_type})
                result["images"] = uploads
                result["imageUrl"] = uploads[0]["url"]
            else:
                binary = _binary(response.images[0], "img")
                result["metadata"] = {"mimeType": binary["mimeType"], "fileName": binary["fileName"]}
        logger.info(f"Image item {index}: {len(response.images)} image(s), {len(response.text)} chars of text")
        return ItemResult(index=index, mode=request.mode.value, json=result, binary=binary)

    async def _run_speech(self, index: int, request: SpeechRequest, payload: SpeechPayload) -> ItemResult:
        if payload.multi_speaker:
            assignment = assign_voices(payload.speakers)
        else:
            payload = dataclasses.replace(payload, voice=resolve_voice(payload.voice))
            assignment = {}

        audio, mime_type = await StreamAssembler().assemble(
            self.gemini_service.stream_speech(payload, assignment)
        )
        if not audio:
            raise ProviderError("no audio generated")

        result: dict[str, Any] = {
            "success": True,
            "mode": request.mode.value,
            "model": request.model,
            "mimeType": mime_type,
            "sizeBytes": len(audio),
        }
        if payload.multi_speaker:
            result["speakers"] = assignment
        else:
            result["voice"] = payload.voice

        binary = None
        if request.upload.enabled:
            upload = await self._upload(audio, mime_type, request.upload, "tts")
            result.update(upload.to_dict())
        else:
            artifact = MediaArtifact(role=ArtifactRole.OUTPUT_RESULT, data=audio, mime_type=mime_type)
            binary = _binary(artifact, "tts")
        return ItemResult(index=index, mode=request.mode.value, json=result, binary=binary)


def _raw_mode(raw: Any) -> Optional[str]:
    if not isinstance(raw, dict):
        return None
    mode = raw.get("mode") or raw.get("generation_mode") or raw.get("generationMode")
    if isinstance(mode, GenerationMode):
        return mode.value
    return mode if isinstance(mode, str) else None


def _file_id(uri: Optional[str]) -> Optional[str]:
    try:
        return extract_file_id(uri or "")
    except ValidationError:
        return None


def _binary(artifact: MediaArtifact, prefix: str) -> dict:
    mime_type = artifact.mime_type or "application/octet-stream"
    return {
        "data": base64.b64encode(artifact.data or b"").decode("ascii"),
        "mimeType": mime_type,
        "fileName": f"{prefix}_{sortable_id()}.{extension_for(mime_type)}",
    }
