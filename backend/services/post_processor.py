import asyncio
import logging
import os
import shutil
import tempfile
from typing import Optional

from models.errors import PostProcessError, ToolUnavailableError
from utils.env import settings

logger = logging.getLogger("post_processor")

LIVE_PHOTO_FPS = 24
LIVE_PHOTO_SECONDS = 4
LIVE_PHOTO_HOLD_START = 3
CROSSFADE_SECONDS = 0.5

LIVE_PHOTO_DIMENSIONS = {
    "16:9": (1280, 720),
    "9:16": (720, 1280),
}


def live_photo_dimensions(aspect_ratio: str) -> tuple[int, int]:
    return LIVE_PHOTO_DIMENSIONS.get(aspect_ratio, LIVE_PHOTO_DIMENSIONS["16:9"])


def _normalize_chain(width: int, height: int) -> str:
    return (
        f"fps={LIVE_PHOTO_FPS},"
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,"
        "setsar=1,format=yuv420p"
    )


def freeze_filter(width: int, height: int) -> str:
    """Play the first three seconds, then hold the frame at t=3s for one second."""
    hold_frames = (LIVE_PHOTO_SECONDS - LIVE_PHOTO_HOLD_START) * LIVE_PHOTO_FPS
    return ";".join([
        f"[0:v]{_normalize_chain(width, height)},split[main][still]",
        f"[main]trim=duration={LIVE_PHOTO_HOLD_START},setpts=PTS-STARTPTS[head]",
        (
            f"[still]trim=start={LIVE_PHOTO_HOLD_START},setpts=PTS-STARTPTS,trim=end_frame=1,"
            f"loop=loop={hold_frames - 1}:size=1:start=0,"
            f"setpts=N/({LIVE_PHOTO_FPS}*TB)[hold]"
        ),
        "[head][hold]concat=n=2:v=1:a=0[outv]",
    ])


def crossfade_filter(width: int, height: int) -> str:
    """Fade from t=3s back to the first frame over half a second, then hold it."""
    first_frame_frames = LIVE_PHOTO_SECONDS * LIVE_PHOTO_FPS
    return ";".join([
        f"[0:v]{_normalize_chain(width, height)},split[main][first]",
        f"[main]trim=duration={LIVE_PHOTO_SECONDS},setpts=PTS-STARTPTS,settb=AVTB,fps={LIVE_PHOTO_FPS}[clip]",
        (
            f"[first]trim=end_frame=1,setpts=PTS-STARTPTS,"
            f"loop=loop={first_frame_frames - 1}:size=1:start=0,"
            f"setpts=N/({LIVE_PHOTO_FPS}*TB),settb=AVTB,fps={LIVE_PHOTO_FPS}[poster]"
        ),
        (
            f"[clip][poster]xfade=transition=fade:duration={CROSSFADE_SECONDS}:"
            f"offset={LIVE_PHOTO_HOLD_START}[outv]"
        ),
    ])


LIVE_PHOTO_FILTERS = {
    "freeze": freeze_filter,
    "crossfade": crossfade_filter,
}


class PostProcessor:
    """Runs ffmpeg over private temp directories.

    Every call gets its own directory and removes it when done, whether the
    command succeeded or not.
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        probe_timeout: Optional[float] = None,
        strip_timeout: Optional[float] = None,
        live_photo_timeout: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.probe_timeout = probe_timeout or settings.FFMPEG_PROBE_TIMEOUT_SECONDS
        self.strip_timeout = strip_timeout or settings.FFMPEG_STRIP_TIMEOUT_SECONDS
        self.live_photo_timeout = live_photo_timeout or settings.FFMPEG_LIVE_PHOTO_TIMEOUT_SECONDS
        self._available: Optional[bool] = None

    async def _run(self, args: list[str], timeout: float) -> bytes:
        """Run ffmpeg with `args`, returning stderr. Raises PostProcessError on
        a non-zero exit or when the timeout elapses."""
        cmd = [self.ffmpeg_path, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise ToolUnavailableError(self._unavailable_message(exc)) from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise PostProcessError(f"ffmpeg timed out after {timeout}s")

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-500:]
            raise PostProcessError(f"ffmpeg exited with code {proc.returncode}: {tail}")
        return stderr

    def _unavailable_message(self, cause: object) -> str:
        return (
            f"ffmpeg is required for live photo generation but could not be run "
            f"({self.ffmpeg_path}: {cause}). Install ffmpeg and make sure it is on PATH, "
            "or set FFMPEG_PATH to the ffmpeg executable."
        )

    async def ensure_available(self) -> None:
        if self._available:
            return
        try:
            await self._run(["-version"], timeout=self.probe_timeout)
        except PostProcessError as exc:
            raise ToolUnavailableError(self._unavailable_message(exc)) from exc
        self._available = True
        logger.info(f"ffmpeg available at {self.ffmpeg_path}")

    async def strip_audio(self, data: bytes) -> tuple[bytes, bool]:
        """Drop the audio track. On any failure the original bytes come back
        with `False` so the caller can still deliver the video."""
        tmp_dir = tempfile.mkdtemp(prefix="strip-audio-")
        input_path = os.path.join(tmp_dir, "input.mp4")
        output_path = os.path.join(tmp_dir, "output.mp4")
        try:
            with open(input_path, "wb") as f:
                f.write(data)
            await self._run(
                ["-y", "-i", input_path, "-c:v", "copy", "-an", output_path],
                timeout=self.strip_timeout,
            )
            with open(output_path, "rb") as f:
                stripped = f.read()
            logger.info(f"Stripped audio: {len(data)} -> {len(stripped)} bytes")
            return stripped, True
        except (PostProcessError, ToolUnavailableError, OSError) as exc:
            logger.warning(f"Audio strip failed, returning original video: {exc}")
            return data, False
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

    async def create_live_photo(self, data: bytes, aspect_ratio: str, effect: str = "freeze") -> bytes:
        if effect not in LIVE_PHOTO_FILTERS:
            raise PostProcessError(f"Unknown live photo effect: {effect}")
        width, height = live_photo_dimensions(aspect_ratio)
        filter_graph = LIVE_PHOTO_FILTERS[effect](width, height)

        tmp_dir = tempfile.mkdtemp(prefix="live-photo-")
        input_path = os.path.join(tmp_dir, "input.mp4")
        output_path = os.path.join(tmp_dir, "live_photo.mp4")
        try:
            with open(input_path, "wb") as f:
                f.write(data)
            await self._run(
                [
                    "-y", "-i", input_path,
                    "-filter_complex", filter_graph,
                    "-map", "[outv]",
                    "-r", str(LIVE_PHOTO_FPS),
                    "-t", str(LIVE_PHOTO_SECONDS),
                    "-an",
                    "-c:v", "libx264", "-preset", "fast", "-crf", "23",
                    "-pix_fmt", "yuv420p",
                    "-movflags", "+faststart",
                    output_path,
                ],
                timeout=self.live_photo_timeout,
            )
            with open(output_path, "rb") as f:
                result = f.read()
            logger.info(f"Live photo ({effect}, {width}x{height}) created: {len(result)} bytes")
            return result
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
