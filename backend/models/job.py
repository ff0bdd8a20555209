import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class GenerationMode(str, Enum):
    IMAGE = "image"
    SPEECH = "speech"
    TEXT_TO_VIDEO = "text-to-video"
    FRAMES_TO_VIDEO = "frames-to-video"
    REFERENCES_TO_VIDEO = "references-to-video"
    EXTEND_VIDEO = "extend-video"
    LIVE_PHOTO = "live-photo"


VIDEO_MODES = frozenset({
    GenerationMode.TEXT_TO_VIDEO,
    GenerationMode.FRAMES_TO_VIDEO,
    GenerationMode.REFERENCES_TO_VIDEO,
    GenerationMode.EXTEND_VIDEO,
    GenerationMode.LIVE_PHOTO,
})


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMED_OUT)


class ArtifactRole(str, Enum):
    INPUT_REFERENCE = "input_reference"
    STYLE_REFERENCE = "style_reference"
    OUTPUT_RESULT = "output_result"


@dataclass
class GenerationJob:
    """A provider-side asynchronous job tracked until it reaches a terminal state.

    The deadline is fixed at submission time and can't be reassigned.
    """
    mode: GenerationMode
    payload: Any
    handle: Any
    submitted_at: float
    deadline: float
    status: JobStatus = JobStatus.SUBMITTED
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "deadline" and "deadline" in self.__dict__:
            raise AttributeError("GenerationJob.deadline is immutable once submitted")
        super().__setattr__(name, value)

    @classmethod
    def submit(
        cls,
        mode: GenerationMode,
        payload: Any,
        handle: Any,
        max_wait_seconds: float,
        now: float,
    ) -> "GenerationJob":
        return cls(
            mode=mode,
            payload=payload,
            handle=handle,
            submitted_at=now,
            deadline=now + max_wait_seconds,
        )

    def transition(self, status: JobStatus) -> None:
        if self.status.is_terminal:
            raise RuntimeError(
                f"Job {self.job_id} already finished with status {self.status.value}"
            )
        if status.is_terminal and self.status is not JobStatus.POLLING:
            raise RuntimeError(f"Job {self.job_id} must be polling before it can finish")
        self.status = status


@dataclass
class MediaArtifact:
    role: ArtifactRole
    uri: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.data is not None


@dataclass
class UploadResult:
    url: str
    file_name: str
    bucket: str
    mime_type: str

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "fileName": self.file_name,
            "bucket": self.bucket,
            "mimeType": self.mime_type,
        }


@dataclass
class ItemResult:
    index: int
    mode: Optional[str]
    json: dict = field(default_factory=dict)
    binary: Optional[dict] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict = {"index": self.index, "mode": self.mode, "json": self.json}
        if self.binary is not None:
            data["binary"] = self.binary
        if self.error is not None:
            data["error"] = self.error
        return data
