"""
Pydantic models and enums for the video generation pipeline.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import MAX_DURATION_SECONDS, MIN_DURATION_SECONDS, SEGMENT_SECONDS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Public request/response shape: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Status Enums ─────────────────────────────────────────────────────────────

class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStage(str, Enum):
    QUEUED = "QUEUED"
    ANALYZING = "ANALYZING"
    IMAGE_PROMPT = "IMAGE_PROMPT"
    IMAGE_GEN = "IMAGE_GEN"
    VIDEO_PROMPT = "VIDEO_PROMPT"
    SEGMENTS = "SEGMENTS"
    ASSEMBLING = "ASSEMBLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SegmentStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"


class PollState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    DONE = "done"
    TIMEOUT = "timeout"
    FAILED = "failed"


class AssemblyMode(str, Enum):
    CUT = "cut"
    CROSSFADE = "crossfade"


AspectRatio = Literal["16:9", "9:16"]
FramePosition = Union[Literal["first", "last"], float]


# ── Artifacts ────────────────────────────────────────────────────────────────

class ArtifactRef(BaseModel):
    """Pointer to an immutable stored object plus its media metadata."""

    model_config = ConfigDict(frozen=True)

    url: str
    key: str
    content_type: str = "application/octet-stream"
    format: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    size_bytes: int = 0
    fps: Optional[float] = None
    duration_seconds: Optional[float] = None


# ── Generation ───────────────────────────────────────────────────────────────

class GenerationOptions(BaseModel):
    aspect_ratio: AspectRatio = "16:9"
    person_generation: str = "allow_adult"
    negative_prompt: Optional[str] = None


class OperationStatus(BaseModel):
    """One snapshot of a provider-side operation, as returned by a poll."""

    done: bool = False
    result_uri: Optional[str] = None
    error: Optional[str] = None
    response: dict = Field(default_factory=dict)


class GenerationOperation(BaseModel):
    """Handle to a long-running generation job. Lives only inside the poller."""

    operation_id: str
    state: PollState = PollState.SUBMITTED
    done: bool = False
    poll_attempt: int = 0
    result_uri: Optional[str] = None
    error: Optional[str] = None
    response: dict = Field(default_factory=dict)
    submitted_at: datetime = Field(default_factory=_utcnow)


# ── Creative stage outputs ───────────────────────────────────────────────────

class ImageAnalysis(BaseModel):
    summary: str
    analysis: str


class ImagePrompt(BaseModel):
    image_prompt: str
    aspect_ratio_image: str = "2:3"


# ── Run state ────────────────────────────────────────────────────────────────

class Segment(BaseModel):
    index: int
    video_prompt: str
    seed_image: ArtifactRef
    status: SegmentStatus = SegmentStatus.PENDING
    video: Optional[ArtifactRef] = None
    extracted_frame: Optional[ArtifactRef] = None


class PipelineRun(BaseModel):
    run_id: str
    owner_id: str
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    requested_duration_seconds: int
    aspect_ratio: AspectRatio
    user_prompt: str = ""
    source_image_url: str = ""
    segments: list[Segment] = Field(default_factory=list)
    final_video: Optional[ArtifactRef] = None
    error: Optional[str] = None

    def mark_completed(self, final_video: ArtifactRef):
        self.status = RunStatus.COMPLETED
        self.final_video = final_video
        self.error = None
        self.completed_at = _utcnow()

    def mark_failed(self, error: str):
        self.status = RunStatus.FAILED
        self.error = error or "Unknown pipeline error"
        self.completed_at = _utcnow()

    def to_record(self) -> dict:
        """Flat document written to the run-record store at terminal state."""
        finished = self.completed_at or _utcnow()
        return {
            "id": self.run_id,
            "user_id": self.owner_id,
            "status": self.status.value,
            "user_prompt": self.user_prompt,
            "image_url": self.source_image_url,
            "aspect_ratio": self.aspect_ratio,
            "duration": self.requested_duration_seconds,
            "number_of_videos": len(self.segments),
            "segment_urls": [s.video.url for s in self.segments if s.video],
            "final_video_url": self.final_video.url if self.final_video else None,
            "error": self.error,
            "processing_time_ms": int((finished - self.created_at).total_seconds() * 1000),
            "created_at": self.created_at.isoformat(),
            "completed_at": finished.isoformat(),
        }


def segment_count_for(total_duration_seconds: int) -> int:
    """Number of fixed-length segments needed to cover the requested duration."""
    return math.ceil(total_duration_seconds / SEGMENT_SECONDS)


# ── API Request / Response Models ────────────────────────────────────────────

class VideoCreationRequest(WireModel):
    source_image_url: str = Field(..., min_length=1, pattern=r"^https?://")
    user_prompt: str
    total_duration_seconds: int = Field(
        SEGMENT_SECONDS, ge=MIN_DURATION_SECONDS, le=MAX_DURATION_SECONDS
    )
    aspect_ratio: AspectRatio = "16:9"
    owner_id: str = Field(..., min_length=1)


class SegmentSummary(WireModel):
    index: int
    video_url: str
    duration_seconds: int = SEGMENT_SECONDS


class PipelineResult(WireModel):
    success: bool
    run_id: str
    final_video_url: Optional[str] = None
    segments: list[SegmentSummary] = Field(default_factory=list)
    error: Optional[str] = None


class PipelineStatusResponse(WireModel):
    run_id: str
    stage: PipelineStage
    current_step: str = ""
    progress_pct: int = 0
    result_url: Optional[str] = None
    error: Optional[str] = None


class FrameExtractionRequest(WireModel):
    video_url: str
    frame_position: FramePosition = "last"
    output_format: Literal["png", "jpg", "jpeg"] = "png"


class AssemblyRequest(WireModel):
    inputs: list[str] = Field(..., min_length=1)
    mode: AssemblyMode = AssemblyMode.CUT
    crossfade_duration_seconds: Optional[float] = Field(None, gt=0)
    aspect_ratio: AspectRatio = "16:9"
