from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads snake_case or camelCase and writes camelCase."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# =============================================================================
# Job status
# =============================================================================


class RenderJobStatus(str, Enum):
    """Render job lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RenderJobStatus.COMPLETED, RenderJobStatus.FAILED)


# =============================================================================
# Sentences and timings
# =============================================================================


class SentenceInput(CamelModel):
    """One narration sentence; its index is its position in the script."""

    text: str = ""
    is_suspense: bool = False
    media_type: Literal["image", "video"] = "image"
    video_url: str | None = None

    @field_validator("text", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class SentenceTiming(CamelModel):
    """Time interval covered by one sentence."""

    index: int = Field(ge=0)
    text: str
    start_seconds: float
    end_seconds: float

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


# =============================================================================
# Timeline
# =============================================================================


class Scene(CamelModel):
    """One timed visual unit of the render timeline."""

    index: int = Field(ge=0)
    text: str
    image_src: str | None = None
    video_src: str | None = None
    start_frame: int = Field(ge=0)
    duration_frames: int = Field(ge=1)
    use_glitch: bool = False
    is_suspense: bool = False


class TimelineAssets(CamelModel):
    """Optional auxiliary media the composition may use."""

    background_music_src: str | None = None
    background_music_volume: float | None = None
    glitch_sfx_src: str | None = None
    subscribe_video_src: str | None = None


class Timeline(CamelModel):
    """Frame-accurate render plan handed to the render backend."""

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    fps: int = Field(gt=0)
    duration_in_frames: int = Field(ge=1)
    audio_src: str
    scenes: list[Scene]
    assets: TimelineAssets = Field(default_factory=TimelineAssets)


class RenderOptions(CamelModel):
    """Output options chosen by the client."""

    script_length: str = ""
    is_short: bool | None = None
    use_lower_fps: bool = False
    use_lower_resolution: bool = False
    enable_glitch_transitions: bool = False
    background_music_src: str | None = None
    background_music_volume: float | None = Field(default=None, ge=0.0, le=1.0)

    @property
    def resolved_is_short(self) -> bool:
        if self.is_short is not None:
            return self.is_short
        return self.script_length.strip().lower().startswith("30")


# =============================================================================
# Job records and API responses
# =============================================================================


class RenderJobRequest(BaseModel):
    """Everything the background task needs to process one job."""

    audio_path: str
    sentences: list[SentenceInput]
    image_paths: list[str] = Field(default_factory=list)
    audio_duration_seconds: float | None = None
    options: RenderOptions = Field(default_factory=RenderOptions)


class RenderJobRecord(BaseModel):
    """Snapshot of a render job as held by the job store."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    status: RenderJobStatus = RenderJobStatus.QUEUED
    error: str | None = None
    audio_path: str
    video_path: str | None = None
    timeline: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class RenderJobCreatedResponse(BaseModel):
    id: str
    status: RenderJobStatus


class RenderJobResponse(BaseModel):
    """Polling payload for GET /jobs/{id}."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: RenderJobStatus
    error: str | None = None
    video_url: str | None = Field(default=None, alias="videoUrl")
    timeline: dict[str, Any] | None = None

    @classmethod
    def from_record(cls, job: RenderJobRecord) -> "RenderJobResponse":
        return cls(
            id=job.id,
            status=job.status,
            error=job.error,
            video_url=job.video_path if job.status == RenderJobStatus.COMPLETED else None,
            timeline=job.timeline,
        )
