from narration_render.schemas.render import (
    RenderJobCreatedResponse,
    RenderJobRecord,
    RenderJobRequest,
    RenderJobResponse,
    RenderJobStatus,
    RenderOptions,
    Scene,
    SentenceInput,
    SentenceTiming,
    Timeline,
    TimelineAssets,
)

__all__ = [
    "SentenceInput",
    "SentenceTiming",
    "Scene",
    "Timeline",
    "TimelineAssets",
    "RenderOptions",
    "RenderJobStatus",
    "RenderJobRequest",
    "RenderJobRecord",
    "RenderJobCreatedResponse",
    "RenderJobResponse",
]
