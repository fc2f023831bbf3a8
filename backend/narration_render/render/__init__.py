from pathlib import Path
from typing import Protocol

from narration_render.config import Settings, get_settings
from narration_render.render.ffmpeg_backend import FfmpegRenderBackend
from narration_render.render.remotion_backend import RemotionRenderBackend
from narration_render.schemas.render import Timeline


class RenderBackend(Protocol):
    async def render(self, timeline: Timeline, staging_dir: Path, output_path: Path) -> None:
        """Render ``timeline`` to ``output_path``; raises RenderBackendError on failure."""
        ...


def get_render_backend(settings: Settings | None = None) -> RenderBackend:
    settings = settings or get_settings()
    if settings.render_provider == "ffmpeg":
        return FfmpegRenderBackend.from_settings(settings)
    return RemotionRenderBackend.from_settings(settings)


__all__ = [
    "RenderBackend",
    "RemotionRenderBackend",
    "FfmpegRenderBackend",
    "get_render_backend",
]
