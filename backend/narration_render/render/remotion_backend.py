"""Render through the Remotion CLI (``npx remotion render``)."""

import json
import logging
from pathlib import Path

from narration_render.config import Settings, get_settings
from narration_render.render.process import run_render_command
from narration_render.schemas.render import Timeline

logger = logging.getLogger(__name__)

PROPS_FILENAME = "props.json"


class RemotionRenderBackend:
    """Hand the timeline to the Remotion composition as input props.

    The staging directory doubles as Remotion's public directory, so every
    relative ``*Src`` in the timeline resolves against it.
    """

    def __init__(
        self,
        command: str = "npx",
        entry_point: str = "remotion/src/index.tsx",
        composition: str = "AutoVideo",
        concurrency: int = 2,
        timeout_seconds: float = 600.0,
    ):
        self.command = command
        self.entry_point = entry_point
        self.composition = composition
        self.concurrency = max(1, concurrency)
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RemotionRenderBackend":
        settings = settings or get_settings()
        return cls(
            command=settings.remotion_command,
            entry_point=settings.remotion_entry_point,
            composition=settings.remotion_composition,
            concurrency=settings.remotion_concurrency,
            timeout_seconds=settings.render_timeout_seconds,
        )

    def write_props(self, timeline: Timeline, staging_dir: Path) -> Path:
        props_path = staging_dir / PROPS_FILENAME
        props = {"timeline": timeline.model_dump(mode="json", by_alias=True, exclude_none=True)}
        props_path.write_text(json.dumps(props), encoding="utf-8")
        return props_path

    def build_command(self, props_path: Path, staging_dir: Path, output_path: Path) -> list[str]:
        return [
            self.command,
            "remotion",
            "render",
            self.entry_point,
            self.composition,
            str(output_path),
            f"--props={props_path}",
            f"--public-dir={staging_dir}",
            "--codec=h264",
            f"--concurrency={self.concurrency}",
        ]

    async def render(self, timeline: Timeline, staging_dir: Path, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        props_path = self.write_props(timeline, staging_dir)
        logger.info(
            "[REMOTION] Rendering %d scenes (%d frames @ %dfps) to %s",
            len(timeline.scenes),
            timeline.duration_in_frames,
            timeline.fps,
            output_path,
        )
        await run_render_command(
            self.build_command(props_path, staging_dir, output_path),
            self.timeout_seconds,
            tag="REMOTION",
        )
