"""
Per-job staging directory for the renderer.

Layout of ``<render_staging_root>/<job_id>/``:
    audio<ext>          narration track
    images/<name>       per-sentence images, in sentence order
    subscribe.mp4       bundled call-to-action clip (optional)
    background.mp3      bundled background music (optional)
    glitch-fx.mp3       bundled glitch sound effect (optional)

All ``*_src`` references returned are relative to the staging directory,
which the renderer uses as its public directory.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from narration_render.config import Settings, get_settings
from narration_render.constants.render import (
    BACKGROUND_MUSIC_FILENAME,
    GLITCH_SFX_FILENAME,
    NO_BACKGROUND_MUSIC,
    SUBSCRIBE_VIDEO_FILENAME,
)
from narration_render.exceptions import StagingError
from narration_render.schemas.render import RenderOptions, TimelineAssets

logger = logging.getLogger(__name__)

IMAGES_SUBDIR = "images"
DEFAULT_AUDIO_EXTENSION = ".mp3"


@dataclass
class StagedAssets:
    """Staged files for one job, addressed relative to ``staging_dir``."""

    staging_dir: Path
    audio_src: str
    image_srcs: list[str] = field(default_factory=list)
    subscribe_video_src: str | None = None
    assets: TimelineAssets = field(default_factory=TimelineAssets)

    def resolve(self, src: str) -> Path:
        """Absolute path of a staged reference."""
        return self.staging_dir / src


def _copy_bundled_asset(bundled_dir: Path, filename: str, staging_dir: Path) -> str | None:
    source = bundled_dir / filename
    if not source.is_file():
        return None
    try:
        shutil.copyfile(source, staging_dir / filename)
    except OSError as e:
        logger.warning("[STAGING] Skipping bundled asset %s: %s", filename, e)
        return None
    return filename


def stage_job_assets(
    job_id: str,
    audio_path: str,
    image_paths: Sequence[str],
    settings: Settings | None = None,
) -> StagedAssets:
    """
    Copy the job's media into its staging directory.

    Raises:
        StagingError: If the audio or an image cannot be copied
    """
    settings = settings or get_settings()
    source_audio = Path(audio_path)
    if not source_audio.is_file():
        raise StagingError(f"Audio file not found: {audio_path}")

    staging_dir = Path(settings.render_staging_root) / job_id
    images_dir = staging_dir / IMAGES_SUBDIR
    try:
        images_dir.mkdir(parents=True, exist_ok=True)

        audio_src = f"audio{source_audio.suffix or DEFAULT_AUDIO_EXTENSION}"
        shutil.copyfile(source_audio, staging_dir / audio_src)

        image_srcs: list[str] = []
        used_names: set[str] = set()
        for i, image_path in enumerate(image_paths):
            name = Path(image_path).name
            if name in used_names:
                name = f"{i}-{name}"
            used_names.add(name)
            shutil.copyfile(image_path, images_dir / name)
            image_srcs.append(f"{IMAGES_SUBDIR}/{name}")
    except OSError as e:
        raise StagingError(f"Failed to stage assets for job {job_id}: {e}") from e

    bundled_dir = Path(settings.bundled_assets_dir)
    subscribe_video_src = _copy_bundled_asset(bundled_dir, SUBSCRIBE_VIDEO_FILENAME, staging_dir)
    assets = TimelineAssets(
        background_music_src=_copy_bundled_asset(bundled_dir, BACKGROUND_MUSIC_FILENAME, staging_dir),
        glitch_sfx_src=_copy_bundled_asset(bundled_dir, GLITCH_SFX_FILENAME, staging_dir),
        subscribe_video_src=subscribe_video_src,
    )

    logger.info(
        "[STAGING] Job %s staged at %s: audio=%s images=%d subscribe=%s music=%s glitch=%s",
        job_id,
        staging_dir,
        audio_src,
        len(image_srcs),
        subscribe_video_src is not None,
        assets.background_music_src is not None,
        assets.glitch_sfx_src is not None,
    )
    return StagedAssets(
        staging_dir=staging_dir,
        audio_src=audio_src,
        image_srcs=image_srcs,
        subscribe_video_src=subscribe_video_src,
        assets=assets,
    )


def resolve_timeline_assets(staged: StagedAssets, options: RenderOptions) -> TimelineAssets:
    """Apply the client's background music choice on top of the bundled assets."""
    assets = staged.assets.model_copy()
    music_src = (options.background_music_src or "").strip()
    if music_src == NO_BACKGROUND_MUSIC:
        assets.background_music_src = None
    elif music_src:
        assets.background_music_src = music_src
    if options.background_music_volume is not None:
        assets.background_music_volume = options.background_music_volume
    return assets


def cleanup_staging(staging_dir: str | Path) -> None:
    """Remove a job's staging directory."""
    path = Path(staging_dir)
    if not path.exists():
        return
    shutil.rmtree(path)
    logger.info("[STAGING] Removed %s", path)
