"""
Slideshow renderer built directly on FFmpeg.

Each scene becomes one video input (looped still image, looped clip, or a
black frame for text-only scenes), normalized to the timeline's size and
frame rate, then all scenes are concatenated and muxed with the narration.
Background music, when present, is looped under the narration.
"""

import logging
from pathlib import Path

from narration_render.config import Settings, get_settings
from narration_render.render.process import run_render_command
from narration_render.schemas.render import Scene, Timeline

logger = logging.getLogger(__name__)

DEFAULT_BACKGROUND_MUSIC_VOLUME = 0.1


def scene_duration_frames(scenes: list[Scene], index: int) -> int:
    """Frames a scene occupies in the concatenated output.

    Scenes butt up against the next scene's start so the concatenation is
    exactly ``duration_in_frames`` long.
    """
    scene = scenes[index]
    if index + 1 < len(scenes):
        return max(1, scenes[index + 1].start_frame - scene.start_frame)
    return scene.duration_frames


def resolve_src(src: str, staging_dir: Path) -> str:
    if src.startswith(("http://", "https://")):
        return src
    return str(staging_dir / src)


class FfmpegRenderBackend:
    """Render a timeline to H.264/AAC MP4 with a single FFmpeg invocation."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        video_bitrate: str = "8M",
        audio_bitrate: str = "192k",
        timeout_seconds: float = 600.0,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.video_bitrate = video_bitrate
        self.audio_bitrate = audio_bitrate
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "FfmpegRenderBackend":
        settings = settings or get_settings()
        return cls(
            ffmpeg_path=settings.ffmpeg_path,
            video_bitrate=settings.render_video_bitrate,
            audio_bitrate=settings.render_audio_bitrate,
            timeout_seconds=settings.render_timeout_seconds,
        )

    def _scene_input(self, scene: Scene, seconds: float, timeline: Timeline, staging_dir: Path) -> list[str]:
        duration = f"{seconds:.6f}"
        if scene.video_src:
            return ["-stream_loop", "-1", "-t", duration, "-i", resolve_src(scene.video_src, staging_dir)]
        if scene.image_src:
            return [
                "-loop", "1",
                "-framerate", str(timeline.fps),
                "-t", duration,
                "-i", resolve_src(scene.image_src, staging_dir),
            ]
        return [
            "-f", "lavfi",
            "-t", duration,
            "-i", f"color=c=black:s={timeline.width}x{timeline.height}:r={timeline.fps}",
        ]

    def build_command(self, timeline: Timeline, staging_dir: Path, output_path: Path) -> list[str]:
        """Build the full FFmpeg command line for a timeline."""
        width, height, fps = timeline.width, timeline.height, timeline.fps
        inputs: list[str] = []
        filters: list[str] = []
        concat_labels: list[str] = []

        for i, scene in enumerate(timeline.scenes):
            seconds = scene_duration_frames(timeline.scenes, i) / fps
            inputs.extend(self._scene_input(scene, seconds, timeline, staging_dir))
            filters.append(
                f"[{i}:v]scale={width}:{height}:force_original_aspect_ratio=decrease,"
                f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={fps},"
                f"trim=duration={seconds:.6f},setpts=PTS-STARTPTS[v{i}]"
            )
            concat_labels.append(f"[v{i}]")

        filters.append(f"{''.join(concat_labels)}concat=n={len(timeline.scenes)}:v=1:a=0[vout]")

        narration_index = len(timeline.scenes)
        inputs.extend(["-i", resolve_src(timeline.audio_src, staging_dir)])
        audio_label = f"{narration_index}:a"

        music_src = timeline.assets.background_music_src
        if music_src:
            music_index = narration_index + 1
            volume = timeline.assets.background_music_volume
            if volume is None:
                volume = DEFAULT_BACKGROUND_MUSIC_VOLUME
            inputs.extend(["-stream_loop", "-1", "-i", resolve_src(music_src, staging_dir)])
            filters.append(f"[{music_index}:a]volume={volume}[bg]")
            filters.append(f"[{narration_index}:a][bg]amix=inputs=2:duration=first:dropout_transition=0[aout]")
            audio_label = "[aout]"

        total_seconds = timeline.duration_in_frames / fps
        return [
            self.ffmpeg_path,
            "-y",
            *inputs,
            "-filter_complex", ";".join(filters),
            "-map", "[vout]",
            "-map", audio_label,
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            "-r", str(fps),
            "-b:v", self.video_bitrate,
            "-c:a", "aac",
            "-b:a", self.audio_bitrate,
            "-t", f"{total_seconds:.6f}",
            "-movflags", "+faststart",
            str(output_path),
        ]

    async def render(self, timeline: Timeline, staging_dir: Path, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(
            "[FFMPEG_RENDER] Rendering %d scenes (%d frames @ %dfps) to %s",
            len(timeline.scenes),
            timeline.duration_in_frames,
            timeline.fps,
            output_path,
        )
        await run_render_command(
            self.build_command(timeline, staging_dir, output_path),
            self.timeout_seconds,
            tag="FFMPEG_RENDER",
        )
