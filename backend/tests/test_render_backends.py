"""Tests for the Remotion and FFmpeg render backends and their subprocess runner."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from narration_render.exceptions import RenderBackendError
from narration_render.render import FfmpegRenderBackend, RemotionRenderBackend, get_render_backend
from narration_render.render.ffmpeg_backend import scene_duration_frames
from narration_render.render.process import run_render_command
from narration_render.schemas.render import Scene, Timeline, TimelineAssets


def _timeline(assets: TimelineAssets | None = None) -> Timeline:
    return Timeline(
        width=1920,
        height=1080,
        fps=30,
        duration_in_frames=90,
        audio_src="audio.mp3",
        scenes=[
            Scene(index=0, text="Image", image_src="images/a.png", start_frame=0, duration_frames=30),
            Scene(index=1, text="Clip", video_src="subscribe.mp4", start_frame=30, duration_frames=30),
            Scene(index=2, text="Text only", start_frame=60, duration_frames=30),
        ],
        assets=assets or TimelineAssets(),
    )


def _process(returncode: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> MagicMock:
    process = MagicMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.wait = AsyncMock(return_value=returncode)
    return process


# =============================================================================
# Backend selection
# =============================================================================


class TestGetRenderBackend:
    def test_remotion_is_default(self, test_settings):
        backend = get_render_backend(test_settings)
        assert isinstance(backend, RemotionRenderBackend)
        assert backend.composition == "AutoVideo"

    def test_ffmpeg(self, test_settings):
        settings = test_settings.model_copy(update={"render_provider": "ffmpeg", "ffmpeg_path": "/opt/ffmpeg"})
        backend = get_render_backend(settings)
        assert isinstance(backend, FfmpegRenderBackend)
        assert backend.ffmpeg_path == "/opt/ffmpeg"


# =============================================================================
# Remotion
# =============================================================================


class TestRemotionRenderBackend:
    def test_write_props(self, tmp_path):
        props_path = RemotionRenderBackend().write_props(_timeline(), tmp_path)

        props = json.loads(props_path.read_text(encoding="utf-8"))
        timeline = props["timeline"]
        assert timeline["durationInFrames"] == 90
        assert timeline["scenes"][0]["imageSrc"] == "images/a.png"
        # None fields are left out for the composition's defaults
        assert "videoSrc" not in timeline["scenes"][0]

    def test_build_command(self, tmp_path):
        backend = RemotionRenderBackend(concurrency=4, timeout_seconds=90)

        cmd = backend.build_command(tmp_path / "props.json", tmp_path, tmp_path / "out.mp4")

        assert cmd[:6] == ["npx", "remotion", "render", "remotion/src/index.tsx", "AutoVideo", str(tmp_path / "out.mp4")]
        assert f"--props={tmp_path / 'props.json'}" in cmd
        assert f"--public-dir={tmp_path}" in cmd
        assert "--concurrency=4" in cmd
        # The whole-render timeout is enforced around the subprocess, not by Remotion
        assert not any(arg.startswith("--timeout") for arg in cmd)

    @pytest.mark.asyncio
    async def test_render_runs_command(self, tmp_path):
        backend = RemotionRenderBackend()
        with patch("narration_render.render.remotion_backend.run_render_command", new=AsyncMock()) as mock_run:
            await backend.render(_timeline(), tmp_path, tmp_path / "videos" / "job.mp4")

        assert (tmp_path / "props.json").exists()
        assert (tmp_path / "videos").is_dir()
        assert mock_run.await_args.kwargs["tag"] == "REMOTION"
        assert mock_run.await_args.args[1] == 600.0


# =============================================================================
# FFmpeg
# =============================================================================


class TestFfmpegRenderBackend:
    def test_scene_duration_follows_next_start(self):
        scenes = [
            Scene(index=0, text="a", start_frame=0, duration_frames=40),
            Scene(index=1, text="b", start_frame=30, duration_frames=31),
        ]
        assert scene_duration_frames(scenes, 0) == 30
        assert scene_duration_frames(scenes, 1) == 31

    def test_build_command_inputs(self, tmp_path):
        cmd = FfmpegRenderBackend().build_command(_timeline(), tmp_path, tmp_path / "out.mp4")

        assert cmd[:2] == ["ffmpeg", "-y"]
        assert str(tmp_path / "images" / "a.png") in cmd
        assert str(tmp_path / "subscribe.mp4") in cmd
        assert "color=c=black:s=1920x1080:r=30" in cmd
        assert str(tmp_path / "audio.mp3") in cmd
        assert cmd[-1] == str(tmp_path / "out.mp4")

        filter_graph = cmd[cmd.index("-filter_complex") + 1]
        assert "[v0][v1][v2]concat=n=3:v=1:a=0[vout]" in filter_graph
        # Narration is the input after the three scenes
        assert cmd[cmd.index("[vout]") + 2] == "3:a"
        # Output is cut at the timeline length
        assert cmd[cmd.index("-movflags") - 1] == "3.000000"

    def test_build_command_with_background_music(self, tmp_path):
        assets = TimelineAssets(background_music_src="background.mp3", background_music_volume=0.25)

        cmd = FfmpegRenderBackend().build_command(_timeline(assets), tmp_path, tmp_path / "out.mp4")

        filter_graph = cmd[cmd.index("-filter_complex") + 1]
        assert "[4:a]volume=0.25[bg]" in filter_graph
        assert "[3:a][bg]amix=inputs=2" in filter_graph
        assert cmd[cmd.index("[vout]") + 2] == "[aout]"

    def test_default_music_volume(self, tmp_path):
        assets = TimelineAssets(background_music_src="https://cdn.test/music.mp3")

        cmd = FfmpegRenderBackend().build_command(_timeline(assets), tmp_path, tmp_path / "out.mp4")

        assert "https://cdn.test/music.mp3" in cmd
        assert "volume=0.1[bg]" in cmd[cmd.index("-filter_complex") + 1]


# =============================================================================
# Subprocess runner
# =============================================================================


class TestRunRenderCommand:
    @pytest.mark.asyncio
    async def test_success(self):
        with patch(
            "narration_render.render.process.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=_process()),
        ):
            await run_render_command(["ffmpeg", "-version"], timeout_seconds=5)

    @pytest.mark.asyncio
    async def test_failure_surfaces_stderr(self):
        process = _process(returncode=1, stderr=b"Error: composition AutoVideo not found")
        with patch(
            "narration_render.render.process.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(RenderBackendError) as exc_info:
                await run_render_command(["npx", "remotion"], timeout_seconds=5)

        assert exc_info.value.message == "Error: composition AutoVideo not found"

    @pytest.mark.asyncio
    async def test_failure_without_output(self):
        with patch(
            "narration_render.render.process.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=_process(returncode=2)),
        ):
            with pytest.raises(RenderBackendError, match="npx exited with code 2"):
                await run_render_command(["npx", "remotion"], timeout_seconds=5)

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        with patch(
            "narration_render.render.process.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError("npx")),
        ):
            with pytest.raises(RenderBackendError, match="Failed to start npx"):
                await run_render_command(["npx", "remotion"], timeout_seconds=5)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        process = _process()

        async def hang():
            await asyncio.sleep(10)

        process.communicate = hang
        with patch(
            "narration_render.render.process.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(RenderBackendError, match="timed out after 0.05 seconds"):
                await run_render_command(["ffmpeg"], timeout_seconds=0.05)

        process.kill.assert_called_once()
