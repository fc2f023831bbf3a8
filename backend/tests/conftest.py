"""
Pytest fixtures for narration render backend tests.

Everything here is in-memory or under tmp_path: no network, no ffmpeg, no
Remotion. Collaborators are replaced with small fakes whose behaviour can be
adjusted per test through plain attributes.
"""

import asyncio
from pathlib import Path

import pytest

from narration_render.config import Settings
from narration_render.schemas.render import SentenceInput, SentenceTiming, Timeline
from narration_render.services.silence_detector import AudibleSpan
from narration_render.services.transcription_service import TranscriptSegment

# Minimal RIFF/WAVE header; enough for container sniffing
WAV_HEADER = b"RIFF\x24\x00\x00\x00WAVEfmt \x10\x00\x00\x00\x01\x00\x01\x00"
MP3_HEADER = b"ID3\x04\x00\x00\x00\x00\x00\x00"


class FakeTranscriptionClient:
    """Returns ``segments`` or raises ``error``; records every call."""

    def __init__(self, segments: list[TranscriptSegment] | None = None, error: Exception | None = None):
        self.segments = segments or []
        self.error = error
        self.calls: list[str] = []

    async def transcribe(self, audio_path: str) -> list[TranscriptSegment]:
        self.calls.append(audio_path)
        if self.error is not None:
            raise self.error
        return list(self.segments)


class FakeSilenceDetector:
    def __init__(self, spans: list[AudibleSpan] | None = None, error: Exception | None = None):
        self.spans = spans or []
        self.error = error
        self.calls: list[str] = []

    async def detect_audible(self, audio_path: str) -> list[AudibleSpan]:
        self.calls.append(audio_path)
        if self.error is not None:
            raise self.error
        return list(self.spans)


class FakeRenderBackend:
    """Writes a placeholder MP4, or raises ``error``.

    Set ``release`` to an asyncio.Event to hold the render until the test
    sets it; ``started`` is set as soon as render() is entered.
    """

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[Timeline, Path, Path]] = []
        self.started: asyncio.Event | None = None
        self.release: asyncio.Event | None = None

    async def render(self, timeline: Timeline, staging_dir: Path, output_path: Path) -> None:
        self.calls.append((timeline, staging_dir, output_path))
        if self.started is not None:
            self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"\x00\x00\x00\x18ftypmp42")


def assert_contiguous_partition(timings: list[SentenceTiming], total: float) -> None:
    """Sentence timings must tile [0, total] with no gaps or overlaps."""
    assert timings[0].start_seconds == 0
    assert timings[-1].end_seconds == total
    for i, timing in enumerate(timings):
        assert timing.index == i
        assert timing.start_seconds < timing.end_seconds
        if i + 1 < len(timings):
            assert timing.end_seconds == timings[i + 1].start_seconds


def make_sentences(*texts: str) -> list[SentenceInput]:
    return [SentenceInput(text=text) for text in texts]


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment, with every path under tmp_path."""
    return Settings(
        _env_file=None,
        openai_api_key="",
        enable_silence_detection=False,
        upload_dir=str(tmp_path / "uploads"),
        render_staging_root=str(tmp_path / "render-public"),
        render_output_dir=str(tmp_path / "videos"),
        bundled_assets_dir=str(tmp_path / "bundled"),
        public_base_url="http://render.test",
        render_stale_timeout_seconds=1800,
    )


@pytest.fixture
def audio_file(tmp_path: Path) -> Path:
    path = tmp_path / "input" / "voice.wav"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(WAV_HEADER + b"\x00" * 64)
    return path


@pytest.fixture
def image_files(tmp_path: Path) -> list[Path]:
    paths = []
    for name in ("first.png", "second.png", "third.png"):
        path = tmp_path / "input" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x89PNG\r\n\x1a\n" + name.encode())
        paths.append(path)
    return paths


@pytest.fixture
def fake_transcriber() -> FakeTranscriptionClient:
    return FakeTranscriptionClient()


@pytest.fixture
def fake_silence_detector() -> FakeSilenceDetector:
    return FakeSilenceDetector()


@pytest.fixture
def fake_render_backend() -> FakeRenderBackend:
    return FakeRenderBackend()
