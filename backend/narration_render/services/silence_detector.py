"""Voice-activity detection using the FFmpeg silencedetect filter."""

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import Protocol

from narration_render.config import Settings, get_settings
from narration_render.exceptions import MediaProbeError
from narration_render.utils.media_info import get_media_duration_seconds_async

logger = logging.getLogger(__name__)

SILENCE_START_PATTERN = re.compile(r"silence_start:\s*(-?[0-9.]+(?:e-?\d+)?)")
SILENCE_END_PATTERN = re.compile(r"silence_end:\s*(-?[0-9.]+(?:e-?\d+)?)")


@dataclass(frozen=True)
class SilenceRegion:
    """A detected silence region in seconds."""

    start: float
    end: float


@dataclass(frozen=True)
class AudibleSpan:
    """A non-silent stretch of audio in seconds."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


class SilenceDetector(Protocol):
    async def detect_audible(self, audio_path: str) -> list[AudibleSpan]:
        """Return audible spans sorted by start time."""
        ...


def parse_silencedetect_output(output: str, duration_seconds: float | None = None) -> list[SilenceRegion]:
    """Parse ffmpeg silencedetect log lines into silence regions.

    A silence that starts but never ends closes at ``duration_seconds``
    (when known).
    """
    silences: list[SilenceRegion] = []
    current_start: float | None = None

    for line in output.splitlines():
        start_match = SILENCE_START_PATTERN.search(line)
        if start_match:
            current_start = max(0.0, float(start_match.group(1)))
            continue
        end_match = SILENCE_END_PATTERN.search(line)
        if end_match and current_start is not None:
            end = float(end_match.group(1))
            if end > current_start:
                silences.append(SilenceRegion(start=current_start, end=end))
            current_start = None

    if current_start is not None and duration_seconds is not None and duration_seconds > current_start:
        silences.append(SilenceRegion(start=current_start, end=duration_seconds))

    return silences


def invert_silences(silences: list[SilenceRegion], duration_seconds: float) -> list[AudibleSpan]:
    """Complement of the silence regions within [0, duration]."""
    if not math.isfinite(duration_seconds) or duration_seconds <= 0:
        return []

    spans: list[AudibleSpan] = []
    cursor = 0.0
    for silence in sorted(silences, key=lambda s: s.start):
        start = min(max(silence.start, 0.0), duration_seconds)
        end = min(max(silence.end, 0.0), duration_seconds)
        if start > cursor:
            spans.append(AudibleSpan(start=cursor, end=start))
        cursor = max(cursor, end)

    if cursor < duration_seconds:
        spans.append(AudibleSpan(start=cursor, end=duration_seconds))
    return spans


class FfmpegSilenceDetector:
    """Detect audible spans by running ffmpeg's silencedetect filter."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        noise_threshold_db: float = -35.0,
        min_silence_seconds: float = 0.2,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.noise_threshold_db = noise_threshold_db
        self.min_silence_seconds = min_silence_seconds

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "FfmpegSilenceDetector | None":
        settings = settings or get_settings()
        if not settings.enable_silence_detection:
            return None
        return cls(
            ffmpeg_path=settings.ffmpeg_path,
            ffprobe_path=settings.ffprobe_path,
            noise_threshold_db=settings.silence_noise_threshold_db,
            min_silence_seconds=settings.silence_min_duration_seconds,
        )

    def build_command(self, audio_path: str) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostats",
            "-i", audio_path,
            "-af", f"silencedetect=noise={self.noise_threshold_db}dB:d={self.min_silence_seconds}",
            "-f", "null", "-",
        ]

    async def detect_audible(self, audio_path: str) -> list[AudibleSpan]:
        duration = await get_media_duration_seconds_async(audio_path, self.ffprobe_path)

        process = await asyncio.create_subprocess_exec(
            *self.build_command(audio_path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        output = stderr.decode(errors="replace")
        if process.returncode != 0:
            raise MediaProbeError(f"silencedetect failed: {output[-500:]}")

        silences = parse_silencedetect_output(output, duration)
        spans = invert_silences(silences, duration)
        logger.info(
            "[SILENCE] %s: duration=%.2fs silences=%d audible=%d",
            audio_path,
            duration,
            len(silences),
            len(spans),
        )
        return spans
