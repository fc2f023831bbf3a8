"""
Transcription client using the OpenAI audio transcription API.

Features:
- Ordered model strategies (primary model, then one alternate)
- Audio container sniffing / WAV transcode before upload
- One explicit response parser that fails closed to an empty segment list
"""

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

import httpx

from narration_render.config import Settings, get_settings
from narration_render.exceptions import TranscriptionEmptyError, TranscriptionUnavailableError
from narration_render.utils.audio_format import (
    PreparedAudio,
    ensure_transcription_compatible_audio,
    transcode_to_wav,
)

logger = logging.getLogger(__name__)

# Error text the API returns for mislabeled or undecodable uploads
UNSUPPORTED_AUDIO_PATTERN = re.compile(r"corrupt|unsupported|invalid|cannot decode|decode", re.IGNORECASE)

AUDIO_MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".aac": "audio/aac",
}


@dataclass(frozen=True)
class TranscriptSegment:
    """A coarse timed chunk of transcribed text."""

    start: float
    end: float
    text: str


@dataclass
class TranscriptionAttempt:
    """Outcome of one transcription strategy."""

    model: str
    segments: list[TranscriptSegment]
    error: str | None = None

    @property
    def ok(self) -> bool:
        return bool(self.segments)


class TranscriptionClient(Protocol):
    async def transcribe(self, audio_path: str) -> list[TranscriptSegment]:
        """Return timed segments, or raise when none are available."""
        ...


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def parse_transcription_segments(payload: Any) -> list[TranscriptSegment]:
    """Parse a transcription response into validated segments.

    Only the ``{"segments": [{"start", "end", "text"}, ...]}`` shape is
    recognised. Segments with non-numeric bounds, a non-positive span or
    blank text are dropped; any other shape yields an empty list.
    """
    if not isinstance(payload, dict):
        return []
    raw_segments = payload.get("segments")
    if not isinstance(raw_segments, list):
        return []

    segments: list[TranscriptSegment] = []
    for raw in raw_segments:
        if not isinstance(raw, dict):
            continue
        start = _to_float(raw.get("start"))
        end = _to_float(raw.get("end"))
        if start is None or end is None or end <= start:
            continue
        text = str(raw.get("text") or "").strip()
        if not text:
            continue
        segments.append(TranscriptSegment(start=start, end=end, text=text))
    return segments


def response_format_for_model(model: str) -> str:
    """gpt-4o transcription models only support json/text; Whisper returns timestamps."""
    return "json" if model.startswith("gpt-4o") else "verbose_json"


class OpenAITranscriptionClient:
    """Transcribe audio through the OpenAI REST API with model fallback."""

    def __init__(
        self,
        api_key: str,
        models: Sequence[str],
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 120.0,
        ffmpeg_path: str = "ffmpeg",
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the transcription client.

        Args:
            api_key: OpenAI API key
            models: Ordered model names to try (primary first)
            base_url: API base URL
            timeout_seconds: Per-request timeout
            ffmpeg_path: ffmpeg binary used for WAV transcoding
            http_client: Optional pre-built client (tests inject a MockTransport)
        """
        self.api_key = api_key
        self.models = list(models)
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.ffmpeg_path = ffmpeg_path
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "OpenAITranscriptionClient | None":
        """Build a client, or None when no API key is configured."""
        settings = settings or get_settings()
        if not settings.openai_api_key:
            return None
        return cls(
            api_key=settings.openai_api_key,
            models=settings.transcribe_models,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.transcribe_timeout_seconds,
            ffmpeg_path=settings.ffmpeg_path,
        )

    async def transcribe(self, audio_path: str) -> list[TranscriptSegment]:
        """Try each model strategy in order until one yields segments.

        Raises:
            TranscriptionUnavailableError: no API key or no models configured
            TranscriptionEmptyError: every strategy failed or returned nothing
        """
        if not self.api_key or not self.models:
            raise TranscriptionUnavailableError()
        if not Path(audio_path).is_file() or Path(audio_path).stat().st_size == 0:
            raise TranscriptionEmptyError(f"Audio file missing or empty: {audio_path}")

        prepared = await ensure_transcription_compatible_audio(audio_path, self.ffmpeg_path)
        attempts: list[TranscriptionAttempt] = []
        try:
            for model in self.models:
                attempt = await self._attempt(model, prepared)
                attempts.append(attempt)
                logger.info(
                    "[TRANSCRIBE] model=%s segments=%d error=%s",
                    model,
                    len(attempt.segments),
                    attempt.error,
                )
                if attempt.ok:
                    return attempt.segments
                logger.warning("[TRANSCRIBE] Model %s returned no usable segments", model)
        finally:
            prepared.remove_temp_files()

        summary = "; ".join(f"{a.model}: {a.error or 'no segments'}" for a in attempts)
        raise TranscriptionEmptyError(f"Transcription returned no usable segments ({summary})")

    async def _attempt(self, model: str, prepared: PreparedAudio) -> TranscriptionAttempt:
        try:
            payload = await self._post(model, prepared.path)
        except httpx.HTTPStatusError as e:
            message = e.response.text
            if e.response.status_code == 400 and UNSUPPORTED_AUDIO_PATTERN.search(message):
                return await self._retry_as_wav(model, prepared, message)
            return TranscriptionAttempt(model=model, segments=[], error=f"{e.response.status_code} - {message}")
        except httpx.HTTPError as e:
            return TranscriptionAttempt(model=model, segments=[], error=str(e) or e.__class__.__name__)
        return TranscriptionAttempt(model=model, segments=parse_transcription_segments(payload))

    async def _retry_as_wav(self, model: str, prepared: PreparedAudio, original_error: str) -> TranscriptionAttempt:
        """The API rejected the container; transcode once and retry the same model."""
        try:
            wav_path = await transcode_to_wav(prepared.path, self.ffmpeg_path)
        except (OSError, RuntimeError) as e:
            logger.warning("[TRANSCRIBE] WAV retry transcode failed: %s", e)
            return TranscriptionAttempt(model=model, segments=[], error=original_error)

        prepared.cleanup.append(wav_path)
        prepared.path = wav_path
        logger.info("[TRANSCRIBE] Retrying %s with WAV-transcoded audio", model)
        try:
            payload = await self._post(model, wav_path)
        except httpx.HTTPError as e:
            return TranscriptionAttempt(model=model, segments=[], error=str(e) or original_error)
        return TranscriptionAttempt(model=model, segments=parse_transcription_segments(payload))

    async def _post(self, model: str, audio_path: str) -> Any:
        path = Path(audio_path)
        mime_type = AUDIO_MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")
        data = {
            "model": model,
            "response_format": response_format_for_model(model),
        }
        if data["response_format"] == "verbose_json":
            data["timestamp_granularities[]"] = "segment"

        files = {"file": (path.name, path.read_bytes(), mime_type)}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        url = f"{self.base_url}/audio/transcriptions"

        if self._http_client is not None:
            response = await self._http_client.post(
                url, headers=headers, data=data, files=files, timeout=self.timeout_seconds
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url, headers=headers, data=data, files=files)

        response.raise_for_status()
        try:
            return response.json()
        except ValueError:
            return None
