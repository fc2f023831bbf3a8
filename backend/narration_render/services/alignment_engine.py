"""Sentence alignment: map narration audio timing onto script sentences.

Three tiers, tried in order until one succeeds:
  1. Transcript (preferred): transcribe the voice-over, spread each segment's
     span evenly over its words, then find every sentence in the word stream
     with a strictly advancing cursor.
  2. Voice activity: distribute sentences by word count over the audible
     parts only, then map the result back onto real time so pauses stay
     between sentences.
  3. Word count: distribute the whole duration proportionally to word count.

Whatever tier wins, the result is sealed into a contiguous partition of
[0, T]: the first sentence starts at 0, each sentence ends where the next
one starts, and the last one ends exactly at T.

Usage:
    engine = AlignmentEngine.from_settings()
    timings = await engine.align(audio_path, sentences, total_duration_seconds)
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from narration_render.config import Settings, get_settings
from narration_render.exceptions import (
    AlignmentTierError,
    TranscriptionEmptyError,
    TranscriptionUnavailableError,
)
from narration_render.schemas.render import SentenceInput, SentenceTiming
from narration_render.services.silence_detector import AudibleSpan, FfmpegSilenceDetector, SilenceDetector
from narration_render.services.transcription_service import (
    OpenAITranscriptionClient,
    TranscriptionClient,
    TranscriptSegment,
)

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.5
DEFAULT_MIN_SENTENCE_SECONDS = 0.1
DEFAULT_MIN_GAP_SECONDS = 0.05

# Leading/trailing characters that are not letters or digits
_EDGE_PUNCTUATION = re.compile(r"^[\W_]+|[\W_]+$")


class AlignmentTier(str, Enum):
    TRANSCRIPT = "transcript"
    VOICE_ACTIVITY = "voice_activity"
    WORD_COUNT = "word_count"


@dataclass(frozen=True)
class WordTiming:
    """One normalized transcript word with its estimated span."""

    token: str
    start_seconds: float
    end_seconds: float


@dataclass
class AlignmentResult:
    tier: AlignmentTier
    timings: list[SentenceTiming]


@dataclass(frozen=True)
class _SpanMap:
    """Internal: an audible span placed on both the real and compressed timelines."""

    real_start: float
    real_end: float
    compressed_start: float
    compressed_end: float


# =============================================================================
# Tokens
# =============================================================================


def normalize_token(raw: str) -> str:
    """Lowercase and strip leading/trailing non-alphanumerics ("World!" -> "world")."""
    return _EDGE_PUNCTUATION.sub("", raw.lower())


def tokenize(text: str) -> list[str]:
    return [token for token in (normalize_token(word) for word in text.split()) if token]


def word_weights(texts: Sequence[str]) -> list[int]:
    """Word-count weight per sentence, floored at 1."""
    return [max(1, len(text.split())) for text in texts]


def build_word_timeline(segments: Sequence[TranscriptSegment]) -> list[WordTiming]:
    """Split every segment's span evenly across its words."""
    words: list[WordTiming] = []
    for segment in segments:
        raw_tokens = segment.text.split()
        if not raw_tokens:
            continue
        span = segment.end - segment.start
        count = len(raw_tokens)
        for i, raw in enumerate(raw_tokens):
            token = normalize_token(raw)
            if not token:
                continue
            words.append(
                WordTiming(
                    token=token,
                    start_seconds=segment.start + span * i / count,
                    end_seconds=segment.start + span * (i + 1) / count,
                )
            )
    return words


def find_best_window(
    transcript_tokens: Sequence[str],
    sentence_tokens: Sequence[str],
    start_from: int,
    match_threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> tuple[int, int] | None:
    """Find the same-length transcript window with the most per-position matches.

    Only windows starting at or after ``start_from`` are considered. Returns
    inclusive ``(first, last)`` word indices, or None if no window reaches
    ``match_threshold``. Ties go to the earliest window.
    """
    size = len(sentence_tokens)
    if size == 0:
        return None
    max_start = len(transcript_tokens) - size
    if max_start < start_from:
        return None

    best_score = 0.0
    best: tuple[int, int] | None = None
    for i in range(start_from, max_start + 1):
        matches = sum(1 for j, token in enumerate(sentence_tokens) if transcript_tokens[i + j] == token)
        score = matches / size
        if score > best_score and score >= match_threshold:
            best_score = score
            best = (i, i + size - 1)
            if matches == size:
                break
    return best


# =============================================================================
# Boundary arithmetic
# =============================================================================


def enforce_min_durations(boundaries: list[float], min_duration: float) -> list[float]:
    """Push boundaries apart so every interval lasts at least ``min_duration``.

    The first and last boundaries never move. When the range is too short to
    give every interval the minimum, it is split evenly instead.
    """
    b = list(boundaries)
    count = len(b) - 1
    if count <= 0:
        return b

    first, last = b[0], b[-1]
    span = last - first
    if min_duration * count > span:
        return [first + span * i / count for i in range(count)] + [last]

    for i in range(1, count):
        if b[i] < b[i - 1] + min_duration:
            b[i] = b[i - 1] + min_duration
    b[count] = last
    for i in range(count - 1, 0, -1):
        if b[i] > b[i + 1] - min_duration:
            b[i] = b[i + 1] - min_duration
    return b


def proportional_boundaries(weights: Sequence[int], total_seconds: float, min_duration: float) -> list[float]:
    """Cumulative-weight boundaries over [0, total]; the last one is exactly total."""
    total_weight = sum(weights) or 1
    boundaries = [0.0]
    accumulated = 0
    for index, weight in enumerate(weights):
        accumulated += weight
        if index == len(weights) - 1:
            boundaries.append(total_seconds)
        else:
            boundaries.append(accumulated / total_weight * total_seconds)
    return enforce_min_durations(boundaries, min_duration)


def seal_boundaries(starts: Sequence[float], total_seconds: float, min_duration: float) -> list[float]:
    """Turn per-sentence start times into a contiguous partition of [0, total].

    Gaps between one sentence's end and the next one's start are absorbed by
    the earlier sentence.
    """
    boundaries = [0.0]
    for start in list(starts)[1:]:
        if not math.isfinite(start):
            start = boundaries[-1]
        boundaries.append(max(boundaries[-1], min(max(start, 0.0), total_seconds)))
    boundaries.append(total_seconds)
    return enforce_min_durations(boundaries, min_duration)


def timings_from_boundaries(texts: Sequence[str], boundaries: Sequence[float]) -> list[SentenceTiming]:
    return [
        SentenceTiming(
            index=i,
            text=text,
            start_seconds=boundaries[i],
            end_seconds=boundaries[i + 1],
        )
        for i, text in enumerate(texts)
    ]


# =============================================================================
# Tiers
# =============================================================================


def align_by_word_count(
    texts: Sequence[str],
    total_seconds: float,
    min_sentence_seconds: float = DEFAULT_MIN_SENTENCE_SECONDS,
) -> list[SentenceTiming]:
    """Tier 3: distribute ``total_seconds`` proportionally to word count."""
    if not texts:
        return []
    boundaries = proportional_boundaries(word_weights(texts), total_seconds, min_sentence_seconds)
    return timings_from_boundaries(texts, boundaries)


def map_compressed_time(compressed: float, span_maps: Sequence[_SpanMap]) -> float:
    """Map a time on the silence-free timeline back to real audio time."""
    if not math.isfinite(compressed) or compressed <= 0:
        return span_maps[0].real_start

    last = span_maps[-1]
    if compressed >= last.compressed_end:
        return last.real_end

    # A boundary exactly at a junction maps to the start of the next span
    for span_map in span_maps:
        if compressed < span_map.compressed_end:
            return span_map.real_start + (compressed - span_map.compressed_start)
    return last.real_end


def align_by_voice_activity(
    texts: Sequence[str],
    audible_spans: Sequence[AudibleSpan],
    total_seconds: float,
    min_sentence_seconds: float = DEFAULT_MIN_SENTENCE_SECONDS,
    min_gap_seconds: float = DEFAULT_MIN_GAP_SECONDS,
) -> list[SentenceTiming]:
    """Tier 2: word-count distribution over audible time only.

    Raises:
        AlignmentTierError: If there is no usable audible span
    """
    spans = sorted(
        (
            span
            for span in audible_spans
            if math.isfinite(span.start) and math.isfinite(span.end) and span.end > span.start
        ),
        key=lambda span: span.start,
    )
    if not spans:
        raise AlignmentTierError(AlignmentTier.VOICE_ACTIVITY.value, "no audible spans")

    span_maps: list[_SpanMap] = []
    cursor = 0.0
    for span in spans:
        length = span.end - span.start
        span_maps.append(
            _SpanMap(
                real_start=span.start,
                real_end=span.end,
                compressed_start=cursor,
                compressed_end=cursor + length,
            )
        )
        cursor += length

    voiced_seconds = cursor
    if voiced_seconds <= 0:
        raise AlignmentTierError(AlignmentTier.VOICE_ACTIVITY.value, "no voiced duration")

    compressed = proportional_boundaries(word_weights(texts), voiced_seconds, min_sentence_seconds)
    starts = [map_compressed_time(value, span_maps) for value in compressed[:-1]]
    boundaries = seal_boundaries(starts, total_seconds, min_gap_seconds)
    return timings_from_boundaries(texts, boundaries)


def align_to_word_timeline(
    texts: Sequence[str],
    words: Sequence[WordTiming],
    total_seconds: float,
    match_threshold: float = DEFAULT_MATCH_THRESHOLD,
    min_sentence_seconds: float = DEFAULT_MIN_SENTENCE_SECONDS,
    min_gap_seconds: float = DEFAULT_MIN_GAP_SECONDS,
) -> list[SentenceTiming]:
    """Tier 1: locate each sentence in the transcript word stream.

    The search cursor only moves forward, so no transcript word is used twice
    and sentence order is preserved. At the first sentence that cannot be
    matched, the rest of the audio is split by word count.
    """
    transcript_tokens = [word.token for word in words]
    starts: list[float] = []
    cursor = 0
    previous_end = 0.0

    for i, text in enumerate(texts):
        sentence_tokens = tokenize(text)
        if not sentence_tokens:
            # Nothing to match: give it a short slot right after the previous sentence
            starts.append(previous_end)
            previous_end = min(total_seconds, previous_end + min_sentence_seconds)
            continue

        match = find_best_window(transcript_tokens, sentence_tokens, cursor, match_threshold)
        if match is None:
            remaining = texts[i:]
            remaining_seconds = max(0.0, total_seconds - previous_end)
            remainder = proportional_boundaries(word_weights(remaining), remaining_seconds, min_sentence_seconds)
            starts.extend(previous_end + offset for offset in remainder[:-1])
            logger.info(
                "[ALIGN] Sentence %d unmatched; distributing %d remaining sentences over %.2fs",
                i,
                len(remaining),
                remaining_seconds,
            )
            break

        first_word = words[match[0]]
        last_word = words[match[1]]
        start = min(max(first_word.start_seconds, 0.0), total_seconds)
        end = max(start + min_gap_seconds, min(last_word.end_seconds, total_seconds))
        starts.append(start)
        previous_end = end
        cursor = match[1] + 1

    boundaries = seal_boundaries(starts, total_seconds, min_gap_seconds)
    return timings_from_boundaries(texts, boundaries)


# =============================================================================
# Engine
# =============================================================================


class AlignmentEngine:
    """Produce one contiguous time interval per sentence; never raises."""

    def __init__(
        self,
        transcription_client: TranscriptionClient | None = None,
        silence_detector: SilenceDetector | None = None,
        *,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        min_sentence_seconds: float = DEFAULT_MIN_SENTENCE_SECONDS,
        min_gap_seconds: float = DEFAULT_MIN_GAP_SECONDS,
    ):
        self.transcription_client = transcription_client
        self.silence_detector = silence_detector
        self.match_threshold = match_threshold
        self.min_sentence_seconds = min_sentence_seconds
        self.min_gap_seconds = min_gap_seconds

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AlignmentEngine":
        settings = settings or get_settings()
        return cls(
            transcription_client=OpenAITranscriptionClient.from_settings(settings),
            silence_detector=FfmpegSilenceDetector.from_settings(settings),
            match_threshold=settings.alignment_match_threshold,
            min_sentence_seconds=settings.alignment_min_sentence_seconds,
            min_gap_seconds=settings.alignment_min_gap_seconds,
        )

    async def align(
        self,
        audio_path: str,
        sentences: Sequence[SentenceInput],
        total_duration_seconds: float,
    ) -> list[SentenceTiming]:
        result = await self.align_with_tier(audio_path, sentences, total_duration_seconds)
        return result.timings

    async def align_with_tier(
        self,
        audio_path: str,
        sentences: Sequence[SentenceInput],
        total_duration_seconds: float,
    ) -> AlignmentResult:
        """Align and report which tier produced the timings."""
        texts = [(sentence.text or "").strip() for sentence in sentences]
        if not texts:
            return AlignmentResult(tier=AlignmentTier.WORD_COUNT, timings=[])

        total = total_duration_seconds
        if not math.isfinite(total) or total <= 0:
            logger.warning("[ALIGN] Invalid audio duration %r, using 1s", total_duration_seconds)
            total = 1.0

        logger.info(
            "[ALIGN] Aligning %d sentences to %.2fs of audio (transcription=%s, silence=%s)",
            len(texts),
            total,
            self.transcription_client is not None,
            self.silence_detector is not None,
        )

        try:
            timings = await self._align_by_transcript(audio_path, texts, total)
            return self._result(AlignmentTier.TRANSCRIPT, timings)
        except (TranscriptionUnavailableError, TranscriptionEmptyError) as e:
            logger.warning("[ALIGN] Transcript tier unavailable: %s", e.message)
        except Exception:
            logger.warning("[ALIGN] Transcript tier failed", exc_info=True)

        if self.silence_detector is not None:
            try:
                timings = await self._align_by_voice_activity(audio_path, texts, total)
                return self._result(AlignmentTier.VOICE_ACTIVITY, timings)
            except AlignmentTierError as e:
                logger.warning("[ALIGN] %s", e.message)
            except Exception:
                logger.warning("[ALIGN] Voice-activity tier failed", exc_info=True)

        timings = align_by_word_count(texts, total, self.min_sentence_seconds)
        return self._result(AlignmentTier.WORD_COUNT, timings)

    def _result(self, tier: AlignmentTier, timings: list[SentenceTiming]) -> AlignmentResult:
        logger.info("[ALIGN] %s tier produced %d timings", tier.value, len(timings))
        return AlignmentResult(tier=tier, timings=timings)

    async def _align_by_transcript(self, audio_path: str, texts: list[str], total: float) -> list[SentenceTiming]:
        if self.transcription_client is None:
            raise TranscriptionUnavailableError()

        segments = await self.transcription_client.transcribe(audio_path)
        words = build_word_timeline(segments)
        if not words:
            raise TranscriptionEmptyError("No words could be built from the transcription")

        return align_to_word_timeline(
            texts,
            words,
            total,
            match_threshold=self.match_threshold,
            min_sentence_seconds=self.min_sentence_seconds,
            min_gap_seconds=self.min_gap_seconds,
        )

    async def _align_by_voice_activity(self, audio_path: str, texts: list[str], total: float) -> list[SentenceTiming]:
        spans = await self.silence_detector.detect_audible(audio_path)
        return align_by_voice_activity(
            texts,
            spans,
            total,
            min_sentence_seconds=self.min_sentence_seconds,
            min_gap_seconds=self.min_gap_seconds,
        )
