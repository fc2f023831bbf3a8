"""Build a frame-accurate render timeline from sentence timings."""

import logging
import math
from typing import Sequence

from narration_render.constants.render import (
    BASE_FPS,
    LANDSCAPE_LOWER_RESOLUTION,
    LANDSCAPE_RESOLUTION,
    LOWER_FPS,
    PORTRAIT_LOWER_RESOLUTION,
    PORTRAIT_RESOLUTION,
    is_cta_sentence,
)
from narration_render.exceptions import TimelineBuildError
from narration_render.schemas.render import (
    RenderOptions,
    Scene,
    SentenceInput,
    SentenceTiming,
    Timeline,
    TimelineAssets,
)

logger = logging.getLogger(__name__)


def resolve_fps(options: RenderOptions) -> int:
    return LOWER_FPS if options.use_lower_fps else BASE_FPS


def resolve_resolution(options: RenderOptions) -> tuple[int, int]:
    """(width, height) for the requested orientation and quality."""
    if options.resolved_is_short:
        return PORTRAIT_LOWER_RESOLUTION if options.use_lower_resolution else PORTRAIT_RESOLUTION
    return LANDSCAPE_LOWER_RESOLUTION if options.use_lower_resolution else LANDSCAPE_RESOLUTION


def glitch_scene_index(scene_count: int, enabled: bool) -> int | None:
    """The single scene that carries the glitch transition, if enabled."""
    if not enabled or scene_count <= 0:
        return None
    return scene_count // 2


class TimelineBuilder:
    """Convert sentence intervals and render options into a scene list.

    Pure: no I/O, same input always gives the same timeline.
    """

    def build(
        self,
        timings: Sequence[SentenceTiming],
        asset_refs: Sequence[str | None],
        options: RenderOptions,
        *,
        audio_src: str,
        sentences: Sequence[SentenceInput] | None = None,
        subscribe_video_src: str | None = None,
        assets: TimelineAssets | None = None,
    ) -> Timeline:
        """
        Build the timeline.

        Args:
            timings: Contiguous sentence timings ordered by index
            asset_refs: Image reference per sentence index (missing or None
                renders a text-only scene)
            options: Output options
            audio_src: Narration audio reference for the renderer
            sentences: Original sentence inputs (suspense flag, per-sentence video)
            subscribe_video_src: Bundled clip used for call-to-action sentences
            assets: Optional auxiliary assets passed through to the renderer

        Raises:
            TimelineBuildError: If the timings are empty or out of order
        """
        self._validate(timings, sentences)

        fps = resolve_fps(options)
        width, height = resolve_resolution(options)
        glitch_index = glitch_scene_index(len(timings), options.enable_glitch_transitions)

        scenes: list[Scene] = []
        previous_start = 0
        for i, timing in enumerate(timings):
            sentence = sentences[i] if sentences is not None else None
            start_frame = max(previous_start, math.floor(timing.start_seconds * fps))
            end_frame = math.ceil(timing.end_seconds * fps)
            duration_frames = max(1, end_frame - start_frame)
            image_src, video_src = self._resolve_media(i, timing.text, sentence, asset_refs, subscribe_video_src)

            scenes.append(
                Scene(
                    index=i,
                    text=sentence.text if sentence is not None else timing.text,
                    image_src=image_src,
                    video_src=video_src,
                    start_frame=start_frame,
                    duration_frames=duration_frames,
                    use_glitch=i == glitch_index,
                    is_suspense=bool(sentence and sentence.is_suspense),
                )
            )
            previous_start = start_frame

        last = scenes[-1]
        timeline = Timeline(
            width=width,
            height=height,
            fps=fps,
            duration_in_frames=last.start_frame + last.duration_frames,
            audio_src=audio_src,
            scenes=scenes,
            assets=assets or TimelineAssets(subscribe_video_src=subscribe_video_src),
        )
        logger.info(
            "[TIMELINE] Built %d scenes, %dx%d@%dfps, %d frames",
            len(scenes),
            width,
            height,
            fps,
            timeline.duration_in_frames,
        )
        return timeline

    @staticmethod
    def _validate(timings: Sequence[SentenceTiming], sentences: Sequence[SentenceInput] | None) -> None:
        if not timings:
            raise TimelineBuildError("No sentence timings to build a timeline from")
        if sentences is not None and len(sentences) != len(timings):
            raise TimelineBuildError(
                f"Sentence count ({len(sentences)}) does not match timing count ({len(timings)})"
            )

        previous: SentenceTiming | None = None
        for i, timing in enumerate(timings):
            if timing.index != i:
                raise TimelineBuildError(f"Timing at position {i} has index {timing.index}")
            if not (math.isfinite(timing.start_seconds) and math.isfinite(timing.end_seconds)):
                raise TimelineBuildError(f"Timing {i} has a non-finite bound")
            if timing.start_seconds < 0 or timing.end_seconds <= timing.start_seconds:
                raise TimelineBuildError(
                    f"Timing {i} has an empty or negative interval "
                    f"({timing.start_seconds:.3f}-{timing.end_seconds:.3f})"
                )
            if previous is not None and timing.start_seconds < previous.start_seconds:
                raise TimelineBuildError(f"Timing {i} starts before timing {i - 1}")
            previous = timing

    @staticmethod
    def _resolve_media(
        index: int,
        text: str,
        sentence: SentenceInput | None,
        asset_refs: Sequence[str | None],
        subscribe_video_src: str | None,
    ) -> tuple[str | None, str | None]:
        """(image_src, video_src) for one scene; at most one is set."""
        scene_text = sentence.text if sentence is not None else text
        if subscribe_video_src and is_cta_sentence(scene_text):
            return None, subscribe_video_src

        if sentence is not None and sentence.media_type == "video":
            video_url = (sentence.video_url or "").strip()
            if video_url:
                return None, video_url

        image_src = asset_refs[index] if index < len(asset_refs) else None
        return image_src or None, None
