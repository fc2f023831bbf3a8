"""
Render job orchestration.

A job moves through a fixed state machine:

    queued -> processing -> rendering -> completed

and any non-terminal state may move to ``failed``.

``create_job`` persists a queued job and hands the work to a JobSupervisor,
which runs it as a tracked asyncio task. The task stages assets, aligns the
narration, builds the timeline and drives the render backend. Any failure
ends the job in ``failed`` with the error message recorded; terminal jobs
are never modified again.
"""

import asyncio
import logging
import math
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine

from narration_render.config import Settings, get_settings
from narration_render.exceptions import (
    InvalidJobTransitionError,
    MediaProbeError,
    RenderJobNotFoundError,
    RenderJobTimeoutError,
)
from narration_render.models.base import utcnow
from narration_render.render import RenderBackend, get_render_backend
from narration_render.schemas.render import RenderJobRecord, RenderJobRequest, RenderJobStatus
from narration_render.services.alignment_engine import AlignmentEngine
from narration_render.services.job_store import JobStore, create_job_store
from narration_render.services.staging_service import (
    cleanup_staging,
    resolve_timeline_assets,
    stage_job_assets,
)
from narration_render.services.timeline_builder import TimelineBuilder
from narration_render.utils.media_info import get_media_duration_seconds_async

logger = logging.getLogger(__name__)

FALLBACK_AUDIO_DURATION_SECONDS = 1.0

ALLOWED_TRANSITIONS: dict[RenderJobStatus, frozenset[RenderJobStatus]] = {
    RenderJobStatus.QUEUED: frozenset({RenderJobStatus.PROCESSING, RenderJobStatus.FAILED}),
    RenderJobStatus.PROCESSING: frozenset({RenderJobStatus.RENDERING, RenderJobStatus.FAILED}),
    RenderJobStatus.RENDERING: frozenset({RenderJobStatus.COMPLETED, RenderJobStatus.FAILED}),
    RenderJobStatus.COMPLETED: frozenset(),
    RenderJobStatus.FAILED: frozenset(),
}

STALE_STATUSES = frozenset({RenderJobStatus.PROCESSING, RenderJobStatus.RENDERING})


def can_transition(current: RenderJobStatus, target: RenderJobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: RenderJobStatus, target: RenderJobStatus) -> None:
    if not can_transition(current, target):
        raise InvalidJobTransitionError(current.value, target.value)


def error_message_for(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


FailureHandler = Callable[[str, BaseException], Awaitable[None]]


class JobSupervisor:
    """Own the background tasks that process render jobs.

    Tasks are held by strong reference until they finish. If a task ends with
    an exception (or is cancelled), ``on_failure`` is scheduled for that job
    so the failure is always recorded.
    """

    def __init__(self, on_failure: FailureHandler | None = None):
        self.on_failure = on_failure
        self._tasks: dict[str, asyncio.Task] = {}
        self._followups: set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return len(self._tasks)

    def is_running(self, job_id: str) -> bool:
        return job_id in self._tasks

    def submit(self, job_id: str, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"render-job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._on_done(job_id, t))
        return task

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            error: BaseException = asyncio.CancelledError("Render job was cancelled")
        else:
            error = task.exception()
            if error is None:
                return

        logger.error("[RENDER_JOB] Task for job %s ended with %s: %s", job_id, error.__class__.__name__, error)
        if self.on_failure is None:
            return
        followup = asyncio.create_task(self._record_failure(job_id, error))
        self._followups.add(followup)
        followup.add_done_callback(self._followups.discard)

    async def _record_failure(self, job_id: str, error: BaseException) -> None:
        try:
            await self.on_failure(job_id, error)
        except Exception:
            logger.exception("[RENDER_JOB] Could not record failure for job %s", job_id)

    async def drain(self) -> None:
        """Wait for every running task and its failure bookkeeping."""
        while self._tasks or self._followups:
            await asyncio.gather(*self._tasks.values(), *self._followups, return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await self.drain()


class RenderJobOrchestrator:
    """Create render jobs, run them in the background, and report their status."""

    def __init__(
        self,
        store: JobStore,
        alignment_engine: AlignmentEngine,
        render_backend: RenderBackend,
        timeline_builder: TimelineBuilder | None = None,
        settings: Settings | None = None,
        supervisor: JobSupervisor | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.alignment_engine = alignment_engine
        self.render_backend = render_backend
        self.timeline_builder = timeline_builder or TimelineBuilder()
        self.settings = settings or get_settings()
        self.supervisor = supervisor or JobSupervisor()
        if self.supervisor.on_failure is None:
            self.supervisor.on_failure = self._fail_job
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RenderJobOrchestrator":
        settings = settings or get_settings()
        return cls(
            store=create_job_store(settings),
            alignment_engine=AlignmentEngine.from_settings(settings),
            render_backend=get_render_backend(settings),
            settings=settings,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def create_job(self, request: RenderJobRequest) -> str:
        """Persist a queued job and start processing it in the background."""
        now = self.clock()
        job = RenderJobRecord(
            id=str(uuid.uuid4()),
            status=RenderJobStatus.QUEUED,
            audio_path=request.audio_path,
            created_at=now,
            updated_at=now,
        )
        await self.store.save(job)
        logger.info("[RENDER_JOB] Created job %s (%d sentences)", job.id, len(request.sentences))

        self.supervisor.submit(job.id, self._process_job(job.id, request))
        return job.id

    async def get_job(self, job_id: str) -> RenderJobRecord:
        """
        Return the job, failing it first if it has been stuck too long.

        Raises:
            RenderJobNotFoundError: If no job has this id
        """
        job = await self.store.find(job_id)
        if job is None:
            raise RenderJobNotFoundError(job_id)

        if self._is_stale(job):
            timeout = self.settings.render_stale_timeout_seconds
            logger.warning(
                "[RENDER_JOB] Job %s stuck in '%s' for over %ss, marking failed",
                job_id,
                job.status.value,
                timeout,
            )
            error = RenderJobTimeoutError(job.status.value, timeout)
            try:
                return await self._transition(
                    job_id, RenderJobStatus.FAILED, expected=job.status, error=error.message
                )
            except InvalidJobTransitionError:
                # The job moved on while we were reading it
                job = await self.store.find(job_id)
                if job is None:
                    raise RenderJobNotFoundError(job_id)
        return job

    def public_video_url(self, job_id: str) -> str:
        return f"{self.settings.public_base_url.rstrip('/')}/static/videos/{job_id}.mp4"

    def output_path(self, job_id: str) -> Path:
        return Path(self.settings.render_output_dir) / f"{job_id}.mp4"

    # =========================================================================
    # Background processing
    # =========================================================================

    async def _process_job(self, job_id: str, request: RenderJobRequest) -> None:
        staged = None
        try:
            await self._transition(job_id, RenderJobStatus.PROCESSING)

            staged = await asyncio.to_thread(
                stage_job_assets, job_id, request.audio_path, request.image_paths, self.settings
            )
            duration = await self._resolve_audio_duration(request, str(staged.resolve(staged.audio_src)))

            timings = await self.alignment_engine.align(request.audio_path, request.sentences, duration)
            timeline = self.timeline_builder.build(
                timings,
                staged.image_srcs,
                request.options,
                audio_src=staged.audio_src,
                sentences=request.sentences,
                subscribe_video_src=staged.subscribe_video_src,
                assets=resolve_timeline_assets(staged, request.options),
            )

            await self._transition(
                job_id,
                RenderJobStatus.RENDERING,
                timeline=timeline.model_dump(mode="json", by_alias=True),
            )
            await self.render_backend.render(timeline, staged.staging_dir, self.output_path(job_id))
            await self._transition(job_id, RenderJobStatus.COMPLETED, video_path=self.public_video_url(job_id))
            logger.info("[RENDER_JOB] Job %s completed", job_id)
        except Exception as e:
            logger.exception("[RENDER_JOB] Job %s failed", job_id)
            await self._fail_job(job_id, e)
        finally:
            if staged is not None and not self.settings.keep_staging:
                await asyncio.to_thread(cleanup_staging, staged.staging_dir)

    async def _resolve_audio_duration(self, request: RenderJobRequest, staged_audio_path: str) -> float:
        given = request.audio_duration_seconds
        if given is not None and math.isfinite(given) and given > 0:
            return given
        try:
            return await get_media_duration_seconds_async(staged_audio_path, self.settings.ffprobe_path)
        except MediaProbeError as e:
            logger.warning(
                "[RENDER_JOB] Could not probe audio duration (%s), using %ss",
                e.message,
                FALLBACK_AUDIO_DURATION_SECONDS,
            )
            return FALLBACK_AUDIO_DURATION_SECONDS

    # =========================================================================
    # State transitions
    # =========================================================================

    def _is_stale(self, job: RenderJobRecord) -> bool:
        if job.status not in STALE_STATUSES:
            return False
        age = (self.clock() - job.updated_at).total_seconds()
        return age > self.settings.render_stale_timeout_seconds

    async def _transition(
        self,
        job_id: str,
        target: RenderJobStatus,
        expected: RenderJobStatus | None = None,
        **changes: Any,
    ) -> RenderJobRecord:
        """Move a job to ``target``, re-reading it so concurrent writers cannot skip a check.

        Writes to one job are serialized; different jobs do not wait on each other.
        With ``expected``, the job must still be in that state.
        """
        async with self._locks.setdefault(job_id, asyncio.Lock()):
            job = await self.store.find(job_id)
            if job is None:
                raise RenderJobNotFoundError(job_id)
            if expected is not None and job.status != expected:
                raise InvalidJobTransitionError(job.status.value, target.value)
            ensure_transition(job.status, target)

            updated = job.model_copy(update={"status": target, "updated_at": self.clock(), **changes})
            await self.store.save(updated)
            logger.info("[RENDER_JOB] Job %s: %s -> %s", job_id, job.status.value, target.value)
        if target.is_terminal:
            self._locks.pop(job_id, None)
        return updated

    async def _fail_job(self, job_id: str, error: BaseException) -> None:
        job = await self.store.find(job_id)
        if job is None:
            logger.error("[RENDER_JOB] Cannot fail unknown job %s", job_id)
            return
        if job.status.is_terminal:
            logger.warning(
                "[RENDER_JOB] Job %s already %s, not recording: %s",
                job_id,
                job.status.value,
                error_message_for(error),
            )
            return
        try:
            await self._transition(job_id, RenderJobStatus.FAILED, error=error_message_for(error), video_path=None)
        except InvalidJobTransitionError as e:
            # Reached a terminal state between the read above and the transition
            logger.warning("[RENDER_JOB] Job %s: %s", job_id, e.message)
