"""Render job persistence.

Two implementations of the same small protocol:
- InMemoryJobStore: per-process dict, the default for single-instance deployments
- SqlAlchemyJobStore: ``render_jobs`` table through the async ORM
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from narration_render.config import Settings, get_settings
from narration_render.models.render_job import RenderJob
from narration_render.schemas.render import RenderJobRecord, RenderJobStatus

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    async def save(self, job: RenderJobRecord) -> None:
        """Insert or replace the job row."""
        ...

    async def find(self, job_id: str) -> RenderJobRecord | None:
        ...


class InMemoryJobStore:
    """Thread-safe in-memory store; records are copied in and out."""

    def __init__(self) -> None:
        self._jobs: dict[str, RenderJobRecord] = {}
        self._lock = threading.Lock()

    async def save(self, job: RenderJobRecord) -> None:
        with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)

    async def find(self, job_id: str) -> RenderJobRecord | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _parse_job_id(job_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(job_id)
    except (TypeError, ValueError):
        return None


class SqlAlchemyJobStore:
    """Job store backed by the ``render_jobs`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @staticmethod
    def _to_record(row: RenderJob) -> RenderJobRecord:
        return RenderJobRecord(
            id=str(row.id),
            status=RenderJobStatus(row.status),
            error=row.error,
            audio_path=row.audio_path,
            video_path=row.video_path,
            timeline=row.timeline,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    async def save(self, job: RenderJobRecord) -> None:
        job_uuid = _parse_job_id(job.id)
        if job_uuid is None:
            raise ValueError(f"Render job id is not a UUID: {job.id}")

        async with self._session_maker() as session:
            async with session.begin():
                row = await session.get(RenderJob, job_uuid)
                if row is None:
                    row = RenderJob(id=job_uuid, created_at=job.created_at)
                    session.add(row)
                row.status = job.status.value
                row.error = job.error
                row.audio_path = job.audio_path
                row.video_path = job.video_path
                row.timeline = job.timeline
                row.updated_at = job.updated_at

    async def find(self, job_id: str) -> RenderJobRecord | None:
        job_uuid = _parse_job_id(job_id)
        if job_uuid is None:
            return None
        async with self._session_maker() as session:
            row = await session.get(RenderJob, job_uuid)
            return self._to_record(row) if row is not None else None


def create_job_store(settings: Settings | None = None) -> JobStore:
    """Pick the job store configured by ``job_store_backend``."""
    settings = settings or get_settings()
    if settings.job_store_backend == "database":
        from narration_render.models.database import get_session_maker

        logger.info("[RENDER_JOB] Using database job store")
        return SqlAlchemyJobStore(get_session_maker())
    logger.info("[RENDER_JOB] Using in-memory job store")
    return InMemoryJobStore()
