"""Tests for the in-memory and SQLAlchemy render job stores."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from narration_render.models.database import create_engine_for_url, create_session_maker, init_db
from narration_render.schemas.render import RenderJobRecord, RenderJobStatus
from narration_render.services.job_store import InMemoryJobStore, SqlAlchemyJobStore, create_job_store

CREATED_AT = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def _record(job_id: str | None = None, **changes) -> RenderJobRecord:
    record = RenderJobRecord(
        id=job_id or str(uuid.uuid4()),
        audio_path="/uploads/audio/voice.mp3",
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
    )
    return record.model_copy(update=changes)


# =============================================================================
# In-memory store
# =============================================================================


class TestInMemoryJobStore:
    @pytest.mark.asyncio
    async def test_save_and_find(self):
        store = InMemoryJobStore()
        job = _record()

        await store.save(job)

        assert await store.find(job.id) == job
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_unknown_id(self):
        assert await InMemoryJobStore().find("nope") is None

    @pytest.mark.asyncio
    async def test_save_replaces(self):
        store = InMemoryJobStore()
        job = _record()
        await store.save(job)

        await store.save(job.model_copy(update={"status": RenderJobStatus.PROCESSING}))

        found = await store.find(job.id)
        assert found.status == RenderJobStatus.PROCESSING
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_records_are_copied(self):
        """Mutating a returned record must not change the stored one."""
        store = InMemoryJobStore()
        job = _record(timeline={"fps": 30})
        await store.save(job)

        found = await store.find(job.id)
        found.timeline["fps"] = 24
        found.status = RenderJobStatus.FAILED

        again = await store.find(job.id)
        assert again.timeline == {"fps": 30}
        assert again.status == RenderJobStatus.QUEUED


class TestCreateJobStore:
    def test_memory_is_default(self, test_settings):
        assert isinstance(create_job_store(test_settings), InMemoryJobStore)


# =============================================================================
# SQLAlchemy store (SQLite)
# =============================================================================


class TestSqlAlchemyJobStore:
    """Runs against a throwaway SQLite file through aiosqlite."""

    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path):
        engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
        try:
            await init_db(engine)
            store = SqlAlchemyJobStore(create_session_maker(engine))
            job = _record()

            await store.save(job)
            found = await store.find(job.id)

            assert found is not None
            assert found.id == job.id
            assert found.status == RenderJobStatus.QUEUED
            assert found.audio_path == job.audio_path
            assert found.created_at == CREATED_AT
            assert found.created_at.tzinfo is not None
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_update_existing_row(self, tmp_path):
        engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
        try:
            await init_db(engine)
            store = SqlAlchemyJobStore(create_session_maker(engine))
            job = _record()
            await store.save(job)

            later = CREATED_AT + timedelta(seconds=42)
            timeline = {"fps": 30, "scenes": [{"index": 0, "startFrame": 0}]}
            await store.save(
                job.model_copy(
                    update={
                        "status": RenderJobStatus.COMPLETED,
                        "video_path": "http://render.test/static/videos/x.mp4",
                        "timeline": timeline,
                        "updated_at": later,
                    }
                )
            )

            found = await store.find(job.id)
            assert found.status == RenderJobStatus.COMPLETED
            assert found.video_path == "http://render.test/static/videos/x.mp4"
            assert found.timeline == timeline
            assert found.updated_at == later
            assert found.created_at == CREATED_AT
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_invalid_ids(self, tmp_path):
        engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
        try:
            await init_db(engine)
            store = SqlAlchemyJobStore(create_session_maker(engine))

            assert await store.find("not-a-uuid") is None
            assert await store.find(str(uuid.uuid4())) is None
            with pytest.raises(ValueError):
                await store.save(_record(job_id="not-a-uuid"))
        finally:
            await engine.dispose()
