"""
API tests for the render job endpoints.

The app is built with an injected orchestrator (fake render backend, no
transcription) and driven through FastAPI's TestClient. Background jobs run
on the TestClient's event loop; ``_drain`` waits for them to finish.
"""

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import MP3_HEADER, WAV_HEADER, FakeRenderBackend
from narration_render.api.render_jobs import parse_sentences
from narration_render.config import Settings
from narration_render.exceptions import InvalidSentencesError, RenderBackendError
from narration_render.main import create_app
from narration_render.services.alignment_engine import AlignmentEngine
from narration_render.services.job_store import InMemoryJobStore
from narration_render.services.render_orchestrator import RenderJobOrchestrator

SENTENCES = json.dumps(
    [
        {"text": "Hello world"},
        {"text": "This is a test", "isSuspense": True},
        "Goodbye",
    ]
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def orchestrator(test_settings, fake_render_backend) -> RenderJobOrchestrator:
    return RenderJobOrchestrator(
        store=InMemoryJobStore(),
        alignment_engine=AlignmentEngine(),
        render_backend=fake_render_backend,
        settings=test_settings,
    )


@pytest.fixture
def client(test_settings, orchestrator):
    app = create_app(settings=test_settings, orchestrator=orchestrator)
    with TestClient(app) as test_client:
        yield test_client


def _drain(client: TestClient, orchestrator: RenderJobOrchestrator) -> None:
    client.portal.call(orchestrator.supervisor.drain)


def _form(**overrides) -> dict[str, str]:
    data = {"sentences": SENTENCES, "audioDurationSeconds": "9"}
    data.update(overrides)
    return data


def _files(with_images: bool = True) -> list[tuple[str, tuple[str, bytes, str]]]:
    files = [("voiceOver", ("voice.wav", WAV_HEADER + b"\x00" * 64, "audio/wav"))]
    if with_images:
        files += [
            ("images", ("one.png", b"\x89PNG one", "image/png")),
            ("images", ("two.png", b"\x89PNG two", "image/png")),
        ]
    return files


# =============================================================================
# Sentence parsing
# =============================================================================


class TestParseSentences:
    def test_objects_and_strings(self):
        sentences = parse_sentences(SENTENCES)

        assert [s.text for s in sentences] == ["Hello world", "This is a test", "Goodbye"]
        assert sentences[1].is_suspense is True
        assert sentences[2].media_type == "image"

    def test_video_sentence(self):
        sentences = parse_sentences('[{"text": "Clip", "mediaType": "video", "videoUrl": "https://cdn.test/c.mp4"}]')
        assert sentences[0].video_url == "https://cdn.test/c.mp4"

    @pytest.mark.parametrize(
        "raw",
        ["not json", "[]", '{"text": "hi"}', '[{"text": "a", "mediaType": "gif"}]', "[42]"],
    )
    def test_rejects_invalid(self, raw):
        with pytest.raises(InvalidSentencesError):
            parse_sentences(raw)


# =============================================================================
# POST /jobs and GET /jobs/{id}
# =============================================================================


class TestCreateAndPollJob:
    def test_create_returns_queued(self, client):
        response = client.post("/jobs", data=_form(), files=_files())

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "queued"
        assert body["id"]

    def test_job_completes(self, client, orchestrator):
        job_id = client.post("/jobs", data=_form(), files=_files()).json()["id"]
        _drain(client, orchestrator)

        response = client.get(f"/jobs/{job_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["error"] is None
        assert body["videoUrl"] == f"http://render.test/static/videos/{job_id}.mp4"

        timeline = body["timeline"]
        assert timeline["durationInFrames"] == 270
        first, second = timeline["scenes"][0]["imageSrc"], timeline["scenes"][1]["imageSrc"]
        assert first.startswith("images/") and first.endswith(".png")
        assert second.startswith("images/") and second != first
        assert timeline["scenes"][1]["isSuspense"] is True
        # Only two images for three sentences: the last scene is text-only
        assert timeline["scenes"][2]["imageSrc"] is None

    def test_rendered_video_is_served(self, client, orchestrator):
        job_id = client.post("/jobs", data=_form(), files=_files()).json()["id"]
        _drain(client, orchestrator)

        response = client.get(f"/static/videos/{job_id}.mp4")

        assert response.status_code == 200
        assert response.content.endswith(b"ftypmp42")

    def test_render_options_reach_timeline(self, client, orchestrator):
        form = _form(isShort="true", useLowerFps="true", useLowerResolution="true", enableGlitchTransitions="true")
        job_id = client.post("/jobs", data=form, files=_files(with_images=False)).json()["id"]
        _drain(client, orchestrator)

        timeline = client.get(f"/jobs/{job_id}").json()["timeline"]

        assert (timeline["width"], timeline["height"], timeline["fps"]) == (720, 1280, 24)
        assert [s["useGlitch"] for s in timeline["scenes"]] == [False, True, False]

    def test_short_inferred_from_script_length(self, client, orchestrator):
        job_id = client.post("/jobs", data=_form(scriptLength="30 seconds"), files=_files()).json()["id"]
        _drain(client, orchestrator)

        timeline = client.get(f"/jobs/{job_id}").json()["timeline"]
        assert (timeline["width"], timeline["height"]) == (1080, 1920)

    def test_background_music_options(self, client, orchestrator):
        form = _form(backgroundMusicSrc="https://cdn.test/track.mp3", backgroundMusicVolume="0.3")
        job_id = client.post("/jobs", data=form, files=_files()).json()["id"]
        _drain(client, orchestrator)

        assets = client.get(f"/jobs/{job_id}").json()["timeline"]["assets"]
        assert assets["backgroundMusicSrc"] == "https://cdn.test/track.mp3"
        assert assets["backgroundMusicVolume"] == 0.3

    def test_uploads_are_saved(self, client, test_settings):
        files = [("voiceOver", ("voice.mp3", MP3_HEADER, "audio/mpeg"))]
        client.post("/jobs", data=_form(), files=files)

        saved = list((Path(test_settings.upload_dir) / "audio").iterdir())
        assert len(saved) == 1
        assert saved[0].suffix == ".mp3"
        assert saved[0].read_bytes() == MP3_HEADER


class TestFailedJob:
    def test_backend_error_is_reported(self, test_settings):
        backend = FakeRenderBackend(error=RenderBackendError("remotion: out of memory"))
        orchestrator = RenderJobOrchestrator(
            store=InMemoryJobStore(),
            alignment_engine=AlignmentEngine(),
            render_backend=backend,
            settings=test_settings,
        )
        app = create_app(settings=test_settings, orchestrator=orchestrator)

        with TestClient(app) as client:
            job_id = client.post("/jobs", data=_form(), files=_files()).json()["id"]
            _drain(client, orchestrator)
            body = client.get(f"/jobs/{job_id}").json()

        assert body["status"] == "failed"
        assert body["error"] == "remotion: out of memory"
        assert body["videoUrl"] is None


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    def test_unknown_job_is_404(self, client):
        response = client.get("/jobs/does-not-exist")

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "RENDER_JOB_NOT_FOUND"
        assert error["retryable"] is False
        assert "does-not-exist" in error["message"]

    def test_invalid_sentences(self, client):
        response = client.post("/jobs", data=_form(sentences="not json"), files=_files())

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_SENTENCES"

    def test_empty_sentences(self, client):
        response = client.post("/jobs", data=_form(sentences="[]"), files=_files())

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_SENTENCES"

    def test_missing_voice_over(self, client):
        response = client.post("/jobs", data=_form(), files=[("images", ("one.png", b"\x89PNG", "image/png"))])

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "voiceOver" in error["message"]

    def test_empty_voice_over(self, client):
        files = [("voiceOver", ("voice.wav", b"", "audio/wav"))]

        response = client.post("/jobs", data=_form(), files=files)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_music_volume_out_of_range(self, client):
        response = client.post("/jobs", data=_form(backgroundMusicVolume="1.5"), files=_files())

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestHealth:
    def test_health(self, client, test_settings):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": test_settings.app_version}


class TestSettings:
    def test_unused_app_flags_are_ignored(self):
        settings = Settings(_env_file=None, environment="production", debug=False, log_level="debug")

        assert not hasattr(settings, "environment")
        assert not hasattr(settings, "debug")
        assert settings.log_level == "debug"
