"""Render job API endpoints.

POST /jobs accepts the voice-over, per-sentence images and the script as a
multipart form, queues a render job and returns immediately. Clients poll
GET /jobs/{job_id} until the job is completed or failed.
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Annotated, Any

from fastapi import APIRouter, File, Form, UploadFile, status
from pydantic import TypeAdapter, ValidationError

from narration_render.api.deps import Orchestrator
from narration_render.exceptions import InvalidSentencesError, InvalidUploadError
from narration_render.schemas.render import (
    RenderJobCreatedResponse,
    RenderJobRequest,
    RenderJobResponse,
    RenderJobStatus,
    RenderOptions,
    SentenceInput,
)

router = APIRouter()
logger = logging.getLogger(__name__)

_sentence_list_adapter = TypeAdapter(list[SentenceInput])


def parse_sentences(raw: str) -> list[SentenceInput]:
    """
    Parse the ``sentences`` form field.

    Accepts a JSON array whose items are sentence objects
    (``{"text", "isSuspense", "mediaType", "videoUrl"}``) or plain strings.

    Raises:
        InvalidSentencesError: If the field is not a non-empty array of sentences
    """
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidSentencesError(f"sentences is not valid JSON: {e.msg}") from e

    if not isinstance(data, list) or not data:
        raise InvalidSentencesError("sentences must be a non-empty JSON array")

    items = [{"text": item} if isinstance(item, str) else item for item in data]
    try:
        return _sentence_list_adapter.validate_python(items)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidSentencesError(f"Invalid sentence at {location}: {first.get('msg')}") from e


async def save_upload(upload: UploadFile, directory: Path) -> str:
    """Write an upload to ``directory/<uuid><ext>`` and return the path."""
    content = await upload.read()
    if not content:
        raise InvalidUploadError(f"Uploaded file is empty: {upload.filename or 'unnamed'}")

    ext = Path(upload.filename or "").suffix.lower()
    path = directory / f"{uuid.uuid4()}{ext}"
    await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
    await asyncio.to_thread(path.write_bytes, content)
    return str(path)


@router.post(
    "/jobs",
    response_model=RenderJobCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_render_job(
    orchestrator: Orchestrator,
    voice_over: Annotated[UploadFile, File(alias="voiceOver")],
    sentences: Annotated[str, Form()],
    images: Annotated[list[UploadFile] | None, File()] = None,
    script_length: Annotated[str, Form(alias="scriptLength")] = "",
    is_short: Annotated[bool | None, Form(alias="isShort")] = None,
    audio_duration_seconds: Annotated[float | None, Form(alias="audioDurationSeconds")] = None,
    use_lower_fps: Annotated[bool, Form(alias="useLowerFps")] = False,
    use_lower_resolution: Annotated[bool, Form(alias="useLowerResolution")] = False,
    enable_glitch_transitions: Annotated[bool, Form(alias="enableGlitchTransitions")] = False,
    background_music_src: Annotated[str | None, Form(alias="backgroundMusicSrc")] = None,
    background_music_volume: Annotated[float | None, Form(alias="backgroundMusicVolume", ge=0, le=1)] = None,
) -> RenderJobCreatedResponse:
    """Queue a render job for a narrated script."""
    parsed_sentences = parse_sentences(sentences)

    upload_root = Path(orchestrator.settings.upload_dir)
    audio_path = await save_upload(voice_over, upload_root / "audio")
    image_paths = [await save_upload(image, upload_root / "images") for image in images or []]

    request = RenderJobRequest(
        audio_path=audio_path,
        sentences=parsed_sentences,
        image_paths=image_paths,
        audio_duration_seconds=audio_duration_seconds,
        options=RenderOptions(
            script_length=script_length,
            is_short=is_short,
            use_lower_fps=use_lower_fps,
            use_lower_resolution=use_lower_resolution,
            enable_glitch_transitions=enable_glitch_transitions,
            background_music_src=background_music_src,
            background_music_volume=background_music_volume,
        ),
    )
    job_id = await orchestrator.create_job(request)
    logger.info(
        "[RENDER_JOB] Accepted job %s: %d sentences, %d images",
        job_id,
        len(parsed_sentences),
        len(image_paths),
    )
    return RenderJobCreatedResponse(id=job_id, status=RenderJobStatus.QUEUED)


@router.get("/jobs/{job_id}", response_model=RenderJobResponse)
async def get_render_job(job_id: str, orchestrator: Orchestrator) -> RenderJobResponse:
    """Poll a render job; ``videoUrl`` is set once the job has completed."""
    job = await orchestrator.get_job(job_id)
    return RenderJobResponse.from_record(job)
