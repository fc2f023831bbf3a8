"""Custom exceptions for the narration render backend.

Every error carries a stable machine-readable code and an HTTP status code so
the API layer can turn it into a structured response.
"""

from typing import Any

from narration_render.constants.error_codes import get_error_spec


class NarrationRenderError(Exception):
    """Base exception for all application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to an API error payload."""
        spec = get_error_spec(self.code)
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": spec.get("retryable", False),
        }
        if "suggested_fix" in spec:
            payload["suggested_fix"] = spec["suggested_fix"]
        return payload


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class RenderJobNotFoundError(NarrationRenderError):
    """Render job not found."""

    code = "RENDER_JOB_NOT_FOUND"
    status_code = 404
    message = "Render job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Render job not found: {job_id}" if job_id else self.message
        super().__init__(message)


# =============================================================================
# Validation / State Errors
# =============================================================================


class InvalidUploadError(NarrationRenderError):
    """A multipart upload was missing or empty."""

    code = "VALIDATION_ERROR"
    status_code = 422
    message = "Uploaded file is empty"


class InvalidSentencesError(NarrationRenderError):
    """Sentences payload could not be parsed."""

    code = "INVALID_SENTENCES"
    status_code = 422
    message = "sentences must be a JSON array of objects with a text field"


class TimelineBuildError(NarrationRenderError):
    """Timings could not be turned into a timeline."""

    code = "TIMELINE_BUILD_FAILED"
    status_code = 400
    message = "Failed to build timeline"


class InvalidJobTransitionError(NarrationRenderError):
    """A job was asked to move to a state its current state cannot reach."""

    code = "INVALID_JOB_TRANSITION"
    status_code = 409

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition render job from '{current}' to '{target}'")


# =============================================================================
# Alignment Errors (recovered inside the alignment engine)
# =============================================================================


class TranscriptionUnavailableError(NarrationRenderError):
    """No transcription client is configured."""

    code = "TRANSCRIPTION_UNAVAILABLE"
    message = "Transcription client not configured"


class TranscriptionEmptyError(NarrationRenderError):
    """Every transcription strategy returned no usable segments."""

    code = "TRANSCRIPTION_EMPTY"
    message = "Transcription returned no usable segments"


class AlignmentTierError(NarrationRenderError):
    """An alignment tier could not produce timings."""

    code = "ALIGNMENT_TIER_FAILED"

    def __init__(self, tier: str, reason: str):
        self.tier = tier
        super().__init__(f"Alignment tier '{tier}' failed: {reason}")


# =============================================================================
# Infrastructure Errors
# =============================================================================


class MediaProbeError(NarrationRenderError):
    """ffprobe / ffmpeg could not read a media file."""

    code = "MEDIA_PROBE_FAILED"


class StagingError(NarrationRenderError):
    """Job assets could not be staged."""

    code = "STAGING_FAILED"


class RenderBackendError(NarrationRenderError):
    """The render backend failed; the message is the backend's own output."""

    code = "RENDER_BACKEND_FAILED"


class RenderJobTimeoutError(NarrationRenderError):
    """A job stayed in a non-terminal state past the staleness timeout."""

    code = "RENDER_JOB_TIMEOUT"

    def __init__(self, status: str, timeout_seconds: int):
        super().__init__(
            f"Render job timed out after {timeout_seconds} seconds in '{status}' state"
        )
