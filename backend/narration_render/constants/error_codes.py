"""Error codes dictionary for the render job API.

Single source of truth for error codes, their retryability, and suggested
fixes. Used by the exception handlers to build machine-readable responses.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Resource errors
    # ==========================================================================
    "RENDER_JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Check the job id returned by POST /jobs",
    },
    # ==========================================================================
    # Validation errors
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Fix the request payload and retry",
    },
    "INVALID_SENTENCES": {
        "retryable": False,
        "suggested_fix": "Send sentences as a JSON array of {text} objects",
    },
    "TIMELINE_BUILD_FAILED": {
        "retryable": False,
    },
    # ==========================================================================
    # State errors
    # ==========================================================================
    "INVALID_JOB_TRANSITION": {
        "retryable": False,
    },
    # ==========================================================================
    # Alignment errors (absorbed by tier fallback, never surfaced to clients)
    # ==========================================================================
    "TRANSCRIPTION_UNAVAILABLE": {
        "retryable": False,
        "suggested_fix": "Set OPENAI_API_KEY to enable transcript alignment",
    },
    "TRANSCRIPTION_EMPTY": {
        "retryable": True,
    },
    "ALIGNMENT_TIER_FAILED": {
        "retryable": True,
    },
    # ==========================================================================
    # Infrastructure errors
    # ==========================================================================
    "MEDIA_PROBE_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that ffprobe is installed and the file is a valid media file",
    },
    "STAGING_FAILED": {
        "retryable": True,
    },
    "RENDER_BACKEND_FAILED": {
        "retryable": True,
    },
    "RENDER_JOB_TIMEOUT": {
        "retryable": True,
        "suggested_fix": "Submit a new render job",
    },
    "INTERNAL_ERROR": {
        "retryable": True,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Return the spec for an error code (empty spec for unknown codes)."""
    return ERROR_CODES.get(code, {})
