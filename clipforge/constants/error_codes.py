"""Error codes dictionary for the export engine.

This is the single source of truth for all error codes, their retryability,
and suggested recovery actions. Used by the API exception handlers to
generate machine-readable error responses.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_fix: str
    parameters: dict[str, Any]


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Timeline validation errors (not retryable, fix the timeline)
    # ==========================================================================
    "TIMELINE_INVALID": {
        "retryable": False,
    },
    "NO_VIDEO_TRACKS": {
        "retryable": False,
        "suggested_fix": "Add at least one video track to the timeline",
    },
    "NO_CLIPS": {
        "retryable": False,
        "suggested_fix": "Place at least one clip on a video track",
    },
    "SOURCE_CLIP_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Re-import the media or remove the clip from the timeline",
    },
    "SOURCE_FILE_UNREADABLE": {
        "retryable": False,
        "suggested_fix": "Check that the source file still exists and is readable",
    },
    "INVALID_TRIM_START": {
        "retryable": False,
    },
    "INVALID_TRIM_END": {
        "retryable": False,
    },
    "TRIM_EXCEEDS_SOURCE": {
        "retryable": False,
        "suggested_fix": "Shorten the clip so its trim window fits inside the source",
    },
    "INVALID_PLACEMENT": {
        "retryable": False,
    },
    "EMPTY_COMPOSITION": {
        "retryable": False,
        "suggested_fix": "Place a clip on the base track",
    },
    # ==========================================================================
    # Encoder errors
    # ==========================================================================
    "ENCODER_UNAVAILABLE": {
        "retryable": False,
        "suggested_fix": "Install FFmpeg or set FFMPEG_PATH / FFPROBE_PATH",
    },
    "ENCODER_FAILED": {
        "retryable": False,
        "suggested_fix": "Check your timeline and try again",
    },
    "PROBE_FAILED": {
        "retryable": False,
    },
    "ASSEMBLY_FAILED": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 1},
    },
    "EXPORT_CANCELLED": {
        "retryable": True,
        "suggested_action": "restart_export",
    },
    # ==========================================================================
    # Request errors
    # ==========================================================================
    "EXPORT_NOT_FOUND": {
        "retryable": False,
    },
    "EXPORT_ALREADY_FINISHED": {
        "retryable": False,
        "suggested_fix": "The export has already completed, failed or been cancelled",
    },
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})
