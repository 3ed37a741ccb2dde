"""Custom exceptions for the export engine.

These exceptions integrate with the API error handling, providing
machine-readable error codes and suggested recovery actions.
"""

from clipforge.constants.error_codes import get_error_spec
from clipforge.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class ExportError(Exception):
    """Base exception for all export engine errors.

    Provides structured error information for API responses.
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        retryable = spec.get("retryable", False)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            suggested_actions.append(
                SuggestedAction(
                    action=spec["suggested_action"],
                    parameters=spec.get("parameters", {}),
                )
            )

        suggested_fix = self.suggested_fix or spec.get("suggested_fix")

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=retryable,
            suggested_fix=suggested_fix,
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Validation Errors (400) - never retried
# =============================================================================


class ValidationError(ExportError):
    """Timeline failed pre-flight validation."""

    code = "TIMELINE_INVALID"
    status_code = 400
    message = "Timeline is not exportable"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        track_id: str | None = None,
        clip_id: str | None = None,
    ):
        location = None
        if track_id or clip_id:
            location = ErrorLocation(track_id=track_id, clip_id=clip_id)
        super().__init__(message, code=code, location=location)
        self.track_id = track_id
        self.clip_id = clip_id


# =============================================================================
# Encoder Errors
# =============================================================================


class ProcessSpawnError(ExportError):
    """The encoder binary could not be launched."""

    code = "ENCODER_UNAVAILABLE"
    status_code = 503
    message = "FFmpeg could not be started. Please ensure FFmpeg is properly installed."

    def __init__(self, binary: str, reason: str | None = None):
        message = f"FFmpeg could not be started ({binary}). Please ensure FFmpeg is properly installed."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.binary = binary


class ProcessExitError(ExportError):
    """The encoder ran but exited with a non-zero status."""

    code = "ENCODER_FAILED"
    status_code = 500
    message = "Video processing error"

    def __init__(self, returncode: int, stderr: str = "", description: str | None = None):
        tail = stderr.strip()[-500:] if stderr else ""
        what = description or "FFmpeg"
        message = f"{what} failed with exit code {returncode}"
        if tail:
            message = f"{message}: {tail}"
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ProbeError(ExportError):
    """Media metadata could not be read."""

    code = "PROBE_FAILED"
    status_code = 500
    message = "Failed to read media metadata"


class AssemblyError(ExportError):
    """Final concatenation failed after every segment succeeded."""

    code = "ASSEMBLY_FAILED"
    status_code = 500
    message = "Failed to assemble rendered segments"


class ExportCancelledError(ExportError):
    """The export was cancelled by the caller."""

    code = "EXPORT_CANCELLED"
    status_code = 409
    message = "Export cancelled"


class ExportNotFoundError(ExportError):
    """Export job not found."""

    code = "EXPORT_NOT_FOUND"
    status_code = 404
    message = "Export not found"

    def __init__(self, export_id: str | None = None):
        message = f"Export not found: {export_id}" if export_id else self.message
        super().__init__(message)


class ExportAlreadyFinishedError(ExportError):
    """Cancel was requested for an export that is no longer running."""

    code = "EXPORT_ALREADY_FINISHED"
    status_code = 409
    message = "Export already finished"
