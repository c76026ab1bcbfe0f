"""Custom exceptions for the storyrender service.

These exceptions carry machine-readable error codes and suggested recovery
actions, and double as the failure taxonomy of the render pipeline: stage
errors are recorded on the job record, lookup errors map to HTTP responses.
"""

from storyrender.constants.error_codes import get_error_spec
from storyrender.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class StoryRenderError(Exception):
    """Base exception for all storyrender errors."""

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

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            suggested_actions.append(
                SuggestedAction(
                    action=spec["suggested_action"],
                    endpoint=spec.get("suggested_endpoint"),
                    parameters=spec.get("parameters", {}),
                )
            )

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Job lookup errors
# =============================================================================


class JobNotFoundError(StoryRenderError):
    """No job with this id exists (or its record was evicted)."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Render job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Render job not found: {job_id}" if job_id else self.message
        location = ErrorLocation(job_id=job_id) if job_id else None
        super().__init__(message, location=location)


class JobNotReadyError(StoryRenderError):
    """The job exists but has no output to fetch."""

    code = "JOB_NOT_READY"
    status_code = 409
    message = "Render job is not completed"

    def __init__(self, job_id: str | None = None, status: str | None = None):
        if job_id and status:
            message = f"Render job {job_id} is {status}"
        else:
            message = self.message
        location = ErrorLocation(job_id=job_id) if job_id else None
        super().__init__(message, location=location)


class JobGoneError(StoryRenderError):
    """The job completed once, but its output has been reclaimed."""

    code = "JOB_GONE"
    status_code = 410
    message = "Render output has expired"

    def __init__(self, job_id: str | None = None):
        message = f"Render output has expired: {job_id}" if job_id else self.message
        location = ErrorLocation(job_id=job_id) if job_id else None
        super().__init__(message, location=location)


# =============================================================================
# Validation errors
# =============================================================================


class InvalidTimelineError(StoryRenderError):
    """Timeline cannot be rendered as submitted."""

    code = "INVALID_TIMELINE"
    status_code = 400
    message = "Invalid timeline"

    def __init__(self, message: str | None = None, segment_index: int | None = None):
        location = ErrorLocation(segment_index=segment_index) if segment_index is not None else None
        super().__init__(message, location=location)


# =============================================================================
# Pipeline errors
# =============================================================================


class AssetFetchError(StoryRenderError):
    """A media reference could not be turned into a local file."""

    code = "ASSET_FETCH_FAILED"
    status_code = 502
    message = "Failed to fetch asset"


class ProbeError(StoryRenderError):
    """Duration measurement failed; callers fall back to the declared duration."""

    code = "PROBE_FAILED"
    status_code = 500
    message = "Failed to probe media"


class EncodeError(StoryRenderError):
    """Per-segment encode failed."""

    code = "ENCODE_FAILED"
    status_code = 500
    message = "Segment encode failed"


class ConcatError(EncodeError):
    """Segment concatenation failed."""

    code = "CONCAT_FAILED"
    message = "Segment concatenation failed"


class MixError(EncodeError):
    """Global audio mix failed."""

    code = "MIX_FAILED"
    message = "Audio mix failed"


class RenderCancelledError(StoryRenderError):
    """The job was asked to stop between stages."""

    code = "RENDER_CANCELLED"
    status_code = 409
    message = "Render cancelled"
