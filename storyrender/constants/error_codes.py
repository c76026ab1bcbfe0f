"""Error codes dictionary for the render API.

This is the single source of truth for all error codes, their retryability,
and suggested recovery actions. Used by exception handlers to generate
machine-readable error responses.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str
    parameters: dict[str, Any]


# Error codes dictionary - single source of truth
ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Job lookup errors
    # ==========================================================================
    "JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_action": "resubmit",
        "suggested_endpoint": "POST /api/render",
    },
    "JOB_NOT_READY": {
        "retryable": True,
        "suggested_action": "poll_status",
        "suggested_endpoint": "GET /api/render/{job_id}/status",
    },
    "JOB_GONE": {
        "retryable": False,
        "suggested_action": "resubmit",
        "suggested_endpoint": "POST /api/render",
        "suggested_fix": "The rendered file expired; submit the timeline again",
    },
    # ==========================================================================
    # Pipeline errors (a failed job is never retried in place)
    # ==========================================================================
    "ASSET_FETCH_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that every media URL is reachable or a valid data URL",
    },
    "PROBE_FAILED": {
        "retryable": False,
    },
    "ENCODE_FAILED": {
        "retryable": False,
        "suggested_action": "resubmit",
        "suggested_endpoint": "POST /api/render",
    },
    "CONCAT_FAILED": {
        "retryable": False,
        "suggested_action": "resubmit",
        "suggested_endpoint": "POST /api/render",
    },
    "MIX_FAILED": {
        "retryable": False,
        "suggested_action": "resubmit",
        "suggested_endpoint": "POST /api/render",
    },
    "RENDER_CANCELLED": {
        "retryable": False,
    },
    # ==========================================================================
    # Validation errors (not retryable, fix input)
    # ==========================================================================
    "INVALID_TIMELINE": {
        "retryable": False,
    },
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    # ==========================================================================
    # Generic
    # ==========================================================================
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry",
    },
    "NOT_FOUND": {
        "retryable": False,
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


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
