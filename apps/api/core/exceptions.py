"""
Custom exception classes and error handling.

Two families live here:
- APIException and subclasses: consistent HTTP error responses.
- AnalyticsError and subclasses: the engine's failure taxonomy. These are
  plain exceptions; the API layer maps them to HTTP responses.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class ServiceUnavailableError(APIException):
    """A backing store or upstream source is failing."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="SERVICE_UNAVAILABLE"
        )


# =============================================================================
# ANALYTICS ENGINE ERRORS
# =============================================================================

class AnalyticsError(Exception):
    """Base class for behavior-analytics failures."""


class InsufficientDataError(AnalyticsError):
    """
    Not enough history to run an analysis.

    Recoverable: callers skip the analysis instead of aborting.
    """

    def __init__(self, analysis: str, required: int, found: int):
        self.analysis = analysis
        self.required = required
        self.found = found
        super().__init__(
            f"{analysis}: need at least {required} samples, found {found}"
        )


class UpstreamReadFailure(AnalyticsError):
    """The activity-history or profile source errored."""

    def __init__(self, source: str, user_id: Any, cause: Optional[BaseException] = None):
        self.source = source
        self.user_id = user_id
        self.cause = cause
        super().__init__(f"Failed to read {source} for user {user_id}: {cause}")


class PersistenceFailure(AnalyticsError):
    """A write to the pattern/preference/recommendation store failed."""

    def __init__(self, operation: str, key: Any, cause: Optional[BaseException] = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        super().__init__(f"{operation} failed for {key}: {cause}")


class RecommendationNotFound(AnalyticsError):
    """Feedback referenced a recommendation that does not exist."""

    def __init__(self, recommendation_id: Any):
        self.recommendation_id = recommendation_id
        super().__init__(f"Recommendation not found: {recommendation_id}")
