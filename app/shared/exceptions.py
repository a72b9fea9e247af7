from fastapi import HTTPException, status


# ============ HTTP EXCEPTIONS ============

class NotFoundException(HTTPException):
    """Exception for resource not found."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )


class BadRequestException(HTTPException):
    """Exception for bad request."""

    def __init__(self, detail: str = "Bad request"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


class ConflictException(HTTPException):
    """Exception for a request that clashes with the upload's current status."""

    def __init__(self, detail: str = "Upload is in a conflicting state"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )


# ============ PIPELINE EXCEPTIONS ============

class PipelineError(Exception):
    """Base class for errors raised while processing a lab upload."""


class FetchError(PipelineError):
    """The PDF could not be retrieved from storage."""


class SplitError(PipelineError):
    """The PDF is unreadable or has no pages."""


class ExtractionError(PipelineError):
    """The extraction model could not produce a result."""


class VerificationError(PipelineError):
    """The verification model could not produce a result."""


class MatchingError(PipelineError):
    """Biomarkers could not be standardized against the catalog."""


class InvalidTransitionError(PipelineError):
    """A status or stage change the job state machine does not allow."""


# ============ PROVIDER EXCEPTIONS ============

class ProviderError(Exception):
    """A model provider call failed in a way retrying will not fix."""


class TransientProviderError(ProviderError):
    """Timeout, connection reset, rate limit or 5xx from a model provider."""
