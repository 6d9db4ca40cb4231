"""Domain-specific exceptions for the services layer."""


class MediaLadderError(Exception):
    """Base exception for catalog and delivery errors."""

    def __init__(self, message: str, code: str) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message
            code: Stable error code for API responses
        """
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidInputError(MediaLadderError):
    """Raised for a malformed or missing content reference or quality token."""

    def __init__(self, message: str = "The request input is invalid") -> None:
        super().__init__(message, "INVALID_INPUT")


class InvalidUrlError(InvalidInputError):
    """Raised when the provided URL is invalid or blocked."""

    def __init__(self, message: str = "The provided URL is invalid or blocked") -> None:
        super().__init__(message)
        self.code = "INVALID_URL"


class SourceUnavailableError(MediaLadderError):
    """Raised when the primary extraction backend cannot provide the content."""

    def __init__(self, message: str = "Video not found or unavailable") -> None:
        super().__init__(message, "SOURCE_UNAVAILABLE")


class DegradedSourceError(MediaLadderError):
    """Raised by a best-effort source; callers log it and carry on."""

    def __init__(self, message: str = "Secondary source unavailable") -> None:
        super().__init__(message, "DEGRADED_SOURCE")


class FormatNotFoundError(MediaLadderError):
    """Raised when the requested quality does not resolve to a catalog entry."""

    def __init__(self, message: str = "The requested format is not available") -> None:
        super().__init__(message, "FORMAT_NOT_FOUND")


class NoViableSourceError(MediaLadderError):
    """Raised when no video or audio source can be resolved at all."""

    def __init__(self, message: str = "No viable source for this content") -> None:
        super().__init__(message, "NO_VIABLE_SOURCE")


class PipelineFailureError(MediaLadderError):
    """Raised when the remux/transcode job fails before streaming begins."""

    def __init__(self, message: str = "Media processing failed") -> None:
        super().__init__(message, "PIPELINE_FAILURE")


class DeliveryNotFoundError(MediaLadderError):
    """Raised when a progress lookup names no known delivery."""

    def __init__(self, message: str = "Unknown or expired delivery id") -> None:
        super().__init__(message, "DELIVERY_NOT_FOUND")
