"""Global exception handlers for API errors."""
from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.core.logging import get_logger
from app.models.video import ErrorResponse
from app.services.errors import MediaLadderError

logger = get_logger(__name__)

STATUS_CODE_MAP = {
    "INVALID_INPUT": status.HTTP_400_BAD_REQUEST,
    "INVALID_URL": status.HTTP_400_BAD_REQUEST,
    "SOURCE_UNAVAILABLE": status.HTTP_502_BAD_GATEWAY,
    "FORMAT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NO_VIABLE_SOURCE": status.HTTP_404_NOT_FOUND,
    "PIPELINE_FAILURE": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "DELIVERY_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INTERNAL_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# Expected client mistakes; not worth a warning each
_QUIET_CODES = {"INVALID_INPUT", "INVALID_URL"}


async def media_ladder_error_handler(
    request: Request, exc: MediaLadderError
) -> JSONResponse:
    """Handle all MediaLadderError exceptions.

    Args:
        request: FastAPI request
        exc: Domain exception

    Returns:
        JSON response with error details
    """
    status_code = STATUS_CODE_MAP.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    code = exc.code if exc.code in STATUS_CODE_MAP else "INTERNAL_ERROR"

    if exc.code not in _QUIET_CODES:
        logger.warning(f"Domain error: {exc.code} - {exc.message}")

    error_response = ErrorResponse(code=code, message=exc.message)

    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Args:
        request: FastAPI request
        exc: Unexpected exception

    Returns:
        JSON response with generic error
    """
    logger.error(f"Unexpected error: {exc}", exc_info=True)

    error_response = ErrorResponse(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response.model_dump(),
    )
