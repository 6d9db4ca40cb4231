"""Request-scoped dependencies."""
from fastapi import Request

from app.services.media_service import MediaService
from app.services.progress import ProgressTracker


def get_media_service(request: Request) -> MediaService:
    """Return the service instance created with the application."""
    return request.app.state.media_service


def get_progress_tracker(request: Request) -> ProgressTracker:
    return request.app.state.progress_tracker
