"""Video catalog and delivery endpoints."""
import asyncio
import json
import re
from typing import Any, AsyncIterator, Literal
from urllib.parse import quote

import anyio
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from sse_starlette.sse import EventSourceResponse

from app.api.deps import get_media_service, get_progress_tracker
from app.core.config import settings
from app.core.logging import get_logger
from app.models.video import DownloadRequest, FormatsRequest, MediaInfoResponse
from app.services.errors import DeliveryNotFoundError
from app.services.media_service import Delivery, MediaService
from app.services.progress import DeliveryProgress, ProgressTracker

logger = get_logger(__name__)

router = APIRouter()

_INFO_RESPONSES: dict[int | str, dict[str, Any]] = {
    200: {"description": "Video metadata and quality catalog", "model": MediaInfoResponse},
    400: {"description": "Invalid URL"},
    502: {"description": "Video could not be resolved"},
}

_DOWNLOAD_RESPONSES: dict[int | str, dict[str, Any]] = {
    200: {"description": "Media byte stream"},
    400: {"description": "Invalid URL, kind or quality"},
    404: {"description": "Requested quality not available"},
    500: {"description": "Media processing failed before streaming started"},
    502: {"description": "Video could not be resolved"},
}


async def _resolve_catalog(url: str, service: MediaService, response: Response) -> MediaInfoResponse:
    # Run blocking backend calls in a thread to avoid blocking the event loop
    catalog = await asyncio.to_thread(service.resolve_catalog, url)
    response.headers["Cache-Control"] = "no-store"
    return MediaInfoResponse.model_validate(catalog)


@router.post(
    "/info",
    response_model=MediaInfoResponse,
    status_code=status.HTTP_200_OK,
    summary="Resolve video catalog",
    description="Metadata, the standardized video quality ladder and ranked audio formats",
    responses=_INFO_RESPONSES,
)
async def fetch_info(
    request: FormatsRequest,
    response: Response,
    service: MediaService = Depends(get_media_service),
) -> MediaInfoResponse:
    """Resolve the quality catalog for a video URL."""
    return await _resolve_catalog(request.url, service, response)


@router.get(
    "/info",
    response_model=MediaInfoResponse,
    summary="Resolve video catalog (GET)",
    responses=_INFO_RESPONSES,
)
async def fetch_info_get(
    response: Response,
    url: str = Query(..., description="Video URL", min_length=10, max_length=2048),
    service: MediaService = Depends(get_media_service),
) -> MediaInfoResponse:
    """Resolve the quality catalog for a video URL."""
    return await _resolve_catalog(url, service, response)


@router.get(
    "/debug-formats",
    summary="Inspect raw primary formats",
    description="Raw primary-backend formats grouped by height, for diagnosing missing qualities",
)
async def debug_formats(
    url: str = Query(..., description="Video URL", min_length=10, max_length=2048),
    service: MediaService = Depends(get_media_service),
) -> dict[str, Any]:
    """Dump the primary backend's formats without ranking or fallback."""
    result = await asyncio.to_thread(service.debug_formats, url)
    return result


def _sanitize_filename(filename: str) -> str:
    """Sanitize a filename for safe use in Content-Disposition header.

    Args:
        filename: Raw filename

    Returns:
        Sanitized filename safe for headers (ASCII only)
    """
    filename = re.sub(r'[^a-zA-Z0-9\s\-\.\[\],]', '', filename, flags=re.ASCII)
    filename = re.sub(r'\s+', '_', filename)
    if len(filename) > 200:
        filename = filename[:200]
    return filename or "download"


def _build_content_disposition(filename: str) -> str:
    """Build Content-Disposition header with proper encoding for non-ASCII filenames.

    Uses RFC 5987 encoding to support Unicode filenames while maintaining
    compatibility with older browsers.
    """
    ascii_filename = _sanitize_filename(filename)
    encoded_filename = quote(filename, safe='')
    return f"attachment; filename=\"{ascii_filename}\"; filename*=UTF-8''{encoded_filename}"


async def _stream_delivery(
    delivery: Delivery,
    tracker: ProgressTracker,
    record: DeliveryProgress,
) -> AsyncIterator[bytes]:
    """Stream the pipeline's output, then make sure it is torn down.

    Runs until ffmpeg closes stdout or the client goes away.  Either way
    the ``finally`` block signals ffmpeg and its feeders at once, then
    reaps them in a worker thread shielded from the cancellation that a
    client disconnect delivers.

    Args:
        delivery: Started delivery whose first chunk is already read
        tracker: Progress store
        record: Progress record for this delivery

    Yields:
        Chunks of media data
    """
    job = delivery.job
    chunk_size = settings.STREAM_CHUNK_SIZE
    try:
        tracker.advance(record, len(delivery.first_chunk))
        yield delivery.first_chunk
        while True:
            chunk = await asyncio.to_thread(job.read, chunk_size)
            if not chunk:
                break
            tracker.advance(record, len(chunk))
            yield chunk

        return_code = await asyncio.to_thread(job.wait)
        if return_code != 0:
            # Headers are gone already; the client just sees a short file
            logger.error(
                f"ffmpeg {job.description} failed mid-stream ({return_code}) "
                f"for {delivery.filename}: {job.stderr_text[:500]}"
            )
            tracker.finish(record, error=f"Media pipeline exited with code {return_code}")
        else:
            tracker.finish(record)
    except OSError as e:
        logger.error(f"Error during delivery stream for {delivery.filename}: {e}")
        tracker.finish(record, error="Delivery stream interrupted")
    finally:
        tracker.finish(record, error="Client disconnected")
        job.signal_stop()
        with anyio.CancelScope(shield=True):
            await anyio.to_thread.run_sync(job.terminate)


async def _deliver(
    url: str,
    kind: str,
    quality: str,
    service: MediaService,
    tracker: ProgressTracker,
) -> StreamingResponse:
    delivery = await asyncio.to_thread(service.deliver, url, kind, quality)
    record = tracker.create(
        filename=delivery.filename,
        total_bytes=delivery.plan.estimated_size_bytes,
    )
    logger.info(
        f"Streaming {delivery.plan.strategy.value} delivery {record.delivery_id}: "
        f"{delivery.filename} ({quality})"
    )
    return StreamingResponse(
        _stream_delivery(delivery, tracker, record),
        media_type=delivery.content_type,
        headers={
            "Content-Disposition": _build_content_disposition(delivery.filename),
            "Cache-Control": "no-store",
            "X-Delivery-Strategy": delivery.plan.strategy.value,
            "X-Delivery-Id": record.delivery_id,
        },
    )


@router.post(
    "/download",
    summary="Download video or audio (POST)",
    description="Stream the requested quality as MP4 video or MP3 audio",
    responses=_DOWNLOAD_RESPONSES,
)
async def download_post(
    request: DownloadRequest,
    service: MediaService = Depends(get_media_service),
    tracker: ProgressTracker = Depends(get_progress_tracker),
) -> StreamingResponse:
    """Deliver a video (or its audio) in the requested quality."""
    return await _deliver(request.url, request.kind, request.quality, service, tracker)


@router.get(
    "/download",
    summary="Download video or audio (GET)",
    description="Same as POST, for browser navigation",
    responses=_DOWNLOAD_RESPONSES,
)
async def download_get(
    url: str = Query(..., description="Video URL", min_length=10, max_length=2048),
    kind: Literal["video", "audio"] = Query("video", description="video (MP4) or audio (MP3)"),
    quality: str = Query("best", description="Quality token", min_length=1, max_length=100),
    service: MediaService = Depends(get_media_service),
    tracker: ProgressTracker = Depends(get_progress_tracker),
) -> StreamingResponse:
    """Deliver a video (or its audio) via GET request."""
    request = DownloadRequest(url=url, kind=kind, quality=quality)
    return await download_post(request, service, tracker)


async def _progress_events(
    request: Request,
    tracker: ProgressTracker,
    record: DeliveryProgress,
) -> AsyncIterator[dict[str, str]]:
    interval = settings.PROGRESS_POLL_INTERVAL_SECONDS
    while True:
        if await request.is_disconnected():
            break
        snapshot = tracker.snapshot(record)
        yield {"event": "progress", "data": json.dumps(snapshot)}
        if snapshot["status"] != "streaming":
            break
        await asyncio.sleep(interval)


@router.get(
    "/download-progress/{delivery_id}",
    summary="Delivery progress (SSE)",
    description=(
        "Server-sent events with bytes delivered so far for the delivery named "
        "by a download response's X-Delivery-Id header"
    ),
    responses={404: {"description": "Unknown or expired delivery id"}},
)
async def download_progress(
    delivery_id: str,
    request: Request,
    tracker: ProgressTracker = Depends(get_progress_tracker),
) -> EventSourceResponse:
    """Stream progress events until the delivery completes or fails."""
    record = tracker.get(delivery_id)
    if record is None:
        raise DeliveryNotFoundError()
    return EventSourceResponse(_progress_events(request, tracker, record))
