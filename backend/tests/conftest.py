"""Test configuration and fixtures."""
from typing import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sse_starlette.sse import AppStatus

from app.main import create_app
from app.services.format_cache import FormatCache
from app.services.media_service import MediaService
from fakes import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> FormatCache:
    return FormatCache(ttl_seconds=600, maxsize=16, timer=clock)


@pytest.fixture
def mock_service() -> MagicMock:
    """A MediaService stand-in for API tests."""
    return MagicMock(spec=MediaService)


@pytest.fixture
def client(
    mock_service: MagicMock, monkeypatch: pytest.MonkeyPatch
) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app.

    Yields:
        TestClient instance
    """
    # Event streams bind their shutdown event to the first loop that waits on it
    monkeypatch.setattr(AppStatus, "should_exit_event", None, raising=False)
    app = create_app(media_service=mock_service)
    with TestClient(app) as test_client:
        yield test_client
