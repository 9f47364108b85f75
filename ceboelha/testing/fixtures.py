"""Pytest fixtures for Ceboelha testing.

To use these fixtures, add to your conftest.py:

    pytest_plugins = ["ceboelha.testing.fixtures"]
"""

import pytest

from ceboelha.auth.service import AuthService, create_auth_service
from ceboelha.core.settings import CeboelhaSettings
from ceboelha.testing.mocks import InMemoryS3
from ceboelha.testing.utils import FrozenClock, create_test_settings


@pytest.fixture
def settings() -> CeboelhaSettings:
    """Provide test settings.

    Returns:
        CeboelhaSettings instance configured for testing
    """
    return create_test_settings()


@pytest.fixture
def mock_s3() -> InMemoryS3:
    """Provide in-memory S3 mock with the test bucket created.

    Returns:
        InMemoryS3 instance
    """
    s3 = InMemoryS3()
    s3._ensure_bucket("test-bucket")
    yield s3
    s3.clear()


@pytest.fixture
def clock() -> FrozenClock:
    """Provide a controllable clock shared by all components."""
    return FrozenClock()


@pytest.fixture
async def services(
    settings: CeboelhaSettings,
    mock_s3: InMemoryS3,
    clock: FrozenClock,
) -> AuthService:
    """Provide an AuthService wired to the in-memory S3 mock.

    Background audit writes are drained on teardown.

    Yields:
        AuthService instance
    """
    service = create_auth_service(settings, mock_s3, clock=clock)
    yield service
    await service.audit.drain()


@pytest.fixture
def client(settings: CeboelhaSettings, mock_s3: InMemoryS3, clock: FrozenClock):
    """Provide a FastAPI TestClient for the Ceboelha app with mocked S3.

    Yields:
        FastAPI TestClient with the app's lifespan running
    """
    from fastapi.testclient import TestClient

    from ceboelha.fastapi.app import create_app

    app = create_app(settings=settings, s3_client=mock_s3, clock=clock)
    with TestClient(app) as test_client:
        yield test_client
