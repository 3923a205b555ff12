"""
Shared fixtures for route integration tests.

The edit service and upstream client are real; only the upstream client's
``httpx.AsyncClient`` and the retry pause are replaced, so every test
exercises validation, retry and error mapping end to end.
"""

from unittest.mock import AsyncMock

import fastapi
import httpx
import pytest
import pytest_asyncio

import image_edit_proxy.error_handling
import image_edit_proxy.middleware
import image_edit_proxy.models
import image_edit_proxy.routes.edit_routes
import image_edit_proxy.routes.health_routes
import image_edit_proxy.services.image_edit_service
import image_edit_proxy.services.upstream_client


@pytest.fixture
def edited_jpeg_bytes():
    return b"\xff\xd8\xff\xe0\x00\x10JFIF-edited-image\xff\xd9"


@pytest.fixture
def mock_upstream_post(edited_jpeg_bytes):
    """The ``post`` method of the upstream HTTP client; succeeds by default."""
    return AsyncMock(return_value=httpx.Response(200, content=edited_jpeg_bytes))


@pytest.fixture
def mock_sleep():
    return AsyncMock()


@pytest.fixture
def maximum_image_bytes():
    return image_edit_proxy.models.DEFAULT_MAXIMUM_IMAGE_BYTES


@pytest.fixture
def in_flight_request_counter():
    return image_edit_proxy.middleware.InFlightRequestCounter()


@pytest.fixture
def test_app(
    upstream_configuration,
    mock_upstream_post,
    mock_sleep,
    maximum_image_bytes,
    in_flight_request_counter,
):
    app = fastapi.FastAPI()
    image_edit_proxy.error_handling.register_error_handlers(app)

    app.add_middleware(
        image_edit_proxy.middleware.CorrelationIdMiddleware,
        in_flight_request_counter=in_flight_request_counter,
    )
    app.include_router(image_edit_proxy.routes.edit_routes.edit_router)
    app.include_router(image_edit_proxy.routes.health_routes.health_router)

    upstream_client = image_edit_proxy.services.upstream_client.UpstreamClient(upstream_configuration)
    upstream_client.http_client = AsyncMock()
    upstream_client.http_client.post = mock_upstream_post

    app.state.image_edit_service = image_edit_proxy.services.image_edit_service.ImageEditService(
        upstream_client=upstream_client,
        upstream_configuration=upstream_configuration,
        sleep=mock_sleep,
    )
    app.state.upstream_configuration = upstream_configuration
    app.state.maximum_image_bytes = maximum_image_bytes

    return app


@pytest_asyncio.fixture
async def client(test_app):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
