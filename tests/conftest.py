"""Root test configuration: shared upstream configuration fixtures."""

import pytest
import structlog

import image_edit_proxy.models

UPSTREAM_TEST_URL = "http://upstream.test/edit"


@pytest.fixture(autouse=True)
def _clear_structlog_context():
    """Drop any correlation ID bound by a previous test."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def upstream_configuration() -> image_edit_proxy.models.UpstreamConfiguration:
    return image_edit_proxy.models.UpstreamConfiguration(
        base_url=UPSTREAM_TEST_URL,
        request_timeout_milliseconds=5000,
        maximum_retries=3,
        retry_delay_milliseconds=2000,
    )
