"""Tests for image_edit_proxy/middleware.py: InFlightRequestCounter,
CorrelationIdMiddleware and RequestPayloadSizeLimitMiddleware."""

import json
import uuid
from unittest.mock import AsyncMock

import fastapi
import httpx
import pytest

import image_edit_proxy.error_handling
import image_edit_proxy.middleware
import image_edit_proxy.models


def _http_scope(path: str = "/test") -> dict:
    return {
        "type": "http",
        "method": "GET",
        "path": path,
        "headers": [],
    }


async def _receive():
    return {"type": "http.request", "body": b"", "more_body": False}


class TestInFlightRequestCounter:
    """
    The counter is read during graceful shutdown to report how many
    requests were still being processed.
    """

    def test_initial_count_is_zero(self):
        counter = image_edit_proxy.middleware.InFlightRequestCounter()
        assert counter.count == 0

    def test_increment_and_decrement(self):
        counter = image_edit_proxy.middleware.InFlightRequestCounter()
        counter.increment()
        counter.increment()
        counter.increment()
        assert counter.count == 3
        counter.decrement()
        counter.decrement()
        assert counter.count == 1

    @pytest.mark.asyncio
    async def test_middleware_tracks_request_in_flight(self):
        counter = image_edit_proxy.middleware.InFlightRequestCounter()
        counter_during_request: int | None = None

        async def inner_app(scope, receive, send):
            nonlocal counter_during_request
            counter_during_request = counter.count
            await send({"type": "http.response.start", "status": 200, "headers": []})
            await send({"type": "http.response.body", "body": b"ok"})

        middleware = image_edit_proxy.middleware.CorrelationIdMiddleware(
            inner_app,
            in_flight_request_counter=counter,
        )

        sent_messages: list[dict] = []

        async def send(message: dict) -> None:
            sent_messages.append(message)

        await middleware(_http_scope(), _receive, send)

        assert counter_during_request == 1
        assert counter.count == 0

    @pytest.mark.asyncio
    async def test_counter_decremented_even_on_unhandled_exception(self):
        counter = image_edit_proxy.middleware.InFlightRequestCounter()

        async def failing_inner_app(scope, receive, send):
            raise RuntimeError("Simulated application failure")

        middleware = image_edit_proxy.middleware.CorrelationIdMiddleware(
            failing_inner_app,
            in_flight_request_counter=counter,
        )

        async def send(message: dict) -> None:
            pass

        await middleware(_http_scope("/error"), _receive, send)

        assert counter.count == 0


class TestCorrelationIdMiddleware:
    @pytest.mark.asyncio
    async def test_adds_uuid4_correlation_header(self):
        app = fastapi.FastAPI()
        app.add_middleware(image_edit_proxy.middleware.CorrelationIdMiddleware)

        @app.get("/ping")
        async def ping():
            return {"pong": True}

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            first = await client.get("/ping")
            second = await client.get("/ping")

        first_id = first.headers["X-Correlation-ID"]
        assert uuid.UUID(first_id).version == 4
        assert first_id != second.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_stores_correlation_id_on_request_state(self):
        app = fastapi.FastAPI()
        app.add_middleware(image_edit_proxy.middleware.CorrelationIdMiddleware)

        @app.get("/state")
        async def read_state(request: fastapi.Request):
            return {"correlation_id": request.state.correlation_id}

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/state")

        assert response.json()["correlation_id"] == response.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_unhandled_exception_becomes_internal_error(self):
        app = fastapi.FastAPI()
        app.add_middleware(image_edit_proxy.middleware.CorrelationIdMiddleware)

        @app.get("/boom")
        async def boom():
            raise RuntimeError("something broke")

        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/boom")

        assert response.status_code == 500
        assert response.headers["content-type"] == "application/json"
        assert "X-Correlation-ID" in response.headers
        assert response.json() == {
            "error": image_edit_proxy.error_handling.INTERNAL_ERROR_SUMMARY,
            "message": image_edit_proxy.error_handling.INTERNAL_ERROR_MESSAGE,
            "code": "INTERNAL_ERROR",
        }

    @pytest.mark.asyncio
    async def test_exception_after_response_started_sends_nothing_more(self):
        async def partially_responding_app(scope, receive, send):
            await send({"type": "http.response.start", "status": 200, "headers": []})
            raise RuntimeError("failed mid-stream")

        middleware = image_edit_proxy.middleware.CorrelationIdMiddleware(partially_responding_app)

        sent_messages: list[dict] = []

        async def send(message: dict) -> None:
            sent_messages.append(message)

        await middleware(_http_scope(), _receive, send)

        assert [message["type"] for message in sent_messages] == ["http.response.start"]
        assert sent_messages[0]["status"] == 200

    @pytest.mark.asyncio
    async def test_error_body_is_valid_json(self):
        body = image_edit_proxy.middleware._encode_error_body(
            image_edit_proxy.models.ErrorKind.INTERNAL_ERROR,
            image_edit_proxy.error_handling.INTERNAL_ERROR_SUMMARY,
            image_edit_proxy.error_handling.INTERNAL_ERROR_MESSAGE,
        )

        assert json.loads(body)["code"] == "INTERNAL_ERROR"

    @pytest.mark.asyncio
    async def test_non_http_scope_passes_through(self):
        received_scopes: list[dict] = []

        async def inner_app(scope, receive, send):
            received_scopes.append(scope)

        middleware = image_edit_proxy.middleware.CorrelationIdMiddleware(inner_app)

        await middleware({"type": "lifespan"}, _receive, None)

        assert received_scopes == [{"type": "lifespan"}]


class TestRequestPayloadSizeLimitMiddleware:
    """
    Bodies over the image limit plus the multipart allowance are rejected
    with the same 400 the edit route uses, without buffering the upload.
    """

    MAXIMUM_IMAGE_BYTES = 1024 * 1024

    @staticmethod
    def _expected_body() -> dict:
        return {
            "error": "File too large",
            "message": "Image must be smaller than 1MB",
            "code": "VALIDATION_ERROR",
        }

    def _upload_app(self, handled_uploads: list[int]) -> fastapi.FastAPI:
        app = fastapi.FastAPI()
        app.add_middleware(
            image_edit_proxy.middleware.RequestPayloadSizeLimitMiddleware,
            maximum_image_bytes=self.MAXIMUM_IMAGE_BYTES,
            multipart_overhead_allowance_bytes=0,
        )

        @app.post("/upload")
        async def upload(image: fastapi.UploadFile = fastapi.File()):
            image_bytes = await image.read()
            handled_uploads.append(len(image_bytes))
            return {"size": len(image_bytes)}

        return app

    @pytest.mark.asyncio
    async def test_oversized_content_length_rejected_before_reading_body(self):
        inner_app = AsyncMock()
        receive = AsyncMock()
        middleware = image_edit_proxy.middleware.RequestPayloadSizeLimitMiddleware(
            inner_app,
            maximum_image_bytes=self.MAXIMUM_IMAGE_BYTES,
        )
        scope = _http_scope("/api/edit")
        scope["method"] = "POST"
        scope["headers"] = [(b"content-length", str(50 * 1024 * 1024).encode())]

        sent_messages: list[dict] = []

        async def send(message: dict) -> None:
            sent_messages.append(message)

        await middleware(scope, receive, send)

        inner_app.assert_not_awaited()
        receive.assert_not_awaited()
        assert sent_messages[0]["status"] == 400
        assert json.loads(sent_messages[1]["body"]) == self._expected_body()

    @pytest.mark.asyncio
    async def test_streamed_body_over_limit_is_cut_off(self):
        handled_uploads: list[int] = []
        app = self._upload_app(handled_uploads)
        chunks_sent = 0

        async def chunked_body():
            nonlocal chunks_sent
            yield b"--boundary\r\nContent-Disposition: form-data; name=\"image\"; filename=\"a.png\"\r\n"
            yield b"Content-Type: image/png\r\n\r\n"
            for _ in range(64):
                chunks_sent += 1
                yield b"x" * (256 * 1024)
            yield b"\r\n--boundary--\r\n"

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post(
                "/upload",
                content=chunked_body(),
                headers={"content-type": "multipart/form-data; boundary=boundary"},
            )

        assert response.status_code == 400
        assert response.json() == self._expected_body()
        assert handled_uploads == []
        # Reading stops shortly after the limit, not at the end of the upload.
        assert chunks_sent < 64

    @pytest.mark.asyncio
    async def test_body_within_limit_passes_through(self):
        handled_uploads: list[int] = []
        app = self._upload_app(handled_uploads)

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post(
                "/upload",
                files={"image": ("a.png", b"x" * 1024, "image/png")},
            )

        assert response.status_code == 200
        assert response.json() == {"size": 1024}
        assert handled_uploads == [1024]

    @pytest.mark.asyncio
    async def test_allowance_admits_image_at_the_limit(self):
        handled_uploads: list[int] = []
        app = fastapi.FastAPI()
        app.add_middleware(
            image_edit_proxy.middleware.RequestPayloadSizeLimitMiddleware,
            maximum_image_bytes=self.MAXIMUM_IMAGE_BYTES,
        )

        @app.post("/upload")
        async def upload(image: fastapi.UploadFile = fastapi.File(), prompt: str = fastapi.Form()):
            handled_uploads.append(len(await image.read()))
            return {"prompt": prompt}

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post(
                "/upload",
                data={"prompt": "p" * 1000},
                files={"image": ("a.png", b"x" * self.MAXIMUM_IMAGE_BYTES, "image/png")},
            )

        assert response.status_code == 200
        assert handled_uploads == [self.MAXIMUM_IMAGE_BYTES]

    @pytest.mark.parametrize(
        ("headers", "expected"),
        [
            ([(b"content-length", b"1234")], 1234),
            ([(b"Content-Length", b"42")], 42),
            ([(b"content-length", b"not-a-number")], None),
            ([(b"content-type", b"text/plain")], None),
        ],
    )
    def test_extract_content_length_from_headers(self, headers, expected):
        assert image_edit_proxy.middleware.extract_content_length_from_headers(headers) == expected

    @pytest.mark.asyncio
    async def test_non_http_scope_passes_through(self):
        received_scopes: list[dict] = []

        async def inner_app(scope, receive, send):
            received_scopes.append(scope)

        middleware = image_edit_proxy.middleware.RequestPayloadSizeLimitMiddleware(inner_app)

        await middleware({"type": "lifespan"}, _receive, None)

        assert received_scopes == [{"type": "lifespan"}]
