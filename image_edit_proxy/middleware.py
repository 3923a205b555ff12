"""
HTTP middleware for the FastAPI application.

- **CorrelationIdMiddleware** (outermost): assigns a UUID v4 correlation ID
  to every request and attaches it to both the ``X-Correlation-ID``
  response header and the structured log context.  Also serves as the
  catch-all error boundary for unhandled exceptions, answering HTTP 500
  with code ``INTERNAL_ERROR``.
- **RequestPayloadSizeLimitMiddleware** (innermost): stops reading a
  request body once it grows past the image size limit plus a multipart
  allowance, and answers HTTP 400 ``VALIDATION_ERROR`` "File too large"
  instead of letting the upload be spooled to disk.

In-flight request tracking
--------------------------
``InFlightRequestCounter`` tracks the number of HTTP requests currently
being processed.  It is read during graceful shutdown so the
``graceful_shutdown_initiated`` log event reports how many edits were
still waiting on the upstream server.
"""

import threading
import time
import uuid

import starlette.types
import structlog
import structlog.contextvars

import image_edit_proxy.error_handling
import image_edit_proxy.models

logger = structlog.get_logger()


class InFlightRequestCounter:
    """
    Thread-safe counter of HTTP requests currently being processed.

    A ``threading.Lock`` is used rather than an ``asyncio.Lock`` because
    the counter is also read from the synchronous part of the lifespan
    shutdown sequence.
    """

    def __init__(self) -> None:
        self._count: int = 0
        self._lock = threading.Lock()

    def increment(self) -> None:
        with self._lock:
            self._count += 1

    def decrement(self) -> None:
        with self._lock:
            self._count -= 1

    @property
    def count(self) -> int:
        return self._count


def extract_content_length_from_headers(
    headers: list[tuple[bytes, bytes]],
) -> int | None:
    """
    Search an ASGI header list for the Content-Length header and return
    its integer value, or ``None`` if the header is absent or cannot be
    parsed as an integer.
    """
    for header_name, header_value in headers:
        if header_name.lower() == b"content-length":
            try:
                return int(header_value)
            except (ValueError, TypeError):
                return None
    return None


def _encode_error_body(
    code: image_edit_proxy.models.ErrorKind,
    error: str,
    message: str,
) -> bytes:
    error_response = image_edit_proxy.models.ErrorResponse(
        error=error,
        message=message,
        code=code,
    )
    return error_response.model_dump_json(exclude_none=True).encode()


async def _send_json_error(
    send: starlette.types.Send,
    status_code: int,
    response_body: bytes,
) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": status_code,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(response_body)).encode()),
            ],
        }
    )
    await send(
        {
            "type": "http.response.body",
            "body": response_body,
        }
    )


class CorrelationIdMiddleware:
    """
    Assign a unique correlation ID (UUID v4) to every incoming request.

    The ID is stored on ``request.state.correlation_id`` and added as an
    ``X-Correlation-ID`` response header.

    Implemented as a pure ASGI middleware to avoid two Starlette issues:

    1. BaseHTTPMiddleware wraps unhandled exceptions in ExceptionGroup,
       preventing catch-all exception handlers from firing.
    2. Starlette routes ``Exception`` handlers to ServerErrorMiddleware,
       which always re-raises after sending the response. By catching
       unhandled exceptions here instead, the error is fully contained
       and the client receives a proper JSON 500 response.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        in_flight_request_counter: InFlightRequestCounter | None = None,
    ) -> None:
        self.app = app
        self._in_flight_request_counter = in_flight_request_counter

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = str(uuid.uuid4())
        method = scope.get("method", "")
        path = scope.get("path", "")
        start_time = time.monotonic()
        response_status = 0
        response_started = False

        if "state" not in scope:
            scope["state"] = {}
        scope["state"]["correlation_id"] = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        logger.info("http_request_received", method=method, path=path)

        if self._in_flight_request_counter is not None:
            self._in_flight_request_counter.increment()

        async def send_with_correlation_id(
            message: starlette.types.Message,
        ) -> None:
            nonlocal response_status, response_started
            if message["type"] == "http.response.start":
                response_started = True
                response_status = message.get("status", 0)
                headers = list(message.get("headers", []))
                headers.append((b"x-correlation-id", correlation_id.encode()))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_correlation_id)
        except Exception:
            logger.exception("unexpected_exception")
            if response_started:
                # The status line is already on the wire; nothing more can
                # be sent to the client.
                return
            error_response_body = _encode_error_body(
                image_edit_proxy.models.ErrorKind.INTERNAL_ERROR,
                image_edit_proxy.error_handling.INTERNAL_ERROR_SUMMARY,
                image_edit_proxy.error_handling.INTERNAL_ERROR_MESSAGE,
            )
            await _send_json_error(send_with_correlation_id, 500, error_response_body)
        finally:
            if self._in_flight_request_counter is not None:
                self._in_flight_request_counter.decrement()

            duration_milliseconds = (time.monotonic() - start_time) * 1000
            logger.info(
                "http_request_completed",
                method=method,
                path=path,
                status=response_status,
                duration_milliseconds=round(duration_milliseconds, 1),
            )


class _PayloadLimitExceeded(Exception):
    """Raised from the wrapped ``receive`` once the body is over the limit."""


class RequestPayloadSizeLimitMiddleware:
    """
    Reject requests whose body exceeds the image size limit.

    The limit is ``maximum_image_bytes`` plus an allowance for the
    multipart boundaries, part headers and the prompt, so an image just
    under the limit is never cut off here.  Finer checks on the image part
    itself stay in the edit route.

    Two complementary strategies are used:

    1. **Fast-path rejection via Content-Length header**: a declared length
       over the limit is rejected before any body bytes are read.

    2. **Streaming accumulation guard**: for chunked uploads, or clients
       that send more than they declared, ``receive`` is wrapped to count
       body bytes.  Past the limit the wrapper raises instead of handing
       over more data, so the form parser stops and the route never runs.
       FastAPI turns that failure into its own 400, which is suppressed
       and replaced by the "File too large" response.

    Must be registered *inside* ``CorrelationIdMiddleware`` so the error
    response carries the correlation ID header.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        maximum_image_bytes: int = image_edit_proxy.models.DEFAULT_MAXIMUM_IMAGE_BYTES,
        multipart_overhead_allowance_bytes: int = 64 * 1024,
    ) -> None:
        self.app = app
        self._maximum_image_bytes = maximum_image_bytes
        self._maximum_request_payload_bytes = maximum_image_bytes + multipart_overhead_allowance_bytes

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared_content_length = extract_content_length_from_headers(
            scope.get("headers", []),
        )

        if declared_content_length is not None and declared_content_length > self._maximum_request_payload_bytes:
            logger.warning(
                "http_payload_too_large",
                declared_content_length=declared_content_length,
                maximum_allowed_bytes=self._maximum_request_payload_bytes,
            )
            await self._send_file_too_large_response(send)
            return

        accumulated_body_bytes = 0
        payload_limit_exceeded = False
        response_started = False

        async def receive_with_size_tracking() -> starlette.types.Message:
            nonlocal accumulated_body_bytes, payload_limit_exceeded

            if payload_limit_exceeded:
                raise _PayloadLimitExceeded()

            message = await receive()

            if message["type"] == "http.request":
                accumulated_body_bytes += len(message.get("body", b""))

                if accumulated_body_bytes > self._maximum_request_payload_bytes:
                    payload_limit_exceeded = True
                    logger.warning(
                        "http_payload_too_large",
                        accumulated_bytes=accumulated_body_bytes,
                        maximum_allowed_bytes=self._maximum_request_payload_bytes,
                    )
                    raise _PayloadLimitExceeded()

            return message

        async def send_unless_rejected(message: starlette.types.Message) -> None:
            nonlocal response_started
            if payload_limit_exceeded and not response_started:
                return
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive_with_size_tracking, send_unless_rejected)
        except Exception:
            if not payload_limit_exceeded:
                raise

        if payload_limit_exceeded and not response_started:
            await self._send_file_too_large_response(send)

    async def _send_file_too_large_response(self, send: starlette.types.Send) -> None:
        """Send the same 400 the edit route uses for an oversized image."""
        response_body = _encode_error_body(
            image_edit_proxy.models.ErrorKind.VALIDATION_ERROR,
            image_edit_proxy.error_handling.FILE_TOO_LARGE_ERROR,
            image_edit_proxy.error_handling.describe_maximum_image_size(self._maximum_image_bytes),
        )
        await _send_json_error(send, 400, response_body)
