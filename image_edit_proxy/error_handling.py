"""
Centralised error-handling registration for the FastAPI application.

Every exception type that can be raised while handling an edit request is
mapped to an HTTP status code and a consistent JSON error body:

    - Malformed multipart / framework validation  →  400  VALIDATION_ERROR
    - Edit request validation failure             →  400  VALIDATION_ERROR
    - Upstream URL missing                        →  503  AI_SERVER_NOT_CONFIGURED
    - Upstream URL not http(s)                    →  503  AI_SERVER_INVALID_URL
    - Upstream timeout                            →  504  TIMEOUT
    - Upstream host unreachable                   →  503  CONNECTION_FAILED
    - Upstream 4xx/5xx response                   →  upstream status, AI_SERVER_ERROR
    - Other upstream transport failure            →  500  INTERNAL_ERROR

The catch-all for any other exception (HTTP 500, ``INTERNAL_ERROR``)
lives in ``CorrelationIdMiddleware``; see the note on
``register_error_handlers``.

Upstream error bodies
---------------------
For ``AI_SERVER_ERROR`` the upstream body is parsed as JSON and its
``error`` (or, failing that, ``message``) string becomes the ``error``
field of the response.  Any parse failure falls back to a generic
message; extraction never raises.
"""

import json

import fastapi
import fastapi.exceptions
import fastapi.responses
import structlog

import image_edit_proxy.exceptions
import image_edit_proxy.models

logger = structlog.get_logger()

DEFAULT_UPSTREAM_ERROR_MESSAGE = "Failed to communicate with the AI server"

INTERNAL_ERROR_SUMMARY = "An unexpected error occurred"
INTERNAL_ERROR_MESSAGE = "Please try again later or contact support if the problem persists."

FILE_TOO_LARGE_ERROR = "File too large"


def describe_maximum_image_size(maximum_image_bytes: int) -> str:
    """Return the client-facing size limit message, in whole megabytes."""
    maximum_megabytes = max(1, maximum_image_bytes // (1024 * 1024))
    return f"Image must be smaller than {maximum_megabytes}MB"


def extract_upstream_error_message(
    response_body: str,
    default_message: str = DEFAULT_UPSTREAM_ERROR_MESSAGE,
) -> str:
    """
    Pull a human-readable message out of an upstream error body.

    Returns the ``error`` field, else the ``message`` field, of a JSON
    object body when it is a non-empty string; otherwise
    ``default_message``.
    """
    try:
        parsed_body = json.loads(response_body)
    except (ValueError, TypeError, RecursionError):
        return default_message

    if not isinstance(parsed_body, dict):
        return default_message

    for field_name in ("error", "message"):
        field_value = parsed_body.get(field_name)
        if isinstance(field_value, str) and field_value.strip():
            return field_value

    return default_message


def build_error_response(
    status_code: int,
    code: image_edit_proxy.models.ErrorKind,
    error: str,
    message: str,
    upstream_status: int | None = None,
    details: image_edit_proxy.models.MissingFieldDetails | None = None,
) -> fastapi.responses.JSONResponse:
    """
    Build a consistent JSON error response.

    ``status`` and ``details`` are omitted from the payload when not
    supplied.

    Args:
        status_code: The HTTP status code for the response.
        code: The machine-readable error code.
        error: Short human-readable summary.
        message: Longer human-readable explanation.
        upstream_status: The upstream status, for ``AI_SERVER_ERROR``.
        details: Missing-field flags, for validation errors.
    """
    error_response = image_edit_proxy.models.ErrorResponse(
        error=error,
        message=message,
        code=code,
        status=upstream_status,
        details=details,
    )

    return fastapi.responses.JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def register_error_handlers(fastapi_application: fastapi.FastAPI) -> None:
    """
    Register all custom exception handlers on the given FastAPI application.

    Must be called once during application initialisation (see
    ``server_factory.create_application``).

    The catch-all handler for unexpected exceptions (HTTP 500) lives in
    ``CorrelationIdMiddleware`` rather than here.  Starlette routes
    ``Exception`` handlers to ``ServerErrorMiddleware``, which always
    re-raises after sending the response.  Handling it in the outermost
    middleware avoids this re-raise and fully contains the error.
    """

    @fastapi_application.exception_handler(
        fastapi.exceptions.RequestValidationError,
    )
    async def handle_request_validation_error(
        request: fastapi.Request,
        validation_error: fastapi.exceptions.RequestValidationError,
    ) -> fastapi.responses.JSONResponse:
        """
        Return 400 Bad Request when the framework cannot parse the form.

        Raw Pydantic error dictionaries are logged but never returned.
        """
        logger.warning("http_validation_failed", errors=validation_error.errors())
        return build_error_response(
            400,
            image_edit_proxy.models.ErrorKind.VALIDATION_ERROR,
            "Invalid request",
            "The request body could not be parsed as multipart form data.",
        )

    @fastapi_application.exception_handler(
        image_edit_proxy.exceptions.EditRequestValidationError,
    )
    async def handle_edit_request_validation_error(
        request: fastapi.Request,
        validation_error: image_edit_proxy.exceptions.EditRequestValidationError,
    ) -> fastapi.responses.JSONResponse:
        logger.warning("edit_request_rejected", error=validation_error.error)
        return build_error_response(
            400,
            image_edit_proxy.models.ErrorKind.VALIDATION_ERROR,
            validation_error.error,
            validation_error.message,
            details=validation_error.details,
        )

    @fastapi_application.exception_handler(
        image_edit_proxy.exceptions.UpstreamNotConfiguredError,
    )
    async def handle_upstream_not_configured(
        request: fastapi.Request,
        configuration_error: image_edit_proxy.exceptions.UpstreamNotConfiguredError,
    ) -> fastapi.responses.JSONResponse:
        logger.error("upstream_server_url_missing")
        return build_error_response(
            503,
            image_edit_proxy.models.ErrorKind.AI_SERVER_NOT_CONFIGURED,
            configuration_error.detail,
            "Please contact the administrator to set the AI server URL in the server configuration",
        )

    @fastapi_application.exception_handler(
        image_edit_proxy.exceptions.UpstreamInvalidUrlError,
    )
    async def handle_upstream_invalid_url(
        request: fastapi.Request,
        configuration_error: image_edit_proxy.exceptions.UpstreamInvalidUrlError,
    ) -> fastapi.responses.JSONResponse:
        logger.error("upstream_server_url_invalid")
        return build_error_response(
            503,
            image_edit_proxy.models.ErrorKind.AI_SERVER_INVALID_URL,
            configuration_error.detail,
            "Please contact the administrator to configure the AI server URL",
        )

    @fastapi_application.exception_handler(
        image_edit_proxy.exceptions.UpstreamTimeoutError,
    )
    async def handle_upstream_timeout(
        request: fastapi.Request,
        timeout_error: image_edit_proxy.exceptions.UpstreamTimeoutError,
    ) -> fastapi.responses.JSONResponse:
        """Return 504 Gateway Timeout once every attempt has timed out."""
        logger.error("upstream_service_error", code="TIMEOUT", detail=timeout_error.detail)
        return build_error_response(
            504,
            image_edit_proxy.models.ErrorKind.TIMEOUT,
            "The AI server took too long to respond",
            (
                "The request timed out after multiple retries. Please try again "
                "with a simpler prompt or smaller image."
            ),
        )

    @fastapi_application.exception_handler(
        image_edit_proxy.exceptions.UpstreamConnectionError,
    )
    async def handle_upstream_connection_error(
        request: fastapi.Request,
        connection_error: image_edit_proxy.exceptions.UpstreamConnectionError,
    ) -> fastapi.responses.JSONResponse:
        """Return 503 Service Unavailable when the upstream host is unreachable."""
        logger.error("upstream_service_error", code="CONNECTION_FAILED", detail=connection_error.detail)
        return build_error_response(
            503,
            image_edit_proxy.models.ErrorKind.CONNECTION_FAILED,
            "Could not connect to the AI server",
            "The AI server is not reachable. It may be offline or the URL may be incorrect.",
        )

    @fastapi_application.exception_handler(
        image_edit_proxy.exceptions.UpstreamResponseError,
    )
    async def handle_upstream_response_error(
        request: fastapi.Request,
        response_error: image_edit_proxy.exceptions.UpstreamResponseError,
    ) -> fastapi.responses.JSONResponse:
        """
        Forward the upstream's own status with code ``AI_SERVER_ERROR``.

        The ``error`` field carries the upstream's own message when its body
        is a JSON object with an ``error`` or ``message`` string.
        """
        upstream_status = response_error.status_code
        logger.error(
            "upstream_service_error",
            code="AI_SERVER_ERROR",
            upstream_status=upstream_status,
        )
        return build_error_response(
            upstream_status,
            image_edit_proxy.models.ErrorKind.AI_SERVER_ERROR,
            extract_upstream_error_message(response_error.response_body),
            f"The AI server returned an error (Status: {upstream_status})",
            upstream_status=upstream_status,
        )

    @fastapi_application.exception_handler(
        image_edit_proxy.exceptions.UpstreamRequestError,
    )
    async def handle_upstream_request_error(
        request: fastapi.Request,
        request_error: image_edit_proxy.exceptions.UpstreamRequestError,
    ) -> fastapi.responses.JSONResponse:
        logger.error("upstream_service_error", code="INTERNAL_ERROR", detail=request_error.detail)
        return build_error_response(
            500,
            image_edit_proxy.models.ErrorKind.INTERNAL_ERROR,
            INTERNAL_ERROR_SUMMARY,
            INTERNAL_ERROR_MESSAGE,
        )
