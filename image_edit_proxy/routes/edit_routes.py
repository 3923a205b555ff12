"""
Route definition for the image edit endpoint.

``POST /api/edit`` accepts multipart form data with an ``image`` file part
and a ``prompt`` text part, forwards them to the upstream AI server and
returns the edited image as ``image/jpeg`` bytes.

Upload-stage checks
-------------------
Before the edit service sees the request, the uploaded part itself is
checked: its content type must be ``image/*`` and its size must not
exceed the configured maximum (default 10 MiB).  Both failures answer
HTTP 400 with ``VALIDATION_ERROR``.  The remaining ordered checks
(missing parts, blank or overlong prompt, upstream configuration) are
applied by ``ImageEditService``.  A body far past the size limit never
reaches this route; ``RequestPayloadSizeLimitMiddleware`` cuts it off
with the same "File too large" response while it is still streaming in.

Both form parts are declared optional so that a missing part reaches the
service's own validation (and its ``details`` flags) instead of the
framework's generic validation error.
"""

import typing

import fastapi
import fastapi.responses

import image_edit_proxy.dependencies
import image_edit_proxy.error_handling
import image_edit_proxy.exceptions
import image_edit_proxy.models
import image_edit_proxy.services.image_edit_service

edit_router = fastapi.APIRouter(
    prefix="/api",
    tags=["Image Editing"],
)


def get_maximum_image_bytes(request: fastapi.Request) -> int:
    """Retrieve the configured upload size ceiling from application state."""
    return getattr(
        request.app.state,
        "maximum_image_bytes",
        image_edit_proxy.models.DEFAULT_MAXIMUM_IMAGE_BYTES,
    )


async def _read_uploaded_image(
    image: fastapi.UploadFile,
    maximum_image_bytes: int,
) -> bytes:
    """
    Check the uploaded part's content type and size, then read it.

    Raises:
        EditRequestValidationError: The part is not an image or is too large.
    """
    content_type = (image.content_type or "").lower()
    if not content_type.startswith(image_edit_proxy.models.ALLOWED_IMAGE_CONTENT_TYPE_PREFIX):
        raise image_edit_proxy.exceptions.EditRequestValidationError(
            error="Invalid file type",
            message="Only image files are allowed",
        )

    too_large_error = image_edit_proxy.exceptions.EditRequestValidationError(
        error=image_edit_proxy.error_handling.FILE_TOO_LARGE_ERROR,
        message=image_edit_proxy.error_handling.describe_maximum_image_size(maximum_image_bytes),
    )

    if image.size is not None and image.size > maximum_image_bytes:
        raise too_large_error

    image_bytes = await image.read()
    if len(image_bytes) > maximum_image_bytes:
        raise too_large_error

    return image_bytes


@edit_router.post(
    "/edit",
    response_class=fastapi.responses.Response,
    summary="Edit an image with a text prompt",
    description=(
        "Forwards the uploaded image and prompt to the configured AI "
        "image-editing server, retrying transient failures, and returns "
        "the edited image as JPEG bytes."
    ),
    status_code=200,
    responses={
        200: {
            "description": "The edited image.",
            "content": {"image/jpeg": {}},
        },
        400: {
            "description": (
                "Bad Request: a form part is missing, the prompt is blank or "
                "longer than 1000 characters, or the file is not an image or "
                "exceeds the size limit (``VALIDATION_ERROR``)."
            ),
            "model": image_edit_proxy.models.ErrorResponse,
        },
        500: {
            "description": "Internal Server Error (``INTERNAL_ERROR``).",
            "model": image_edit_proxy.models.ErrorResponse,
        },
        503: {
            "description": (
                "Service Unavailable: the AI server URL is missing "
                "(``AI_SERVER_NOT_CONFIGURED``) or invalid "
                "(``AI_SERVER_INVALID_URL``), or the AI server is "
                "unreachable (``CONNECTION_FAILED``)."
            ),
            "model": image_edit_proxy.models.ErrorResponse,
        },
        504: {
            "description": "Gateway Timeout: every attempt timed out (``TIMEOUT``).",
            "model": image_edit_proxy.models.ErrorResponse,
        },
    },
)
async def handle_edit_request(
    image_edit_service: typing.Annotated[
        image_edit_proxy.services.image_edit_service.ImageEditService,
        fastapi.Depends(image_edit_proxy.dependencies.get_image_edit_service),
    ],
    maximum_image_bytes: typing.Annotated[int, fastapi.Depends(get_maximum_image_bytes)],
    image: typing.Annotated[fastapi.UploadFile | None, fastapi.File()] = None,
    prompt: typing.Annotated[str | None, fastapi.Form()] = None,
) -> fastapi.responses.Response:
    """
    Validate the upload, forward it upstream and return the edited image.

    Any AI server error status is forwarded to the client as-is with the
    code ``AI_SERVER_ERROR``; the error-handling layer performs that
    mapping.
    """
    edit_request_keyword_arguments: dict[str, typing.Any] = {"prompt": prompt}

    if image is not None:
        edit_request_keyword_arguments["image_bytes"] = await _read_uploaded_image(
            image,
            maximum_image_bytes,
        )
        edit_request_keyword_arguments["image_filename"] = image.filename or "image"
        edit_request_keyword_arguments["image_content_type"] = image.content_type

    edited_image = await image_edit_service.edit_image(
        image_edit_proxy.models.EditRequest(**edit_request_keyword_arguments),
    )

    return fastapi.responses.Response(
        content=edited_image.image_bytes,
        media_type=edited_image.content_type,
        headers={"Cache-Control": "no-store"},
    )
