"""
Pydantic models and value types shared across the image edit proxy.

The request side of ``POST /api/edit`` is multipart form data, so it is not
validated by a Pydantic body model: the route collects the parts into an
``EditRequest`` and the edit service applies the ordered validation rules
itself.  This keeps the order of the checks (and therefore which error the
client sees first) under the service's control rather than the
framework's.

Error responses
---------------
Every error response body follows ``ErrorResponse``::

    {"error": "...", "message": "...", "code": "TIMEOUT", "status": 504}

``status`` is only present for ``AI_SERVER_ERROR`` responses (where it
echoes the upstream status) and ``details`` only for missing-field
validation failures.  Both are omitted from the payload, not set to
``null``, by serialising with ``exclude_none=True``.
"""

import enum
import urllib.parse

import pydantic

# ──────────────────────────────────────────────────────────────────────────────
#  Request Constants
# ──────────────────────────────────────────────────────────────────────────────

MAXIMUM_PROMPT_LENGTH = 1000
DEFAULT_MAXIMUM_IMAGE_BYTES = 10 * 1024 * 1024

ALLOWED_IMAGE_CONTENT_TYPE_PREFIX = "image/"
UPSTREAM_URL_ALLOWED_SCHEMES = frozenset({"http", "https"})

EDITED_IMAGE_CONTENT_TYPE = "image/jpeg"


class ErrorKind(str, enum.Enum):
    """Machine-readable error codes returned in the ``code`` field."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AI_SERVER_NOT_CONFIGURED = "AI_SERVER_NOT_CONFIGURED"
    AI_SERVER_INVALID_URL = "AI_SERVER_INVALID_URL"
    TIMEOUT = "TIMEOUT"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    AI_SERVER_ERROR = "AI_SERVER_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def is_valid_upstream_url(url: str | None) -> bool:
    """
    Return whether ``url`` is usable as the upstream endpoint.

    A usable URL parses, uses the ``http`` or ``https`` scheme and names a
    host.  ``None`` and unparseable values are reported as invalid rather
    than raising.
    """
    if not url:
        return False
    try:
        parsed_url = urllib.parse.urlsplit(url)
    except ValueError:
        return False
    return parsed_url.scheme.lower() in UPSTREAM_URL_ALLOWED_SCHEMES and bool(parsed_url.netloc)


# ──────────────────────────────────────────────────────────────────────────────
#  Configuration and request values
# ──────────────────────────────────────────────────────────────────────────────


class UpstreamConfiguration(pydantic.BaseModel):
    """
    Immutable settings for talking to the upstream AI server.

    Built once by the application factory from ``ApplicationConfiguration``
    and shared by reference with the upstream client, the edit service and
    the health route for the whole process lifetime.
    """

    base_url: str | None = None
    request_timeout_milliseconds: int = pydantic.Field(default=180_000, gt=0)
    maximum_retries: int = pydantic.Field(default=3, ge=1)
    retry_delay_milliseconds: int = pydantic.Field(default=2000, ge=0)

    model_config = pydantic.ConfigDict(frozen=True)

    @property
    def is_configured(self) -> bool:
        return self.base_url is not None

    @property
    def is_base_url_valid(self) -> bool:
        return is_valid_upstream_url(self.base_url)

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_milliseconds / 1000


class EditRequest(pydantic.BaseModel):
    """
    One inbound edit request as received from the multipart form.

    Fields are optional because a client may omit either part; the edit
    service reports missing parts as ``VALIDATION_ERROR``.
    """

    prompt: str | None = None
    image_bytes: bytes | None = None
    image_filename: str = "image"
    image_content_type: str = "application/octet-stream"

    @property
    def has_image(self) -> bool:
        return bool(self.image_bytes)


class EditedImage(pydantic.BaseModel):
    """The successful outcome of an upstream attempt."""

    image_bytes: bytes
    content_type: str = EDITED_IMAGE_CONTENT_TYPE


# ──────────────────────────────────────────────────────────────────────────────
#  Response Models
# ──────────────────────────────────────────────────────────────────────────────


class MissingFieldDetails(pydantic.BaseModel):
    """Which of the two required form parts were supplied."""

    prompt_provided: bool = pydantic.Field(..., serialization_alias="promptProvided")
    image_provided: bool = pydantic.Field(..., serialization_alias="imageProvided")


class ErrorResponse(pydantic.BaseModel):
    """
    Standard error response body returned for every failed request.

    ``error`` is a short human-readable summary, ``message`` a longer
    explanation safe for display to end users, and ``code`` the stable
    machine-readable ``ErrorKind`` value.
    """

    error: str = pydantic.Field(..., description="Short human-readable summary of the failure.")

    message: str = pydantic.Field(..., description="Human-readable explanation safe for display.")

    code: ErrorKind = pydantic.Field(..., description="Machine-readable error code.")

    status: int | None = pydantic.Field(
        default=None,
        description="Upstream HTTP status, present only for AI_SERVER_ERROR.",
    )

    details: MissingFieldDetails | None = pydantic.Field(
        default=None,
        description="Which required form parts were supplied, for missing-field errors.",
    )


class HealthResponse(pydantic.BaseModel):
    """Response body for ``GET /api/health``."""

    status: str = "ok"
    timestamp: str
    colab_server_url: str | None = pydantic.Field(..., serialization_alias="colabServerUrl")
    colab_server_configured: bool = pydantic.Field(..., serialization_alias="colabServerConfigured")
