"""
Custom exception classes for the image edit proxy.

This module defines the exception hierarchy for every anticipated failure
mode in the service.  Each class maps to one ``ErrorKind`` and is handled
by the centralised error-handling layer (``error_handling.py``) to produce
a consistent JSON error response.

Exception hierarchy
-------------------
::

    Exception (Python built-in)
    └── ServiceError (base class for all service exceptions)
        ├── EditRequestValidationError      → HTTP 400  VALIDATION_ERROR
        ├── UpstreamNotConfiguredError      → HTTP 503  AI_SERVER_NOT_CONFIGURED
        ├── UpstreamInvalidUrlError         → HTTP 503  AI_SERVER_INVALID_URL
        └── UpstreamServiceError (raised per upstream attempt)
            ├── UpstreamTimeoutError        → HTTP 504  TIMEOUT             (retryable)
            ├── UpstreamConnectionError     → HTTP 503  CONNECTION_FAILED   (retryable)
            ├── UpstreamResponseError       → upstream  AI_SERVER_ERROR     (retryable when ≥ 500)
            └── UpstreamRequestError        → HTTP 500  INTERNAL_ERROR

Retry eligibility
~~~~~~~~~~~~~~~~~
Every ``UpstreamServiceError`` exposes a ``retryable`` property.  The
retry policy (``retry_policy.py``) reads only that property, so the
decision of which faults are transient lives next to the faults
themselves.
"""

import image_edit_proxy.models


class ServiceError(Exception):
    """
    Base exception for all service-level errors.

    Every service exception carries a ``detail`` attribute containing a
    human-readable description of the failure.  It is used for logging;
    the client-facing wording is chosen by the error-handling layer.

    Attributes:
        detail: A human-readable description of the error.
    """

    default_detail: str = "A service error occurred."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class EditRequestValidationError(ServiceError):
    """
    Raised when the inbound edit request fails one of the ordered
    validation checks.

    Mapped to HTTP 400 with the code ``VALIDATION_ERROR``.  ``error`` is
    the short summary returned to the client and ``message`` the optional
    longer explanation.  ``details`` is populated only when one of the
    required form parts is missing.
    """

    default_detail = "The edit request is invalid."

    def __init__(
        self,
        error: str,
        message: str | None = None,
        details: image_edit_proxy.models.MissingFieldDetails | None = None,
    ) -> None:
        self.error = error
        self.message = message or error
        self.details = details
        super().__init__(error)


class UpstreamNotConfiguredError(ServiceError):
    """
    Raised when an edit is requested but no upstream URL was configured
    at startup.  Mapped to HTTP 503 (``AI_SERVER_NOT_CONFIGURED``).
    """

    default_detail = "AI server URL is not configured"


class UpstreamInvalidUrlError(ServiceError):
    """
    Raised when the configured upstream URL is not an http(s) URL.
    Mapped to HTTP 503 (``AI_SERVER_INVALID_URL``).
    """

    default_detail = "AI server is not configured properly"


class UpstreamServiceError(ServiceError):
    """
    Base class for faults raised by a single upstream attempt.

    Subclasses override ``retryable`` to declare whether the retry policy
    may attempt the call again.
    """

    default_detail = "The AI server request failed."

    @property
    def retryable(self) -> bool:
        return False


class UpstreamTimeoutError(UpstreamServiceError):
    """
    Raised when an upstream attempt exceeds the per-attempt timeout
    (connect, read, write or connection-pool wait).
    """

    default_detail = "The request to the AI server timed out."

    @property
    def retryable(self) -> bool:
        return True


class UpstreamConnectionError(UpstreamServiceError):
    """
    Raised when the upstream host cannot be reached: DNS resolution
    failure or refused connection.
    """

    default_detail = "Could not connect to the AI server."

    @property
    def retryable(self) -> bool:
        return True


class UpstreamResponseError(UpstreamServiceError):
    """
    Raised when the final upstream status, after redirects, is 400 or above.

    Attributes:
        status_code: The upstream HTTP status, forwarded to the client.
        response_body: The upstream body decoded as UTF-8 (undecodable
            bytes replaced), kept for error-message extraction.
    """

    default_detail = "The AI server returned an error."

    def __init__(self, status_code: int, response_body: str = "") -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"The AI server returned HTTP status {status_code}.")

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class UpstreamRequestError(UpstreamServiceError):
    """
    Raised for uncommon transport failures that are neither timeouts nor
    connection failures (for example a protocol error or a connection
    reset mid-response).  These are not retried and surface as
    ``INTERNAL_ERROR``.
    """

    default_detail = "An unexpected communication error occurred with the AI server."
