"""
Client for the upstream AI image-editing server.

The upstream accepts a multipart ``POST`` with two parts, ``image`` (the
binary image with its original filename) and ``prompt`` (text), and
answers either with the edited image bytes or with a 4xx/5xx response
whose body may contain a JSON ``{"error": ...}`` or ``{"message": ...}``
object.

Status policy
-------------
Each call to ``send`` is exactly one attempt.  Redirects are followed
within the attempt (a 307/308 re-sends the multipart body), and the
policy applies to the final response:

- 200–399: success.  The body is returned unchanged and labelled
  ``image/jpeg`` regardless of the upstream Content-Type.  A 3xx only
  reaches this point when httpx could not follow it (no ``Location``, or
  a 304).
- 400–499: ``UpstreamResponseError`` (not retryable).
- 500 and above: ``UpstreamResponseError`` (retryable).
- DNS failure or refused connection: ``UpstreamConnectionError``.
- Any timeout: ``UpstreamTimeoutError``.
- Other transport errors, including too many redirects:
  ``UpstreamRequestError``.

Attempt deadline
----------------
``httpx.Timeout`` only bounds each individual connect, read, write and
pool wait, so an upstream trickling bytes with short gaps would never be
cut off.  The whole attempt (upload, redirects, download) is therefore
also wrapped in ``asyncio.wait_for`` with the same timeout.

Retrying is not this module's concern; see ``retry_policy.py``.
"""

import asyncio

import httpx
import structlog

import image_edit_proxy.exceptions
import image_edit_proxy.models

logger = structlog.get_logger()


class UpstreamClient:
    """
    Asynchronous HTTP client for the upstream AI server.

    Maintains a persistent ``httpx.AsyncClient`` that follows redirects and
    whose per-operation timeout equals the attempt timeout.  The client
    must be closed explicitly via ``close`` when the application shuts down.

    The client holds no per-request state, so it is safe for concurrent
    use from multiple async tasks.
    """

    def __init__(
        self,
        upstream_configuration: image_edit_proxy.models.UpstreamConfiguration,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialise the upstream client.

        Args:
            upstream_configuration: The frozen upstream settings.  Only
                ``base_url`` and ``request_timeout_milliseconds`` are read
                here.  ``base_url`` may be missing or invalid; callers
                must check it before calling ``send``.
            transport: Optional httpx transport, for in-process upstreams.
        """
        self._upstream_configuration = upstream_configuration
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(upstream_configuration.request_timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    async def send(
        self,
        image_bytes: bytes,
        image_filename: str,
        prompt: str,
        image_content_type: str = "application/octet-stream",
    ) -> image_edit_proxy.models.EditedImage:
        """
        Forward one edit request to the upstream server.

        Args:
            image_bytes: The raw uploaded image.
            image_filename: The client's original filename, preserved in
                the multipart ``image`` part.
            prompt: The editing instruction.
            image_content_type: Content type of the ``image`` part.

        Returns:
            The edited image, labelled ``image/jpeg``.

        Raises:
            UpstreamResponseError: The final upstream status was 400 or above.
            UpstreamTimeoutError: The attempt exceeded the timeout, either
                on a single network operation or in total.
            UpstreamConnectionError: The host could not be resolved or
                refused the connection.
            UpstreamRequestError: Any other transport failure.
        """
        upstream_url = self._upstream_configuration.base_url
        attempt_timeout_seconds = self._upstream_configuration.request_timeout_seconds

        try:
            http_response = await asyncio.wait_for(
                self.http_client.post(
                    upstream_url,
                    files={"image": (image_filename, image_bytes, image_content_type)},
                    data={"prompt": prompt},
                ),
                timeout=attempt_timeout_seconds,
            )
        except (httpx.TimeoutException, TimeoutError) as timeout_error:
            logger.error(
                "upstream_timeout",
                error_type=type(timeout_error).__name__,
                timeout_milliseconds=self._upstream_configuration.request_timeout_milliseconds,
            )
            raise image_edit_proxy.exceptions.UpstreamTimeoutError() from timeout_error
        except httpx.ConnectError as connection_error:
            logger.error(
                "upstream_connection_failed",
                error=str(connection_error),
            )
            raise image_edit_proxy.exceptions.UpstreamConnectionError() from connection_error
        except httpx.RequestError as request_error:
            # Protocol errors, resets mid-response, redirect loops and
            # similar.  None of these are retried.
            logger.error(
                "upstream_request_failed",
                error_type=type(request_error).__name__,
                error=str(request_error),
            )
            raise image_edit_proxy.exceptions.UpstreamRequestError(
                detail=(
                    f"An unexpected communication error occurred with the AI server: {type(request_error).__name__}."
                ),
            ) from request_error

        if http_response.status_code >= 400:
            response_body = http_response.content.decode("utf-8", errors="replace")
            logger.error(
                "upstream_http_error",
                status_code=http_response.status_code,
                response_bytes=len(http_response.content),
            )
            raise image_edit_proxy.exceptions.UpstreamResponseError(
                status_code=http_response.status_code,
                response_body=response_body,
            )

        if http_response.history:
            logger.info(
                "upstream_redirect_followed",
                redirects=len(http_response.history),
                final_url=str(http_response.url),
            )

        return image_edit_proxy.models.EditedImage(image_bytes=http_response.content)

    async def close(self) -> None:
        """Close the underlying HTTP client and release its connections."""
        await self.http_client.aclose()
