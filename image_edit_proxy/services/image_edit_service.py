"""
Service that validates edit requests and forwards them upstream.

``ImageEditService.edit_image`` applies the ordered, fail-fast validation
checks and then drives ``UpstreamClient.send`` through the retry policy:

1. prompt and image both present          → VALIDATION_ERROR (400)
2. prompt not blank after trimming        → VALIDATION_ERROR (400)
3. prompt at most 1000 characters         → VALIDATION_ERROR (400)
4. upstream URL configured                → AI_SERVER_NOT_CONFIGURED (503)
5. upstream URL is an http(s) URL         → AI_SERVER_INVALID_URL (503)

Validation failures are raised before the retry policy is involved, so
they never consume upstream attempts.  Upstream faults that survive the
retry policy propagate unchanged to the error-handling layer, which
classifies them.
"""

import asyncio
import collections.abc
import typing

import structlog

import image_edit_proxy.exceptions
import image_edit_proxy.models
import image_edit_proxy.retry_policy
import image_edit_proxy.services.upstream_client

logger = structlog.get_logger()


class ImageEditService:
    """
    Orchestrates validation, retry and upstream forwarding for one edit.

    The service is stateless with respect to request processing; the
    only shared state is the frozen upstream configuration and the
    pooled upstream client.
    """

    def __init__(
        self,
        upstream_client: image_edit_proxy.services.upstream_client.UpstreamClient,
        upstream_configuration: image_edit_proxy.models.UpstreamConfiguration,
        sleep: collections.abc.Callable[[float], collections.abc.Awaitable[typing.Any]] = asyncio.sleep,
    ) -> None:
        self._upstream_client = upstream_client
        self._upstream_configuration = upstream_configuration
        self._sleep = sleep

    def validate_edit_request(self, edit_request: image_edit_proxy.models.EditRequest) -> None:
        """
        Apply checks 1–5 in order, raising on the first failure.

        Raises:
            EditRequestValidationError: Checks 1–3.
            UpstreamNotConfiguredError: Check 4.
            UpstreamInvalidUrlError: Check 5.
        """
        prompt = edit_request.prompt

        if not prompt or not edit_request.has_image:
            raise image_edit_proxy.exceptions.EditRequestValidationError(
                error="Prompt and image file are required",
                details=image_edit_proxy.models.MissingFieldDetails(
                    prompt_provided=bool(prompt),
                    image_provided=edit_request.has_image,
                ),
            )

        if not prompt.strip():
            raise image_edit_proxy.exceptions.EditRequestValidationError(
                error="Prompt cannot be empty",
            )

        if len(prompt) > image_edit_proxy.models.MAXIMUM_PROMPT_LENGTH:
            raise image_edit_proxy.exceptions.EditRequestValidationError(
                error=f"Prompt is too long (max {image_edit_proxy.models.MAXIMUM_PROMPT_LENGTH} characters)",
            )

        if not self._upstream_configuration.is_configured:
            raise image_edit_proxy.exceptions.UpstreamNotConfiguredError()

        if not self._upstream_configuration.is_base_url_valid:
            raise image_edit_proxy.exceptions.UpstreamInvalidUrlError()

    async def edit_image(
        self,
        edit_request: image_edit_proxy.models.EditRequest,
    ) -> image_edit_proxy.models.EditedImage:
        """
        Validate ``edit_request`` and forward it to the upstream server.

        Returns:
            The edited image from the first successful attempt.

        Raises:
            EditRequestValidationError, UpstreamNotConfiguredError,
            UpstreamInvalidUrlError: The request was rejected before
                contacting the upstream.
            UpstreamServiceError: The last upstream fault after the retry
                policy gave up.
        """
        self.validate_edit_request(edit_request)

        # Checked by validate_edit_request; narrowed here for the type checker.
        prompt = typing.cast(str, edit_request.prompt)
        image_bytes = typing.cast(bytes, edit_request.image_bytes)

        logger.info(
            "image_edit_forwarded",
            prompt=prompt,
            image_filename=edit_request.image_filename,
            image_bytes=len(image_bytes),
        )

        async def send_to_upstream() -> image_edit_proxy.models.EditedImage:
            return await self._upstream_client.send(
                image_bytes=image_bytes,
                image_filename=edit_request.image_filename,
                prompt=prompt,
                image_content_type=edit_request.image_content_type,
            )

        edited_image = await image_edit_proxy.retry_policy.run_with_retry(
            send_to_upstream,
            maximum_retries=self._upstream_configuration.maximum_retries,
            retry_delay_milliseconds=self._upstream_configuration.retry_delay_milliseconds,
            sleep=self._sleep,
        )

        logger.info(
            "image_edit_completed",
            edited_image_bytes=len(edited_image.image_bytes),
        )

        return edited_image

    async def close(self) -> None:
        """Release the upstream client's network resources."""
        await self._upstream_client.close()
