"""
Application configuration module.

Loads all configuration values from environment variables with the prefix
IMAGE_EDIT_PROXY_. Default values are provided for local development. A
.env file is also supported via pydantic-settings.

This module is the single source of truth for all runtime configuration
within the service process. It is read exactly once, by the application
factory, and the upstream-related values are frozen into an
``UpstreamConfiguration`` that is injected into the services.
"""

import pydantic
import pydantic_settings

import image_edit_proxy.models


class ApplicationConfiguration(pydantic_settings.BaseSettings):
    """
    Centralised configuration for the image edit proxy.

    Every field maps to an environment variable prefixed with
    IMAGE_EDIT_PROXY_.  For example, the field ``maximum_retries`` is
    populated from the environment variable IMAGE_EDIT_PROXY_MAXIMUM_RETRIES.

    The legacy unprefixed names of existing deployment ``.env`` files are
    also accepted, with the prefixed name taking precedence:
    ``COLAB_AI_SERVER_URL``, ``PORT``, ``REQUEST_TIMEOUT``, ``MAX_RETRIES``
    and ``RETRY_DELAY``.

    Configuration categories
    ------------------------
    - **Application**: host, port, CORS, log level
    - **Upstream AI server**: URL, per-attempt timeout, retry count,
      fixed delay between attempts
    - **Inbound limits**: maximum accepted image size
    """

    # ── Application settings ─────────────────────────────────────────────

    application_host: str = "127.0.0.1"

    application_port: int = pydantic.Field(
        default=3000,
        ge=1,
        le=65535,
        validation_alias=pydantic.AliasChoices("IMAGE_EDIT_PROXY_APPLICATION_PORT", "PORT"),
    )

    cors_allowed_origins: list[str] = pydantic.Field(
        default=["*"],
        description=(
            "Allowed CORS origins as a JSON list. An empty list disables CORS "
            "entirely. Example: '[\"http://localhost:5173\"]'."
        ),
    )

    log_level: str = pydantic.Field(
        default="INFO",
        description=(
            "Minimum log level for structured JSON logging. "
            "Accepted values: DEBUG, INFO, WARNING, ERROR, CRITICAL."
        ),
    )

    # ── Upstream AI server settings ───────────────────────────────────────

    upstream_server_url: str | None = pydantic.Field(
        default=None,
        validation_alias=pydantic.AliasChoices(
            "IMAGE_EDIT_PROXY_UPSTREAM_SERVER_URL",
            "COLAB_AI_SERVER_URL",
        ),
        description=(
            "Full URL of the AI image-editing endpoint. Edit requests are "
            "POSTed to this URL verbatim. When unset or not an http(s) URL "
            "the service still starts, but /api/edit answers HTTP 503."
        ),
    )

    request_timeout_in_milliseconds: int = pydantic.Field(
        default=180_000,
        gt=0,
        validation_alias=pydantic.AliasChoices(
            "IMAGE_EDIT_PROXY_REQUEST_TIMEOUT_IN_MILLISECONDS",
            "REQUEST_TIMEOUT",
        ),
        description=(
            "Timeout applied to each individual upstream attempt. Retries "
            "each receive a fresh timeout."
        ),
    )

    maximum_retries: int = pydantic.Field(
        default=3,
        ge=1,
        validation_alias=pydantic.AliasChoices("IMAGE_EDIT_PROXY_MAXIMUM_RETRIES", "MAX_RETRIES"),
        description=(
            "Maximum number of upstream attempts per edit request, "
            "including the first one."
        ),
    )

    retry_delay_in_milliseconds: int = pydantic.Field(
        default=2000,
        ge=0,
        validation_alias=pydantic.AliasChoices(
            "IMAGE_EDIT_PROXY_RETRY_DELAY_IN_MILLISECONDS",
            "RETRY_DELAY",
        ),
        description="Fixed pause between a transient failure and the next attempt.",
    )

    # ── Inbound limits ────────────────────────────────────────────────────

    maximum_image_bytes: int = pydantic.Field(
        default=10 * 1024 * 1024,
        ge=1,
        description=(
            "Maximum size of the uploaded image in bytes. Larger uploads "
            "are rejected with HTTP 400 (VALIDATION_ERROR). Default is 10 MiB."
        ),
    )

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_prefix="IMAGE_EDIT_PROXY_",
        populate_by_name=True,
        extra="ignore",
    )

    @pydantic.field_validator("upstream_server_url")
    @classmethod
    def normalise_blank_upstream_server_url(cls, upstream_server_url: str | None) -> str | None:
        """Treat an empty or whitespace-only value as not configured."""
        if upstream_server_url is None or not upstream_server_url.strip():
            return None
        return upstream_server_url.strip()

    def build_upstream_configuration(self) -> image_edit_proxy.models.UpstreamConfiguration:
        """Freeze the upstream-related settings for injection into the services."""
        return image_edit_proxy.models.UpstreamConfiguration(
            base_url=self.upstream_server_url,
            request_timeout_milliseconds=self.request_timeout_in_milliseconds,
            maximum_retries=self.maximum_retries,
            retry_delay_milliseconds=self.retry_delay_in_milliseconds,
        )
