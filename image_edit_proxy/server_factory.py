"""
FastAPI application factory.

The ``create_application`` function constructs a fully configured FastAPI
instance with service lifecycle management, error handling, and route
registration. Using a factory function (rather than a module-level global)
makes the application straightforward to test and re-create.
"""

import collections.abc
import contextlib

import fastapi
import fastapi.middleware.cors
import fastapi.openapi.utils
import structlog

import configuration
import image_edit_proxy.error_handling
import image_edit_proxy.logging_config
import image_edit_proxy.middleware
import image_edit_proxy.models
import image_edit_proxy.routes.edit_routes
import image_edit_proxy.routes.health_routes
import image_edit_proxy.services.image_edit_service
import image_edit_proxy.services.upstream_client

logger = structlog.get_logger()


def log_upstream_configuration_state(
    upstream_configuration: image_edit_proxy.models.UpstreamConfiguration,
) -> None:
    """
    Report the startup validation result for the upstream URL.

    A missing or invalid URL never stops the process; ``/api/edit``
    answers 503 until the configuration is fixed and the service restarted.
    """
    if not upstream_configuration.is_configured:
        logger.error(
            "upstream_server_url_missing",
            detail="The /api/edit endpoint will not work until the AI server URL is configured.",
        )
    elif not upstream_configuration.is_base_url_valid:
        logger.warning(
            "upstream_server_url_invalid",
            upstream_server_url=upstream_configuration.base_url,
            detail="The AI server URL must be an http or https URL.",
        )

    logger.info(
        "upstream_configuration_resolved",
        upstream_server_url=upstream_configuration.base_url,
        upstream_server_configured=upstream_configuration.is_base_url_valid,
        request_timeout_milliseconds=upstream_configuration.request_timeout_milliseconds,
        maximum_retries=upstream_configuration.maximum_retries,
        retry_delay_milliseconds=upstream_configuration.retry_delay_milliseconds,
    )


def create_application() -> fastapi.FastAPI:
    """
    Create and fully configure the FastAPI application.

    This function:
      1. Reads configuration from environment variables, once.
      2. Freezes the upstream settings into an ``UpstreamConfiguration``.
      3. Defines an async lifespan manager that creates the upstream client
         and edit service on startup and closes them on shutdown.
      4. Registers all error handlers.
      5. Adds the payload-limit and correlation-ID middleware (and CORS
         when configured).
      6. Includes all route handlers.
    """
    application_configuration = configuration.ApplicationConfiguration()
    image_edit_proxy.logging_config.configure_logging(
        log_level=application_configuration.log_level,
    )

    upstream_configuration = application_configuration.build_upstream_configuration()
    in_flight_request_counter = image_edit_proxy.middleware.InFlightRequestCounter()

    @contextlib.asynccontextmanager
    async def application_lifespan(
        fastapi_application: fastapi.FastAPI,
    ) -> collections.abc.AsyncIterator[None]:
        """
        Manage the lifecycle of shared service instances.

        On startup, validate the upstream URL and create the pooled HTTP
        client.  On shutdown, close it to release connections.
        """
        log_upstream_configuration_state(upstream_configuration)

        upstream_client_instance = image_edit_proxy.services.upstream_client.UpstreamClient(
            upstream_configuration=upstream_configuration,
        )
        image_edit_service_instance = image_edit_proxy.services.image_edit_service.ImageEditService(
            upstream_client=upstream_client_instance,
            upstream_configuration=upstream_configuration,
        )

        fastapi_application.state.image_edit_service = image_edit_service_instance

        logger.info(
            "services_initialised",
            application_port=application_configuration.application_port,
            maximum_image_bytes=application_configuration.maximum_image_bytes,
        )

        yield

        logger.info(
            "graceful_shutdown_initiated",
            in_flight_requests=in_flight_request_counter.count,
        )

        await image_edit_service_instance.close()
        logger.info("services_shutdown_complete")

    fastapi_application = fastapi.FastAPI(
        title="Image Edit Proxy",
        description=(
            "Backend for the social-media post creation wizard. Forwards "
            "image-editing requests to an external AI inference server with "
            "bounded retry and a stable error taxonomy."
        ),
        version="1.0.0",
        lifespan=application_lifespan,
    )

    fastapi_application.state.upstream_configuration = upstream_configuration
    fastapi_application.state.maximum_image_bytes = application_configuration.maximum_image_bytes

    image_edit_proxy.error_handling.register_error_handlers(fastapi_application)

    # Starlette wraps each new middleware around the previous ones, so the
    # payload limit added first runs innermost, closest to the routes.
    fastapi_application.add_middleware(
        image_edit_proxy.middleware.RequestPayloadSizeLimitMiddleware,
        maximum_image_bytes=application_configuration.maximum_image_bytes,
    )

    if application_configuration.cors_allowed_origins:
        fastapi_application.add_middleware(
            fastapi.middleware.cors.CORSMiddleware,
            allow_origins=application_configuration.cors_allowed_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
            expose_headers=["X-Correlation-ID"],
        )

    # CorrelationId is registered last so it is the outermost layer and
    # every response, including CORS rejections, carries a correlation ID.
    fastapi_application.add_middleware(
        image_edit_proxy.middleware.CorrelationIdMiddleware,
        in_flight_request_counter=in_flight_request_counter,
    )

    fastapi_application.include_router(
        image_edit_proxy.routes.edit_routes.edit_router,
    )
    fastapi_application.include_router(
        image_edit_proxy.routes.health_routes.health_router,
    )

    _customise_openapi_schema(fastapi_application)

    return fastapi_application


def _customise_openapi_schema(fastapi_application: fastapi.FastAPI) -> None:
    """
    Remove the phantom ``422`` responses from the generated OpenAPI schema.

    FastAPI documents a 422 ``HTTPValidationError`` for every route with
    form parameters, but the registered handlers answer validation
    failures with 400 ``VALIDATION_ERROR``, so 422 is never emitted.
    """

    def customised_openapi() -> dict:
        if fastapi_application.openapi_schema:
            return fastapi_application.openapi_schema

        openapi_schema = fastapi.openapi.utils.get_openapi(
            title=fastapi_application.title,
            version=fastapi_application.version,
            description=fastapi_application.description,
            routes=fastapi_application.routes,
        )

        for path_item in openapi_schema.get("paths", {}).values():
            for operation in path_item.values():
                if isinstance(operation, dict) and "responses" in operation:
                    operation["responses"].pop("422", None)

        component_schemas = openapi_schema.get("components", {}).get("schemas", {})
        component_schemas.pop("HTTPValidationError", None)
        component_schemas.pop("ValidationError", None)

        fastapi_application.openapi_schema = openapi_schema
        return openapi_schema

    fastapi_application.openapi = customised_openapi  # type: ignore[method-assign]
