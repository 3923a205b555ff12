"""
FastAPI dependency injection providers.

Each function in this module retrieves a shared instance from the FastAPI
application state, keeping route handlers decoupled from construction and
making them straightforward to test with ``dependency_overrides``.
"""

import fastapi

import image_edit_proxy.models
import image_edit_proxy.services.image_edit_service


def get_image_edit_service(
    request: fastapi.Request,
) -> image_edit_proxy.services.image_edit_service.ImageEditService:
    """Retrieve the shared ImageEditService instance from application state."""
    return request.app.state.image_edit_service  # type: ignore[no-any-return]


def get_upstream_configuration(
    request: fastapi.Request,
) -> image_edit_proxy.models.UpstreamConfiguration:
    """
    Retrieve the frozen upstream configuration resolved at startup.

    Falls back to an unconfigured value when the lifespan has not run, so
    the health route still answers.
    """
    upstream_configuration = getattr(request.app.state, "upstream_configuration", None)
    if upstream_configuration is None:
        return image_edit_proxy.models.UpstreamConfiguration()
    return upstream_configuration  # type: ignore[no-any-return]
