"""
Route definition for the health endpoint.

``GET /api/health`` is a liveness check that also reports the upstream
configuration resolved at startup: the configured AI server URL (or
``null``) and whether that URL is a usable http(s) URL.  The service keeps
running with a missing or invalid URL, so this endpoint is where operators
and the frontend see the problem.

Cache suppression policy
------------------------
The response includes ``Cache-Control: no-store, no-cache`` and
``Pragma: no-cache`` so intermediate proxies never serve a stale health
status.
"""

import datetime
import typing

import fastapi
import fastapi.responses

import image_edit_proxy.dependencies
import image_edit_proxy.models

health_router = fastapi.APIRouter(prefix="/api", tags=["Health"])

_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache",
    "Pragma": "no-cache",
}


def _current_timestamp() -> str:
    """Return the current time as an ISO 8601 UTC string with milliseconds."""
    return datetime.datetime.now(datetime.UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@health_router.get(
    "/health",
    summary="Liveness and configuration check",
    description=(
        "Returns ``ok`` while the process is running, together with the "
        "configured AI server URL and whether it passes validation."
    ),
    status_code=200,
    responses={
        200: {
            "description": "The service process is running.",
            "content": {
                "application/json": {
                    "example": {
                        "status": "ok",
                        "timestamp": "2026-01-01T12:00:00.000Z",
                        "colabServerUrl": "https://example.ngrok.app/edit",
                        "colabServerConfigured": True,
                    },
                },
            },
        },
    },
)
async def health_check(
    upstream_configuration: typing.Annotated[
        image_edit_proxy.models.UpstreamConfiguration,
        fastapi.Depends(image_edit_proxy.dependencies.get_upstream_configuration),
    ],
) -> fastapi.responses.JSONResponse:
    """Report process liveness and the upstream configuration state."""
    health_response = image_edit_proxy.models.HealthResponse(
        timestamp=_current_timestamp(),
        colab_server_url=upstream_configuration.base_url,
        colab_server_configured=upstream_configuration.is_base_url_valid,
    )

    return fastapi.responses.JSONResponse(
        content=health_response.model_dump(by_alias=True),
        headers=_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS,
    )
