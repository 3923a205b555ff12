"""
Entry point for the image edit proxy.

Creates the FastAPI application instance and starts the Uvicorn ASGI
server when executed directly.  Logging is configured by the application
factory; Uvicorn is told not to install its own handlers so its access and
error records flow through the same structured JSON pipeline.
"""

import uvicorn

import configuration
import image_edit_proxy.server_factory

fastapi_application = image_edit_proxy.server_factory.create_application()

if __name__ == "__main__":
    application_configuration = configuration.ApplicationConfiguration()

    uvicorn.run(
        "main:fastapi_application",
        host=application_configuration.application_host,
        port=application_configuration.application_port,
        log_config=None,
    )
