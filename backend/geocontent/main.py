"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
logging, CORS middleware, the content collection routers, the error
rendering for client-facing exceptions and a health check endpoint for
monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn geocontent.main:app --reload

    Or imported and used programmatically:
        >>> from geocontent.main import app
        >>> # Use app in ASGI server
"""

import logging

import fastapi
from fastapi import responses
from fastapi.middleware import cors

from geocontent.api import resources
from geocontent.core import config, errors
from geocontent.core import logging as app_logging

logger = logging.getLogger(__name__)


async def handle_exposed_error(
    request: fastapi.Request,
    exc: errors.ExposedError,
) -> responses.JSONResponse:
    """Render an ``ExposedError`` as ``{"errors": [...]}``.

    Server-side errors (5xx) are logged since they point at a defect rather
    than at a bad request.
    """
    if exc.code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return responses.JSONResponse(
        status_code=exc.code,
        content={"errors": exc.to_errors()},
    )


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Sets up logging, CORS middleware, the content routers under
    ``api_base`` and the health check endpoint. CORS origins are configured
    from settings, allowing cross-origin requests from specified domains.

    Returns:
        Configured FastAPI application instance ready for ASGI server.

    Example:
        The app can be used with uvicorn or other ASGI servers:
            >>> app = create_app()
            >>> # Or use the module-level app instance:
            >>> from geocontent.main import app
    """
    settings = config.get_settings()
    app_logging.configure_logging(settings)
    app = fastapi.FastAPI(title="Geo Content API", version="0.1.0")

    app.include_router(resources.router, prefix=settings.api_base)
    app.add_exception_handler(errors.ExposedError, handle_exposed_error)  # type: ignore[arg-type]

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
