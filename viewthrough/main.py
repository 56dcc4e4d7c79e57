"""FastAPI application entrypoint.

Configures CORS, includes routers, and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings  # noqa: E402
from .routers import attribution as attribution_router  # noqa: E402
from .telemetry import init_observability  # noqa: E402
from . import schemas  # noqa: E402

# Import models so Alembic can discover metadata
from . import models  # noqa: F401,E402


def create_app() -> FastAPI:
    observability = init_observability()
    logger.info("[STARTUP] Observability: %s", observability)

    app = FastAPI(
        title="View-Through Attribution API",
        description="""
        Modeled view-through attribution for ad platforms.

        This API provides endpoints for:
        - View-through credit per platform (impressions seen, never clicked)
        - Combined click + view-through attribution per platform
        - Manual recomputation for the current workspace
        - Raw impression rollups

        ## Authentication

        JWT in the HTTP-only `access_token` cookie. Every endpoint except
        `/health` is scoped to the authenticated user's workspace.
        """,
        version="1.0.0",
    )

    settings = get_settings()

    # BACKEND_CORS_ORIGINS is a comma-separated list
    allowed_origins = [origin.strip() for origin in settings.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]
    logger.info("[CORS] Allowed origins: %s", allowed_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(attribution_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="""
        Simple health check endpoint to verify the API is running.

        Does not require authentication; suitable for load balancer checks.
        """
    )
    def health():
        return schemas.HealthResponse(status="ok")

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )

        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "cookieAuth": {
                "type": "apiKey",
                "in": "cookie",
                "name": "access_token",
                "description": "JWT token stored in HTTP-only cookie. Format: 'Bearer <token>'"
            }
        }

        for path, methods in openapi_schema["paths"].items():
            if path == "/health":
                continue
            for operation in methods.values():
                operation.setdefault("security", [{"cookieAuth": []}])

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi
    return app


app = create_app()
