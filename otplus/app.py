import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from otplus.core.errors import create_user_friendly_error
from otplus.core.validation import ValidationError
from otplus.infrastructure import ClockifyClient, FileKeyValueStore, KeyValueStore
from otplus.logging_config import configure_from_env
from otplus.routes import analysis, overrides

logger = logging.getLogger(__name__)


def create_app(storage: KeyValueStore | None = None, client_factory=None) -> FastAPI:
    app = FastAPI(title="OTPLUS Overtime Analytics API", version="0.1.0")

    configure_from_env()

    app.state.storage = storage or FileKeyValueStore()
    app.state.stores = {}
    app.state.client_factory = client_factory or (lambda token, claims: ClockifyClient(token, claims))

    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        friendly = create_user_friendly_error(exc, message=str(exc))
        logger.info("Rejected request to %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc), "error": friendly.model_dump(mode="json")})

    app.include_router(overrides.router, prefix="/api")
    app.include_router(analysis.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "OTPLUS Overtime Analytics API",
                "docs": "/docs",
            }
        )

    return app


app = create_app()
