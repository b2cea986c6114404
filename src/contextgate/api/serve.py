"""API server for ``contextgate serve``.

Builds the FastAPI application with the versioned ``/api/v1/`` routers and
CORS, and runs it under uvicorn.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

_BUILTIN_ORIGINS = [
    "http://localhost:3000",
]


def _format_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return "; ".join(parts) or "Invalid request"


def install_exception_handlers(app: FastAPI) -> None:
    """Answer malformed request bodies with 400 and the usual error envelope."""

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError):
        logger.debug("Rejected request to %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=400,
            content={
                "detail": {
                    "error": "invalid_request",
                    "message": _format_validation_error(exc),
                }
            },
        )


def create_api_app() -> FastAPI:
    """Build the FastAPI application with only v1 API routers."""
    from fastapi.middleware.cors import CORSMiddleware

    from contextgate import __version__
    from contextgate.api.v1 import mount_v1_routers
    from contextgate.config import get_settings

    app = FastAPI(
        title="contextgate API",
        description="Delegated authorization for CLI clients.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    # --- CORS -----------------------------------------------------------
    origins = sorted(set(_BUILTIN_ORIGINS + get_settings().api_cors_allowed_origins))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    install_exception_handlers(app)

    # --- Mount all /api/v1/ routers -------------------------------------
    mount_v1_routers(app)

    return app


def run_api_server(host: str = "127.0.0.1", port: int = 8890, dev: bool = False) -> None:
    """Start the API server."""
    import uvicorn

    logger.info("API docs: http://%s:%d/api/v1/docs", host, port)

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "contextgate.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        uvicorn.run(create_api_app(), host=host, port=port)
