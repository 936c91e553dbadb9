"""
FastAPI application entry point.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cleanops.config import get_settings
from cleanops.errors import CleanOpsError
from cleanops.routes import router

logger = logging.getLogger(__name__)


async def handle_domain_error(request: Request, exc: CleanOpsError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title="CleanOps Backend (FastAPI)", version="0.1.0")
    app.add_exception_handler(CleanOpsError, handle_domain_error)
    app.include_router(router, prefix=settings.api_prefix)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
