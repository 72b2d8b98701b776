"""FastAPI application exposing relay health and metrics."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse, Response

from .service import OracleService

logger = logging.getLogger(__name__)


def create_app(service: OracleService, *, manage_lifecycle: bool = True) -> FastAPI:
    """Build the HTTP app; with ``manage_lifecycle`` the service runs inside it."""

    app = FastAPI(title="Oracle Relay", version="0.1.0")

    if manage_lifecycle:

        @app.on_event("startup")
        async def _startup() -> None:
            await service.start()

        @app.on_event("shutdown")
        async def _shutdown() -> None:
            await service.close()

    async def get_service() -> OracleService:
        return service

    @app.get("/healthz")
    async def health(service: OracleService = Depends(get_service)) -> Dict[str, Any]:
        return await service.health()

    @app.get("/readyz")
    async def ready(service: OracleService = Depends(get_service)) -> JSONResponse:
        snapshot = await service.health()
        status_code = 200 if snapshot["status"] == "ok" else 503
        return JSONResponse(snapshot, status_code=status_code)

    @app.get("/metrics")
    async def metrics(service: OracleService = Depends(get_service)) -> Response:
        return Response(service.metrics(), media_type=service.metrics_content_type)

    return app


__all__ = ["create_app"]
