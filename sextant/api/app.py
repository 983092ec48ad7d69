"""FastAPI application entry point for Sextant."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sextant.api.routes import router
from sextant.config.settings import SextantConfig

SERVICE_NAME = "sextant"
SERVICE_VERSION = "0.1.0"


def create_app(config: SextantConfig | None = None) -> FastAPI:
    """Factory function for creating the FastAPI application."""
    config = config or SextantConfig()
    logging.getLogger().setLevel(config.log_level)

    app = FastAPI(
        title="Sextant",
        description="Recipe synthesis, validation and lifecycle engine",
        version=SERVICE_VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": SERVICE_NAME, "version": SERVICE_VERSION}

    return app


app = create_app()
