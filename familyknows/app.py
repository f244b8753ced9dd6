"""
FastAPI application entry point for the backup service.
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from familyknows.dependencies import ServiceContainer, build_container
from familyknows.routes import router


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    container = container or build_container()
    app = FastAPI(title="FamilyKnows Backup", version="0.1.0")
    app.state.container = container
    app.include_router(router, prefix=container.settings.api_prefix)
    return app


app = create_app()
