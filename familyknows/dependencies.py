"""
Dependency wiring for the FastAPI app.

Clients are built once per application into a `ServiceContainer` that lives
on `app.state`; routes resolve it per request instead of through module
globals, so tests and tenants each get their own container.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from familyknows.backup import BackupService
from familyknows.config import Settings, get_settings
from familyknows.db import DbClient, InMemoryDbClient, PostgresDbClient
from familyknows.drive import DriveClient, GoogleDriveClient, InMemoryDriveClient
from familyknows.google_auth import GoogleOAuthClient


@dataclass
class ServiceContainer:
    settings: Settings
    db: DbClient
    drive: DriveClient
    oauth: GoogleOAuthClient
    backups: BackupService


def build_container(
    settings: Optional[Settings] = None,
    db: Optional[DbClient] = None,
    drive: Optional[DriveClient] = None,
    oauth: Optional[GoogleOAuthClient] = None,
) -> ServiceContainer:
    settings = settings or get_settings()

    if db is None:
        if settings.use_in_memory_backends or not settings.database_url:
            db = InMemoryDbClient()
        else:
            db = PostgresDbClient(settings.database_url)

    if drive is None:
        if settings.use_in_memory_backends:
            drive = InMemoryDriveClient()
        else:
            drive = GoogleDriveClient(
                api_base=settings.drive_api_base,
                upload_base=settings.drive_upload_base,
                timeout=settings.request_timeout,
            )

    oauth = oauth or GoogleOAuthClient(settings)
    backups = BackupService(db=db, drive=drive, oauth=oauth, settings=settings)
    return ServiceContainer(
        settings=settings, db=db, drive=drive, oauth=oauth, backups=backups
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_db_client(container: ServiceContainer = Depends(get_container)) -> DbClient:
    return container.db


def get_oauth_client(
    container: ServiceContainer = Depends(get_container),
) -> GoogleOAuthClient:
    return container.oauth


def get_backup_service(
    container: ServiceContainer = Depends(get_container),
) -> BackupService:
    return container.backups


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    """The caller's identity; authentication happens upstream."""
    return x_user_id
