"""
HTTP routes for the backup service.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from familyknows.backup import BackupService
from familyknows.db import INSURANCE_POLICIES, RENEWALS, DbClient
from familyknows.dependencies import (
    get_backup_service,
    get_db_client,
    get_oauth_client,
    get_user_id,
)
from familyknows.errors import BackupError, ErrorKind, Outcome, RemoteDataError
from familyknows.google_auth import GoogleOAuthClient
from familyknows.schemas import (
    AttentionItem,
    AttentionResponse,
    AuthUrlResponse,
    BackupData,
    ConnectDriveRequest,
    ConnectDriveResponse,
    CreateBackupRequest,
    DeleteBackupResponse,
    DriveFileResponse,
    DriveStatusResponse,
    ListBackupsResponse,
    RestoreRequest,
    RestoreResponse,
)
from familyknows.urgency import items_needing_attention, sort_by_urgency, urgency_info

logger = logging.getLogger(__name__)

router = APIRouter()

STATUS_BY_KIND = {
    ErrorKind.NOT_CONNECTED: 401,
    ErrorKind.NOT_CONFIGURED: 503,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NETWORK: 502,
    ErrorKind.REMOTE_REJECTED: 502,
    ErrorKind.PARSE_FAILURE: 422,
}


def _http_error(error: BackupError) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_KIND.get(error.kind, 500), detail=error.as_dict()
    )


def _unwrap(outcome: Outcome):
    if not outcome.ok:
        raise _http_error(outcome.error)
    return outcome.value


@router.get("/drive/status", response_model=DriveStatusResponse)
def drive_status(
    user_id: str = Depends(get_user_id),
    backups: BackupService = Depends(get_backup_service),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
):
    return DriveStatusResponse(
        available=backups.is_drive_backup_available(user_id),
        configured=oauth.configured,
    )


@router.get("/drive/auth-url", response_model=AuthUrlResponse)
def drive_auth_url(
    redirect_uri: Optional[str] = Query(None),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
):
    try:
        request = oauth.build_authorization_request(redirect_uri)
    except BackupError as exc:
        raise _http_error(exc)
    return AuthUrlResponse(
        url=request.url, state=request.state, code_verifier=request.code_verifier
    )


@router.post("/drive/connect", response_model=ConnectDriveResponse)
def connect_drive(
    payload: ConnectDriveRequest,
    user_id: str = Depends(get_user_id),
    backups: BackupService = Depends(get_backup_service),
):
    tokens = _unwrap(
        backups.connect_drive(
            user_id, payload.code, payload.code_verifier, payload.redirect_uri
        )
    )
    return ConnectDriveResponse(
        connected=True, scopes=tokens.scopes, expires_at=tokens.expires_at
    )


@router.delete("/drive/connect", response_model=ConnectDriveResponse)
def disconnect_drive(
    user_id: str = Depends(get_user_id),
    backups: BackupService = Depends(get_backup_service),
):
    _unwrap(backups.disconnect_drive(user_id))
    return ConnectDriveResponse(connected=False)


@router.get("/workspaces/{workspace_id}/export", response_model=BackupData)
def export_workspace(
    workspace_id: str,
    user_id: str = Depends(get_user_id),
    backups: BackupService = Depends(get_backup_service),
):
    return _unwrap(backups.export_workspace_data(workspace_id))


@router.get("/workspaces/{workspace_id}/attention", response_model=AttentionResponse)
def workspace_attention(
    workspace_id: str,
    today: Optional[date] = Query(None),
    user_id: str = Depends(get_user_id),
    db: DbClient = Depends(get_db_client),
):
    """Policies and renewals whose expiry falls inside their reminder window."""
    try:
        policies = db.list_rows(INSURANCE_POLICIES, workspace_id)
        renewals = db.list_rows(RENEWALS, workspace_id)
    except RemoteDataError as exc:
        logger.error("Attention lookup failed for %s: %s", workspace_id, exc)
        raise _http_error(BackupError(ErrorKind.REMOTE_REJECTED, str(exc)))

    items = []
    for kind, rows in (("insurance", policies), ("renewal", renewals)):
        for row in sort_by_urgency(items_needing_attention(rows, today)):
            info = urgency_info(row["expiry_date"], today)
            title = row.get("title") or row.get("provider_name") or row["id"]
            items.append(
                AttentionItem(
                    kind=kind,
                    id=row["id"],
                    title=title,
                    expiry_date=str(row["expiry_date"])[:10],
                    level=info.level,
                    days_until_expiry=info.days_until_expiry,
                    label=info.label,
                )
            )
    items.sort(key=lambda item: item.days_until_expiry)
    return AttentionResponse(workspace_id=workspace_id, items=items)


@router.get("/backups", response_model=ListBackupsResponse)
def list_backups(
    user_id: str = Depends(get_user_id),
    backups: BackupService = Depends(get_backup_service),
):
    files = _unwrap(backups.list_backups(user_id))
    return ListBackupsResponse(
        backups=[DriveFileResponse(**f.as_dict()) for f in files]
    )


@router.post("/backups", response_model=DriveFileResponse, status_code=201)
def create_backup(
    payload: CreateBackupRequest,
    user_id: str = Depends(get_user_id),
    backups: BackupService = Depends(get_backup_service),
):
    drive_file = _unwrap(backups.create_backup(user_id, payload.workspace_id))
    return DriveFileResponse(**drive_file.as_dict())


@router.post("/backups/{file_id}/restore", response_model=RestoreResponse)
def restore_backup(
    file_id: str,
    payload: Optional[RestoreRequest] = None,
    user_id: str = Depends(get_user_id),
    backups: BackupService = Depends(get_backup_service),
):
    policy = (payload or RestoreRequest()).policy
    report = _unwrap(backups.restore_backup_file(user_id, file_id, policy))
    if report.error is not None:
        raise _http_error(report.error)
    return RestoreResponse(**report.as_dict())


@router.delete("/backups/{file_id}", response_model=DeleteBackupResponse)
def delete_backup(
    file_id: str,
    user_id: str = Depends(get_user_id),
    backups: BackupService = Depends(get_backup_service),
):
    deleted = _unwrap(backups.delete_backup(user_id, file_id))
    return DeleteBackupResponse(deleted=deleted)
