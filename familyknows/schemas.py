"""
Pydantic schemas for the backup file format and the HTTP API.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from familyknows.types import MergePolicy, UrgencyLevel


class BackupWorkspace(BaseModel):
    id: str
    name: str


class BackupData(BaseModel):
    """A versioned snapshot of one workspace; records are data-service rows verbatim."""

    version: str
    created_at: str
    workspace: BackupWorkspace
    loans: list[dict] = Field(default_factory=list)
    insurance_policies: list[dict] = Field(default_factory=list)
    renewals: list[dict] = Field(default_factory=list)
    members: list[dict] = Field(default_factory=list)
    invites: list[dict] = Field(default_factory=list)


class DriveStatusResponse(BaseModel):
    available: bool
    configured: bool


class AuthUrlResponse(BaseModel):
    url: str
    state: str
    code_verifier: str


class ConnectDriveRequest(BaseModel):
    code: str = Field(..., min_length=1)
    code_verifier: str = Field(..., min_length=1)
    redirect_uri: Optional[str] = None


class ConnectDriveResponse(BaseModel):
    connected: bool
    scopes: list[str] = Field(default_factory=list)
    expires_at: Optional[float] = None


class DriveFileResponse(BaseModel):
    id: str
    name: str
    mime_type: str
    created_time: Optional[str] = None
    modified_time: Optional[str] = None
    size: Optional[int] = None


class ListBackupsResponse(BaseModel):
    backups: list[DriveFileResponse]


class CreateBackupRequest(BaseModel):
    workspace_id: str = Field(..., min_length=1)


class RestoreRequest(BaseModel):
    policy: MergePolicy = MergePolicy.OVERWRITE


class RestoreFailureResponse(BaseModel):
    collection: str
    record_id: Optional[str] = None
    message: str


class RestoreResponse(BaseModel):
    success: bool
    partial: bool
    message: str
    restored: dict[str, int]
    skipped: dict[str, int]
    failed: dict[str, int]
    failures: list[RestoreFailureResponse]


class DeleteBackupResponse(BaseModel):
    deleted: bool


class AttentionItem(BaseModel):
    kind: str
    id: str
    title: str
    expiry_date: str
    level: UrgencyLevel
    days_until_expiry: int
    label: str


class AttentionResponse(BaseModel):
    workspace_id: str
    items: list[AttentionItem]
