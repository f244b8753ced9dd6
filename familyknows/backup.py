"""
Backup and restore of a workspace to the user's Google Drive.

Export reads the workspace and its collections concurrently, create uploads a
pretty-printed JSON snapshot into a fixed folder, and restore merges the
loans, policies and renewals of a snapshot back into the data service under
an explicit merge policy. Every operation catches at its own boundary and
reports failures as an `Outcome` carrying an `ErrorKind`.
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from pydantic import ValidationError

from familyknows.config import Settings, get_settings
from familyknows.db import (
    INSURANCE_POLICIES,
    INVITES,
    LOANS,
    RENEWALS,
    WORKSPACE_MEMBERS,
    DbClient,
)
from familyknows.drive import DriveClient, DriveFile
from familyknows.errors import BackupError, ErrorKind, Outcome, RemoteDataError
from familyknows.google_auth import GoogleOAuthClient, GoogleTokens
from familyknows.schemas import BackupData, BackupWorkspace
from familyknows.types import MergePolicy

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = "1.0.0"

# Snapshot key -> data-service table, in snapshot order.
EXPORT_COLLECTIONS = {
    "loans": LOANS,
    "insurance_policies": INSURANCE_POLICIES,
    "renewals": RENEWALS,
    "members": WORKSPACE_MEMBERS,
    "invites": INVITES,
}
RESTORED_COLLECTIONS = ("loans", "insurance_policies", "renewals")


def isoformat_utc(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a trailing Z."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def backup_filename(prefix: str, workspace_name: str, created_at: str) -> str:
    stamp = re.sub(r"[:.]", "-", created_at)
    return f"{prefix}_{workspace_name}_{stamp}.json"


def serialize_backup(backup: BackupData) -> str:
    return json.dumps(backup.model_dump(), indent=2, ensure_ascii=False, default=str)


def parse_backup(content: str) -> BackupData:
    """
    Parse a downloaded snapshot.

    Raises:
        BackupError: PARSE_FAILURE when the content is not JSON or does not
            have the snapshot shape.
    """
    try:
        payload = json.loads(content)
    except (TypeError, ValueError) as exc:
        raise BackupError(
            ErrorKind.PARSE_FAILURE, f"Backup is not valid JSON: {exc}"
        ) from exc
    try:
        return BackupData.model_validate(payload)
    except ValidationError as exc:
        raise BackupError(
            ErrorKind.PARSE_FAILURE,
            f"Backup does not match the snapshot format ({exc.error_count()} errors)",
        ) from exc


def _timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_newer(candidate: dict, current: dict) -> bool:
    candidate_ts = _timestamp(candidate.get("updated_at"))
    current_ts = _timestamp(current.get("updated_at"))
    if current_ts is None:
        return True
    if candidate_ts is None:
        return False
    return candidate_ts > current_ts


@dataclass
class RestoreFailure:
    collection: str
    record_id: Optional[str]
    message: str

    def as_dict(self) -> dict:
        return {
            "collection": self.collection,
            "record_id": self.record_id,
            "message": self.message,
        }


def _zero_counts() -> dict[str, int]:
    return {collection: 0 for collection in RESTORED_COLLECTIONS}


@dataclass
class RestoreReport:
    """Per-collection counts of a restore; restores are not transactional."""

    restored: dict[str, int] = field(default_factory=_zero_counts)
    skipped: dict[str, int] = field(default_factory=_zero_counts)
    failures: list[RestoreFailure] = field(default_factory=list)
    error: Optional[BackupError] = None

    @property
    def failed(self) -> dict[str, int]:
        counts = _zero_counts()
        for failure in self.failures:
            counts[failure.collection] = counts.get(failure.collection, 0) + 1
        return counts

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    @property
    def success(self) -> bool:
        if self.error is not None:
            return False
        attempted = sum(self.restored.values()) + sum(self.skipped.values())
        return not (self.failures and attempted == 0)

    @property
    def kind(self) -> Optional[ErrorKind]:
        if self.error is not None:
            return self.error.kind
        return ErrorKind.PARTIAL_RESTORE if self.partial else None

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.message
        text = (
            f"Restored {self.restored['loans']} loans, "
            f"{self.restored['insurance_policies']} policies, "
            f"{self.restored['renewals']} renewals"
        )
        skipped = sum(self.skipped.values())
        if skipped:
            text += f"; skipped {skipped} existing"
        if self.failures:
            text += f"; {len(self.failures)} failed"
        return text

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "partial": self.partial,
            "message": self.message,
            "restored": dict(self.restored),
            "skipped": dict(self.skipped),
            "failed": self.failed,
            "failures": [failure.as_dict() for failure in self.failures],
        }


def _as_backup_error(exc: Exception) -> BackupError:
    if isinstance(exc, BackupError):
        return exc
    return BackupError(ErrorKind.REMOTE_REJECTED, str(exc))


class BackupService:
    """Orchestrates export, Drive upload/download, and restore for one data service."""

    def __init__(
        self,
        db: DbClient,
        drive: DriveClient,
        oauth: Optional[GoogleOAuthClient] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.drive = drive
        self.oauth = oauth
        self.settings = settings or get_settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _fail(self, action: str, exc: Exception) -> Outcome:
        error = _as_backup_error(exc)
        logger.error(
            "[backup] %s failed (%s): %s", action, error.kind.value, error.message
        )
        return Outcome.from_error(error)

    def _stored_tokens(self, user_id: str) -> Optional[GoogleTokens]:
        data = self.db.get_google_tokens(user_id)
        if not data or not data.get("access_token"):
            return None
        return GoogleTokens.from_dict(data)

    def _access_token(self, user_id: str) -> str:
        tokens = self._stored_tokens(user_id)
        if tokens is None:
            raise BackupError(ErrorKind.NOT_CONNECTED, "Google Drive is not connected")

        now = self.clock().timestamp()
        if (
            self.settings.refresh_expired_tokens
            and self.oauth is not None
            and tokens.refresh_token
            and tokens.is_expired(now)
        ):
            logger.info("[backup] Refreshing expired Drive token for user %s", user_id)
            tokens = self.oauth.refresh_access_token(tokens.refresh_token)
            self.db.store_google_tokens(user_id, tokens.as_dict())
        return tokens.access_token

    def is_drive_backup_available(self, user_id: str) -> bool:
        try:
            return self._stored_tokens(user_id) is not None
        except RemoteDataError as exc:
            logger.error(
                "[backup] Could not read Drive tokens for %s: %s", user_id, exc
            )
            return False

    def connect_drive(
        self,
        user_id: str,
        code: str,
        code_verifier: str,
        redirect_uri: Optional[str] = None,
    ) -> Outcome[GoogleTokens]:
        if self.oauth is None:
            return self._fail(
                "Connect",
                BackupError(
                    ErrorKind.NOT_CONFIGURED, "Google sign-in is not configured"
                ),
            )
        try:
            tokens = self.oauth.exchange_code(code, code_verifier, redirect_uri)
            if not tokens.refresh_token:
                previous = self._stored_tokens(user_id)
                if previous is not None:
                    tokens.refresh_token = previous.refresh_token
            self.db.store_google_tokens(user_id, tokens.as_dict())
        except (BackupError, RemoteDataError) as exc:
            return self._fail("Connect", exc)
        logger.info("[backup] Google Drive connected for user %s", user_id)
        return Outcome.success(tokens)

    def disconnect_drive(self, user_id: str) -> Outcome[bool]:
        try:
            tokens = self._stored_tokens(user_id)
            if tokens is not None and self.oauth is not None and self.oauth.configured:
                try:
                    self.oauth.revoke(tokens.refresh_token or tokens.access_token)
                except BackupError as exc:
                    logger.warning(
                        "[backup] Token revoke failed for %s: %s", user_id, exc.message
                    )
            self.db.delete_google_tokens(user_id)
        except RemoteDataError as exc:
            return self._fail("Disconnect", exc)
        return Outcome.success(tokens is not None)

    def _export(self, workspace_id: str) -> BackupData:
        with ThreadPoolExecutor(max_workers=len(EXPORT_COLLECTIONS) + 1) as executor:
            workspace_future = executor.submit(self.db.get_workspace, workspace_id)
            collection_futures = {
                key: executor.submit(self.db.list_rows, table, workspace_id)
                for key, table in EXPORT_COLLECTIONS.items()
            }

            try:
                workspace = workspace_future.result()
            except RemoteDataError as exc:
                raise BackupError(
                    ErrorKind.REMOTE_REJECTED, f"Workspace lookup failed: {exc}"
                ) from exc
            if workspace is None:
                raise BackupError(
                    ErrorKind.NOT_FOUND, f"Workspace not found: {workspace_id}"
                )

            collections: dict[str, list[dict]] = {}
            for key, future in collection_futures.items():
                try:
                    collections[key] = future.result()
                except RemoteDataError as exc:
                    logger.warning(
                        "[backup] Could not read %s for workspace %s, "
                        "exporting none: %s",
                        key,
                        workspace_id,
                        exc,
                    )
                    collections[key] = []

        return BackupData(
            version=BACKUP_FORMAT_VERSION,
            created_at=isoformat_utc(self.clock()),
            workspace=BackupWorkspace(id=workspace["id"], name=workspace["name"]),
            **collections,
        )

    def export_workspace_data(self, workspace_id: str) -> Outcome[BackupData]:
        try:
            backup = self._export(workspace_id)
        except BackupError as exc:
            return self._fail("Export", exc)
        return Outcome.success(backup)

    def create_backup(self, user_id: str, workspace_id: str) -> Outcome[DriveFile]:
        try:
            token = self._access_token(user_id)
            folder_id = self.drive.get_or_create_folder(
                token, self.settings.backup_folder_name
            )
            backup = self._export(workspace_id)
            name = backup_filename(
                self.settings.backup_file_prefix,
                backup.workspace.name,
                backup.created_at,
            )
            drive_file = self.drive.upload_file(
                token, folder_id, name, serialize_backup(backup)
            )
        except (BackupError, RemoteDataError) as exc:
            return self._fail("Create backup", exc)

        logger.info(
            "[backup] Uploaded %s (%s) for workspace %s",
            drive_file.name,
            drive_file.id,
            workspace_id,
        )
        return Outcome.success(drive_file)

    def list_backups(self, user_id: str) -> Outcome[list[DriveFile]]:
        try:
            token = self._access_token(user_id)
            folder_id = self.drive.get_or_create_folder(
                token, self.settings.backup_folder_name
            )
            files = self.drive.list_files(token, folder_id)
        except (BackupError, RemoteDataError) as exc:
            return self._fail("List backups", exc)
        return Outcome.success(files)

    def download_backup(self, user_id: str, file_id: str) -> Outcome[BackupData]:
        try:
            token = self._access_token(user_id)
            content = self.drive.download_file(token, file_id)
            backup = parse_backup(content)
        except (BackupError, RemoteDataError) as exc:
            return self._fail("Download", exc)
        return Outcome.success(backup)

    def delete_backup(self, user_id: str, file_id: str) -> Outcome[bool]:
        try:
            token = self._access_token(user_id)
            deleted = self.drive.delete_file(token, file_id)
        except (BackupError, RemoteDataError) as exc:
            return self._fail("Delete", exc)
        return Outcome.success(deleted)

    def _restore_record(self, table: str, record: dict, policy: MergePolicy) -> bool:
        """Returns False when the merge policy keeps the stored record."""
        if policy is not MergePolicy.OVERWRITE and record.get("id"):
            existing = self.db.get_row(table, record["id"])
            if existing is not None:
                if policy is MergePolicy.REJECT_ON_CONFLICT:
                    return False
                if not _is_newer(record, existing):
                    return False
        self.db.upsert_row(table, record)
        return True

    def restore_from_backup(
        self,
        backup: Union[BackupData, dict],
        user_id: str,
        policy: MergePolicy = MergePolicy.OVERWRITE,
    ) -> RestoreReport:
        report = RestoreReport()
        try:
            policy = MergePolicy(policy)
        except ValueError:
            report.error = BackupError(
                ErrorKind.PARSE_FAILURE, f"Unknown merge policy: {policy!r}"
            )
            logger.error("[backup] Restore rejected: %s", report.error.message)
            return report

        if not isinstance(backup, BackupData):
            try:
                backup = BackupData.model_validate(backup)
            except ValidationError as exc:
                report.error = BackupError(
                    ErrorKind.PARSE_FAILURE,
                    "Backup does not match the snapshot format "
                    f"({exc.error_count()} errors)",
                )
                logger.error("[backup] Restore rejected: %s", report.error.message)
                return report

        if backup.version != BACKUP_FORMAT_VERSION:
            logger.warning(
                "[backup] Restoring backup version %s without migration (current %s)",
                backup.version,
                BACKUP_FORMAT_VERSION,
            )

        workers = self.settings.restore_concurrency
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {}
            for collection in RESTORED_COLLECTIONS:
                table = EXPORT_COLLECTIONS[collection]
                for record in getattr(backup, collection):
                    # Restored records belong to the restoring user.
                    row = {**record, "created_by": user_id}
                    future = executor.submit(self._restore_record, table, row, policy)
                    futures[future] = (collection, row.get("id"))

            for future in as_completed(futures):
                collection, record_id = futures[future]
                try:
                    restored = future.result()
                except RemoteDataError as exc:
                    report.failures.append(
                        RestoreFailure(collection, record_id, str(exc))
                    )
                    continue
                if restored:
                    report.restored[collection] += 1
                else:
                    report.skipped[collection] += 1

        if report.partial:
            logger.warning(
                "[backup] Partial restore into %s: %s",
                backup.workspace.id,
                report.message,
            )
        else:
            logger.info("[backup] %s into %s", report.message, backup.workspace.id)
        return report

    def restore_backup_file(
        self,
        user_id: str,
        file_id: str,
        policy: MergePolicy = MergePolicy.OVERWRITE,
    ) -> Outcome[RestoreReport]:
        downloaded = self.download_backup(user_id, file_id)
        if not downloaded.ok:
            return Outcome.from_error(downloaded.error)
        return Outcome.success(
            self.restore_from_backup(downloaded.value, user_id, policy)
        )
