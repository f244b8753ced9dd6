"""
Cloud file storage abstraction for Google Drive and in-memory testing.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

import requests

from familyknows.errors import BackupError, ErrorKind

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,mimeType,createdTime,modifiedTime,size"
MULTIPART_BOUNDARY = "-------314159265358979323846"


@dataclass
class DriveFile:
    id: str
    name: str
    mime_type: str = "application/json"
    created_time: Optional[str] = None
    modified_time: Optional[str] = None
    size: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "mime_type": self.mime_type,
            "created_time": self.created_time,
            "modified_time": self.modified_time,
            "size": self.size,
        }

    @classmethod
    def from_api(cls, payload: dict) -> "DriveFile":
        size = payload.get("size")
        return cls(
            id=payload["id"],
            name=payload.get("name", ""),
            mime_type=payload.get("mimeType", "application/json"),
            created_time=payload.get("createdTime"),
            modified_time=payload.get("modifiedTime"),
            size=int(size) if str(size).isdigit() else None,
        )


class DriveClient(Protocol):
    """Defines the operations the backup flow needs from cloud file storage."""

    def get_or_create_folder(self, access_token: str, name: str) -> str:
        ...

    def list_files(self, access_token: str, folder_id: str) -> list[DriveFile]:
        ...

    def upload_file(
        self, access_token: str, folder_id: str, name: str, content: str
    ) -> DriveFile:
        ...

    def download_file(self, access_token: str, file_id: str) -> str:
        ...

    def delete_file(self, access_token: str, file_id: str) -> bool:
        ...


def _json(
    response: requests.Response, action: str, required: tuple = ()
) -> dict:
    """Decode a successful Drive response and check its `required` keys."""
    try:
        payload = response.json()
    except ValueError as exc:
        raise BackupError(
            ErrorKind.REMOTE_REJECTED,
            f"{action} returned a non-JSON body: {response.text[:200]}",
            status_code=response.status_code,
        ) from exc
    if not isinstance(payload, dict):
        raise BackupError(
            ErrorKind.REMOTE_REJECTED,
            f"{action} returned an unexpected body",
            status_code=response.status_code,
        )
    missing = [key for key in required if not payload.get(key)]
    if missing:
        raise BackupError(
            ErrorKind.REMOTE_REJECTED,
            f"{action} response is missing {', '.join(missing)}",
            status_code=response.status_code,
        )
    return payload


def _now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


@dataclass
class InMemoryDriveClient:
    """Test double for Drive interactions."""

    accepted_tokens: Optional[set[str]] = None
    folders: dict = field(default_factory=dict)
    files: dict = field(default_factory=dict)
    contents: dict = field(default_factory=dict)

    def _check(self, access_token: str) -> None:
        if not access_token or (
            self.accepted_tokens is not None
            and access_token not in self.accepted_tokens
        ):
            raise BackupError(
                ErrorKind.NOT_CONNECTED, "Invalid Credentials", status_code=401
            )

    def get_or_create_folder(self, access_token: str, name: str) -> str:
        self._check(access_token)
        if name not in self.folders:
            self.folders[name] = uuid.uuid4().hex
        return self.folders[name]

    def list_files(self, access_token: str, folder_id: str) -> list[DriveFile]:
        self._check(access_token)
        entries = [f for (parent, f) in self.files.values() if parent == folder_id]
        return sorted(entries, key=lambda f: f.modified_time or "", reverse=True)

    def upload_file(
        self, access_token: str, folder_id: str, name: str, content: str
    ) -> DriveFile:
        self._check(access_token)
        now = _now_rfc3339()
        drive_file = DriveFile(
            id=uuid.uuid4().hex,
            name=name,
            created_time=now,
            modified_time=now,
            size=len(content.encode("utf-8")),
        )
        self.files[drive_file.id] = (folder_id, drive_file)
        self.contents[drive_file.id] = content
        return drive_file

    def download_file(self, access_token: str, file_id: str) -> str:
        self._check(access_token)
        if file_id not in self.contents:
            raise BackupError(
                ErrorKind.NOT_FOUND, f"File not found: {file_id}", status_code=404
            )
        return self.contents[file_id]

    def delete_file(self, access_token: str, file_id: str) -> bool:
        self._check(access_token)
        if file_id not in self.files:
            raise BackupError(
                ErrorKind.NOT_FOUND, f"File not found: {file_id}", status_code=404
            )
        del self.files[file_id]
        self.contents.pop(file_id, None)
        return True


class GoogleDriveClient:
    """
    Google Drive v3 client over plain `requests`.
    """

    def __init__(
        self,
        api_base: str = "https://www.googleapis.com/drive/v3",
        upload_base: str = "https://www.googleapis.com/upload/drive/v3",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.upload_base = upload_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(
        self, method: str, url: str, access_token: str, action: str, **kwargs
    ) -> requests.Response:
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {access_token}"
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise BackupError(ErrorKind.NETWORK, f"{action} failed: {exc}") from exc
        if response.ok:
            return response
        if response.status_code == 401:
            kind = ErrorKind.NOT_CONNECTED
        elif response.status_code == 404:
            kind = ErrorKind.NOT_FOUND
        else:
            kind = ErrorKind.REMOTE_REJECTED
        raise BackupError(
            kind,
            f"{action} failed ({response.status_code}): {response.text[:200]}",
            status_code=response.status_code,
        )

    def get_or_create_folder(self, access_token: str, name: str) -> str:
        escaped = name.replace("\\", "\\\\").replace("'", "\\'")
        query = (
            f"name='{escaped}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        )
        response = self._request(
            "GET",
            f"{self.api_base}/files",
            access_token,
            "Folder search",
            params={"q": query, "fields": "files(id,name)", "spaces": "drive"},
        )
        existing = [
            item
            for item in _json(response, "Folder search").get("files") or []
            if isinstance(item, dict) and item.get("id")
        ]
        if existing:
            return existing[0]["id"]

        response = self._request(
            "POST",
            f"{self.api_base}/files",
            access_token,
            "Folder create",
            json={"name": name, "mimeType": FOLDER_MIME_TYPE},
        )
        return _json(response, "Folder create", required=("id",))["id"]

    def list_files(self, access_token: str, folder_id: str) -> list[DriveFile]:
        files: list[DriveFile] = []
        page_token: Optional[str] = None
        while True:
            params = {
                "q": f"'{folder_id}' in parents and trashed=false",
                "fields": f"nextPageToken,files({FILE_FIELDS})",
                "orderBy": "modifiedTime desc",
            }
            if page_token:
                params["pageToken"] = page_token
            response = self._request(
                "GET", f"{self.api_base}/files", access_token, "List", params=params
            )
            payload = _json(response, "List")
            for item in payload.get("files") or []:
                if not isinstance(item, dict) or not item.get("id"):
                    raise BackupError(
                        ErrorKind.REMOTE_REJECTED, "List returned a file without an id"
                    )
                files.append(DriveFile.from_api(item))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return files

    def upload_file(
        self, access_token: str, folder_id: str, name: str, content: str
    ) -> DriveFile:
        metadata = {
            "name": name,
            "parents": [folder_id],
            "mimeType": "application/json",
        }
        delimiter = f"\r\n--{MULTIPART_BOUNDARY}\r\n"
        close_delimiter = f"\r\n--{MULTIPART_BOUNDARY}--"
        body = (
            delimiter
            + "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            + json.dumps(metadata)
            + delimiter
            + "Content-Type: application/json\r\n\r\n"
            + content
            + close_delimiter
        )
        response = self._request(
            "POST",
            f"{self.upload_base}/files",
            access_token,
            "Upload",
            params={"uploadType": "multipart", "fields": FILE_FIELDS},
            headers={
                "Content-Type": f"multipart/related; boundary={MULTIPART_BOUNDARY}"
            },
            data=body.encode("utf-8"),
        )
        return DriveFile.from_api(_json(response, "Upload", required=("id",)))

    def download_file(self, access_token: str, file_id: str) -> str:
        response = self._request(
            "GET",
            f"{self.api_base}/files/{file_id}",
            access_token,
            "Download",
            params={"alt": "media"},
        )
        response.encoding = "utf-8"
        return response.text

    def delete_file(self, access_token: str, file_id: str) -> bool:
        response = self._request(
            "DELETE", f"{self.api_base}/files/{file_id}", access_token, "Delete"
        )
        return response.status_code in (200, 204)
