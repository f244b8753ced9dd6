"""
Google OAuth2 (authorization code + PKCE) for the Drive backup connection.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlencode

import requests

from familyknows.config import Settings
from familyknows.errors import BackupError, ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class GoogleTokens:
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: Optional[float] = None
    scopes: list[str] = field(default_factory=list)
    id_token: Optional[str] = None

    def is_expired(self, now: Optional[float] = None, leeway: float = 60.0) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at - leeway

    def as_dict(self) -> dict:
        # id_token is only needed at sign-in and is not persisted.
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at,
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GoogleTokens":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type") or "Bearer",
            expires_at=data.get("expires_at"),
            scopes=list(data.get("scopes") or []),
        )

    @classmethod
    def from_token_response(
        cls, payload: dict, now: Optional[float] = None
    ) -> "GoogleTokens":
        now = time.time() if now is None else now
        expires_in = payload.get("expires_in")
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type") or "Bearer",
            expires_at=now + float(expires_in) if expires_in else None,
            scopes=(payload.get("scope") or "").split(),
            id_token=payload.get("id_token"),
        )


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    state: str
    code_verifier: str


def _code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _raise_for_response(response: requests.Response, action: str) -> None:
    if response.ok:
        return
    if response.status_code == 401:
        kind = ErrorKind.NOT_CONNECTED
    else:
        kind = ErrorKind.REMOTE_REJECTED
    raise BackupError(
        kind,
        f"{action} failed ({response.status_code}): {response.text[:200]}",
        status_code=response.status_code,
    )


class GoogleOAuthClient:
    """Talks to Google's OAuth2 endpoints with `requests`."""

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.settings.google_client_id)

    def _require_client_id(self) -> str:
        if not self.settings.google_client_id:
            raise BackupError(
                ErrorKind.NOT_CONFIGURED, "Google sign-in is not configured"
            )
        return self.settings.google_client_id

    def _post_form(self, url: str, data: dict, action: str) -> dict:
        try:
            response = self.session.post(
                url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.settings.request_timeout,
            )
        except requests.RequestException as exc:
            raise BackupError(ErrorKind.NETWORK, f"{action} failed: {exc}") from exc
        _raise_for_response(response, action)
        return response.json() if response.content else {}

    def build_authorization_request(
        self, redirect_uri: Optional[str] = None
    ) -> AuthorizationRequest:
        client_id = self._require_client_id()
        state = secrets.token_urlsafe(16)
        verifier = secrets.token_urlsafe(64)
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri or self.settings.google_redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.settings.google_scopes),
            "state": state,
            "code_challenge": _code_challenge(verifier),
            "code_challenge_method": "S256",
            # Offline access + forced consent so Google always returns a refresh token.
            "access_type": "offline",
            "prompt": "consent",
        }
        url = f"{self.settings.google_auth_endpoint}?{urlencode(params)}"
        return AuthorizationRequest(url=url, state=state, code_verifier=verifier)

    def exchange_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: Optional[str] = None,
    ) -> GoogleTokens:
        data = {
            "client_id": self._require_client_id(),
            "code": code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri or self.settings.google_redirect_uri,
        }
        if self.settings.google_client_secret:
            data["client_secret"] = self.settings.google_client_secret
        payload = self._post_form(
            self.settings.google_token_endpoint, data, "Token exchange"
        )
        return GoogleTokens.from_token_response(payload)

    def refresh_access_token(self, refresh_token: str) -> GoogleTokens:
        data = {
            "client_id": self._require_client_id(),
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        if self.settings.google_client_secret:
            data["client_secret"] = self.settings.google_client_secret
        payload = self._post_form(
            self.settings.google_token_endpoint, data, "Token refresh"
        )
        tokens = GoogleTokens.from_token_response(payload)
        # Google omits the refresh token on refresh; keep the one we have.
        if not tokens.refresh_token:
            tokens.refresh_token = refresh_token
        return tokens

    def get_user_info(self, access_token: str) -> dict:
        try:
            response = self.session.get(
                self.settings.google_userinfo_endpoint,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.settings.request_timeout,
            )
        except requests.RequestException as exc:
            raise BackupError(ErrorKind.NETWORK, f"User info failed: {exc}") from exc
        _raise_for_response(response, "User info")
        return response.json()

    def revoke(self, token: str) -> None:
        self._post_form(
            self.settings.google_revoke_endpoint, {"token": token}, "Token revoke"
        )
