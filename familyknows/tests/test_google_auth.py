import base64
import hashlib
import unittest
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import requests

from familyknows.errors import BackupError, ErrorKind
from familyknows.google_auth import GoogleOAuthClient, GoogleTokens
from familyknows.tests.testing_utils import make_settings


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = payload or {}
    response.content = b"{}" if payload is not None else b""
    response.text = text
    return response


class AuthorizationRequestTests(unittest.TestCase):
    def test_url_carries_pkce_challenge(self):
        client = GoogleOAuthClient(make_settings(), session=MagicMock())

        request = client.build_authorization_request()

        query = parse_qs(urlparse(request.url).query)
        expected = (
            base64.urlsafe_b64encode(hashlib.sha256(request.code_verifier.encode()).digest())
            .rstrip(b"=")
            .decode()
        )
        self.assertEqual(query["client_id"], ["client-123"])
        self.assertEqual(query["code_challenge"], [expected])
        self.assertEqual(query["code_challenge_method"], ["S256"])
        self.assertEqual(query["access_type"], ["offline"])
        self.assertEqual(query["state"], [request.state])
        self.assertIn("https://www.googleapis.com/auth/drive.file", query["scope"][0].split())
        self.assertEqual(query["redirect_uri"], ["familyknows://auth/callback"])

    def test_requests_are_unique(self):
        client = GoogleOAuthClient(make_settings(), session=MagicMock())
        first = client.build_authorization_request()
        second = client.build_authorization_request()
        self.assertNotEqual(first.state, second.state)
        self.assertNotEqual(first.code_verifier, second.code_verifier)

    def test_missing_client_id(self):
        client = GoogleOAuthClient(make_settings(google_client_id=None), session=MagicMock())
        self.assertFalse(client.configured)
        with self.assertRaises(BackupError) as ctx:
            client.build_authorization_request()
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_CONFIGURED)


class TokenEndpointTests(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.client = GoogleOAuthClient(
            make_settings(google_client_secret="secret"), session=self.session
        )

    def test_exchange_code(self):
        self.session.post.return_value = _response(
            payload={
                "access_token": "access-1",
                "refresh_token": "refresh-1",
                "expires_in": 3599,
                "scope": "openid https://www.googleapis.com/auth/drive.file",
                "token_type": "Bearer",
            }
        )

        tokens = self.client.exchange_code("auth-code", "verifier")

        self.assertEqual(tokens.access_token, "access-1")
        self.assertEqual(tokens.refresh_token, "refresh-1")
        self.assertEqual(len(tokens.scopes), 2)
        self.assertIsNotNone(tokens.expires_at)
        data = self.session.post.call_args.kwargs["data"]
        self.assertEqual(data["grant_type"], "authorization_code")
        self.assertEqual(data["code_verifier"], "verifier")
        self.assertEqual(data["client_secret"], "secret")

    def test_refresh_keeps_refresh_token(self):
        self.session.post.return_value = _response(
            payload={"access_token": "access-2", "expires_in": 3600}
        )

        tokens = self.client.refresh_access_token("refresh-1")

        self.assertEqual(tokens.access_token, "access-2")
        self.assertEqual(tokens.refresh_token, "refresh-1")
        self.assertEqual(self.session.post.call_args.kwargs["data"]["grant_type"], "refresh_token")

    def test_rejected_grant(self):
        self.session.post.return_value = _response(status_code=400, text="invalid_grant")
        with self.assertRaises(BackupError) as ctx:
            self.client.exchange_code("bad", "verifier")
        self.assertEqual(ctx.exception.kind, ErrorKind.REMOTE_REJECTED)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_network_failure(self):
        self.session.post.side_effect = requests.Timeout("slow")
        with self.assertRaises(BackupError) as ctx:
            self.client.refresh_access_token("refresh-1")
        self.assertEqual(ctx.exception.kind, ErrorKind.NETWORK)

    def test_revoke_posts_token(self):
        self.session.post.return_value = _response()
        self.client.revoke("refresh-1")
        self.assertEqual(self.session.post.call_args.kwargs["data"], {"token": "refresh-1"})

    def test_user_info_unauthorized(self):
        self.session.get.return_value = _response(status_code=401, text="expired")
        with self.assertRaises(BackupError) as ctx:
            self.client.get_user_info("stale")
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_CONNECTED)


class GoogleTokensTests(unittest.TestCase):
    def test_expiry_uses_leeway(self):
        tokens = GoogleTokens(access_token="a", expires_at=1000.0)
        self.assertFalse(tokens.is_expired(now=900.0))
        self.assertTrue(tokens.is_expired(now=950.0))
        self.assertFalse(GoogleTokens(access_token="a").is_expired(now=10**12))

    def test_id_token_is_not_persisted(self):
        tokens = GoogleTokens.from_token_response(
            {"access_token": "a", "id_token": "jwt"}, now=0.0
        )
        self.assertEqual(tokens.id_token, "jwt")
        self.assertNotIn("id_token", tokens.as_dict())
        self.assertEqual(GoogleTokens.from_dict(tokens.as_dict()), GoogleTokens(access_token="a"))


if __name__ == "__main__":
    unittest.main()
