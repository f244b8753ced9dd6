import json
import unittest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from familyknows.app import create_app
from familyknows.db import INSURANCE_POLICIES, LOANS, RENEWALS, InMemoryDbClient
from familyknows.dependencies import build_container
from familyknows.drive import InMemoryDriveClient
from familyknows.google_auth import GoogleOAuthClient, GoogleTokens
from familyknows.tests.testing_utils import (
    OWNER_ID,
    connect,
    make_settings,
    policy_row,
    renewal_row,
    seed_sharma_family,
)

HEADERS = {"X-User-Id": OWNER_ID}


class BackupApiTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        seed_sharma_family(self.db)
        self.drive = InMemoryDriveClient()
        self.container = build_container(make_settings(), db=self.db, drive=self.drive)
        self.client = TestClient(create_app(self.container))

    def test_status_reports_connection(self):
        response = self.client.get("/api/drive/status", headers=HEADERS)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"available": False, "configured": True})

        connect(self.db)
        response = self.client.get("/api/drive/status", headers=HEADERS)
        self.assertTrue(response.json()["available"])

    def test_user_header_is_required(self):
        response = self.client.get("/api/drive/status")
        self.assertEqual(response.status_code, 422)

    def test_auth_url(self):
        response = self.client.get("/api/drive/auth-url")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertIn("code_challenge=", payload["url"])
        self.assertTrue(payload["code_verifier"])

    def test_auth_url_without_client_id(self):
        container = build_container(make_settings(google_client_id=None), db=self.db)
        client = TestClient(create_app(container))
        response = client.get("/api/drive/auth-url")
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["detail"]["kind"], "not_configured")

    def test_connect_and_disconnect(self):
        oauth = MagicMock(spec=GoogleOAuthClient)
        oauth.configured = True
        oauth.exchange_code.return_value = GoogleTokens(
            access_token="access-1", refresh_token="refresh-1", scopes=["openid"]
        )
        container = build_container(make_settings(), db=self.db, drive=self.drive, oauth=oauth)
        client = TestClient(create_app(container))

        response = client.post(
            "/api/drive/connect",
            json={"code": "auth-code", "code_verifier": "verifier"},
            headers=HEADERS,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["scopes"], ["openid"])
        self.assertEqual(self.db.get_google_tokens(OWNER_ID)["access_token"], "access-1")

        response = client.delete("/api/drive/connect", headers=HEADERS)
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["connected"])
        self.assertIsNone(self.db.get_google_tokens(OWNER_ID))
        oauth.revoke.assert_called_once_with("refresh-1")

    def test_export(self):
        response = self.client.get("/api/workspaces/w1/export", headers=HEADERS)
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["workspace"], {"id": "w1", "name": "Sharma Family"})
        self.assertEqual(len(payload["loans"]), 2)

        missing = self.client.get("/api/workspaces/nope/export", headers=HEADERS)
        self.assertEqual(missing.status_code, 404)

    def test_create_requires_connection(self):
        response = self.client.post("/api/backups", json={"workspace_id": "w1"}, headers=HEADERS)
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"]["kind"], "not_connected")
        self.assertEqual(self.drive.files, {})

    def test_backup_lifecycle(self):
        connect(self.db)

        created = self.client.post(
            "/api/backups", json={"workspace_id": "w1"}, headers=HEADERS
        )
        self.assertEqual(created.status_code, 201)
        file_id = created.json()["id"]
        self.assertTrue(created.json()["name"].startswith("FamilyKnows_Sharma Family_"))

        listed = self.client.get("/api/backups", headers=HEADERS)
        self.assertEqual([f["id"] for f in listed.json()["backups"]], [file_id])

        self.db.reset()
        connect(self.db)
        restored = self.client.post(f"/api/backups/{file_id}/restore", headers=HEADERS)
        self.assertEqual(restored.status_code, 200)
        payload = restored.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["restored"], {"loans": 2, "insurance_policies": 1, "renewals": 0})
        self.assertEqual(len(self.db.list_rows(LOANS, "w1")), 2)

        skipped = self.client.post(
            f"/api/backups/{file_id}/restore",
            json={"policy": "reject_on_conflict"},
            headers=HEADERS,
        )
        self.assertEqual(skipped.json()["skipped"]["loans"], 2)

        deleted = self.client.delete(f"/api/backups/{file_id}", headers=HEADERS)
        self.assertEqual(deleted.json(), {"deleted": True})
        gone = self.client.delete(f"/api/backups/{file_id}", headers=HEADERS)
        self.assertEqual(gone.status_code, 404)

    def test_restore_rejects_unparseable_file(self):
        connect(self.db)
        folder_id = self.drive.get_or_create_folder("access-1", "FamilyKnows Backups")
        broken = self.drive.upload_file("access-1", folder_id, "broken.json", json.dumps([1, 2]))

        response = self.client.post(f"/api/backups/{broken.id}/restore", headers=HEADERS)

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["kind"], "parse_failure")

    def test_attention(self):
        self.db.insert_row(
            INSURANCE_POLICIES, policy_row("policy-2", expiry_date="2024-03-05")
        )
        self.db.insert_row(RENEWALS, renewal_row("renewal-1"))

        response = self.client.get(
            "/api/workspaces/w1/attention", params={"today": "2024-03-01"}, headers=HEADERS
        )

        self.assertEqual(response.status_code, 200)
        items = response.json()["items"]
        self.assertEqual([item["id"] for item in items], ["policy-2", "renewal-1"])
        self.assertEqual(items[0]["level"], "urgent")
        self.assertEqual(items[0]["label"], "4 days left")
        self.assertEqual(items[1]["title"], "Property Tax - Banjara Hills")
        self.assertEqual(items[1]["days_until_expiry"], 30)


if __name__ == "__main__":
    unittest.main()
