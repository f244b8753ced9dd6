"""
Shared fixtures for the backup tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from familyknows.config import Settings
from familyknows.db import (
    INSURANCE_POLICIES,
    INVITES,
    LOANS,
    RENEWALS,
    WORKSPACE_MEMBERS,
    WORKSPACES,
)

OWNER_ID = "user-owner"
RESTORER_ID = "user-restorer"


def make_settings(**overrides) -> Settings:
    values = {
        "use_in_memory_backends": True,
        "google_client_id": "client-123",
        "restore_concurrency": 2,
    }
    values.update(overrides)
    return Settings(**values)


class FixedClock:
    """Returns a fixed instant; `advance` moves it forward."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 1, 9, 30, 15, 123000, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def loan_row(loan_id: str, workspace_id: str = "w1", **overrides) -> dict:
    row = {
        "id": loan_id,
        "workspace_id": workspace_id,
        "created_by": OWNER_ID,
        "loan_type": "given",
        "counterparty_name": "Ravi Kumar",
        "counterparty_phone": "+919800000000",
        "counterparty_email": None,
        "principal_amount": 50000.0,
        "currency": "INR",
        "amount_repaid": 10000.0,
        "loan_date": "2024-01-10",
        "due_date": "2024-07-10",
        "verification_status": "pending",
        "verification_code": "482913",
        "notes": None,
        "updated_at": "2024-01-10T08:00:00+00:00",
    }
    row.update(overrides)
    return row


def policy_row(policy_id: str, workspace_id: str = "w1", **overrides) -> dict:
    row = {
        "id": policy_id,
        "workspace_id": workspace_id,
        "created_by": OWNER_ID,
        "policy_type": "health",
        "subtype": "family_floater",
        "provider_name": "Star Health",
        "policy_number": "SH-2024-001",
        "sum_insured": 500000.0,
        "premium_amount": 18000.0,
        "premium_frequency": "yearly",
        "start_date": "2024-02-01",
        "expiry_date": "2025-01-31",
        "tpa_name": "MediAssist",
        "tpa_helpline": "1800-425-9449",
        "covered_members": [{"member_id": "m1"}, {"name": "Dadi"}],
        "updated_at": "2024-02-01T08:00:00+00:00",
    }
    row.update(overrides)
    return row


def renewal_row(renewal_id: str, workspace_id: str = "w1", **overrides) -> dict:
    row = {
        "id": renewal_id,
        "workspace_id": workspace_id,
        "created_by": OWNER_ID,
        "renewal_type": "property_tax",
        "title": "Property Tax - Banjara Hills",
        "property_address": "Plot 12, Banjara Hills",
        "expiry_date": "2024-03-31",
        "fee_amount": 12500.0,
        "reminder_days": [90, 60, 30, 15, 7, 1],
        "updated_at": "2024-01-05T08:00:00+00:00",
    }
    row.update(overrides)
    return row


def seed_sharma_family(db) -> None:
    """Workspace w1 with 2 loans, 1 policy, 0 renewals; w2 holds unrelated data."""
    db.insert_row(
        WORKSPACES, {"id": "w1", "name": "Sharma Family", "owner_id": OWNER_ID}
    )
    db.insert_row(
        WORKSPACES, {"id": "w2", "name": "Verma Family", "owner_id": "user-other"}
    )
    db.insert_row(LOANS, loan_row("loan-1"))
    db.insert_row(
        LOANS,
        loan_row("loan-2", loan_type="taken", counterparty_name="Anita", verification_status="verified"),
    )
    db.insert_row(INSURANCE_POLICIES, policy_row("policy-1"))
    db.insert_row(
        WORKSPACE_MEMBERS,
        {
            "id": "m1",
            "workspace_id": "w1",
            "user_id": OWNER_ID,
            "role": "owner",
            "relationship_label": "Self",
            "relationship_icon": "🙂",
            "is_owner": True,
            "joined_at": "2024-01-01T00:00:00+00:00",
        },
    )
    db.insert_row(
        INVITES,
        {
            "id": "inv-1",
            "workspace_id": "w1",
            "invited_by": OWNER_ID,
            "invitee_name": "Priya",
            "relationship_code": "spouse",
            "status": "sent",
            "invite_code": "FK-7Q2X",
            "expires_at": "2024-03-08T00:00:00+00:00",
        },
    )
    db.insert_row(LOANS, loan_row("loan-other", workspace_id="w2"))
    db.insert_row(RENEWALS, renewal_row("renewal-other", workspace_id="w2"))


def connect(db, user_id: str = OWNER_ID, access_token: str = "access-1", **extra) -> None:
    db.store_google_tokens(
        user_id,
        {"access_token": access_token, "refresh_token": "refresh-1", **extra},
    )
