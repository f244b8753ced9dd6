"""
Enumerations shared across the data model and the backup flow.
"""

from __future__ import annotations

from enum import Enum


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    HISTORICAL = "historical"
    EXPIRED = "expired"


class InviteStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    OPENED = "opened"
    ACCEPTED = "accepted"
    REVOKED = "revoked"


class PremiumFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"


class UrgencyLevel(str, Enum):
    OVERDUE = "overdue"
    URGENT = "urgent"
    UPCOMING = "upcoming"
    HEALTHY = "healthy"


class MergePolicy(str, Enum):
    """How a restored record is reconciled with a stored record of the same id."""

    OVERWRITE = "overwrite"
    LAST_WRITE_WINS = "last_write_wins"
    REJECT_ON_CONFLICT = "reject_on_conflict"
