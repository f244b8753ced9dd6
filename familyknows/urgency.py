"""
Expiry urgency for insurance policies and renewals, plus small loan helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Union

from familyknows.types import UrgencyLevel, VerificationStatus

DEFAULT_REMINDER_DAYS = 30
URGENT_WITHIN_DAYS = 7
UPCOMING_WITHIN_DAYS = 30

DateLike = Union[str, date, datetime]


@dataclass(frozen=True)
class UrgencyInfo:
    level: UrgencyLevel
    days_until_expiry: int
    label: str


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def days_until(expiry: DateLike, today: Optional[date] = None) -> int:
    today = today or date.today()
    return (_as_date(expiry) - today).days


def urgency_level(expiry: DateLike, today: Optional[date] = None) -> UrgencyLevel:
    days = days_until(expiry, today)
    if days < 0:
        return UrgencyLevel.OVERDUE
    if days <= URGENT_WITHIN_DAYS:
        return UrgencyLevel.URGENT
    if days <= UPCOMING_WITHIN_DAYS:
        return UrgencyLevel.UPCOMING
    return UrgencyLevel.HEALTHY


def urgency_info(expiry: DateLike, today: Optional[date] = None) -> UrgencyInfo:
    days = days_until(expiry, today)
    if days < 0:
        label = f"{abs(days)} days overdue"
    elif days == 0:
        label = "Expires today"
    elif days == 1:
        label = "Expires tomorrow"
    elif days <= UPCOMING_WITHIN_DAYS:
        label = f"{days} days left"
    else:
        label = "Active"
    return UrgencyInfo(
        level=urgency_level(expiry, today), days_until_expiry=days, label=label
    )


def reminder_window(item: dict) -> int:
    """Largest reminder offset for an item; renewals store a list of offsets."""
    value = item.get("reminder_days")
    if value is None:
        return DEFAULT_REMINDER_DAYS
    if isinstance(value, (list, tuple)):
        return max(value) if value else DEFAULT_REMINDER_DAYS
    return int(value)


def sort_by_urgency(items: Iterable[dict]) -> list[dict]:
    return sorted(items, key=lambda item: _as_date(item["expiry_date"]))


def items_needing_attention(
    items: Iterable[dict], today: Optional[date] = None
) -> list[dict]:
    return [
        item
        for item in items
        if item.get("expiry_date")
        and days_until(item["expiry_date"], today) <= reminder_window(item)
    ]


def most_urgent(items: Iterable[dict]) -> Optional[dict]:
    ordered = sort_by_urgency(item for item in items if item.get("expiry_date"))
    return ordered[0] if ordered else None


def pending_loans(loans: Iterable[dict]) -> list[dict]:
    return [
        loan
        for loan in loans
        if loan.get("verification_status", VerificationStatus.PENDING.value)
        == VerificationStatus.PENDING.value
    ]


def verified_loans(loans: Iterable[dict]) -> list[dict]:
    return [
        loan
        for loan in loans
        if loan.get("verification_status") == VerificationStatus.VERIFIED.value
    ]


def total_outstanding(loans: Iterable[dict]) -> float:
    return sum(
        float(loan.get("principal_amount") or 0) - float(loan.get("amount_repaid") or 0)
        for loan in loans
    )
