"""
Data-service abstraction for Postgres and an in-memory test implementation.

Rows travel as plain dicts keyed by the remote column names so that backup
snapshots can carry them verbatim.
"""

from __future__ import annotations

import copy
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Numeric,
    String,
    create_engine,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from familyknows.errors import RemoteDataError
from familyknows.types import InviteStatus, PremiumFrequency, VerificationStatus

WORKSPACES = "fk_workspaces"
LOANS = "fk_loans"
INSURANCE_POLICIES = "fk_insurance_policies"
RENEWALS = "fk_renewals"
WORKSPACE_MEMBERS = "fk_workspace_members"
INVITES = "fk_invites"

TABLES = (WORKSPACES, LOANS, INSURANCE_POLICIES, RENEWALS, WORKSPACE_MEMBERS, INVITES)


class DbClient(Protocol):
    """Interface for the remote data service."""

    def get_workspace(self, workspace_id: str) -> Optional[dict]:
        ...

    def list_rows(self, table: str, workspace_id: str) -> list[dict]:
        ...

    def get_row(self, table: str, row_id: str) -> Optional[dict]:
        ...

    def insert_row(self, table: str, row: dict) -> dict:
        ...

    def upsert_row(self, table: str, row: dict) -> dict:
        ...

    def get_google_tokens(self, user_id: str) -> Optional[dict]:
        ...

    def store_google_tokens(self, user_id: str, tokens: dict) -> None:
        ...

    def delete_google_tokens(self, user_id: str) -> None:
        ...


def _check_row(table: str, row: dict) -> None:
    if table not in TABLES:
        raise RemoteDataError(f"Unknown table: {table}")
    if not row.get("id"):
        raise RemoteDataError(f"{table}: row is missing an id")
    if table != WORKSPACES and not row.get("workspace_id"):
        raise RemoteDataError(f"{table}: row {row['id']} is missing workspace_id")


class InMemoryDbClient:
    """Simple in-memory data service for development and tests."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, dict]] = {name: {} for name in TABLES}
        self.google_tokens: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def _table(self, table: str) -> Dict[str, dict]:
        try:
            return self.tables[table]
        except KeyError:
            raise RemoteDataError(f"Unknown table: {table}") from None

    def get_workspace(self, workspace_id: str) -> Optional[dict]:
        return self.get_row(WORKSPACES, workspace_id)

    def list_rows(self, table: str, workspace_id: str) -> list[dict]:
        with self._lock:
            rows = self._table(table).values()
            return [
                copy.deepcopy(row)
                for row in rows
                if row.get("workspace_id") == workspace_id
            ]

    def get_row(self, table: str, row_id: str) -> Optional[dict]:
        with self._lock:
            row = self._table(table).get(row_id)
            return copy.deepcopy(row) if row else None

    def insert_row(self, table: str, row: dict) -> dict:
        _check_row(table, row)
        with self._lock:
            rows = self._table(table)
            if row["id"] in rows:
                raise RemoteDataError(f"{table}: duplicate id {row['id']}")
            rows[row["id"]] = copy.deepcopy(row)
            return copy.deepcopy(row)

    def upsert_row(self, table: str, row: dict) -> dict:
        _check_row(table, row)
        with self._lock:
            rows = self._table(table)
            merged = {**rows.get(row["id"], {}), **copy.deepcopy(row)}
            rows[row["id"]] = merged
            return copy.deepcopy(merged)

    def get_google_tokens(self, user_id: str) -> Optional[dict]:
        with self._lock:
            tokens = self.google_tokens.get(user_id)
            return copy.deepcopy(tokens) if tokens else None

    def store_google_tokens(self, user_id: str, tokens: dict) -> None:
        with self._lock:
            self.google_tokens[user_id] = {
                **copy.deepcopy(tokens),
                "updated_at": time.time(),
            }

    def delete_google_tokens(self, user_id: str) -> None:
        with self._lock:
            self.google_tokens.pop(user_id, None)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            for rows in self.tables.values():
                rows.clear()
            self.google_tokens.clear()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _to_column_value(column: Column, value):
    if value is None or not isinstance(value, str):
        return value
    if isinstance(column.type, DateTime):
        return _parse_datetime(value)
    if isinstance(column.type, Date):
        return date.fromisoformat(value[:10])
    return value


def _to_json_value(value):
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres,
    or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _model(self, table: str):
        try:
            return ROW_MODELS[table]
        except KeyError:
            raise RemoteDataError(f"Unknown table: {table}") from None

    def _to_dict(self, row) -> dict:
        return {
            column.key: _to_json_value(getattr(row, column.key))
            for column in row.__table__.columns
        }

    def _to_values(self, model, row: dict) -> dict:
        columns = model.__table__.columns
        unknown = set(row) - set(columns.keys())
        if unknown:
            raise RemoteDataError(
                f"{model.__tablename__}: unknown columns {sorted(unknown)}"
            )
        try:
            return {
                key: _to_column_value(columns[key], value)
                for key, value in row.items()
            }
        except ValueError as exc:
            raise RemoteDataError(f"{model.__tablename__}: {exc}") from exc

    @contextmanager
    def _session(self, label: str) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as exc:
            raise RemoteDataError(f"{label}: {exc}") from exc

    def get_workspace(self, workspace_id: str) -> Optional[dict]:
        return self.get_row(WORKSPACES, workspace_id)

    def list_rows(self, table: str, workspace_id: str) -> list[dict]:
        model = self._model(table)
        if not hasattr(model, "workspace_id"):
            raise RemoteDataError(f"{table} is not scoped by workspace")
        with self._session(table) as session:
            stmt = select(model).where(model.workspace_id == workspace_id)
            return [self._to_dict(row) for row in session.execute(stmt).scalars()]

    def get_row(self, table: str, row_id: str) -> Optional[dict]:
        model = self._model(table)
        with self._session(table) as session:
            row = session.get(model, row_id)
            return self._to_dict(row) if row else None

    def insert_row(self, table: str, row: dict) -> dict:
        _check_row(table, row)
        model = self._model(table)
        values = self._to_values(model, row)
        with self._session(table) as session:
            instance = model(**values)
            session.add(instance)
            session.commit()
            session.refresh(instance)
            return self._to_dict(instance)

    def upsert_row(self, table: str, row: dict) -> dict:
        _check_row(table, row)
        model = self._model(table)
        values = self._to_values(model, row)
        with self._session(table) as session:
            existing = session.get(model, values["id"])
            if existing:
                for key, value in values.items():
                    setattr(existing, key, value)
                instance = existing
            else:
                instance = model(**values)
                session.add(instance)
            session.commit()
            session.refresh(instance)
            return self._to_dict(instance)

    def get_google_tokens(self, user_id: str) -> Optional[dict]:
        with self._session("google tokens") as session:
            row = session.get(GoogleTokenRow, user_id)
            if not row:
                return None
            return {
                "access_token": row.access_token,
                "refresh_token": row.refresh_token,
                "token_type": row.token_type,
                "expires_at": row.expires_at,
                "scopes": row.scopes or [],
                "updated_at": row.updated_at,
            }

    def store_google_tokens(self, user_id: str, tokens: dict) -> None:
        with self._session("google tokens") as session:
            row = session.get(GoogleTokenRow, user_id)
            if not row:
                row = GoogleTokenRow(user_id=user_id)
                session.add(row)
            row.access_token = tokens.get("access_token")
            row.refresh_token = tokens.get("refresh_token")
            row.token_type = tokens.get("token_type") or "Bearer"
            row.expires_at = tokens.get("expires_at")
            row.scopes = tokens.get("scopes") or []
            row.updated_at = time.time()
            session.commit()

    def delete_google_tokens(self, user_id: str) -> None:
        with self._session("google tokens") as session:
            row = session.get(GoogleTokenRow, user_id)
            if row:
                session.delete(row)
                session.commit()


Base = declarative_base()


def _amount():
    return Numeric(12, 2, asdecimal=False)


class WorkspaceRow(Base):
    __tablename__ = WORKSPACES

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    owner_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class LoanRow(Base):
    __tablename__ = LOANS

    id = Column(String, primary_key=True)
    workspace_id = Column(String, nullable=False, index=True)
    created_by = Column(String, nullable=True)
    loan_type = Column(String, nullable=False)
    counterparty_name = Column(String, nullable=False)
    counterparty_phone = Column(String, nullable=True)
    counterparty_email = Column(String, nullable=True)
    principal_amount = Column(_amount(), nullable=False)
    currency = Column(String, nullable=False, default="INR")
    amount_repaid = Column(_amount(), nullable=False, default=0)
    loan_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    verification_status = Column(
        String, nullable=False, default=VerificationStatus.PENDING.value
    )
    verification_code = Column(String, nullable=True)
    purpose = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    is_demo = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class InsurancePolicyRow(Base):
    __tablename__ = INSURANCE_POLICIES

    id = Column(String, primary_key=True)
    workspace_id = Column(String, nullable=False, index=True)
    created_by = Column(String, nullable=True)
    policy_type = Column(String, nullable=False)
    subtype = Column(String, nullable=True)
    provider_name = Column(String, nullable=False)
    policy_number = Column(String, nullable=True)
    scheme_name = Column(String, nullable=True)
    sum_insured = Column(_amount(), nullable=True)
    premium_amount = Column(_amount(), nullable=True)
    premium_frequency = Column(
        String, nullable=False, default=PremiumFrequency.YEARLY.value
    )
    start_date = Column(Date, nullable=True)
    expiry_date = Column(Date, nullable=False)
    tpa_name = Column(String, nullable=True)
    tpa_helpline = Column(String, nullable=True)
    agent_name = Column(String, nullable=True)
    agent_phone = Column(String, nullable=True)
    covered_members = Column(JSON, nullable=False, default=list)
    notes = Column(String, nullable=True)
    is_demo = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class RenewalRow(Base):
    __tablename__ = RENEWALS

    id = Column(String, primary_key=True)
    workspace_id = Column(String, nullable=False, index=True)
    created_by = Column(String, nullable=True)
    renewal_type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    property_address = Column(String, nullable=True)
    authority_name = Column(String, nullable=True)
    reference_number = Column(String, nullable=True)
    expiry_date = Column(Date, nullable=False)
    fee_amount = Column(_amount(), nullable=True)
    reminder_days = Column(JSON, nullable=True)
    notes = Column(String, nullable=True)
    is_demo = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class WorkspaceMemberRow(Base):
    __tablename__ = WORKSPACE_MEMBERS

    id = Column(String, primary_key=True)
    workspace_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    role = Column(String, nullable=False, default="member")
    relationship_code = Column(String, nullable=True)
    relationship_label = Column(String, nullable=True)
    relationship_icon = Column(String, nullable=True)
    is_owner = Column(Boolean, nullable=False, default=False)
    joined_at = Column(DateTime(timezone=True), nullable=True)


class InviteRow(Base):
    __tablename__ = INVITES

    id = Column(String, primary_key=True)
    workspace_id = Column(String, nullable=False, index=True)
    invited_by = Column(String, nullable=True)
    invitee_name = Column(String, nullable=True)
    relationship_code = Column(String, nullable=True)
    relationship_label = Column(String, nullable=True)
    relationship_icon = Column(String, nullable=True)
    status = Column(String, nullable=False, default=InviteStatus.PENDING.value)
    invite_code = Column(String, nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)


class GoogleTokenRow(Base):
    __tablename__ = "fk_user_google_tokens"

    user_id = Column(String, primary_key=True)
    access_token = Column(String, nullable=True)
    refresh_token = Column(String, nullable=True)
    token_type = Column(String, nullable=False, default="Bearer")
    expires_at = Column(Float, nullable=True)
    scopes = Column(JSON, nullable=False, default=list)
    updated_at = Column(Float, nullable=False)


ROW_MODELS = {
    WORKSPACES: WorkspaceRow,
    LOANS: LoanRow,
    INSURANCE_POLICIES: InsurancePolicyRow,
    RENEWALS: RenewalRow,
    WORKSPACE_MEMBERS: WorkspaceMemberRow,
    INVITES: InviteRow,
}
