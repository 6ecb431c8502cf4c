"""
Governance Infrastructure Models
================================

SQLAlchemy ORM models for the governance module.

``rc_cases`` and ``rc_rns`` are owned by the case management system; the
engine reads them and writes only ``rc_cases.assigned_rn_id``.
``governance_events`` and ``rn_outreach_attempts`` are append-only.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CaseModel(Base):
    """
    Database model for a case row.

    Maps to the 'rc_cases' table.
    """
    __tablename__ = "rc_cases"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    case_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Assignment pointer (the only column this service writes)
    assigned_rn_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    is_superseded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class RNModel(Base):
    """
    Database model for the RN roster.

    Maps to the 'rc_rns' table.
    """
    __tablename__ = "rc_rns"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    auth_user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    rn_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_supervisor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class GovernanceEventModel(Base):
    """
    Database model for one governance event.

    Maps to the 'governance_events' table. Rows are never updated or deleted.
    """
    __tablename__ = "governance_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    case_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_governance_events_case_created", "case_id", "created_at"),
    )


class OutreachAttemptModel(Base):
    """
    Database model for an RN outreach attempt.

    Maps to the 'rn_outreach_attempts' table.
    """
    __tablename__ = "rn_outreach_attempts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    case_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    rn_id: Mapped[str] = mapped_column(String(64), nullable=False)
    channel: Mapped[str] = mapped_column(String(32), nullable=False)
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    within_window: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
