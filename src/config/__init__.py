"""
Configuration Module
====================

Application settings and governance constants.

Settings are loaded from environment variables (and an optional ``.env``
file) using Pydantic. The SLA policy itself (deadline hours, business day
close, org time zone) lives in a YAML file referenced by ``sla_policy_path``
so supervisors can tune it without a redeploy.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="rn-governance-service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/case_management",
        description="Row store connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Policy ==========
    sla_policy_path: Path = Field(
        default=Path("sla_policy.yaml"),
        description="Path to the SLA policy YAML file"
    )

    # ========== Reconciliation ==========
    reconciliation_enabled: bool = Field(
        default=False,
        description="Run the background reconciler that repairs audit gaps proactively"
    )
    reconciliation_interval: int = Field(
        default=300,
        description="Seconds between background reconciliation passes",
        ge=10
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class GovernanceAction(str):
    """Governance event actions as stored in the event log."""
    ASSIGNED = "RN_ASSIGNED_TO_CASE"
    ACCEPTED = "RN_ACCEPTED_ASSIGNMENT"
    DECLINED = "RN_DECLINED_ASSIGNMENT"
    ACK_SENT = "ACK_NOTE_SENT"
    NUDGED = "RN_NUDGED_BY_SUPERVISOR"
    UNASSIGNED = "RN_UNASSIGNED_FROM_CASE"
    REASSIGNED = "RN_REASSIGNED_TO_CASE"


class LifecycleState(str):
    """Lifecycle projection states."""
    UNASSIGNED = "unassigned"
    PENDING_ACCEPTANCE = "pending_acceptance"
    DECLINED = "declined"
    ACCEPTED_AWAITING_NOTIFICATION = "accepted_awaiting_notification"
    CLEARED = "cleared"
    INDETERMINATE = "indeterminate"


class SLAType(str):
    """Obligations tracked against a deadline."""
    ACCEPTANCE = "acceptance"
    NOTIFICATION = "notification"
    OUTREACH = "outreach"


class SLAState(str):
    """SLA status states."""
    NOT_APPLICABLE = "not_applicable"
    DUE = "due"
    MET = "met"
    BREACHED = "breached"


class ActorRole(str):
    """Roles that write governance events."""
    SUPERVISOR = "supervisor"
    RN = "rn"
    SYSTEM = "system"


class AssignmentReason(str):
    """Reason codes attached to ASSIGNED events."""
    INITIAL_ASSIGNMENT = "initial_assignment"
    REASSIGNMENT = "reassignment"
    DECLINED_FOLLOWUP = "declined_followup"
    LEGACY_REPAIR = "legacy_repair"


class UnassignReason(str):
    """Reason codes for unassign and reassign."""
    DECLINED = "declined"
    SLA_BREACH = "sla_breach"
    COVERAGE = "coverage"
    SUPERVISOR_OVERRIDE = "supervisor_override"
    LEGACY_REPAIR = "legacy_repair"
    OTHER = "other"


class DeclineReason(str):
    """Reason codes an RN gives when declining."""
    OVER_LIMIT_SCORE = "over_limit_score"
    CAPACITY_CONSTRAINT = "capacity_constraint"
    SCHEDULE_UNAVAILABLE = "schedule_unavailable"
    SCOPE_MISMATCH = "scope_mismatch"
    OTHER = "other"


class NudgeType(str):
    """Supervisor nudge categories."""
    ACCEPTANCE_OVERDUE = "acceptance_overdue"
    NOTIFY_OVERDUE = "notify_overdue"
    DECLINED_FOLLOWUP = "declined_followup"
    GENERAL = "general"


class OutreachChannel(str):
    """Channels for RN outreach attempts."""
    PHONE = "phone"
    EMAIL = "email"
    TEXT = "text"
    PORTAL_MESSAGE = "portal_message"
    OTHER = "other"


class CaseStatus(str):
    """Case statuses the engine cares about."""
    CLOSED = "closed"
    RELEASED = "released"


# ========== Lists for validation ==========

GOVERNANCE_ACTIONS = [
    GovernanceAction.ASSIGNED, GovernanceAction.ACCEPTED,
    GovernanceAction.DECLINED, GovernanceAction.ACK_SENT,
    GovernanceAction.NUDGED, GovernanceAction.UNASSIGNED,
    GovernanceAction.REASSIGNED
]
VALID_UNASSIGN_REASONS = [
    UnassignReason.DECLINED, UnassignReason.SLA_BREACH,
    UnassignReason.COVERAGE, UnassignReason.SUPERVISOR_OVERRIDE,
    UnassignReason.LEGACY_REPAIR, UnassignReason.OTHER
]
VALID_DECLINE_REASONS = [
    DeclineReason.OVER_LIMIT_SCORE, DeclineReason.CAPACITY_CONSTRAINT,
    DeclineReason.SCHEDULE_UNAVAILABLE, DeclineReason.SCOPE_MISMATCH,
    DeclineReason.OTHER
]
VALID_NUDGE_TYPES = [
    NudgeType.ACCEPTANCE_OVERDUE, NudgeType.NOTIFY_OVERDUE,
    NudgeType.DECLINED_FOLLOWUP, NudgeType.GENERAL
]
VALID_OUTREACH_CHANNELS = [
    OutreachChannel.PHONE, OutreachChannel.EMAIL, OutreachChannel.TEXT,
    OutreachChannel.PORTAL_MESSAGE, OutreachChannel.OTHER
]
VALID_ACK_SENDER_ROLES = [ActorRole.RN, ActorRole.SUPERVISOR]
INACTIVE_CASE_STATUSES = [CaseStatus.CLOSED, CaseStatus.RELEASED]

REASON_TEXT_MAX_LENGTH = 300
NUDGE_MESSAGE_MIN_LENGTH = 20
NUDGE_MESSAGE_MAX_LENGTH = 300
OUTREACH_NOTE_MAX_LENGTH = 300
