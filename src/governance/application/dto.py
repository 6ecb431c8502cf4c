"""
Governance Application DTOs
===========================

Data Transfer Objects for the governance API layer.

Pydantic models for request validation and response serialization. Service
read models (projections, SLA statuses) are converted here so controllers
stay thin.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from config import (
    NUDGE_MESSAGE_MAX_LENGTH,
    NUDGE_MESSAGE_MIN_LENGTH,
    OUTREACH_NOTE_MAX_LENGTH,
    REASON_TEXT_MAX_LENGTH,
)


# ========== Type Aliases for Literals ==========
LifecycleStateStr = Literal[
    "unassigned", "pending_acceptance", "declined",
    "accepted_awaiting_notification", "cleared", "indeterminate"
]
SLAStateStr = Literal["not_applicable", "due", "met", "breached"]
SLATypeStr = Literal["acceptance", "notification", "outreach"]
UnassignReasonStr = Literal["declined", "sla_breach", "coverage", "supervisor_override", "legacy_repair", "other"]
DeclineReasonStr = Literal["over_limit_score", "capacity_constraint", "schedule_unavailable", "scope_mismatch", "other"]
NudgeTypeStr = Literal["acceptance_overdue", "notify_overdue", "declined_followup", "general"]
OutreachChannelStr = Literal["phone", "email", "text", "portal_message", "other"]


# ========== Request DTOs ==========

class AssignRequest(BaseModel):
    """Assign an unassigned (or declined) case to an RN."""
    rn_id: str = Field(..., min_length=1, description="RN auth user id")


class UnassignRequest(BaseModel):
    reason_code: UnassignReasonStr
    reason_text: Optional[str] = Field(None, max_length=REASON_TEXT_MAX_LENGTH)
    expected_epoch_id: Optional[str] = Field(None, description="Epoch the supervisor was looking at")


class ReassignRequest(BaseModel):
    new_rn_id: str = Field(..., min_length=1, description="RN auth user id to move the case to")
    reason_code: UnassignReasonStr
    reason_text: Optional[str] = Field(None, max_length=REASON_TEXT_MAX_LENGTH)
    expected_epoch_id: Optional[str] = None


class NudgeRequest(BaseModel):
    nudge_type: NudgeTypeStr = "general"
    message: str = Field(..., description="Message delivered to the RN")
    expected_epoch_id: Optional[str] = None

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Trimmed message must fit the nudge length bounds."""
        v = v.strip()
        if not NUDGE_MESSAGE_MIN_LENGTH <= len(v) <= NUDGE_MESSAGE_MAX_LENGTH:
            raise ValueError(
                f"message must be {NUDGE_MESSAGE_MIN_LENGTH}-{NUDGE_MESSAGE_MAX_LENGTH} characters"
            )
        return v


class AckSentRequest(BaseModel):
    channels: List[str] = Field(default_factory=lambda: ["client", "attorney"], min_length=1)
    expected_epoch_id: Optional[str] = None


class AcceptRequest(BaseModel):
    epoch_id: str = Field(..., min_length=1, description="Epoch being accepted")


class DeclineRequest(BaseModel):
    epoch_id: str = Field(..., min_length=1, description="Epoch being declined")
    reason_code: DeclineReasonStr
    reason_text: Optional[str] = Field(None, max_length=REASON_TEXT_MAX_LENGTH)


class OutreachAttemptRequest(BaseModel):
    channel: OutreachChannelStr
    note: Optional[str] = Field(None, max_length=OUTREACH_NOTE_MAX_LENGTH)
    attempted_at: Optional[datetime] = Field(None, description="Defaults to now")


# ========== Response DTOs ==========

class SLAStatusResponse(BaseModel):
    """Status of one obligation."""
    obligation: SLATypeStr
    state: SLAStateStr
    anchor: Optional[datetime] = None
    deadline: Optional[datetime] = None
    met_at: Optional[datetime] = None
    remaining_seconds: float = 0.0
    overdue_seconds: float = 0.0
    last_attempt_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, status) -> "SLAStatusResponse":
        return cls(
            obligation=status.obligation,
            state=status.state,
            anchor=status.anchor,
            deadline=status.deadline,
            met_at=status.met_at,
            remaining_seconds=status.remaining_seconds,
            overdue_seconds=status.overdue_seconds,
            last_attempt_at=status.last_attempt_at,
        )


class EpochResponse(BaseModel):
    epoch_id: str
    assigned_at: datetime
    assigned_rn_id: Optional[str] = None
    assigned_rn_name: Optional[str] = None
    reason_code: Optional[str] = None


class LifecycleResponse(BaseModel):
    """Lifecycle projection of one case."""
    case_id: str
    state: LifecycleStateStr
    epoch: Optional[EpochResponse] = None
    epoch_open: bool = False
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    ack_sent_at: Optional[datetime] = None
    last_nudge_at: Optional[datetime] = None
    last_nudge_type: Optional[str] = None
    error: Optional[str] = Field(None, description="Set when the state is indeterminate")

    @classmethod
    def from_domain(cls, projection) -> "LifecycleResponse":
        epoch = projection.epoch
        status = projection.status
        return cls(
            case_id=projection.case_id,
            state=projection.state,
            epoch=None if epoch is None else EpochResponse(
                epoch_id=epoch.epoch_id,
                assigned_at=epoch.assigned_at,
                assigned_rn_id=epoch.assigned_rn_id,
                assigned_rn_name=epoch.assigned_rn_display.get("full_name"),
                reason_code=epoch.reason_code,
            ),
            epoch_open=projection.has_open_epoch,
            accepted_at=projection.accepted_at,
            declined_at=projection.declined_at,
            decline_reason=status.reason_code if projection.declined_at else None,
            ack_sent_at=projection.ack_sent_at,
            last_nudge_at=projection.last_nudge_at,
            last_nudge_type=projection.last_nudge_type,
            error=getattr(status, "error", None) if projection.is_indeterminate else None,
        )


class CaseOverviewResponse(BaseModel):
    """One case with its lifecycle and SLA clocks."""
    case_id: str
    case_number: Optional[str] = None
    case_status: Optional[str] = None
    assigned_rn_id: Optional[str] = None
    lifecycle: LifecycleResponse
    acceptance_sla: SLAStatusResponse
    notification_sla: SLAStatusResponse
    needs_repair: bool = Field(False, description="Row shows an RN without a matching open epoch")
    suggested_nudge_type: NudgeTypeStr = "general"
    suggested_nudge_message: str = ""

    @classmethod
    def from_overview(cls, overview, needs_repair: bool = False) -> "CaseOverviewResponse":
        case = overview.case
        return cls(
            case_id=case.id,
            case_number=case.case_number,
            case_status=case.status,
            assigned_rn_id=case.assigned_rn_id,
            lifecycle=LifecycleResponse.from_domain(overview.projection),
            acceptance_sla=SLAStatusResponse.from_domain(overview.acceptance),
            notification_sla=SLAStatusResponse.from_domain(overview.notification),
            needs_repair=needs_repair,
            suggested_nudge_type=overview.suggested_nudge_type,
            suggested_nudge_message=overview.suggested_nudge_message,
        )


class DashboardSummaryResponse(BaseModel):
    """Summary statistics for the supervisor queue."""
    total_cases: int
    state_counts: Dict[str, int] = Field(default_factory=dict)
    acceptance_breached: int = 0
    notification_breached: int = 0
    indeterminate: int = 0


class DashboardResponse(BaseModel):
    cases: List[CaseOverviewResponse]
    summary: DashboardSummaryResponse


class ActionResponse(BaseModel):
    """Result of one governance action."""
    case_id: str
    action: str
    outcome: str = "recorded"
    epoch_id: Optional[str] = None
    previous_epoch_id: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    refresh_required: bool = False

    @classmethod
    def from_result(cls, result) -> "ActionResponse":
        return cls(
            case_id=result.case_id,
            action=result.action,
            outcome=result.outcome,
            epoch_id=result.epoch_id,
            previous_epoch_id=result.previous_epoch_id,
            warnings=list(result.warnings),
            refresh_required=result.outcome != "recorded",
        )


class RNResponse(BaseModel):
    """RN the supervisor can pick as an assignee."""
    auth_user_id: str
    rn_id: Optional[str] = None
    full_name: Optional[str] = None
    display_name: str

    @classmethod
    def from_domain(cls, rn) -> "RNResponse":
        return cls(
            auth_user_id=rn.auth_user_id,
            rn_id=rn.rn_id,
            full_name=rn.full_name,
            display_name=rn.display_name,
        )


class OutreachAttemptResponse(BaseModel):
    attempt_id: Optional[str] = None
    case_id: str
    rn_id: str
    channel: str
    attempted_at: datetime
    note: Optional[str] = None


class OutreachSLAResponse(BaseModel):
    """Outreach tracker row."""
    case_id: str
    case_number: Optional[str] = None
    assigned_rn_id: Optional[str] = None
    lifecycle_state: Optional[LifecycleStateStr] = None
    outreach_sla: SLAStatusResponse


class ReconciliationResponse(BaseModel):
    checked: int
    repaired: int
    closed: int
    skipped: int
    failed: int
    failures: List[str] = Field(default_factory=list)
