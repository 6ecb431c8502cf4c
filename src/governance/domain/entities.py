"""
Governance Domain Entities
==========================

Pure Python domain objects for RN assignment governance.

Cases and RNs are snapshots of rows owned by the row store. Governance
events are immutable facts. Epochs and lifecycle projections are never
stored; they are derived by replaying events.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, List, Mapping, Optional, Union

from config import LifecycleState, INACTIVE_CASE_STATUSES


@dataclass
class CaseRecord:
    """Snapshot of a case row. The engine only ever writes ``assigned_rn_id``."""

    id: str
    assigned_rn_id: Optional[str] = None
    status: Optional[str] = None
    is_superseded: bool = False
    case_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        """Not superseded and not closed/released."""
        if self.is_superseded:
            return False
        return (self.status or "").lower() not in INACTIVE_CASE_STATUSES


@dataclass
class RNRecord:
    """Snapshot of an RN roster row."""

    auth_user_id: str
    rn_id: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    is_supervisor: bool = False

    @property
    def is_assignable(self) -> bool:
        return self.is_active and not self.is_supervisor

    @property
    def display(self) -> dict:
        """Display snapshot frozen into ASSIGNED events."""
        return {"rn_id": self.rn_id, "full_name": self.full_name}

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or self.auth_user_id[:8]


@dataclass(frozen=True)
class GovernanceEvent:
    """
    One immutable governance fact.

    ``metadata`` always carries ``epoch_id``: for ASSIGNED it is the epoch
    being opened, for every other action the epoch it responds to.
    """

    event_id: str
    case_id: str
    action: str
    actor_id: Optional[str]
    actor_role: Optional[str]
    created_at: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def epoch_id(self) -> Optional[str]:
        return self.metadata.get("epoch_id") or None

    @property
    def reason_code(self) -> Optional[str]:
        return self.metadata.get("reason_code")


@dataclass(frozen=True)
class AssignmentEpoch:
    """One assignment generation of a case to one RN."""

    epoch_id: str
    case_id: str
    assigned_at: datetime
    assigned_rn_id: Optional[str]
    assigned_rn_display: Mapping[str, Any] = field(default_factory=dict)
    reason_code: Optional[str] = None

    @property
    def is_legacy_repair(self) -> bool:
        return self.reason_code == "legacy_repair"


@dataclass
class OutreachAttempt:
    """An attempted (not necessarily successful) RN contact with the client."""

    case_id: str
    rn_id: str
    channel: str
    attempted_at: datetime
    note: Optional[str] = None
    attempt_id: Optional[str] = None
    recorded_at: Optional[datetime] = None
    within_window: Optional[bool] = None


# ========== Lifecycle status (tagged union) ==========

@dataclass(frozen=True)
class Unassigned:
    """No open epoch. ``closed_epoch_id`` is set when an epoch was closed."""
    name: ClassVar[str] = LifecycleState.UNASSIGNED
    closed_epoch_id: Optional[str] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    reason_code: Optional[str] = None


@dataclass(frozen=True)
class PendingAcceptance:
    name: ClassVar[str] = LifecycleState.PENDING_ACCEPTANCE


@dataclass(frozen=True)
class Declined:
    name: ClassVar[str] = LifecycleState.DECLINED
    declined_at: datetime
    reason_code: str = "unknown"


@dataclass(frozen=True)
class AcceptedAwaitingNotification:
    name: ClassVar[str] = LifecycleState.ACCEPTED_AWAITING_NOTIFICATION
    accepted_at: datetime


@dataclass(frozen=True)
class Cleared:
    name: ClassVar[str] = LifecycleState.CLEARED
    accepted_at: datetime
    ack_sent_at: datetime


@dataclass(frozen=True)
class Indeterminate:
    """Events could not be read; no state may be assumed."""
    name: ClassVar[str] = LifecycleState.INDETERMINATE
    error: str = ""


LifecycleStatus = Union[
    Unassigned, PendingAcceptance, Declined,
    AcceptedAwaitingNotification, Cleared, Indeterminate
]

OPEN_STATUSES = (PendingAcceptance, Declined, AcceptedAwaitingNotification, Cleared)


@dataclass(frozen=True)
class LifecycleProjection:
    """Current assignment state of one case, derived from its events."""

    case_id: str
    status: LifecycleStatus
    epoch: Optional[AssignmentEpoch] = None
    last_nudge_at: Optional[datetime] = None
    last_nudge_type: Optional[str] = None

    @property
    def state(self) -> str:
        return self.status.name

    @property
    def is_indeterminate(self) -> bool:
        return isinstance(self.status, Indeterminate)

    @property
    def has_open_epoch(self) -> bool:
        return self.epoch is not None and isinstance(self.status, OPEN_STATUSES)

    @property
    def open_epoch(self) -> Optional[AssignmentEpoch]:
        return self.epoch if self.has_open_epoch else None

    @property
    def assigned_rn_id(self) -> Optional[str]:
        """RN of the open epoch, if any."""
        return self.epoch.assigned_rn_id if self.has_open_epoch else None

    @property
    def accepted_at(self) -> Optional[datetime]:
        return getattr(self.status, "accepted_at", None)

    @property
    def declined_at(self) -> Optional[datetime]:
        return getattr(self.status, "declined_at", None)

    @property
    def ack_sent_at(self) -> Optional[datetime]:
        return getattr(self.status, "ack_sent_at", None)

    @property
    def is_pending(self) -> bool:
        """Still on the supervisor queue (everything except cleared)."""
        return not isinstance(self.status, Cleared)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        epoch = self.epoch
        return {
            "case_id": self.case_id,
            "state": self.state,
            "epoch": None if epoch is None else {
                "epoch_id": epoch.epoch_id,
                "assigned_at": epoch.assigned_at.isoformat(),
                "assigned_rn_id": epoch.assigned_rn_id,
                "assigned_rn_display": dict(epoch.assigned_rn_display),
                "reason_code": epoch.reason_code,
            },
            "epoch_open": self.has_open_epoch,
            "accepted_at": _iso(self.accepted_at),
            "declined_at": _iso(self.declined_at),
            "decline_reason": getattr(self.status, "reason_code", None) if isinstance(self.status, Declined) else None,
            "ack_sent_at": _iso(self.ack_sent_at),
            "last_nudge_at": _iso(self.last_nudge_at),
            "last_nudge_type": self.last_nudge_type,
            "error": self.status.error if isinstance(self.status, Indeterminate) else None,
        }


@dataclass(frozen=True)
class SLAStatus:
    """Status of one obligation against its deadline."""

    obligation: str
    state: str
    anchor: Optional[datetime] = None
    deadline: Optional[datetime] = None
    met_at: Optional[datetime] = None
    remaining_seconds: float = 0.0
    overdue_seconds: float = 0.0
    last_attempt_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "obligation": self.obligation,
            "state": self.state,
            "anchor": _iso(self.anchor),
            "deadline": _iso(self.deadline),
            "met_at": _iso(self.met_at),
            "remaining_seconds": self.remaining_seconds,
            "overdue_seconds": self.overdue_seconds,
            "last_attempt_at": _iso(self.last_attempt_at),
        }


@dataclass
class ActionResult:
    """Outcome of one supervisor or RN action."""

    case_id: str
    action: str
    epoch_id: Optional[str] = None
    previous_epoch_id: Optional[str] = None
    outcome: str = "recorded"
    warnings: List[str] = field(default_factory=list)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
