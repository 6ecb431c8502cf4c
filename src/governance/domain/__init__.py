"""
Governance Domain Layer
=======================

Domain layer for RN assignment governance.

Contains:
- Entities: case/RN snapshots, governance events, epochs, lifecycle projection
- Epochs: time-ordered epoch id minting
- Lifecycle: the event replay fold
- Value Objects: SLA policy, business calendar, SLA calculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from governance.domain.entities import (
    ActionResult,
    AcceptedAwaitingNotification,
    AssignmentEpoch,
    CaseRecord,
    Cleared,
    Declined,
    GovernanceEvent,
    Indeterminate,
    LifecycleProjection,
    OutreachAttempt,
    PendingAcceptance,
    RNRecord,
    SLAStatus,
    Unassigned,
)
from governance.domain.epochs import new_epoch_id, epoch_timestamp
from governance.domain.lifecycle import LifecycleReconstructor
from governance.domain.value_objects import (
    BusinessCalendar,
    SLACalculator,
    SLAPolicy,
)

__all__ = [
    # Entities
    "ActionResult",
    "AcceptedAwaitingNotification",
    "AssignmentEpoch",
    "CaseRecord",
    "Cleared",
    "Declined",
    "GovernanceEvent",
    "Indeterminate",
    "LifecycleProjection",
    "OutreachAttempt",
    "PendingAcceptance",
    "RNRecord",
    "SLAStatus",
    "Unassigned",
    # Epochs
    "new_epoch_id",
    "epoch_timestamp",
    # Lifecycle
    "LifecycleReconstructor",
    # Value Objects & Services
    "BusinessCalendar",
    "SLACalculator",
    "SLAPolicy",
]
