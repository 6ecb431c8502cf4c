"""
Lifecycle Reconstructor
=======================

Replays a case's governance events into its current lifecycle projection.

The replay is a pure fold: the latest ASSIGNED event opens the epoch, and
only events carrying that epoch id are applied, oldest first. Nothing else
(row flags, the assignment pointer) is consulted, so the same events always
produce the same projection.
"""

from functools import reduce
from typing import Iterable, List, Optional, Tuple

from config import GovernanceAction
from governance.domain.entities import (
    AcceptedAwaitingNotification,
    AssignmentEpoch,
    Cleared,
    Declined,
    GovernanceEvent,
    Indeterminate,
    LifecycleProjection,
    LifecycleStatus,
    PendingAcceptance,
    Unassigned,
)
from governance.domain.epochs import epoch_sort_key

CLOSING_ACTIONS = (GovernanceAction.UNASSIGNED, GovernanceAction.REASSIGNED)


def _event_order(event: GovernanceEvent) -> tuple:
    return (event.created_at, epoch_sort_key(event.epoch_id), event.event_id)


def _apply(status: LifecycleStatus, event: GovernanceEvent) -> LifecycleStatus:
    """Transition function. Events that do not fit the current status are ignored."""
    action = event.action

    if isinstance(status, Unassigned):
        # Closed epoch: nothing reopens it but a new ASSIGNED
        return status

    if action in CLOSING_ACTIONS:
        return Unassigned(
            closed_epoch_id=event.epoch_id,
            closed_at=event.created_at,
            closed_by=action,
            reason_code=event.reason_code,
        )

    if isinstance(status, PendingAcceptance):
        if action == GovernanceAction.ACCEPTED:
            return AcceptedAwaitingNotification(accepted_at=event.created_at)
        if action == GovernanceAction.DECLINED:
            return Declined(
                declined_at=event.created_at,
                reason_code=event.reason_code or "unknown",
            )
        return status

    if isinstance(status, AcceptedAwaitingNotification):
        if action == GovernanceAction.ACK_SENT:
            return Cleared(accepted_at=status.accepted_at, ack_sent_at=event.created_at)
        return status

    # Declined and Cleared only change through a closing action
    return status


class LifecycleReconstructor:
    """
    Pure functions that rebuild lifecycle projections from events.

    Stateless and safe to call from any thread.
    """

    @staticmethod
    def latest_assignment(events: Iterable[GovernanceEvent]) -> Optional[GovernanceEvent]:
        """Most recent ASSIGNED event, ties broken by epoch recency."""
        assigned = [e for e in events if e.action == GovernanceAction.ASSIGNED and e.epoch_id]
        if not assigned:
            return None
        return max(assigned, key=_event_order)

    @staticmethod
    def epoch_from_event(event: GovernanceEvent) -> AssignmentEpoch:
        meta = event.metadata
        return AssignmentEpoch(
            epoch_id=event.epoch_id,
            case_id=event.case_id,
            assigned_at=event.created_at,
            assigned_rn_id=meta.get("assigned_rn_id"),
            assigned_rn_display=dict(meta.get("assigned_rn_display") or {}),
            reason_code=meta.get("reason_code"),
        )

    @classmethod
    def reconstruct(
        cls,
        case_id: str,
        events: Iterable[GovernanceEvent]
    ) -> LifecycleProjection:
        """
        Rebuild the projection for one case.

        Args:
            case_id: Case whose events are replayed; events of other cases are ignored
            events: Governance events in any order

        Returns:
            LifecycleProjection for the latest epoch
        """
        case_events = [e for e in events if e.case_id == case_id]
        origin = cls.latest_assignment(case_events)
        if origin is None:
            return LifecycleProjection(case_id=case_id, status=Unassigned())

        epoch = cls.epoch_from_event(origin)
        scoped = sorted(
            (
                e for e in case_events
                if e is not origin
                and e.action != GovernanceAction.ASSIGNED
                and e.epoch_id == epoch.epoch_id
            ),
            key=_event_order,
        )

        status = reduce(_apply, scoped, PendingAcceptance())

        last_nudge_at, last_nudge_type = cls._last_nudge(scoped)

        return LifecycleProjection(
            case_id=case_id,
            status=status,
            epoch=epoch,
            last_nudge_at=last_nudge_at,
            last_nudge_type=last_nudge_type,
        )

    @classmethod
    def reconstruct_many(
        cls,
        case_ids: Iterable[str],
        events: Iterable[GovernanceEvent]
    ) -> dict:
        """Rebuild projections for several cases from one bulk event read."""
        by_case: dict = {}
        for event in events:
            by_case.setdefault(event.case_id, []).append(event)
        return {
            case_id: cls.reconstruct(case_id, by_case.get(case_id, []))
            for case_id in case_ids
        }

    @staticmethod
    def indeterminate(case_id: str, error: str) -> LifecycleProjection:
        """Projection for a case whose events could not be retrieved."""
        return LifecycleProjection(case_id=case_id, status=Indeterminate(error=error))

    @staticmethod
    def _last_nudge(scoped: List[GovernanceEvent]) -> Tuple:
        nudges = [e for e in scoped if e.action == GovernanceAction.NUDGED]
        if not nudges:
            return None, None
        latest = nudges[-1]
        return latest.created_at, latest.metadata.get("nudge_type") or "general"

    @classmethod
    def has_response(cls, events: Iterable[GovernanceEvent], epoch_id: str) -> bool:
        """True when the epoch already carries an ACCEPTED or DECLINED event."""
        return any(
            e.epoch_id == epoch_id
            and e.action in (GovernanceAction.ACCEPTED, GovernanceAction.DECLINED)
            for e in events
        )
