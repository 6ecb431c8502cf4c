"""
Governance Application Services
===============================

Application services orchestrate the domain (replay fold, SLA math) and the
stores (row store, event log, outreach log).

Write discipline shared by every writer here:
- validate and check eligibility before any write
- update the assignment pointer first (compare-and-set, verified), then
  append the event; never log a change that did not happen
- an append that fails after a verified pointer update is a partial failure:
  the row stands and legacy repair reconciles the log later
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from config import (
    ActorRole,
    AssignmentReason,
    GovernanceAction,
    GOVERNANCE_ACTIONS,
    LifecycleState,
    NudgeType,
    SLAState,
    SLAType,
    UnassignReason,
    NUDGE_MESSAGE_MAX_LENGTH,
    NUDGE_MESSAGE_MIN_LENGTH,
    OUTREACH_NOTE_MAX_LENGTH,
    REASON_TEXT_MAX_LENGTH,
    VALID_ACK_SENDER_ROLES,
    VALID_DECLINE_REASONS,
    VALID_NUDGE_TYPES,
    VALID_OUTREACH_CHANNELS,
    VALID_UNASSIGN_REASONS,
)
from core import (
    ConflictException,
    PartialFailureException,
    RepositoryException,
    ResourceNotFoundException,
    StoreUnavailableException,
    ValidationException,
)
from governance.domain import (
    AcceptedAwaitingNotification,
    ActionResult,
    AssignmentEpoch,
    CaseRecord,
    Cleared,
    Declined,
    GovernanceEvent,
    LifecycleProjection,
    LifecycleReconstructor,
    OutreachAttempt,
    PendingAcceptance,
    RNRecord,
    SLACalculator,
    SLAPolicy,
    SLAStatus,
    new_epoch_id,
)
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]

SYSTEM_ACTOR_ID = "system:reconciler"
LEGACY_REPAIR_NOTE = "Epoch created retroactively for legacy assignment without governance event"
ORPHAN_EPOCH_NOTE = "Assignment pointer cleared without a governance event"

OUTCOME_RECORDED = "recorded"
OUTCOME_NO_LONGER_ACTIVE = "assignment_no_longer_active"
OUTCOME_ALREADY_RESPONDED = "already_responded"

REPAIR_WARNING = "Assignment had no governance record; an epoch was created before this action"

ACCEPTANCE_OVERDUE_MESSAGE = (
    "You have missed the cutoff for accepting this assignment. If you're experiencing "
    "case weight or capacity issues, please respond so your supervisor can support you."
)
NOTIFY_OVERDUE_MESSAGE = (
    "You have missed the cutoff for notifying the client and attorney of your assignment. "
    "If you are unable to send the welcome message, please respond so we can assist you "
    "in meeting this mandatory metric."
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ICaseRepository(ABC):
    """Row store access for cases. Only the assignment pointer is ever written."""

    @abstractmethod
    async def get(self, case_id: str) -> Optional[CaseRecord]:
        """Get case by ID."""

    @abstractmethod
    async def compare_and_set_assigned_rn(
        self,
        case_id: str,
        expected_rn_id: Optional[str],
        new_rn_id: Optional[str]
    ) -> Optional[CaseRecord]:
        """
        Set the pointer only if it still holds ``expected_rn_id``.

        Returns the updated row, or None when the row changed underneath
        (or vanished).
        """

    @abstractmethod
    async def list_active_cases(self) -> List[CaseRecord]:
        """Non-superseded cases that are not closed or released."""


class IRNRepository(ABC):
    """Read-only RN roster access."""

    @abstractmethod
    async def get_by_auth_user_id(self, auth_user_id: str) -> Optional[RNRecord]:
        """Get RN by auth user id."""

    @abstractmethod
    async def list_assignable(self) -> List[RNRecord]:
        """Active, non-supervisor RNs."""


class IGovernanceEventRepository(ABC):
    """Append-only governance event log."""

    @abstractmethod
    async def append(
        self,
        case_id: str,
        action: str,
        actor_id: Optional[str],
        actor_role: Optional[str],
        metadata: dict,
        ts: Optional[datetime] = None
    ) -> GovernanceEvent:
        """Append one event; ``ts`` defaults to now."""

    @abstractmethod
    async def list(
        self,
        case_ids: Iterable[str],
        actions: Optional[Iterable[str]] = None
    ) -> List[GovernanceEvent]:
        """Events for the cases, newest first."""


class IOutreachRepository(ABC):
    """Outreach attempt log."""

    @abstractmethod
    async def record(self, attempt: OutreachAttempt) -> OutreachAttempt:
        """Persist one attempt."""

    @abstractmethod
    async def list_for_case(self, case_id: str, rn_id: Optional[str] = None) -> List[OutreachAttempt]:
        """Attempts for a case, oldest first."""


class ISLAPolicyProvider(ABC):
    """Interface for SLA policy access."""

    @abstractmethod
    def get_policy(self) -> SLAPolicy:
        """Get current SLA policy."""


# ========== Read Models ==========

@dataclass
class CaseOverview:
    """One case as the supervisor dashboard shows it."""
    case: CaseRecord
    projection: LifecycleProjection
    acceptance: SLAStatus
    notification: SLAStatus
    suggested_nudge_type: str = NudgeType.GENERAL
    suggested_nudge_message: str = ""


@dataclass
class DashboardSummary:
    total_cases: int = 0
    state_counts: Dict[str, int] = field(default_factory=dict)
    acceptance_breached: int = 0
    notification_breached: int = 0
    indeterminate: int = 0


@dataclass
class OutreachRow:
    case: CaseRecord
    lifecycle_state: str
    sla: SLAStatus


@dataclass
class ReconciliationReport:
    checked: int = 0
    repaired: int = 0
    closed: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)


# ========== Validation helpers ==========

def _validate_reason(reason_code: str, reason_text: Optional[str], valid_codes: List[str]) -> Optional[str]:
    if reason_code not in valid_codes:
        raise ValidationException(
            f"Unknown reason code '{reason_code}'",
            {"allowed": list(valid_codes)}
        )
    text = (reason_text or "").strip()
    if reason_code == "other" and not text:
        raise ValidationException("Please explain: reason text is required when the reason is 'other'")
    if len(text) > REASON_TEXT_MAX_LENGTH:
        raise ValidationException(
            f"Reason text must be at most {REASON_TEXT_MAX_LENGTH} characters",
            {"length": len(text)}
        )
    return text or None


def _check_expected_epoch(
    projection: LifecycleProjection,
    expected_epoch_id: Optional[str]
) -> None:
    if expected_epoch_id is None:
        return
    current = projection.open_epoch
    if current is None or current.epoch_id != expected_epoch_id:
        raise ConflictException(
            "Assignment has changed since it was loaded; refresh and try again",
            case_id=projection.case_id,
            expected_epoch_id=expected_epoch_id,
            current_epoch_id=current.epoch_id if current else None,
        )


def _require_determinate(projection: LifecycleProjection) -> None:
    if projection.is_indeterminate:
        raise StoreUnavailableException(
            "Governance events for this case could not be loaded; retry shortly",
            {"case_id": projection.case_id, "error": projection.status.error}
        )


def _repair_warnings(projection: LifecycleProjection, epoch: AssignmentEpoch) -> List[str]:
    current = projection.open_epoch
    if current is not None and current.epoch_id == epoch.epoch_id:
        return []
    return [REPAIR_WARNING]


async def _load_eligible_case(cases: ICaseRepository, case_id: str) -> CaseRecord:
    """Case that governance actions may touch: present and not superseded."""
    case = await cases.get(case_id)
    if case is None:
        raise ResourceNotFoundException("Case", case_id)
    if case.is_superseded:
        raise ResourceNotFoundException("Case", case_id, reason="is superseded")
    return case


# ========== Application Services ==========

class LifecycleService:
    """
    Read side: projections, SLA evaluation and the supervisor queue.

    Reads are lock-free replays of the event log.
    """

    def __init__(
        self,
        event_repository: IGovernanceEventRepository,
        case_repository: Optional[ICaseRepository],
        policy_provider: ISLAPolicyProvider,
        clock: Clock = utc_now
    ):
        self._events = event_repository
        self._cases = case_repository
        self._policy_provider = policy_provider
        self._clock = clock

    async def projection(self, case_id: str) -> LifecycleProjection:
        """Current projection; indeterminate when the events cannot be read."""
        return (await self.projections([case_id]))[case_id]

    async def projections(self, case_ids: Iterable[str]) -> Dict[str, LifecycleProjection]:
        case_ids = list(case_ids)
        if not case_ids:
            return {}
        try:
            events = await self._events.list(case_ids, GOVERNANCE_ACTIONS)
        except RepositoryException as e:
            logger.warning(
                "Governance events unavailable; marking cases indeterminate",
                extra={"case_count": len(case_ids), "error": e.message}
            )
            return {
                case_id: LifecycleReconstructor.indeterminate(case_id, e.message)
                for case_id in case_ids
            }
        return LifecycleReconstructor.reconstruct_many(case_ids, events)

    def evaluate(
        self,
        projection: LifecycleProjection,
        current_time: Optional[datetime] = None
    ) -> Tuple[SLAStatus, SLAStatus]:
        """Acceptance and notification status for a projection."""
        policy = self._policy_provider.get_policy()
        now = current_time or self._clock()
        return (
            SLACalculator.evaluate_acceptance(projection, now, policy),
            SLACalculator.evaluate_notification(projection, now, policy),
        )

    @staticmethod
    def suggested_nudge(projection: LifecycleProjection) -> Tuple[str, str]:
        """Nudge type and default message pre-filled from the current state."""
        if isinstance(projection.status, Declined):
            return NudgeType.DECLINED_FOLLOWUP, ""
        if isinstance(projection.status, AcceptedAwaitingNotification):
            return NudgeType.NOTIFY_OVERDUE, NOTIFY_OVERDUE_MESSAGE
        return NudgeType.ACCEPTANCE_OVERDUE, ACCEPTANCE_OVERDUE_MESSAGE

    def _overview(self, case: CaseRecord, projection: LifecycleProjection, now: datetime) -> CaseOverview:
        acceptance, notification = self.evaluate(projection, now)
        nudge_type, nudge_message = self.suggested_nudge(projection)
        return CaseOverview(
            case=case,
            projection=projection,
            acceptance=acceptance,
            notification=notification,
            suggested_nudge_type=nudge_type,
            suggested_nudge_message=nudge_message,
        )

    async def case_overview(self, case_id: str) -> CaseOverview:
        if self._cases is None:
            raise ValueError("Case repository not configured")
        case = await self._cases.get(case_id)
        if case is None:
            raise ResourceNotFoundException("Case", case_id)
        projection = await self.projection(case_id)
        return self._overview(case, projection, self._clock())

    async def pending_queue(self) -> Tuple[List[CaseOverview], DashboardSummary]:
        """
        Active cases still needing supervisor attention.

        Cleared cases drop off the queue. Indeterminate cases stay visible
        but are counted separately.
        """
        if self._cases is None:
            raise ValueError("Case repository not configured")

        cases = await self._cases.list_active_cases()
        projections = await self.projections([c.id for c in cases])
        now = self._clock()

        rows: List[CaseOverview] = []
        summary = DashboardSummary()
        for case in cases:
            projection = projections[case.id]
            if not projection.is_pending:
                continue
            overview = self._overview(case, projection, now)
            rows.append(overview)

            summary.total_cases += 1
            summary.state_counts[projection.state] = summary.state_counts.get(projection.state, 0) + 1
            if projection.is_indeterminate:
                summary.indeterminate += 1
            if overview.acceptance.state == SLAState.BREACHED:
                summary.acceptance_breached += 1
            if overview.notification.state == SLAState.BREACHED:
                summary.notification_breached += 1

        return rows, summary


class LegacyRepairService:
    """
    Synthesizes the missing epoch for assignments made before event sourcing.

    Repairs are not coordinated: two concurrent repairs both append, and the
    replay keeps the most recent ASSIGNED, so the case still ends with one
    agreed epoch.
    """

    def __init__(
        self,
        event_repository: IGovernanceEventRepository,
        rn_repository: IRNRepository,
        lifecycle_service: LifecycleService,
        clock: Clock = utc_now
    ):
        self._events = event_repository
        self._rns = rn_repository
        self._lifecycle = lifecycle_service
        self._clock = clock

    @staticmethod
    def needs_repair(case: CaseRecord, projection: LifecycleProjection) -> bool:
        """Row shows an RN but no open epoch belongs to that RN."""
        if not case.assigned_rn_id or projection.is_indeterminate:
            return False
        return projection.assigned_rn_id != case.assigned_rn_id

    async def repair(
        self,
        case: CaseRecord,
        actor_id: str,
        actor_role: str = ActorRole.SUPERVISOR
    ) -> AssignmentEpoch:
        """Append an ASSIGNED event for the currently assigned RN, stamped now."""
        if not case.assigned_rn_id:
            raise ConflictException("Case has no assigned RN to repair", case_id=case.id)

        rn = await self._rns.get_by_auth_user_id(case.assigned_rn_id)
        epoch_id = new_epoch_id()
        metadata = {
            "governance": True,
            "epoch_id": epoch_id,
            "assigned_rn_id": case.assigned_rn_id,
            "assigned_rn_display": rn.display if rn else {"rn_id": None, "full_name": None},
            "reason_code": AssignmentReason.LEGACY_REPAIR,
            "reason_text": LEGACY_REPAIR_NOTE,
        }

        event = await self._events.append(
            case.id, GovernanceAction.ASSIGNED, actor_id, actor_role, metadata, ts=self._clock()
        )
        logger.info(
            "Legacy epoch repaired",
            extra={"case_id": case.id, "epoch_id": epoch_id, "rn_id": case.assigned_rn_id}
        )
        return LifecycleReconstructor.epoch_from_event(event)

    async def ensure_epoch(
        self,
        case: CaseRecord,
        actor_id: str,
        projection: Optional[LifecycleProjection] = None
    ) -> AssignmentEpoch:
        """Open epoch for the case, repairing it when the log is missing it."""
        if projection is None:
            projection = await self._lifecycle.projection(case.id)
        _require_determinate(projection)

        if projection.has_open_epoch and (
            case.assigned_rn_id is None or projection.assigned_rn_id == case.assigned_rn_id
        ):
            return projection.open_epoch

        if case.assigned_rn_id:
            return await self.repair(case, actor_id)

        raise ConflictException("Case has no open assignment", case_id=case.id)


class SupervisorActionGateway:
    """
    The only writer of the assignment pointer.

    Every operation is one compare-and-set on one case row plus its audit
    appends. Operations on different cases never contend.
    """

    def __init__(
        self,
        case_repository: ICaseRepository,
        rn_repository: IRNRepository,
        event_repository: IGovernanceEventRepository,
        lifecycle_service: LifecycleService,
        repair_service: LegacyRepairService,
        clock: Clock = utc_now
    ):
        self._cases = case_repository
        self._rns = rn_repository
        self._events = event_repository
        self._lifecycle = lifecycle_service
        self._repair = repair_service
        self._clock = clock

    # ----- eligibility -----

    async def _load_case(self, case_id: str) -> CaseRecord:
        return await _load_eligible_case(self._cases, case_id)

    async def _load_assignable_rn(self, rn_id: str) -> RNRecord:
        rn = await self._rns.get_by_auth_user_id(rn_id)
        if rn is None:
            raise ResourceNotFoundException("RN", rn_id)
        if not rn.is_active:
            raise ResourceNotFoundException("RN", rn_id, reason="is not active")
        if rn.is_supervisor:
            raise ResourceNotFoundException("RN", rn_id, reason="is a supervisor and cannot be assigned")
        return rn

    async def assignable_rns(self) -> List[RNRecord]:
        """RNs that assign and reassign will accept as the new assignee."""
        return await self._rns.list_assignable()

    async def _load_projection(self, case_id: str) -> LifecycleProjection:
        projection = await self._lifecycle.projection(case_id)
        _require_determinate(projection)
        return projection

    # ----- write helpers -----

    async def _set_pointer(self, case: CaseRecord, new_rn_id: Optional[str]) -> CaseRecord:
        """Compare-and-set the pointer from its read value, then verify the returned row."""
        updated = await self._cases.compare_and_set_assigned_rn(case.id, case.assigned_rn_id, new_rn_id)
        if updated is None:
            raise ConflictException(
                "Case assignment changed concurrently; refresh and try again",
                case_id=case.id,
            )
        if updated.assigned_rn_id != new_rn_id:
            logger.error(
                "Post-write verification mismatch",
                extra={"case_id": case.id, "expected_rn_id": new_rn_id, "actual_rn_id": updated.assigned_rn_id}
            )
            raise ConflictException("Post-write verification mismatch; refresh and try again", case_id=case.id)
        return updated

    async def _append_after_update(
        self,
        case_id: str,
        operation: str,
        action: str,
        actor_id: str,
        metadata: dict
    ) -> GovernanceEvent:
        try:
            return await self._events.append(
                case_id, action, actor_id, ActorRole.SUPERVISOR, metadata, ts=self._clock()
            )
        except RepositoryException as e:
            logger.error(
                "Audit append failed after pointer update",
                extra={"case_id": case_id, "operation": operation, "action": action,
                       "epoch_id": metadata.get("epoch_id"), "error": e.message}
            )
            raise PartialFailureException(case_id, operation, metadata.get("epoch_id"), e.message) from e

    # ----- operations -----

    async def assign(self, case_id: str, rn_id: str, actor_id: str) -> ActionResult:
        """
        Bind an unassigned (or declined) case to an RN.

        A declined epoch is closed with UNASSIGNED (reason ``declined``) once
        the pointer has moved.
        """
        case = await self._load_case(case_id)
        rn = await self._load_assignable_rn(rn_id)
        projection = await self._load_projection(case_id)

        closing: Optional[AssignmentEpoch] = None
        if projection.has_open_epoch:
            if not isinstance(projection.status, Declined):
                raise ConflictException(
                    "Case already has an open assignment; use reassign",
                    case_id=case_id,
                    current_epoch_id=projection.epoch.epoch_id,
                )
            closing = projection.epoch
        elif case.assigned_rn_id:
            raise ConflictException("Case already has an assigned RN; use reassign", case_id=case_id)

        await self._set_pointer(case, rn.auth_user_id)

        if closing is not None:
            await self._append_after_update(case_id, "assign", GovernanceAction.UNASSIGNED, actor_id, {
                "governance": True,
                "epoch_id": closing.epoch_id,
                "assigned_rn_id": closing.assigned_rn_id,
                "reason_code": UnassignReason.DECLINED,
            })

        epoch_id = new_epoch_id()
        await self._append_after_update(case_id, "assign", GovernanceAction.ASSIGNED, actor_id, {
            "governance": True,
            "epoch_id": epoch_id,
            "assigned_rn_id": rn.auth_user_id,
            "assigned_rn_display": rn.display,
            "reason_code": AssignmentReason.DECLINED_FOLLOWUP if closing else AssignmentReason.INITIAL_ASSIGNMENT,
        })

        logger.info(
            "RN assigned to case",
            extra={"case_id": case_id, "epoch_id": epoch_id, "rn_id": rn.auth_user_id, "actor_id": actor_id}
        )
        return ActionResult(
            case_id=case_id,
            action="assign",
            epoch_id=epoch_id,
            previous_epoch_id=closing.epoch_id if closing else None,
        )

    async def unassign(
        self,
        case_id: str,
        reason_code: str,
        actor_id: str,
        reason_text: Optional[str] = None,
        expected_epoch_id: Optional[str] = None
    ) -> ActionResult:
        """Clear the pointer and close the open epoch."""
        text = _validate_reason(reason_code, reason_text, VALID_UNASSIGN_REASONS)
        case = await self._load_case(case_id)
        projection = await self._load_projection(case_id)
        _check_expected_epoch(projection, expected_epoch_id)

        if not projection.has_open_epoch and not case.assigned_rn_id:
            raise ConflictException(
                "Case is already unassigned",
                case_id=case_id,
                expected_epoch_id=expected_epoch_id,
            )

        epoch = await self._repair.ensure_epoch(case, actor_id, projection)
        await self._set_pointer(case, None)

        metadata = {
            "governance": True,
            "epoch_id": epoch.epoch_id,
            "assigned_rn_id": epoch.assigned_rn_id,
            "reason_code": reason_code,
        }
        if text:
            metadata["reason_text"] = text
        await self._append_after_update(case_id, "unassign", GovernanceAction.UNASSIGNED, actor_id, metadata)

        logger.info(
            "RN unassigned from case",
            extra={"case_id": case_id, "epoch_id": epoch.epoch_id, "reason_code": reason_code, "actor_id": actor_id}
        )
        return ActionResult(
            case_id=case_id,
            action="unassign",
            epoch_id=None,
            previous_epoch_id=epoch.epoch_id,
            warnings=_repair_warnings(projection, epoch),
        )

    async def reassign(
        self,
        case_id: str,
        new_rn_id: str,
        reason_code: str,
        actor_id: str,
        reason_text: Optional[str] = None,
        expected_epoch_id: Optional[str] = None
    ) -> ActionResult:
        """
        Move the case to another RN under a new epoch.

        Appends REASSIGNED (old -> new) and then ASSIGNED; the new epoch is
        only recognized as open once the ASSIGNED lands.
        """
        text = _validate_reason(reason_code, reason_text, VALID_UNASSIGN_REASONS)
        case = await self._load_case(case_id)
        new_rn = await self._load_assignable_rn(new_rn_id)
        projection = await self._load_projection(case_id)
        _check_expected_epoch(projection, expected_epoch_id)

        if not projection.has_open_epoch and not case.assigned_rn_id:
            raise ConflictException("Case is not assigned; use assign", case_id=case_id)
        if new_rn.auth_user_id == case.assigned_rn_id:
            raise ValidationException("Case is already assigned to this RN")

        old_epoch = await self._repair.ensure_epoch(case, actor_id, projection)
        next_epoch_id = new_epoch_id()

        await self._set_pointer(case, new_rn.auth_user_id)

        reassigned_meta = {
            "governance": True,
            "epoch_id": old_epoch.epoch_id,
            "new_epoch_id": next_epoch_id,
            "previous_rn_id": old_epoch.assigned_rn_id,
            "new_rn_id": new_rn.auth_user_id,
            "assigned_rn_display": new_rn.display,
            "reason_code": reason_code,
        }
        if text:
            reassigned_meta["reason_text"] = text
        await self._append_after_update(case_id, "reassign", GovernanceAction.REASSIGNED, actor_id, reassigned_meta)

        await self._append_after_update(case_id, "reassign", GovernanceAction.ASSIGNED, actor_id, {
            "governance": True,
            "epoch_id": next_epoch_id,
            "assigned_rn_id": new_rn.auth_user_id,
            "assigned_rn_display": new_rn.display,
            "reason_code": AssignmentReason.REASSIGNMENT,
        })

        logger.info(
            "Case reassigned",
            extra={"case_id": case_id, "epoch_id": next_epoch_id, "previous_epoch_id": old_epoch.epoch_id,
                   "rn_id": new_rn.auth_user_id, "reason_code": reason_code, "actor_id": actor_id}
        )
        return ActionResult(
            case_id=case_id,
            action="reassign",
            epoch_id=next_epoch_id,
            previous_epoch_id=old_epoch.epoch_id,
            warnings=_repair_warnings(projection, old_epoch),
        )

    async def nudge(
        self,
        case_id: str,
        nudge_type: str,
        message: str,
        actor_id: str,
        expected_epoch_id: Optional[str] = None
    ) -> ActionResult:
        """Record an advisory nudge to the assigned RN. No state transition."""
        if nudge_type not in VALID_NUDGE_TYPES:
            raise ValidationException(f"Unknown nudge type '{nudge_type}'", {"allowed": VALID_NUDGE_TYPES})
        text = (message or "").strip()
        if not NUDGE_MESSAGE_MIN_LENGTH <= len(text) <= NUDGE_MESSAGE_MAX_LENGTH:
            raise ValidationException(
                f"Nudge message must be {NUDGE_MESSAGE_MIN_LENGTH}-{NUDGE_MESSAGE_MAX_LENGTH} characters",
                {"length": len(text)}
            )

        case = await self._load_case(case_id)
        projection = await self._load_projection(case_id)
        _check_expected_epoch(projection, expected_epoch_id)
        if not projection.has_open_epoch and not case.assigned_rn_id:
            raise ConflictException("Case has no open assignment to nudge", case_id=case_id)

        epoch = await self._repair.ensure_epoch(case, actor_id, projection)
        await self._events.append(
            case_id, GovernanceAction.NUDGED, actor_id, ActorRole.SUPERVISOR,
            {
                "governance": True,
                "epoch_id": epoch.epoch_id,
                "assigned_rn_id": epoch.assigned_rn_id,
                "nudge_type": nudge_type,
                "message": text,
            },
            ts=self._clock(),
        )

        logger.info(
            "RN nudged",
            extra={"case_id": case_id, "epoch_id": epoch.epoch_id, "nudge_type": nudge_type, "actor_id": actor_id}
        )
        return ActionResult(
            case_id=case_id, action="nudge", epoch_id=epoch.epoch_id,
            warnings=_repair_warnings(projection, epoch),
        )

    async def record_ack_sent(
        self,
        case_id: str,
        sender_id: str,
        sender_role: str,
        channels: List[str],
        expected_epoch_id: Optional[str] = None
    ) -> ActionResult:
        """Record that the client/attorney acknowledgment went out; clears the case."""
        if sender_role not in VALID_ACK_SENDER_ROLES:
            raise ValidationException(f"Unknown sender role '{sender_role}'", {"allowed": VALID_ACK_SENDER_ROLES})
        sent_to = [c.strip() for c in channels or [] if c and c.strip()]
        if not sent_to:
            raise ValidationException("At least one recipient channel is required")

        await self._load_case(case_id)
        projection = await self._load_projection(case_id)
        _check_expected_epoch(projection, expected_epoch_id)

        if sender_role == ActorRole.RN and projection.assigned_rn_id != sender_id:
            logger.info(
                "Acknowledgment from unassigned RN ignored",
                extra={"case_id": case_id, "rn_id": sender_id}
            )
            return ActionResult(
                case_id=case_id,
                action="ack_sent",
                epoch_id=projection.epoch.epoch_id if projection.has_open_epoch else None,
                outcome=OUTCOME_NO_LONGER_ACTIVE,
            )

        if not isinstance(projection.status, AcceptedAwaitingNotification):
            raise ConflictException(
                f"Acknowledgment requires an accepted assignment awaiting notification (current: {projection.state})",
                case_id=case_id,
                expected_epoch_id=expected_epoch_id,
                current_epoch_id=projection.epoch.epoch_id if projection.epoch else None,
            )

        epoch = projection.epoch
        await self._events.append(
            case_id, GovernanceAction.ACK_SENT, sender_id, sender_role,
            {
                "governance": True,
                "epoch_id": epoch.epoch_id,
                "assigned_rn_id": epoch.assigned_rn_id,
                "sent_by_role": sender_role,
                "sent_to": sent_to,
            },
            ts=self._clock(),
        )

        logger.info(
            "Acknowledgment recorded",
            extra={"case_id": case_id, "epoch_id": epoch.epoch_id, "sender_role": sender_role}
        )
        return ActionResult(case_id=case_id, action="ack_sent", epoch_id=epoch.epoch_id)


class RNResponseService:
    """
    RN-side acceptance and decline.

    Writes are conditional: a response is only appended when the epoch is
    still the open one for that RN and has no earlier ACCEPTED/DECLINED. A
    stale response is reported back as an outcome, not raised.
    """

    OUTCOME_RECORDED = OUTCOME_RECORDED
    OUTCOME_NO_LONGER_ACTIVE = OUTCOME_NO_LONGER_ACTIVE
    OUTCOME_ALREADY_RESPONDED = OUTCOME_ALREADY_RESPONDED

    def __init__(
        self,
        case_repository: ICaseRepository,
        event_repository: IGovernanceEventRepository,
        lifecycle_service: LifecycleService,
        clock: Clock = utc_now
    ):
        self._cases = case_repository
        self._events = event_repository
        self._lifecycle = lifecycle_service
        self._clock = clock

    async def accept(self, case_id: str, rn_id: str, epoch_id: str) -> ActionResult:
        return await self._respond(case_id, rn_id, epoch_id, GovernanceAction.ACCEPTED, {})

    async def decline(
        self,
        case_id: str,
        rn_id: str,
        epoch_id: str,
        reason_code: str,
        reason_text: Optional[str] = None
    ) -> ActionResult:
        text = _validate_reason(reason_code, reason_text, VALID_DECLINE_REASONS)
        extra = {"reason_code": reason_code}
        if text:
            extra["reason_text"] = text
        return await self._respond(case_id, rn_id, epoch_id, GovernanceAction.DECLINED, extra)

    async def _respond(
        self,
        case_id: str,
        rn_id: str,
        epoch_id: str,
        action: str,
        extra: dict
    ) -> ActionResult:
        operation = "accept" if action == GovernanceAction.ACCEPTED else "decline"
        await _load_eligible_case(self._cases, case_id)

        events = await self._events.list([case_id], GOVERNANCE_ACTIONS)
        projection = LifecycleReconstructor.reconstruct(case_id, events)

        current = projection.open_epoch
        if current is None or current.epoch_id != epoch_id or current.assigned_rn_id != rn_id:
            logger.info(
                "Stale RN response ignored",
                extra={"case_id": case_id, "epoch_id": epoch_id, "rn_id": rn_id, "action": action}
            )
            return ActionResult(
                case_id=case_id, action=operation, epoch_id=epoch_id,
                outcome=self.OUTCOME_NO_LONGER_ACTIVE,
            )

        if LifecycleReconstructor.has_response(events, epoch_id):
            return ActionResult(
                case_id=case_id, action=operation, epoch_id=epoch_id,
                outcome=self.OUTCOME_ALREADY_RESPONDED,
            )

        metadata = {"governance": True, "epoch_id": epoch_id, "assigned_rn_id": rn_id, **extra}
        await self._events.append(case_id, action, rn_id, ActorRole.RN, metadata, ts=self._clock())

        logger.info(
            "RN response recorded",
            extra={"case_id": case_id, "epoch_id": epoch_id, "rn_id": rn_id, "action": action}
        )
        return ActionResult(case_id=case_id, action=operation, epoch_id=epoch_id)

    async def assert_acceptance_gate(self, case_id: str, rn_id: str) -> LifecycleProjection:
        """Raise unless the RN's current assignment is accepted."""
        projection = await self._lifecycle.projection(case_id)
        _require_determinate(projection)

        if not projection.has_open_epoch or projection.assigned_rn_id != rn_id:
            raise ValidationException("No assignment event found for this case. Contact your supervisor.")
        if isinstance(projection.status, PendingAcceptance):
            raise ValidationException(
                "Assignment acceptance required: Please accept this assignment before performing clinical actions."
            )
        if isinstance(projection.status, Declined):
            raise ValidationException(
                "This assignment was declined. Contact your supervisor for reassignment."
            )
        return projection


class OutreachSLATracker:
    """
    Deadline clock for the RN's first client outreach attempt.

    Tracks attempted outreach only, not successful contact.
    """

    def __init__(
        self,
        case_repository: ICaseRepository,
        outreach_repository: IOutreachRepository,
        lifecycle_service: LifecycleService,
        policy_provider: ISLAPolicyProvider,
        clock: Clock = utc_now
    ):
        self._cases = case_repository
        self._outreach = outreach_repository
        self._lifecycle = lifecycle_service
        self._policy_provider = policy_provider
        self._clock = clock

    async def record_attempt(
        self,
        case_id: str,
        rn_id: str,
        channel: str,
        note: Optional[str] = None,
        attempted_at: Optional[datetime] = None
    ) -> OutreachAttempt:
        if channel not in VALID_OUTREACH_CHANNELS:
            raise ValidationException(f"Unknown outreach channel '{channel}'", {"allowed": VALID_OUTREACH_CHANNELS})
        note = (note or "").strip() or None
        if note and len(note) > OUTREACH_NOTE_MAX_LENGTH:
            raise ValidationException(f"Note must be at most {OUTREACH_NOTE_MAX_LENGTH} characters")

        now = self._clock()
        if attempted_at is not None:
            if attempted_at.tzinfo is None:
                attempted_at = attempted_at.replace(tzinfo=timezone.utc)
            if attempted_at > now:
                raise ValidationException("Outreach attempt time cannot be in the future")

        case = await _load_eligible_case(self._cases, case_id)
        if case.assigned_rn_id != rn_id:
            raise ValidationException("RN is not assigned to this case")

        attempted_at = attempted_at or now
        attempt = await self._outreach.record(OutreachAttempt(
            case_id=case_id,
            rn_id=rn_id,
            channel=channel,
            attempted_at=attempted_at,
            note=note,
            recorded_at=now,
            within_window=await self._within_window(case, attempted_at),
        ))
        logger.info(
            "Outreach attempt recorded",
            extra={"case_id": case_id, "rn_id": rn_id, "channel": channel}
        )
        return attempt

    @staticmethod
    def _tracks(case: CaseRecord, projection: LifecycleProjection) -> bool:
        return bool(case.assigned_rn_id) and projection.has_open_epoch and (
            projection.assigned_rn_id == case.assigned_rn_id
        )

    @staticmethod
    def _anchor(projection: LifecycleProjection) -> datetime:
        return projection.accepted_at or projection.epoch.assigned_at

    async def _within_window(self, case: CaseRecord, attempted_at: datetime) -> Optional[bool]:
        """Whether the attempt lands inside the window in force right now; None when unknown."""
        projection = await self._lifecycle.projection(case.id)
        if not self._tracks(case, projection):
            return None
        deadline = SLACalculator.outreach_deadline(self._anchor(projection), self._policy_provider.get_policy())
        return projection.epoch.assigned_at <= attempted_at <= deadline

    async def _status_for(self, case: CaseRecord, projection: LifecycleProjection) -> SLAStatus:
        not_applicable = SLAStatus(obligation=SLAType.OUTREACH, state=SLAState.NOT_APPLICABLE)
        if not self._tracks(case, projection):
            return not_applicable

        attempts = await self._outreach.list_for_case(case.id, rn_id=case.assigned_rn_id)
        return SLACalculator.evaluate_outreach(
            self._anchor(projection),
            attempts,
            self._clock(),
            self._policy_provider.get_policy(),
            window_start=projection.epoch.assigned_at,
        )

    async def status(self, case_id: str) -> SLAStatus:
        case = await self._cases.get(case_id)
        if case is None:
            raise ResourceNotFoundException("Case", case_id)
        projection = await self._lifecycle.projection(case_id)
        return await self._status_for(case, projection)

    async def list_statuses(self) -> List[OutreachRow]:
        """Tracker rows for every active case with an assigned RN."""
        cases = [c for c in await self._cases.list_active_cases() if c.assigned_rn_id]
        projections = await self._lifecycle.projections([c.id for c in cases])
        rows = []
        for case in cases:
            projection = projections[case.id]
            rows.append(OutreachRow(
                case=case,
                lifecycle_state=projection.state,
                sla=await self._status_for(case, projection),
            ))
        return rows


class ReconciliationService:
    """
    Brings the event log back in line with the assignment pointer.

    Runs reactively through the gateway (``ensure_epoch``) and, when enabled,
    proactively from the background scheduler. Indeterminate cases are never
    touched.
    """

    def __init__(
        self,
        case_repository: ICaseRepository,
        event_repository: IGovernanceEventRepository,
        lifecycle_service: LifecycleService,
        repair_service: LegacyRepairService,
        clock: Clock = utc_now
    ):
        self._cases = case_repository
        self._events = event_repository
        self._lifecycle = lifecycle_service
        self._repair = repair_service
        self._clock = clock

    async def reconcile_case(self, case: CaseRecord, projection: Optional[LifecycleProjection] = None) -> Optional[str]:
        """
        Reconcile one case.

        Returns:
            "repaired", "closed", "skipped" or None when nothing was needed
        """
        if projection is None:
            projection = await self._lifecycle.projection(case.id)
        if projection.is_indeterminate:
            return "skipped"

        if LegacyRepairService.needs_repair(case, projection):
            await self._repair.repair(case, SYSTEM_ACTOR_ID, ActorRole.SYSTEM)
            return "repaired"

        if case.assigned_rn_id is None and projection.has_open_epoch:
            epoch = projection.open_epoch
            await self._events.append(
                case.id, GovernanceAction.UNASSIGNED, SYSTEM_ACTOR_ID, ActorRole.SYSTEM,
                {
                    "governance": True,
                    "epoch_id": epoch.epoch_id,
                    "assigned_rn_id": epoch.assigned_rn_id,
                    "reason_code": UnassignReason.LEGACY_REPAIR,
                    "reason_text": ORPHAN_EPOCH_NOTE,
                },
                ts=self._clock(),
            )
            logger.info(
                "Orphaned epoch closed",
                extra={"case_id": case.id, "epoch_id": epoch.epoch_id}
            )
            return "closed"

        return None

    async def reconcile_all(self) -> ReconciliationReport:
        report = ReconciliationReport()
        cases = await self._cases.list_active_cases()
        projections = await self._lifecycle.projections([c.id for c in cases])

        for case in cases:
            report.checked += 1
            try:
                outcome = await self.reconcile_case(case, projections[case.id])
            except RepositoryException as e:
                report.failed += 1
                report.failures.append(case.id)
                logger.warning(
                    "Reconciliation failed for case",
                    extra={"case_id": case.id, "error": e.message}
                )
                continue
            if outcome == "repaired":
                report.repaired += 1
            elif outcome == "closed":
                report.closed += 1
            elif outcome == "skipped":
                report.skipped += 1

        logger.info(
            "Reconciliation pass complete",
            extra={"checked": report.checked, "repaired": report.repaired, "closed": report.closed,
                   "skipped": report.skipped, "failed": report.failed}
        )
        return report
