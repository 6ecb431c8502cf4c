"""
Governance Controllers (API Routes)
===================================

FastAPI routes for RN assignment governance.

Controllers are thin: they resolve the acting user, build services over a
request-scoped session and translate read models into DTOs. Application
exceptions are mapped to HTTP responses by the handlers in
``shared.api.middleware``.
"""

from dataclasses import dataclass
from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import ActorRole
from governance.application import (
    ISLAPolicyProvider,
    LegacyRepairService,
    LifecycleService,
    OutreachSLATracker,
    ReconciliationService,
    RNResponseService,
    SupervisorActionGateway,
    utc_now,
)
from governance.application.dto import (
    AcceptRequest,
    AckSentRequest,
    ActionResponse,
    AssignRequest,
    CaseOverviewResponse,
    DashboardResponse,
    DashboardSummaryResponse,
    DeclineRequest,
    NudgeRequest,
    OutreachAttemptRequest,
    OutreachAttemptResponse,
    OutreachSLAResponse,
    ReassignRequest,
    ReconciliationResponse,
    RNResponse,
    SLAStatusResponse,
    UnassignRequest,
)
from governance.domain import SLAPolicy
from governance.infrastructure import (
    SLAPolicyManager,
    SQLAlchemyCaseRepository,
    SQLAlchemyGovernanceEventRepository,
    SQLAlchemyOutreachRepository,
    SQLAlchemyRNRepository,
)
from infrastructure.database import get_session
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/governance", tags=["RN Governance"])


# ========== Example payloads for Swagger ==========

ACTION_RESPONSE_EXAMPLE = {
    "case_id": "8d0c8f0e-5b1a-4f43-9d3c-1f7d2a6b9e01",
    "action": "reassign",
    "outcome": "recorded",
    "epoch_id": "01929c4e-7a10-7c3e-9b2a-5d8e4f1a2b3c",
    "previous_epoch_id": "01929c2b-11f0-7a4d-8e5f-0a1b2c3d4e5f",
    "warnings": [],
    "refresh_required": False
}


# ========== Dependencies ==========

@dataclass
class Actor:
    """Acting user, resolved from request headers."""
    id: str
    role: str


async def get_actor(
    x_actor_id: str = Header(..., description="Auth user id of the acting user"),
    x_actor_role: str = Header(ActorRole.SUPERVISOR, description="supervisor or rn"),
) -> Actor:
    role = x_actor_role.strip().lower()
    if role not in (ActorRole.SUPERVISOR, ActorRole.RN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown actor role '{x_actor_role}'")
    return Actor(id=x_actor_id.strip(), role=role)


async def require_supervisor(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != ActorRole.SUPERVISOR:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Supervisor role required")
    return actor


async def require_rn(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != ActorRole.RN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="RN role required")
    return actor


def get_policy_provider(request: Request) -> ISLAPolicyProvider:
    """Policy manager loaded at startup; defaults when the app runs without lifespan."""
    manager = getattr(request.app.state, "policy_manager", None)
    if manager is None:
        manager = SLAPolicyManager(SLAPolicy())
    return manager


def get_clock():
    return utc_now


@dataclass
class GovernanceServices:
    lifecycle: LifecycleService
    repair: LegacyRepairService
    gateway: SupervisorActionGateway
    responses: RNResponseService
    outreach: OutreachSLATracker
    reconciliation: ReconciliationService


def build_services(session: AsyncSession, policy_provider: ISLAPolicyProvider, clock=utc_now) -> GovernanceServices:
    """Wire every governance service over one session."""
    cases = SQLAlchemyCaseRepository(session)
    rns = SQLAlchemyRNRepository(session)
    events = SQLAlchemyGovernanceEventRepository(session)
    outreach = SQLAlchemyOutreachRepository(session)

    lifecycle = LifecycleService(events, cases, policy_provider, clock)
    repair = LegacyRepairService(events, rns, lifecycle, clock)
    return GovernanceServices(
        lifecycle=lifecycle,
        repair=repair,
        gateway=SupervisorActionGateway(cases, rns, events, lifecycle, repair, clock),
        responses=RNResponseService(cases, events, lifecycle, clock),
        outreach=OutreachSLATracker(cases, outreach, lifecycle, policy_provider, clock),
        reconciliation=ReconciliationService(cases, events, lifecycle, repair, clock),
    )


async def get_services(
    session: AsyncSession = Depends(get_session),
    policy_provider: ISLAPolicyProvider = Depends(get_policy_provider),
    clock=Depends(get_clock),
) -> GovernanceServices:
    return build_services(session, policy_provider, clock)


def _overview_response(overview) -> CaseOverviewResponse:
    needs_repair = LegacyRepairService.needs_repair(overview.case, overview.projection)
    return CaseOverviewResponse.from_overview(overview, needs_repair=needs_repair)


# ========== Read Routes ==========

@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Supervisor queue",
    description="""
    Active cases that still need supervisor attention, with their lifecycle
    state and acceptance / notification SLA clocks.

    **Lifecycle states**: `unassigned`, `pending_acceptance`, `declined`,
    `accepted_awaiting_notification`, `indeterminate`. Cleared cases drop off
    the queue.

    **SLA states**: `not_applicable`, `due`, `met`, `breached`
    """
)
async def get_dashboard(
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_supervisor),
):
    rows, summary = await services.lifecycle.pending_queue()
    return DashboardResponse(
        cases=[_overview_response(row) for row in rows],
        summary=DashboardSummaryResponse(
            total_cases=summary.total_cases,
            state_counts=summary.state_counts,
            acceptance_breached=summary.acceptance_breached,
            notification_breached=summary.notification_breached,
            indeterminate=summary.indeterminate,
        ),
    )


@router.get(
    "/cases/{case_id}",
    response_model=CaseOverviewResponse,
    summary="Case lifecycle and SLA status",
    responses={404: {"description": "Case not found"}}
)
async def get_case(
    case_id: str,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    overview = await services.lifecycle.case_overview(case_id)
    return _overview_response(overview)


@router.get(
    "/cases/{case_id}/outreach-sla",
    response_model=SLAStatusResponse,
    summary="Outreach SLA for one case",
    responses={404: {"description": "Case not found"}}
)
async def get_outreach_sla(
    case_id: str,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    return SLAStatusResponse.from_domain(await services.outreach.status(case_id))


@router.get(
    "/outreach",
    response_model=List[OutreachSLAResponse],
    summary="Outreach tracker",
    description="Outreach SLA for every active case with an assigned RN."
)
async def list_outreach(
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_supervisor),
):
    rows = await services.outreach.list_statuses()
    return [
        OutreachSLAResponse(
            case_id=row.case.id,
            case_number=row.case.case_number,
            assigned_rn_id=row.case.assigned_rn_id,
            lifecycle_state=row.lifecycle_state,
            outreach_sla=SLAStatusResponse.from_domain(row.sla),
        )
        for row in rows
    ]


@router.get(
    "/rns",
    response_model=List[RNResponse],
    summary="Assignable RNs",
    description="Active, non-supervisor RNs a case can be assigned or reassigned to."
)
async def list_rns(
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_supervisor),
):
    return [RNResponse.from_domain(rn) for rn in await services.gateway.assignable_rns()]


# ========== Supervisor Action Routes ==========

@router.post(
    "/cases/{case_id}/assign",
    response_model=ActionResponse,
    summary="Assign an RN",
    description="""
    Assign an unassigned case (or re-staff a declined one) to an RN.

    Fails with 409 if the case already has an open, non-declined epoch; use
    `reassign` instead.
    """,
    responses={
        200: {"content": {"application/json": {"example": ACTION_RESPONSE_EXAMPLE}}},
        202: {"description": "Assignment recorded, audit append failed; refresh required"},
        404: {"description": "Case or RN not found / not eligible"},
        409: {"description": "Assignment changed concurrently"},
    }
)
async def assign_case(
    case_id: str,
    request: AssignRequest,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_supervisor),
):
    result = await services.gateway.assign(case_id, request.rn_id, actor.id)
    return ActionResponse.from_result(result)


@router.post(
    "/cases/{case_id}/unassign",
    response_model=ActionResponse,
    summary="Unassign the current RN",
    responses={409: {"description": "Stale epoch or already unassigned"}}
)
async def unassign_case(
    case_id: str,
    request: UnassignRequest,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_supervisor),
):
    result = await services.gateway.unassign(
        case_id,
        request.reason_code,
        actor.id,
        reason_text=request.reason_text,
        expected_epoch_id=request.expected_epoch_id,
    )
    return ActionResponse.from_result(result)


@router.post(
    "/cases/{case_id}/reassign",
    response_model=ActionResponse,
    summary="Reassign to another RN",
    responses={
        200: {"content": {"application/json": {"example": ACTION_RESPONSE_EXAMPLE}}},
        409: {"description": "Stale epoch or concurrent change"},
    }
)
async def reassign_case(
    case_id: str,
    request: ReassignRequest,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_supervisor),
):
    result = await services.gateway.reassign(
        case_id,
        request.new_rn_id,
        request.reason_code,
        actor.id,
        reason_text=request.reason_text,
        expected_epoch_id=request.expected_epoch_id,
    )
    return ActionResponse.from_result(result)


@router.post(
    "/cases/{case_id}/nudge",
    response_model=ActionResponse,
    summary="Nudge the assigned RN",
    description="Advisory only; records a NUDGED event and never changes lifecycle state."
)
async def nudge_rn(
    case_id: str,
    request: NudgeRequest,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_supervisor),
):
    result = await services.gateway.nudge(
        case_id,
        request.nudge_type,
        request.message,
        actor.id,
        expected_epoch_id=request.expected_epoch_id,
    )
    return ActionResponse.from_result(result)


@router.post(
    "/cases/{case_id}/ack-sent",
    response_model=ActionResponse,
    summary="Record client/attorney acknowledgment",
    responses={409: {"description": "Case is not accepted_awaiting_notification"}}
)
async def record_ack_sent(
    case_id: str,
    request: AckSentRequest,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.gateway.record_ack_sent(
        case_id,
        actor.id,
        actor.role,
        request.channels,
        expected_epoch_id=request.expected_epoch_id,
    )
    return ActionResponse.from_result(result)


# ========== RN Routes ==========

@router.post(
    "/cases/{case_id}/accept",
    response_model=ActionResponse,
    summary="Accept an assignment",
    description="""
    Accept the epoch the RN was shown. If that epoch is no longer the open one,
    nothing is written and `outcome` is `assignment_no_longer_active`.
    """
)
async def accept_assignment(
    case_id: str,
    request: AcceptRequest,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_rn),
):
    result = await services.responses.accept(case_id, actor.id, request.epoch_id)
    return ActionResponse.from_result(result)


@router.post(
    "/cases/{case_id}/decline",
    response_model=ActionResponse,
    summary="Decline an assignment"
)
async def decline_assignment(
    case_id: str,
    request: DeclineRequest,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_rn),
):
    result = await services.responses.decline(
        case_id,
        actor.id,
        request.epoch_id,
        request.reason_code,
        reason_text=request.reason_text,
    )
    return ActionResponse.from_result(result)


@router.post(
    "/cases/{case_id}/outreach-attempts",
    response_model=OutreachAttemptResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Log an outreach attempt"
)
async def record_outreach_attempt(
    case_id: str,
    request: OutreachAttemptRequest,
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_rn),
):
    attempt = await services.outreach.record_attempt(
        case_id,
        actor.id,
        request.channel,
        note=request.note,
        attempted_at=request.attempted_at,
    )
    return OutreachAttemptResponse(
        attempt_id=attempt.attempt_id,
        case_id=attempt.case_id,
        rn_id=attempt.rn_id,
        channel=attempt.channel,
        attempted_at=attempt.attempted_at,
        note=attempt.note,
    )


# ========== Maintenance ==========

@router.post(
    "/reconcile",
    response_model=ReconciliationResponse,
    summary="Run a reconciliation pass",
    description="Repairs missing epochs and closes epochs whose pointer was cleared without an event."
)
async def reconcile(
    services: GovernanceServices = Depends(get_services),
    actor: Actor = Depends(require_supervisor),
):
    report = await services.reconciliation.reconcile_all()
    return ReconciliationResponse(
        checked=report.checked,
        repaired=report.repaired,
        closed=report.closed,
        skipped=report.skipped,
        failed=report.failed,
        failures=report.failures,
    )


# Export router for inclusion in main app
governance_router = router
