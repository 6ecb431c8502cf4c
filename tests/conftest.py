"""
Pytest configuration and shared fixtures.

Puts src/ on the import path and provides in-memory repositories with
failure switches, a frozen clock and fully wired governance services.
"""

import sys
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

# Add src to path before any project import
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

import pytest

from config import ActorRole, GovernanceAction
from core import StoreUnavailableException
from governance.application import (
    ICaseRepository,
    IGovernanceEventRepository,
    IOutreachRepository,
    IRNRepository,
    ISLAPolicyProvider,
    LegacyRepairService,
    LifecycleService,
    OutreachSLATracker,
    ReconciliationService,
    RNResponseService,
    SupervisorActionGateway,
)
from governance.domain import (
    CaseRecord,
    GovernanceEvent,
    OutreachAttempt,
    RNRecord,
    SLAPolicy,
    new_epoch_id,
)


# Monday 2024-01-15 09:00 America/Chicago (CST, UTC-6)
MONDAY_9AM = datetime(2024, 1, 15, 15, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = MONDAY_9AM):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StaticPolicyProvider(ISLAPolicyProvider):
    def __init__(self, policy: Optional[SLAPolicy] = None):
        self.policy = policy or SLAPolicy()

    def get_policy(self) -> SLAPolicy:
        return self.policy


class InMemoryCaseRepository(ICaseRepository):
    def __init__(self):
        self.cases: Dict[str, CaseRecord] = {}
        self.fail_reads = False
        self.fail_writes = False
        # Simulates another writer moving the pointer right before our write
        self.interfere_with: Optional[str] = None
        self.cas_calls: List[tuple] = []

    def add(self, case: CaseRecord) -> CaseRecord:
        self.cases[case.id] = case
        return case

    async def get(self, case_id: str) -> Optional[CaseRecord]:
        if self.fail_reads:
            raise StoreUnavailableException("row store down")
        case = self.cases.get(case_id)
        return replace(case) if case else None

    async def compare_and_set_assigned_rn(self, case_id, expected_rn_id, new_rn_id):
        self.cas_calls.append((case_id, expected_rn_id, new_rn_id))
        if self.fail_writes:
            raise StoreUnavailableException("row store down")
        case = self.cases.get(case_id)
        if case is None:
            return None
        if self.interfere_with is not None:
            case.assigned_rn_id = self.interfere_with
            self.interfere_with = None
        if case.assigned_rn_id != expected_rn_id:
            return None
        case.assigned_rn_id = new_rn_id
        return replace(case)

    async def list_active_cases(self) -> List[CaseRecord]:
        if self.fail_reads:
            raise StoreUnavailableException("row store down")
        return [replace(c) for c in self.cases.values() if c.is_active]


class InMemoryRNRepository(IRNRepository):
    def __init__(self):
        self.rns: Dict[str, RNRecord] = {}

    def add(self, rn: RNRecord) -> RNRecord:
        self.rns[rn.auth_user_id] = rn
        return rn

    async def get_by_auth_user_id(self, auth_user_id: str) -> Optional[RNRecord]:
        return self.rns.get(auth_user_id)

    async def list_assignable(self) -> List[RNRecord]:
        return [rn for rn in self.rns.values() if rn.is_assignable]


class InMemoryEventRepository(IGovernanceEventRepository):
    """Event log fake. Event ids increase with append order so same-instant ties are stable."""

    def __init__(self, clock: FrozenClock):
        self.events: List[GovernanceEvent] = []
        self._clock = clock
        self._seq = 0
        self.fail_reads = False
        self.fail_appends = False
        self.fail_actions: set = set()

    async def append(self, case_id, action, actor_id, actor_role, metadata, ts=None) -> GovernanceEvent:
        if self.fail_appends or action in self.fail_actions:
            raise StoreUnavailableException("event log down")
        self._seq += 1
        event = GovernanceEvent(
            event_id=f"evt-{self._seq:06d}",
            case_id=case_id,
            action=action,
            actor_id=actor_id,
            actor_role=actor_role,
            created_at=ts or self._clock(),
            metadata=dict(metadata),
        )
        self.events.append(event)
        return event

    async def list(self, case_ids: Iterable[str], actions=None) -> List[GovernanceEvent]:
        if self.fail_reads:
            raise StoreUnavailableException("event log down")
        case_ids = set(case_ids)
        selected = [
            e for e in self.events
            if e.case_id in case_ids and (actions is None or e.action in actions)
        ]
        return sorted(selected, key=lambda e: (e.created_at, e.event_id), reverse=True)

    def for_case(self, case_id: str, action: Optional[str] = None) -> List[GovernanceEvent]:
        return [e for e in self.events if e.case_id == case_id and (action is None or e.action == action)]

    def seed(self, case_id, action, created_at, actor_role=ActorRole.SUPERVISOR, **metadata) -> GovernanceEvent:
        """Insert a historical event directly."""
        self._seq += 1
        event = GovernanceEvent(
            event_id=f"evt-{self._seq:06d}",
            case_id=case_id,
            action=action,
            actor_id="seed",
            actor_role=actor_role,
            created_at=created_at,
            metadata={"governance": True, **metadata},
        )
        self.events.append(event)
        return event


class InMemoryOutreachRepository(IOutreachRepository):
    def __init__(self):
        self.attempts: List[OutreachAttempt] = []

    async def record(self, attempt: OutreachAttempt) -> OutreachAttempt:
        attempt.attempt_id = f"att-{len(self.attempts) + 1}"
        self.attempts.append(attempt)
        return attempt

    async def list_for_case(self, case_id: str, rn_id: Optional[str] = None) -> List[OutreachAttempt]:
        return sorted(
            (a for a in self.attempts if a.case_id == case_id and (rn_id is None or a.rn_id == rn_id)),
            key=lambda a: a.attempted_at,
        )


@dataclass
class Governance:
    """Everything a service-level test needs, wired over the fakes."""
    clock: FrozenClock
    policy: StaticPolicyProvider
    cases: InMemoryCaseRepository
    rns: InMemoryRNRepository
    events: InMemoryEventRepository
    outreach_log: InMemoryOutreachRepository
    lifecycle: LifecycleService
    repair: LegacyRepairService
    gateway: SupervisorActionGateway
    responses: RNResponseService
    outreach: OutreachSLATracker
    reconciliation: ReconciliationService

    def seed_assignment(self, case_id: str, rn_id: str, at: Optional[datetime] = None, **extra) -> str:
        """Historical ASSIGNED event plus matching pointer; returns the epoch id."""
        epoch_id = new_epoch_id()
        self.events.seed(
            case_id,
            GovernanceAction.ASSIGNED,
            at or self.clock(),
            epoch_id=epoch_id,
            assigned_rn_id=rn_id,
            assigned_rn_display={"rn_id": rn_id.upper(), "full_name": f"Nurse {rn_id}"},
            reason_code="initial_assignment",
            **extra,
        )
        self.cases.cases[case_id].assigned_rn_id = rn_id
        return epoch_id


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def governance(clock) -> Governance:
    cases = InMemoryCaseRepository()
    rns = InMemoryRNRepository()
    events = InMemoryEventRepository(clock)
    outreach_log = InMemoryOutreachRepository()
    policy = StaticPolicyProvider()

    for case_id in ("case-1", "case-2", "case-3"):
        cases.add(CaseRecord(id=case_id, case_number=f"RC-{case_id[-1]}", status="active"))

    rns.add(RNRecord(auth_user_id="rn-a", rn_id="RN-A", full_name="Alice Adams"))
    rns.add(RNRecord(auth_user_id="rn-b", rn_id="RN-B", full_name="Bo Brown"))
    rns.add(RNRecord(auth_user_id="rn-inactive", rn_id="RN-X", full_name="Ina Active", is_active=False))
    rns.add(RNRecord(auth_user_id="sup-1", rn_id="SUP-1", full_name="Sam Super", is_supervisor=True))

    lifecycle = LifecycleService(events, cases, policy, clock)
    repair = LegacyRepairService(events, rns, lifecycle, clock)
    return Governance(
        clock=clock,
        policy=policy,
        cases=cases,
        rns=rns,
        events=events,
        outreach_log=outreach_log,
        lifecycle=lifecycle,
        repair=repair,
        gateway=SupervisorActionGateway(cases, rns, events, lifecycle, repair, clock),
        responses=RNResponseService(cases, events, lifecycle, clock),
        outreach=OutreachSLATracker(cases, outreach_log, lifecycle, policy, clock),
        reconciliation=ReconciliationService(cases, events, lifecycle, repair, clock),
    )
