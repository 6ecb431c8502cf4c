"""
Governance Application Layer
============================

Application layer for RN assignment governance.

Contains:
- Services: lifecycle reads, legacy repair, supervisor actions, RN responses,
  outreach tracking and reconciliation
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from governance.application.services import (
    CaseOverview,
    DashboardSummary,
    ICaseRepository,
    IGovernanceEventRepository,
    IOutreachRepository,
    IRNRepository,
    ISLAPolicyProvider,
    LegacyRepairService,
    LifecycleService,
    OutreachRow,
    OutreachSLATracker,
    ReconciliationReport,
    ReconciliationService,
    RNResponseService,
    SupervisorActionGateway,
    SYSTEM_ACTOR_ID,
    utc_now,
)

__all__ = [
    # Services
    "LifecycleService",
    "LegacyRepairService",
    "SupervisorActionGateway",
    "RNResponseService",
    "OutreachSLATracker",
    "ReconciliationService",
    # Read models
    "CaseOverview",
    "DashboardSummary",
    "OutreachRow",
    "ReconciliationReport",
    # Repository Interfaces
    "ICaseRepository",
    "IRNRepository",
    "IGovernanceEventRepository",
    "IOutreachRepository",
    "ISLAPolicyProvider",
    "SYSTEM_ACTOR_ID",
    "utc_now",
]
