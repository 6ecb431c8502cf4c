"""
Governance Infrastructure Layer
===============================

Infrastructure implementations for RN assignment governance:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: SLA policy watcher and reconciliation scheduler
"""

from governance.infrastructure.models import (
    CaseModel,
    GovernanceEventModel,
    OutreachAttemptModel,
    RNModel,
)
from governance.infrastructure.repositories import (
    SQLAlchemyCaseRepository,
    SQLAlchemyGovernanceEventRepository,
    SQLAlchemyOutreachRepository,
    SQLAlchemyRNRepository,
)
from governance.infrastructure.external import (
    PolicyFileHandler,
    ReconciliationScheduler,
    SLAPolicyManager,
)

__all__ = [
    "CaseModel",
    "GovernanceEventModel",
    "OutreachAttemptModel",
    "RNModel",
    "SQLAlchemyCaseRepository",
    "SQLAlchemyGovernanceEventRepository",
    "SQLAlchemyOutreachRepository",
    "SQLAlchemyRNRepository",
    "PolicyFileHandler",
    "ReconciliationScheduler",
    "SLAPolicyManager",
]
