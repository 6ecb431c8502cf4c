"""
Governance Infrastructure Repositories
======================================

Concrete implementations of the repository interfaces using SQLAlchemy.

Every write commits on its own. The gateway relies on this: a pointer update
must stay committed even when the audit append that follows it fails.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import INACTIVE_CASE_STATUSES
from governance.application import (
    ICaseRepository,
    IGovernanceEventRepository,
    IOutreachRepository,
    IRNRepository,
)
from governance.domain import CaseRecord, GovernanceEvent, OutreachAttempt, RNRecord
from governance.domain.value_objects import ensure_aware
from governance.infrastructure.models import (
    CaseModel,
    GovernanceEventModel,
    OutreachAttemptModel,
    RNModel,
)
from infrastructure.database import translate_db_errors


def _to_utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


def _case_from_row(row) -> CaseRecord:
    return CaseRecord(
        id=row.id,
        assigned_rn_id=row.assigned_rn_id,
        status=row.status,
        is_superseded=bool(row.is_superseded),
        case_number=row.case_number,
        created_at=ensure_aware(row.created_at),
        updated_at=ensure_aware(row.updated_at),
    )


class SQLAlchemyCaseRepository(ICaseRepository):
    """
    SQLAlchemy implementation of the case repository.

    Reads case rows and performs the conditional pointer update.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, case_id: str) -> Optional[CaseRecord]:
        """Get case by ID."""
        async with translate_db_errors("load case"):
            result = await self._session.execute(
                select(CaseModel)
                .where(CaseModel.id == case_id)
                .execution_options(populate_existing=True)
            )
            model = result.scalar_one_or_none()
        return _case_from_row(model) if model else None

    async def compare_and_set_assigned_rn(
        self,
        case_id: str,
        expected_rn_id: Optional[str],
        new_rn_id: Optional[str]
    ) -> Optional[CaseRecord]:
        """
        Conditional pointer update.

        The WHERE clause carries the value the caller read, so a concurrent
        change makes this update match zero rows. Columns are read back from
        RETURNING for post-write verification.
        """
        if expected_rn_id is None:
            pointer_matches = CaseModel.assigned_rn_id.is_(None)
        else:
            pointer_matches = CaseModel.assigned_rn_id == expected_rn_id

        stmt = (
            update(CaseModel)
            .where(CaseModel.id == case_id, pointer_matches)
            .values(assigned_rn_id=new_rn_id, updated_at=datetime.now(timezone.utc))
            .returning(
                CaseModel.id,
                CaseModel.assigned_rn_id,
                CaseModel.status,
                CaseModel.is_superseded,
                CaseModel.case_number,
                CaseModel.created_at,
                CaseModel.updated_at,
            )
            .execution_options(synchronize_session=False)
        )

        async with translate_db_errors("update assignment pointer"):
            try:
                result = await self._session.execute(stmt)
                row = result.one_or_none()
                await self._session.commit()
            except Exception:
                await self._session.rollback()
                raise

        return _case_from_row(row) if row else None

    async def list_active_cases(self) -> List[CaseRecord]:
        """Non-superseded cases that are not closed or released."""
        stmt = (
            select(CaseModel)
            .where(
                CaseModel.is_superseded.is_(False),
                or_(
                    CaseModel.status.is_(None),
                    func.lower(CaseModel.status).not_in(INACTIVE_CASE_STATUSES),
                ),
            )
            .order_by(CaseModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        async with translate_db_errors("list active cases"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()
        return [_case_from_row(m) for m in models]


class SQLAlchemyRNRepository(IRNRepository):
    """Read-only RN roster."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: RNModel) -> RNRecord:
        return RNRecord(
            auth_user_id=model.auth_user_id,
            rn_id=model.rn_id,
            full_name=model.full_name,
            email=model.email,
            is_active=model.is_active,
            is_supervisor=model.is_supervisor,
        )

    async def get_by_auth_user_id(self, auth_user_id: str) -> Optional[RNRecord]:
        async with translate_db_errors("load RN"):
            result = await self._session.execute(
                select(RNModel).where(RNModel.auth_user_id == auth_user_id)
            )
            model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def list_assignable(self) -> List[RNRecord]:
        stmt = (
            select(RNModel)
            .where(RNModel.is_active.is_(True), RNModel.is_supervisor.is_(False))
            .order_by(RNModel.full_name.asc())
        )
        async with translate_db_errors("list RNs"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()
        return [self._to_domain(m) for m in models]


class SQLAlchemyGovernanceEventRepository(IGovernanceEventRepository):
    """
    Append-only governance event log.

    Handles persistence of GovernanceEvent facts.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: GovernanceEventModel) -> GovernanceEvent:
        return GovernanceEvent(
            event_id=str(model.id),
            case_id=model.case_id,
            action=model.action,
            actor_id=model.actor_id,
            actor_role=model.actor_role,
            created_at=ensure_aware(model.created_at),
            metadata=dict(model.meta or {}),
        )

    async def append(
        self,
        case_id: str,
        action: str,
        actor_id: Optional[str],
        actor_role: Optional[str],
        metadata: dict,
        ts: Optional[datetime] = None
    ) -> GovernanceEvent:
        """Append one event and commit it."""
        model = GovernanceEventModel(
            case_id=case_id,
            action=action,
            actor_id=actor_id,
            actor_role=actor_role,
            created_at=_to_utc(ts) if ts else datetime.now(timezone.utc),
            meta=dict(metadata),
        )

        async with translate_db_errors("append governance event"):
            try:
                self._session.add(model)
                await self._session.commit()
            except Exception:
                await self._session.rollback()
                raise

        return self._to_domain(model)

    async def list(
        self,
        case_ids: Iterable[str],
        actions: Optional[Iterable[str]] = None
    ) -> List[GovernanceEvent]:
        """Events for the given cases, newest first."""
        case_ids = list(case_ids)
        if not case_ids:
            return []

        stmt = select(GovernanceEventModel).where(GovernanceEventModel.case_id.in_(case_ids))
        if actions is not None:
            stmt = stmt.where(GovernanceEventModel.action.in_(list(actions)))
        stmt = stmt.order_by(GovernanceEventModel.created_at.desc())

        async with translate_db_errors("read governance events"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()
        return [self._to_domain(m) for m in models]


class SQLAlchemyOutreachRepository(IOutreachRepository):
    """Outreach attempt log."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: OutreachAttemptModel) -> OutreachAttempt:
        return OutreachAttempt(
            attempt_id=str(model.id),
            case_id=model.case_id,
            rn_id=model.rn_id,
            channel=model.channel,
            attempted_at=ensure_aware(model.attempted_at),
            note=model.note,
            recorded_at=ensure_aware(model.recorded_at),
            within_window=model.within_window,
        )

    async def record(self, attempt: OutreachAttempt) -> OutreachAttempt:
        model = OutreachAttemptModel(
            case_id=attempt.case_id,
            rn_id=attempt.rn_id,
            channel=attempt.channel,
            attempted_at=_to_utc(attempt.attempted_at),
            note=attempt.note,
            within_window=attempt.within_window,
            recorded_at=_to_utc(attempt.recorded_at) if attempt.recorded_at else datetime.now(timezone.utc),
        )

        async with translate_db_errors("record outreach attempt"):
            try:
                self._session.add(model)
                await self._session.commit()
            except Exception:
                await self._session.rollback()
                raise

        return self._to_domain(model)

    async def list_for_case(self, case_id: str, rn_id: Optional[str] = None) -> List[OutreachAttempt]:
        stmt = select(OutreachAttemptModel).where(OutreachAttemptModel.case_id == case_id)
        if rn_id is not None:
            stmt = stmt.where(OutreachAttemptModel.rn_id == rn_id)
        stmt = stmt.order_by(OutreachAttemptModel.attempted_at.asc())

        async with translate_db_errors("read outreach attempts"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()
        return [self._to_domain(m) for m in models]
