"""
Governance Value Objects
========================

Immutable value objects and pure deadline math.

- SLAPolicy: the configurable obligation windows (loaded from YAML)
- BusinessCalendar: end-of-business-day arithmetic in the org time zone
- SLACalculator: timestamps in, due/met/breached out

Nothing here reads a clock or a store; callers pass ``now``.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from config import SLAState, SLAType
from governance.domain.entities import (
    AcceptedAwaitingNotification,
    Cleared,
    LifecycleProjection,
    OutreachAttempt,
    PendingAcceptance,
    SLAStatus,
)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC, the event log's storage zone."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SLAPolicy(BaseModel):
    """
    SLA policy loaded from YAML.

    Acceptance runs on the wall clock; notification and outreach must land
    inside a business day that closes at ``business_day_end`` in ``timezone``.
    """
    acceptance_sla_hours: float = Field(default=8, gt=0, description="Hours to accept an assignment")
    notification_sla_hours: float = Field(default=4, gt=0, description="Hours to notify client and attorney after acceptance")
    outreach_sla_hours: float = Field(default=4, gt=0, description="Hours to attempt first client outreach")
    business_day_end: str = Field(default="17:00", description="Local close of business, HH:MM")
    timezone: str = Field(default="America/Chicago", description="Org time zone (IANA name)")

    @field_validator("business_day_end")
    @classmethod
    def validate_business_day_end(cls, v: str) -> str:
        """Require a 24h HH:MM clock time."""
        try:
            datetime.strptime(v, "%H:%M")
        except ValueError:
            raise ValueError("business_day_end must be HH:MM (24h)")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown time zone: {v}")
        return v

    @property
    def close_time(self) -> time:
        return datetime.strptime(self.business_day_end, "%H:%M").time()

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class BusinessCalendar:
    """End-of-business-day arithmetic. Business days are Monday to Friday."""

    def __init__(self, policy: SLAPolicy):
        self._tz = policy.tzinfo
        self._close = policy.close_time

    @staticmethod
    def is_business_day(day: date) -> bool:
        return day.weekday() < 5

    def next_business_day(self, day: date) -> date:
        """First business day strictly after ``day``."""
        candidate = day + timedelta(days=1)
        while not self.is_business_day(candidate):
            candidate += timedelta(days=1)
        return candidate

    def close_on(self, day: date) -> datetime:
        """Close of business on ``day`` as an aware local datetime."""
        return datetime.combine(day, self._close, tzinfo=self._tz)

    def business_deadline(self, anchor: datetime, hours: float) -> datetime:
        """
        Deadline for an obligation that must land within business hours.

        If the anchor is on a business day, before close, and the window fits
        before that day's close, the deadline is anchor + hours. Otherwise it
        rolls to the close of the next business day.

        The roll applies on every weekday, not only Fridays: a window that
        would cross close is never cut short at close. That gives the RN the
        next business day, which is the same rule that turns Friday 16:00
        into Monday 17:00. Capping at the anchor day's close instead would
        leave an hour-long window on a Friday afternoon.

        Example:
            Friday 10:00 + 4h -> Friday 14:00
            Monday 14:00 + 4h -> Tuesday 17:00
            Friday 16:00 + 4h -> Monday 17:00
            Saturday 09:00    -> Monday 17:00
        """
        anchor = ensure_aware(anchor)
        local = anchor.astimezone(self._tz)
        day = local.date()
        window_end = anchor + timedelta(hours=hours)

        if self.is_business_day(day):
            close = self.close_on(day)
            if local < close and window_end <= close:
                return window_end.astimezone(timezone.utc)

        return self.close_on(self.next_business_day(day)).astimezone(timezone.utc)


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless; every input is a timestamp or a projection, so results are
    identical however often they are recomputed.
    """

    @staticmethod
    def acceptance_deadline(assigned_at: Optional[datetime], policy: SLAPolicy) -> Optional[datetime]:
        if assigned_at is None:
            return None
        return ensure_aware(assigned_at) + timedelta(hours=policy.acceptance_sla_hours)

    @staticmethod
    def notification_deadline(accepted_at: Optional[datetime], policy: SLAPolicy) -> Optional[datetime]:
        if accepted_at is None:
            return None
        return BusinessCalendar(policy).business_deadline(accepted_at, policy.notification_sla_hours)

    @staticmethod
    def outreach_deadline(anchor: Optional[datetime], policy: SLAPolicy) -> Optional[datetime]:
        if anchor is None:
            return None
        return BusinessCalendar(policy).business_deadline(anchor, policy.outreach_sla_hours)

    @staticmethod
    def calculate_status(
        obligation: str,
        anchor: Optional[datetime],
        deadline: Optional[datetime],
        current_time: datetime,
        met_at: Optional[datetime] = None,
        last_attempt_at: Optional[datetime] = None
    ) -> SLAStatus:
        """
        Classify one obligation.

        Args:
            obligation: SLAType value
            anchor: When the clock started (None -> not_applicable)
            deadline: When the obligation is due (None -> not_applicable)
            current_time: Evaluation time
            met_at: When the meeting event happened, if it has

        Returns:
            SLAStatus; due while current_time <= deadline, breached after
        """
        anchor = ensure_aware(anchor)
        deadline = ensure_aware(deadline)
        if anchor is None or deadline is None:
            return SLAStatus(obligation=obligation, state=SLAState.NOT_APPLICABLE)

        if met_at is not None:
            return SLAStatus(
                obligation=obligation,
                state=SLAState.MET,
                anchor=anchor,
                deadline=deadline,
                met_at=ensure_aware(met_at),
                last_attempt_at=last_attempt_at,
            )

        remaining = (deadline - ensure_aware(current_time)).total_seconds()
        if remaining >= 0:
            return SLAStatus(
                obligation=obligation,
                state=SLAState.DUE,
                anchor=anchor,
                deadline=deadline,
                remaining_seconds=remaining,
                last_attempt_at=last_attempt_at,
            )
        return SLAStatus(
            obligation=obligation,
            state=SLAState.BREACHED,
            anchor=anchor,
            deadline=deadline,
            overdue_seconds=-remaining,
            last_attempt_at=last_attempt_at,
        )

    @classmethod
    def evaluate_acceptance(
        cls,
        projection: LifecycleProjection,
        current_time: datetime,
        policy: SLAPolicy
    ) -> SLAStatus:
        """Acceptance is met by any ACCEPTED, however late; declined or closed epochs are not applicable."""
        status = projection.status
        if not isinstance(status, (PendingAcceptance, AcceptedAwaitingNotification, Cleared)):
            return SLAStatus(obligation=SLAType.ACCEPTANCE, state=SLAState.NOT_APPLICABLE)

        assigned_at = projection.epoch.assigned_at
        return cls.calculate_status(
            SLAType.ACCEPTANCE,
            assigned_at,
            cls.acceptance_deadline(assigned_at, policy),
            current_time,
            met_at=projection.accepted_at,
        )

    @classmethod
    def evaluate_notification(
        cls,
        projection: LifecycleProjection,
        current_time: datetime,
        policy: SLAPolicy
    ) -> SLAStatus:
        """Notification starts at acceptance and is met by ACK_SENT."""
        if not isinstance(projection.status, (AcceptedAwaitingNotification, Cleared)):
            return SLAStatus(obligation=SLAType.NOTIFICATION, state=SLAState.NOT_APPLICABLE)

        accepted_at = projection.accepted_at
        return cls.calculate_status(
            SLAType.NOTIFICATION,
            accepted_at,
            cls.notification_deadline(accepted_at, policy),
            current_time,
            met_at=projection.ack_sent_at,
        )

    @classmethod
    def evaluate_outreach(
        cls,
        anchor: Optional[datetime],
        attempts: Iterable[OutreachAttempt],
        current_time: datetime,
        policy: SLAPolicy,
        window_start: Optional[datetime] = None
    ) -> SLAStatus:
        """
        Outreach is met by the first attempt inside [window_start, deadline].

        ``window_start`` is the start of the epoch and defaults to the anchor.
        Acceptance moves the anchor (and so the deadline) later, never the
        window start. An attempt recorded as inside the window it was logged
        against keeps counting after a policy change shortens the window.
        Attempts are append-only, so once met the status stays met.
        """
        anchor = ensure_aware(anchor)
        deadline = cls.outreach_deadline(anchor, policy)
        if anchor is None or deadline is None:
            return SLAStatus(obligation=SLAType.OUTREACH, state=SLAState.NOT_APPLICABLE)
        start = ensure_aware(window_start) or anchor

        counted = sorted(
            (a for a in attempts if a.attempted_at is not None and ensure_aware(a.attempted_at) >= start),
            key=lambda a: ensure_aware(a.attempted_at),
        )
        meeting = [
            ensure_aware(a.attempted_at) for a in counted
            if a.within_window or ensure_aware(a.attempted_at) <= deadline
        ]

        return cls.calculate_status(
            SLAType.OUTREACH,
            anchor,
            deadline,
            current_time,
            met_at=meeting[0] if meeting else None,
            last_attempt_at=ensure_aware(counted[-1].attempted_at) if counted else None,
        )
