"""Tests for SLA policy, business calendar and SLA calculator."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from config import SLAState, SLAType
from governance.domain import (
    AcceptedAwaitingNotification,
    AssignmentEpoch,
    BusinessCalendar,
    Cleared,
    Declined,
    LifecycleProjection,
    OutreachAttempt,
    PendingAcceptance,
    SLACalculator,
    SLAPolicy,
    Unassigned,
)

CHICAGO = ZoneInfo("America/Chicago")


def local(*args) -> datetime:
    return datetime(*args, tzinfo=CHICAGO)


def projection(status, assigned_at):
    epoch = AssignmentEpoch(epoch_id="ep-1", case_id="case-1", assigned_at=assigned_at, assigned_rn_id="rn-a")
    return LifecycleProjection(case_id="case-1", status=status, epoch=epoch)


@pytest.fixture
def policy():
    return SLAPolicy()


class TestSLAPolicy:
    """Tests for SLAPolicy validation."""

    def test_defaults(self, policy):
        """Should default to 8h / 4h / 4h, 17:00 Chicago."""
        assert policy.acceptance_sla_hours == 8
        assert policy.notification_sla_hours == 4
        assert policy.outreach_sla_hours == 4
        assert policy.business_day_end == "17:00"
        assert policy.timezone == "America/Chicago"

    def test_rejects_bad_close_time(self):
        """Should reject a close time that is not HH:MM."""
        with pytest.raises(ValidationError):
            SLAPolicy(business_day_end="5pm")

    def test_rejects_unknown_timezone(self):
        """Should reject an unknown IANA zone."""
        with pytest.raises(ValidationError):
            SLAPolicy(timezone="Mars/Olympus_Mons")

    def test_rejects_non_positive_hours(self):
        """Should reject zero-hour windows."""
        with pytest.raises(ValidationError):
            SLAPolicy(acceptance_sla_hours=0)


class TestBusinessCalendar:
    """Tests for BusinessCalendar.business_deadline."""

    def test_window_inside_business_day(self, policy):
        """Should add the hours when the window fits before close."""
        deadline = BusinessCalendar(policy).business_deadline(local(2024, 1, 19, 10, 0), 4)
        assert deadline == local(2024, 1, 19, 14, 0)

    def test_window_ending_exactly_at_close(self, policy):
        """Should keep the same-day deadline when it lands on close."""
        deadline = BusinessCalendar(policy).business_deadline(local(2024, 1, 17, 13, 0), 4)
        assert deadline == local(2024, 1, 17, 17, 0)

    def test_friday_afternoon_rolls_to_monday_close(self, policy):
        """Should roll Friday 16:00 to Monday 17:00, never Saturday."""
        deadline = BusinessCalendar(policy).business_deadline(local(2024, 1, 19, 16, 0), 4)
        assert deadline == local(2024, 1, 22, 17, 0)
        assert deadline.astimezone(CHICAGO).weekday() == 0

    def test_weekend_anchor_rolls_to_monday_close(self, policy):
        """Should roll a Saturday anchor to Monday close."""
        deadline = BusinessCalendar(policy).business_deadline(local(2024, 1, 20, 9, 0), 4)
        assert deadline == local(2024, 1, 22, 17, 0)

    def test_after_close_rolls_to_next_day(self, policy):
        """Should roll a Tuesday evening anchor to Wednesday close."""
        deadline = BusinessCalendar(policy).business_deadline(local(2024, 1, 16, 18, 30), 4)
        assert deadline == local(2024, 1, 17, 17, 0)

    def test_window_crossing_close_rolls_to_next_close(self, policy):
        """Should roll Monday 14:00 + 4h to Tuesday close, not Monday close."""
        deadline = BusinessCalendar(policy).business_deadline(local(2024, 1, 15, 14, 0), 4)
        assert deadline == local(2024, 1, 16, 17, 0)

    def test_result_is_utc(self, policy):
        """Should return UTC datetimes."""
        deadline = BusinessCalendar(policy).business_deadline(local(2024, 1, 19, 10, 0), 4)
        assert deadline.tzinfo == timezone.utc

    def test_custom_close_time(self):
        """Should honor a configured close time."""
        calendar = BusinessCalendar(SLAPolicy(business_day_end="18:00"))
        assert calendar.business_deadline(local(2024, 1, 19, 14, 0), 4) == local(2024, 1, 19, 18, 0)


class TestAcceptanceSLA:
    """Tests for acceptance evaluation."""

    T = datetime(2024, 1, 15, 15, 0, tzinfo=timezone.utc)

    def test_due_within_window(self, policy):
        """Should be due on (T, T+8h]."""
        p = projection(PendingAcceptance(), self.T)
        for offset in (timedelta(seconds=1), timedelta(hours=4), timedelta(hours=8)):
            status = SLACalculator.evaluate_acceptance(p, self.T + offset, policy)
            assert status.state == SLAState.DUE
            assert status.deadline == self.T + timedelta(hours=8)

    def test_breached_after_window(self, policy):
        """Should breach one second after T+8h without acceptance."""
        p = projection(PendingAcceptance(), self.T)
        status = SLACalculator.evaluate_acceptance(p, self.T + timedelta(hours=8, seconds=1), policy)
        assert status.state == SLAState.BREACHED
        assert status.overdue_seconds == pytest.approx(1)

    def test_met_regardless_of_timing(self, policy):
        """Should be met by a late acceptance."""
        late = self.T + timedelta(hours=12)
        p = projection(AcceptedAwaitingNotification(accepted_at=late), self.T)
        status = SLACalculator.evaluate_acceptance(p, self.T + timedelta(hours=20), policy)
        assert status.state == SLAState.MET
        assert status.met_at == late

    def test_not_applicable_when_declined_or_unassigned(self, policy):
        """Should not run the clock for declined or closed epochs."""
        declined = projection(Declined(declined_at=self.T), self.T)
        assert SLACalculator.evaluate_acceptance(declined, self.T, policy).state == SLAState.NOT_APPLICABLE
        closed = LifecycleProjection(case_id="case-1", status=Unassigned())
        assert SLACalculator.evaluate_acceptance(closed, self.T, policy).state == SLAState.NOT_APPLICABLE


class TestNotificationSLA:
    """Tests for notification evaluation."""

    def test_not_applicable_before_acceptance(self, policy):
        """Should not start before acceptance."""
        p = projection(PendingAcceptance(), local(2024, 1, 15, 9, 0))
        status = SLACalculator.evaluate_notification(p, local(2024, 1, 15, 10, 0), policy)
        assert status.state == SLAState.NOT_APPLICABLE
        assert status.obligation == SLAType.NOTIFICATION

    def test_friday_acceptance_due_monday(self, policy):
        """Should stay due over the weekend after a Friday 16:00 acceptance."""
        accepted = local(2024, 1, 19, 16, 0)
        p = projection(AcceptedAwaitingNotification(accepted_at=accepted), local(2024, 1, 19, 9, 0))
        saturday = SLACalculator.evaluate_notification(p, local(2024, 1, 20, 12, 0), policy)
        assert saturday.state == SLAState.DUE
        assert saturday.deadline == local(2024, 1, 22, 17, 0)
        late = SLACalculator.evaluate_notification(p, local(2024, 1, 22, 17, 1), policy)
        assert late.state == SLAState.BREACHED

    def test_met_by_ack(self, policy):
        """Should be met once the acknowledgment is sent."""
        accepted = local(2024, 1, 16, 10, 0)
        p = projection(Cleared(accepted_at=accepted, ack_sent_at=accepted + timedelta(minutes=30)), accepted)
        status = SLACalculator.evaluate_notification(p, accepted + timedelta(days=3), policy)
        assert status.state == SLAState.MET


class TestOutreachSLA:
    """Tests for outreach evaluation."""

    anchor = local(2024, 1, 16, 9, 0)

    def attempt(self, at, rn="rn-a"):
        return OutreachAttempt(case_id="case-1", rn_id=rn, channel="phone", attempted_at=at)

    def test_no_anchor_is_not_applicable(self, policy):
        """Should be not applicable without an anchor."""
        status = SLACalculator.evaluate_outreach(None, [], self.anchor, policy)
        assert status.state == SLAState.NOT_APPLICABLE

    def test_due_then_breached(self, policy):
        """Should be due inside the window and breached after it."""
        assert SLACalculator.evaluate_outreach(self.anchor, [], self.anchor + timedelta(hours=2), policy).state == SLAState.DUE
        assert SLACalculator.evaluate_outreach(self.anchor, [], self.anchor + timedelta(hours=5), policy).state == SLAState.BREACHED

    def test_met_by_first_attempt_in_window(self, policy):
        """Should be met by the first attempt inside the window."""
        attempts = [self.attempt(self.anchor + timedelta(hours=1)), self.attempt(self.anchor + timedelta(hours=3))]
        status = SLACalculator.evaluate_outreach(self.anchor, attempts, self.anchor + timedelta(hours=2), policy)
        assert status.state == SLAState.MET
        assert status.met_at == self.anchor + timedelta(hours=1)
        assert status.last_attempt_at == self.anchor + timedelta(hours=3)

    def test_attempt_before_anchor_does_not_count(self, policy):
        """Should ignore attempts made before the anchor."""
        attempts = [self.attempt(self.anchor - timedelta(hours=1))]
        status = SLACalculator.evaluate_outreach(self.anchor, attempts, self.anchor + timedelta(hours=5), policy)
        assert status.state == SLAState.BREACHED
        assert status.last_attempt_at is None

    def test_late_attempt_does_not_meet(self, policy):
        """Should stay breached when the only attempt is after the deadline."""
        attempts = [self.attempt(self.anchor + timedelta(hours=6))]
        status = SLACalculator.evaluate_outreach(self.anchor, attempts, self.anchor + timedelta(hours=7), policy)
        assert status.state == SLAState.BREACHED
        assert status.last_attempt_at == self.anchor + timedelta(hours=6)

    def test_window_start_counts_attempts_before_anchor(self, policy):
        """Should count attempts from the window start when the anchor moved later."""
        attempts = [self.attempt(self.anchor - timedelta(minutes=30))]
        status = SLACalculator.evaluate_outreach(
            self.anchor, attempts, self.anchor + timedelta(hours=5), policy,
            window_start=self.anchor - timedelta(hours=1),
        )
        assert status.state == SLAState.MET
        assert status.met_at == self.anchor - timedelta(minutes=30)

    def test_attempt_inside_window_when_logged_stays_met(self, policy):
        """Should keep an attempt logged inside its window after the window shrinks."""
        attempts = [
            OutreachAttempt(
                case_id="case-1", rn_id="rn-a", channel="phone",
                attempted_at=self.anchor + timedelta(hours=3), within_window=True,
            )
        ]
        shorter = SLAPolicy(outreach_sla_hours=2)
        status = SLACalculator.evaluate_outreach(self.anchor, attempts, self.anchor + timedelta(hours=5), shorter)
        assert status.state == SLAState.MET

    def test_met_never_reverts(self, policy):
        """Should stay met on every later evaluation."""
        attempts = [self.attempt(self.anchor + timedelta(hours=1))]
        for hours in (2, 5, 24, 24 * 30):
            status = SLACalculator.evaluate_outreach(self.anchor, attempts, self.anchor + timedelta(hours=hours), policy)
            assert status.state == SLAState.MET


class TestCalculateStatus:
    """Tests for SLACalculator.calculate_status."""

    def test_naive_timestamps_are_utc(self):
        """Should treat naive timestamps as UTC."""
        anchor = datetime(2024, 1, 15, 12, 0)
        deadline = datetime(2024, 1, 15, 20, 0)
        status = SLACalculator.calculate_status(
            SLAType.ACCEPTANCE, anchor, deadline, datetime(2024, 1, 15, 19, 0, tzinfo=timezone.utc)
        )
        assert status.state == SLAState.DUE
        assert status.remaining_seconds == pytest.approx(3600)
