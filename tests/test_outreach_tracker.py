"""Tests for OutreachSLATracker."""

from datetime import timedelta

import pytest

from config import SLAState, SLAType
from core import ResourceNotFoundException, ValidationException
from governance.domain import SLAPolicy


class TestRecordAttempt:
    """Tests for record_attempt."""

    @pytest.mark.asyncio
    async def test_records_attempt_now(self, governance):
        """Should default the attempt time to now."""
        governance.seed_assignment("case-1", "rn-a")
        governance.clock.advance(hours=1)

        attempt = await governance.outreach.record_attempt("case-1", "rn-a", "phone", note="Left voicemail")

        assert attempt.attempt_id == "att-1"
        assert attempt.attempted_at == governance.clock()
        assert attempt.recorded_at == governance.clock()
        assert attempt.note == "Left voicemail"

    @pytest.mark.asyncio
    async def test_backdated_attempt_is_kept(self, governance):
        """Should keep an explicit past attempt time."""
        governance.seed_assignment("case-1", "rn-a")
        governance.clock.advance(hours=2)
        earlier = governance.clock() - timedelta(minutes=45)

        attempt = await governance.outreach.record_attempt("case-1", "rn-a", "email", attempted_at=earlier)

        assert attempt.attempted_at == earlier
        assert attempt.recorded_at == governance.clock()

    @pytest.mark.asyncio
    async def test_future_attempt_is_rejected(self, governance):
        """Should refuse attempt times in the future."""
        governance.seed_assignment("case-1", "rn-a")
        with pytest.raises(ValidationException):
            await governance.outreach.record_attempt(
                "case-1", "rn-a", "phone", attempted_at=governance.clock() + timedelta(minutes=1)
            )

    @pytest.mark.asyncio
    async def test_unknown_channel_is_rejected(self, governance):
        """Should validate the channel."""
        governance.seed_assignment("case-1", "rn-a")
        with pytest.raises(ValidationException):
            await governance.outreach.record_attempt("case-1", "rn-a", "carrier_pigeon")

    @pytest.mark.asyncio
    async def test_only_assigned_rn_may_record(self, governance):
        """Should refuse attempts from an RN who does not hold the case."""
        governance.seed_assignment("case-1", "rn-a")
        with pytest.raises(ValidationException):
            await governance.outreach.record_attempt("case-1", "rn-b", "phone")
        assert governance.outreach_log.attempts == []

    @pytest.mark.asyncio
    async def test_attempt_is_stamped_against_current_window(self, governance):
        """Should record whether the attempt landed inside the window in force."""
        governance.seed_assignment("case-1", "rn-a")
        governance.clock.advance(hours=1)
        on_time = await governance.outreach.record_attempt("case-1", "rn-a", "phone")

        governance.clock.advance(hours=4)
        late = await governance.outreach.record_attempt("case-1", "rn-a", "email")

        assert on_time.within_window is True
        assert late.within_window is False

    @pytest.mark.asyncio
    async def test_superseded_case_is_not_found(self, governance):
        """Should refuse attempts on a superseded case."""
        governance.seed_assignment("case-1", "rn-a")
        governance.cases.cases["case-1"].is_superseded = True
        with pytest.raises(ResourceNotFoundException):
            await governance.outreach.record_attempt("case-1", "rn-a", "phone")

    @pytest.mark.asyncio
    async def test_missing_case(self, governance):
        """Should raise ResourceNotFoundException for an unknown case."""
        with pytest.raises(ResourceNotFoundException):
            await governance.outreach.record_attempt("case-404", "rn-a", "phone")


class TestOutreachStatus:
    """Tests for status and list_statuses."""

    @pytest.mark.asyncio
    async def test_unassigned_case_is_not_applicable(self, governance):
        """Should not run the clock without an assigned RN."""
        status = await governance.outreach.status("case-1")
        assert status.obligation == SLAType.OUTREACH
        assert status.state == SLAState.NOT_APPLICABLE

    @pytest.mark.asyncio
    async def test_anchor_is_assignment_until_accepted(self, governance):
        """Should anchor on the assignment, then on acceptance."""
        t0 = governance.clock()
        epoch = governance.seed_assignment("case-1", "rn-a")

        status = await governance.outreach.status("case-1")
        assert status.state == SLAState.DUE
        assert status.anchor == t0
        assert status.deadline == t0 + timedelta(hours=4)

        governance.clock.advance(hours=1)
        await governance.responses.accept("case-1", "rn-a", epoch)
        status = await governance.outreach.status("case-1")
        assert status.anchor == t0 + timedelta(hours=1)
        assert status.deadline == t0 + timedelta(hours=5)

    @pytest.mark.asyncio
    async def test_met_then_stays_met(self, governance):
        """Should stay met after the deadline passes."""
        governance.seed_assignment("case-1", "rn-a")
        governance.clock.advance(hours=1)
        await governance.outreach.record_attempt("case-1", "rn-a", "phone")

        governance.clock.advance(days=3)
        status = await governance.outreach.status("case-1")
        assert status.state == SLAState.MET

    @pytest.mark.asyncio
    async def test_breached_without_attempt(self, governance):
        """Should breach when no attempt lands in the window."""
        governance.seed_assignment("case-1", "rn-a")
        governance.clock.advance(hours=4, minutes=1)
        status = await governance.outreach.status("case-1")
        assert status.state == SLAState.BREACHED

    @pytest.mark.asyncio
    async def test_previous_rn_attempts_do_not_count(self, governance):
        """Should only count attempts by the currently assigned RN."""
        governance.seed_assignment("case-1", "rn-a")
        governance.clock.advance(minutes=30)
        await governance.outreach.record_attempt("case-1", "rn-a", "phone")
        governance.clock.advance(minutes=30)
        await governance.gateway.reassign("case-1", "rn-b", "coverage", "sup-1")

        status = await governance.outreach.status("case-1")
        assert status.state == SLAState.DUE
        assert status.last_attempt_at is None

    @pytest.mark.asyncio
    async def test_pointer_without_epoch_is_not_applicable(self, governance):
        """Should wait for repair when the pointer has no matching epoch."""
        governance.cases.cases["case-1"].assigned_rn_id = "rn-a"
        status = await governance.outreach.status("case-1")
        assert status.state == SLAState.NOT_APPLICABLE

    @pytest.mark.asyncio
    async def test_list_covers_assigned_cases(self, governance):
        """Should list only active cases that have an assigned RN."""
        governance.seed_assignment("case-1", "rn-a")
        governance.seed_assignment("case-2", "rn-b")

        rows = await governance.outreach.list_statuses()

        assert sorted(row.case.id for row in rows) == ["case-1", "case-2"]
        assert all(row.sla.state == SLAState.DUE for row in rows)
        assert all(row.lifecycle_state == "pending_acceptance" for row in rows)

    @pytest.mark.asyncio
    async def test_attempt_before_acceptance_stays_met(self, governance):
        """Should stay met when the RN accepts after an early attempt."""
        t0 = governance.clock()
        epoch = governance.seed_assignment("case-1", "rn-a")
        governance.clock.advance(minutes=30)
        await governance.outreach.record_attempt("case-1", "rn-a", "phone")
        assert (await governance.outreach.status("case-1")).state == SLAState.MET

        governance.clock.advance(minutes=30)
        await governance.responses.accept("case-1", "rn-a", epoch)

        status = await governance.outreach.status("case-1")
        assert status.state == SLAState.MET
        assert status.met_at == t0 + timedelta(minutes=30)
        assert status.anchor == t0 + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_shorter_policy_does_not_revert_met(self, governance):
        """Should keep an attempt met after the window is shortened."""
        t0 = governance.clock()
        governance.seed_assignment("case-1", "rn-a")
        governance.clock.advance(hours=3)
        await governance.outreach.record_attempt("case-1", "rn-a", "phone")

        governance.policy.policy = SLAPolicy(outreach_sla_hours=2)

        status = await governance.outreach.status("case-1")
        assert status.state == SLAState.MET
        assert status.deadline == t0 + timedelta(hours=2)
        assert status.met_at == t0 + timedelta(hours=3)
