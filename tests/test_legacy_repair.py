"""Tests for LegacyRepairService."""

import pytest

from config import GovernanceAction, LifecycleState
from core import ConflictException, StoreUnavailableException
from governance.domain import CaseRecord


class TestNeedsRepair:
    """Tests for LegacyRepairService.needs_repair."""

    @pytest.mark.asyncio
    async def test_pointer_without_epoch_needs_repair(self, governance):
        """Should flag a row that names an RN with no matching epoch."""
        case = governance.cases.cases["case-1"]
        case.assigned_rn_id = "rn-a"
        projection = await governance.lifecycle.projection("case-1")
        assert governance.repair.needs_repair(case, projection)

    @pytest.mark.asyncio
    async def test_matching_epoch_needs_nothing(self, governance):
        """Should not flag a case whose open epoch matches the pointer."""
        governance.seed_assignment("case-1", "rn-a")
        case = governance.cases.cases["case-1"]
        projection = await governance.lifecycle.projection("case-1")
        assert not governance.repair.needs_repair(case, projection)

    @pytest.mark.asyncio
    async def test_pointer_moved_away_from_epoch_rn(self, governance):
        """Should flag a pointer that names a different RN than the open epoch."""
        governance.seed_assignment("case-1", "rn-a")
        case = governance.cases.cases["case-1"]
        case.assigned_rn_id = "rn-b"
        projection = await governance.lifecycle.projection("case-1")
        assert governance.repair.needs_repair(case, projection)

    @pytest.mark.asyncio
    async def test_indeterminate_is_never_repaired(self, governance):
        """Should never flag a case whose events could not be read."""
        case = governance.cases.cases["case-1"]
        case.assigned_rn_id = "rn-a"
        governance.events.fail_reads = True
        projection = await governance.lifecycle.projection("case-1")
        assert not governance.repair.needs_repair(case, projection)


class TestEnsureEpoch:
    """Tests for LegacyRepairService.ensure_epoch."""

    @pytest.mark.asyncio
    async def test_synthesizes_epoch_for_legacy_assignment(self, governance):
        """Should append an ASSIGNED stamped now with the RN display snapshot."""
        case = governance.cases.cases["case-1"]
        case.assigned_rn_id = "rn-a"

        epoch = await governance.repair.ensure_epoch(case, "sup-1")

        assert epoch.assigned_rn_id == "rn-a"
        assert epoch.assigned_at == governance.clock()
        assert epoch.assigned_rn_display == {"rn_id": "RN-A", "full_name": "Alice Adams"}
        event = governance.events.for_case("case-1", GovernanceAction.ASSIGNED)[0]
        assert event.reason_code == "legacy_repair"
        assert event.metadata["reason_text"]

        projection = await governance.lifecycle.projection("case-1")
        assert projection.state == LifecycleState.PENDING_ACCEPTANCE
        assert projection.epoch.epoch_id == epoch.epoch_id

    @pytest.mark.asyncio
    async def test_existing_epoch_is_returned_untouched(self, governance):
        """Should return the open epoch without appending anything."""
        epoch_id = governance.seed_assignment("case-1", "rn-a")
        before = len(governance.events.events)

        epoch = await governance.repair.ensure_epoch(governance.cases.cases["case-1"], "sup-1")

        assert epoch.epoch_id == epoch_id
        assert len(governance.events.events) == before

    @pytest.mark.asyncio
    async def test_repair_converges(self, governance):
        """Should be a no-op once the log has been repaired."""
        case = governance.cases.cases["case-1"]
        case.assigned_rn_id = "rn-a"

        first = await governance.repair.ensure_epoch(case, "sup-1")
        governance.clock.advance(minutes=1)
        second = await governance.repair.ensure_epoch(case, "sup-1")

        assert first.epoch_id == second.epoch_id
        assert len(governance.events.for_case("case-1", GovernanceAction.ASSIGNED)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_repairs_agree_on_latest(self, governance):
        """Should resolve two racing repairs to the most recent epoch."""
        case = governance.cases.cases["case-1"]
        case.assigned_rn_id = "rn-a"

        first = await governance.repair.repair(case, "sup-1")
        second = await governance.repair.repair(case, "sup-2")

        projection = await governance.lifecycle.projection("case-1")
        assert projection.epoch.epoch_id == second.epoch_id
        assert first.epoch_id != second.epoch_id

    @pytest.mark.asyncio
    async def test_unknown_rn_still_repairs(self, governance):
        """Should repair with an empty display when the RN row is gone."""
        case = governance.cases.add(CaseRecord(id="case-9", assigned_rn_id="rn-gone"))
        epoch = await governance.repair.ensure_epoch(case, "sup-1")
        assert epoch.assigned_rn_display == {"rn_id": None, "full_name": None}

    @pytest.mark.asyncio
    async def test_unassigned_case_has_nothing_to_repair(self, governance):
        """Should raise ConflictException when there is no pointer and no epoch."""
        with pytest.raises(ConflictException):
            await governance.repair.ensure_epoch(governance.cases.cases["case-1"], "sup-1")

    @pytest.mark.asyncio
    async def test_indeterminate_refuses_repair(self, governance):
        """Should not append anything when events cannot be read."""
        case = governance.cases.cases["case-1"]
        case.assigned_rn_id = "rn-a"
        governance.events.fail_reads = True

        with pytest.raises(StoreUnavailableException):
            await governance.repair.ensure_epoch(case, "sup-1")
        assert governance.events.events == []
