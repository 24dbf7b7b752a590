"""Tests for the group and apply lifecycle controllers."""
import pytest

from mcp_router_acl.acl_engine.controller import ApplyController, GroupController
from mcp_router_acl.acl_engine.errors import (
    BindingConflictError,
    BindingReconcileError,
    DeviceOperationError,
    GroupNotFoundError,
    ImportMismatchError,
    MissingSequenceError,
    ModeChangeError,
    SequenceConflictError,
    ValidationError,
)
from mcp_router_acl.acl_engine.identity import BindingIdentity
from mcp_router_acl.acl_engine.schema import (
    AccessListSpec,
    ApplyBinding,
    ApplySpec,
    AutoMode,
    Direction,
    Entry,
    FilterTable,
    GroupStatus,
    ManualMode,
)

from conftest import ip_rule

IP = FilterTable.IP
LAN1_IN = ApplyBinding("lan1", Direction.IN)


def auto_spec(count=2, start=10, step=10, applies=(), name="g1"):
    return AccessListSpec(
        name=name,
        sequence_start=start,
        sequence_step=step,
        entries=[Entry(payload=ip_rule(destination=f"10.0.0.{i + 1}")) for i in range(count)],
        applies=list(applies),
    )


def manual_spec(*sequences, applies=(), name="g1"):
    return AccessListSpec(
        name=name,
        entries=[Entry(payload=ip_rule(), sequence=s) for s in sequences],
        applies=list(applies),
    )


class TestGroupLifecycle:
    """End-to-end create, read, update and delete against the fake router."""

    @pytest.mark.asyncio
    async def test_create_then_read(self, device):
        """Create defines 10 and 20; read returns the same numbers and payloads."""
        controller = GroupController(device)
        spec = auto_spec()

        state = await controller.create(spec)

        assert device.calls == [("define", IP, 10), ("define", IP, 20)]
        assert state.numbers == [10, 20]
        assert state.status == GroupStatus.SYNCED

        observed = await controller.read(state)
        assert observed.numbers == [10, 20]
        assert [e.payload for e in observed.entries] == [e.payload for e in spec.entries]
        assert observed.status == GroupStatus.READ

    @pytest.mark.asyncio
    async def test_shrink_deletes_only_removed_number(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(count=2))
        device.calls.clear()

        state = await controller.update(state, auto_spec(count=1))

        assert device.mutations("delete") == [("delete", IP, 20)]
        assert state.numbers == [10]
        assert sorted(device.entries[IP]) == [10]

    @pytest.mark.asyncio
    async def test_start_change_moves_numbers(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(count=2, start=100))
        state = await controller.update(state, auto_spec(count=2, start=200))

        assert sorted(device.entries[IP]) == [200, 210]
        assert state.mode == AutoMode(start=200, step=10)

    @pytest.mark.asyncio
    async def test_create_binds_group_numbers(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(start=200, applies=[LAN1_IN]))

        assert device.bindings[(IP, "lan1", Direction.IN)] == [200, 210]
        assert state.bindings == [ApplyBinding("lan1", Direction.IN, (200, 210))]

    @pytest.mark.asyncio
    async def test_update_without_binding_change_skips_rebind(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(applies=[LAN1_IN]))
        device.calls.clear()

        spec = auto_spec(applies=[LAN1_IN])
        spec.entries[0] = Entry(payload=ip_rule("reject"))
        await controller.update(state, spec)

        assert device.mutations("bind") == []
        assert device.entries[IP][10].action == "reject"

    @pytest.mark.asyncio
    async def test_update_rebinds_after_growth(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(count=1, applies=[LAN1_IN]))
        state = await controller.update(state, auto_spec(count=3, applies=[LAN1_IN]))

        assert device.bindings[(IP, "lan1", Direction.IN)] == [10, 20, 30]

    @pytest.mark.asyncio
    async def test_dropped_apply_is_unbound(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(applies=[LAN1_IN]))
        state = await controller.update(state, auto_spec())

        assert (IP, "lan1", Direction.IN) not in device.bindings
        assert state.bindings == []

    @pytest.mark.asyncio
    async def test_delete_unbinds_then_deletes(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(applies=[LAN1_IN]))
        device.calls.clear()

        outcome = await controller.destroy(state)

        assert [c[0] for c in device.calls] == ["unbind", "delete", "delete"]
        assert device.entries[IP] == {}
        assert outcome.state.status == GroupStatus.DESTROYED
        assert outcome.describe()[0] == "Unbound lan1 in"

    @pytest.mark.asyncio
    async def test_delete_continues_after_unbind_failure(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(applies=[LAN1_IN]))
        device.fail_unbind.add(("lan1", Direction.IN))

        outcome = await controller.destroy(state)

        assert device.entries[IP] == {}
        assert outcome.warnings[0].startswith("Could not unbind before delete")

    @pytest.mark.asyncio
    async def test_delete_of_missing_entries_succeeds(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec())
        device.entries[IP].clear()

        deleted = await controller.delete(state)
        assert deleted.status == GroupStatus.DESTROYED

    @pytest.mark.asyncio
    async def test_read_drops_missing_entries(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(count=3))
        del device.entries[IP][20]

        observed = await controller.read(state)
        assert observed.numbers == [10, 30]

    @pytest.mark.asyncio
    async def test_read_all_missing_returns_none(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec())
        device.entries[IP].clear()

        assert await controller.read(state) is None

    @pytest.mark.asyncio
    async def test_read_error_propagates(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec())
        device.fail_read.add(10)

        with pytest.raises(DeviceOperationError, match="read filter 10"):
            await controller.read(state)


class TestGroupPreflight:
    """Errors raised before the first device mutation."""

    @pytest.mark.asyncio
    async def test_missing_sequence(self, device):
        with pytest.raises(MissingSequenceError):
            await GroupController(device).create(manual_spec(10, None))
        assert device.calls == []

    @pytest.mark.asyncio
    async def test_validation_error(self, device):
        with pytest.raises(ValidationError):
            await GroupController(device).create(manual_spec(10, 10))
        assert device.calls == []

    @pytest.mark.asyncio
    async def test_binding_conflict_before_device_calls(self, device):
        """Inline lan1/in plus a standalone lan1/in claim is rejected up front."""
        external = [("apply ip:lan1:in", ApplyBinding("lan1", Direction.IN, (500,)))]

        with pytest.raises(BindingConflictError):
            await GroupController(device).create(auto_spec(applies=[LAN1_IN]), external)
        assert device.calls == []

    @pytest.mark.asyncio
    async def test_foreign_number_conflict(self, device):
        device.entries[IP][20] = ip_rule("reject")

        with pytest.raises(SequenceConflictError):
            await GroupController(device).create(auto_spec())
        assert device.calls == []

    @pytest.mark.asyncio
    async def test_conflict_check_can_be_disabled(self, device):
        device.entries[IP][20] = ip_rule("reject")

        state = await GroupController(device, check_conflicts=False).create(auto_spec())
        assert state.numbers == [10, 20]
        assert device.entries[IP][20].action == "pass"

    @pytest.mark.asyncio
    async def test_own_numbers_are_not_conflicts(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(count=2))
        state = await controller.update(state, auto_spec(count=3))
        assert state.numbers == [10, 20, 30]

    @pytest.mark.asyncio
    async def test_mode_change_needs_recreate(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec())

        with pytest.raises(ModeChangeError):
            await controller.update(state, manual_spec(5, 6))

    @pytest.mark.asyncio
    async def test_mode_change_recreates(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(applies=[LAN1_IN]))
        device.calls.clear()

        state = await controller.update(state, manual_spec(5, 6, applies=[LAN1_IN]), allow_recreate=True)

        assert device.calls[0] == ("unbind", IP, "lan1", Direction.IN)
        assert sorted(device.entries[IP]) == [5, 6]
        assert device.bindings[(IP, "lan1", Direction.IN)] == [5, 6]
        assert state.mode == ManualMode()

    @pytest.mark.asyncio
    async def test_bind_failure_raises_after_sync(self, device):
        device.fail_bind.add(("lan1", Direction.IN))

        with pytest.raises(BindingReconcileError):
            await GroupController(device).create(auto_spec(applies=[LAN1_IN]))
        assert sorted(device.entries[IP]) == [10, 20]

    @pytest.mark.asyncio
    async def test_failed_define_carries_partial_state(self, device):
        """The snapshot attached to the error lists what was defined."""
        controller = GroupController(device)
        state = await controller.create(auto_spec(count=2, applies=[LAN1_IN]))
        device.fail_define.add(40)

        with pytest.raises(DeviceOperationError) as excinfo:
            await controller.update(state, auto_spec(count=4, applies=[LAN1_IN]))

        partial = excinfo.value.partial_state
        assert partial.status == GroupStatus.PARTIAL
        assert partial.numbers == [10, 20, 30]
        assert partial.bindings == state.bindings

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_undeleted_numbers(self, device):
        controller = GroupController(device)
        state = await controller.create(auto_spec(count=3, start=100))
        device.fail_delete.add(110)

        with pytest.raises(DeviceOperationError) as excinfo:
            await controller.update(state, auto_spec(count=1, start=500))

        partial = excinfo.value.partial_state
        assert partial.numbers == [110, 120]
        assert partial.mode == AutoMode(start=500, step=10)

    @pytest.mark.asyncio
    async def test_bind_failure_records_only_bound_slots(self, device):
        lan2_in = ApplyBinding("lan2", Direction.IN)
        device.fail_bind.add(("lan1", Direction.IN))

        with pytest.raises(BindingReconcileError) as excinfo:
            await GroupController(device).create(auto_spec(applies=[LAN1_IN, lan2_in]))

        partial = excinfo.value.partial_state
        assert partial.numbers == [10, 20]
        assert partial.bindings == [ApplyBinding("lan2", Direction.IN, (10, 20))]

    def test_plan_is_pure(self, device):
        diff = GroupController(device).plan(None, auto_spec(count=3))
        assert diff.to_upsert == [10, 20, 30]
        assert device.calls == []


class TestGroupImport:
    """Tests for adopting existing filters."""

    @pytest.mark.asyncio
    async def test_missing_candidates_skipped(self, device):
        """Candidates 5, 6, 7 where 6 is missing import as manual 5, 7."""
        device.entries[IP][5] = ip_rule()
        device.entries[IP][7] = ip_rule("reject")

        state = await GroupController(device).import_group(IP, "g2", [5, 6, 7])

        assert state.numbers == [5, 7]
        assert state.mode == ManualMode()
        assert state.entries[1].payload.action == "reject"

    @pytest.mark.asyncio
    async def test_nothing_found(self, device):
        with pytest.raises(GroupNotFoundError):
            await GroupController(device).import_group(IP, "g2", [5, 6])

    @pytest.mark.asyncio
    async def test_without_candidates_adopts_table(self, device):
        device.entries[IP][300] = ip_rule()
        device.entries[IP][100] = ip_rule()

        state = await GroupController(device).import_group(IP, "all")
        assert state.numbers == [100, 300]

    @pytest.mark.asyncio
    async def test_auto_formula_matches(self, device):
        for number in (100, 110, 120):
            device.entries[IP][number] = ip_rule()

        state = await GroupController(device).import_group(
            IP, "web", [100, 110, 120], sequence_start=100, sequence_step=10
        )
        assert state.mode == AutoMode(start=100, step=10)

    @pytest.mark.asyncio
    async def test_auto_formula_mismatch(self, device):
        for number in (100, 115):
            device.entries[IP][number] = ip_rule()

        with pytest.raises(ImportMismatchError):
            await GroupController(device).import_group(IP, "web", [100, 115], sequence_start=100)

    @pytest.mark.asyncio
    async def test_imported_group_updates_cleanly(self, device):
        device.entries[IP][5] = ip_rule()
        device.entries[IP][7] = ip_rule()
        controller = GroupController(device)
        state = await controller.import_group(IP, "g2", [5, 7])

        state = await controller.update(state, manual_spec(5, name="g2"))

        assert device.mutations("delete") == [("delete", IP, 7)]
        assert state.numbers == [5]


class TestApplyController:
    """Tests for standalone apply bindings."""

    def _spec(self, ids=(100, 110), interface="lan1", table=IP):
        return ApplySpec(
            access_list="web",
            interface=interface,
            direction=Direction.IN,
            filter_ids=tuple(ids),
            table=table,
        )

    @pytest.mark.asyncio
    async def test_create_and_read(self, device):
        controller = ApplyController(device)
        state = await controller.create(self._spec())

        assert device.bindings[(IP, "lan1", Direction.IN)] == [100, 110]
        observed = await controller.read(state)
        assert observed.binding.filter_ids == (100, 110)
        assert observed.status == GroupStatus.READ

    @pytest.mark.asyncio
    async def test_read_nothing_bound(self, device):
        controller = ApplyController(device)
        state = await controller.create(self._spec())
        device.bindings.clear()
        assert await controller.read(state) is None

    @pytest.mark.asyncio
    async def test_update_replaces_list(self, device):
        controller = ApplyController(device)
        state = await controller.create(self._spec())
        await controller.update(state, self._spec(ids=(110, 100, 120)))
        assert device.bindings[(IP, "lan1", Direction.IN)] == [110, 100, 120]

    @pytest.mark.asyncio
    async def test_table_change_unbinds_old_slot(self, device):
        controller = ApplyController(device)
        state = await controller.create(self._spec())
        await controller.update(state, self._spec(table=FilterTable.IPV6))

        assert (IP, "lan1", Direction.IN) not in device.bindings
        assert device.bindings[(FilterTable.IPV6, "lan1", Direction.IN)] == [100, 110]

    @pytest.mark.asyncio
    async def test_claimed_slot_rejected(self, device):
        claimed = [("access list web", LAN1_IN)]
        with pytest.raises(BindingConflictError):
            await ApplyController(device).create(self._spec(), claimed)
        assert device.calls == []

    @pytest.mark.asyncio
    async def test_invalid_interface(self, device):
        with pytest.raises(ValidationError):
            await ApplyController(device).create(self._spec(interface="eth0"))

    @pytest.mark.asyncio
    async def test_delete(self, device):
        controller = ApplyController(device)
        state = await controller.create(self._spec())
        deleted = await controller.delete(state)

        assert device.bindings == {}
        assert deleted.status == GroupStatus.DESTROYED

    @pytest.mark.asyncio
    async def test_import(self, device):
        device.bindings[(IP, "lan2", Direction.OUT)] = [7, 5]
        identity = BindingIdentity(IP, "lan2", Direction.OUT)

        state = await ApplyController(device).import_binding(identity, "legacy")
        assert state.binding.filter_ids == (7, 5)
        assert state.access_list == "legacy"

    @pytest.mark.asyncio
    async def test_import_nothing_bound(self, device):
        with pytest.raises(GroupNotFoundError):
            await ApplyController(device).import_binding(BindingIdentity(IP, "lan2", Direction.OUT))
