"""Tests for DeviceSync and interface binding reconciliation."""
import pytest

from mcp_router_acl.acl_engine.bindings import (
    ApplyBindingReconciler,
    check_binding_conflicts,
)
from mcp_router_acl.acl_engine.errors import BindingConflictError, DeviceOperationError
from mcp_router_acl.acl_engine.schema import (
    ApplyBinding,
    Direction,
    FilterTable,
    SequenceDiff,
)
from mcp_router_acl.acl_engine.sync import DeviceSync

from conftest import ip_rule

IP = FilterTable.IP


class TestDeviceSync:
    """Tests for applying a diff to a device."""

    @pytest.mark.asyncio
    async def test_deletes_before_defines(self, device):
        device.entries[IP][120] = ip_rule("reject")
        diff = SequenceDiff(to_delete=[120], to_upsert=[100, 110])
        payloads = {100: ip_rule(), 110: ip_rule("reject")}

        result = await DeviceSync(device).sync(IP, diff, payloads)

        assert [c[0] for c in device.calls] == ["delete", "define", "define"]
        assert result.deleted == [120]
        assert result.upserted == [100, 110]
        assert sorted(device.entries[IP]) == [100, 110]

    @pytest.mark.asyncio
    async def test_missing_delete_counts_as_done(self, device):
        result = await DeviceSync(device).sync(IP, SequenceDiff(to_delete=[50]), {})
        assert result.already_absent == [50]
        assert result.deleted == []

    @pytest.mark.asyncio
    async def test_define_failure_stops_pass(self, device):
        """The first hard failure aborts; earlier work is reported, not undone."""
        device.fail_define.add(110)
        diff = SequenceDiff(to_upsert=[100, 110, 120])
        payloads = {n: ip_rule() for n in (100, 110, 120)}

        with pytest.raises(DeviceOperationError) as exc_info:
            await DeviceSync(device).sync(IP, diff, payloads)

        error = exc_info.value
        assert error.operation == "define"
        assert error.number == 110
        assert error.completed.upserted == [100]
        assert 100 in device.entries[IP]
        assert 120 not in device.entries[IP]

    @pytest.mark.asyncio
    async def test_delete_failure(self, device):
        device.entries[IP][100] = ip_rule()
        device.fail_delete.add(100)

        with pytest.raises(DeviceOperationError, match="delete filter 100"):
            await DeviceSync(device).sync(IP, SequenceDiff(to_delete=[100], to_upsert=[200]), {200: ip_rule()})
        assert device.mutations("define") == []

    @pytest.mark.asyncio
    async def test_describe(self, device):
        device.entries[IP][1] = ip_rule()
        result = await DeviceSync(device).sync(IP, SequenceDiff(to_delete=[1, 2], to_upsert=[3]), {3: ip_rule()})
        assert result.describe() == [
            "Deleted filter 1",
            "Filter 2 already absent",
            "Defined filter 3",
        ]


class TestCheckBindingConflicts:
    """Tests for slot ownership checks."""

    def test_distinct_slots(self):
        check_binding_conflicts(
            [ApplyBinding("lan1", Direction.IN)],
            [("apply ip:lan1:out", ApplyBinding("lan1", Direction.OUT, (1,)))],
        )

    def test_inline_and_standalone_clash(self):
        with pytest.raises(BindingConflictError) as exc_info:
            check_binding_conflicts(
                [ApplyBinding("lan1", Direction.IN)],
                [("apply ip:lan1:in", ApplyBinding("lan1", Direction.IN, (1,)))],
                owner="access list web",
            )
        assert exc_info.value.sources == ["access list web", "apply ip:lan1:in"]

    def test_two_standalone_clash(self):
        with pytest.raises(BindingConflictError):
            check_binding_conflicts((), [
                ("apply a", ApplyBinding("pp1", Direction.OUT, (1,))),
                ("apply b", ApplyBinding("pp1", Direction.OUT, (2,))),
            ])


class TestApplyBindingReconciler:
    """Tests for ApplyBindingReconciler."""

    @pytest.mark.asyncio
    async def test_binds_group_numbers_by_default(self, device):
        result = await ApplyBindingReconciler(device).reconcile(
            IP, [], [ApplyBinding("lan1", Direction.IN)], [100, 110]
        )
        assert result.success
        assert device.bindings[(IP, "lan1", Direction.IN)] == [100, 110]
        assert result.bound == [ApplyBinding("lan1", Direction.IN, (100, 110))]

    @pytest.mark.asyncio
    async def test_explicit_filter_ids(self, device):
        await ApplyBindingReconciler(device).reconcile(
            IP, [], [ApplyBinding("lan1", Direction.IN, (110, 100, 500))], [100, 110]
        )
        assert device.bindings[(IP, "lan1", Direction.IN)] == [110, 100, 500]

    @pytest.mark.asyncio
    async def test_removed_slot_unbound(self, device):
        device.bindings[(IP, "lan2", Direction.OUT)] = [100]
        result = await ApplyBindingReconciler(device).reconcile(
            IP,
            [ApplyBinding("lan2", Direction.OUT)],
            [ApplyBinding("lan1", Direction.IN)],
            [100],
        )
        assert result.unbound == [("lan2", Direction.OUT)]
        assert (IP, "lan2", Direction.OUT) not in device.bindings
        assert device.bindings[(IP, "lan1", Direction.IN)] == [100]

    @pytest.mark.asyncio
    async def test_empty_group_unbinds_existing_slot(self, device):
        device.bindings[(IP, "lan1", Direction.IN)] = [100]
        binding = ApplyBinding("lan1", Direction.IN)
        result = await ApplyBindingReconciler(device).reconcile(IP, [binding], [binding], [])
        assert result.unbound == [("lan1", Direction.IN)]
        assert device.mutations("bind") == []

    @pytest.mark.asyncio
    async def test_failure_on_one_slot_continues(self, device):
        device.fail_bind.add(("lan1", Direction.IN))
        result = await ApplyBindingReconciler(device).reconcile(
            IP,
            [],
            [ApplyBinding("lan1", Direction.IN), ApplyBinding("lan2", Direction.IN)],
            [100],
        )
        assert not result.success
        assert len(result.errors) == 1
        assert result.errors[0].operation == "bind"
        assert device.bindings[(IP, "lan2", Direction.IN)] == [100]

    @pytest.mark.asyncio
    async def test_read_drops_empty_slots(self, device):
        device.bindings[(IP, "lan1", Direction.IN)] = [100, 110]
        observed = await ApplyBindingReconciler(device).read(
            IP, [ApplyBinding("lan1", Direction.IN), ApplyBinding("lan2", Direction.IN)]
        )
        assert observed == [ApplyBinding("lan1", Direction.IN, (100, 110))]

    @pytest.mark.asyncio
    async def test_unbind_all_collects_errors(self, device):
        device.fail_unbind.add(("lan1", Direction.IN))
        result = await ApplyBindingReconciler(device).unbind_all(
            IP, [ApplyBinding("lan1", Direction.IN), ApplyBinding("lan2", Direction.OUT)]
        )
        assert result.unbound == [("lan2", Direction.OUT)]
        assert str(result.errors[0]).startswith("unbind lan1 in")
