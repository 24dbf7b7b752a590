"""ACL Engine - runs access list lifecycle operations against routers.

Provides a single entry point for:
1. Parsing the declaration
2. Looking up the previous snapshot
3. Planning and validating against the router
4. Applying the plan and saving the router configuration
5. Persisting the new snapshot and writing the audit trail
"""
import logging
from typing import Any, Optional

from ..config.inventory import RouterInventory
from ..devices.base import FilterDevice
from ..state_store.store import StateStore
from ..utils.audit_log import ChangeTracker
from .controller import ApplyController, GroupController
from .diff import summarize_diff
from .errors import (
    AclEngineError,
    BindingReconcileError,
    DeviceOperationError,
    GroupNotFoundError,
    ValidationError,
)
from .identity import binding_identity_resolver, group_identity_resolver
from .parser import AclParser
from .schema import (
    ApplyBinding,
    FilterTable,
    GroupStatus,
    OperationResult,
)

logger = logging.getLogger(__name__)


def _error_context(error: Exception) -> Optional[str]:
    """Details a caller needs to decide how to converge after a failure."""
    if isinstance(error, ValidationError):
        return "\n".join(error.errors)
    if isinstance(error, DeviceOperationError):
        done = error.completed.describe() if error.completed else []
        lines = [f"Failed: {error.operation} filter {error.number}"]
        if done:
            lines.append("Completed before the failure (not rolled back):")
            lines.extend(f"  {line}" for line in done)
        lines.append("Re-run the same operation to converge.")
        return "\n".join(lines)
    if isinstance(error, BindingReconcileError):
        return "\n".join(str(failure) for failure in error.result.errors)
    return None


class AclEngine:
    """
    Main engine for managing access lists on routers.

    Usage:
        engine = AclEngine(inventory)
        result = await engine.apply("rtx-edge", declaration, dry_run=True)
    """

    def __init__(
        self,
        inventory: RouterInventory,
        store: Optional[StateStore] = None,
    ):
        """
        Initialize the engine.

        Args:
            inventory: Router inventory for looking up devices
            store: Snapshot store (default: StateStore())
        """
        self.inventory = inventory
        self.store = store or StateStore()
        self.parser = AclParser()

    def _group_controller(self, device: FilterDevice) -> GroupController:
        return GroupController(device, check_conflicts=device.config.check_conflicts)

    def _standalone_bindings(
        self,
        device_id: str,
        table: FilterTable,
        exclude: Optional[str] = None,
    ) -> list[tuple[str, ApplyBinding]]:
        """Standalone bindings on every table sharing slots with `table`."""
        return [
            (f"apply {state.identity}", state.binding)
            for slot_table in table.slot_tables
            for state in self.store.list_applies(device_id, slot_table)
            if state.identity != exclude
        ]

    def _inline_bindings(
        self,
        device_id: str,
        table: FilterTable,
        exclude: Optional[str] = None,
    ) -> list[tuple[str, ApplyBinding]]:
        """Inline group bindings on every table sharing slots with `table`.

        `exclude` is a group identity ("<table>:<name>").
        """
        return [
            (f"access list {group.name}", binding)
            for slot_table in table.slot_tables
            for group in self.store.list_groups(device_id, slot_table)
            if group.identity != exclude
            for binding in group.bindings
        ]

    def _fail(self, result: OperationResult, error: Exception) -> OperationResult:
        if isinstance(error, AclEngineError):
            logger.error(f"{result.operation} {result.identity} failed: {error}")
        else:
            logger.exception(f"{result.operation} {result.identity} failed: {error}")
        result.success = False
        result.error = str(error)
        result.error_context = _error_context(error)
        return result

    def _record_partial(self, device_id: str, error: Exception) -> Optional[dict[str, Any]]:
        """Store what a failed apply left on the router; returns the stored snapshot."""
        if not isinstance(error, (DeviceOperationError, BindingReconcileError)):
            return None
        partial = error.partial_state
        if partial is None or not (partial.entries or partial.bindings):
            return None
        self.store.save_group(device_id, partial)
        logger.warning(
            f"Recorded partial state of {partial.identity} on {device_id}: "
            f"filters {', '.join(str(n) for n in partial.numbers) or 'none'}"
        )
        return partial.to_dict()

    async def _save_config(self, device: FilterDevice, result: OperationResult) -> None:
        if not device.config.save_after_apply:
            return
        try:
            await device.save_config()
        except Exception as e:
            # Running config is already correct; only persistence failed
            logger.warning(f"Save failed on {device.device_id}: {e}")
            result.warnings.append(f"Configuration not saved: {e}")

    # === Access lists ===

    async def apply(
        self,
        device_id: str,
        config: dict[str, Any],
        dry_run: bool = False,
        allow_recreate: bool = False,
    ) -> OperationResult:
        """
        Create or update an access list.

        This is the main entry point. Whether it creates or updates is
        decided by the stored snapshot of the same table and name.

        Args:
            device_id: Router from the inventory
            config: Access list declaration
            dry_run: If True, preview changes without applying
            allow_recreate: Permit auto/manual mode switches (delete + create)

        Returns:
            OperationResult with the new snapshot in `state`
        """
        result = OperationResult(operation="acl_apply", dry_run=dry_run)

        try:
            spec = self.parser.parse(config)
        except AclEngineError as e:
            result.error = f"Parse error: {e}"
            return result

        result.identity = spec.identity
        previous = self.store.load_group(device_id, spec.table, spec.name)
        result.operation = "acl_create" if previous is None else "acl_update"

        try:
            device = self.inventory.get_device(device_id)
        except (KeyError, ValueError) as e:
            return self._fail(result, e)

        external = (
            self._inline_bindings(device_id, spec.table, exclude=spec.identity)
            + self._standalone_bindings(device_id, spec.table)
        )
        tracker = ChangeTracker(device_id)

        try:
            async with device:
                controller = self._group_controller(device)
                plan = await controller.prepare(spec, previous, external, allow_recreate)
                result.warnings.extend(plan.warnings)

                if dry_run:
                    result.changes_made = summarize_diff(plan.diff, spec.name).split("\n")
                    if plan.recreate:
                        result.changes_made.insert(0, "Sequencing mode changes: access list is re-created")
                    if plan.rebind:
                        result.changes_made.extend(f"  [~] Bind {b.describe()}" for b in plan.bindings)
                    result.state = previous.to_dict() if previous else None
                    result.success = True
                    return result

                logger.info(f"Applying {spec.identity} to {device_id}: {plan.diff.total_operations} operations")
                outcome = await controller.execute(plan)
                await self._save_config(device, result)

        except Exception as e:
            self._fail(result, e)
            if not dry_run:
                after_state = self._record_partial(device_id, e)
                if after_state is not None:
                    result.state = after_state
                tracker.log_change(
                    result.operation, result.identity, config, success=False,
                    error=result.error, before_state=previous.to_dict() if previous else None,
                    after_state=after_state,
                )
            return result

        self.store.save_group(device_id, outcome.state)
        result.state = outcome.state.to_dict()
        result.changes_made = outcome.describe()
        result.success = True

        tracker.log_change(
            result.operation, result.identity, config, success=True,
            changes=result.changes_made,
            before_state=previous.to_dict() if previous else None,
            after_state=result.state,
        )
        return result

    async def plan(
        self,
        device_id: str,
        config: dict[str, Any],
        allow_recreate: bool = False,
    ) -> OperationResult:
        """Preview an apply without changing the router."""
        result = await self.apply(device_id, config, dry_run=True, allow_recreate=allow_recreate)
        result.operation = "acl_plan"
        return result

    async def read(self, device_id: str, table: str, name: str) -> OperationResult:
        """
        Refresh an access list from the router.

        When none of its numbers exist any more, the snapshot is dropped and
        the result carries status "absent".
        """
        result = OperationResult(operation="acl_read", identity=f"{table}:{name}")

        try:
            filter_table = FilterTable(table)
            previous = self.store.load_group(device_id, filter_table, name)
            if previous is None:
                raise GroupNotFoundError(f"access list {table}:{name} is not managed on {device_id}")

            device = self.inventory.get_device(device_id)
            async with device:
                state = await self._group_controller(device).read(previous)
        except Exception as e:
            return self._fail(result, e)

        if state is None:
            self.store.delete_group(device_id, filter_table, name)
            result.state = {"name": name, "table": table, "status": GroupStatus.ABSENT.value}
            result.warnings.append(f"Access list {table}:{name} no longer exists on {device_id}")
        else:
            dropped = sorted(set(previous.numbers) - set(state.numbers))
            if dropped:
                result.warnings.append(
                    f"Missing on router: {', '.join(str(n) for n in dropped)}"
                )
            self.store.save_group(device_id, state)
            result.state = state.to_dict()

        result.success = True
        return result

    async def delete(self, device_id: str, table: str, name: str) -> OperationResult:
        """Unbind and delete a managed access list."""
        result = OperationResult(operation="acl_delete", identity=f"{table}:{name}")
        tracker = ChangeTracker(device_id)
        previous = None

        try:
            filter_table = FilterTable(table)
            previous = self.store.load_group(device_id, filter_table, name)
            if previous is None:
                raise GroupNotFoundError(f"access list {table}:{name} is not managed on {device_id}")

            device = self.inventory.get_device(device_id)
            async with device:
                outcome = await self._group_controller(device).destroy(previous)
                await self._save_config(device, result)
        except Exception as e:
            self._fail(result, e)
            tracker.log_change(
                result.operation, result.identity, {}, success=False, error=result.error,
                before_state=previous.to_dict() if previous else None,
            )
            return result

        self.store.delete_group(device_id, filter_table, name)
        result.state = outcome.state.to_dict()
        result.changes_made = outcome.describe()
        result.warnings.extend(outcome.warnings)
        result.success = True

        tracker.log_change(
            result.operation, result.identity, {}, success=True,
            changes=result.changes_made, before_state=previous.to_dict(),
        )
        return result

    async def import_group(
        self,
        device_id: str,
        identity: str,
        sequence_start: Optional[int] = None,
        sequence_step: Optional[int] = None,
    ) -> OperationResult:
        """
        Adopt existing router filters as a managed access list.

        Args:
            device_id: Router from the inventory
            identity: "<table>:<name>[:<n1>,<n2>,...]" (or the legacy
                "<name>[:<n1>,...]" form, which implies the ip table)
            sequence_start: Reinterpret the numbers as auto mode
            sequence_step: Step for auto mode
        """
        result = OperationResult(operation="acl_import", identity=identity)

        try:
            parsed = group_identity_resolver.resolve(identity)
            result.identity = parsed.canonical
            result.identity_migrated = parsed.migrated

            if self.store.load_group(device_id, parsed.table, parsed.name):
                raise ValidationError([f"access list {parsed.canonical} is already managed on {device_id}"])

            device = self.inventory.get_device(device_id)
            async with device:
                state = await self._group_controller(device).import_group(
                    parsed.table,
                    parsed.name,
                    parsed.candidates,
                    sequence_start=sequence_start,
                    sequence_step=sequence_step,
                )
        except Exception as e:
            return self._fail(result, e)

        if parsed.migrated:
            result.warnings.append(f"Legacy identity {identity!r} stored as {parsed.canonical!r}")

        self.store.save_group(device_id, state)
        result.state = state.to_dict()
        result.changes_made = [f"Imported filter {n}" for n in state.numbers]
        result.success = True

        ChangeTracker(device_id).log_change(
            result.operation, result.identity, {"identity": identity}, success=True,
            changes=result.changes_made, after_state=result.state,
        )
        return result

    # === Standalone apply bindings ===

    async def set_binding(
        self,
        device_id: str,
        config: dict[str, Any],
        dry_run: bool = False,
    ) -> OperationResult:
        """Create or update a standalone interface binding."""
        result = OperationResult(operation="apply_set", dry_run=dry_run)
        tracker = ChangeTracker(device_id)
        previous = None

        try:
            spec = self.parser.parse_apply(config)
            result.identity = spec.identity
            previous = self.store.load_apply(device_id, spec.table, spec.interface, spec.direction)

            claimed = (
                self._inline_bindings(device_id, spec.table)
                + self._standalone_bindings(device_id, spec.table, exclude=spec.identity)
            )

            device = self.inventory.get_device(device_id)
            controller = ApplyController(device)

            if dry_run:
                result.warnings.extend(controller.prepare(spec, claimed))
                result.changes_made = [f"  [~] Bind {spec.binding.describe()}"]
                result.state = previous.to_dict() if previous else None
                result.success = True
                return result

            async with device:
                if previous is None:
                    state = await controller.create(spec, claimed)
                else:
                    state = await controller.update(previous, spec, claimed)
                await self._save_config(device, result)
        except Exception as e:
            self._fail(result, e)
            if not dry_run:
                tracker.log_change(
                    result.operation, result.identity, config, success=False, error=result.error,
                    before_state=previous.to_dict() if previous else None,
                )
            return result

        self.store.save_apply(device_id, state)
        result.state = state.to_dict()
        result.changes_made = [f"Bound {spec.binding.describe()}"]
        result.success = True

        tracker.log_change(
            result.operation, result.identity, config, success=True,
            changes=result.changes_made,
            before_state=previous.to_dict() if previous else None,
            after_state=result.state,
        )
        return result

    async def read_binding(self, device_id: str, identity: str) -> OperationResult:
        """Refresh a standalone binding from the router."""
        result = OperationResult(operation="apply_read", identity=identity)

        try:
            parsed = binding_identity_resolver.resolve(identity)
            result.identity = parsed.canonical
            result.identity_migrated = parsed.migrated

            previous = self.store.load_apply(device_id, parsed.table, parsed.interface, parsed.direction)
            if previous is None:
                raise GroupNotFoundError(f"apply {parsed.canonical} is not managed on {device_id}")

            device = self.inventory.get_device(device_id)
            async with device:
                state = await ApplyController(device).read(previous)
        except Exception as e:
            return self._fail(result, e)

        if state is None:
            self.store.delete_apply(device_id, parsed.table, parsed.interface, parsed.direction)
            result.state = {"identity": parsed.canonical, "status": GroupStatus.ABSENT.value}
            result.warnings.append(f"Nothing bound on {parsed.interface} {parsed.direction.value}")
        else:
            self.store.save_apply(device_id, state)
            result.state = state.to_dict()

        result.success = True
        return result

    async def delete_binding(self, device_id: str, identity: str) -> OperationResult:
        """Unbind a standalone binding."""
        result = OperationResult(operation="apply_delete", identity=identity)
        tracker = ChangeTracker(device_id)

        try:
            parsed = binding_identity_resolver.resolve(identity)
            result.identity = parsed.canonical
            result.identity_migrated = parsed.migrated

            previous = self.store.load_apply(device_id, parsed.table, parsed.interface, parsed.direction)
            if previous is None:
                raise GroupNotFoundError(f"apply {parsed.canonical} is not managed on {device_id}")

            device = self.inventory.get_device(device_id)
            async with device:
                await ApplyController(device).delete(previous)
                await self._save_config(device, result)
        except Exception as e:
            self._fail(result, e)
            tracker.log_change(result.operation, result.identity, {}, success=False, error=result.error)
            return result

        self.store.delete_apply(device_id, parsed.table, parsed.interface, parsed.direction)
        result.changes_made = [f"Unbound {parsed.interface} {parsed.direction.value}"]
        result.success = True

        tracker.log_change(
            result.operation, result.identity, {}, success=True,
            changes=result.changes_made, before_state=previous.to_dict(),
        )
        return result

    async def import_binding(
        self,
        device_id: str,
        identity: str,
        access_list: str = "",
    ) -> OperationResult:
        """Adopt an existing interface binding as a standalone apply."""
        result = OperationResult(operation="apply_import", identity=identity)

        try:
            parsed = binding_identity_resolver.resolve(identity)
            result.identity = parsed.canonical
            result.identity_migrated = parsed.migrated

            device = self.inventory.get_device(device_id)
            async with device:
                state = await ApplyController(device).import_binding(parsed, access_list)
        except Exception as e:
            return self._fail(result, e)

        if parsed.migrated:
            result.warnings.append(f"Legacy identity {identity!r} stored as {parsed.canonical!r}")

        self.store.save_apply(device_id, state)
        result.state = state.to_dict()
        result.changes_made = [f"Imported {state.binding.describe()}"]
        result.success = True

        ChangeTracker(device_id).log_change(
            result.operation, result.identity, {"identity": identity}, success=True,
            changes=result.changes_made, after_state=result.state,
        )
        return result

    def list_managed(self, device_id: str) -> dict[str, Any]:
        """Stored access lists and standalone bindings of one router."""
        return {
            "access_lists": [g.identity for g in self.store.list_groups(device_id)],
            "applies": [
                a.identity
                for table in FilterTable
                for a in self.store.list_applies(device_id, table)
            ],
        }
