"""Lifecycle controllers for access lists and standalone apply bindings.

Every operation takes the previous snapshot and the declaration as
arguments and returns a new snapshot. Nothing is kept between calls.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from ..devices.base import DeviceNotFoundError, FilterDevice
from .bindings import ApplyBindingReconciler, check_binding_conflicts
from .conflicts import check_sequence_conflicts
from .diff import SequenceDiffer
from .errors import (
    BindingReconcileError,
    DeviceOperationError,
    GroupNotFoundError,
    ImportMismatchError,
    ModeChangeError,
    ValidationError,
)
from .identity import BindingIdentity
from .schema import (
    DEFAULT_SEQUENCE_STEP,
    AccessListSpec,
    ApplyBinding,
    ApplySpec,
    ApplyState,
    Assignment,
    AutoMode,
    BindingResult,
    Entry,
    FilterTable,
    GroupState,
    GroupStatus,
    ManualMode,
    SequenceDiff,
    SyncResult,
)
from .sequence import SequenceAssigner, calculate_sequences
from .sync import DeviceSync
from .validator import ConfigValidator

logger = logging.getLogger(__name__)


@dataclass
class GroupPlan:
    """Everything decided before the first device mutation."""
    spec: AccessListSpec
    previous: Optional[GroupState]
    assignment: Assignment
    diff: SequenceDiff
    bindings: list[ApplyBinding]
    rebind: bool
    recreate: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass
class GroupOutcome:
    """Snapshot plus what was done to reach it."""
    state: GroupState
    sync: SyncResult = field(default_factory=SyncResult)
    bindings: BindingResult = field(default_factory=BindingResult)
    warnings: list[str] = field(default_factory=list)

    def describe(self) -> list[str]:
        # Listed in the order the device saw them
        if self.state.status == GroupStatus.DESTROYED:
            return self.bindings.describe() + self.sync.describe()
        return self.sync.describe() + self.bindings.describe()


def _binding_map(bindings: Iterable[ApplyBinding]) -> dict:
    return {b.slot: (tuple(b.filter_ids or ()), b.dynamic_filter_ids) for b in bindings}


class GroupController:
    """
    Drive create, read, update, delete and import for one access list.

    Usage:
        controller = GroupController(device)
        state = await controller.create(spec)
        state = await controller.update(state, new_spec)
        await controller.delete(state)
    """

    def __init__(
        self,
        device: FilterDevice,
        assigner: Optional[SequenceAssigner] = None,
        differ: Optional[SequenceDiffer] = None,
        validator: Optional[ConfigValidator] = None,
        check_conflicts: bool = True,
    ):
        self.device = device
        self.assigner = assigner or SequenceAssigner()
        self.differ = differ or SequenceDiffer()
        self.validator = validator or ConfigValidator(self.assigner)
        self.check_conflicts = check_conflicts
        self.syncer = DeviceSync(device)
        self.reconciler = ApplyBindingReconciler(device)

    def plan(self, previous: Optional[GroupState], spec: AccessListSpec) -> SequenceDiff:
        """Diff without validation or device I/O."""
        assignment = self.assigner.assign(spec.entries, spec.mode)
        return self.differ.diff(previous.numbers if previous else [], assignment)

    async def prepare(
        self,
        spec: AccessListSpec,
        previous: Optional[GroupState] = None,
        external_bindings: Iterable[tuple[str, ApplyBinding]] = (),
        allow_recreate: bool = False,
    ) -> GroupPlan:
        """
        Validate a declaration and compute the plan.

        Only reads from the device (conflict check). Every error raised here
        leaves the router untouched.

        Raises:
            ModeChangeError: Auto/manual switch without allow_recreate
            MissingSequenceError: Manual entry without a sequence
            ValidationError: Declaration failed pre-flight validation
            BindingConflictError: Slot claimed by another binding source
            SequenceConflictError: Planned numbers used by foreign entries
        """
        recreate = False
        if previous is not None and previous.mode.kind != spec.mode.kind:
            if not allow_recreate:
                raise ModeChangeError(
                    f"access list {spec.name}: switching from {previous.mode.kind} to "
                    f"{spec.mode.kind} sequencing requires re-creating the access list"
                )
            recreate = True

        assignment = self.assigner.assign(spec.entries, spec.mode)

        validation = self.validator.validate(spec)
        if not validation.valid:
            raise ValidationError(validation.errors)
        warnings = list(validation.warnings)

        check_binding_conflicts(spec.applies, external_bindings, owner=f"access list {spec.name}")

        owned = previous.numbers if previous else []
        if recreate:
            diff = SequenceDiff(to_delete=sorted(set(owned)), to_upsert=list(assignment))
        else:
            diff = self.differ.diff(owned, assignment)

        if self.check_conflicts:
            warning = await check_sequence_conflicts(
                self.device, spec.table, spec.name, assignment, owned
            )
            if warning:
                warnings.append(warning)

        bindings = [
            ApplyBinding(b.interface, b.direction, tuple(b.resolve(assignment)), b.dynamic_filter_ids)
            for b in spec.applies
        ]
        if previous is None or recreate:
            rebind = bool(bindings) or bool(previous and previous.bindings)
        else:
            rebind = _binding_map(previous.bindings) != _binding_map(bindings)

        return GroupPlan(
            spec=spec,
            previous=previous,
            assignment=assignment,
            diff=diff,
            bindings=bindings,
            rebind=rebind,
            recreate=recreate,
            warnings=warnings,
        )

    async def execute(self, plan: GroupPlan) -> GroupOutcome:
        """
        Apply a prepared plan to the device.

        A failure carries `partial_state`, the snapshot of what the router
        holds at that point, so the caller can record it and a retry owns
        the numbers this pass already defined.

        Raises:
            DeviceOperationError: A filter define/delete failed mid-pass
            BindingReconcileError: One or more interface bindings failed
        """
        spec = plan.spec
        old_bindings = list(plan.previous.bindings) if plan.previous else []
        outcome_bindings = BindingResult()

        if plan.recreate and old_bindings:
            outcome_bindings = await self.reconciler.unbind_all(spec.table, old_bindings)
            if not outcome_bindings.success:
                error = BindingReconcileError(outcome_bindings)
                error.partial_state = self._partial_state(
                    plan, old_bindings, SyncResult(), outcome_bindings
                )
                raise error
            old_bindings = []

        payloads = {number: entry.payload for number, entry in zip(plan.assignment, spec.entries)}
        try:
            sync_result = await self.syncer.sync(spec.table, plan.diff, payloads)
        except DeviceOperationError as e:
            e.partial_state = self._partial_state(plan, old_bindings, e.completed or SyncResult())
            raise

        if plan.rebind:
            result = await self.reconciler.reconcile(
                spec.table, old_bindings, spec.applies, list(plan.assignment)
            )
            result.unbound = outcome_bindings.unbound + result.unbound
            outcome_bindings = result
            if not result.success:
                error = BindingReconcileError(result)
                error.partial_state = self._partial_state(plan, old_bindings, sync_result, result)
                raise error

        state = GroupState(
            name=spec.name,
            table=spec.table,
            mode=spec.mode,
            entries=[
                Entry(payload=entry.payload, sequence=number)
                for number, entry in zip(plan.assignment, spec.entries)
            ],
            bindings=plan.bindings,
            status=GroupStatus.SYNCED,
        )
        return GroupOutcome(
            state=state,
            sync=sync_result,
            bindings=outcome_bindings,
            warnings=list(plan.warnings),
        )

    def _partial_state(
        self,
        plan: GroupPlan,
        old_bindings: Sequence[ApplyBinding],
        sync: SyncResult,
        bindings: Optional[BindingResult] = None,
    ) -> GroupState:
        """
        Snapshot of the router after a failed execute.

        Numbers the pass defined belong to the group from now on. Old numbers
        stay unless the pass removed them. A slot keeps its old binding until
        it was rebound or unbound.
        """
        spec = plan.spec
        planned = dict(zip(plan.assignment, spec.entries))
        gone = set(sync.deleted) | set(sync.already_absent) | set(sync.upserted)

        entries = [Entry(payload=planned[n].payload, sequence=n) for n in sync.upserted]
        survivors = [
            Entry(payload=e.payload, sequence=e.sequence)
            for e in (plan.previous.entries if plan.previous else [])
            if e.sequence not in gone
        ]
        entries.extend(survivors)

        slots = {b.slot: b for b in old_bindings}
        if bindings is not None:
            for slot in bindings.unbound:
                slots.pop(slot, None)
            for binding in bindings.bound:
                slots[binding.slot] = binding

        # Old numbers still on the router keep their numbering scheme
        mode = plan.previous.mode if plan.recreate and survivors else spec.mode

        return GroupState(
            name=spec.name,
            table=spec.table,
            mode=mode,
            entries=entries,
            bindings=list(slots.values()),
            status=GroupStatus.PARTIAL,
        )

    async def create(
        self,
        spec: AccessListSpec,
        external_bindings: Iterable[tuple[str, ApplyBinding]] = (),
    ) -> GroupState:
        """Define every entry, then bind every declared slot."""
        plan = await self.prepare(spec, None, external_bindings)
        return (await self.execute(plan)).state

    async def update(
        self,
        previous: GroupState,
        spec: AccessListSpec,
        external_bindings: Iterable[tuple[str, ApplyBinding]] = (),
        allow_recreate: bool = False,
    ) -> GroupState:
        """Move the device from `previous` to `spec`."""
        plan = await self.prepare(spec, previous, external_bindings, allow_recreate)
        return (await self.execute(plan)).state

    async def read(self, state: GroupState) -> Optional[GroupState]:
        """
        Re-read a group from the device.

        Entries that no longer exist are dropped. Returns None when none of
        the recorded numbers exist any more.

        Raises:
            DeviceOperationError: A read failed for a reason other than "not found"
        """
        entries = []
        for entry in state.entries:
            try:
                payload = await self.device.get_entry(state.table, entry.sequence)
            except DeviceNotFoundError:
                logger.info(f"{state.table.value} filter {entry.sequence} of {state.name} is gone")
                continue
            except Exception as e:
                raise DeviceOperationError("read", entry.sequence, e) from e
            entries.append(Entry(payload=payload, sequence=entry.sequence))

        if state.entries and not entries:
            logger.info(f"Access list {state.identity} no longer exists on {self.device.device_id}")
            return None

        bindings = await self.reconciler.read(state.table, state.bindings)

        return GroupState(
            name=state.name,
            table=state.table,
            mode=state.mode,
            entries=entries,
            bindings=bindings,
            status=GroupStatus.READ,
        )

    async def destroy(self, state: GroupState) -> GroupOutcome:
        """
        Unbind every slot, then delete every number.

        A failed unbind is logged and does not stop the delete; the router
        tolerates deleting a filter that is still referenced.
        """
        unbind = await self.reconciler.unbind_all(state.table, state.bindings)
        warnings = []
        for failure in unbind.errors:
            warning = f"Could not unbind before delete: {failure}"
            logger.warning(warning)
            warnings.append(warning)

        diff = self.differ.diff(state.numbers, [])
        sync_result = await self.syncer.sync(state.table, diff, {})

        destroyed = GroupState(
            name=state.name,
            table=state.table,
            mode=state.mode,
            status=GroupStatus.DESTROYED,
        )
        return GroupOutcome(state=destroyed, sync=sync_result, bindings=unbind, warnings=warnings)

    async def delete(self, state: GroupState) -> GroupState:
        return (await self.destroy(state)).state

    async def import_group(
        self,
        table: FilterTable,
        name: str,
        candidates: Sequence[int] = (),
        sequence_start: Optional[int] = None,
        sequence_step: Optional[int] = None,
    ) -> GroupState:
        """
        Adopt existing filters as a group.

        Each candidate number is looked up; missing ones are skipped. The
        router only stores final numbers, so the group is manual unless a
        start/step formula is supplied and every number found matches it.

        Args:
            table: Filter table to read
            name: Name of the adopted group
            candidates: Numbers to look up, in entry order. When empty, every
                number in the table is adopted.
            sequence_start: Reinterpret as auto mode starting here
            sequence_step: Step for auto mode (default 10)

        Raises:
            GroupNotFoundError: No candidate exists
            ImportMismatchError: Numbers do not follow start/step
        """
        if not candidates:
            logger.warning(f"No candidate numbers for {name}, adopting every {table.value} filter")
            candidates = await self.device.list_entry_numbers(table)

        entries = []
        seen = set()
        for number in candidates:
            if number in seen:
                continue
            seen.add(number)
            try:
                payload = await self.device.get_entry(table, number)
            except DeviceNotFoundError:
                logger.debug(f"{table.value} filter {number} not found, skipping")
                continue
            except Exception as e:
                raise DeviceOperationError("read", number, e) from e
            entries.append(Entry(payload=payload, sequence=number))

        if not entries:
            raise GroupNotFoundError(
                f"none of the {table.value} filters {', '.join(str(n) for n in candidates)} exist"
            )

        mode = ManualMode()
        if sequence_start:
            step = sequence_step or DEFAULT_SEQUENCE_STEP
            expected = calculate_sequences(sequence_start, step, len(entries))
            found = [e.sequence for e in entries]
            if found != expected:
                raise ImportMismatchError(
                    f"imported numbers {found} do not match sequence_start={sequence_start}, "
                    f"sequence_step={step} (expected {expected})"
                )
            mode = AutoMode(start=sequence_start, step=step)

        logger.info(
            f"Imported {table.value}:{name} with {len(entries)} entries in {mode.kind} mode"
        )
        return GroupState(
            name=name,
            table=table,
            mode=mode,
            entries=entries,
            status=GroupStatus.READ,
        )


class ApplyController:
    """Lifecycle of a standalone apply resource owning one interface slot."""

    def __init__(self, device: FilterDevice, validator: Optional[ConfigValidator] = None):
        self.device = device
        self.validator = validator or ConfigValidator()
        self.reconciler = ApplyBindingReconciler(device)

    def prepare(
        self,
        spec: ApplySpec,
        claimed: Iterable[tuple[str, ApplyBinding]] = (),
    ) -> list[str]:
        """
        Validate a standalone binding against every other claim on its slot.

        Returns:
            Validation warnings

        Raises:
            ValidationError, BindingConflictError
        """
        validation = self.validator.validate_apply(spec)
        if not validation.valid:
            raise ValidationError(validation.errors)
        check_binding_conflicts((), [*claimed, (f"apply {spec.identity}", spec.binding)])
        return validation.warnings

    async def create(
        self,
        spec: ApplySpec,
        claimed: Iterable[tuple[str, ApplyBinding]] = (),
    ) -> ApplyState:
        self.prepare(spec, claimed)
        return await self._bind(spec, [])

    async def update(
        self,
        previous: ApplyState,
        spec: ApplySpec,
        claimed: Iterable[tuple[str, ApplyBinding]] = (),
    ) -> ApplyState:
        self.prepare(spec, claimed)
        old = [previous.binding]
        if previous.table != spec.table:
            result = await self.reconciler.unbind_all(previous.table, old)
            if not result.success:
                raise BindingReconcileError(result)
            old = []
        return await self._bind(spec, old)

    async def read(self, state: ApplyState) -> Optional[ApplyState]:
        """Observed binding, or None when nothing is bound on the slot."""
        observed = await self.reconciler.read(state.table, [state.binding])
        if not observed:
            return None
        return ApplyState(
            access_list=state.access_list,
            table=state.table,
            binding=observed[0],
            status=GroupStatus.READ,
        )

    async def delete(self, state: ApplyState) -> ApplyState:
        result = await self.reconciler.unbind_all(state.table, [state.binding])
        if not result.success:
            raise BindingReconcileError(result)
        return ApplyState(
            access_list=state.access_list,
            table=state.table,
            binding=state.binding,
            status=GroupStatus.DESTROYED,
        )

    async def import_binding(self, identity: BindingIdentity, access_list: str = "") -> ApplyState:
        """
        Adopt whatever is bound on a slot.

        For an IPv4 or IPv6 slot the dynamic numbers bound behind the static
        list are adopted too.

        Raises:
            GroupNotFoundError: Nothing is bound on the slot
        """
        table = identity.table
        numbers = await self.device.list_interface_filters(
            table, identity.interface, identity.direction
        )
        dynamic: list[int] = []
        if table.dynamic_table:
            dynamic = await self.device.list_interface_filters(
                table.dynamic_table, identity.interface, identity.direction
            )
        if not numbers and not dynamic:
            raise GroupNotFoundError(
                f"no {table.value} filters bound on "
                f"{identity.interface} {identity.direction.value}"
            )
        return ApplyState(
            access_list=access_list,
            table=table,
            binding=ApplyBinding(identity.interface, identity.direction, tuple(numbers), tuple(dynamic)),
            status=GroupStatus.READ,
        )

    async def _bind(self, spec: ApplySpec, old: list[ApplyBinding]) -> ApplyState:
        result = await self.reconciler.reconcile(spec.table, old, [spec.binding], [])
        if not result.success:
            raise BindingReconcileError(result)
        return ApplyState(
            access_list=spec.access_list,
            table=spec.table,
            binding=spec.binding,
            status=GroupStatus.SYNCED,
        )
