"""Reconcile interface filter bindings ("apply" blocks).

Each (interface, direction) slot is an independent device resource. A bind
replaces the whole ordered filter list of the slot, so slots are reconciled
one by one and a failure on one slot never blocks the others.
"""
import logging
from typing import Iterable, Sequence

from ..devices.base import DeviceNotFoundError, FilterDevice
from .errors import BindingConflictError
from .schema import (
    ApplyBinding,
    BindingFailure,
    BindingResult,
    Direction,
    FilterTable,
)

logger = logging.getLogger(__name__)


def check_binding_conflicts(
    inline: Iterable[ApplyBinding],
    external: Iterable[tuple[str, ApplyBinding]] = (),
    owner: str = "inline apply",
) -> None:
    """
    Reject slots claimed by more than one binding source.

    Args:
        inline: Bindings declared on the group itself
        external: (source name, binding) pairs from other groups and standalone
            apply resources
        owner: Label used for the inline source in the error

    Raises:
        BindingConflictError: On the first slot with two sources
    """
    claimed: dict[tuple[str, Direction], str] = {}

    for binding in inline:
        claimed.setdefault(binding.slot, owner)

    for source, binding in external:
        if binding.slot in claimed:
            raise BindingConflictError(
                binding.interface,
                binding.direction.value,
                [claimed[binding.slot], source],
            )
        claimed[binding.slot] = source


class ApplyBindingReconciler:
    """Synchronize declared bindings against previously bound state."""

    def __init__(self, device: FilterDevice):
        self.device = device

    async def reconcile(
        self,
        table: FilterTable,
        old: Sequence[ApplyBinding],
        new: Sequence[ApplyBinding],
        fallback: Sequence[int],
    ) -> BindingResult:
        """
        Move interface bindings from `old` to `new`.

        Slots present in old but not in new are unbound. Every slot in new
        is bound with its resolved number list (explicit filter_ids, else
        `fallback`). Errors are collected, not raised.

        Args:
            table: Filter table the bindings refer to
            old: Bindings recorded in the previous snapshot
            new: Declared bindings
            fallback: Current group numbers in entry order

        Returns:
            BindingResult with bound and unbound slots and per-slot errors
        """
        result = BindingResult()
        new_slots = {b.slot for b in new}

        for binding in old:
            if binding.slot not in new_slots:
                await self._unbind(table, binding, result)

        for binding in new:
            numbers = binding.resolve(fallback)
            if not numbers and not binding.dynamic_filter_ids:
                # Nothing to bind; make sure nothing stale stays bound
                if binding.slot in {b.slot for b in old}:
                    await self._unbind(table, binding, result)
                continue
            await self._bind(table, binding, numbers, result)

        if result.errors:
            logger.warning(
                f"{len(result.errors)} binding(s) failed on {self.device.device_id}: "
                + "; ".join(str(e) for e in result.errors)
            )
        return result

    async def unbind_all(
        self,
        table: FilterTable,
        bindings: Sequence[ApplyBinding],
    ) -> BindingResult:
        """Unbind every slot, collecting errors."""
        result = BindingResult()
        for binding in bindings:
            await self._unbind(table, binding, result)
        return result

    async def read(
        self,
        table: FilterTable,
        bindings: Sequence[ApplyBinding],
    ) -> list[ApplyBinding]:
        """
        Observe the numbers bound to each recorded slot.

        Dynamic numbers behind a static list are read back only for slots
        recorded with some. Slots with nothing bound are left out of the
        result.
        """
        observed = []
        for binding in bindings:
            numbers = await self.device.list_interface_filters(
                table, binding.interface, binding.direction
            )
            dynamic: list[int] = []
            if binding.dynamic_filter_ids and table.dynamic_table:
                dynamic = await self.device.list_interface_filters(
                    table.dynamic_table, binding.interface, binding.direction
                )
            if not numbers and not dynamic:
                logger.debug(f"Nothing bound on {binding.interface} {binding.direction.value}")
                continue
            observed.append(
                ApplyBinding(binding.interface, binding.direction, tuple(numbers), tuple(dynamic))
            )
        return observed

    async def _bind(
        self,
        table: FilterTable,
        binding: ApplyBinding,
        numbers: list[int],
        result: BindingResult,
    ) -> None:
        try:
            await self.device.bind_interface_filters(
                table, binding.interface, binding.direction, numbers, binding.dynamic_filter_ids
            )
        except Exception as e:
            result.errors.append(
                BindingFailure(binding.interface, binding.direction, "bind", str(e))
            )
            return
        result.bound.append(ApplyBinding(
            binding.interface, binding.direction, tuple(numbers), binding.dynamic_filter_ids
        ))

    async def _unbind(
        self,
        table: FilterTable,
        binding: ApplyBinding,
        result: BindingResult,
    ) -> None:
        try:
            await self.device.unbind_interface_filters(
                table, binding.interface, binding.direction
            )
        except DeviceNotFoundError:
            logger.debug(f"{binding.interface} {binding.direction.value} already unbound")
        except Exception as e:
            result.errors.append(
                BindingFailure(binding.interface, binding.direction, "unbind", str(e))
            )
            return
        result.unbound.append(binding.slot)
