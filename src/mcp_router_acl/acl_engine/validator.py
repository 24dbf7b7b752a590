"""Pre-flight validation for access list declarations.

Catches logical errors before any router communication.
"""
import re
from typing import Optional

from .errors import SequenceRangeError
from .schema import (
    DYNAMIC_PROTOCOLS,
    FILTER_ACTIONS,
    AccessListSpec,
    ApplyBinding,
    ApplySpec,
    AutoMode,
    DynamicFilterPayload,
    FilterTable,
    ValidationResult,
)
from .sequence import SequenceAssigner


# Interfaces that accept secure filter bindings
INTERFACE_PATTERN = re.compile(r"^(lan|bridge|pp|tunnel)\d+$")

# Ethernet filters can only be bound to LAN-type interfaces
MAC_FORBIDDEN_PREFIXES = ("pp", "tunnel")

LARGE_GROUP_THRESHOLD = 100


class ConfigValidator:
    """Validate access list declarations for logical errors before execution."""

    def __init__(self, assigner: Optional[SequenceAssigner] = None):
        self.assigner = assigner or SequenceAssigner()

    def validate(self, spec: AccessListSpec) -> ValidationResult:
        """
        Validate an access list declaration.

        Performs pre-flight checks:
        - Sequencing mode (auto and manual cannot be mixed)
        - Sequence ranges and duplicates
        - Entry actions (protocols for dynamic filters)
        - Apply blocks (interfaces, directions, filter IDs)

        Args:
            spec: The declared access list

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not spec.name:
            errors.append("access list name must not be empty")

        self._validate_sequences(spec, errors, warnings)
        self._validate_actions(spec, errors)
        self._validate_applies(spec.table, spec.applies, errors, warnings, self._own_numbers(spec))

        if len(spec.entries) > LARGE_GROUP_THRESHOLD:
            warnings.append(
                f"Large access list ({len(spec.entries)} entries) - "
                f"every entry is re-sent on each apply"
            )

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

    def validate_apply(self, spec: ApplySpec) -> ValidationResult:
        """Validate a standalone apply declaration."""
        errors: list[str] = []
        warnings: list[str] = []

        if not spec.access_list:
            errors.append("access_list must not be empty")
        if not spec.filter_ids and not spec.dynamic_filter_ids:
            errors.append(
                f"apply {spec.interface} {spec.direction.value}: filter_ids must not be empty"
            )
        self._validate_applies(spec.table, [spec.binding], errors, warnings, None)

        return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings)

    def _own_numbers(self, spec: AccessListSpec) -> Optional[set[int]]:
        if isinstance(spec.mode, AutoMode):
            return set(self.assigner.assign(spec.entries, spec.mode))
        numbers = {e.sequence for e in spec.entries if e.sequence}
        return numbers or None

    def _validate_sequences(
        self,
        spec: AccessListSpec,
        errors: list[str],
        warnings: list[str]
    ) -> None:
        """Validate sequencing mode and numbers."""
        if not spec.entries:
            warnings.append(f"access list {spec.name} has no entries")
            return

        if spec.sequence_start is not None and spec.sequence_start < 0:
            errors.append(
                f"sequence_start must be a positive integer, got {spec.sequence_start}"
            )
            return

        mode = spec.mode
        if isinstance(mode, AutoMode):
            if spec.has_explicit_sequences:
                errors.append(
                    "cannot mix auto and manual sequencing: entries have explicit "
                    "sequence values while sequence_start is set. Either remove "
                    "sequence_start to use manual mode, or remove sequence from all entries"
                )
                return
            try:
                self.assigner.validate_range(mode.start, mode.step, len(spec.entries))
            except SequenceRangeError as e:
                errors.append(str(e))
            return

        if spec.sequence_step:
            warnings.append("sequence_step is ignored without sequence_start")

        seen: dict[int, int] = {}
        for i, entry in enumerate(spec.entries):
            if entry.sequence is None or entry.sequence <= 0:
                errors.append(
                    f"entry[{i}]: sequence is required in manual mode "
                    f"(no sequence_start set)"
                )
                continue
            if not self.assigner.in_range(entry.sequence):
                errors.append(
                    f"entry[{i}]: sequence {entry.sequence} out of range "
                    f"({self.assigner.min_sequence}-{self.assigner.max_sequence})"
                )
            if entry.sequence in seen:
                errors.append(
                    f"entry[{i}]: duplicate sequence {entry.sequence} "
                    f"(also used by entry[{seen[entry.sequence]}])"
                )
            else:
                seen[entry.sequence] = i

    def _validate_actions(self, spec: AccessListSpec, errors: list[str]) -> None:
        for i, entry in enumerate(spec.entries):
            if isinstance(entry.payload, DynamicFilterPayload):
                protocol = entry.payload.protocol.lower()
                if protocol not in DYNAMIC_PROTOCOLS:
                    errors.append(
                        f"entry[{i}]: invalid dynamic protocol {entry.payload.protocol!r}. "
                        f"Valid: {', '.join(DYNAMIC_PROTOCOLS)}"
                    )
            else:
                action = getattr(entry.payload, "action", None)
                if action not in FILTER_ACTIONS:
                    errors.append(
                        f"entry[{i}]: invalid action {action!r}. "
                        f"Valid: {', '.join(FILTER_ACTIONS)}"
                    )
            if entry.payload.table != spec.table:
                errors.append(
                    f"entry[{i}]: {entry.payload.table.value} payload in a "
                    f"{spec.table.value} access list"
                )

    def _validate_applies(
        self,
        table: FilterTable,
        applies: list[ApplyBinding],
        errors: list[str],
        warnings: list[str],
        own_numbers: Optional[set[int]],
    ) -> None:
        """Validate apply blocks."""
        slots: set = set()

        for binding in applies:
            label = f"apply {binding.interface} {binding.direction.value}"

            if not INTERFACE_PATTERN.match(binding.interface):
                errors.append(
                    f"{label}: invalid interface name. "
                    f"Expected lan<N>, bridge<N>, pp<N> or tunnel<N>"
                )
            elif table == FilterTable.MAC and binding.interface.startswith(MAC_FORBIDDEN_PREFIXES):
                errors.append(
                    f"{label}: ethernet filters can only be applied to LAN or bridge interfaces"
                )

            if binding.slot in slots:
                errors.append(f"{label}: declared more than once")
            slots.add(binding.slot)

            filter_ids = binding.filter_ids or ()
            dynamic_ids = binding.dynamic_filter_ids
            if dynamic_ids and not table.dynamic_table:
                errors.append(
                    f"{label}: dynamic_filter_ids can only be bound through ip and ipv6 access lists"
                )

            for kind, ids in (("filter IDs", filter_ids), ("dynamic filter IDs", dynamic_ids)):
                if len(set(ids)) != len(ids):
                    errors.append(f"{label}: duplicate {kind}")

            for fid in (*filter_ids, *dynamic_ids):
                if not self.assigner.in_range(fid):
                    errors.append(
                        f"{label}: filter ID {fid} out of range "
                        f"({self.assigner.min_sequence}-{self.assigner.max_sequence})"
                    )

            if own_numbers is not None:
                foreign = [fid for fid in filter_ids if fid not in own_numbers]
                if foreign:
                    warnings.append(
                        f"{label}: filter IDs {', '.join(str(f) for f in foreign)} "
                        f"are not entries of this access list"
                    )
