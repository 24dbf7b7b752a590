"""Parser for access list declarations.

Converts dict/YAML input to strongly-typed AccessListSpec and ApplySpec
objects.
"""
from dataclasses import fields
from typing import Any, Optional

from .errors import ParseError
from .schema import (
    PAYLOAD_TYPES,
    AccessListSpec,
    ApplyBinding,
    ApplySpec,
    Direction,
    Entry,
    FilterPayload,
    FilterTable,
)


class AclParser:
    """Parse access list declarations from dict/YAML format."""

    def parse(self, config: dict[str, Any]) -> AccessListSpec:
        """
        Parse a declaration dict into an AccessListSpec.

        Args:
            config: Dict with name, table, sequence_start, entries, apply, ...

        Returns:
            AccessListSpec object

        Raises:
            ParseError: If the declaration is malformed
        """
        name = config.get("name")
        if not name:
            raise ParseError("Missing required field: name")

        table = self._parse_table(config.get("table", FilterTable.IP.value))

        entries = [
            self._parse_entry(table, i, raw)
            for i, raw in enumerate(config.get("entries") or [])
        ]

        applies = [
            self._parse_binding(raw)
            for raw in (config.get("apply") or config.get("applies") or [])
        ]

        return AccessListSpec(
            name=str(name),
            table=table,
            sequence_start=self._optional_int(config.get("sequence_start"), "sequence_start"),
            sequence_step=self._optional_int(config.get("sequence_step"), "sequence_step"),
            entries=entries,
            applies=applies,
        )

    def parse_apply(self, config: dict[str, Any]) -> ApplySpec:
        """
        Parse a standalone apply declaration.

        Raises:
            ParseError: If the declaration is malformed
        """
        access_list = config.get("access_list")
        if not access_list:
            raise ParseError("Missing required field: access_list")

        binding = self._parse_binding(config)
        if not binding.filter_ids and not binding.dynamic_filter_ids:
            raise ParseError(
                f"apply {binding.interface} {binding.direction.value}: "
                f"filter_ids is required"
            )

        return ApplySpec(
            access_list=str(access_list),
            interface=binding.interface,
            direction=binding.direction,
            filter_ids=binding.filter_ids or (),
            table=self._parse_table(config.get("table", FilterTable.IP.value)),
            dynamic_filter_ids=binding.dynamic_filter_ids,
        )

    def _parse_table(self, value: Any) -> FilterTable:
        try:
            return FilterTable(str(value).lower())
        except ValueError:
            raise ParseError(
                f"Invalid table: {value}. Must be one of: "
                f"{', '.join(t.value for t in FilterTable)}"
            )

    def _parse_entry(self, table: FilterTable, index: int, raw: Any) -> Entry:
        """Parse a single entry into its table's payload type."""
        if not isinstance(raw, dict):
            raise ParseError(f"entry[{index}]: expected a mapping, got {type(raw).__name__}")

        raw = dict(raw)
        sequence = self._optional_int(raw.pop("sequence", None), f"entry[{index}].sequence")

        payload = self._parse_payload(table, index, raw)
        return Entry(payload=payload, sequence=sequence)

    def _parse_payload(self, table: FilterTable, index: int, raw: dict[str, Any]) -> FilterPayload:
        payload_cls = PAYLOAD_TYPES[table]
        allowed = {f.name for f in fields(payload_cls)}

        unknown = set(raw) - allowed
        if unknown:
            raise ParseError(
                f"entry[{index}]: unknown field(s) for {table.value} filter: "
                f"{', '.join(sorted(unknown))}"
            )
        if "action" in allowed and not raw.get("action"):
            raise ParseError(f"entry[{index}]: missing required field: action")

        values = {}
        for key, value in raw.items():
            if value is None:
                continue
            if key in ("established", "syslog"):
                values[key] = value if isinstance(value, bool) else str(value).lower() in ("true", "yes", "on", "1")
                continue
            # Ports may be written as plain integers in YAML
            values[key] = str(value)
        return payload_cls(**values)

    def _parse_binding(self, raw: dict[str, Any]) -> ApplyBinding:
        interface = raw.get("interface")
        if not interface:
            raise ParseError("apply: missing required field: interface")

        direction_str = str(raw.get("direction", "")).lower()
        try:
            direction = Direction(direction_str)
        except ValueError:
            raise ParseError(
                f"apply {interface}: invalid direction {raw.get('direction')!r}. "
                f"Must be 'in' or 'out'"
            )

        label = f"apply {interface} {direction_str}"
        filter_ids = self._number_list(raw.get("filter_ids"), f"{label}: filter_ids")
        dynamic_ids = self._number_list(raw.get("dynamic_filter_ids"), f"{label}: dynamic_filter_ids")

        return ApplyBinding(
            interface=str(interface),
            direction=direction,
            filter_ids=filter_ids,
            dynamic_filter_ids=dynamic_ids or (),
        )

    def _number_list(self, value: Any, label: str) -> Optional[tuple[int, ...]]:
        if value is None:
            return None
        try:
            return tuple(int(i) for i in value)
        except (TypeError, ValueError):
            raise ParseError(f"{label} must be integers")

    def _optional_int(self, value: Any, label: str) -> Optional[int]:
        """Treat None and 0 as unset."""
        if value is None or value == "":
            return None
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ParseError(f"{label}: expected an integer, got {value!r}")
        return number or None
