"""Schema definitions for the ACL engine.

Defines the declared access list format, the payload families for each
filter table, and the snapshots produced by every lifecycle operation.
"""
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Optional, Union


# RTX routers accept filter numbers 1-65535 in every table
MIN_SEQUENCE = 1
MAX_SEQUENCE = 65535

DEFAULT_SEQUENCE_STEP = 10


class FilterTable(str, Enum):
    """Independent numeric filter spaces on the router.

    Dynamic (stateful inspection) filters have number spaces of their own
    but are bound through the same interface slots as the static IPv4 and
    IPv6 filters, after the "dynamic" keyword.
    """
    IP = "ip"
    IPV6 = "ipv6"
    MAC = "mac"
    IP_DYNAMIC = "ip_dynamic"
    IPV6_DYNAMIC = "ipv6_dynamic"

    @property
    def is_dynamic(self) -> bool:
        return self in (FilterTable.IP_DYNAMIC, FilterTable.IPV6_DYNAMIC)

    @property
    def binding_table(self) -> "FilterTable":
        """Static table whose interface slots this table is bound through."""
        return {
            FilterTable.IP_DYNAMIC: FilterTable.IP,
            FilterTable.IPV6_DYNAMIC: FilterTable.IPV6,
        }.get(self, self)

    @property
    def dynamic_table(self) -> Optional["FilterTable"]:
        return {
            FilterTable.IP: FilterTable.IP_DYNAMIC,
            FilterTable.IPV6: FilterTable.IPV6_DYNAMIC,
        }.get(self)

    @property
    def slot_tables(self) -> list["FilterTable"]:
        """Every table sharing interface slots with this one."""
        base = self.binding_table
        return [base, base.dynamic_table] if base.dynamic_table else [base]


class Direction(str, Enum):
    """Traffic direction of an interface binding."""
    IN = "in"
    OUT = "out"


class GroupStatus(str, Enum):
    """Lifecycle state of a managed group."""
    ABSENT = "absent"
    SYNCED = "synced"
    PARTIAL = "partial"
    READ = "read"
    DESTROYED = "destroyed"


FILTER_ACTIONS = (
    "pass",
    "reject",
    "restrict",
    "pass-log",
    "reject-log",
    "restrict-log",
    "pass-nolog",
    "reject-nolog",
)

# Application protocols a dynamic filter can inspect
DYNAMIC_PROTOCOLS = (
    "ftp",
    "www",
    "smtp",
    "pop3",
    "dns",
    "domain",
    "telnet",
    "ssh",
    "tcp",
    "udp",
    "*",
)


# --- Sequencing modes ---

@dataclass(frozen=True)
class AutoMode:
    """Numbers derived from position: start + index * step."""
    start: int
    step: int = DEFAULT_SEQUENCE_STEP

    @property
    def kind(self) -> str:
        return "auto"


@dataclass(frozen=True)
class ManualMode:
    """Numbers declared explicitly on every entry."""

    @property
    def kind(self) -> str:
        return "manual"


SequencingMode = Union[AutoMode, ManualMode]


def mode_to_dict(mode: SequencingMode) -> dict[str, Any]:
    if isinstance(mode, AutoMode):
        return {"kind": "auto", "start": mode.start, "step": mode.step}
    return {"kind": "manual"}


def mode_from_dict(data: dict[str, Any]) -> SequencingMode:
    if data.get("kind") == "auto":
        return AutoMode(
            start=int(data["start"]),
            step=int(data.get("step", DEFAULT_SEQUENCE_STEP)),
        )
    return ManualMode()


# --- Payload families ---

class FilterPayload(ABC):
    """Rule payload for one numbered filter entry.

    The reconciler never looks inside a payload; it only hands it to the
    device layer, which renders it with to_device_args().
    """

    table: FilterTable

    @abstractmethod
    def to_device_args(self) -> list[str]:
        """Render the payload as the CLI arguments following the number."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IPFilterPayload(FilterPayload):
    """IPv4 filter rule."""
    action: str
    source: str = "*"
    destination: str = "*"
    protocol: str = "*"
    source_port: str = "*"
    dest_port: str = "*"
    established: bool = False

    table = FilterTable.IP

    def to_device_args(self) -> list[str]:
        args = [self.action, self.source, self.destination, self.protocol]

        # A destination port needs a source port placeholder in front of it
        if self.source_port != "*" or self.dest_port != "*":
            args.append(self.source_port or "*")
        if self.dest_port != "*":
            args.append(self.dest_port)

        if self.established and self.protocol.lower() == "tcp":
            args.append("established")
        return args

    @classmethod
    def from_device_args(cls, args: list[str]) -> "IPFilterPayload":
        established = bool(args) and args[-1] == "established"
        if established:
            args = args[:-1]
        padded = list(args) + ["*"] * (6 - len(args))
        return cls(
            action=padded[0],
            source=padded[1],
            destination=padded[2],
            protocol=padded[3],
            source_port=padded[4],
            dest_port=padded[5],
            established=established,
        )


@dataclass
class IPv6FilterPayload(FilterPayload):
    """IPv6 filter rule."""
    action: str
    source: str = "*"
    destination: str = "*"
    protocol: str = "*"
    source_port: str = "*"
    dest_port: str = "*"

    table = FilterTable.IPV6

    def to_device_args(self) -> list[str]:
        args = [self.action, self.source, self.destination, self.protocol]
        if self.source_port != "*" or self.dest_port != "*":
            args.append(self.source_port or "*")
        if self.dest_port != "*":
            args.append(self.dest_port)
        return args

    @classmethod
    def from_device_args(cls, args: list[str]) -> "IPv6FilterPayload":
        padded = list(args) + ["*"] * (6 - len(args))
        return cls(
            action=padded[0],
            source=padded[1],
            destination=padded[2],
            protocol=padded[3],
            source_port=padded[4],
            dest_port=padded[5],
        )


@dataclass
class MACFilterPayload(FilterPayload):
    """Ethernet (MAC) filter rule."""
    action: str
    source_mac: str = "*"
    destination_mac: str = "*"
    ether_type: Optional[str] = None

    table = FilterTable.MAC

    def to_device_args(self) -> list[str]:
        args = [self.action, self.source_mac, self.destination_mac]
        if self.ether_type:
            args.append(self.ether_type)
        return args

    @classmethod
    def from_device_args(cls, args: list[str]) -> "MACFilterPayload":
        padded = list(args) + ["*"] * (3 - len(args))
        return cls(
            action=padded[0],
            source_mac=padded[1],
            destination_mac=padded[2],
            ether_type=args[3] if len(args) > 3 else None,
        )


@dataclass
class DynamicFilterPayload(FilterPayload):
    """IPv4 dynamic filter: stateful inspection of one application protocol.

    Dynamic filters carry no action; binding one to a slot lets the return
    traffic of inspected sessions through.
    """
    source: str = "*"
    destination: str = "*"
    protocol: str = "*"
    syslog: bool = False

    table = FilterTable.IP_DYNAMIC

    def to_device_args(self) -> list[str]:
        args = [self.source, self.destination, self.protocol]
        if self.syslog:
            args.extend(["syslog", "on"])
        return args

    @classmethod
    def from_device_args(cls, args: list[str]) -> "DynamicFilterPayload":
        padded = list(args) + ["*"] * (3 - len(args))
        options = " ".join(args[3:])
        return cls(
            source=padded[0],
            destination=padded[1],
            protocol=padded[2],
            syslog="syslog on" in options,
        )


@dataclass
class IPv6DynamicFilterPayload(DynamicFilterPayload):
    """IPv6 dynamic filter."""

    table = FilterTable.IPV6_DYNAMIC


PAYLOAD_TYPES: dict[FilterTable, type] = {
    FilterTable.IP: IPFilterPayload,
    FilterTable.IPV6: IPv6FilterPayload,
    FilterTable.MAC: MACFilterPayload,
    FilterTable.IP_DYNAMIC: DynamicFilterPayload,
    FilterTable.IPV6_DYNAMIC: IPv6DynamicFilterPayload,
}


def payload_from_dict(table: FilterTable, data: dict[str, Any]) -> FilterPayload:
    """Build the payload type of a table from a plain dict."""
    payload_cls = PAYLOAD_TYPES[FilterTable(table)]
    return payload_cls(**data)


# --- Declared entries and bindings ---

@dataclass
class Entry:
    """One declared rule.

    sequence is the explicit number in manual mode. In snapshots it always
    holds the realized number.
    """
    payload: FilterPayload
    sequence: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data = self.payload.to_dict()
        data["sequence"] = self.sequence
        return data


@dataclass(frozen=True)
class ApplyBinding:
    """Binding of filter numbers to an (interface, direction) slot.

    filter_ids of None or () means "all numbers of the owning group".
    dynamic_filter_ids are bound after the "dynamic" keyword of an IPv4
    or IPv6 slot.
    """
    interface: str
    direction: Direction
    filter_ids: Optional[tuple[int, ...]] = None
    dynamic_filter_ids: tuple[int, ...] = ()

    @property
    def slot(self) -> tuple[str, Direction]:
        return (self.interface, self.direction)

    def resolve(self, fallback: Iterable[int]) -> list[int]:
        """Effective ordered number list for this binding."""
        if self.filter_ids:
            return list(self.filter_ids)
        return list(fallback)

    def describe(self) -> str:
        numbers = " ".join(str(n) for n in self.filter_ids or ())
        if self.dynamic_filter_ids:
            numbers = f"{numbers} dynamic {' '.join(str(n) for n in self.dynamic_filter_ids)}".strip()
        return f"{self.interface} {self.direction.value}: {numbers}"

    def to_dict(self) -> dict[str, Any]:
        data = {
            "interface": self.interface,
            "direction": self.direction.value,
            "filter_ids": list(self.filter_ids) if self.filter_ids is not None else None,
        }
        if self.dynamic_filter_ids:
            data["dynamic_filter_ids"] = list(self.dynamic_filter_ids)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApplyBinding":
        filter_ids = data.get("filter_ids")
        return cls(
            interface=data["interface"],
            direction=Direction(str(data["direction"]).lower()),
            filter_ids=tuple(int(i) for i in filter_ids) if filter_ids is not None else None,
            dynamic_filter_ids=tuple(int(i) for i in data.get("dynamic_filter_ids") or ()),
        )


@dataclass
class AccessListSpec:
    """Declared access list: a named, ordered group of rules."""
    name: str
    table: FilterTable = FilterTable.IP
    sequence_start: Optional[int] = None
    sequence_step: Optional[int] = None
    entries: list[Entry] = field(default_factory=list)
    applies: list[ApplyBinding] = field(default_factory=list)

    @property
    def mode(self) -> SequencingMode:
        if self.sequence_start:
            return AutoMode(
                start=self.sequence_start,
                step=self.sequence_step or DEFAULT_SEQUENCE_STEP,
            )
        return ManualMode()

    @property
    def has_explicit_sequences(self) -> bool:
        return any(e.sequence is not None and e.sequence > 0 for e in self.entries)

    @property
    def identity(self) -> str:
        return f"{self.table.value}:{self.name}"


@dataclass
class ApplySpec:
    """Standalone apply resource managing exactly one interface slot."""
    access_list: str
    interface: str
    direction: Direction
    filter_ids: tuple[int, ...]
    table: FilterTable = FilterTable.IP
    dynamic_filter_ids: tuple[int, ...] = ()

    @property
    def binding(self) -> ApplyBinding:
        return ApplyBinding(self.interface, self.direction, self.filter_ids, self.dynamic_filter_ids)

    @property
    def identity(self) -> str:
        return f"{self.table.value}:{self.interface}:{self.direction.value}"


# --- Engine results ---

@dataclass
class ValidationResult:
    """Result of pre-flight validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Assignment:
    """Realized numbers, index-aligned with the entry list."""
    numbers: tuple[int, ...] = ()

    def __iter__(self) -> Iterator[int]:
        return iter(self.numbers)

    def __len__(self) -> int:
        return len(self.numbers)


@dataclass
class SequenceDiff:
    """Numbers to delete and numbers to define, for one group."""
    to_delete: list[int] = field(default_factory=list)
    to_upsert: list[int] = field(default_factory=list)

    @property
    def total_operations(self) -> int:
        return len(self.to_delete) + len(self.to_upsert)


@dataclass
class SyncResult:
    """Progress of one DeviceSync pass."""
    deleted: list[int] = field(default_factory=list)
    already_absent: list[int] = field(default_factory=list)
    upserted: list[int] = field(default_factory=list)

    def describe(self) -> list[str]:
        changes = [f"Deleted filter {n}" for n in self.deleted]
        changes.extend(f"Filter {n} already absent" for n in self.already_absent)
        changes.extend(f"Defined filter {n}" for n in self.upserted)
        return changes


@dataclass
class BindingFailure:
    """A single failed bind/unbind."""
    interface: str
    direction: Direction
    operation: str
    error: str

    def __str__(self) -> str:
        return f"{self.operation} {self.interface} {self.direction.value}: {self.error}"


@dataclass
class BindingResult:
    """Outcome of one binding reconciliation pass."""
    bound: list[ApplyBinding] = field(default_factory=list)
    unbound: list[tuple[str, Direction]] = field(default_factory=list)
    errors: list[BindingFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def describe(self) -> list[str]:
        changes = [f"Bound {b.describe()}" for b in self.bound]
        changes.extend(f"Unbound {iface} {direction.value}" for iface, direction in self.unbound)
        return changes


@dataclass
class GroupState:
    """Observable snapshot of one group after a lifecycle operation."""
    name: str
    table: FilterTable
    mode: SequencingMode
    entries: list[Entry] = field(default_factory=list)
    bindings: list[ApplyBinding] = field(default_factory=list)
    status: GroupStatus = GroupStatus.SYNCED

    @property
    def identity(self) -> str:
        return f"{self.table.value}:{self.name}"

    @property
    def numbers(self) -> list[int]:
        return [e.sequence for e in self.entries if e.sequence is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "table": self.table.value,
            "mode": mode_to_dict(self.mode),
            "status": self.status.value,
            "entries": [e.to_dict() for e in self.entries],
            "bindings": [b.to_dict() for b in self.bindings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GroupState":
        table = FilterTable(data["table"])
        entries = []
        for raw in data.get("entries", []):
            raw = dict(raw)
            sequence = raw.pop("sequence", None)
            entries.append(Entry(payload=payload_from_dict(table, raw), sequence=sequence))

        return cls(
            name=data["name"],
            table=table,
            mode=mode_from_dict(data.get("mode", {})),
            entries=entries,
            bindings=[ApplyBinding.from_dict(b) for b in data.get("bindings", [])],
            status=GroupStatus(data.get("status", GroupStatus.SYNCED.value)),
        )


@dataclass
class ApplyState:
    """Observable snapshot of a standalone apply resource."""
    access_list: str
    table: FilterTable
    binding: ApplyBinding
    status: GroupStatus = GroupStatus.SYNCED

    @property
    def identity(self) -> str:
        return f"{self.table.value}:{self.binding.interface}:{self.binding.direction.value}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_list": self.access_list,
            "table": self.table.value,
            "binding": self.binding.to_dict(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApplyState":
        return cls(
            access_list=data.get("access_list", ""),
            table=FilterTable(data["table"]),
            binding=ApplyBinding.from_dict(data["binding"]),
            status=GroupStatus(data.get("status", GroupStatus.SYNCED.value)),
        )


@dataclass
class OperationResult:
    """Result of one engine operation, returned to the MCP layer."""
    operation: str
    identity: str = ""
    success: bool = False
    dry_run: bool = False
    state: Optional[dict[str, Any]] = None
    changes_made: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None
    error_context: Optional[str] = None
    identity_migrated: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "operation": self.operation,
            "identity": self.identity,
            "success": self.success,
            "dry_run": self.dry_run,
            "state": self.state,
            "changes_made": self.changes_made,
            "warnings": self.warnings,
            "error": self.error,
            "error_context": self.error_context,
            "identity_migrated": self.identity_migrated,
        }
