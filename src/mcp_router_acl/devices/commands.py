"""RTX command builders and show-output parsers for filter tables.

Command Reference (RTX series):
- ip filter <n> <action> <src> <dst> <proto> [<sport> [<dport>]]   : define IPv4 filter
- ipv6 filter <n> <action> <src> <dst> <proto> [<sport> [<dport>]] : define IPv6 filter
- ethernet filter <n> <action> <src-mac> <dst-mac> [<type>]        : define MAC filter
- ip filter dynamic <n> <src> <dst> <proto> [syslog on]            : define IPv4 dynamic filter
- ipv6 filter dynamic <n> <src> <dst> <proto> [syslog on]          : define IPv6 dynamic filter
- no ip filter <n> / no ip filter dynamic <n>                      : delete filter
- ip <if> secure filter <in|out> <n1> ... [dynamic <d1> ...]       : bind IPv4 filters
- ipv6 <if> secure filter <in|out> <n1> ... [dynamic <d1> ...]     : bind IPv6 filters
- ethernet <if> filter <in|out> <n1> <n2> ...                      : bind MAC filters
- show config | grep "<pattern>"                                   : read back config lines
"""
import re
from typing import Iterable

from ..acl_engine.schema import PAYLOAD_TYPES, Direction, FilterPayload, FilterTable

# CLI keyword for each static table
TABLE_PREFIX = {
    FilterTable.IP: "ip",
    FilterTable.IPV6: "ipv6",
    FilterTable.MAC: "ethernet",
}

# Words in front of the number of a filter definition
ENTRY_PREFIX = {
    FilterTable.IP: "ip filter",
    FilterTable.IPV6: "ipv6 filter",
    FilterTable.MAC: "ethernet filter",
    FilterTable.IP_DYNAMIC: "ip filter dynamic",
    FilterTable.IPV6_DYNAMIC: "ipv6 filter dynamic",
}

# Static patterns never match dynamic lines because \d+ follows "filter"
ENTRY_PATTERNS = {
    table: re.compile(r"^\s*" + r"\s+".join(prefix.split()) + r"\s+(\d+)\s+(.+?)\s*$")
    for table, prefix in ENTRY_PREFIX.items()
}

BINDING_PATTERNS = {
    FilterTable.IP: re.compile(r"^\s*ip\s+(\S+)\s+secure\s+filter\s+(in|out)\s+(.+)$"),
    FilterTable.IPV6: re.compile(r"^\s*ipv6\s+(\S+)\s+secure\s+filter\s+(in|out)\s+(.+)$"),
    FilterTable.MAC: re.compile(r"^\s*ethernet\s+(\S+)\s+filter\s+(in|out)\s+(.+)$"),
}


def _numbers(numbers: Iterable[int]) -> str:
    return " ".join(str(n) for n in numbers)


def _binding_prefix(table: FilterTable, interface: str, direction: Direction) -> str:
    table = table.binding_table
    if table == FilterTable.MAC:
        return f"ethernet {interface} filter {direction.value}"
    return f"{TABLE_PREFIX[table]} {interface} secure filter {direction.value}"


def build_entry_command(table: FilterTable, number: int, payload: FilterPayload) -> str:
    """
    Build the command defining filter `number`.

    Examples:
        build_entry_command(FilterTable.IP, 100, IPFilterPayload("pass", "*", "*", "tcp", "*", "www"))
        -> "ip filter 100 pass * * tcp * www"
        build_entry_command(FilterTable.IP_DYNAMIC, 10, DynamicFilterPayload(protocol="www"))
        -> "ip filter dynamic 10 * * www"
    """
    args = " ".join(payload.to_device_args())
    return f"{ENTRY_PREFIX[table]} {number} {args}"


def build_delete_entry_command(table: FilterTable, number: int) -> str:
    return f"no {ENTRY_PREFIX[table]} {number}"


def build_bind_command(
    table: FilterTable,
    interface: str,
    direction: Direction,
    numbers: Iterable[int],
    dynamic: Iterable[int] = (),
) -> str:
    """
    Build the full-replace binding command for one interface slot.

    For a dynamic table `numbers` are the dynamic filters themselves and
    the slot gets no static list.

    Example:
        build_bind_command(FilterTable.IP, "lan1", Direction.IN, [100, 110], [10])
        -> "ip lan1 secure filter in 100 110 dynamic 10"
    """
    static = list(numbers)
    dynamic = list(dynamic)
    if table.is_dynamic:
        static, dynamic = [], static + dynamic

    parts = [_binding_prefix(table, interface, direction)]
    if static:
        parts.append(_numbers(static))
    if dynamic:
        parts.append(f"dynamic {_numbers(dynamic)}")
    return " ".join(parts)


def build_unbind_command(table: FilterTable, interface: str, direction: Direction) -> str:
    return f"no {_binding_prefix(table, interface, direction)}"


def build_show_entry_command(table: FilterTable, number: int) -> str:
    # grep also returns 10, 100, ... for 1; parse_entries keys by number
    return f'show config | grep "{ENTRY_PREFIX[table]} {number}"'


def build_show_table_command(table: FilterTable) -> str:
    return f'show config | grep "{ENTRY_PREFIX[table]}"'


def build_show_binding_command(table: FilterTable, interface: str) -> str:
    table = table.binding_table
    if table == FilterTable.MAC:
        return f'show config | grep "ethernet {interface} filter"'
    return f'show config | grep "{TABLE_PREFIX[table]} {interface} secure filter"'


def parse_entries(table: FilterTable, output: str) -> dict[int, FilterPayload]:
    """
    Parse filter definitions from show config output.

    Returns:
        Dict mapping filter number to payload
    """
    payload_cls = PAYLOAD_TYPES[table]
    pattern = ENTRY_PATTERNS[table]
    entries: dict[int, FilterPayload] = {}

    for line in output.split("\n"):
        match = pattern.match(line)
        if not match:
            continue
        number = int(match.group(1))
        entries[number] = payload_cls.from_device_args(match.group(2).split())

    return entries


def parse_secure_filters(
    table: FilterTable,
    output: str
) -> dict[tuple[str, Direction], tuple[list[int], list[int]]]:
    """
    Parse interface bindings into static and dynamic number lists.

    Example:
        "ip lan1 secure filter in 100 101 dynamic 10"
        -> {("lan1", Direction.IN): ([100, 101], [10])}
    """
    pattern = BINDING_PATTERNS[table.binding_table]
    bindings: dict[tuple[str, Direction], tuple[list[int], list[int]]] = {}

    for line in output.split("\n"):
        match = pattern.match(line.strip())
        if not match:
            continue

        static: list[int] = []
        dynamic: list[int] = []
        current = static
        for part in match.group(3).split():
            if part == "dynamic":
                current = dynamic
            elif part.isdigit():
                current.append(int(part))

        bindings[(match.group(1), Direction(match.group(2)))] = (static, dynamic)

    return bindings


def parse_interface_filters(
    table: FilterTable,
    output: str
) -> dict[tuple[str, Direction], list[int]]:
    """
    Numbers bound per slot for one table.

    A static table sees the list in front of "dynamic", a dynamic table the
    list after it.
    """
    index = 1 if table.is_dynamic else 0
    return {
        slot: lists[index]
        for slot, lists in parse_secure_filters(table, output).items()
    }
