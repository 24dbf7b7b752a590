"""Pre-flight check for filter numbers already used by someone else.

Two groups in the same table may be declared with overlapping numbers.
Rather than letting one group silently redefine another's entries, planned
numbers are compared with what the router already holds before anything is
written.
"""
import logging
from typing import Iterable, Optional

from ..devices.base import FilterDevice
from .errors import SequenceConflictError
from .schema import FilterTable

logger = logging.getLogger(__name__)


def find_sequence_conflicts(
    planned: Iterable[int],
    existing: Iterable[int],
    owned: Iterable[int] = (),
) -> list[int]:
    """
    Numbers that are planned, exist on the device, and are not ours.

    Args:
        planned: Numbers of the new assignment
        existing: Numbers currently defined in the table
        owned: Numbers the group held in its previous snapshot

    Returns:
        Sorted conflicting numbers
    """
    return sorted((set(planned) & set(existing)) - set(owned))


def format_sequence_conflict(table: FilterTable, name: str, conflicts: list[int]) -> str:
    numbers = ", ".join(str(n) for n in conflicts)
    return (
        f"access list {name}: {table.value} filter number(s) {numbers} already exist "
        f"on the router and are not managed by this access list. Choose another "
        f"sequence_start/sequence, or import the existing entries first"
    )


async def check_sequence_conflicts(
    device: FilterDevice,
    table: FilterTable,
    name: str,
    planned: Iterable[int],
    owned: Iterable[int] = (),
) -> Optional[str]:
    """
    Raise if planned numbers collide with foreign entries on the device.

    The check is best effort: when the table cannot be listed, a warning is
    logged and returned instead.

    Returns:
        Warning text if the check was skipped, else None

    Raises:
        SequenceConflictError: If any planned number is taken
    """
    planned = list(planned)
    if not planned:
        return None

    try:
        existing = await device.list_entry_numbers(table)
    except Exception as e:
        warning = f"Could not list {table.value} filters, skipping conflict check: {e}"
        logger.warning(warning)
        return warning

    conflicts = find_sequence_conflicts(planned, existing, owned)
    if conflicts:
        raise SequenceConflictError(conflicts, format_sequence_conflict(table, name, conflicts))
    return None
