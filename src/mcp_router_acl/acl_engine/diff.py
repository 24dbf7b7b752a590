"""Diff engine for sequence assignments.

Computes which filter numbers must be deleted and which must be (re)defined
to move a group from its previous assignment to the current one.
"""
from typing import Iterable, Optional

from .schema import SequenceDiff


class SequenceDiffer:
    """Calculate differences between a previous and a current assignment."""

    def diff(self, previous: Iterable[int], current: Iterable[int]) -> SequenceDiff:
        """
        Diff two assignments.

        Every current number is re-issued: the router has no cheaper
        "define only if changed" primitive, and defining an entry is
        idempotent.

        Args:
            previous: Numbers owned before this pass
            current: Numbers of the new assignment, in entry order

        Returns:
            SequenceDiff with to_delete ascending and to_upsert in entry order
        """
        current_list = []
        seen = set()
        for number in current:
            if number not in seen:
                seen.add(number)
                current_list.append(number)

        to_delete = sorted(set(previous) - seen)

        return SequenceDiff(to_delete=to_delete, to_upsert=current_list)


def summarize_diff(diff: SequenceDiff, name: Optional[str] = None) -> str:
    """
    Create a human-readable summary of a diff.

    Useful for dry-run output and logging.
    """
    title = f"Changes for access list {name}" if name else "Changes"
    if diff.total_operations == 0:
        return f"{title}: nothing to do"

    lines = [f"{title} ({diff.total_operations} operations):", ""]

    for number in diff.to_delete:
        lines.append(f"  [-] Delete filter {number}")

    for number in diff.to_upsert:
        lines.append(f"  [=] Define filter {number}")

    return "\n".join(lines)
