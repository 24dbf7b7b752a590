"""Sequence number assignment for access list entries.

Auto mode derives every number from position (start + index * step),
manual mode takes the number declared on each entry. Both are pure
functions of their inputs, so repeated assignment is idempotent.
"""
from typing import Sequence

from .errors import MissingSequenceError, SequenceRangeError
from .schema import (
    MAX_SEQUENCE,
    MIN_SEQUENCE,
    Assignment,
    AutoMode,
    Entry,
    SequencingMode,
)


def calculate_sequences(start: int, step: int, count: int) -> list[int]:
    """
    Compute auto-mode numbers.

    Examples:
        calculate_sequences(100, 10, 3) -> [100, 110, 120]
        calculate_sequences(1, 1, 5) -> [1, 2, 3, 4, 5]
    """
    return [start + i * step for i in range(count)]


class SequenceAssigner:
    """Compute realized sequence numbers for an entry list."""

    def __init__(
        self,
        min_sequence: int = MIN_SEQUENCE,
        max_sequence: int = MAX_SEQUENCE,
    ):
        self.min_sequence = min_sequence
        self.max_sequence = max_sequence

    def assign(self, entries: Sequence[Entry], mode: SequencingMode) -> Assignment:
        """
        Assign a number to every entry.

        Args:
            entries: Declared entries in evaluation order
            mode: AutoMode(start, step) or ManualMode()

        Returns:
            Assignment index-aligned with entries

        Raises:
            MissingSequenceError: Manual entry without a positive sequence
        """
        if isinstance(mode, AutoMode):
            return Assignment(tuple(calculate_sequences(mode.start, mode.step, len(entries))))

        numbers = []
        for i, entry in enumerate(entries):
            if entry.sequence is None or entry.sequence <= 0:
                raise MissingSequenceError(i, entry.sequence)
            numbers.append(entry.sequence)
        return Assignment(tuple(numbers))

    def validate_range(self, start: int, step: int, count: int) -> None:
        """
        Check that auto-mode parameters stay inside the device range.

        Raises:
            SequenceRangeError: If start/step are invalid or the last number
                would exceed the maximum
        """
        if start < self.min_sequence:
            raise SequenceRangeError(
                f"sequence_start must be at least {self.min_sequence}, got {start}"
            )
        if start > self.max_sequence:
            raise SequenceRangeError(
                f"sequence_start {start} exceeds maximum {self.max_sequence}"
            )
        if step < 1:
            raise SequenceRangeError(f"sequence_step must be a positive integer, got {step}")
        if count <= 0:
            return

        last = start + (count - 1) * step
        if last > self.max_sequence:
            raise SequenceRangeError(
                f"last sequence {last} exceeds maximum {self.max_sequence} "
                f"(start={start}, step={step}, count={count}). "
                f"Reduce sequence_start or sequence_step, or reduce number of entries"
            )

    def in_range(self, number: int) -> bool:
        return self.min_sequence <= number <= self.max_sequence
