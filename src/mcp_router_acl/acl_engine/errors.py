"""Errors raised by the ACL engine.

Validation errors are raised before any device mutation. Device errors are
raised after whatever prefix of operations already succeeded.
"""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .schema import BindingResult, GroupState, SyncResult


class AclEngineError(Exception):
    """Base class for all engine errors."""
    pass


class ParseError(AclEngineError):
    """Error parsing an access list declaration."""
    pass


class MissingSequenceError(AclEngineError):
    """Manual-mode entry without a positive sequence number."""

    def __init__(self, index: int, value: Optional[int] = None):
        self.index = index
        self.value = value
        super().__init__(
            f"entry[{index}]: sequence must be a positive integer in manual mode "
            f"(got {value!r}). Add a sequence to each entry or set sequence_start"
        )


class SequenceRangeError(AclEngineError):
    """Auto-mode parameters that produce numbers outside the valid range."""
    pass


class ValidationError(AclEngineError):
    """Pre-flight validation failed."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class BindingConflictError(AclEngineError):
    """Two binding sources claim the same (interface, direction) slot."""

    def __init__(self, interface: str, direction: str, sources: list[str]):
        self.interface = interface
        self.direction = direction
        self.sources = sources
        super().__init__(
            f"interface {interface} direction {direction} is bound by more than one "
            f"source: {', '.join(sources)}"
        )


class SequenceConflictError(AclEngineError):
    """Planned numbers are already used on the router by something else."""

    def __init__(self, conflicts: list[int], message: str):
        self.conflicts = conflicts
        super().__init__(message)


class DeviceOperationError(AclEngineError):
    """A device call failed; the remaining operations of the pass were skipped."""

    def __init__(
        self,
        operation: str,
        number: int,
        cause: Exception,
        completed: Optional["SyncResult"] = None,
    ):
        self.operation = operation
        self.number = number
        self.cause = cause
        self.completed = completed
        # What the router holds after the failure, when it could be worked out
        self.partial_state: Optional["GroupState"] = None
        super().__init__(f"{operation} filter {number} failed: {cause}")


class BindingReconcileError(AclEngineError):
    """One or more interface bindings failed to reconcile."""

    def __init__(self, result: "BindingResult"):
        self.result = result
        self.partial_state: Optional["GroupState"] = None
        super().__init__(
            "interface binding failed: " + "; ".join(str(e) for e in result.errors)
        )


class ModeChangeError(AclEngineError):
    """Switching between auto and manual numbering needs a full re-create."""
    pass


class GroupNotFoundError(AclEngineError):
    """Nothing to import exists on the router."""
    pass


class ImportMismatchError(AclEngineError):
    """Imported numbers do not follow the supplied start/step formula."""
    pass


class IdentityError(AclEngineError):
    """Identity string matches neither the canonical nor the legacy format."""
    pass
