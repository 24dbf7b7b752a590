"""Sequence reconciliation engine for router access lists.

Turns named, ordered access lists into numbered router filters and keeps
interface bindings pointing at the right numbers across create, update,
delete and import.

The AclEngine facade lives in mcp_router_acl.acl_engine.engine.
"""
from .schema import (
    AccessListSpec,
    ApplyBinding,
    ApplySpec,
    ApplyState,
    Assignment,
    AutoMode,
    BindingResult,
    Direction,
    Entry,
    FilterTable,
    GroupState,
    GroupStatus,
    IPFilterPayload,
    IPv6FilterPayload,
    MACFilterPayload,
    ManualMode,
    OperationResult,
    SequenceDiff,
    SyncResult,
    ValidationResult,
)
from .errors import (
    AclEngineError,
    BindingConflictError,
    BindingReconcileError,
    DeviceOperationError,
    GroupNotFoundError,
    IdentityError,
    ImportMismatchError,
    MissingSequenceError,
    ModeChangeError,
    ParseError,
    SequenceConflictError,
    SequenceRangeError,
    ValidationError,
)
from .sequence import SequenceAssigner, calculate_sequences
from .diff import SequenceDiffer, summarize_diff
from .sync import DeviceSync
from .bindings import ApplyBindingReconciler, check_binding_conflicts
from .parser import AclParser
from .validator import ConfigValidator
from .controller import ApplyController, GroupController, GroupOutcome, GroupPlan
from .identity import (
    BindingIdentity,
    GroupIdentity,
    LegacyIdentityResolver,
    binding_identity_resolver,
    group_identity_resolver,
)

__all__ = [
    # Schema
    "AccessListSpec",
    "ApplyBinding",
    "ApplySpec",
    "ApplyState",
    "Assignment",
    "AutoMode",
    "BindingResult",
    "Direction",
    "Entry",
    "FilterTable",
    "GroupState",
    "GroupStatus",
    "IPFilterPayload",
    "IPv6FilterPayload",
    "MACFilterPayload",
    "ManualMode",
    "OperationResult",
    "SequenceDiff",
    "SyncResult",
    "ValidationResult",
    # Errors
    "AclEngineError",
    "BindingConflictError",
    "BindingReconcileError",
    "DeviceOperationError",
    "GroupNotFoundError",
    "IdentityError",
    "ImportMismatchError",
    "MissingSequenceError",
    "ModeChangeError",
    "ParseError",
    "SequenceConflictError",
    "SequenceRangeError",
    "ValidationError",
    # Components
    "SequenceAssigner",
    "calculate_sequences",
    "SequenceDiffer",
    "summarize_diff",
    "DeviceSync",
    "ApplyBindingReconciler",
    "check_binding_conflicts",
    "AclParser",
    "ConfigValidator",
    "GroupController",
    "ApplyController",
    "GroupPlan",
    "GroupOutcome",
    # Identity
    "BindingIdentity",
    "GroupIdentity",
    "LegacyIdentityResolver",
    "binding_identity_resolver",
    "group_identity_resolver",
]
