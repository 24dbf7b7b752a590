"""Audit trail of access list and binding lifecycle operations.

Each create, update, delete, import and binding change lands in audit.log
as a single JSON document, carrying the stored snapshot from before and
after the operation so a change can be traced back to what was on the
router at the time. Dry runs never reach the trail.

Environment Variables:
    ACLCRAFT_AUDIT_DIR: Directory holding audit.log (default: ~/.aclcraft)
"""
import json
import logging
import os
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .logging_config import rotating_handler

audit_logger = logging.getLogger("aclcraft.audit")

AUDIT_FILENAME = "audit.log"


def get_audit_dir() -> Path:
    return Path(os.environ.get("ACLCRAFT_AUDIT_DIR", str(Path.home() / ".aclcraft")))


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Point the audit logger at ``<log_dir>/audit.log``.

    Replaces any handler from an earlier call, so tests and a restarted
    server can redirect the trail. Returns the file path.
    """
    audit_file = (Path(log_dir) if log_dir else get_audit_dir()) / AUDIT_FILENAME
    audit_file.parent.mkdir(parents=True, exist_ok=True)

    for old in list(audit_logger.handlers):
        audit_logger.removeHandler(old)
        old.close()

    audit_logger.addHandler(
        rotating_handler(audit_file, logging.Formatter("%(message)s"), max_mb=10, backups=10)
    )
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False
    return audit_file


@dataclass
class ChangeRecord:
    """One line of the audit trail."""
    timestamp: str
    device_id: str
    operation: str  # acl_create, acl_update, acl_delete, acl_import, apply_set, ...
    identity: str
    dry_run: bool
    success: bool
    parameters: dict
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    changes: list = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def parse(cls, line: str) -> Optional["ChangeRecord"]:
        """Decode one audit line, or None if it is blank or not a record."""
        line = line.strip()
        if not line:
            return None
        try:
            return cls(**json.loads(line))
        except (json.JSONDecodeError, TypeError):
            return None

    def matches(
        self,
        device_id: Optional[str] = None,
        identity: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> bool:
        return (
            (device_id is None or self.device_id == device_id)
            and (identity is None or self.identity == identity)
            and (operation is None or self.operation == operation)
        )

    def summary(self) -> dict:
        """The record without parameters and snapshots."""
        return {
            "timestamp": self.timestamp,
            "device_id": self.device_id,
            "operation": self.operation,
            "identity": self.identity,
            "success": self.success,
            "changes": self.changes,
            "error": self.error,
        }


class ChangeTracker:
    """Writes audit records on behalf of one router."""

    def __init__(self, device_id: str):
        self.device_id = device_id

    def log_change(
        self,
        operation: str,
        identity: str,
        parameters: dict,
        success: bool,
        changes: Optional[list] = None,
        error: Optional[str] = None,
        dry_run: bool = False,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
    ) -> ChangeRecord:
        """Append one operation to the trail.

        Args:
            operation: Lifecycle step, e.g. "acl_update" or "apply_delete"
            identity: Canonical identity of the access list or binding
            parameters: Declaration the operation was called with
            success: Whether the router reached the declared state
            changes: Human-readable device changes
            error: Failure message
            dry_run: Marks planned-only operations
            before_state: Stored snapshot before the operation
            after_state: Stored snapshot after the operation
        """
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            device_id=self.device_id,
            operation=operation,
            identity=identity,
            dry_run=dry_run,
            success=success,
            parameters=parameters,
            before_state=before_state,
            after_state=after_state,
            changes=list(changes or []),
            error=error,
        )
        audit_logger.info(json.dumps(asdict(record)))
        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    device_id: Optional[str] = None,
    identity: Optional[str] = None,
    limit: int = 100,
    operation: Optional[str] = None,
) -> list[ChangeRecord]:
    """Newest-first records from the audit trail matching every given filter.

    Lines that do not decode as records are skipped.
    """
    path = Path(log_file) if log_file else get_audit_dir() / AUDIT_FILENAME
    if limit <= 0 or not path.exists():
        return []

    tail: deque = deque(maxlen=limit)
    with path.open(encoding="utf-8") as f:
        for line in f:
            record = ChangeRecord.parse(line)
            if record is not None and record.matches(device_id, identity, operation):
                tail.append(record)

    return list(reversed(tail))
