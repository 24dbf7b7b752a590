"""State store package for access list snapshots.

Directory structure managed:
    ~/.aclcraft/state/
    ├── groups/     # GroupState per device, table and access list
    └── applies/    # ApplyState per device, table and interface slot
"""

from .store import StateStore, DEFAULT_STATE_DIR

__all__ = [
    "StateStore",
    "DEFAULT_STATE_DIR",
]
