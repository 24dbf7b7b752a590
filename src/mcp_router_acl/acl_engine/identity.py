"""Identity strings for imported groups and bindings.

Canonical identities always carry the filter table. Older identities left it
out and implied the IPv4 table; those are still accepted on import and read,
flagged as migrated, and replaced by the canonical form on the next write.

Formats:
    group    canonical  <table>:<name>[:<n1>,<n2>,...]
             legacy     <name>[:<n1>,<n2>,...]
    binding  canonical  <table>:<interface>:<direction>
             legacy     <interface>:<direction>
"""
import logging
from dataclasses import dataclass, replace
from typing import Callable, Generic, Optional, TypeVar

from .errors import IdentityError
from .schema import Direction, FilterTable

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TABLES = {t.value for t in FilterTable}


@dataclass(frozen=True)
class GroupIdentity:
    table: FilterTable
    name: str
    candidates: tuple[int, ...] = ()
    migrated: bool = False

    @property
    def canonical(self) -> str:
        return f"{self.table.value}:{self.name}"


@dataclass(frozen=True)
class BindingIdentity:
    table: FilterTable
    interface: str
    direction: Direction
    migrated: bool = False

    @property
    def canonical(self) -> str:
        return f"{self.table.value}:{self.interface}:{self.direction.value}"


def _parse_numbers(text: str) -> tuple[int, ...]:
    numbers = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit() or int(part) <= 0:
            raise ValueError(f"invalid filter number {part!r}")
        numbers.append(int(part))
    return tuple(numbers)


def _parse_direction(text: str) -> Direction:
    try:
        return Direction(text.strip().lower())
    except ValueError:
        raise ValueError(f"invalid direction {text!r}") from None


def parse_group_canonical(identity: str) -> Optional[GroupIdentity]:
    parts = identity.split(":")
    if len(parts) not in (2, 3) or parts[0] not in _TABLES or not parts[1]:
        return None
    candidates = _parse_numbers(parts[2]) if len(parts) == 3 else ()
    return GroupIdentity(FilterTable(parts[0]), parts[1], candidates)


def parse_group_legacy(identity: str) -> Optional[GroupIdentity]:
    parts = identity.split(":")
    if len(parts) not in (1, 2) or not parts[0] or parts[0] in _TABLES:
        return None
    candidates = _parse_numbers(parts[1]) if len(parts) == 2 else ()
    return GroupIdentity(FilterTable.IP, parts[0], candidates)


def parse_binding_canonical(identity: str) -> Optional[BindingIdentity]:
    parts = identity.split(":")
    if len(parts) != 3 or parts[0] not in _TABLES or not parts[1]:
        return None
    return BindingIdentity(FilterTable(parts[0]), parts[1], _parse_direction(parts[2]))


def parse_binding_legacy(identity: str) -> Optional[BindingIdentity]:
    parts = identity.split(":")
    if len(parts) != 2 or not parts[0]:
        return None
    return BindingIdentity(FilterTable.IP, parts[0], _parse_direction(parts[1]))


class LegacyIdentityResolver(Generic[T]):
    """Resolve an identity string, canonical format first, then legacy."""

    def __init__(
        self,
        kind: str,
        canonical: Callable[[str], Optional[T]],
        legacy: Callable[[str], Optional[T]],
    ):
        self.kind = kind
        self.canonical = canonical
        self.legacy = legacy

    def resolve(self, identity: str) -> T:
        """
        Parse an identity.

        Raises:
            IdentityError: If neither format matches
        """
        identity = identity.strip()
        try:
            parsed = self.canonical(identity)
            if parsed is not None:
                return parsed

            parsed = self.legacy(identity)
        except ValueError as e:
            raise IdentityError(f"invalid {self.kind} identity {identity!r}: {e}") from e

        if parsed is None:
            raise IdentityError(f"invalid {self.kind} identity {identity!r}")

        logger.info(f"Legacy {self.kind} identity {identity!r} will be migrated to {parsed.canonical!r}")
        return replace(parsed, migrated=True)


group_identity_resolver = LegacyIdentityResolver(
    "access list", parse_group_canonical, parse_group_legacy
)
binding_identity_resolver = LegacyIdentityResolver(
    "apply", parse_binding_canonical, parse_binding_legacy
)
