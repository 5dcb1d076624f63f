"""Core data types shared by the reconciler, the planner and the providers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Tuple


# =============================================================================
# Record Types
# =============================================================================

RECORD_TYPE_A = "A"
RECORD_TYPE_AAAA = "AAAA"
RECORD_TYPE_CNAME = "CNAME"
RECORD_TYPE_TXT = "TXT"
RECORD_TYPE_MX = "MX"

SUPPORTED_RECORD_TYPES = frozenset(
    {"A", "AAAA", "CNAME", "TXT", "MX", "NS", "SRV", "CAA", "PTR"}
)

# TTL values accepted by ClouDNS.
VALID_TTLS = (
    60,
    300,
    900,
    1800,
    3600,
    21600,
    43200,
    86400,
    172800,
    259200,
    604800,
    1209600,
    2592000,
)


def is_valid_ttl(ttl: Optional[int]) -> bool:
    """Check whether a TTL is one of the values the provider accepts."""
    return ttl in VALID_TTLS


def is_supported_record_type(record_type: str) -> bool:
    return record_type in SUPPORTED_RECORD_TYPES


# =============================================================================
# Exceptions
# =============================================================================


class ReconcileError(Exception):
    """Base class for errors raised while reconciling DNS state."""


class ConfigError(ReconcileError):
    """Raised when the configuration cannot be used."""


class ProviderError(ReconcileError):
    """Raised when a call against the DNS provider fails."""

    def __init__(self, message: str, action: str = ""):
        super().__init__(message)
        self.action = action


class InvalidTTLError(ReconcileError):
    """Raised when a record would be sent with a TTL the provider rejects."""

    def __init__(self, ttl: Optional[int], name: str):
        allowed = ", ".join(f"'{v}'" for v in VALID_TTLS)
        super().__init__(f"invalid TTL {ttl} for {name} - must be one of {allowed}")
        self.ttl = ttl
        self.name = name


class OperationCancelled(ReconcileError):
    """Raised when a reconciliation pass is cancelled mid-flight."""


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Zone:
    """A DNS zone as reported by the provider."""

    id: str
    name: str
    active: bool = True


@dataclass(frozen=True)
class Record:
    """A DNS record as stored by the provider.

    ``host`` is relative to ``zone``; an empty host or ``"@"`` is the zone apex.
    ``ttl`` of None means the provider default applies. ``id`` is None only for
    records that have not been created yet.
    """

    id: Optional[str]
    zone: str
    host: str
    type: str
    value: str
    ttl: Optional[int] = None

    @property
    def is_apex(self) -> bool:
        return self.host in ("", "@")

    def with_ttl(self, ttl: Optional[int]) -> "Record":
        return replace(self, ttl=ttl)


@dataclass(frozen=True)
class Endpoint:
    """A desired DNS name/type with its set of targets.

    Targets keep their order but are unique by value. A ``ttl`` of 0 means the
    configured default should be applied.
    """

    dns_name: str
    record_type: str
    targets: Tuple[str, ...] = field(default_factory=tuple)
    ttl: int = 0

    def __post_init__(self) -> None:
        # Accept any iterable of targets, drop duplicates while keeping order.
        object.__setattr__(self, "targets", tuple(dict.fromkeys(self.targets)))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.dns_name, self.record_type)

    @property
    def explicit_ttl(self) -> Optional[int]:
        """The TTL to store on records, None when the default applies."""
        return self.ttl if self.ttl > 0 else None

    def effective_ttl(self, default_ttl: int) -> int:
        return self.ttl if self.ttl > 0 else default_ttl


# =============================================================================
# Endpoint Helpers
# =============================================================================


def merge_endpoints_by_name_type(endpoints: Iterable[Endpoint]) -> List[Endpoint]:
    """Merge endpoints sharing a DNS name and record type into one endpoint.

    The first endpoint seen for a name/type decides the TTL. Targets are
    concatenated in the order they were seen.
    """
    grouped: Dict[Tuple[str, str], List[Endpoint]] = {}
    for ep in endpoints:
        grouped.setdefault(ep.key, []).append(ep)

    merged: List[Endpoint] = []
    for (dns_name, record_type), group in grouped.items():
        if len(group) == 1:
            merged.append(group[0])
            continue
        targets: List[str] = []
        for ep in group:
            targets.extend(ep.targets)
        merged.append(
            Endpoint(dns_name=dns_name, record_type=record_type, targets=tuple(targets), ttl=group[0].ttl)
        )
    return merged
