"""Lookup structures over a provider record snapshot."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from external_dns_cloudns.models import Endpoint, Record
from external_dns_cloudns.zones import host_for_name, normalize_host

logger = logging.getLogger(__name__)


def records_by_zone(records: Iterable[Record]) -> Dict[str, List[Record]]:
    """Group records by the name of the zone that owns them."""
    grouped: Dict[str, List[Record]] = {}
    for record in records:
        grouped.setdefault(record.zone, []).append(record)
    return grouped


def matching_domain_records(records: Iterable[Record], zone_name: str, ep: Endpoint) -> List[Record]:
    """Return the records in ``zone_name`` that share the endpoint's host and type."""
    host = host_for_name(zone_name, ep.dns_name)
    return [
        r
        for r in records
        if r.zone == zone_name and r.type == ep.record_type and normalize_host(r.host) == host
    ]


class TargetIndex:
    """Existing records of one name/type keyed by their value.

    Values are expected to be unique within a name/type. When they are not, the
    record seen last wins and the ones it displaced are kept in ``collisions``
    so callers can report them.
    """

    def __init__(self, records: Iterable[Record] = ()):
        self._by_value: Dict[str, Record] = {}
        self.collisions: List[Record] = []
        for record in records:
            self.add(record)

    def add(self, record: Record) -> None:
        previous = self._by_value.get(record.value)
        if previous is not None:
            logger.warning(
                f"Duplicate record value '{record.value}' for {record.host or '@'} "
                f"{record.type} in zone {record.zone}: keeping record {record.id}, "
                f"ignoring record {previous.id}"
            )
            self.collisions.append(previous)
        self._by_value[record.value] = record

    def get(self, value: str) -> Optional[Record]:
        return self._by_value.get(value)

    def consume(self, value: str) -> Optional[Record]:
        """Remove and return the record stored for ``value``."""
        return self._by_value.pop(value, None)

    def remaining(self) -> List[Record]:
        """Records that have not been consumed, in insertion order."""
        return list(self._by_value.values())

    def __contains__(self, value: object) -> bool:
        return value in self._by_value

    def __len__(self) -> int:
        return len(self._by_value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_value)


def index_by_target(records: Iterable[Record]) -> TargetIndex:
    return TargetIndex(records)
