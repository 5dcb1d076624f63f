"""Split desired endpoints into creates, updates and deletes per zone.

This is the caller side of the diff engine: it compares the desired endpoints
with the endpoints currently published by the provider and decides, for each
name/type, which pass should handle it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from external_dns_cloudns.diff import endpoint_target
from external_dns_cloudns.models import RECORD_TYPE_CNAME, Endpoint, Record, Zone, merge_endpoints_by_name_type
from external_dns_cloudns.zones import expand_alias_target, find_zone, name_for_host

logger = logging.getLogger(__name__)

EndpointKey = Tuple[str, str]


@dataclass
class Plan:
    """Endpoints grouped by zone id, ready for the diff engine."""

    creates: Dict[str, List[Endpoint]] = field(default_factory=dict)
    updates: Dict[str, List[Endpoint]] = field(default_factory=dict)
    deletes: Dict[str, List[Endpoint]] = field(default_factory=dict)
    skipped: List[Endpoint] = field(default_factory=list)

    def empty(self) -> bool:
        return not any(self.creates.values()) and not any(self.updates.values()) and not any(self.deletes.values())

    def counts(self) -> Tuple[int, int, int]:
        return (
            sum(len(v) for v in self.creates.values()),
            sum(len(v) for v in self.updates.values()),
            sum(len(v) for v in self.deletes.values()),
        )


def records_to_endpoints(zones: Iterable[Zone], records_by_zone: Mapping[str, Sequence[Record]]) -> List[Endpoint]:
    """Turn a provider snapshot into merged endpoints, one per name/type."""
    endpoints: List[Endpoint] = []
    for zone in zones:
        for record in records_by_zone.get(zone.name, ()):
            value = record.value
            if record.type == RECORD_TYPE_CNAME:
                value = expand_alias_target(zone.name, value)
            endpoints.append(
                Endpoint(
                    dns_name=name_for_host(zone.name, record.host, record.type),
                    record_type=record.type,
                    targets=(value,),
                    ttl=record.ttl or 0,
                )
            )
    return merge_endpoints_by_name_type(endpoints)


def _needs_update(desired: Endpoint, current: Endpoint, zone_name: str, default_ttl: int) -> bool:
    desired_targets = {endpoint_target(zone_name, desired, t) for t in desired.targets}
    current_targets = {endpoint_target(zone_name, current, t) for t in current.targets}
    if desired_targets != current_targets:
        return True
    return desired.effective_ttl(default_ttl) != current.effective_ttl(default_ttl)


def plan_changes(
    desired: Iterable[Endpoint],
    current: Iterable[Endpoint],
    zones: Sequence[Zone],
    default_ttl: int,
    managed: Optional[Set[EndpointKey]] = None,
) -> Plan:
    """Classify every name/type into the create, update or delete batch.

    Only keys listed in ``managed`` (the endpoints this tool published on an
    earlier pass) are ever scheduled for deletion.
    """
    plan = Plan()
    zone_ids = {z.name: z.id for z in zones}
    current_by_key = {ep.key: ep for ep in current}
    desired_by_key = {ep.key: ep for ep in merge_endpoints_by_name_type(desired)}

    for key, ep in desired_by_key.items():
        zone_name = find_zone(ep.dns_name, zones)
        if zone_name is None:
            logger.warning(f"Skipping {ep.dns_name} ({ep.record_type}): not in any managed zone")
            plan.skipped.append(ep)
            continue
        zone_id = zone_ids[zone_name]

        existing = current_by_key.get(key)
        if existing is None:
            plan.creates.setdefault(zone_id, []).append(ep)
        elif _needs_update(ep, existing, zone_name, default_ttl):
            plan.updates.setdefault(zone_id, []).append(ep)
        else:
            logger.debug(f"{ep.dns_name} ({ep.record_type}) is up to date")

    for key in sorted(managed or ()):
        if key in desired_by_key:
            continue
        existing = current_by_key.get(key)
        if existing is None:
            logger.debug(f"Managed endpoint {key[0]} ({key[1]}) already gone")
            continue
        zone_name = find_zone(existing.dns_name, zones)
        if zone_name is None:
            continue
        plan.deletes.setdefault(zone_ids[zone_name], []).append(existing)

    return plan
