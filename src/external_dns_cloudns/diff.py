"""Compute the record changes that bring a zone to its desired endpoints.

The planner hands over endpoints already split into creates, updates and
deletes and grouped by zone id. For each group the passes below compare the
endpoints against the zone's record snapshot and fill a :class:`ChangeSet`.
Unexpected snapshot state is logged as a warning and never aborts the pass.
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Sequence

from external_dns_cloudns.changes import ChangeSet
from external_dns_cloudns.index import TargetIndex, index_by_target, matching_domain_records
from external_dns_cloudns.models import RECORD_TYPE_CNAME, Endpoint, Record
from external_dns_cloudns.zones import host_for_name, normalize_alias_target, normalize_host

logger = logging.getLogger(__name__)

EndpointsByZone = Mapping[str, Sequence[Endpoint]]
RecordsByZone = Mapping[str, Sequence[Record]]


def endpoint_target(zone_name: str, ep: Endpoint, target: str) -> str:
    """Return ``target`` as it is stored at the provider for this endpoint."""
    if ep.record_type == RECORD_TYPE_CNAME:
        return normalize_alias_target(zone_name, target)
    return target


def endpoint_values(zone_name: str, ep: Endpoint) -> List[str]:
    """Stored form of every endpoint target, first occurrence wins."""
    values: List[str] = []
    for target in ep.targets:
        value = endpoint_target(zone_name, ep, target)
        if value not in values:
            values.append(value)
    return values


def targets_match(record: Record, ep: Endpoint) -> bool:
    """Check whether ``record`` holds one of the endpoint's targets."""
    if record.type != ep.record_type:
        return False
    return any(endpoint_target(record.zone, ep, t) == record.value for t in ep.targets)


def _new_record(zone_name: str, ep: Endpoint, target: str) -> Record:
    return Record(
        id=None,
        zone=zone_name,
        host=host_for_name(zone_name, ep.dns_name),
        type=ep.record_type,
        value=target,
        ttl=ep.explicit_ttl,
    )


def _warn(message: str, zone_name: str, ep: Endpoint) -> None:
    logger.warning(f"{message} (zone: {zone_name}, name: {ep.dns_name}, type: {ep.record_type})")


# =============================================================================
# Create Pass
# =============================================================================


def process_create_actions_by_zone(
    zone_id: str,
    zone_name: str,
    records: Sequence[Record],
    endpoints: Sequence[Endpoint],
    changes: ChangeSet,
) -> None:
    """Queue a create for every target of every endpoint.

    Endpoints reaching this pass are expected to be new. Matching records that
    already exist only produce a warning; they are never updated here.
    """
    for ep in endpoints:
        if matching_domain_records(records, zone_name, ep):
            _warn("Preexisting records exist which should not exist for creation actions", zone_name, ep)

        for value in endpoint_values(zone_name, ep):
            changes.add_create(zone_id, _new_record(zone_name, ep, value))


# =============================================================================
# Update Pass
# =============================================================================


def process_update_endpoint(
    zone_id: str,
    zone_name: str,
    existing: TargetIndex,
    ep: Endpoint,
    changes: ChangeSet,
) -> None:
    """Reconcile one endpoint target by target.

    Targets found in ``existing`` are consumed from it and updated only when
    their host or TTL drifted. Targets missing from it are created. Whatever is
    left in ``existing`` afterwards is for the caller to delete.
    """
    desired_ttl = ep.effective_ttl(changes.default_ttl)
    desired_host = host_for_name(zone_name, ep.dns_name)

    for value in endpoint_values(zone_name, ep):
        current = existing.consume(value)
        if current is None:
            changes.add_create(zone_id, _new_record(zone_name, ep, value))
            continue

        current_ttl = current.ttl if current.ttl is not None else changes.default_ttl
        if normalize_host(current.host) == desired_host and current_ttl == desired_ttl:
            logger.debug(f"Record {current.id} ({ep.dns_name} {ep.record_type} {value}) is up to date")
            continue

        changes.add_update(
            zone_id,
            Record(
                id=current.id,
                zone=zone_name,
                host=desired_host,
                type=ep.record_type,
                value=value,
                ttl=ep.explicit_ttl,
            ),
        )


def cleanup_remaining_targets(zone_id: str, existing: TargetIndex, changes: ChangeSet) -> None:
    """Queue deletes for the records no desired target claimed."""
    for record in existing.remaining():
        changes.add_delete(zone_id, record)


def process_update_actions_by_zone(
    zone_id: str,
    zone_name: str,
    records: Sequence[Record],
    endpoints: Sequence[Endpoint],
    changes: ChangeSet,
) -> None:
    for ep in endpoints:
        matching = matching_domain_records(records, zone_name, ep)
        if not matching:
            _warn("Planning an update but no existing records found", zone_name, ep)

        existing = index_by_target(matching)
        process_update_endpoint(zone_id, zone_name, existing, ep, changes)
        cleanup_remaining_targets(zone_id, existing, changes)


# =============================================================================
# Delete Pass
# =============================================================================


def process_delete_actions_by_endpoint(
    zone_id: str,
    matching: Sequence[Record],
    ep: Endpoint,
    changes: ChangeSet,
) -> None:
    for record in matching:
        if targets_match(record, ep):
            changes.add_delete(zone_id, record)


def process_delete_actions_by_zone(
    zone_id: str,
    zone_name: str,
    records: Sequence[Record],
    endpoints: Sequence[Endpoint],
    changes: ChangeSet,
) -> None:
    for ep in endpoints:
        matching = matching_domain_records(records, zone_name, ep)
        if not matching:
            _warn("Records to delete not found", zone_name, ep)
        process_delete_actions_by_endpoint(zone_id, matching, ep, changes)


# =============================================================================
# Per-Zone Drivers
# =============================================================================


def _process_by_zone(
    kind: str,
    process,
    zone_names: Mapping[str, str],
    records_by_zone: RecordsByZone,
    endpoints_by_zone: EndpointsByZone,
    changes: ChangeSet,
) -> None:
    for zone_id, endpoints in endpoints_by_zone.items():
        zone_name = zone_names.get(zone_id)
        if zone_name is None:
            logger.warning(f"Skipping unknown zone id '{zone_id}' with {len(endpoints)} {kind}(s)")
            continue
        if not endpoints:
            logger.debug(f"Skipping zone {zone_name}, no {kind}s found.")
            continue
        process(zone_id, zone_name, records_by_zone.get(zone_name, ()), endpoints, changes)


def process_create_actions(
    zone_names: Mapping[str, str],
    records_by_zone: RecordsByZone,
    creates_by_zone: EndpointsByZone,
    changes: ChangeSet,
) -> None:
    _process_by_zone("create", process_create_actions_by_zone, zone_names, records_by_zone, creates_by_zone, changes)


def process_update_actions(
    zone_names: Mapping[str, str],
    records_by_zone: RecordsByZone,
    updates_by_zone: EndpointsByZone,
    changes: ChangeSet,
) -> None:
    _process_by_zone("update", process_update_actions_by_zone, zone_names, records_by_zone, updates_by_zone, changes)


def process_delete_actions(
    zone_names: Mapping[str, str],
    records_by_zone: RecordsByZone,
    deletes_by_zone: EndpointsByZone,
    changes: ChangeSet,
) -> None:
    _process_by_zone("delete", process_delete_actions_by_zone, zone_names, records_by_zone, deletes_by_zone, changes)


def reconcile(
    zone_names: Mapping[str, str],
    records_by_zone: RecordsByZone,
    creates_by_zone: EndpointsByZone,
    updates_by_zone: EndpointsByZone,
    deletes_by_zone: EndpointsByZone,
    changes: ChangeSet,
) -> ChangeSet:
    """Run all three passes and return ``changes``.

    ``zone_names`` maps zone id to zone name, ``records_by_zone`` is keyed by
    zone name, the endpoint batches are keyed by zone id.
    """
    process_create_actions(zone_names, records_by_zone, creates_by_zone, changes)
    process_update_actions(zone_names, records_by_zone, updates_by_zone, changes)
    process_delete_actions(zone_names, records_by_zone, deletes_by_zone, changes)
    return changes

