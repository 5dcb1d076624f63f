"""Pending record changes and the pipeline that sends them to the provider."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from external_dns_cloudns.metrics import (
    ACT_CREATE_RECORD,
    ACT_DELETE_RECORD,
    ACT_UPDATE_RECORD,
    Metrics,
)
from external_dns_cloudns.models import (
    RECORD_TYPE_TXT,
    InvalidTTLError,
    OperationCancelled,
    Record,
    is_valid_ttl,
)
from external_dns_cloudns.provider import DNSProvider

logger = logging.getLogger(__name__)

# =============================================================================
# Change Types
# =============================================================================


@dataclass(frozen=True)
class ChangeCreate:
    """A record to create in a zone."""

    zone_id: str
    record: Record

    def log_fields(self) -> Dict[str, Any]:
        return {
            "zoneID": self.zone_id,
            "dnsName": self.record.host,
            "recordType": self.record.type,
            "value": self.record.value,
            "ttl": self.record.ttl,
        }


@dataclass(frozen=True)
class ChangeUpdate:
    """New field values for an existing record, identified by ``record.id``."""

    zone_id: str
    record: Record

    def log_fields(self) -> Dict[str, Any]:
        # Keys starting with "*" hold the new values.
        return {
            "zoneID": self.zone_id,
            "recordID": self.record.id,
            "*dnsName": self.record.host,
            "*recordType": self.record.type,
            "*value": self.record.value,
            "*ttl": self.record.ttl,
        }


@dataclass(frozen=True)
class ChangeDelete:
    """An existing record to remove."""

    zone_id: str
    record: Record

    def log_fields(self) -> Dict[str, Any]:
        return {
            "zoneID": self.zone_id,
            "recordID": self.record.id,
            "dnsName": self.record.host,
            "recordType": self.record.type,
            "value": self.record.value,
        }


def _format_fields(fields: Dict[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in fields.items())


# =============================================================================
# Change Set
# =============================================================================


@dataclass
class ChangeSet:
    """Creates, updates and deletes accumulated during one reconciliation pass.

    Records without a TTL keep ``ttl=None`` here; ``default_ttl`` is only
    substituted when the change is sent to the provider.
    """

    dry_run: bool = False
    default_ttl: int = 3600
    creates: List[ChangeCreate] = field(default_factory=list)
    updates: List[ChangeUpdate] = field(default_factory=list)
    deletes: List[ChangeDelete] = field(default_factory=list)

    def add_create(self, zone_id: str, record: Record) -> None:
        self.creates.append(ChangeCreate(zone_id=zone_id, record=record))

    def add_update(self, zone_id: str, record: Record) -> None:
        self.updates.append(ChangeUpdate(zone_id=zone_id, record=record))

    def add_delete(self, zone_id: str, record: Record) -> None:
        self.deletes.append(ChangeDelete(zone_id=zone_id, record=record))

    def empty(self) -> bool:
        return not self.creates and not self.updates and not self.deletes

    def effective_ttl(self, record: Record) -> int:
        return record.ttl if record.ttl is not None else self.default_ttl

    def summary(self) -> str:
        return (
            f"Creating {len(self.creates)} Record(s), Updating {len(self.updates)} Record(s), "
            f"Deleting {len(self.deletes)} Record(s)"
        )

    def __len__(self) -> int:
        return len(self.creates) + len(self.updates) + len(self.deletes)


# =============================================================================
# Apply Pipeline
# =============================================================================


class ApplyState(Enum):
    IDLE = "idle"
    DELETING_RECORDS = "deleting_records"
    CREATING_RECORDS = "creating_records"
    UPDATING_RECORDS = "updating_records"
    DONE = "done"


class ApplyPipeline:
    """Send a :class:`ChangeSet` to the provider: deletes, then creates, then updates.

    The first failing call aborts the pipeline and its exception propagates.
    Operations already sent are not rolled back; the next pass recomputes the
    diff from fresh provider state.
    """

    def __init__(self, provider: DNSProvider, metrics: Metrics):
        self.provider = provider
        self.metrics = metrics
        self.state = ApplyState.IDLE

    def apply(self, changes: ChangeSet, cancel: Optional[threading.Event] = None) -> None:
        self.state = ApplyState.IDLE
        if changes.empty():
            logger.debug("No changes to be applied found.")
            self.state = ApplyState.DONE
            return

        prefix = "DRY RUN: " if changes.dry_run else ""
        logger.info(f"{prefix}{changes.summary()}")

        self.state = ApplyState.DELETING_RECORDS
        self._apply_deletes(changes, cancel)
        self.state = ApplyState.CREATING_RECORDS
        self._apply_creates(changes, cancel)
        self.state = ApplyState.UPDATING_RECORDS
        self._apply_updates(changes, cancel)
        self.state = ApplyState.DONE

    def _apply_deletes(self, changes: ChangeSet, cancel: Optional[threading.Event]) -> None:
        for change in changes.deletes:
            rec = change.record
            logger.debug(f"Deleting domain record: {_format_fields(change.log_fields())}")
            self._log(
                changes.dry_run,
                f"Deleting record [{rec.host or '@'}] of type [{rec.type}] with value "
                f"[{rec.value}] from zone [{change.zone_id}]",
            )
            if changes.dry_run:
                continue
            self._call(
                ACT_DELETE_RECORD,
                lambda: self.provider.delete_record(change.zone_id, rec),
                cancel,
            )

    def _apply_creates(self, changes: ChangeSet, cancel: Optional[threading.Event]) -> None:
        for change in changes.creates:
            rec = change.record
            ttl = changes.effective_ttl(rec)
            logger.debug(f"Creating domain record: {_format_fields(change.log_fields())}")
            self._log(
                changes.dry_run,
                f"Creating record [{rec.host or '@'}] of type [{rec.type}] with value "
                f"[{rec.value}] and TTL [{ttl}] in zone [{change.zone_id}]",
            )
            _check_ttl(rec, ttl, change.zone_id)
            if changes.dry_run:
                continue
            self._call(
                ACT_CREATE_RECORD,
                lambda: self.provider.create_record(change.zone_id, rec, ttl),
                cancel,
            )

    def _apply_updates(self, changes: ChangeSet, cancel: Optional[threading.Event]) -> None:
        for change in changes.updates:
            rec = change.record
            ttl = changes.effective_ttl(rec)
            logger.debug(f"Updating domain record: {_format_fields(change.log_fields())}")
            self._log(
                changes.dry_run,
                f"Updating record ID [{rec.id}] with name [{rec.host or '@'}], type [{rec.type}], "
                f"value [{rec.value}] and TTL [{ttl}] in zone [{change.zone_id}]",
            )
            _check_ttl(rec, ttl, change.zone_id)
            if changes.dry_run:
                continue
            self._call(
                ACT_UPDATE_RECORD,
                lambda: self.provider.update_record(change.zone_id, rec, ttl),
                cancel,
            )

    def _log(self, dry_run: bool, message: str) -> None:
        logger.info(f"DRY RUN: {message}" if dry_run else message)

    def _call(self, action: str, fn: Callable[[], None], cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            self.metrics.inc_failed_api_calls(action)
            raise OperationCancelled(f"Reconciliation cancelled before {action}")
        start = time.monotonic()
        try:
            fn()
        except Exception:
            self.metrics.inc_failed_api_calls(action)
            raise
        self.metrics.inc_successful_api_calls(action)
        self.metrics.observe_api_delay(action, (time.monotonic() - start) * 1000)


def _check_ttl(record: Record, ttl: int, zone_id: str) -> None:
    if record.type == RECORD_TYPE_TXT:
        return
    if not is_valid_ttl(ttl):
        name = f"{record.host}.{zone_id}" if record.host not in ("", "@") else zone_id
        raise InvalidTTLError(ttl, name)
