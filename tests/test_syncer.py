"""Unit tests for Reconciler passes.

Runs full passes (snapshot, plan, diff, apply, state) against an in-memory
provider, checking the calls that reach the provider and what is recorded in
the state file.
"""

import itertools
import threading
from pathlib import Path
from typing import Dict, List, Set, Tuple

import pytest

from external_dns_cloudns.cli import Reconciler, _run_pass
from external_dns_cloudns.metrics import InMemoryMetrics
from external_dns_cloudns.models import (
    Endpoint,
    InvalidTTLError,
    OperationCancelled,
    ProviderError,
    Record,
    ReconcileError,
    Zone,
)
from external_dns_cloudns.provider import DNSProvider
from external_dns_cloudns.state import StateStore
from external_dns_cloudns.zones import DomainFilter

# =============================================================================
# Mock DNS Provider
# =============================================================================


class MockDNSProvider(DNSProvider):
    """Mock DNS provider with in-memory record storage and call tracking."""

    def __init__(
        self,
        zones: List[str],
        initial_records: List[Record] | None = None,
        failing: Set[str] | None = None,
    ):
        self._zones = [Zone(id=z, name=z) for z in zones]
        self._records: Dict[str, Record] = {}
        self._ids = itertools.count(100)
        self._failing = failing or set()
        self.write_calls: List[Tuple[str, str, str, str]] = []

        for record in initial_records or []:
            self._records[str(record.id)] = record

    @property
    def name(self) -> str:
        return "MockDNS"

    def test_connection(self) -> bool:
        return True

    def list_zones(self) -> List[Zone]:
        return list(self._zones)

    def list_records(self, zone: Zone) -> List[Record]:
        return [r for r in self._records.values() if r.zone == zone.name]

    def _check(self, action: str) -> None:
        if action in self._failing:
            raise ProviderError(f"{action} failed", action=action)

    def create_record(self, zone_id: str, record: Record, ttl: int) -> None:
        self.write_calls.append(("create", record.host, record.type, record.value))
        self._check("create")
        record_id = str(next(self._ids))
        self._records[record_id] = Record(
            id=record_id, zone=zone_id, host=record.host, type=record.type, value=record.value, ttl=ttl
        )

    def update_record(self, zone_id: str, record: Record, ttl: int) -> None:
        self.write_calls.append(("update", record.host, record.type, record.value))
        self._check("update")
        self._records[str(record.id)] = record.with_ttl(ttl)

    def delete_record(self, zone_id: str, record: Record) -> None:
        self.write_calls.append(("delete", record.host, record.type, record.value))
        self._check("delete")
        del self._records[str(record.id)]

    def values(self, host: str, record_type: str = "A") -> List[str]:
        return sorted(r.value for r in self._records.values() if r.host == host and r.type == record_type)


# =============================================================================
# Test Helpers
# =============================================================================


def create_test_reconciler(
    tmp_path: Path,
    records: List[Record] | None = None,
    zones: List[str] | None = None,
    failing: Set[str] | None = None,
    domain_filter: DomainFilter | None = None,
    dry_run: bool = False,
) -> tuple[Reconciler, MockDNSProvider, StateStore]:
    """Create a reconciler with a mocked provider.

    Returns tuple of (reconciler, dns_provider, state_store) for verification.
    """
    dns_provider = MockDNSProvider(zones or ["example.com"], records, failing)
    state_store = StateStore(str(tmp_path / "state.json"))
    reconciler = Reconciler(
        dns_provider=dns_provider,
        state_store=state_store,
        domain_filter=domain_filter,
        metrics=InMemoryMetrics(),
        default_ttl=3600,
        dry_run=dry_run,
    )
    return reconciler, dns_provider, state_store


def make_record(record_id: str, host: str, value: str, record_type: str = "A", ttl: int = 3600) -> Record:
    return Record(id=record_id, zone="example.com", host=host, type=record_type, value=value, ttl=ttl)


# =============================================================================
# Basic Passes
# =============================================================================


def test_sync_creates_new_endpoint(tmp_path: Path) -> None:
    reconciler, dns, store = create_test_reconciler(tmp_path)

    changes = reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1", "2.2.2.2"))])

    assert len(changes.creates) == 2
    assert dns.values("www") == ["1.1.1.1", "2.2.2.2"]
    assert store.managed_keys(store.load()) == {("www.example.com", "A")}


def test_second_pass_is_a_no_op(tmp_path: Path) -> None:
    reconciler, dns, _ = create_test_reconciler(tmp_path)
    desired = [
        Endpoint("www.example.com", "A", ("1.1.1.1",)),
        Endpoint("app.example.com", "CNAME", ("www.example.com",), 300),
    ]

    reconciler.sync_once(desired)
    calls_after_first = list(dns.write_calls)
    changes = reconciler.sync_once(desired)

    assert changes.empty()
    assert dns.write_calls == calls_after_first


def test_sync_replaces_only_changed_target(tmp_path: Path) -> None:
    records = [make_record("1", "www", "1.1.1.1"), make_record("2", "www", "2.2.2.2")]
    reconciler, dns, _ = create_test_reconciler(tmp_path, records)

    reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1", "3.3.3.3"))])

    assert sorted(dns.write_calls) == [
        ("create", "www", "A", "3.3.3.3"),
        ("delete", "www", "A", "2.2.2.2"),
    ]
    assert dns.values("www") == ["1.1.1.1", "3.3.3.3"]


def test_sync_updates_ttl_in_place(tmp_path: Path) -> None:
    reconciler, dns, _ = create_test_reconciler(tmp_path, [make_record("1", "www", "1.1.1.1")])

    changes = reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1",), 300)])

    assert [c.record.id for c in changes.updates] == ["1"]
    assert dns.write_calls == [("update", "www", "A", "1.1.1.1")]


def test_sync_deletes_only_managed_endpoints(tmp_path: Path) -> None:
    records = [make_record("1", "manual", "9.9.9.9")]
    reconciler, dns, _ = create_test_reconciler(tmp_path, records)
    reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1",))])

    changes = reconciler.sync_once([])

    assert [c.record.value for c in changes.deletes] == ["1.1.1.1"]
    assert dns.values("www") == []
    assert dns.values("manual") == ["9.9.9.9"]


def test_sync_leaves_unrelated_zone_untouched(tmp_path: Path) -> None:
    other = Record(id="7", zone="example.org", host="www", type="A", value="7.7.7.7", ttl=3600)
    reconciler, dns, _ = create_test_reconciler(tmp_path, [other], zones=["example.com", "example.org"])

    reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1",))])

    assert all(call[3] != "7.7.7.7" for call in dns.write_calls)
    assert dns.list_records(Zone("example.org", "example.org")) == [other]


def test_sync_registry_txt_uses_dash_host(tmp_path: Path) -> None:
    reconciler, dns, _ = create_test_reconciler(tmp_path)

    reconciler.sync_once([Endpoint("a-example.com", "TXT", ("heritage=external-dns",))])

    assert dns.write_calls == [("create", "adash", "TXT", "heritage=external-dns")]
    assert reconciler.sync_once([Endpoint("a-example.com", "TXT", ("heritage=external-dns",))]).empty()


# =============================================================================
# Dry Run and Failures
# =============================================================================


def test_dry_run_sends_nothing_and_keeps_state(tmp_path: Path) -> None:
    reconciler, dns, store = create_test_reconciler(tmp_path, dry_run=True)

    changes = reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1",))])

    assert len(changes.creates) == 1
    assert dns.write_calls == []
    assert not store.path.exists()


def test_failed_pass_raises_and_keeps_state(tmp_path: Path) -> None:
    reconciler, dns, store = create_test_reconciler(tmp_path, failing={"create"})

    with pytest.raises(ReconcileError):
        reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1",))])

    assert dns.write_calls == [("create", "www", "A", "1.1.1.1")]
    assert not store.path.exists()


def test_invalid_ttl_aborts_pass(tmp_path: Path) -> None:
    reconciler, dns, _ = create_test_reconciler(tmp_path)

    with pytest.raises(InvalidTTLError):
        reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1",), 42)])

    assert dns.write_calls == []


def test_cancelled_pass_makes_no_calls(tmp_path: Path) -> None:
    reconciler, dns, store = create_test_reconciler(tmp_path)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1",))], cancel)

    assert dns.write_calls == []
    assert not store.path.exists()


# =============================================================================
# Domain Filtering
# =============================================================================


def test_domain_filter_excludes_endpoints_and_zones(tmp_path: Path) -> None:
    reconciler, dns, store = create_test_reconciler(
        tmp_path,
        zones=["example.com", "example.org"],
        domain_filter=DomainFilter(filters=["example.com"]),
    )

    reconciler.sync_once(
        [
            Endpoint("www.example.com", "A", ("1.1.1.1",)),
            Endpoint("www.example.org", "A", ("2.2.2.2",)),
        ]
    )

    assert dns.write_calls == [("create", "www", "A", "1.1.1.1")]
    assert store.managed_keys(store.load()) == {("www.example.com", "A")}


def test_endpoint_outside_every_zone_is_not_recorded(tmp_path: Path) -> None:
    reconciler, dns, store = create_test_reconciler(tmp_path)

    reconciler.sync_once([Endpoint("www.unknown.net", "A", ("1.1.1.1",))])

    assert dns.write_calls == []
    assert store.managed_keys(store.load()) == set()


def test_in_zone_cname_is_deleted_when_no_longer_desired(tmp_path: Path) -> None:
    reconciler, dns, store = create_test_reconciler(tmp_path)
    reconciler.sync_once([Endpoint("app.example.com", "CNAME", ("www.example.com",))])
    assert dns.values("app", "CNAME") == ["www"]

    changes = reconciler.sync_once([])

    assert [c.record.value for c in changes.deletes] == ["www"]
    assert dns.values("app", "CNAME") == []
    assert store.managed_keys(store.load()) == set()


# =============================================================================
# Endpoint Files
# =============================================================================


def test_broken_endpoints_file_fails_pass_without_deleting(tmp_path: Path) -> None:
    reconciler, dns, store = create_test_reconciler(tmp_path)
    endpoints_file = tmp_path / "endpoints.yaml"
    endpoints_file.write_text(
        "endpoints:\n  - name: www.example.com\n    targets: ['1.1.1.1']\n", encoding="utf-8"
    )
    assert _run_pass(reconciler, str(endpoints_file), threading.Event()) is True

    endpoints_file.write_text("endpoints: [unclosed\n", encoding="utf-8")

    assert _run_pass(reconciler, str(endpoints_file), threading.Event()) is False
    assert dns.write_calls == [("create", "www", "A", "1.1.1.1")]
    assert dns.values("www") == ["1.1.1.1"]
    assert store.managed_keys(store.load()) == {("www.example.com", "A")}


def test_missing_endpoints_path_fails_pass_without_deleting(tmp_path: Path) -> None:
    reconciler, dns, store = create_test_reconciler(tmp_path)
    reconciler.sync_once([Endpoint("www.example.com", "A", ("1.1.1.1",))])

    assert _run_pass(reconciler, str(tmp_path / "missing.yaml"), threading.Event()) is False
    assert dns.values("www") == ["1.1.1.1"]
    assert store.managed_keys(store.load()) == {("www.example.com", "A")}
