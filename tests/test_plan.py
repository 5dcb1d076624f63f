"""Unit tests for snapshot conversion and create/update/delete planning."""

from external_dns_cloudns.changes import ChangeSet
from external_dns_cloudns.diff import reconcile
from external_dns_cloudns.models import Endpoint, Record, Zone, merge_endpoints_by_name_type
from external_dns_cloudns.plan import plan_changes, records_to_endpoints

ZONES = [Zone(id="example.com", name="example.com"), Zone(id="k8s.example.com", name="k8s.example.com")]


def make_record(record_id: str, host: str, value: str, record_type: str = "A", zone: str = "example.com") -> Record:
    return Record(id=record_id, zone=zone, host=host, type=record_type, value=value, ttl=3600)


# =============================================================================
# Endpoint Merging
# =============================================================================


def test_merge_combines_targets_of_same_name_and_type() -> None:
    merged = merge_endpoints_by_name_type(
        [
            Endpoint("www.example.com", "A", ("1.1.1.1",), 300),
            Endpoint("www.example.com", "AAAA", ("::1",)),
            Endpoint("www.example.com", "A", ("2.2.2.2",), 600),
        ]
    )

    assert merged == [
        Endpoint("www.example.com", "A", ("1.1.1.1", "2.2.2.2"), 300),
        Endpoint("www.example.com", "AAAA", ("::1",)),
    ]


def test_endpoint_targets_are_unique_and_ordered() -> None:
    ep = Endpoint("www.example.com", "A", ["2.2.2.2", "1.1.1.1", "2.2.2.2"])
    assert ep.targets == ("2.2.2.2", "1.1.1.1")


# =============================================================================
# Snapshot Conversion
# =============================================================================


def test_records_to_endpoints_merges_records_per_name() -> None:
    records = {
        "example.com": [
            make_record("1", "www", "1.1.1.1"),
            make_record("2", "www", "2.2.2.2"),
            make_record("3", "", "3.3.3.3"),
            make_record("4", "adash", "heritage=external-dns", record_type="TXT"),
        ]
    }

    endpoints = records_to_endpoints(ZONES[:1], records)

    assert endpoints == [
        Endpoint("www.example.com", "A", ("1.1.1.1", "2.2.2.2"), 3600),
        Endpoint("example.com", "A", ("3.3.3.3",), 3600),
        Endpoint("a-example.com", "TXT", ("heritage=external-dns",), 3600),
    ]


# =============================================================================
# Planning
# =============================================================================


def test_new_endpoint_is_planned_as_create() -> None:
    desired = [Endpoint("dashboard.k8s.example.com", "A", ("1.1.1.1",))]

    plan = plan_changes(desired, [], ZONES, 3600)

    assert plan.creates == {"k8s.example.com": desired}
    assert plan.counts() == (1, 0, 0)


def test_unchanged_endpoint_is_not_planned() -> None:
    desired = [Endpoint("www.example.com", "A", ("1.1.1.1",))]
    current = [Endpoint("www.example.com", "A", ("1.1.1.1",), 3600)]

    plan = plan_changes(desired, current, ZONES, 3600)

    assert plan.empty()


def test_changed_targets_are_planned_as_update() -> None:
    desired = [Endpoint("www.example.com", "A", ("1.1.1.1", "3.3.3.3"))]
    current = [Endpoint("www.example.com", "A", ("1.1.1.1", "2.2.2.2"), 3600)]

    plan = plan_changes(desired, current, ZONES, 3600)

    assert plan.updates == {"example.com": desired}


def test_changed_ttl_is_planned_as_update() -> None:
    desired = [Endpoint("www.example.com", "A", ("1.1.1.1",), 300)]
    current = [Endpoint("www.example.com", "A", ("1.1.1.1",), 3600)]

    assert plan_changes(desired, current, ZONES, 3600).counts() == (0, 1, 0)


def test_equivalent_cname_target_is_not_an_update() -> None:
    desired = [Endpoint("www.example.com", "CNAME", ("app.example.com.",))]
    current = [Endpoint("www.example.com", "CNAME", ("app.example.com",), 3600)]

    assert plan_changes(desired, current, ZONES, 3600).empty()


def test_records_to_endpoints_expands_cname_values() -> None:
    records = {
        "example.com": [
            make_record("1", "www", "app", record_type="CNAME"),
            make_record("2", "cdn", "edge.provider.net.", record_type="CNAME"),
        ]
    }

    endpoints = records_to_endpoints(ZONES[:1], records)

    assert [ep.targets for ep in endpoints] == [("app.example.com",), ("edge.provider.net",)]


def test_managed_in_zone_cname_is_deleted_by_value() -> None:
    records = {"example.com": [make_record("1", "app", "www", record_type="CNAME")]}
    current = records_to_endpoints(ZONES[:1], records)

    plan = plan_changes([], current, ZONES, 3600, managed={("app.example.com", "CNAME")})
    changes = reconcile({"example.com": "example.com"}, records, {}, {}, plan.deletes, ChangeSet())

    assert [c.record.id for c in changes.deletes] == ["1"]


def test_only_managed_endpoints_are_deleted() -> None:
    current = [
        Endpoint("old.example.com", "A", ("1.1.1.1",), 3600),
        Endpoint("manual.example.com", "A", ("2.2.2.2",), 3600),
    ]

    plan = plan_changes([], current, ZONES, 3600, managed={("old.example.com", "A")})

    assert plan.deletes == {"example.com": [current[0]]}


def test_managed_endpoint_already_gone_is_ignored() -> None:
    plan = plan_changes([], [], ZONES, 3600, managed={("old.example.com", "A")})

    assert plan.empty()


def test_endpoint_outside_known_zones_is_skipped() -> None:
    desired = [Endpoint("www.other.org", "A", ("1.1.1.1",))]

    plan = plan_changes(desired, [], ZONES, 3600)

    assert plan.empty()
    assert plan.skipped == desired
