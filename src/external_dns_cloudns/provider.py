"""DNS provider interface and the ClouDNS implementation."""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import requests

from external_dns_cloudns.metrics import (
    ACT_CREATE_RECORD,
    ACT_DELETE_RECORD,
    ACT_GET_RECORDS,
    ACT_GET_ZONES,
    ACT_UPDATE_RECORD,
    Metrics,
)
from external_dns_cloudns.models import (
    RECORD_TYPE_MX,
    ConfigError,
    ProviderError,
    Record,
    Zone,
    is_supported_record_type,
)
from external_dns_cloudns.zones import DomainFilter

logger = logging.getLogger(__name__)

AUTH_ID_TYPES = ("auth-id", "sub-auth-id")

# =============================================================================
# DNS Provider Interface
# =============================================================================


class DNSProvider(ABC):
    """Abstract base class for DNS providers.

    Every method raises :class:`ProviderError` on failure.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the DNS provider."""
        pass

    @abstractmethod
    def list_zones(self) -> List[Zone]:
        """Get every zone visible to the account."""
        pass

    @abstractmethod
    def list_records(self, zone: Zone) -> List[Record]:
        """Get all records stored in ``zone``."""
        pass

    @abstractmethod
    def create_record(self, zone_id: str, record: Record, ttl: int) -> None:
        """Create ``record`` in the zone, using ``ttl`` as its TTL."""
        pass

    @abstractmethod
    def update_record(self, zone_id: str, record: Record, ttl: int) -> None:
        """Overwrite the record identified by ``record.id`` with the given fields."""
        pass

    @abstractmethod
    def delete_record(self, zone_id: str, record: Record) -> None:
        """Delete the record identified by ``record.id``."""
        pass


# =============================================================================
# ClouDNS
# =============================================================================


class ClouDNSProvider(DNSProvider):
    """ClouDNS HTTP API provider implementation."""

    DEFAULT_URL = "https://api.cloudns.net"
    ROWS_PER_PAGE = 100

    def __init__(
        self,
        auth_id: int,
        auth_password: str,
        auth_id_type: str = "auth-id",
        url: str = DEFAULT_URL,
        timeout_seconds: float = 10.0,
    ):
        if auth_id_type not in AUTH_ID_TYPES:
            raise ConfigError(
                f"CLOUDNS_AUTH_ID_TYPE is not valid. Expected one of 'auth-id' or "
                f"'sub-auth-id' but was: '{auth_id_type}'"
            )
        self._url = url.rstrip("/")
        self._timeout = timeout_seconds
        self._auth = {auth_id_type: str(auth_id), "auth-password": auth_password}
        self._session = requests.Session()

    @property
    def name(self) -> str:
        return "ClouDNS"

    def _call(self, method: str, path: str, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = dict(self._auth)
        query.update(params or {})
        url = f"{self._url}/dns/{path}"
        try:
            if method == "POST":
                response = self._session.post(url, params=query, timeout=self._timeout)
            else:
                response = self._session.get(url, params=query, timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, json.JSONDecodeError) as e:
            raise ProviderError(f"{self.name} {path} failed: {e}", action=action) from e

        if isinstance(data, dict) and str(data.get("status", "")).lower() == "failed":
            description = data.get("statusDescription") or "unknown error"
            raise ProviderError(f"{self.name} {path} failed: {description}", action=action)
        return data

    def test_connection(self) -> bool:
        try:
            self._call("GET", "login.json", "login")
            logger.info(f"{self.name} connection successful")
            return True
        except ProviderError as e:
            logger.error(f"Failed to connect to {self.name}: {e}")
            return False

    def list_zones(self) -> List[Zone]:
        zones: List[Zone] = []
        page = 1
        while True:
            data = self._call(
                "GET",
                "list-zones.json",
                ACT_GET_ZONES,
                {"page": page, "rows-per-page": self.ROWS_PER_PAGE},
            )
            if not isinstance(data, list):
                raise ProviderError(
                    f"Unexpected response format from {self.name}: "
                    f"expected list, got {type(data).__name__}",
                    action=ACT_GET_ZONES,
                )
            for item in data:
                name = item.get("name") if isinstance(item, dict) else None
                if not isinstance(name, str) or not name:
                    logger.warning(f"Skipping malformed zone: {item}")
                    continue
                active = str(item.get("status", "1")) == "1"
                zones.append(Zone(id=name, name=name, active=active))
            if len(data) < self.ROWS_PER_PAGE:
                return zones
            page += 1

    def list_records(self, zone: Zone) -> List[Record]:
        data = self._call("GET", "records.json", ACT_GET_RECORDS, {"domain-name": zone.name})
        # An empty zone comes back as an empty list instead of an object.
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            items = list(data.values())
        else:
            items = []

        records: List[Record] = []
        for item in items:
            if not isinstance(item, dict) or "id" not in item or "type" not in item:
                logger.warning(f"Skipping malformed record in zone {zone.name}: {item}")
                continue
            record_type = str(item["type"])
            value = str(item.get("record", ""))
            if record_type == RECORD_TYPE_MX and item.get("priority") not in (None, ""):
                value = f"{item['priority']} {value}"
            records.append(
                Record(
                    id=str(item["id"]),
                    zone=zone.name,
                    host=str(item.get("host") or ""),
                    type=record_type,
                    value=value,
                    ttl=_parse_ttl(item.get("ttl")),
                )
            )
        return records

    def _record_params(self, zone_id: str, record: Record, ttl: int) -> Dict[str, Any]:
        host = "" if record.host == "@" else record.host
        params: Dict[str, Any] = {
            "domain-name": zone_id,
            "record-type": record.type,
            "host": host,
            "record": record.value,
            "ttl": ttl,
        }
        if record.type == RECORD_TYPE_MX:
            priority, value = _split_mx(record.value)
            params["priority"] = priority
            params["record"] = value
        return params

    def create_record(self, zone_id: str, record: Record, ttl: int) -> None:
        self._call("POST", "add-record.json", ACT_CREATE_RECORD, self._record_params(zone_id, record, ttl))

    def update_record(self, zone_id: str, record: Record, ttl: int) -> None:
        if not record.id:
            raise ProviderError(f"Cannot update record without id in zone {zone_id}", action=ACT_UPDATE_RECORD)
        params = self._record_params(zone_id, record, ttl)
        params.pop("record-type")
        params["record-id"] = record.id
        self._call("POST", "mod-record.json", ACT_UPDATE_RECORD, params)

    def delete_record(self, zone_id: str, record: Record) -> None:
        if not record.id:
            raise ProviderError(f"Cannot delete record without id in zone {zone_id}", action=ACT_DELETE_RECORD)
        self._call(
            "POST",
            "delete-record.json",
            ACT_DELETE_RECORD,
            {"domain-name": zone_id, "record-id": record.id},
        )


def _parse_ttl(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _split_mx(value: str) -> Tuple[int, str]:
    """Split an MX target of the form "<priority> <host>"."""
    parts = value.split(None, 1)
    if len(parts) == 2 and parts[0].isdigit():
        return int(parts[0]), parts[1]
    return 10, value


# =============================================================================
# Snapshot Fetching
# =============================================================================


def fetch_zones(provider: DNSProvider, metrics: Metrics, domain_filter: Optional[DomainFilter] = None) -> List[Zone]:
    """List the provider's zones, keeping the active ones the filter allows."""
    start = time.monotonic()
    try:
        zones = provider.list_zones()
    except ProviderError:
        metrics.inc_failed_api_calls(ACT_GET_ZONES)
        raise
    metrics.inc_successful_api_calls(ACT_GET_ZONES)
    metrics.observe_api_delay(ACT_GET_ZONES, (time.monotonic() - start) * 1000)

    result: List[Zone] = []
    filtered_out = 0
    for zone in zones:
        if not zone.active:
            logger.debug(f"Skipping inactive zone {zone.name}")
            continue
        if domain_filter is not None and not domain_filter.match(zone.name):
            filtered_out += 1
            continue
        result.append(zone)
    metrics.set_filtered_out_zones(filtered_out)
    return result


def fetch_records(provider: DNSProvider, zone: Zone, metrics: Metrics) -> List[Record]:
    """List the records of ``zone`` whose type the reconciler manages."""
    start = time.monotonic()
    try:
        records = provider.list_records(zone)
    except ProviderError:
        metrics.inc_failed_api_calls(ACT_GET_RECORDS)
        raise
    metrics.inc_successful_api_calls(ACT_GET_RECORDS)
    metrics.observe_api_delay(ACT_GET_RECORDS, (time.monotonic() - start) * 1000)

    supported = [r for r in records if is_supported_record_type(r.type)]
    skipped = len(records) - len(supported)
    if skipped:
        logger.debug(f"Skipped {skipped} record(s) of unsupported type in zone {zone.name}")
    metrics.set_skipped_records(zone.name, skipped)
    return supported
