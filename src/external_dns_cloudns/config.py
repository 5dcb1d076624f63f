"""Configuration from environment variables and desired endpoints from YAML files.

Environment variables:

    ClouDNS:
        CLOUDNS_AUTH_ID_TYPE          "auth-id" or "sub-auth-id" (default: auth-id)
        CLOUDNS_AUTH_ID               Numeric (sub-)user id (required)
        CLOUDNS_AUTH_PASSWORD         API password (required)
        CLOUDNS_API_URL               API base URL (default: https://api.cloudns.net)
        CLOUDNS_TIMEOUT_SECONDS       Per-call HTTP timeout (default: 10)
        CLOUDNS_DEBUG                 Force DEBUG logging (default: false)

    Reconciliation:
        DRY_RUN                       Log changes without sending them (default: false)
        DEFAULT_TTL                   TTL for endpoints without one (default: 3600)
        ENDPOINTS_PATH                YAML file, or directory of *.yaml files, with the
                                      desired endpoints (default: /config/endpoints.yaml)
        STATE_PATH                    JSON state file path (default: /data/state.json)

    Domain filters:
        DOMAIN_FILTER                 Comma-separated zone suffixes to manage
        EXCLUDE_DOMAIN_FILTER         Comma-separated zone suffixes to ignore
        REGEXP_DOMAIN_FILTER          Regex of zones to manage (overrides the lists above)
        REGEXP_DOMAIN_FILTER_EXCLUSION  Regex of zones to ignore with REGEXP_DOMAIN_FILTER

    Runtime:
        SYNC_MODE                     "once" or "watch" (default: watch)
        POLL_INTERVAL_SECONDS         Poll interval in watch mode (default: 60)
        LOG_LEVEL                     DEBUG, INFO, WARNING, ERROR (default: INFO)

Endpoints file:

    endpoints:
      - name: www.example.com
        type: A
        targets: ["1.1.1.1", "2.2.2.2"]
        ttl: 300
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from external_dns_cloudns.models import VALID_TTLS, ConfigError, Endpoint, is_supported_record_type, is_valid_ttl
from external_dns_cloudns.provider import AUTH_ID_TYPES, ClouDNSProvider
from external_dns_cloudns.zones import DomainFilter

logger = logging.getLogger(__name__)

SYNC_MODES = ("once", "watch")

# =============================================================================
# Parsing Helpers
# =============================================================================


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return default
    return text in {"1", "true", "yes", "y", "on"}


def _parse_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class Config:
    auth_id: str = ""
    auth_password: str = ""
    auth_id_type: str = "auth-id"
    api_url: str = ClouDNSProvider.DEFAULT_URL
    timeout_seconds: str = "10"
    debug: bool = False
    dry_run: bool = False
    default_ttl: str = "3600"
    endpoints_path: str = "/config/endpoints.yaml"
    state_path: str = "/data/state.json"
    domain_filter: List[str] = field(default_factory=list)
    exclude_domains: List[str] = field(default_factory=list)
    regex_domain_filter: str = ""
    regex_domain_exclusion: str = ""
    sync_mode: str = "watch"
    poll_interval_seconds: str = "60"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        return cls(
            auth_id=env.get("CLOUDNS_AUTH_ID", "").strip(),
            auth_password=env.get("CLOUDNS_AUTH_PASSWORD", ""),
            auth_id_type=env.get("CLOUDNS_AUTH_ID_TYPE", "auth-id").strip().lower(),
            api_url=env.get("CLOUDNS_API_URL", ClouDNSProvider.DEFAULT_URL).strip(),
            timeout_seconds=env.get("CLOUDNS_TIMEOUT_SECONDS", "10").strip(),
            debug=_parse_bool(env.get("CLOUDNS_DEBUG")),
            dry_run=_parse_bool(env.get("DRY_RUN")),
            default_ttl=env.get("DEFAULT_TTL", "3600").strip(),
            endpoints_path=env.get("ENDPOINTS_PATH", "/config/endpoints.yaml"),
            state_path=env.get("STATE_PATH", "/data/state.json"),
            domain_filter=_parse_list(env.get("DOMAIN_FILTER")),
            exclude_domains=_parse_list(env.get("EXCLUDE_DOMAIN_FILTER")),
            regex_domain_filter=env.get("REGEXP_DOMAIN_FILTER", "").strip(),
            regex_domain_exclusion=env.get("REGEXP_DOMAIN_FILTER_EXCLUSION", "").strip(),
            sync_mode=env.get("SYNC_MODE", "watch").strip().lower(),
            poll_interval_seconds=env.get("POLL_INTERVAL_SECONDS", "60").strip(),
            log_level=env.get("LOG_LEVEL", "INFO").strip().upper(),
        )

    def validate(self) -> List[str]:
        """Return every problem found; an empty list means the config is usable."""
        errors: List[str] = []

        if not self.auth_id:
            errors.append("CLOUDNS_AUTH_ID is required")
        elif not self.auth_id.isdigit():
            errors.append(f"CLOUDNS_AUTH_ID must be an integer, got '{self.auth_id}'")
        if not self.auth_password:
            errors.append("CLOUDNS_AUTH_PASSWORD is required")
        if self.auth_id_type not in AUTH_ID_TYPES:
            errors.append(
                "CLOUDNS_AUTH_ID_TYPE is not valid. Expected one of 'auth-id' or "
                f"'sub-auth-id' but was: '{self.auth_id_type}'"
            )

        try:
            if not is_valid_ttl(int(self.default_ttl)):
                errors.append(
                    f"DEFAULT_TTL {self.default_ttl} is not one of {', '.join(str(v) for v in VALID_TTLS)}"
                )
        except ValueError:
            errors.append(f"DEFAULT_TTL must be an integer, got '{self.default_ttl}'")

        for name, value in (
            ("POLL_INTERVAL_SECONDS", self.poll_interval_seconds),
            ("CLOUDNS_TIMEOUT_SECONDS", self.timeout_seconds),
        ):
            try:
                if float(value) <= 0:
                    errors.append(f"{name} must be positive, got '{value}'")
            except ValueError:
                errors.append(f"{name} must be a number, got '{value}'")

        if self.sync_mode not in SYNC_MODES:
            errors.append(f"Invalid SYNC_MODE: {self.sync_mode}. Use 'once' or 'watch'")

        for name, pattern in (
            ("REGEXP_DOMAIN_FILTER", self.regex_domain_filter),
            ("REGEXP_DOMAIN_FILTER_EXCLUSION", self.regex_domain_exclusion),
        ):
            if not pattern:
                continue
            try:
                re.compile(pattern)
            except re.error as e:
                errors.append(f"{name} is not a valid regular expression: {e}")

        return errors

    @property
    def default_ttl_value(self) -> int:
        return int(self.default_ttl)

    @property
    def poll_interval(self) -> float:
        return float(self.poll_interval_seconds)

    def build_domain_filter(self) -> DomainFilter:
        if self.regex_domain_filter:
            return DomainFilter(regex=self.regex_domain_filter, regex_exclusion=self.regex_domain_exclusion)
        return DomainFilter(filters=self.domain_filter, exclusions=self.exclude_domains)

    def build_provider(self) -> ClouDNSProvider:
        return ClouDNSProvider(
            auth_id=int(self.auth_id),
            auth_password=self.auth_password,
            auth_id_type=self.auth_id_type,
            url=self.api_url,
            timeout_seconds=float(self.timeout_seconds),
        )


# =============================================================================
# Endpoint Files
# =============================================================================


def get_config_file_mtime(config_path: str) -> float:
    """Get modification time of config file, returns 0 if file doesn't exist."""
    try:
        return os.path.getmtime(config_path) if os.path.exists(config_path) else 0.0
    except OSError:
        return 0.0


def find_config_files(config_path: str) -> List[str]:
    """Find all .yaml config files in directory or return single file.

    Args:
        config_path: Path to config file or directory

    Returns:
        List of config file paths (excluding .template files)
    """
    path = Path(config_path)

    if path.is_file():
        return [str(path)]

    if path.is_dir():
        yaml_files = sorted(list(path.glob("*.yaml")) + list(path.glob("*.yml")))
        return [str(f) for f in yaml_files if not f.name.endswith(".template")]

    return []


def get_config_files_mtimes(config_files: List[str]) -> Dict[str, float]:
    return {f: get_config_file_mtime(f) for f in config_files}


def _clean_name(name: str) -> str:
    return name.strip().rstrip(".").lower()


def parse_endpoint(item: Any) -> Optional[Endpoint]:
    """Build an endpoint from one YAML entry, None when the entry is unusable."""
    if not isinstance(item, dict):
        return None
    name = _clean_name(str(item.get("name") or item.get("dnsName") or ""))
    record_type = str(item.get("type") or item.get("recordType") or "A").strip().upper()
    raw_targets = item.get("targets")
    if raw_targets is None and item.get("target") is not None:
        raw_targets = [item.get("target")]
    if isinstance(raw_targets, (str, int)):
        raw_targets = [raw_targets]
    if not name or not isinstance(raw_targets, list):
        return None
    targets = [str(t).strip() for t in raw_targets if str(t).strip()]
    if not targets:
        return None
    if not is_supported_record_type(record_type):
        logger.warning(f"Skipping endpoint {name}: unsupported record type '{record_type}'")
        return None
    raw_ttl = item.get("ttl")
    if isinstance(raw_ttl, bool):
        logger.warning(f"Skipping endpoint {name}: invalid ttl '{raw_ttl}'")
        return None
    try:
        ttl = int(raw_ttl or 0)
    except (TypeError, ValueError):
        logger.warning(f"Skipping endpoint {name}: invalid ttl '{item.get('ttl')}'")
        return None
    return Endpoint(dns_name=name, record_type=record_type, targets=tuple(targets), ttl=max(ttl, 0))


def load_endpoints(config_path: str) -> List[Endpoint]:
    """Load desired endpoints from every YAML file found at ``config_path``.

    The result is the complete desired state, so anything that would make it
    partial raises :class:`ConfigError` instead: a missing path, an unreadable
    or unparsable file, or a file without an ``endpoints`` list. Individual
    malformed entries are skipped with a warning.
    """
    config_files = find_config_files(config_path)
    if not config_files:
        raise ConfigError(f"No endpoint files found at {config_path}")

    endpoints: List[Endpoint] = []
    for config_file in config_files:
        try:
            with open(config_file, "r") as f:
                config_data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load endpoints from {config_file}: {e}") from e

        if not isinstance(config_data, dict) or "endpoints" not in config_data:
            raise ConfigError(f"Config file {config_file} missing 'endpoints' key")
        items = config_data["endpoints"] or []
        if not isinstance(items, list):
            raise ConfigError(f"Config file {config_file}: 'endpoints' must be a list")

        for item in items:
            ep = parse_endpoint(item)
            if ep is None:
                logger.warning(f"Skipping malformed endpoint in {config_file}: {item}")
                continue
            endpoints.append(ep)

    logger.info(f"Loaded {len(endpoints)} endpoint(s) from {len(config_files)} config file(s)")
    return endpoints
