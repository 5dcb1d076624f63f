#!/usr/bin/env python3
"""external-dns-cloudns - reconcile desired DNS endpoints into ClouDNS.

Reads the desired endpoints from YAML, fetches the zones and records held by
ClouDNS, computes the minimal create/update/delete operations and applies them
(deletes first, then creates, then updates). See
:mod:`external_dns_cloudns.config` for the environment variables.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional

from external_dns_cloudns.changes import ApplyPipeline, ChangeSet
from external_dns_cloudns.config import Config, find_config_files, get_config_files_mtimes, load_endpoints
from external_dns_cloudns.diff import reconcile
from external_dns_cloudns.metrics import InMemoryMetrics, Metrics
from external_dns_cloudns.models import Endpoint, Record, ReconcileError, Zone
from external_dns_cloudns.plan import plan_changes, records_to_endpoints
from external_dns_cloudns.provider import DNSProvider, fetch_records, fetch_zones
from external_dns_cloudns.state import StateStore
from external_dns_cloudns.zones import DomainFilter

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str, debug: bool = False) -> None:
    resolved = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


# =============================================================================
# Core Reconciler
# =============================================================================


class Reconciler:
    """Runs reconciliation passes against one provider.

    A pass reads a fresh zone/record snapshot, plans and diffs it against the
    desired endpoints into a new :class:`ChangeSet`, applies it and records the
    published endpoints in the state store. Change sets never outlive a pass.
    """

    def __init__(
        self,
        *,
        dns_provider: DNSProvider,
        state_store: StateStore,
        domain_filter: Optional[DomainFilter] = None,
        metrics: Optional[Metrics] = None,
        default_ttl: int = 3600,
        dry_run: bool = False,
    ):
        self.dns_provider = dns_provider
        self.state_store = state_store
        self.domain_filter = domain_filter or DomainFilter()
        self.metrics = metrics or InMemoryMetrics()
        self.default_ttl = default_ttl
        self.dry_run = dry_run

    def _snapshot(self) -> tuple[List[Zone], Dict[str, List[Record]]]:
        zones = fetch_zones(self.dns_provider, self.metrics, self.domain_filter)
        records_by_zone: Dict[str, List[Record]] = {}
        for zone in zones:
            records_by_zone[zone.name] = fetch_records(self.dns_provider, zone, self.metrics)
        return zones, records_by_zone

    def sync_once(self, desired: List[Endpoint], cancel: Optional[threading.Event] = None) -> ChangeSet:
        """Run one pass and return the change set that was applied.

        Provider failures, invalid TTLs and cancellation propagate as
        :class:`ReconcileError`; the state file is left untouched in that case.
        """
        desired = [ep for ep in desired if self._domain_allowed(ep)]
        zones, records_by_zone = self._snapshot()
        current = records_to_endpoints(zones, records_by_zone)

        state = self.state_store.load()
        managed = self.state_store.managed_keys(state)

        plan = plan_changes(desired, current, zones, self.default_ttl, managed)
        creates, updates, deletes = plan.counts()
        logger.info(
            f"Planned {creates} create(s), {updates} update(s), {deletes} delete(s) "
            f"across {len(zones)} zone(s)"
        )

        changes = ChangeSet(dry_run=self.dry_run, default_ttl=self.default_ttl)
        reconcile(
            {z.id: z.name for z in zones},
            records_by_zone,
            plan.creates,
            plan.updates,
            plan.deletes,
            changes,
        )

        ApplyPipeline(self.dns_provider, self.metrics).apply(changes, cancel)

        if not self.dry_run:
            skipped = {ep.key for ep in plan.skipped}
            self.state_store.record_published(ep for ep in desired if ep.key not in skipped)
        return changes

    def _domain_allowed(self, ep: Endpoint) -> bool:
        if self.domain_filter.match(ep.dns_name):
            return True
        logger.debug(f"Excluding domain '{ep.dns_name}' (does not match domain filter)")
        return False


# =============================================================================
# Main
# =============================================================================


def _install_signal_handlers(cancel: threading.Event) -> None:
    def _handler(signum, _frame):
        logger.info(f"Received signal {signum}, cancelling current pass")
        cancel.set()

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def _run_pass(reconciler: Reconciler, endpoints_path: str, cancel: threading.Event) -> bool:
    try:
        reconciler.sync_once(load_endpoints(endpoints_path), cancel)
        return True
    except ReconcileError as e:
        logger.error(f"Reconciliation pass failed: {e}")
        return False
    finally:
        if isinstance(reconciler.metrics, InMemoryMetrics):
            reconciler.metrics.log_summary()


def main() -> None:
    """Main entry point."""
    config = Config.from_env()
    setup_logging(config.log_level, config.debug)

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(error)
        logger.error("Configuration validation failed")
        sys.exit(1)

    dns_provider = config.build_provider()
    domain_filter = config.build_domain_filter()

    logger.info(f"external-dns-cloudns: {config.endpoints_path} -> {dns_provider.name}")
    logger.info(f"Creating {dns_provider.name} provider with {domain_filter.describe()}")
    logger.info(f"Default TTL: {config.default_ttl_value}s")
    logger.info(f"Sync mode: {config.sync_mode}")
    if config.dry_run:
        logger.info("Dry run enabled: no changes will be sent to the provider")

    if not dns_provider.test_connection():
        logger.error(f"Cannot connect to {dns_provider.name}. Exiting.")
        sys.exit(1)

    reconciler = Reconciler(
        dns_provider=dns_provider,
        state_store=StateStore(config.state_path),
        domain_filter=domain_filter,
        default_ttl=config.default_ttl_value,
        dry_run=config.dry_run,
    )

    cancel = threading.Event()
    _install_signal_handlers(cancel)

    if config.sync_mode == "once":
        if not _run_pass(reconciler, config.endpoints_path, cancel):
            sys.exit(1)
        return

    logger.info(f"Poll interval: {config.poll_interval}s")
    config_files = find_config_files(config.endpoints_path)
    last_mtimes = get_config_files_mtimes(config_files)

    while not cancel.is_set():
        _run_pass(reconciler, config.endpoints_path, cancel)

        # Reconcile again right away when the endpoint files changed.
        waited = 0.0
        interval = max(5.0, config.poll_interval)
        while waited < interval and not cancel.is_set():
            cancel.wait(1.0)
            waited += 1.0
            current_files = find_config_files(config.endpoints_path)
            current_mtimes = get_config_files_mtimes(current_files)
            if set(current_files) != set(config_files) or current_mtimes != last_mtimes:
                changed = sorted(set(current_files) ^ set(config_files)) or [
                    f for f in current_files if current_mtimes.get(f) != last_mtimes.get(f)
                ]
                logger.info(
                    f"Config change detected in: {', '.join(Path(f).name for f in changed)}"
                )
                config_files = current_files
                last_mtimes = current_mtimes
                break

    logger.info("Shutting down gracefully...")


if __name__ == "__main__":
    main()
