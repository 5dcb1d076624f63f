"""API call metrics.

The pipeline and the snapshot fetchers receive a :class:`Metrics` instance
instead of reaching for a process-wide registry, so tests can pass their own.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)

ACT_GET_ZONES = "get_zones"
ACT_GET_RECORDS = "get_records"
ACT_CREATE_RECORD = "create_record"
ACT_UPDATE_RECORD = "update_record"
ACT_DELETE_RECORD = "delete_record"

# Upper bounds (milliseconds) of the API delay histogram buckets.
DELAY_BUCKETS_MS = (50, 100, 250, 500, 1000, 2500, 5000, 10000)


class Metrics(ABC):
    """Counters and histograms describing provider API usage."""

    @abstractmethod
    def inc_successful_api_calls(self, action: str) -> None:
        pass

    @abstractmethod
    def inc_failed_api_calls(self, action: str) -> None:
        pass

    @abstractmethod
    def observe_api_delay(self, action: str, delay_ms: float) -> None:
        pass

    def set_filtered_out_zones(self, count: int) -> None:
        """Number of zones ignored because of the domain filter."""

    def set_skipped_records(self, zone_name: str, count: int) -> None:
        """Number of records in a zone skipped for having an unsupported type."""


class InMemoryMetrics(Metrics):
    """Keeps every metric in plain dictionaries."""

    def __init__(self) -> None:
        self.successful_api_calls: Dict[str, int] = {}
        self.failed_api_calls: Dict[str, int] = {}
        self.api_delays: Dict[str, List[float]] = {}
        self.filtered_out_zones = 0
        self.skipped_records: Dict[str, int] = {}

    def inc_successful_api_calls(self, action: str) -> None:
        self.successful_api_calls[action] = self.successful_api_calls.get(action, 0) + 1

    def inc_failed_api_calls(self, action: str) -> None:
        self.failed_api_calls[action] = self.failed_api_calls.get(action, 0) + 1

    def observe_api_delay(self, action: str, delay_ms: float) -> None:
        self.api_delays.setdefault(action, []).append(delay_ms)

    def set_filtered_out_zones(self, count: int) -> None:
        self.filtered_out_zones = count

    def set_skipped_records(self, zone_name: str, count: int) -> None:
        self.skipped_records[zone_name] = count

    def delay_histogram(self, action: str) -> List[Tuple[float, int]]:
        """Cumulative bucket counts for ``action``; the last bucket is +Inf."""
        samples = self.api_delays.get(action, [])
        buckets: List[Tuple[float, int]] = []
        for bound in DELAY_BUCKETS_MS:
            buckets.append((float(bound), sum(1 for s in samples if s <= bound)))
        buckets.append((float("inf"), len(samples)))
        return buckets

    def log_summary(self) -> None:
        actions = sorted(set(self.successful_api_calls) | set(self.failed_api_calls))
        if not actions:
            return
        parts = []
        for action in actions:
            ok = self.successful_api_calls.get(action, 0)
            failed = self.failed_api_calls.get(action, 0)
            parts.append(f"{action}={ok} ok/{failed} failed")
        logger.info(f"API calls: {', '.join(parts)}")
