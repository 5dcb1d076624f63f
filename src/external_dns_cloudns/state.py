"""Persistent record of the endpoints this tool has published."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Set, Tuple

from external_dns_cloudns.models import Endpoint

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _default_state() -> Dict[str, Any]:
    return {"version": STATE_VERSION, "endpoints": {}}


def endpoint_state_key(dns_name: str, record_type: str) -> str:
    return f"{dns_name}|{record_type}"


class StateStore:
    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return _default_state()
        try:
            state = json.loads(self.path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load state file {self.path}: {e}")
            return _default_state()
        if not isinstance(state, dict) or not isinstance(state.get("endpoints", {}), dict):
            logger.warning(f"Ignoring state file {self.path} with unexpected layout")
            return _default_state()
        state.setdefault("version", STATE_VERSION)
        state.setdefault("endpoints", {})
        return state

    def save(self, state: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(state, indent=2, sort_keys=True), "utf-8")
        tmp_path.replace(self.path)

    def managed_keys(self, state: Dict[str, Any]) -> Set[Tuple[str, str]]:
        keys: Set[Tuple[str, str]] = set()
        for key, entry in state.get("endpoints", {}).items():
            if not isinstance(entry, dict):
                continue
            dns_name = entry.get("name")
            record_type = entry.get("type")
            if isinstance(dns_name, str) and isinstance(record_type, str):
                keys.add((dns_name, record_type))
            else:
                logger.debug(f"Skipping malformed state entry '{key}'")
        return keys

    def record_published(self, endpoints: Iterable[Endpoint]) -> Dict[str, Any]:
        """Replace the stored endpoints with ``endpoints`` and save."""
        now = int(time.time())
        state = _default_state()
        for ep in endpoints:
            state["endpoints"][endpoint_state_key(ep.dns_name, ep.record_type)] = {
                "name": ep.dns_name,
                "type": ep.record_type,
                "targets": list(ep.targets),
                "last_applied": now,
            }
        self.save(state)
        return state
