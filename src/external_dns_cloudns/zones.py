"""Zone matching and name normalization helpers.

Everything in here is pure string handling: no provider calls, no state.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence, Union

from external_dns_cloudns.models import RECORD_TYPE_TXT, Zone

# ClouDNS cannot store a host that ends in "-" so registry TXT names such as
# "a-example.com" are stored with host "adash".
REGISTRY_PREFIX_HOST_SUFFIX = "dash"


# =============================================================================
# Zone Matching
# =============================================================================


def _zone_name(zone: Union[Zone, str]) -> str:
    return zone.name if isinstance(zone, Zone) else zone


def find_zone(domain: str, zones: Iterable[Union[Zone, str]]) -> Optional[str]:
    """Find the zone owning ``domain`` by longest suffix match.

    Zones are tried from the longest name to the shortest so nested zones
    (``k8s.example.com`` inside ``example.com``) resolve to the most specific
    one. Registry TXT names built by prefixing the zone apex
    (``reg-a-example.com``) match through the ``"-" + zone`` suffix.

    Returns None when no zone matches.
    """
    names = sorted((_zone_name(z) for z in zones), key=len, reverse=True)
    for name in names:
        if not name:
            continue
        if domain == name:
            return name
        if domain.endswith("." + name):
            return name
        if domain.endswith("-" + name):
            return name
    return None


def find_zone_by_name(name: str, zones: Iterable[Zone]) -> Optional[Zone]:
    for zone in zones:
        if zone.name == name:
            return zone
    return None


# =============================================================================
# Name Normalization
# =============================================================================


def normalize_alias_target(zone_name: str, target: str) -> str:
    """Canonicalize a CNAME target relative to ``zone_name``.

    In-zone targets become bare host labels, everything else becomes a fully
    qualified name with a trailing dot::

        normalize_alias_target("alpha.com", "www.alpha.com")  -> "www"
        normalize_alias_target("alpha.com", "www.alpha.com.") -> "www"
        normalize_alias_target("alpha.com", "www.beta.com")   -> "www.beta.com."
    """
    suffix = "." + zone_name
    if target.endswith(suffix + "."):
        return target[: -len(suffix + ".")]
    if target.endswith(suffix):
        return target[: -len(suffix)]
    if not target.endswith("."):
        return target + "."
    return target


def expand_alias_target(zone_name: str, value: str) -> str:
    """Inverse of :func:`normalize_alias_target` for values read from the provider.

    Bare host labels get the zone appended, fully qualified names lose their
    trailing dot::

        expand_alias_target("alpha.com", "www")            -> "www.alpha.com"
        expand_alias_target("alpha.com", "www.beta.com.")  -> "www.beta.com"
    """
    if value.endswith("."):
        return value[:-1]
    if value in ("", "@"):
        return zone_name
    return f"{value}.{zone_name}"


def host_for_name(zone_name: str, dns_name: str) -> str:
    """Return the host label of ``dns_name`` relative to ``zone_name``.

    The apex maps to an empty host. Registry prefix names
    (``<prefix>-<zone>``) map to ``<prefix>dash``.
    """
    if dns_name == zone_name:
        return ""
    if dns_name.endswith("." + zone_name):
        return dns_name[: -len(zone_name) - 1]
    if dns_name.endswith("-" + zone_name):
        return dns_name[: -len(zone_name) - 1] + REGISTRY_PREFIX_HOST_SUFFIX
    return dns_name


def name_for_host(zone_name: str, host: str, record_type: str) -> str:
    """Inverse of :func:`host_for_name` for records read from the provider."""
    if host in ("", "@"):
        return zone_name
    if (
        record_type == RECORD_TYPE_TXT
        and host.endswith(REGISTRY_PREFIX_HOST_SUFFIX)
        and len(host) > len(REGISTRY_PREFIX_HOST_SUFFIX)
        and "." not in host
    ):
        return f"{host[: -len(REGISTRY_PREFIX_HOST_SUFFIX)]}-{zone_name}"
    return f"{host}.{zone_name}"


def normalize_host(host: str) -> str:
    return "" if host == "@" else host


# =============================================================================
# Domain Filter
# =============================================================================


class DomainFilter:
    """Decide which zones/domains this instance is allowed to manage.

    Either a list of suffix filters with optional suffix exclusions, or a regex
    filter with an optional regex exclusion. The regex form wins when set. An
    empty filter matches everything.
    """

    def __init__(
        self,
        filters: Sequence[str] = (),
        exclusions: Sequence[str] = (),
        regex: Optional[Union[str, re.Pattern]] = None,
        regex_exclusion: Optional[Union[str, re.Pattern]] = None,
    ):
        self.filters: List[str] = [_clean_domain(f) for f in filters if _clean_domain(f)]
        self.exclusions: List[str] = [_clean_domain(e) for e in exclusions if _clean_domain(e)]
        self.regex = _compile(regex)
        self.regex_exclusion = _compile(regex_exclusion)

    def describe(self) -> str:
        if self.regex is not None:
            msg = f"regexp domain filter: '{self.regex.pattern}'"
            if self.regex_exclusion is not None:
                msg += f", with exclusion: '{self.regex_exclusion.pattern}'"
            return msg
        parts = []
        if self.filters:
            parts.append(f"domain filter: '{','.join(self.filters)}'")
        if self.exclusions:
            parts.append(f"exclude domain filter: '{','.join(self.exclusions)}'")
        return ", ".join(parts) if parts else "no kind of domain filters"

    def match(self, domain: str) -> bool:
        name = _clean_domain(domain)
        if self.regex is not None:
            if self.regex_exclusion is not None and self.regex_exclusion.search(name):
                return False
            return bool(self.regex.search(name))

        if self.filters and not any(_matches_suffix(name, f) for f in self.filters):
            return False
        return not any(_matches_suffix(name, e) for e in self.exclusions)


def _compile(pattern: Optional[Union[str, re.Pattern]]) -> Optional[re.Pattern]:
    if not pattern:
        return None
    if isinstance(pattern, str):
        return re.compile(pattern, re.IGNORECASE)
    return pattern


def _clean_domain(domain: str) -> str:
    return domain.strip().rstrip(".").lower()


def _matches_suffix(name: str, suffix: str) -> bool:
    if suffix.startswith("."):
        return name.endswith(suffix)
    return name == suffix or name.endswith("." + suffix)
