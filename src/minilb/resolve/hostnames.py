"""Hostname canonicalization, wildcard matching and the alias cache.

Brief:
  - canonical_hostname() is the single normalization applied to every
    hostname before it is stored or compared.
  - hostname_matches() implements the exact / single-level wildcard rule used
    by ingress rules and gateway routes.
  - HostnameCache maps alias hostnames (from service annotations) to the
    canonical "<service>.<namespace>.<domain>" name.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, Optional, Tuple

from cachetools import LRUCache, cached

from ..utils.locks import ReadWriteLock

logger = logging.getLogger(__name__)

# Pure string transform hit on every query and every route candidate.
_CANONICAL_CACHE: LRUCache = LRUCache(maxsize=4096)


@cached(cache=_CANONICAL_CACHE, lock=threading.Lock())
def canonical_hostname(host: Optional[str]) -> str:
    """Brief: Normalize a hostname for storage and comparison.

    Inputs:
      - host: Hostname as written in an annotation, rule or query. May carry
        surrounding whitespace, trailing root dots or mixed case.

    Outputs:
      - str: Lower-cased hostname without surrounding whitespace or trailing
        dots; "" for None/blank input.

    Example:
      >>> canonical_hostname(" Example.COM. ")
      'example.com'
    """

    if not host:
        return ""
    value = str(host).lower().strip()
    while value.endswith("."):
        value = value[:-1].rstrip()
    return value


def hostname_matches(candidate: Optional[str], query: Optional[str]) -> bool:
    """Brief: Test whether a rule/route hostname matches a queried name.

    Inputs:
      - candidate: Hostname from an ingress rule or route; may be a wildcard
        such as "*.example.com".
      - query: Queried hostname.

    Outputs:
      - bool: True for an exact canonical match, or when candidate is
        "*.<suffix>" and query ends with <suffix> while being strictly longer
        than it. The bare wildcard domain itself never matches.

    Example:
      >>> hostname_matches("*.example.com", "a.example.com")
      True
      >>> hostname_matches("*.example.com", "example.com")
      False
    """

    candidate = canonical_hostname(candidate)
    query = canonical_hostname(query)
    if not candidate or not query:
        return False

    if candidate == query:
        return True

    if candidate.startswith("*."):
        suffix = candidate[2:]
        return bool(suffix) and len(query) > len(suffix) and query.endswith(suffix)

    return False


def contains_matching_hostname(hosts: Iterable[str], query: str) -> bool:
    """Return True when any of hosts matches query (empty hosts never match)."""

    for host in hosts or ():
        if hostname_matches(host, query):
            return True
    return False


class HostnameCache:
    """Brief: Concurrently readable alias table hostname -> service FQDN.

    Inputs:
      - None.

    Outputs:
      - HostnameCache instance. Writers (service event callbacks) take the
        exclusive lock only for the dict mutation; readers (DNS queries) take
        the shared lock for a single lookup. Entries never expire; a binding
        lives until it is overwritten.

    Example:
      >>> cache = HostnameCache()
      >>> cache.record_hostname("MQTT.example.com.", "mosquitto.automation.minilb")
      True
      >>> cache.lookup("mqtt.example.com")
      ('mosquitto.automation.minilb', True)
    """

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._bindings: Dict[str, str] = {}

    def record_hostname(self, hostname: str, service_fqdn: str) -> bool:
        """Brief: Bind an alias hostname to a canonical service name.

        Inputs:
          - hostname: Alias hostname in any case/format.
          - service_fqdn: Canonical "<service>.<namespace>.<domain>" target.

        Outputs:
          - bool: False when hostname canonicalizes to "" (nothing recorded),
            True otherwise.
        """

        key = canonical_hostname(hostname)
        if not key:
            return False
        with self._lock.write_locked():
            self._bindings[key] = service_fqdn
        return True

    def lookup(self, hostname: str) -> Tuple[str, bool]:
        key = canonical_hostname(hostname)
        if not key:
            return "", False
        with self._lock.read_locked():
            target = self._bindings.get(key)
        if target is None:
            return "", False
        return target, True

    def snapshot(self) -> Dict[str, str]:
        """Return a copy of all current bindings (diagnostics and tests)."""

        with self._lock.read_locked():
            return dict(self._bindings)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._bindings)
