from __future__ import annotations

import logging
from typing import Optional

from ..cluster.objects import IngressRecord
from ..cluster.store import ObjectStore
from .base import ResolverStage
from .hostnames import HostnameCache, hostname_matches

logger = logging.getLogger(__name__)


class HostnameCacheStage(ResolverStage):
    """Answer from alias bindings recorded by the status reconciler."""

    name = "annotation"

    def __init__(self, cache: HostnameCache) -> None:
        self._cache = cache

    def try_resolve(self, hostname: str) -> str:
        target, found = self._cache.lookup(hostname)
        return target if found else ""


class IngressStage(ResolverStage):
    """Brief: Resolve hostnames declared by Ingress rules.

    Inputs:
      - store: Ingress ObjectStore, or None when ingresses are not watched.

    Outputs:
      - Stage returning the first load-balancer status entry of the first
        ingress with a matching rule host: its hostname when set, else its IP.
        Ingresses without a populated status are skipped.
    """

    name = "ingress"

    def __init__(self, store: Optional[ObjectStore[IngressRecord]]) -> None:
        self._store = store

    @property
    def available(self) -> bool:
        return self._store is not None

    def try_resolve(self, hostname: str) -> str:
        if self._store is None:
            return ""

        for ingress in self._store.list():
            for host in ingress.hosts:
                if not hostname_matches(host, hostname):
                    continue
                if not ingress.lb_ingress:
                    continue
                lb = ingress.lb_ingress[0]
                if lb.hostname:
                    logger.debug(
                        "%s matched ingress %s/%s -> %s",
                        hostname,
                        ingress.namespace,
                        ingress.name,
                        lb.hostname,
                    )
                    return lb.hostname
                if lb.ip:
                    return lb.ip
        return ""
