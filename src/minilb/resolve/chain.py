from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from ..errors import HostnameNotFoundError
from .base import ResolverStage
from .gateway import GatewayResolver, GRPCRouteStage, HTTPRouteStage, TLSRouteStage
from .hostnames import HostnameCache, canonical_hostname
from .ingress import HostnameCacheStage, IngressStage

logger = logging.getLogger(__name__)


class RouteLookupChain:
    """Brief: Ordered fallback chain mapping external hostnames to targets.

    Inputs:
      - stages: ResolverStage instances in priority order.

    Outputs:
      - RouteLookupChain; resolve_hostname() returns the first non-empty stage
        result.

    Example:
      >>> chain = RouteLookupChain.default(HostnameCache())
      >>> [s.name for s in chain.stages]
      ['annotation', 'ingress', 'httproute', 'tlsroute', 'grpcroute']
    """

    def __init__(self, stages: Sequence[ResolverStage]) -> None:
        self.stages: List[ResolverStage] = list(stages)

    @classmethod
    def default(
        cls,
        cache: HostnameCache,
        *,
        ingresses=None,
        http_routes=None,
        tls_routes=None,
        grpc_routes=None,
        gateways=None,
    ) -> "RouteLookupChain":
        """Brief: Build the standard chain: aliases, ingress, HTTP, TLS, GRPC.

        Inputs:
          - cache: HostnameCache holding annotation aliases.
          - ingresses/http_routes/tls_routes/grpc_routes/gateways: ObjectStores
            or None for kinds that are not available.

        Outputs:
          - RouteLookupChain.
        """

        parents = GatewayResolver(gateways)
        return cls(
            [
                HostnameCacheStage(cache),
                IngressStage(ingresses),
                HTTPRouteStage(http_routes, parents),
                TLSRouteStage(tls_routes, parents),
                GRPCRouteStage(grpc_routes, parents),
            ]
        )

    @classmethod
    def from_driver(cls, cache: HostnameCache, driver: Any) -> "RouteLookupChain":
        """Build the standard chain over a set-up ClusterWatchDriver's stores."""

        return cls.default(
            cache,
            ingresses=driver.ingresses,
            http_routes=driver.http_routes,
            tls_routes=driver.tls_routes,
            grpc_routes=driver.grpc_routes,
            gateways=driver.gateways,
        )

    def resolve_hostname(self, hostname: Optional[str]) -> str:
        """Brief: Resolve an external hostname through the stages in order.

        Inputs:
          - hostname: Queried name in any case, with or without trailing dot.

        Outputs:
          - str: First non-empty stage result.

        Raises:
          - HostnameNotFoundError: hostname is empty or no stage matched.
        """

        canonical = canonical_hostname(hostname)
        if not canonical:
            raise HostnameNotFoundError("invalid hostname")

        for stage in self.stages:
            if not stage.available:
                continue
            try:
                target = stage.try_resolve(canonical)
            except Exception:
                logger.exception("%s stage failed for %s", stage.name, canonical)
                continue
            if target:
                logger.debug("%s resolved by %s stage to %s", canonical, stage.name, target)
                return target

        raise HostnameNotFoundError("hostname not found")
