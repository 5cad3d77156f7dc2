"""Gateway-API route stages and parent gateway resolution.

Brief:
  A route (HTTPRoute, TLSRoute, GRPCRoute) matches a query when one of its
  hostnames matches; the answer is then the first advertised address of the
  first parent Gateway that has one. Routes and gateways are read from the
  watch driver's stores; a missing store (kind not served by the cluster)
  means "no match", never an error.
"""

from __future__ import annotations

import logging
from typing import ClassVar, Iterable, Optional

from ..cluster.objects import GatewayRecord, ParentRef, RouteRecord
from ..cluster.store import ObjectStore
from .base import ResolverStage
from .hostnames import contains_matching_hostname

logger = logging.getLogger(__name__)

GATEWAY_KIND = "Gateway"


class GatewayResolver:
    """Brief: Resolve a route's parent references to a gateway address.

    Inputs:
      - gateways: Gateway ObjectStore, or None when Gateway-API is absent.

    Outputs:
      - GatewayResolver instance.
    """

    def __init__(self, gateways: Optional[ObjectStore[GatewayRecord]]) -> None:
        self._gateways = gateways

    def address_for_parents(
        self, route_namespace: str, parent_refs: Iterable[ParentRef]
    ) -> str:
        """Brief: Return the first non-empty address of a referenced Gateway.

        Inputs:
          - route_namespace: Namespace of the route, used when a reference
            omits its own namespace.
          - parent_refs: The route's parent references. Only references whose
            kind is unset or "Gateway" are considered.

        Outputs:
          - str: Address value, or "" when no parent yields one.
        """

        if self._gateways is None:
            return ""

        for ref in parent_refs:
            if ref.kind is not None and ref.kind != GATEWAY_KIND:
                continue
            namespace = ref.namespace or route_namespace
            gateway = self._gateways.get(namespace, ref.name)
            if gateway is None:
                continue
            for addr in gateway.addresses:
                if addr:
                    return addr
        return ""


class RouteStage(ResolverStage):
    """Brief: Match a query against one Gateway-API route kind.

    Inputs:
      - routes: Route ObjectStore for this kind, or None.
      - gateways: GatewayResolver used for matched routes.

    Outputs:
      - Stage returning the parent gateway address of the first matching
        route that has one.
    """

    kind: ClassVar[str] = ""

    def __init__(
        self,
        routes: Optional[ObjectStore[RouteRecord]],
        gateways: GatewayResolver,
    ) -> None:
        self._routes = routes
        self._gateways = gateways

    @property
    def available(self) -> bool:
        return self._routes is not None

    def route_matches(self, route: RouteRecord, hostname: str) -> bool:
        return contains_matching_hostname(route.hostnames, hostname)

    def try_resolve(self, hostname: str) -> str:
        if self._routes is None:
            return ""

        for route in self._routes.list():
            if not self.route_matches(route, hostname):
                continue
            addr = self._gateways.address_for_parents(route.namespace, route.parent_refs)
            if addr:
                logger.debug(
                    "%s matched %s %s/%s -> %s",
                    hostname,
                    self.kind,
                    route.namespace,
                    route.name,
                    addr,
                )
                return addr
        return ""


class HTTPRouteStage(RouteStage):
    name = "httproute"
    kind = "HTTPRoute"


class TLSRouteStage(RouteStage):
    name = "tlsroute"
    kind = "TLSRoute"


class GRPCRouteStage(RouteStage):
    """GRPC routes without hostnames are not catch-all and never match."""

    name = "grpcroute"
    kind = "GRPCRoute"

    def route_matches(self, route: RouteRecord, hostname: str) -> bool:
        if not route.hostnames:
            return False
        return super().route_matches(route, hostname)
