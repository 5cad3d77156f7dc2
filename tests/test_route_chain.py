"""
Brief: Tests for the route lookup chain (minilb.resolve.chain, ingress and
gateway stages).

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from minilb.cluster.objects import (
    GatewayRecord,
    IngressRecord,
    LoadBalancerIngress,
    ParentRef,
    RouteRecord,
)
from minilb.cluster.store import ObjectStore
from minilb.errors import HostnameNotFoundError
from minilb.resolve.base import ResolverStage
from minilb.resolve.chain import RouteLookupChain
from minilb.resolve.gateway import GatewayResolver, GRPCRouteStage, HTTPRouteStage
from minilb.resolve.hostnames import HostnameCache
from minilb.resolve.ingress import IngressStage


def _store(kind, *records):
    store = ObjectStore(kind)
    for r in records:
        store.upsert(r)
    return store


def _gateways():
    return _store(
        "Gateway",
        GatewayRecord(name="public", namespace="gateways", addresses=["", "gw.example.net"]),
        GatewayRecord(name="local", namespace="apps", addresses=["192.0.2.7"]),
        GatewayRecord(name="empty", namespace="apps", addresses=[]),
    )


def _route(kind, name, hostnames, parents, ns="apps"):
    return RouteRecord(
        kind=kind, name=name, namespace=ns, hostnames=hostnames, parent_refs=parents
    )


def test_chain_priority_annotation_before_ingress_before_routes():
    """Brief: The alias cache wins over ingress, which wins over routes.

    Inputs:
      - None.

    Outputs:
      - None; asserts each stage answers only when earlier ones do not.
    """

    cache = HostnameCache()
    ingresses = _store(
        "Ingress",
        IngressRecord(
            name="web",
            namespace="apps",
            hosts=["app.example.com", "ing.example.com"],
            lb_ingress=[LoadBalancerIngress(hostname="traefik.kube-system.minilb")],
        ),
    )
    http_routes = _store(
        "HTTPRoute",
        _route(
            "HTTPRoute",
            "web",
            ["app.example.com", "ing.example.com", "route.example.com"],
            [ParentRef(name="local")],
        ),
    )
    chain = RouteLookupChain.default(
        cache, ingresses=ingresses, http_routes=http_routes, gateways=_gateways()
    )

    cache.record_hostname("app.example.com", "web.apps.minilb")
    assert chain.resolve_hostname("app.example.com") == "web.apps.minilb"
    assert chain.resolve_hostname("ING.example.com.") == "traefik.kube-system.minilb"
    assert chain.resolve_hostname("route.example.com") == "192.0.2.7"


def test_chain_default_stage_order():
    """Brief: The default chain contains the five stages in priority order.

    Inputs:
      - None.

    Outputs:
      - None; asserts stage names.
    """

    chain = RouteLookupChain.default(HostnameCache())
    assert [s.name for s in chain.stages] == [
        "annotation",
        "ingress",
        "httproute",
        "tlsroute",
        "grpcroute",
    ]


def test_chain_empty_and_unknown_hostnames():
    """Brief: Empty input and unmatched names raise HostnameNotFoundError.

    Inputs:
      - None.

    Outputs:
      - None; asserts error messages.
    """

    chain = RouteLookupChain.default(HostnameCache())
    with pytest.raises(HostnameNotFoundError, match="invalid hostname"):
        chain.resolve_hostname(" . ")
    with pytest.raises(HostnameNotFoundError, match="hostname not found"):
        chain.resolve_hostname("nothing.example.com")


def test_chain_skips_failing_stage(caplog):
    """Brief: A stage that raises is logged and the next stage is consulted.

    Inputs:
      - caplog: pytest log capture fixture.

    Outputs:
      - None; asserts fallback result and error log.
    """

    class Broken(ResolverStage):
        name = "broken"

        def try_resolve(self, hostname):
            raise RuntimeError("lister exploded")

    class Fixed(ResolverStage):
        name = "fixed"

        def try_resolve(self, hostname):
            return "svc.ns.minilb"

    chain = RouteLookupChain([Broken(), Fixed()])
    with caplog.at_level("ERROR"):
        assert chain.resolve_hostname("a.example.com") == "svc.ns.minilb"
    assert "broken stage failed" in caplog.text


def test_ingress_stage_wildcard_and_ip_fallback():
    """Brief: Wildcard rule hosts match sublabels; IP is used without hostname.

    Inputs:
      - None.

    Outputs:
      - None; asserts IP answer and wildcard apex miss.
    """

    stage = IngressStage(
        _store(
            "Ingress",
            IngressRecord(
                name="pending",
                namespace="apps",
                hosts=["*.example.com"],
                lb_ingress=[],
            ),
            IngressRecord(
                name="wild",
                namespace="apps",
                hosts=["*.example.com"],
                lb_ingress=[LoadBalancerIngress(ip="192.0.2.50")],
            ),
        )
    )
    assert stage.try_resolve("a.example.com") == "192.0.2.50"
    assert stage.try_resolve("example.com") == ""
    assert IngressStage(None).available is False


def test_gateway_resolver_parent_rules():
    """Brief: Parent refs default to the route namespace and skip non-Gateways.

    Inputs:
      - None.

    Outputs:
      - None; asserts resolved addresses for several parent lists.
    """

    resolver = GatewayResolver(_gateways())

    assert resolver.address_for_parents("apps", [ParentRef(name="local")]) == "192.0.2.7"
    assert (
        resolver.address_for_parents("apps", [ParentRef(name="public", namespace="gateways")])
        == "gw.example.net"
    )
    assert resolver.address_for_parents("apps", [ParentRef(name="public")]) == ""
    assert (
        resolver.address_for_parents(
            "apps",
            [ParentRef(name="local", kind="Service"), ParentRef(name="empty")],
        )
        == ""
    )
    assert (
        resolver.address_for_parents(
            "apps", [ParentRef(name="empty"), ParentRef(name="local", kind="Gateway")]
        )
        == "192.0.2.7"
    )
    assert GatewayResolver(None).address_for_parents("apps", [ParentRef(name="local")]) == ""


def test_route_without_address_falls_through_to_next_route():
    """Brief: A matching route whose parents have no address does not stop the scan.

    Inputs:
      - None.

    Outputs:
      - None; asserts the second route's gateway address.
    """

    routes = _store(
        "HTTPRoute",
        _route("HTTPRoute", "a-dangling", ["app.example.com"], [ParentRef(name="missing")]),
        _route("HTTPRoute", "b-good", ["*.example.com"], [ParentRef(name="local")]),
    )
    stage = HTTPRouteStage(routes, GatewayResolver(_gateways()))
    assert stage.try_resolve("app.example.com") == "192.0.2.7"


def test_grpc_route_without_hostnames_never_matches():
    """Brief: GRPC routes with no hostnames are not catch-all.

    Inputs:
      - None.

    Outputs:
      - None; asserts empty result for hostname-less route.
    """

    routes = _store("GRPCRoute", _route("GRPCRoute", "grpc", [], [ParentRef(name="local")]))
    stage = GRPCRouteStage(routes, GatewayResolver(_gateways()))
    assert stage.try_resolve("api.example.com") == ""
    assert GRPCRouteStage(None, GatewayResolver(None)).available is False


def test_missing_route_kinds_are_skipped():
    """Brief: Kinds not served by the cluster contribute no answer and no error.

    Inputs:
      - None.

    Outputs:
      - None; asserts not-found from a chain with only None stores.
    """

    chain = RouteLookupChain.default(
        HostnameCache(), ingresses=None, http_routes=None, tls_routes=None, grpc_routes=None
    )
    with pytest.raises(HostnameNotFoundError):
        chain.resolve_hostname("app.example.com")
