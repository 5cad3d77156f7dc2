"""Typed records for the cluster objects minilb watches.

Brief:
  Watch events deliver either kubernetes client model instances (core and
  networking APIs) or plain camelCase dicts (custom objects such as
  Gateway-API routes). Every record type exposes ``from_object()`` which
  accepts either form and returns ``None`` for payloads that do not look like
  the expected kind, so event handlers can treat unexpected objects as a
  no-op instead of failing.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

SERVICE_TYPE_LOAD_BALANCER = "LoadBalancer"
ADDRESS_TYPE_IPV4 = "IPv4"
ENDPOINT_SLICE_SERVICE_LABEL = "kubernetes.io/service-name"
DEFAULT_PROTOCOL = "TCP"

_SERIALIZER = None
_SERIALIZER_LOCK = threading.Lock()


def _serializer():
    """Lazily build the ApiClient used only for model -> dict conversion."""

    global _SERIALIZER
    with _SERIALIZER_LOCK:
        if _SERIALIZER is None:
            from kubernetes.client import ApiClient

            _SERIALIZER = ApiClient()
        return _SERIALIZER


def as_dict(obj: Any) -> Optional[Dict[str, Any]]:
    """Brief: Convert an API object into its camelCase JSON-style mapping.

    Inputs:
      - obj: dict (returned unchanged) or kubernetes client model instance.

    Outputs:
      - dict or None when obj is neither.
    """

    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "openapi_types") and hasattr(obj, "attribute_map"):
        data = _serializer().sanitize_for_serialization(obj)
        return data if isinstance(data, dict) else None
    return None


def _get(data: Optional[Dict[str, Any]], *path: str, default: Any = None) -> Any:
    cur: Any = data
    for key in path:
        if not isinstance(cur, dict):
            return default
        cur = cur.get(key)
        if cur is None:
            return default
    return cur


def _list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _metadata(data: Dict[str, Any]) -> Tuple[str, str]:
    return str(_get(data, "metadata", "name", default="") or ""), str(
        _get(data, "metadata", "namespace", default="") or ""
    )


def _optional_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


@dataclass
class LoadBalancerIngress:
    ip: str = ""
    hostname: str = ""

    @classmethod
    def list_from(cls, data: Dict[str, Any]) -> List["LoadBalancerIngress"]:
        out: List[LoadBalancerIngress] = []
        for entry in _list(_get(data, "status", "loadBalancer", "ingress")):
            if not isinstance(entry, dict):
                continue
            out.append(
                cls(
                    ip=str(entry.get("ip") or ""),
                    hostname=str(entry.get("hostname") or ""),
                )
            )
        return out


@dataclass
class ServiceRecord:
    """Brief: The parts of a Service that the reconciler needs.

    Inputs (constructor fields):
      - name, namespace: object identity.
      - type: spec.type (only "LoadBalancer" participates).
      - load_balancer_class: spec.loadBalancerClass or None.
      - annotations: metadata.annotations.
      - lb_ingress: status.loadBalancer.ingress entries.
      - resource_version: metadata.resourceVersion.

    Outputs:
      - ServiceRecord instance.
    """

    name: str
    namespace: str
    type: str = "ClusterIP"
    load_balancer_class: Optional[str] = None
    annotations: Dict[str, str] = field(default_factory=dict)
    lb_ingress: List[LoadBalancerIngress] = field(default_factory=list)
    resource_version: str = ""

    kind = "Service"

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    @classmethod
    def from_object(cls, obj: Any) -> Optional["ServiceRecord"]:
        data = as_dict(obj)
        if data is None:
            return None
        kind = data.get("kind")
        if kind not in (None, "Service"):
            return None
        name, namespace = _metadata(data)
        if not name:
            return None
        annotations = _get(data, "metadata", "annotations", default={}) or {}
        lb_class = _get(data, "spec", "loadBalancerClass")
        return cls(
            name=name,
            namespace=namespace,
            type=str(_get(data, "spec", "type", default="ClusterIP")),
            load_balancer_class=str(lb_class) if lb_class is not None else None,
            annotations={str(k): str(v) for k, v in dict(annotations).items()},
            lb_ingress=LoadBalancerIngress.list_from(data),
            resource_version=str(
                _get(data, "metadata", "resourceVersion", default="") or ""
            ),
        )


@dataclass
class IngressRecord:
    name: str
    namespace: str
    hosts: List[str] = field(default_factory=list)
    lb_ingress: List[LoadBalancerIngress] = field(default_factory=list)

    kind = "Ingress"

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    @classmethod
    def from_object(cls, obj: Any) -> Optional["IngressRecord"]:
        data = as_dict(obj)
        if data is None:
            return None
        if data.get("kind") not in (None, "Ingress"):
            return None
        name, namespace = _metadata(data)
        if not name:
            return None
        hosts = [
            str(rule.get("host") or "")
            for rule in _list(_get(data, "spec", "rules"))
            if isinstance(rule, dict)
        ]
        return cls(
            name=name,
            namespace=namespace,
            hosts=hosts,
            lb_ingress=LoadBalancerIngress.list_from(data),
        )


@dataclass(frozen=True)
class ParentRef:
    name: str
    namespace: Optional[str] = None
    kind: Optional[str] = None
    group: Optional[str] = None


@dataclass
class RouteRecord:
    """Brief: A Gateway-API route (HTTPRoute, TLSRoute or GRPCRoute).

    Inputs (constructor fields):
      - kind: Route kind string.
      - name, namespace: object identity.
      - hostnames: spec.hostnames with empty entries removed.
      - parent_refs: spec.parentRefs.

    Outputs:
      - RouteRecord instance.
    """

    kind: str
    name: str
    namespace: str
    hostnames: List[str] = field(default_factory=list)
    parent_refs: List[ParentRef] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    @classmethod
    def from_object(cls, obj: Any, kind: str = "") -> Optional["RouteRecord"]:
        data = as_dict(obj)
        if data is None:
            return None
        obj_kind = str(data.get("kind") or kind)
        if kind and obj_kind != kind:
            return None
        name, namespace = _metadata(data)
        if not name:
            return None
        hostnames = [
            str(h) for h in _list(_get(data, "spec", "hostnames")) if h
        ]
        parents: List[ParentRef] = []
        for ref in _list(_get(data, "spec", "parentRefs")):
            if not isinstance(ref, dict) or not ref.get("name"):
                continue
            parents.append(
                ParentRef(
                    name=str(ref["name"]),
                    namespace=str(ref["namespace"]) if ref.get("namespace") else None,
                    kind=str(ref["kind"]) if ref.get("kind") is not None else None,
                    group=str(ref["group"]) if ref.get("group") is not None else None,
                )
            )
        return cls(
            kind=obj_kind,
            name=name,
            namespace=namespace,
            hostnames=hostnames,
            parent_refs=parents,
        )


@dataclass
class GatewayRecord:
    name: str
    namespace: str
    addresses: List[str] = field(default_factory=list)

    kind = "Gateway"

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    @classmethod
    def from_object(cls, obj: Any) -> Optional["GatewayRecord"]:
        data = as_dict(obj)
        if data is None:
            return None
        if data.get("kind") not in (None, "Gateway"):
            return None
        name, namespace = _metadata(data)
        if not name:
            return None
        addresses = [
            str(a.get("value") or "")
            for a in _list(_get(data, "status", "addresses"))
            if isinstance(a, dict)
        ]
        return cls(name=name, namespace=namespace, addresses=addresses)


@dataclass(frozen=True)
class EndpointConditions:
    ready: Optional[bool] = None
    serving: Optional[bool] = None
    terminating: Optional[bool] = None


@dataclass
class EndpointRecord:
    addresses: List[str] = field(default_factory=list)
    conditions: EndpointConditions = field(default_factory=EndpointConditions)


@dataclass(frozen=True)
class EndpointPortRecord:
    name: str = ""
    port: int = 0
    protocol: str = DEFAULT_PROTOCOL
    app_protocol: Optional[str] = None


@dataclass
class EndpointSliceRecord:
    """Brief: One EndpointSlice shard of a service's endpoints.

    Inputs (constructor fields):
      - name, namespace: object identity.
      - service_name: value of the kubernetes.io/service-name label ("" when
        the slice is not owned by a service).
      - address_type: "IPv4", "IPv6" or "FQDN".
      - endpoints: EndpointRecord entries with readiness conditions.
      - ports: EndpointPortRecord entries; protocol defaults to "TCP" when
        the slice leaves it unset.

    Outputs:
      - EndpointSliceRecord instance.
    """

    name: str
    namespace: str
    service_name: str = ""
    address_type: str = ADDRESS_TYPE_IPV4
    endpoints: List[EndpointRecord] = field(default_factory=list)
    ports: List[EndpointPortRecord] = field(default_factory=list)

    kind = "EndpointSlice"

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    @classmethod
    def from_object(cls, obj: Any) -> Optional["EndpointSliceRecord"]:
        data = as_dict(obj)
        if data is None:
            return None
        if data.get("kind") not in (None, "EndpointSlice"):
            return None
        name, namespace = _metadata(data)
        if not name:
            return None
        labels = _get(data, "metadata", "labels", default={}) or {}

        endpoints: List[EndpointRecord] = []
        for ep in _list(data.get("endpoints")):
            if not isinstance(ep, dict):
                continue
            cond = ep.get("conditions") or {}
            endpoints.append(
                EndpointRecord(
                    addresses=[str(a) for a in _list(ep.get("addresses")) if a],
                    conditions=EndpointConditions(
                        ready=_optional_bool(cond.get("ready")),
                        serving=_optional_bool(cond.get("serving")),
                        terminating=_optional_bool(cond.get("terminating")),
                    ),
                )
            )

        ports: List[EndpointPortRecord] = []
        for p in _list(data.get("ports")):
            if not isinstance(p, dict):
                continue
            ports.append(
                EndpointPortRecord(
                    name=str(p.get("name") or ""),
                    port=int(p.get("port") or 0),
                    protocol=str(p.get("protocol") or DEFAULT_PROTOCOL),
                    app_protocol=(
                        str(p["appProtocol"]) if p.get("appProtocol") else None
                    ),
                )
            )

        return cls(
            name=name,
            namespace=namespace,
            service_name=str(labels.get(ENDPOINT_SLICE_SERVICE_LABEL, "")),
            address_type=str(data.get("addressType") or ""),
            endpoints=endpoints,
            ports=ports,
        )
