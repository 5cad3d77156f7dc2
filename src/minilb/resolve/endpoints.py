"""Aggregate EndpointSlices into the ready IPv4 addresses of a service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..cluster.objects import (
    ADDRESS_TYPE_IPV4,
    DEFAULT_PROTOCOL,
    EndpointPortRecord,
    EndpointRecord,
    EndpointSliceRecord,
)
from ..cluster.store import ObjectStore
from ..cluster.watch import ENDPOINT_SLICE_SERVICE_INDEX
from ..errors import NoReadyEndpointsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EndpointPort:
    name: str = ""
    port: int = 0
    protocol: str = DEFAULT_PROTOCOL
    app_protocol: Optional[str] = None


@dataclass
class EndpointSubset:
    """Ready addresses of one IPv4 EndpointSlice plus the slice's ports."""

    addresses: List[str] = field(default_factory=list)
    ports: List[EndpointPort] = field(default_factory=list)


def is_ready_endpoint(endpoint: Optional[EndpointRecord]) -> bool:
    """Brief: Apply the readiness rule to one endpoint.

    Inputs:
      - endpoint: EndpointRecord or None.

    Outputs:
      - bool: False when the endpoint has no addresses, or its conditions say
        ready=False, serving=False or terminating=True. Unset conditions count
        as ready.
    """

    if endpoint is None or not endpoint.addresses:
        return False
    cond = endpoint.conditions
    if cond.ready is False:
        return False
    if cond.serving is False:
        return False
    if cond.terminating is True:
        return False
    return True


def convert_ports(ports: List[EndpointPortRecord]) -> List[EndpointPort]:
    return [
        EndpointPort(
            name=p.name,
            port=p.port,
            protocol=p.protocol or DEFAULT_PROTOCOL,
            app_protocol=p.app_protocol,
        )
        for p in ports
    ]


class EndpointAggregator:
    """Brief: Produce the ready pod addresses backing a service.

    Inputs:
      - slices: EndpointSlice ObjectStore indexed by (namespace, service name).

    Outputs:
      - EndpointAggregator whose get_endpoints() reads only the local store.
    """

    def __init__(self, slices: ObjectStore[EndpointSliceRecord]) -> None:
        self._slices = slices

    def get_endpoints(self, service_name: str, namespace: str) -> List[EndpointSubset]:
        """Brief: Collect ready IPv4 endpoints across all slices of a service.

        Inputs:
          - service_name: Service name (kubernetes.io/service-name label).
          - namespace: Service namespace.

        Outputs:
          - list[EndpointSubset]: One subset per IPv4 slice with at least one
            ready address, in store order.

        Raises:
          - NoReadyEndpointsError: no slice contributed an address. An empty
            answer must not be served as a successful resolution.
        """

        slices = self._slices.by_index(
            ENDPOINT_SLICE_SERVICE_INDEX, (namespace, service_name)
        )

        subsets: List[EndpointSubset] = []
        for slc in sorted(slices, key=lambda s: s.name):
            if slc.address_type != ADDRESS_TYPE_IPV4:
                continue
            subset = EndpointSubset(ports=convert_ports(slc.ports))
            for endpoint in slc.endpoints:
                if not is_ready_endpoint(endpoint):
                    continue
                subset.addresses.extend(endpoint.addresses)
            if subset.addresses:
                subsets.append(subset)

        if not subsets:
            raise NoReadyEndpointsError("no ready IPv4 endpoints found")
        return subsets
