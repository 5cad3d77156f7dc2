"""List/watch driver that keeps local object stores fresh.

Brief:
  - Informer runs one daemon thread per resource kind: it lists the kind,
    replaces its ObjectStore, emits add/update/delete callbacks for the
    difference, then watches from the list resourceVersion until the resync
    period elapses and relists. Callbacks for one kind are therefore serial;
    different kinds run concurrently.
  - ClusterWatchDriver owns the informers for Services, Ingresses,
    EndpointSlices and, when the cluster serves them, the Gateway-API kinds.

Callback exceptions are logged and swallowed so a single bad object can never
stop the watch of its kind.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from .objects import (
    EndpointSliceRecord,
    GatewayRecord,
    IngressRecord,
    RouteRecord,
    ServiceRecord,
)
from .store import ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

HTTP_GONE = 410
HTTP_NOT_FOUND = 404

GATEWAY_API_GROUP = "gateway.networking.k8s.io"

# kind -> (plural, served versions in preference order)
GATEWAY_API_KINDS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "HTTPRoute": ("httproutes", ("v1",)),
    "GRPCRoute": ("grpcroutes", ("v1",)),
    "TLSRoute": ("tlsroutes", ("v1alpha3", "v1alpha2")),
    "Gateway": ("gateways", ("v1",)),
}

ENDPOINT_SLICE_SERVICE_INDEX = "service"


def endpoint_slice_service_key(record: EndpointSliceRecord) -> Optional[Tuple[str, str]]:
    """Index key (namespace, service_name) for slices owned by a service."""

    if not record.service_name:
        return None
    return record.namespace, record.service_name


class ResourceEventHandler:
    """Brief: Callback interface for informer events.

    Subclasses override any of the hooks; the defaults do nothing. Records
    passed in are the typed objects from minilb.cluster.objects.
    """

    def on_add(self, record: Any) -> None:
        return None

    def on_update(self, old: Any, new: Any) -> None:
        return None

    def on_delete(self, record: Any) -> None:
        return None


def _list_items(result: Any) -> Tuple[List[Any], str]:
    """Return (items, resourceVersion) from a typed list or a custom-object dict."""

    if isinstance(result, dict):
        items = result.get("items") or []
        rv = (result.get("metadata") or {}).get("resourceVersion") or ""
        return list(items), str(rv)
    items = getattr(result, "items", None) or []
    meta = getattr(result, "metadata", None)
    rv = getattr(meta, "resource_version", None) or ""
    return list(items), str(rv)


class Informer(Generic[T]):
    """Brief: Keep one ObjectStore in sync with one resource kind.

    Inputs:
      - kind: Resource kind label for logs.
      - list_func: kubernetes client list function supporting watch=True.
      - converter: callable(obj) -> record or None (unexpected payloads are
        dropped).
      - store: ObjectStore to maintain.
      - resync: Seconds between relists; also the watch timeout.
      - list_args/list_kwargs: Extra arguments for list_func (e.g. the
        group/version/plural of a custom resource).
      - retry_delay: Seconds to wait after an API error before relisting.
      - watch_factory: Callable returning a kubernetes.watch.Watch-like object.

    Outputs:
      - Informer instance; call start() to begin.
    """

    def __init__(
        self,
        kind: str,
        list_func: Callable[..., Any],
        converter: Callable[[Any], Optional[T]],
        store: ObjectStore,
        *,
        resync: float = 300.0,
        list_args: Sequence[Any] = (),
        list_kwargs: Optional[Dict[str, Any]] = None,
        retry_delay: float = 5.0,
        watch_factory: Callable[[], Any] = watch.Watch,
    ) -> None:
        self.kind = kind
        self.store = store
        self._list_func = list_func
        self._converter = converter
        self._resync = max(1.0, float(resync))
        self._list_args = tuple(list_args)
        self._list_kwargs = dict(list_kwargs or {})
        self._retry_delay = float(retry_delay)
        self._watch_factory = watch_factory
        self._handlers: List[ResourceEventHandler] = []
        self._stop = threading.Event()
        self._synced = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._watch: Any = None

    def add_handler(self, handler: ResourceEventHandler) -> None:
        self._handlers.append(handler)

    @property
    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_synced(self, timeout: Optional[float] = None) -> bool:
        return self._synced.wait(timeout)

    def start(self) -> threading.Thread:
        if self._thread is not None:
            return self._thread
        self._thread = threading.Thread(
            target=self._run, name=f"minilb-informer-{self.kind}", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self._stop.set()
        w = self._watch
        if w is not None:
            w.stop()

    def _convert(self, obj: Any) -> Optional[T]:
        try:
            return self._converter(obj)
        except Exception:
            logger.warning("%s: ignoring unconvertible object", self.kind, exc_info=True)
            return None

    def _dispatch(self, hook: str, *args: Any) -> None:
        for handler in self._handlers:
            try:
                getattr(handler, hook)(*args)
            except Exception:
                record = args[-1]
                logger.exception(
                    "%s %s handler %s failed for %s/%s",
                    self.kind,
                    hook,
                    type(handler).__name__,
                    getattr(record, "namespace", "?"),
                    getattr(record, "name", "?"),
                )

    def relist(self) -> str:
        """Brief: List the kind, replace the store and emit the differences.

        Inputs:
          - None.

        Outputs:
          - str: resourceVersion of the list, used to start the next watch.
        """

        result = self._list_func(*self._list_args, **self._list_kwargs)
        items, rv = _list_items(result)
        records = [r for r in (self._convert(obj) for obj in items) if r is not None]

        previous = {(r.namespace, r.name): r for r in self.store.list()}
        self.store.replace(records)

        seen = set()
        for record in records:
            key = (record.namespace, record.name)
            seen.add(key)
            old = previous.get(key)
            if old is None:
                self._dispatch("on_add", record)
            else:
                self._dispatch("on_update", old, record)
        for key, old in previous.items():
            if key not in seen:
                self._dispatch("on_delete", old)
        self._synced.set()

        logger.debug("%s: listed %d objects at resourceVersion %s", self.kind, len(records), rv)
        return rv

    def handle_event(self, event: Dict[str, Any]) -> bool:
        """Brief: Apply one watch event to the store and the handlers.

        Inputs:
          - event: Watch event dict with "type" and "object" (and optionally
            "raw_object").

        Outputs:
          - bool: False when the watch must be restarted with a relist
            (ERROR events), True otherwise.
        """

        etype = str(event.get("type") or "")
        if etype == "ERROR":
            raw = event.get("raw_object") or event.get("object") or {}
            code = raw.get("code") if isinstance(raw, dict) else None
            logger.info("%s: watch error (code=%s); relisting", self.kind, code)
            return False
        if etype == "BOOKMARK":
            return True

        record = self._convert(event.get("object"))
        if record is None:
            return True

        if etype == "DELETED":
            old = self.store.delete(record.namespace, record.name)
            self._dispatch("on_delete", old if old is not None else record)
            return True

        old = self.store.upsert(record)
        if old is None:
            self._dispatch("on_add", record)
        else:
            self._dispatch("on_update", old, record)
        return True

    def _watch_once(self, resource_version: str) -> None:
        w = self._watch_factory()
        self._watch = w
        try:
            kwargs = dict(self._list_kwargs)
            kwargs["timeout_seconds"] = int(self._resync)
            if resource_version:
                kwargs["resource_version"] = resource_version
            for event in w.stream(self._list_func, *self._list_args, **kwargs):
                if self._stop.is_set():
                    break
                if not self.handle_event(event):
                    break
        finally:
            self._watch = None
            w.stop()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                rv = self.relist()
                if self._stop.is_set():
                    break
                self._watch_once(rv)
            except ApiException as exc:
                if exc.status == HTTP_GONE:
                    logger.info("%s: resourceVersion expired; relisting", self.kind)
                    continue
                logger.warning(
                    "%s: API error %s (%s); retrying in %.0fs",
                    self.kind,
                    exc.status,
                    exc.reason,
                    self._retry_delay,
                )
                self._stop.wait(self._retry_delay)
            except Exception:
                logger.exception(
                    "%s: unexpected watch failure; retrying in %.0fs",
                    self.kind,
                    self._retry_delay,
                )
                self._stop.wait(self._retry_delay)
        logger.debug("%s: informer stopped", self.kind)


class ClusterWatchDriver:
    """Brief: Own every watch subscription minilb depends on.

    Inputs:
      - api_client: kubernetes.client.ApiClient.
      - resync: Relist period in seconds.
      - watch_factory: Optional Watch factory (tests).

    Outputs:
      - ClusterWatchDriver. After setup(), the store attributes are populated;
        Gateway-API stores stay None when the cluster does not serve that
        kind, and lookups backed by them are skipped.

    Example:
      >>> driver = ClusterWatchDriver(api_client, resync=300)  # doctest: +SKIP
      >>> driver.setup(); driver.start()  # doctest: +SKIP
    """

    def __init__(
        self,
        api_client: Any,
        *,
        resync: float = 300.0,
        watch_factory: Callable[[], Any] = watch.Watch,
    ) -> None:
        self._resync = float(resync)
        self._watch_factory = watch_factory
        self.core_api = client.CoreV1Api(api_client)
        self.networking_api = client.NetworkingV1Api(api_client)
        self.discovery_api = client.DiscoveryV1Api(api_client)
        self.custom_api = client.CustomObjectsApi(api_client)

        self.services: ObjectStore[ServiceRecord] = ObjectStore("Service")
        self.ingresses: ObjectStore[IngressRecord] = ObjectStore("Ingress")
        self.endpoint_slices: ObjectStore[EndpointSliceRecord] = ObjectStore(
            "EndpointSlice",
            indexers={ENDPOINT_SLICE_SERVICE_INDEX: endpoint_slice_service_key},
        )
        self.http_routes: Optional[ObjectStore[RouteRecord]] = None
        self.grpc_routes: Optional[ObjectStore[RouteRecord]] = None
        self.tls_routes: Optional[ObjectStore[RouteRecord]] = None
        self.gateways: Optional[ObjectStore[GatewayRecord]] = None

        self._informers: Dict[str, Informer] = {}
        self._is_setup = False

    def _informer(
        self,
        kind: str,
        list_func: Callable[..., Any],
        converter: Callable[[Any], Any],
        store: ObjectStore,
        list_args: Sequence[Any] = (),
    ) -> Informer:
        inf = Informer(
            kind,
            list_func,
            converter,
            store,
            resync=self._resync,
            list_args=list_args,
            watch_factory=self._watch_factory,
        )
        self._informers[kind] = inf
        return inf

    def discover_gateway_version(self, kind: str) -> Optional[str]:
        """Brief: Find the served Gateway-API version for a kind.

        Inputs:
          - kind: Key of GATEWAY_API_KINDS.

        Outputs:
          - str version, or None when no candidate version is served or the
            probe fails for any reason.
        """

        plural, versions = GATEWAY_API_KINDS[kind]
        for version in versions:
            try:
                self.custom_api.list_cluster_custom_object(
                    GATEWAY_API_GROUP, version, plural, limit=1
                )
                return version
            except ApiException as exc:
                if exc.status == HTTP_NOT_FOUND:
                    continue
                logger.warning(
                    "Gateway API %s/%s probe failed (%s); %s lookups disabled",
                    version,
                    plural,
                    exc.status,
                    kind,
                )
                return None
            except Exception as exc:
                logger.warning(
                    "Gateway API %s/%s probe failed: %s; %s lookups disabled",
                    version,
                    plural,
                    exc,
                    kind,
                )
                return None
        logger.info("Gateway API kind %s not served by this cluster", kind)
        return None

    def setup(self) -> None:
        """Create informers; probes the Gateway API once."""

        if self._is_setup:
            return
        self._informer(
            "Service",
            self.core_api.list_service_for_all_namespaces,
            ServiceRecord.from_object,
            self.services,
        )
        self._informer(
            "Ingress",
            self.networking_api.list_ingress_for_all_namespaces,
            IngressRecord.from_object,
            self.ingresses,
        )
        self._informer(
            "EndpointSlice",
            self.discovery_api.list_endpoint_slice_for_all_namespaces,
            EndpointSliceRecord.from_object,
            self.endpoint_slices,
        )

        for kind, attr in (
            ("HTTPRoute", "http_routes"),
            ("GRPCRoute", "grpc_routes"),
            ("TLSRoute", "tls_routes"),
            ("Gateway", "gateways"),
        ):
            version = self.discover_gateway_version(kind)
            if version is None:
                continue
            plural = GATEWAY_API_KINDS[kind][0]
            store: ObjectStore = ObjectStore(kind)
            setattr(self, attr, store)
            if kind == "Gateway":
                converter: Callable[[Any], Any] = GatewayRecord.from_object
            else:
                converter = _route_converter(kind)
            self._informer(
                kind,
                self.custom_api.list_cluster_custom_object,
                converter,
                store,
                list_args=(GATEWAY_API_GROUP, version, plural),
            )
            logger.info("Watching %s (%s/%s)", kind, GATEWAY_API_GROUP, version)
        self._is_setup = True

    def add_service_handler(self, handler: ResourceEventHandler) -> None:
        self.setup()
        self._informers["Service"].add_handler(handler)

    def start(self) -> None:
        self.setup()
        for inf in self._informers.values():
            inf.start()

    def stop(self) -> None:
        for inf in self._informers.values():
            inf.stop()

    def wait_synced(self, timeout: Optional[float] = None) -> bool:
        """Wait for every informer's first list; False if the timeout expired."""

        deadline = None if timeout is None else time.monotonic() + timeout
        for inf in self._informers.values():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not inf.wait_synced(remaining):
                logger.warning("%s informer has not synced yet", inf.kind)
                return False
        return True


def _route_converter(kind: str) -> Callable[[Any], Optional[RouteRecord]]:
    def convert(obj: Any) -> Optional[RouteRecord]:
        return RouteRecord.from_object(obj, kind=kind)

    return convert
