"""
Brief: Tests for minilb.cluster.watch Informer and ClusterWatchDriver using
fake list functions and watch streams (no live cluster).

Inputs:
  - None

Outputs:
  - None
"""

import threading

from kubernetes import client
from kubernetes.client.rest import ApiException

from minilb.cluster.objects import ServiceRecord
from minilb.cluster.store import ObjectStore
from minilb.cluster.watch import (
    GATEWAY_API_GROUP,
    ClusterWatchDriver,
    Informer,
    ResourceEventHandler,
)


def _svc(name, ns="default", svc_type="LoadBalancer"):
    return {"metadata": {"name": name, "namespace": ns}, "spec": {"type": svc_type}}


class RecordingHandler(ResourceEventHandler):
    def __init__(self):
        self.events = []

    def on_add(self, record):
        self.events.append(("add", record.name))

    def on_update(self, old, new):
        self.events.append(("update", new.name))

    def on_delete(self, record):
        self.events.append(("delete", record.name))


class FakeWatch:
    """Brief: Minimal kubernetes.watch.Watch stand-in.

    Inputs:
      - events: list of event dicts to stream.

    Outputs:
      - Object with stream()/stop(); stream blocks after the events until
        stop() is called.
    """

    def __init__(self, events):
        self._events = list(events)
        self._stopped = threading.Event()
        self.calls = []

    def stream(self, func, *args, **kwargs):
        self.calls.append((func, args, kwargs))
        for ev in self._events:
            yield ev
        self._events = []
        self._stopped.wait(5)

    def stop(self):
        self._stopped.set()


def _informer(list_func, store=None, watch_factory=None):
    return Informer(
        "Service",
        list_func,
        ServiceRecord.from_object,
        store if store is not None else ObjectStore("Service"),
        resync=30,
        retry_delay=0.01,
        watch_factory=watch_factory or (lambda: FakeWatch([])),
    )


def test_relist_replaces_store_and_dispatches_diff():
    """Brief: A relist emits add/update/delete relative to the previous list.

    Inputs:
      - None.

    Outputs:
      - None; asserts handler events and store contents.
    """

    listings = [
        {"metadata": {"resourceVersion": "1"}, "items": [_svc("a"), _svc("b")]},
        {"metadata": {"resourceVersion": "2"}, "items": [_svc("b"), _svc("c")]},
    ]

    def list_func(**kwargs):
        return listings.pop(0)

    inf = _informer(list_func)
    handler = RecordingHandler()
    inf.add_handler(handler)

    assert inf.relist() == "1"
    assert inf.has_synced
    assert handler.events == [("add", "a"), ("add", "b")]

    handler.events.clear()
    assert inf.relist() == "2"
    assert handler.events == [("update", "b"), ("add", "c"), ("delete", "a")]
    assert sorted(r.name for r in inf.store.list()) == ["b", "c"]


def test_first_relist_marks_synced_after_handlers_ran():
    """Brief: has_synced stays False until the initial callbacks finished.

    Inputs:
      - None.

    Outputs:
      - None; asserts the flag seen inside the handler and afterwards.
    """

    inf = _informer(lambda **kw: {"metadata": {"resourceVersion": "1"}, "items": [_svc("a")]})
    seen = []

    class SyncCheckingHandler(ResourceEventHandler):
        def on_add(self, record):
            seen.append((inf.has_synced, inf.wait_synced(0)))

    inf.add_handler(SyncCheckingHandler())
    inf.relist()

    assert seen == [(False, False)]
    assert inf.has_synced
    assert inf.wait_synced(0)


def test_relist_accepts_typed_list_results():
    """Brief: Typed V1ServiceList results are unpacked like dict results.

    Inputs:
      - None.

    Outputs:
      - None; asserts resourceVersion and converted record.
    """

    result = client.V1ServiceList(
        metadata=client.V1ListMeta(resource_version="7"),
        items=[
            client.V1Service(
                metadata=client.V1ObjectMeta(name="web", namespace="default"),
                spec=client.V1ServiceSpec(type="LoadBalancer"),
            )
        ],
    )
    inf = _informer(lambda **kw: result)
    assert inf.relist() == "7"
    assert inf.store.get("default", "web").type == "LoadBalancer"


def test_handle_event_types():
    """Brief: ADDED/MODIFIED/DELETED update the store; ERROR asks for relist.

    Inputs:
      - None.

    Outputs:
      - None; asserts store changes, dispatch and return values.
    """

    inf = _informer(lambda **kw: {"items": []})
    handler = RecordingHandler()
    inf.add_handler(handler)

    assert inf.handle_event({"type": "ADDED", "object": _svc("web")})
    assert inf.handle_event({"type": "MODIFIED", "object": _svc("web", svc_type="ClusterIP")})
    assert inf.store.get("default", "web").type == "ClusterIP"
    assert inf.handle_event({"type": "BOOKMARK", "object": {}})
    assert inf.handle_event({"type": "ADDED", "object": "garbage"})
    assert inf.handle_event({"type": "DELETED", "object": _svc("web")})
    assert inf.store.get("default", "web") is None
    assert inf.handle_event({"type": "ERROR", "raw_object": {"code": 410}}) is False

    assert handler.events == [("add", "web"), ("update", "web"), ("delete", "web")]


def test_handler_exception_does_not_stop_dispatch(caplog):
    """Brief: A failing handler is logged and later handlers still run.

    Inputs:
      - caplog: pytest log capture fixture.

    Outputs:
      - None; asserts second handler saw the event and an error was logged.
    """

    class Boom(ResourceEventHandler):
        def on_add(self, record):
            raise RuntimeError("boom")

    inf = _informer(lambda **kw: {"items": []})
    good = RecordingHandler()
    inf.add_handler(Boom())
    inf.add_handler(good)

    with caplog.at_level("ERROR"):
        assert inf.handle_event({"type": "ADDED", "object": _svc("web")})

    assert good.events == [("add", "web")]
    assert "default/web" in caplog.text


def test_run_loop_lists_then_watches_from_resource_version():
    """Brief: The informer thread lists, then watches from the list version.

    Inputs:
      - None.

    Outputs:
      - None; asserts watch kwargs and streamed event applied.
    """

    fake = FakeWatch([{"type": "ADDED", "object": _svc("streamed")}])
    seen = threading.Event()

    class Notify(ResourceEventHandler):
        def on_add(self, record):
            if record.name == "streamed":
                seen.set()

    def list_func(**kwargs):
        return {"metadata": {"resourceVersion": "99"}, "items": [_svc("listed")]}

    inf = _informer(list_func, watch_factory=lambda: fake)
    inf.add_handler(Notify())
    inf.start()
    try:
        assert inf.wait_synced(2)
        assert seen.wait(2)
    finally:
        inf.stop()

    func, args, kwargs = fake.calls[0]
    assert kwargs["resource_version"] == "99"
    assert kwargs["timeout_seconds"] == 30
    assert sorted(r.name for r in inf.store.list()) == ["listed", "streamed"]


def test_run_loop_relists_after_gone():
    """Brief: An expired resourceVersion (410) triggers an immediate relist.

    Inputs:
      - None.

    Outputs:
      - None; asserts the second list succeeds and the store syncs.
    """

    calls = []

    def list_func(**kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            raise ApiException(status=410, reason="Gone")
        return {"metadata": {"resourceVersion": "5"}, "items": [_svc("web")]}

    inf = _informer(list_func)
    inf.start()
    try:
        assert inf.wait_synced(2)
    finally:
        inf.stop()
    assert len(calls) >= 2
    assert inf.store.get("default", "web") is not None


class FakeCustomObjectsApi:
    def __init__(self, served):
        self.served = served
        self.probes = []

    def list_cluster_custom_object(self, group, version, plural, **kwargs):
        self.probes.append((group, version, plural, kwargs.get("limit")))
        if (version, plural) in self.served:
            return {"items": []}
        raise ApiException(status=404, reason="Not Found")


def test_driver_setup_discovers_gateway_api_versions():
    """Brief: Only served Gateway-API kinds get stores and informers.

    Inputs:
      - None.

    Outputs:
      - None; asserts store presence and probed versions.
    """

    driver = ClusterWatchDriver(client.ApiClient(), resync=60)
    fake = FakeCustomObjectsApi(
        {("v1", "httproutes"), ("v1alpha2", "tlsroutes"), ("v1", "gateways")}
    )
    driver.custom_api = fake

    driver.setup()

    assert driver.http_routes is not None
    assert driver.tls_routes is not None
    assert driver.gateways is not None
    assert driver.grpc_routes is None
    assert ("gateway.networking.k8s.io", "v1alpha3", "tlsroutes", 1) in fake.probes
    assert all(p[0] == GATEWAY_API_GROUP for p in fake.probes)
    assert sorted(driver._informers) == [
        "EndpointSlice",
        "Gateway",
        "HTTPRoute",
        "Ingress",
        "Service",
        "TLSRoute",
    ]


def test_driver_probe_failure_disables_kind():
    """Brief: Non-404 probe errors disable the kind instead of failing setup.

    Inputs:
      - None.

    Outputs:
      - None; asserts the kind has no store.
    """

    class Forbidden(FakeCustomObjectsApi):
        def list_cluster_custom_object(self, group, version, plural, **kwargs):
            raise ApiException(status=403, reason="Forbidden")

    driver = ClusterWatchDriver(client.ApiClient(), resync=60)
    driver.custom_api = Forbidden(set())
    assert driver.discover_gateway_version("HTTPRoute") is None


def test_driver_wait_synced_times_out_until_every_informer_listed(caplog):
    """Brief: wait_synced is False (with a warning) while any informer has not
    finished its first list, and True once all of them have.

    Inputs:
      - caplog: pytest log capture fixture.

    Outputs:
      - None; asserts both results and the warning.
    """

    driver = ClusterWatchDriver(client.ApiClient(), resync=60)
    driver.custom_api = FakeCustomObjectsApi(set())
    driver.setup()

    with caplog.at_level("WARNING"):
        assert driver.wait_synced(0.05) is False
    assert "informer has not synced yet" in caplog.text

    for inf in driver._informers.values():
        inf._synced.set()
    assert driver.wait_synced(0.05) is True
