"""Assign external hostnames to managed LoadBalancer services.

Brief:
  On every Service add/update, a managed service (type LoadBalancer and, when
  a class is configured, the matching loadBalancerClass) gets exactly one
  load-balancer ingress entry whose hostname is
  "<name>.<namespace>.<domain>". The write only happens when the current
  status differs, so repeated events do not hot-loop the watch. The alias
  annotation, when present, is recorded in the HostnameCache afterwards.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import urllib3
from kubernetes.client.rest import ApiException

from ..cluster.objects import (
    SERVICE_TYPE_LOAD_BALANCER,
    LoadBalancerIngress,
    ServiceRecord,
)
from ..cluster.watch import ResourceEventHandler
from ..config.config_schema import DEFAULT_HOSTNAME_ANNOTATION, DEFAULT_LB_CLASS
from ..errors import StatusUpdateError
from ..resolve.hostnames import HostnameCache, canonical_hostname

logger = logging.getLogger(__name__)


def service_fqdn(name: str, namespace: str, domain: str) -> str:
    return f"{name}.{namespace}.{domain}"


def status_needs_update(svc: ServiceRecord, lb_dns: str) -> bool:
    """True unless status holds exactly one entry {hostname: lb_dns, ip: ""}."""

    if len(svc.lb_ingress) != 1:
        return True
    entry = svc.lb_ingress[0]
    return entry.ip != "" or entry.hostname != lb_dns


class ServiceStatusReconciler(ResourceEventHandler):
    """Brief: Service event handler maintaining load-balancer status.

    Inputs:
      - core_api: kubernetes.client.CoreV1Api (or any object exposing
        patch_namespaced_service_status).
      - cache: HostnameCache receiving alias bindings.
      - domain: Canonical zone suffix (e.g. "minilb").
      - lb_class: loadBalancerClass to manage; "" manages every LoadBalancer
        service.
      - hostname_annotation: Annotation key declaring an alias hostname.
      - write_status: When False, status writes are skipped and only aliases
        are recorded (DNS-only mode).

    Outputs:
      - ServiceStatusReconciler; register it with
        ClusterWatchDriver.add_service_handler().
    """

    def __init__(
        self,
        core_api: Any,
        cache: HostnameCache,
        domain: str,
        *,
        lb_class: str = DEFAULT_LB_CLASS,
        hostname_annotation: str = DEFAULT_HOSTNAME_ANNOTATION,
        write_status: bool = True,
    ) -> None:
        self._core_api = core_api
        self._cache = cache
        self.domain = canonical_hostname(domain)
        self.lb_class = lb_class or ""
        self.hostname_annotation = hostname_annotation
        self.write_status = bool(write_status)

    def on_add(self, record: Any) -> None:
        self.reconcile(record)

    def on_update(self, old: Any, new: Any) -> None:
        self.reconcile(new)

    def is_managed(self, svc: ServiceRecord) -> bool:
        if svc.type != SERVICE_TYPE_LOAD_BALANCER:
            return False
        if self.lb_class and svc.load_balancer_class != self.lb_class:
            return False
        return True

    def reconcile(self, obj: Any) -> bool:
        """Brief: Bring one service's status and alias binding up to date.

        Inputs:
          - obj: ServiceRecord, or a raw Service object/dict (converted;
            anything else is ignored).

        Outputs:
          - bool: True when a status write was issued and succeeded.
        """

        svc = obj if isinstance(obj, ServiceRecord) else ServiceRecord.from_object(obj)
        if svc is None or not self.is_managed(svc):
            return False

        lb_dns = service_fqdn(svc.name, svc.namespace, self.domain)

        wrote = False
        try:
            if self.write_status:
                wrote = self.update_service_status(svc, lb_dns)
        except StatusUpdateError as exc:
            logger.error("Error updating service status: %s", exc)
        finally:
            self.record_alias(svc, lb_dns)
        return wrote

    def update_service_status(self, svc: ServiceRecord, lb_dns: str) -> bool:
        """Brief: Write the single-entry load-balancer status when it differs.

        Inputs:
          - svc: Managed ServiceRecord; its lb_ingress is updated in place
            after a successful write.
          - lb_dns: Canonical hostname to publish.

        Outputs:
          - bool: True when a write happened, False when already correct.

        Raises:
          - StatusUpdateError: the API rejected the write or could not be
            reached. Not retried; the next event or resync tries again.
        """

        if not status_needs_update(svc, lb_dns):
            return False

        logger.info("Set host svc=%s ns=%s lb=%s", svc.name, svc.namespace, lb_dns)
        body = {"status": {"loadBalancer": {"ingress": [{"hostname": lb_dns}]}}}
        try:
            self._core_api.patch_namespaced_service_status(svc.name, svc.namespace, body)
        except ApiException as exc:
            raise StatusUpdateError(
                f"{svc.namespace}/{svc.name}: {exc.status} {exc.reason}"
            ) from exc
        except (urllib3.exceptions.HTTPError, OSError) as exc:
            raise StatusUpdateError(f"{svc.namespace}/{svc.name}: {exc}") from exc
        svc.lb_ingress = [LoadBalancerIngress(hostname=lb_dns)]
        return True

    def record_alias(self, svc: ServiceRecord, lb_dns: str) -> Optional[str]:
        raw = svc.annotations.get(self.hostname_annotation)
        if raw is None:
            return None
        if not self._cache.record_hostname(raw, lb_dns):
            logger.warning(
                "Ignoring empty %s annotation on %s/%s",
                self.hostname_annotation,
                svc.namespace,
                svc.name,
            )
            return None
        logger.info("Updated: Hostname %s -> Service %s/%s", raw, svc.namespace, svc.name)
        return canonical_hostname(raw)
