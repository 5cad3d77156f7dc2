"""Kubernetes API client construction.

Brief:
  Resolves which credentials to use (explicit kubeconfig, in-cluster service
  account, or ~/.kube/config) and returns a configured ApiClient. Everything
  else in minilb receives API objects built from that client.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from kubernetes import client, config

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_TOKEN = "/var/run/secrets/kubernetes.io/serviceaccount/token"


def in_cluster(token_path: str = SERVICE_ACCOUNT_TOKEN) -> bool:
    """Return True when a pod service-account token is mounted."""

    return os.path.exists(token_path)


def resolve_kubeconfig(
    kubeconfig: Optional[str], *, token_path: str = SERVICE_ACCOUNT_TOKEN
) -> str:
    """Brief: Decide which kubeconfig file to load.

    Inputs:
      - kubeconfig: Path from configuration; may be empty.
      - token_path: Service-account token location used to detect in-cluster
        execution.

    Outputs:
      - str: The explicit path when set; "" when running in-cluster (use the
        service account); otherwise ~/.kube/config.
    """

    if kubeconfig:
        return os.path.expanduser(kubeconfig)
    if in_cluster(token_path):
        return ""
    return os.path.join(os.path.expanduser("~"), ".kube", "config")


def build_api_client(kubeconfig: Optional[str]) -> client.ApiClient:
    """Brief: Build an ApiClient from the resolved credentials.

    Inputs:
      - kubeconfig: Configured kubeconfig path ("" for auto-detection).

    Outputs:
      - kubernetes.client.ApiClient ready for CoreV1Api & co.

    Raises:
      - kubernetes.config.ConfigException when no usable credentials exist.
    """

    path = resolve_kubeconfig(kubeconfig)
    configuration = client.Configuration()
    if path:
        logger.info("Loading kubeconfig from %s", path)
        config.load_kube_config(config_file=path, client_configuration=configuration)
    else:
        logger.info("Using in-cluster service account credentials")
        config.load_incluster_config(client_configuration=configuration)
    return client.ApiClient(configuration)
