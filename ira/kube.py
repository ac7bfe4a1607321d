# ira-controller/ira/kube.py
# @ai-rules:
# 1. [Constraint]: This module is the only Kubernetes API touchpoint. Core logic sees dicts and ObjectNotFound.
# 2. [Pattern]: 404 ApiException -> ObjectNotFound. Every other ApiException propagates untouched.
# 3. [Gotcha]: Typed client objects are converted with sanitize_for_serialization so callers get camelCase dicts.
"""
Kubernetes client bootstrap and adapters.

- load_kube_clients(): in-cluster config first, kubeconfig fallback
- KubeOwnerLookup: namespace-scoped reads of workload controllers
- KubeCertificateStore: get/create/replace of cert-manager Certificates
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from .models import CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, CERTIFICATE_PLURAL

logger = logging.getLogger(__name__)

_serializer = client.ApiClient()


class ObjectNotFound(Exception):
    """The requested object does not exist (HTTP 404)."""


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == 404


def to_dict(obj: Any) -> dict[str, Any]:
    """Typed client model (or dict) -> camelCase JSON dict."""
    if isinstance(obj, dict):
        return obj
    return _serializer.sanitize_for_serialization(obj)


@dataclass
class KubeClients:
    """API handles shared by the webhook, reconciler and observer."""
    core_api: client.CoreV1Api
    apps_api: client.AppsV1Api
    batch_api: client.BatchV1Api
    custom_api: client.CustomObjectsApi


def load_kube_clients() -> KubeClients:
    """
    Load cluster credentials and build API clients.

    Tries in-cluster config first (when running in a pod) and falls back to
    the local kubeconfig. Raises config.ConfigException when neither works.
    """
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")

    return KubeClients(
        core_api=client.CoreV1Api(),
        apps_api=client.AppsV1Api(),
        batch_api=client.BatchV1Api(),
        custom_api=client.CustomObjectsApi(),
    )


# =============================================================================
# Owner lookups
# =============================================================================

OwnerLookup = Callable[[str, str, str], dict]
"""lookup(api_version, kind, name) -> object dict; raises ObjectNotFound."""


class KubeOwnerLookup:
    """
    Reads workload controllers by kind and name within one namespace.

    Only the controller kinds that can root an IRA identity are readable;
    anything else is reported as not found.
    """

    def __init__(self, clients: KubeClients, namespace: str):
        self.namespace = namespace
        self._readers: dict[str, Callable[..., Any]] = {
            "CronJob": clients.batch_api.read_namespaced_cron_job,
            "DaemonSet": clients.apps_api.read_namespaced_daemon_set,
            "Deployment": clients.apps_api.read_namespaced_deployment,
            "Job": clients.batch_api.read_namespaced_job,
            "ReplicaSet": clients.apps_api.read_namespaced_replica_set,
            "StatefulSet": clients.apps_api.read_namespaced_stateful_set,
        }

    def __call__(self, api_version: str, kind: str, name: str) -> dict:
        reader = self._readers.get(kind)
        if reader is None:
            raise ObjectNotFound(f"{kind} is not a supported controller kind")
        logger.debug(f"Fetching owner {api_version}/{kind} {self.namespace}/{name}")
        try:
            return to_dict(reader(name, self.namespace))
        except ApiException as e:
            if is_not_found(e):
                raise ObjectNotFound(f"{kind} {self.namespace}/{name} not found") from e
            raise


def owner_lookup_factory(clients: KubeClients) -> Callable[[str], KubeOwnerLookup]:
    """Namespace -> KubeOwnerLookup, for callers that only learn the namespace per request."""
    def factory(namespace: str) -> KubeOwnerLookup:
        return KubeOwnerLookup(clients, namespace)
    return factory


# =============================================================================
# Certificate store
# =============================================================================

class CertificateStore(Protocol):
    """Create/get/replace of Certificate resources, keyed by namespace + name."""

    def get(self, namespace: str, name: str) -> dict: ...

    def create(self, namespace: str, body: dict) -> dict: ...

    def replace(self, namespace: str, name: str, body: dict) -> dict: ...


class KubeCertificateStore:
    """CertificateStore backed by CustomObjectsApi (cert-manager.io/v1 certificates)."""

    def __init__(self, custom_api: client.CustomObjectsApi):
        self._api = custom_api

    def get(self, namespace: str, name: str) -> dict:
        try:
            return self._api.get_namespaced_custom_object(
                CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, namespace, CERTIFICATE_PLURAL, name,
            )
        except ApiException as e:
            if is_not_found(e):
                raise ObjectNotFound(f"Certificate {namespace}/{name} not found") from e
            raise

    def create(self, namespace: str, body: dict) -> dict:
        return self._api.create_namespaced_custom_object(
            CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, namespace, CERTIFICATE_PLURAL, body,
        )

    def replace(self, namespace: str, name: str, body: dict) -> dict:
        return self._api.replace_namespaced_custom_object(
            CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, namespace, CERTIFICATE_PLURAL, name, body,
        )
