# ira-controller/ira/reconciler.py
# @ai-rules:
# 1. [Constraint]: reconcile() is synchronous and side-effect free apart from the Certificate create/replace.
# 2. [Pattern]: Return None for "nothing to do" (pod gone, terminating, owner gone); raise to request a retry.
# 3. [Gotcha]: A pod with no controller owns its own Certificate via a controller reference to itself.
"""
Pod reconciler.

Fetches the live pod, resolves its root controller and hands the identity
to the certificate synchronizer.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from .annotations import issuer_selection
from .certificates import sync_certificate
from .config import Settings
from .kube import CertificateStore, OwnerLookup, is_not_found, to_dict
from .models import OwnerReference, PodMetadata, ResolutionStatus, SyncOutcome
from .owners import controller_identity

logger = logging.getLogger(__name__)


class ReconcileError(Exception):
    """The pod could not be read; the key should be retried."""


def pod_controller_ref(meta: PodMetadata) -> OwnerReference:
    """Controller reference pointing at the pod itself."""
    return OwnerReference(
        api_version="v1",
        kind="Pod",
        name=meta.name,
        uid=meta.uid,
        controller=True,
        block_owner_deletion=True,
    )


class PodReconciler:
    """
    Drives the Certificate of one pod's identity to its desired state.

    Args:
        core_api: CoreV1Api used to read the live pod
        lookup_factory: namespace -> owner lookup
        store: Certificate create/get/replace capability
        settings: frozen process configuration (default issuer, max owner depth)
    """

    def __init__(
        self,
        core_api: client.CoreV1Api,
        lookup_factory: Callable[[str], OwnerLookup],
        store: CertificateStore,
        settings: Settings,
    ):
        self.core_api = core_api
        self.lookup_factory = lookup_factory
        self.store = store
        self.settings = settings

    def reconcile(self, namespace: str, name: str) -> Optional[SyncOutcome]:
        try:
            pod = to_dict(self.core_api.read_namespaced_pod(name, namespace))
        except ApiException as e:
            if is_not_found(e):
                logger.info(f"Could not find Pod {namespace}/{name}")
                return None
            raise ReconcileError(f"could not fetch Pod {namespace}/{name}: {e}") from e

        meta = PodMetadata.from_pod(pod)
        if meta.is_terminating:
            logger.info(f"Skipping terminating pod {namespace}/{name}")
            return None

        logger.info(f"Reconciling Pod {namespace}/{name}")
        identity = controller_identity(
            meta.name,
            meta.owner_references,
            self.lookup_factory(namespace),
            self.settings.max_owner_depth,
        )
        if identity.status is ResolutionStatus.OWNER_NOT_FOUND:
            return None

        owner = identity.owner or pod_controller_ref(meta)
        issuer_kind, issuer_name = issuer_selection(
            meta.annotations,
            self.settings.default_issuer_kind,
            self.settings.default_issuer_name,
        )
        return sync_certificate(
            self.store,
            meta.annotations,
            identity.name,
            namespace,
            owner,
            issuer_kind,
            issuer_name,
        )
