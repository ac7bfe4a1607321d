# ira-controller/ira/certificates.py
# @ai-rules:
# 1. [Constraint]: Full replace on update. Only metadata.resourceVersion is copied from the stored object.
# 2. [Pattern]: Always issue the update, even when nothing changed; the API server makes it a no-op.
# 3. [Gotcha]: Log strings "Skipping unannotated resource", "Cert doesn't exist: creating", "Found certificate" are asserted by tests.
"""
Certificate synchronizer.

Computes the cert-manager Certificate an IRA identity needs and drives the
stored resource to it (create when missing, replace otherwise). The server
is the source of truth for desired state: hand edits to spec fields are
overwritten on the next reconcile.
"""
from __future__ import annotations

import logging
from typing import Mapping, Optional

from .annotations import cert_name, has_identity
from .kube import CertificateStore, ObjectNotFound
from .models import DesiredCertificate, IssuerRef, OwnerReference, SyncOutcome

logger = logging.getLogger(__name__)

MAX_COMMON_NAME_LENGTH = 64


def common_name(controller_name: str, namespace: str) -> str:
    """<namespace>/<controllerName>, cut to 64 characters (the X.509 CN limit)."""
    value = f"{namespace}/{controller_name}"
    if len(value) <= MAX_COMMON_NAME_LENGTH:
        return value
    return value[:MAX_COMMON_NAME_LENGTH]


def build_certificate(
    annotations: Optional[Mapping[str, str]],
    controller_name: str,
    namespace: str,
    owner: Optional[OwnerReference],
    issuer_kind: str,
    issuer_name: str,
) -> DesiredCertificate:
    """Desired Certificate for a controller identity. Deterministic for equal inputs."""
    return DesiredCertificate(
        name=cert_name(annotations, controller_name),
        namespace=namespace,
        common_name=common_name(controller_name, namespace),
        issuer_ref=IssuerRef(name=issuer_name, kind=issuer_kind),
        owner_references=[owner] if owner is not None else [],
    )


def sync_certificate(
    store: CertificateStore,
    annotations: Optional[Mapping[str, str]],
    controller_name: str,
    namespace: str,
    owner: Optional[OwnerReference],
    issuer_kind: str,
    issuer_name: str,
) -> SyncOutcome:
    """
    Create or replace the Certificate for an annotated identity.

    Returns SKIPPED without touching the API when the identity annotations
    are missing. Errors other than not-found on the initial get propagate
    unchanged so the caller can retry.
    """
    if not has_identity(annotations):
        logger.info("Skipping unannotated resource")
        return SyncOutcome.SKIPPED

    logger.info(f"Found resource with annotations, controller name: {controller_name}")
    desired = build_certificate(annotations, controller_name, namespace, owner, issuer_kind, issuer_name)

    try:
        existing = store.get(namespace, desired.name)
    except ObjectNotFound as e:
        logger.info(f"Cert doesn't exist: creating {namespace}/{desired.name} ({e})")
        store.create(namespace, desired.to_manifest())
        return SyncOutcome.CREATED

    logger.info(f"Found certificate {namespace}/{desired.name}")
    resource_version = (existing.get("metadata") or {}).get("resourceVersion")
    desired = desired.model_copy(update={"resource_version": resource_version})
    store.replace(namespace, desired.name, desired.to_manifest())
    return SyncOutcome.UPDATED
