# ira-controller/ira/models.py
# @ai-rules:
# 1. [Constraint]: All models are Pydantic BaseModel. Wire names (camelCase) via Field(alias=...).
# 2. [Pattern]: populate_by_name=True so tests and code can build models with snake_case names.
# 3. [Gotcha]: Pods stay plain dicts for mutation; PodMetadata is a read-only view, never written back.
# 4. [Constraint]: DesiredCertificate.secret_name is always the certificate name (no separate field input).
"""Pydantic schemas for pods, owner references, certificates and admission reviews."""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Kubernetes object fragments
# =============================================================================

class OwnerReference(BaseModel):
    """A metadata.ownerReferences entry."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_version: str = Field("", alias="apiVersion")
    kind: str = ""
    name: str = ""
    uid: str = ""
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = Field(None, alias="blockOwnerDeletion")

    def to_dict(self) -> dict[str, Any]:
        """Camel-cased JSON form, unset optionals dropped."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PodMetadata(BaseModel):
    """Read-only view over the metadata of a pod object."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    namespace: str = ""
    generate_name: str = Field("", alias="generateName")
    uid: str = ""
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list, alias="ownerReferences")
    deletion_timestamp: Optional[str] = Field(None, alias="deletionTimestamp")

    @classmethod
    def from_pod(cls, pod: dict[str, Any]) -> "PodMetadata":
        """Validate metadata of a pod dict. Raises pydantic.ValidationError on bad shapes."""
        metadata = pod.get("metadata") or {}
        # null maps/lists are legal in JSON pods
        cleaned = {k: v for k, v in metadata.items() if v is not None}
        return cls.model_validate(cleaned)

    @property
    def is_terminating(self) -> bool:
        return bool(self.deletion_timestamp)


# =============================================================================
# Owner resolution
# =============================================================================

class ResolutionStatus(str, Enum):
    """Outcome of climbing an owner-reference chain."""
    SELF = "self"                        # no qualifying controller, the pod is its own root
    OWNED = "owned"                      # a root controller was found
    OWNER_NOT_FOUND = "owner-not-found"  # chain broken by a missing object


class ControllerIdentity(BaseModel):
    """Resolved root controller of a pod. Recomputed on every event, never stored."""
    name: str
    owner: Optional[OwnerReference] = None
    status: ResolutionStatus = ResolutionStatus.SELF


# =============================================================================
# cert-manager Certificate
# =============================================================================

CERT_MANAGER_GROUP = "cert-manager.io"
CERT_MANAGER_VERSION = "v1"
CERTIFICATE_PLURAL = "certificates"
CERTIFICATE_KIND = "Certificate"

KEY_ALGORITHM = "RSA"
KEY_SIZE = 8192


class IssuerRef(BaseModel):
    """spec.issuerRef of a Certificate."""
    name: str
    kind: str
    group: str = CERT_MANAGER_GROUP


class DesiredCertificate(BaseModel):
    """
    The full desired state of a Certificate.

    Every reconcile recomputes this object and replaces the stored resource
    with it; only resource_version is carried over from the cluster.
    """
    name: str
    namespace: str
    common_name: str
    issuer_ref: IssuerRef
    key_algorithm: str = KEY_ALGORITHM
    key_size: int = KEY_SIZE
    owner_references: list[OwnerReference] = Field(default_factory=list)
    resource_version: Optional[str] = None

    @property
    def secret_name(self) -> str:
        return self.name

    def to_manifest(self) -> dict[str, Any]:
        """Render the cert-manager.io/v1 Certificate body."""
        metadata: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
        }
        if self.owner_references:
            metadata["ownerReferences"] = [ref.to_dict() for ref in self.owner_references]
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version

        return {
            "apiVersion": f"{CERT_MANAGER_GROUP}/{CERT_MANAGER_VERSION}",
            "kind": CERTIFICATE_KIND,
            "metadata": metadata,
            "spec": {
                "commonName": self.common_name,
                "issuerRef": self.issuer_ref.model_dump(),
                "secretName": self.secret_name,
                "privateKey": {
                    "algorithm": self.key_algorithm,
                    "size": self.key_size,
                },
            },
        }


class SyncOutcome(str, Enum):
    """What sync_certificate did."""
    SKIPPED = "skipped"
    CREATED = "created"
    UPDATED = "updated"


# =============================================================================
# admission.k8s.io/v1 AdmissionReview
# =============================================================================

ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_KIND = "AdmissionReview"


class AdmissionRequest(BaseModel):
    """The request half of an AdmissionReview (fields this webhook reads)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uid: str = ""
    namespace: Optional[str] = None
    operation: Optional[str] = None
    object: Optional[Any] = None


class AdmissionStatus(BaseModel):
    """metav1.Status subset carried in admission responses."""
    code: Optional[int] = None
    message: str = ""


class AdmissionResponse(BaseModel):
    """The response half of an AdmissionReview."""
    model_config = ConfigDict(populate_by_name=True)

    uid: str = ""
    allowed: bool = True
    status: Optional[AdmissionStatus] = None
    patch: Optional[str] = None
    patch_type: Optional[str] = Field(None, alias="patchType")


class AdmissionReview(BaseModel):
    """admission.k8s.io/v1 AdmissionReview envelope."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_version: str = Field(ADMISSION_API_VERSION, alias="apiVersion")
    kind: str = ADMISSION_KIND
    request: Optional[AdmissionRequest] = None
    response: Optional[AdmissionResponse] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
