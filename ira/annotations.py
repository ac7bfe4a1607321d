# ira-controller/ira/annotations.py
# @ai-rules:
# 1. [Constraint]: Pure functions only. No Kubernetes imports, no logging side effects.
# 2. [Pattern]: Presence is what counts -- an empty string value still satisfies has_identity().
# 3. [Gotcha]: Callers may pass None (pod with no annotations); every function treats it as {}.
"""
Annotation policy for IRA-enabled pods.

A pod opts in by carrying all three identity annotations:

    ira.ontsys.com/trust-anchor  - Roles Anywhere trust anchor ARN
    ira.ontsys.com/profile       - Roles Anywhere profile ARN
    ira.ontsys.com/role          - IAM role ARN

Optional overrides: cert, issuer-kind, issuer-name,
metadata-endpoint-trailing-slash.
"""
from __future__ import annotations

from typing import Mapping, Optional

IRA_ANNOTATION_PREFIX = "ira.ontsys.com/"
IRA_TRUST_ANCHOR = f"{IRA_ANNOTATION_PREFIX}trust-anchor"
IRA_PROFILE = f"{IRA_ANNOTATION_PREFIX}profile"
IRA_ROLE = f"{IRA_ANNOTATION_PREFIX}role"
IRA_CERT = f"{IRA_ANNOTATION_PREFIX}cert"
IRA_ISSUER_KIND = f"{IRA_ANNOTATION_PREFIX}issuer-kind"
IRA_ISSUER_NAME = f"{IRA_ANNOTATION_PREFIX}issuer-name"
IRA_TRAILING_SLASH = f"{IRA_ANNOTATION_PREFIX}metadata-endpoint-trailing-slash"

IDENTITY_ANNOTATIONS = (IRA_TRUST_ANCHOR, IRA_PROFILE, IRA_ROLE)

CERT_NAME_SUFFIX = "-ira"
METADATA_ENDPOINT = "http://127.0.0.1:9911"


def has_identity(annotations: Optional[Mapping[str, str]]) -> bool:
    """True iff trust-anchor, profile and role keys are all present."""
    annotations = annotations or {}
    return all(key in annotations for key in IDENTITY_ANNOTATIONS)


def identity_arns(annotations: Optional[Mapping[str, str]]) -> tuple[str, str, str]:
    """Return (trust_anchor, profile, role), missing keys as empty strings."""
    annotations = annotations or {}
    return (
        annotations.get(IRA_TRUST_ANCHOR, ""),
        annotations.get(IRA_PROFILE, ""),
        annotations.get(IRA_ROLE, ""),
    )


def cert_name(annotations: Optional[Mapping[str, str]], fallback_controller_name: str) -> str:
    """
    Name for both the Certificate resource and its Secret.

    The cert annotation wins when present; otherwise the root controller
    name with an "-ira" suffix.
    """
    annotations = annotations or {}
    if IRA_CERT in annotations:
        return annotations[IRA_CERT]
    return f"{fallback_controller_name}{CERT_NAME_SUFFIX}"


def issuer_selection(
    annotations: Optional[Mapping[str, str]],
    default_kind: str,
    default_name: str,
) -> tuple[str, str]:
    """Per-field issuer override: (kind, name)."""
    annotations = annotations or {}
    kind = annotations[IRA_ISSUER_KIND] if IRA_ISSUER_KIND in annotations else default_kind
    name = annotations[IRA_ISSUER_NAME] if IRA_ISSUER_NAME in annotations else default_name
    return kind, name


def metadata_endpoint(annotations: Optional[Mapping[str, str]]) -> str:
    """Credential helper endpoint, with a trailing slash when the annotation is set and non-empty."""
    annotations = annotations or {}
    if annotations.get(IRA_TRAILING_SLASH):
        return f"{METADATA_ENDPOINT}/"
    return METADATA_ENDPOINT
