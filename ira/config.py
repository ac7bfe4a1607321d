# ira-controller/ira/config.py
# @ai-rules:
# 1. [Constraint]: Settings is frozen. Build once in main.py lifespan, pass it down; never read os.environ elsewhere.
# 2. [Pattern]: Empty resource strings mean "unset" -- the mutator skips them, they are not validation errors.
# 3. [Gotcha]: ENABLE_WEBHOOKS keeps its unprefixed name; only the literal "false" disables the webhook.
"""
Process-wide configuration for the IRA controller.

Env vars consumed:
    IRA_CREDENTIAL_HELPER_IMAGE              (required)
    IRA_CREDENTIAL_HELPER_CPU_REQUEST        default 250m
    IRA_CREDENTIAL_HELPER_MEMORY_REQUEST     default 64Mi
    IRA_CREDENTIAL_HELPER_CPU_LIMIT          default unset
    IRA_CREDENTIAL_HELPER_MEMORY_LIMIT       default 128Mi
    IRA_CREDENTIAL_HELPER_SESSION_DURATION   default 900 (seconds)
    IRA_DEFAULT_ISSUER_KIND                  default ClusterIssuer
    IRA_DEFAULT_ISSUER_NAME                  default unset
    IRA_GENERATE_CERT                        default false
    ENABLE_WEBHOOKS                          default true
    IRA_MAX_OWNER_DEPTH                      default 8
    IRA_RECONCILE_WORKERS                    default 2
"""
from __future__ import annotations

import os
from typing import Mapping, Optional

from kubernetes.utils import parse_quantity
from pydantic import BaseModel, ConfigDict, Field, ValidationError

CLUSTER_ISSUER_KIND = "ClusterIssuer"
ISSUER_KIND = "Issuer"
VALID_ISSUER_KINDS = (CLUSTER_ISSUER_KIND, ISSUER_KIND)
RESOURCE_FIELDS = (
    "credential_helper_cpu_request",
    "credential_helper_memory_request",
    "credential_helper_cpu_limit",
    "credential_helper_memory_limit",
)


class ConfigError(Exception):
    """Startup configuration is unusable."""


class Settings(BaseModel):
    """Immutable configuration shared by the mutator, reconciler and observer."""
    model_config = ConfigDict(frozen=True)

    credential_helper_image: str = ""
    credential_helper_cpu_request: str = "250m"
    credential_helper_memory_request: str = "64Mi"
    credential_helper_cpu_limit: str = ""
    credential_helper_memory_limit: str = "128Mi"
    session_duration: str = "900"
    default_issuer_kind: str = CLUSTER_ISSUER_KIND
    default_issuer_name: str = ""
    generate_cert: bool = False
    enable_webhooks: bool = True
    max_owner_depth: int = Field(8, ge=1)
    reconcile_workers: int = Field(2, ge=1)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables (os.environ by default).

        Raises ConfigError when a numeric variable is not an integer or is
        out of range.
        """
        env = os.environ if environ is None else environ
        try:
            max_owner_depth = int(env.get("IRA_MAX_OWNER_DEPTH", "8"))
            reconcile_workers = int(env.get("IRA_RECONCILE_WORKERS", "2"))
        except ValueError as e:
            raise ConfigError(f"invalid integer setting: {e}") from e

        try:
            return cls(
                credential_helper_image=env.get("IRA_CREDENTIAL_HELPER_IMAGE", ""),
                credential_helper_cpu_request=env.get("IRA_CREDENTIAL_HELPER_CPU_REQUEST", "250m"),
                credential_helper_memory_request=env.get("IRA_CREDENTIAL_HELPER_MEMORY_REQUEST", "64Mi"),
                credential_helper_cpu_limit=env.get("IRA_CREDENTIAL_HELPER_CPU_LIMIT", ""),
                credential_helper_memory_limit=env.get("IRA_CREDENTIAL_HELPER_MEMORY_LIMIT", "128Mi"),
                session_duration=env.get("IRA_CREDENTIAL_HELPER_SESSION_DURATION", "900"),
                default_issuer_kind=env.get("IRA_DEFAULT_ISSUER_KIND", CLUSTER_ISSUER_KIND),
                default_issuer_name=env.get("IRA_DEFAULT_ISSUER_NAME", ""),
                generate_cert=env.get("IRA_GENERATE_CERT", "false").lower() == "true",
                enable_webhooks=env.get("ENABLE_WEBHOOKS", "true").lower() != "false",
                max_owner_depth=max_owner_depth,
                reconcile_workers=reconcile_workers,
            )
        except ValidationError as e:
            raise ConfigError(f"invalid settings: {e}") from e

    def validate_startup(self) -> None:
        """
        Reject configurations the controller cannot run with.

        Raises ConfigError when no credential helper image is set, the
        default issuer kind is not one cert-manager understands, or a
        resource value is not a Kubernetes quantity.
        """
        if not self.credential_helper_image:
            raise ConfigError(
                "rolesanywhere-credential-helper image not provided: "
                "set IRA_CREDENTIAL_HELPER_IMAGE to an image containing aws_signing_helper"
            )
        if self.default_issuer_kind not in VALID_ISSUER_KINDS:
            raise ConfigError(
                f"invalid issuer kind {self.default_issuer_kind!r}: "
                f"expected one of ({','.join(VALID_ISSUER_KINDS)})"
            )
        for field_name in RESOURCE_FIELDS:
            value = getattr(self, field_name)
            if not value:
                continue
            try:
                parse_quantity(value)
            except ValueError as e:
                raise ConfigError(f"invalid quantity for {field_name}: {value!r} ({e})") from e

    def resource_requirements(self) -> dict[str, dict[str, str]]:
        """Requests/limits for the credential helper; empty values are left out."""
        requests: dict[str, str] = {}
        limits: dict[str, str] = {}
        if self.credential_helper_cpu_request:
            requests["cpu"] = self.credential_helper_cpu_request
        if self.credential_helper_cpu_limit:
            limits["cpu"] = self.credential_helper_cpu_limit
        if self.credential_helper_memory_request:
            requests["memory"] = self.credential_helper_memory_request
        if self.credential_helper_memory_limit:
            limits["memory"] = self.credential_helper_memory_limit
        return {"limits": limits, "requests": requests}
