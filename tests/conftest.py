# ira-controller/tests/conftest.py
# @ai-rules:
# 1. [Constraint]: No real cluster. Owner lookups and the Certificate store are in-memory stubs.
# 2. [Pattern]: StubCertificateStore enforces resourceVersion like the API server (409 on a stale replace).
"""Shared stubs for IRA controller tests."""
from __future__ import annotations

import copy
from typing import Optional

import pytest
from kubernetes.client.exceptions import ApiException

from ira.kube import ObjectNotFound


class StubOwnerLookup:
    """lookup(api_version, kind, name) over a {(kind, name): object} map."""

    def __init__(self, objects: Optional[dict] = None, errors: Optional[dict] = None):
        self.objects = objects or {}
        self.errors = errors or {}
        self.calls: list[tuple[str, str, str]] = []

    def __call__(self, api_version: str, kind: str, name: str) -> dict:
        self.calls.append((api_version, kind, name))
        if (kind, name) in self.errors:
            raise self.errors[(kind, name)]
        if (kind, name) not in self.objects:
            raise ObjectNotFound(f"{kind} {name} not found")
        return self.objects[(kind, name)]


class StubCertificateStore:
    def __init__(self):
        self.items: dict[tuple[str, str], dict] = {}
        self.calls: list[str] = []
        self._version = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def get(self, namespace: str, name: str) -> dict:
        self.calls.append("get")
        if (namespace, name) not in self.items:
            raise ObjectNotFound(f"Certificate {namespace}/{name} not found")
        return copy.deepcopy(self.items[(namespace, name)])

    def create(self, namespace: str, body: dict) -> dict:
        self.calls.append("create")
        name = body["metadata"]["name"]
        if (namespace, name) in self.items:
            raise ApiException(status=409, reason="AlreadyExists")
        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.items[(namespace, name)] = stored
        return copy.deepcopy(stored)

    def replace(self, namespace: str, name: str, body: dict) -> dict:
        self.calls.append("replace")
        current = self.items[(namespace, name)]
        if body["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.items[(namespace, name)] = stored
        return copy.deepcopy(stored)


def owner_ref(kind: str, name: str, api_version: str = "apps/v1", controller: Optional[bool] = True) -> dict:
    ref = {"apiVersion": api_version, "kind": kind, "name": name, "uid": f"uid-{name}"}
    if controller is not None:
        ref["controller"] = controller
    return ref


def deployment_chain() -> StubOwnerLookup:
    """Deployment deploy -> ReplicaSet deploy-76b849fb6c."""
    return StubOwnerLookup({
        ("ReplicaSet", "deploy-76b849fb6c"): {
            "metadata": {
                "name": "deploy-76b849fb6c",
                "ownerReferences": [owner_ref("Deployment", "deploy")],
            },
        },
        ("Deployment", "deploy"): {"metadata": {"name": "deploy"}},
    })


IRA_ANNOTATIONS = {
    "ira.ontsys.com/trust-anchor": "ta",
    "ira.ontsys.com/profile": "p",
    "ira.ontsys.com/role": "c",
}


@pytest.fixture
def store() -> StubCertificateStore:
    return StubCertificateStore()


@pytest.fixture
def annotations() -> dict[str, str]:
    return dict(IRA_ANNOTATIONS)
