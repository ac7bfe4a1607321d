# ira-controller/tests/test_mutator.py
# @ai-rules:
# 1. [Pattern]: Every test builds a raw AdmissionReview dict, runs PodMutator.handle, then applies the returned patch.
# 2. [Constraint]: Owner lookups go through StubOwnerLookup; no API server.
"""Unit tests for the admission-time pod mutator."""
from __future__ import annotations

import base64
import copy
import json
import logging
from typing import Optional

import jsonpatch
from kubernetes.client.exceptions import ApiException

from ira.config import Settings
from ira.models import AdmissionReview
from ira.mutator import PodMutator

from conftest import IRA_ANNOTATIONS, StubOwnerLookup, deployment_chain, owner_ref


def _settings(**overrides) -> Settings:
    defaults = {
        "credential_helper_image": "test-image:latest",
        "credential_helper_cpu_request": "250m",
        "credential_helper_memory_request": "64Mi",
        "credential_helper_memory_limit": "128Mi",
        "session_duration": "900",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _make_pod(
    name: str = "annotated",
    namespace: Optional[str] = "default",
    annotations: Optional[dict] = None,
    owners: Optional[list] = None,
    phase: Optional[str] = None,
    deletion_timestamp: Optional[str] = None,
) -> dict:
    metadata: dict = {"name": name}
    if namespace is not None:
        metadata["namespace"] = namespace
    if annotations is not None:
        metadata["annotations"] = annotations
    if owners:
        metadata["ownerReferences"] = owners
    if deletion_timestamp:
        metadata["deletionTimestamp"] = deletion_timestamp
    pod = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": metadata,
        "spec": {"containers": [{"name": "my-container", "image": "my-image"}]},
    }
    if phase:
        pod["status"] = {"phase": phase}
    return pod


def _review(pod, namespace: str = "default") -> AdmissionReview:
    return AdmissionReview.model_validate({
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {"uid": "req-1", "namespace": namespace, "operation": "CREATE", "object": pod},
    })


def _mutator(lookup=None, **settings) -> PodMutator:
    lookup = lookup or StubOwnerLookup()
    return PodMutator(_settings(**settings), lambda namespace: lookup)


def _apply(pod: dict, response) -> dict:
    assert response.allowed
    if response.patch is None:
        return pod
    assert response.patch_type == "JSONPatch"
    ops = json.loads(base64.b64decode(response.patch))
    return jsonpatch.apply_patch(copy.deepcopy(pod), ops)


def _ira_container(pod: dict) -> dict:
    (container,) = [c for c in pod["spec"]["initContainers"] if c["name"] == "ira"]
    return container


class TestSkips:
    def test_finished_pod(self, caplog):
        caplog.set_level(logging.INFO)
        pod = _make_pod(name="finished", annotations=dict(IRA_ANNOTATIONS), phase="Succeeded")
        response = _mutator().handle(_review(pod))
        assert response.allowed
        assert response.patch is None
        assert response.status.message == "pod finished"
        assert "Skipping finished pod" in caplog.text

    def test_failed_pod(self):
        pod = _make_pod(annotations=dict(IRA_ANNOTATIONS), phase="Failed")
        assert _mutator().handle(_review(pod)).status.message == "pod finished"

    def test_terminating_pod(self, caplog):
        caplog.set_level(logging.INFO)
        pod = _make_pod(annotations=dict(IRA_ANNOTATIONS), deletion_timestamp="2024-05-01T10:00:00Z")
        response = _mutator().handle(_review(pod))
        assert response.allowed
        assert response.patch is None
        assert response.status.message == "pod terminating"
        assert "Skipping terminating pod" in caplog.text

    def test_unannotated_pod_is_not_patched(self):
        pod = _make_pod(annotations={"ira.ontsys.com/trust-anchor": "ta", "ira.ontsys.com/profile": "p"})
        response = _mutator().handle(_review(pod))
        assert response.allowed
        assert response.patch is None

    def test_pod_without_annotations_is_not_patched(self):
        response = _mutator().handle(_review(_make_pod()))
        assert response.patch is None


class TestInjection:
    def test_mutates_annotated_pod(self, caplog):
        caplog.set_level(logging.INFO)
        pod = _make_pod(annotations=dict(IRA_ANNOTATIONS))
        mutated = _apply(pod, _mutator().handle(_review(pod)))

        assert "Attempting to patch pod" in caplog.text
        assert mutated["spec"]["volumes"] == [{"name": "ira-cert", "secret": {"secretName": "annotated-ira"}}]
        assert mutated["spec"]["containers"][0]["env"] == [
            {"name": "AWS_EC2_METADATA_SERVICE_ENDPOINT", "value": "http://127.0.0.1:9911"},
        ]

        container = _ira_container(mutated)
        assert container["image"] == "test-image:latest"
        assert container["command"] == ["aws_signing_helper"]
        assert container["restartPolicy"] == "Always"
        assert container["volumeMounts"] == [{"name": "ira-cert", "mountPath": "/ira-cert"}]
        assert container["args"] == [
            "serve",
            "--certificate", "/ira-cert/tls.crt",
            "--private-key", "/ira-cert/tls.key",
            "--trust-anchor-arn", "ta",
            "--profile-arn", "p",
            "--role-arn", "c",
            "'--session-duration=900'",
        ]

    def test_resources_without_cpu_limit(self):
        pod = _make_pod(annotations=dict(IRA_ANNOTATIONS))
        mutated = _apply(pod, _mutator().handle(_review(pod)))
        assert _ira_container(mutated)["resources"] == {
            "limits": {"memory": "128Mi"},
            "requests": {"cpu": "250m", "memory": "64Mi"},
        }

    def test_resources_with_cpu_limit(self):
        pod = _make_pod(name="limited", annotations=dict(IRA_ANNOTATIONS))
        mutated = _apply(pod, _mutator(credential_helper_cpu_limit="500m").handle(_review(pod)))
        assert _ira_container(mutated)["resources"] == {
            "limits": {"cpu": "500m", "memory": "128Mi"},
            "requests": {"cpu": "250m", "memory": "64Mi"},
        }

    def test_provided_cert_name(self):
        pod = _make_pod(name="named-cert", annotations={**IRA_ANNOTATIONS, "ira.ontsys.com/cert": "cert-name"})
        mutated = _apply(pod, _mutator().handle(_review(pod)))
        assert mutated["spec"]["volumes"][0]["secret"]["secretName"] == "cert-name"

    def test_trailing_slash_annotation(self):
        annotations = {**IRA_ANNOTATIONS, "ira.ontsys.com/metadata-endpoint-trailing-slash": "true"}
        pod = _make_pod(annotations=annotations)
        mutated = _apply(pod, _mutator().handle(_review(pod)))
        assert mutated["spec"]["containers"][0]["env"][-1]["value"] == "http://127.0.0.1:9911/"

    def test_every_container_gets_endpoint_and_existing_state_is_kept(self):
        pod = _make_pod(annotations=dict(IRA_ANNOTATIONS))
        pod["spec"]["containers"].append({"name": "sidecar", "image": "s", "env": [{"name": "A", "value": "1"}]})
        pod["spec"]["volumes"] = [{"name": "data", "emptyDir": {}}]
        pod["spec"]["initContainers"] = [{"name": "setup", "image": "busybox"}]
        mutated = _apply(pod, _mutator().handle(_review(pod)))

        envs = [c["env"] for c in mutated["spec"]["containers"]]
        assert all(env[-1]["name"] == "AWS_EC2_METADATA_SERVICE_ENDPOINT" for env in envs)
        assert envs[1][0] == {"name": "A", "value": "1"}
        assert [v["name"] for v in mutated["spec"]["volumes"]] == ["data", "ira-cert"]
        assert [c["name"] for c in mutated["spec"]["initContainers"]] == ["setup", "ira"]

    def test_deployment_owned_pod_uses_root_controller_name(self):
        pod = _make_pod(
            name="deploy-76b849fb6c-dkmgf",
            annotations=dict(IRA_ANNOTATIONS),
            owners=[owner_ref("ReplicaSet", "deploy-76b849fb6c")],
        )
        mutated = _apply(pod, _mutator(deployment_chain()).handle(_review(pod)))
        assert mutated["spec"]["volumes"][0]["secret"]["secretName"] == "deploy-deployment-ira"

    def test_missing_owner_falls_back_to_pod_name(self):
        pod = _make_pod(name="orphan", annotations=dict(IRA_ANNOTATIONS), owners=[owner_ref("Deployment", "gone")])
        mutated = _apply(pod, _mutator().handle(_review(pod)))
        assert mutated["spec"]["volumes"][0]["secret"]["secretName"] == "orphan-ira"

    def test_missing_deployment_uses_replicaset_name(self):
        lookup = deployment_chain()
        del lookup.objects[("Deployment", "deploy")]
        pod = _make_pod(
            name="deploy-76b849fb6c-abcde",
            annotations=dict(IRA_ANNOTATIONS),
            owners=[owner_ref("ReplicaSet", "deploy-76b849fb6c")],
        )
        mutated = _apply(pod, _mutator(lookup).handle(_review(pod)))
        assert mutated["spec"]["volumes"][0]["secret"]["secretName"] == "deploy-76b849fb6c-replicaset-ira"

    def test_lookup_namespace_falls_back_to_request(self):
        seen = []
        lookup = deployment_chain()
        mutator = PodMutator(_settings(), lambda namespace: seen.append(namespace) or lookup)
        pod = _make_pod(
            name="", namespace=None, annotations=dict(IRA_ANNOTATIONS),
            owners=[owner_ref("ReplicaSet", "deploy-76b849fb6c")],
        )
        pod["metadata"]["generateName"] = "deploy-76b849fb6c-"
        _apply(pod, mutator.handle(_review(pod, namespace="apps")))
        assert seen == ["apps"]


class TestErrors:
    def test_undecodable_object(self):
        review = AdmissionReview.model_validate({"request": {"uid": "req-1", "object": "not-a-pod"}})
        response = _mutator().handle(review)
        assert not response.allowed
        assert response.status.code == 400
        assert response.uid == "req-1"

    def test_wrong_kind(self):
        review = _review({"kind": "Deployment", "metadata": {"name": "d"}})
        response = _mutator().handle(review)
        assert not response.allowed
        assert response.status.code == 400

    def test_bad_annotation_shape(self):
        pod = _make_pod()
        pod["metadata"]["annotations"] = ["not", "a", "map"]
        response = _mutator().handle(_review(pod))
        assert response.status.code == 400

    def test_owner_lookup_failure_is_internal_error(self):
        lookup = StubOwnerLookup(errors={("Deployment", "deploy"): ApiException(status=500, reason="boom")})
        pod = _make_pod(annotations=dict(IRA_ANNOTATIONS), owners=[owner_ref("Deployment", "deploy")])
        response = _mutator(lookup).handle(_review(pod))
        assert not response.allowed
        assert response.status.code == 500
