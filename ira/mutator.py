# ira-controller/ira/mutator.py
# @ai-rules:
# 1. [Constraint]: Never writes to the cluster. Output is an AdmissionResponse carrying a JSON patch.
# 2. [Pattern]: Mutate a deep copy of request.object, then jsonpatch.make_patch(original, mutated).
# 3. [Gotcha]: On CREATE the pod may lack metadata.namespace -- owner lookups fall back to request.namespace.
# 4. [Gotcha]: OWNER_NOT_FOUND falls back to the pod's own name here (admission must not block on a missing owner).
"""
Pod mutator for the mutating admission webhook.

For IRA-annotated pods it adds:
- the ira-cert secret volume (secret named after the certificate)
- AWS_EC2_METADATA_SERVICE_ENDPOINT on every container
- the ira sidecar (init container with restartPolicy Always) running
  aws_signing_helper serve
"""
from __future__ import annotations

import base64
import copy
import json
import logging
from typing import Any, Callable, Optional

import jsonpatch
from pydantic import ValidationError

from .annotations import cert_name, has_identity, identity_arns, metadata_endpoint
from .config import Settings
from .kube import OwnerLookup
from .models import AdmissionResponse, AdmissionReview, AdmissionStatus, PodMetadata
from .owners import OwnerResolutionError, controller_identity

logger = logging.getLogger(__name__)

CERT_VOLUME_NAME = "ira-cert"
CERT_MOUNT_PATH = "/ira-cert"
SIDECAR_NAME = "ira"
SIDECAR_COMMAND = "aws_signing_helper"
METADATA_ENDPOINT_ENV = "AWS_EC2_METADATA_SERVICE_ENDPOINT"
FINISHED_PHASES = ("Succeeded", "Failed")


class PodDecodeError(Exception):
    """The admission request does not carry a decodable pod."""


def decode_pod(review: AdmissionReview) -> tuple[dict[str, Any], PodMetadata]:
    """Return (pod dict, metadata view) or raise PodDecodeError."""
    if review.request is None:
        raise PodDecodeError("admission review has no request")
    pod = review.request.object
    if not isinstance(pod, dict):
        raise PodDecodeError("there is no content to decode")
    kind = pod.get("kind")
    if kind is not None and kind != "Pod":
        raise PodDecodeError(f"expected kind Pod, got {kind!r}")
    try:
        metadata = PodMetadata.from_pod(pod)
    except (ValidationError, AttributeError) as e:
        raise PodDecodeError(str(e)) from e
    if not isinstance(pod.get("spec") or {}, dict):
        raise PodDecodeError("pod spec is not an object")
    return pod, metadata


def credential_helper_container(settings: Settings, annotations: dict[str, str]) -> dict[str, Any]:
    """The ira sidecar container spec."""
    trust_anchor, profile, role = identity_arns(annotations)
    return {
        "name": SIDECAR_NAME,
        "image": settings.credential_helper_image,
        "command": [SIDECAR_COMMAND],
        "args": [
            "serve",
            "--certificate",
            f"{CERT_MOUNT_PATH}/tls.crt",
            "--private-key",
            f"{CERT_MOUNT_PATH}/tls.key",
            "--trust-anchor-arn",
            trust_anchor,
            "--profile-arn",
            profile,
            "--role-arn",
            role,
            f"'--session-duration={settings.session_duration}'",
        ],
        "restartPolicy": "Always",
        "resources": settings.resource_requirements(),
        "volumeMounts": [
            {"name": CERT_VOLUME_NAME, "mountPath": CERT_MOUNT_PATH},
        ],
    }


def inject_credential_helper(
    pod: dict[str, Any],
    secret_name: str,
    settings: Settings,
    annotations: dict[str, str],
) -> None:
    """Add volume, endpoint env var and sidecar to pod, in place."""
    spec = pod.setdefault("spec", {})

    volumes = spec.get("volumes") or []
    volumes.append({"name": CERT_VOLUME_NAME, "secret": {"secretName": secret_name}})
    spec["volumes"] = volumes

    endpoint = metadata_endpoint(annotations)
    for container in spec.get("containers") or []:
        env = container.get("env") or []
        env.append({"name": METADATA_ENDPOINT_ENV, "value": endpoint})
        container["env"] = env

    init_containers = spec.get("initContainers") or []
    init_containers.append(credential_helper_container(settings, annotations))
    spec["initContainers"] = init_containers


def _allowed(uid: str, reason: str) -> AdmissionResponse:
    return AdmissionResponse(uid=uid, allowed=True, status=AdmissionStatus(code=200, message=reason))


def _errored(uid: str, code: int, err: BaseException) -> AdmissionResponse:
    return AdmissionResponse(uid=uid, allowed=False, status=AdmissionStatus(code=code, message=str(err)))


def patch_response(uid: str, original: dict[str, Any], mutated: dict[str, Any]) -> AdmissionResponse:
    """JSON patch response from original to mutated; no patch when they are equal."""
    patch = jsonpatch.make_patch(original, mutated)
    if not patch.patch:
        return AdmissionResponse(uid=uid, allowed=True)
    encoded = base64.b64encode(json.dumps(patch.patch).encode("utf-8")).decode("utf-8")
    return AdmissionResponse(uid=uid, allowed=True, patch=encoded, patch_type="JSONPatch")


class PodMutator:
    """
    Admission handler for pod CREATE/UPDATE.

    Args:
        settings: frozen process configuration (image, resources, session duration)
        lookup_factory: namespace -> owner lookup used to resolve the root controller
    """

    def __init__(self, settings: Settings, lookup_factory: Callable[[str], OwnerLookup]):
        self.settings = settings
        self.lookup_factory = lookup_factory

    def handle(self, review: AdmissionReview) -> AdmissionResponse:
        uid = review.request.uid if review.request else ""

        try:
            original, meta = decode_pod(review)
        except PodDecodeError as e:
            logger.error(f"error occurred while decoding the admission request: {e}")
            return _errored(uid, 400, e)

        logger.info(
            f"handling the pod CREATE/UPDATE event for pod name={meta.name!r} "
            f"namespace={meta.namespace!r} generate name={meta.generate_name!r}"
        )

        if meta.is_terminating:
            logger.info("Skipping terminating pod")
            return _allowed(uid, "pod terminating")

        phase = (original.get("status") or {}).get("phase")
        if phase in FINISHED_PHASES:
            logger.info("Skipping finished pod")
            return _allowed(uid, "pod finished")

        pod = copy.deepcopy(original)
        if has_identity(meta.annotations):
            namespace = meta.namespace or (review.request.namespace or "")
            try:
                identity = controller_identity(
                    meta.name,
                    meta.owner_references,
                    self.lookup_factory(namespace),
                    self.settings.max_owner_depth,
                )
            except OwnerResolutionError as e:
                logger.error(f"Could not resolve controller for pod {namespace}/{meta.name}: {e}")
                return _errored(uid, 500, e)

            secret_name = cert_name(meta.annotations, identity.name)
            inject_credential_helper(pod, secret_name, self.settings, meta.annotations)

        logger.info(
            f"Attempting to patch pod {meta.name!r} namespace={meta.namespace!r} "
            f"generate name={meta.generate_name!r}"
        )
        return patch_response(uid, original, pod)

    def review(self, review: AdmissionReview) -> AdmissionReview:
        """Wrap handle() in a response AdmissionReview."""
        return AdmissionReview(response=self.handle(review))


def parse_review(body: Any) -> Optional[AdmissionReview]:
    """AdmissionReview from a request body, None when it is not one."""
    if not isinstance(body, dict):
        return None
    try:
        return AdmissionReview.model_validate(body)
    except ValidationError:
        return None
