# ira-controller/ira/owners.py
# @ai-rules:
# 1. [Constraint]: Iterative climb, bounded by max_depth lookups. Never recurse, never abort the process.
# 2. [Pattern]: ObjectNotFound on the first candidate -> OWNER_NOT_FOUND (benign). Higher up, the last found candidate is the root.
#    Other lookup errors -> OwnerLookupError.
# 3. [Gotcha]: The root is the LAST candidate whose fetched object has no qualifying controller, not the first.
"""
Root controller resolution.

Follows controller owner references upward (Pod -> ReplicaSet -> Deployment,
Pod -> Job -> CronJob, ...) and names the identity after the top-most
workload controller.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from .kube import ObjectNotFound, OwnerLookup
from .models import ControllerIdentity, OwnerReference, ResolutionStatus

logger = logging.getLogger(__name__)

CONTROLLER_KINDS = frozenset({"CronJob", "DaemonSet", "Deployment", "Job", "ReplicaSet", "StatefulSet"})
DEFAULT_MAX_OWNER_DEPTH = 8


class OwnerResolutionError(Exception):
    """The ownership graph could not be resolved."""


class OwnerLookupError(OwnerResolutionError):
    """Reading an owner failed for a reason other than not-found."""

    def __init__(self, owner: OwnerReference, cause: BaseException):
        self.owner = owner
        super().__init__(f"could not get owner {owner.kind}/{owner.name}: {cause}")


class OwnerChainTooDeepError(OwnerResolutionError):
    """The chain has more controller levels than max_depth allows."""

    def __init__(self, max_depth: int, last: OwnerReference):
        self.max_depth = max_depth
        self.last = last
        super().__init__(
            f"owner chain exceeds {max_depth} levels (last reached {last.kind}/{last.name})"
        )


def _as_owner_reference(ref) -> OwnerReference:
    if isinstance(ref, OwnerReference):
        return ref
    return OwnerReference.model_validate(ref)


def climb_candidate(owner_references: Iterable) -> Optional[OwnerReference]:
    """First reference flagged as controller whose kind is a workload controller."""
    for raw in owner_references or ():
        ref = _as_owner_reference(raw)
        logger.debug(f"Processing owner reference {ref.kind}/{ref.name} controller={ref.controller}")
        if ref.controller and ref.kind in CONTROLLER_KINDS:
            return ref
    return None


def resolve_root_owner(
    owner_references: Sequence,
    lookup: OwnerLookup,
    max_depth: int = DEFAULT_MAX_OWNER_DEPTH,
) -> tuple[ResolutionStatus, Optional[OwnerReference]]:
    """
    Climb the controller chain starting at owner_references.

    Returns:
        (SELF, None)            no qualifying controller reference
        (OWNED, reference)      top-most controller reference
        (OWNER_NOT_FOUND, None) the pod's own controller no longer exists

    Raises:
        OwnerLookupError: a lookup failed for any reason other than not-found
        OwnerChainTooDeepError: more than max_depth controller levels
    """
    root: Optional[OwnerReference] = None
    candidate = climb_candidate(owner_references)
    depth = 0

    while candidate is not None:
        if depth >= max_depth:
            raise OwnerChainTooDeepError(max_depth, candidate)
        depth += 1

        try:
            owner_obj = lookup(candidate.api_version, candidate.kind, candidate.name)
        except ObjectNotFound:
            logger.info(f"Owner not found: {candidate.kind}/{candidate.name}")
            if root is None:
                return ResolutionStatus.OWNER_NOT_FOUND, None
            break
        except Exception as e:
            raise OwnerLookupError(candidate, e) from e

        root = candidate
        parents = (owner_obj.get("metadata") or {}).get("ownerReferences") or []
        candidate = climb_candidate(parents)

    if root is None:
        return ResolutionStatus.SELF, None
    return ResolutionStatus.OWNED, root


def controller_name(owner: OwnerReference) -> str:
    """<ownerName>-<lowercase(ownerKind)>, e.g. deploy-deployment."""
    return f"{owner.name}-{owner.kind.lower()}"


def controller_identity(
    pod_name: str,
    owner_references: Sequence,
    lookup: OwnerLookup,
    max_depth: int = DEFAULT_MAX_OWNER_DEPTH,
) -> ControllerIdentity:
    """Resolve the identity a pod's certificate is named and owned by."""
    status, owner = resolve_root_owner(owner_references, lookup, max_depth)
    if status is ResolutionStatus.OWNED:
        return ControllerIdentity(name=controller_name(owner), owner=owner, status=status)
    return ControllerIdentity(name=pod_name, owner=None, status=status)
