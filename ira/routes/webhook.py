# ira-controller/ira/routes/webhook.py
# @ai-rules:
# 1. [Pattern]: PodMutator.handle blocks on owner lookups -- run it in the default executor.
# 2. [Constraint]: Always answer with an AdmissionReview, even for malformed bodies (allowed=false, code 400).
# 3. [Gotcha]: Unexpected errors answer allowed=false/500; the webhook failurePolicy decides fail-open vs fail-closed.
"""
Mutating admission endpoint.

Receives admission.k8s.io/v1 AdmissionReview requests for pods and returns
the PodMutator response (base64 JSON patch, patchType JSONPatch).
"""
from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_mutator
from ..models import AdmissionResponse, AdmissionReview, AdmissionStatus
from ..mutator import PodMutator, parse_review

logger = logging.getLogger(__name__)

MUTATE_POD_PATH = "/mutate-core-v1-pod"

router = APIRouter(tags=["webhook"])


def _dump(review: AdmissionReview) -> dict:
    return review.model_dump(by_alias=True, exclude_none=True)


@router.post(MUTATE_POD_PATH)
async def mutate_pod(
    request: Request,
    mutator: PodMutator = Depends(get_mutator),
) -> dict:
    try:
        body = await request.json()
    except ValueError as e:
        logger.error(f"Admission request body is not JSON: {e}")
        body = None

    review = parse_review(body)
    if review is None or review.request is None:
        return _dump(AdmissionReview(response=AdmissionResponse(
            allowed=False,
            status=AdmissionStatus(code=400, message="request body is not an AdmissionReview"),
        )))

    try:
        result = await asyncio.get_running_loop().run_in_executor(None, mutator.review, review)
    except Exception as e:
        logger.error(f"Pod mutation failed for uid={review.request.uid}: {e}")
        result = AdmissionReview(response=AdmissionResponse(
            uid=review.request.uid,
            allowed=False,
            status=AdmissionStatus(code=500, message=str(e)),
        ))

    return _dump(result)
