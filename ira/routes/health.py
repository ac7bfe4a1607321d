# ira-controller/ira/routes/health.py
"""Liveness and readiness probes."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException

from ..dependencies import is_ready
from ..models import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    return HealthResponse()


@router.get("/readyz", response_model=HealthResponse)
async def readyz() -> HealthResponse:
    """
    Readiness probe.

    Returns 503 until settings and Kubernetes clients are initialized.
    """
    if not is_ready():
        raise HTTPException(status_code=503, detail="IRA controller not initialized")
    return HealthResponse()
