# ira-controller/ira/routes/__init__.py
"""API routes for the IRA controller."""
from .health import router as health_router
from .webhook import router as webhook_router

__all__ = [
    "health_router",
    "webhook_router",
]
