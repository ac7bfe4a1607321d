# ira-controller/ira/dependencies.py
"""FastAPI dependency injection for the IRA controller."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .config import Settings
    from .mutator import PodMutator

# Global instances (initialized in main.py lifespan)
_settings: Optional["Settings"] = None
_mutator: Optional["PodMutator"] = None


def set_settings(settings: Optional["Settings"]) -> None:
    """Set the global Settings instance."""
    global _settings
    _settings = settings


def set_mutator(mutator: Optional["PodMutator"]) -> None:
    """Set the global PodMutator instance (None when webhooks are disabled)."""
    global _mutator
    _mutator = mutator


def is_ready() -> bool:
    return _settings is not None


async def get_mutator() -> "PodMutator":
    """
    Get the PodMutator instance.

    FastAPI dependency.
    """
    if _mutator is None:
        raise RuntimeError("PodMutator not initialized. Check startup sequence.")
    return _mutator
