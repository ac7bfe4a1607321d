# ira-controller/ira/observers/__init__.py
"""
IRA observer modules.

Observers watch the cluster and drive reconcilers.
They run independently of the admission request/response cycle.
"""
from .pods import PodObserver, WorkQueue

__all__ = ["PodObserver", "WorkQueue"]
