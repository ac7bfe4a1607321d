# ira-controller/ira/observers/pods.py
# @ai-rules:
# 1. [Pattern]: The watch stream is blocking -- it runs in the default executor and hands keys to the loop via call_soon_threadsafe.
# 2. [Constraint]: A key is processed by at most one worker at a time; re-adds during processing are replayed on done().
# 3. [Pattern]: Reconcile failure -> add_after(key, backoff). Success -> forget(key) resets the backoff.
# 4. [Gotcha]: 401/403 on the watch schedules stop() on the loop (RBAC problem); 410 re-lists, every other watch error backs off and restarts.
# 5. [Constraint]: stop() is idempotent and always cancels the workers it started.
"""
Pod observer.

Watches pods across all namespaces and feeds namespace/name keys to the
PodReconciler through a deduplicating work queue with per-key exponential
backoff. Only started when certificate generation is enabled.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Optional

from kubernetes import client, watch
from kubernetes.client.exceptions import ApiException

if TYPE_CHECKING:
    from ..config import Settings
    from ..reconciler import PodReconciler

logger = logging.getLogger(__name__)

WATCH_TIMEOUT_SECONDS = 300
WATCH_REQUEST_TIMEOUT_SECONDS = WATCH_TIMEOUT_SECONDS + 30
WATCH_BACKOFF_INITIAL_SECONDS = 1.0
WATCH_BACKOFF_CAP_SECONDS = 30
WATCH_STOP_TIMEOUT_SECONDS = 5


class WorkQueue:
    """
    Async work queue keyed by string.

    - a key added while already waiting is dropped (dedup)
    - a key added while being processed is re-queued once done() is called
    - add_after() schedules a delayed add; backoff() grows per key until forget()
    """

    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: set[asyncio.TimerHandle] = set()

    def add(self, key: str) -> None:
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def fire() -> None:
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    async def get(self) -> str:
        key = await self._queue.get()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.put_nowait(key)

    def backoff(self, key: str) -> float:
        """Next retry delay for key: base * 2^failures, capped."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def pending(self) -> int:
        return self._queue.qsize()

    def shutdown(self) -> None:
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()


class PodObserver:
    """
    Watches pods and reconciles their Certificates.

    Usage:
        observer = PodObserver(core_api, reconciler, settings)
        await observer.start()
        ...
        await observer.stop()
    """

    def __init__(
        self,
        core_api: client.CoreV1Api,
        reconciler: "PodReconciler",
        settings: "Settings",
        queue: Optional[WorkQueue] = None,
    ):
        self.core_api = core_api
        self.reconciler = reconciler
        self.settings = settings
        self.queue = queue or WorkQueue()

        self._running = False
        self._stop = threading.Event()
        self._watcher: Optional[watch.Watch] = None
        self._watch_task: Optional[asyncio.Future] = None
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the watch thread and the reconcile workers."""
        if self._running:
            logger.warning("PodObserver already running")
            return
        self.start_workers()
        loop = asyncio.get_running_loop()
        self._watch_task = loop.run_in_executor(None, self._watch_loop, loop)
        logger.info(f"PodObserver started: workers={self.settings.reconcile_workers}")

    def start_workers(self) -> None:
        self._running = True
        self._stop.clear()
        self._workers = [
            asyncio.create_task(self._worker(i))
            for i in range(self.settings.reconcile_workers)
        ]

    async def stop(self) -> None:
        """Stop watching, cancel the workers and wait briefly for the watch thread."""
        self._running = False
        self._stop.set()
        if self._watcher is not None:
            self._watcher.stop()

        workers, self._workers = self._workers, []
        watch_task, self._watch_task = self._watch_task, None
        if not workers and watch_task is None:
            return

        for task in workers:
            task.cancel()
        for task in workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.queue.shutdown()

        if watch_task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(watch_task), WATCH_STOP_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Pod watch thread still blocked after {WATCH_STOP_TIMEOUT_SECONDS}s; "
                    f"it exits within the {WATCH_REQUEST_TIMEOUT_SECONDS}s request timeout"
                )
        logger.info("PodObserver stopped")

    async def _worker(self, index: int) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            key = await self.queue.get()
            try:
                namespace, name = key.split("/", 1)
                outcome = await loop.run_in_executor(None, self.reconciler.reconcile, namespace, name)
                self.queue.forget(key)
                if outcome is not None:
                    logger.debug(f"worker {index}: {key} -> {outcome.value}")
            except Exception as e:
                delay = self.queue.backoff(key)
                logger.error(f"Reconcile of {key} failed, retrying in {delay:.0f}s: {e}")
                self.queue.add_after(key, delay)
            finally:
                self.queue.done(key)

    def _watch_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Blocking pod watch; runs in an executor thread until stop()."""
        backoff_seconds = WATCH_BACKOFF_INITIAL_SECONDS
        while not self._stop.is_set():
            watcher = watch.Watch()
            self._watcher = watcher
            try:
                stream = watcher.stream(
                    self.core_api.list_pod_for_all_namespaces,
                    timeout_seconds=WATCH_TIMEOUT_SECONDS,
                    _request_timeout=WATCH_REQUEST_TIMEOUT_SECONDS,
                )
                for event in stream:
                    if self._stop.is_set():
                        break
                    obj = event.get("object")
                    metadata = getattr(obj, "metadata", None)
                    if metadata is None or not metadata.name:
                        continue
                    key = f"{metadata.namespace}/{metadata.name}"
                    loop.call_soon_threadsafe(self.queue.add, key)
                backoff_seconds = WATCH_BACKOFF_INITIAL_SECONDS
            except ApiException as e:
                if e.status in (401, 403):
                    logger.error(
                        f"Kubernetes API watch denied (status={e.status}). "
                        "Check controller RBAC and service account permissions."
                    )
                    if not self._stop.is_set():
                        asyncio.run_coroutine_threadsafe(self.stop(), loop)
                    return
                if e.status == 410:
                    logger.warning("Watch resource version expired, re-listing")
                    continue
                logger.error(f"Kubernetes API watch error: {e}")
                self._stop.wait(backoff_seconds)
                backoff_seconds = min(backoff_seconds * 2, WATCH_BACKOFF_CAP_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected watch error: {e}")
                self._stop.wait(backoff_seconds)
                backoff_seconds = min(backoff_seconds * 2, WATCH_BACKOFF_CAP_SECONDS)
            finally:
                watcher.stop()
