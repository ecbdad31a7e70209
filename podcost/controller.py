#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
podcost/controller.py — Event loop around the deletion-cost allocator.

What it does
------------
- Subscribes to ClusterState change events and filters them (podcost/predicate.py).
- Queues replica uids (de-duplicated; a uid is never worked on twice at once).
- Runs reconcile(uid) on a pool of worker threads, or synchronously via drain().
- Dispatches each reconcile to the module registered for the workload's
  algorithm type (ModuleManager), e.g. the ZoneAllocator.
- Classifies failures into drop / immediate requeue / exponential backoff.

Key API
-------
manager    = ModuleManager()
register_zone(manager, state, cache)
controller = Controller(state, manager, cache, workers=4)
controller.start() / controller.stop()      # threaded mode
results    = controller.drain()              # synchronous mode (tests, /reconcile)
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from .errors import ErrorKind, PodCostError, NotFound, Requeue, as_pod_cost_error
from .expectations import PendingCache
from .objects import Replica, Workload, has_deletion_cost
from .predicate import accept_replica, is_accepted, is_enabled, replicas_to_requeue
from .state import ClusterState, Event, EventAction, EventKind

log = logging.getLogger("podcost.controller")

DEFAULT_CFG = {
    "workers": 4,
    "backoff_base_s": 0.5,        # first retry delay for BACKOFF errors
    "backoff_max_s": 60.0,
    "drain_limit": 1000,          # max reconciles per drain() call
    "poll_interval_s": 0.2,       # worker wake-up when idle
}


# ----------------------------- modules -----------------------------

class ModuleManager:
    """Maps a workload's algorithm type to the module that allocates for it."""

    def __init__(self):
        self.modules: Dict[str, Any] = {}

    def add_module(self, module: Any) -> None:
        types = list(module.accept_types())
        for t in types:
            if t in self.modules:
                raise ValueError(f"module [{t}] is already registered")
        for t in types:
            self.modules[t] = module

    def handle(self, replica: Replica, workload: Workload, cancel: Optional[threading.Event] = None) -> Optional[int]:
        if not is_enabled(workload):
            return None
        module = self.modules.get(workload.algorithm_type)
        if module is None:
            log.debug(
                "[controller] handler not found workload=%s type=%r",
                workload.name,
                workload.algorithm_type,
            )
            return None
        return module.handle(replica, workload, cancel=cancel)


# ----------------------------- results -----------------------------

@dataclass
class ReconcileResult:
    uid: str
    value: Optional[int] = None
    error: Optional[PodCostError] = None
    requeue: Optional[Requeue] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "value": self.value,
            "ok": self.ok,
            "error": self.error.to_dict() if self.error else None,
            "requeue": self.requeue.name if self.requeue else None,
        }


# ----------------------------- Controller -----------------------------

class Controller:
    def __init__(self, state: ClusterState, manager: ModuleManager, cache: PendingCache, **cfg):
        self.state = state
        self.manager = manager
        self.cache = cache
        self.cfg = {**DEFAULT_CFG, **cfg}

        self._cond = threading.Condition(threading.Lock())
        self._queue: Deque[str] = deque()
        self._queued: Set[str] = set()
        self._active: Set[str] = set()
        self._dirty: Set[str] = set()
        self._delayed: List[Tuple[float, str]] = []  # heap of (due monotonic, uid)
        self._attempts: Dict[str, int] = {}

        self.stats: Counter = Counter()

        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

        state.subscribe(self.handle_event)

    # -------- public lifecycle --------

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._threads = []
        for i in range(max(1, int(self.cfg["workers"]))):
            t = threading.Thread(target=self._worker_loop, name=f"podcost-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        log.info("[controller] started workers=%d", len(self._threads))

    def stop(self):
        self._stop_event.set()
        with self._cond:
            self._cond.notify_all()
        for t in self._threads:
            t.join(timeout=2.0)
        self._threads = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    @property
    def healthy(self) -> bool:
        """Synchronous mode (never started) counts as healthy."""
        return not self._threads or self.running

    def resync(self) -> int:
        """Queue every replica of every enabled workload that still lacks a cost."""
        count = 0
        for workload in self.state.list_workloads():
            if workload.enabled:
                self._on_workload(workload, EventAction.UPSERT)
                count += 1
        return count

    # -------- events --------

    def handle_event(self, event: Event) -> None:
        if event.kind is EventKind.REPLICA:
            self._on_replica(event.replica, event.action)
        elif event.kind is EventKind.WORKLOAD:
            self._on_workload(event.workload, event.action)

    def _on_replica(self, replica: Replica, action: EventAction) -> None:
        if action is EventAction.DELETE:
            self.cache.delete(replica.uid)
            return
        if has_deletion_cost(replica):
            if self.cache.has(replica.uid):
                self.cache.delete(replica.uid)
                log.debug("[controller] replica=%s synced, pending entry cleared", replica.uid)
            return
        try:
            workload = self.state.get_workload_for_replica(replica)
        except PodCostError as e:
            log.debug("[controller] replica=%s ignored: %s", replica.uid, e)
            return
        if accept_replica(replica, workload):
            self.enqueue(replica.uid)

    def _on_workload(self, workload: Workload, action: EventAction) -> None:
        if action is EventAction.DELETE:
            return
        try:
            uids = replicas_to_requeue(self.state, workload)
        except PodCostError as e:
            log.warning("[controller] workload=%s requeue failed: %s", workload.name, e)
            return
        for uid in uids:
            self.enqueue(uid)
        if uids:
            log.debug("[controller] workload=%s requeued replicas=%d", workload.name, len(uids))

    # -------- queue --------

    def enqueue(self, uid: str) -> None:
        with self._cond:
            if uid in self._queued:
                return
            if uid in self._active:
                self._dirty.add(uid)
                return
            self._queue.append(uid)
            self._queued.add(uid)
            self._cond.notify()

    def _enqueue_after(self, uid: str, delay_s: float) -> None:
        with self._cond:
            heapq.heappush(self._delayed, (time.monotonic() + delay_s, uid))

    def _promote_due_locked(self) -> None:
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, uid = heapq.heappop(self._delayed)
            if uid in self._queued:
                continue
            if uid in self._active:
                self._dirty.add(uid)
                continue
            self._queue.append(uid)
            self._queued.add(uid)

    def _take_locked(self) -> Optional[str]:
        self._promote_due_locked()
        if not self._queue:
            return None
        uid = self._queue.popleft()
        self._queued.discard(uid)
        self._active.add(uid)
        return uid

    def _done(self, uid: str) -> None:
        with self._cond:
            self._active.discard(uid)
            if uid in self._dirty:
                self._dirty.discard(uid)
                self._queue.append(uid)
                self._queued.add(uid)
                self._cond.notify()

    def _count(self, key: str) -> None:
        with self._cond:
            self.stats[key] += 1

    def _next_attempt(self, uid: str) -> int:
        with self._cond:
            self._attempts[uid] = self._attempts.get(uid, 0) + 1
            return self._attempts[uid]

    def _reset_attempts(self, uid: str) -> None:
        with self._cond:
            self._attempts.pop(uid, None)

    def attempts(self, uid: str) -> int:
        """Consecutive backoff failures for ``uid`` since its last success or drop."""
        with self._cond:
            return self._attempts.get(uid, 0)

    def queued(self) -> List[str]:
        with self._cond:
            return list(self._queue)

    def delayed(self) -> List[str]:
        with self._cond:
            return [uid for _, uid in sorted(self._delayed)]

    # -------- reconcile --------

    def reconcile(self, uid: str, cancel: Optional[threading.Event] = None) -> Optional[int]:
        """Fetch fresh state for ``uid`` and hand it to the workload's module."""
        try:
            replica = self.state.get_replica(uid, cancel=cancel)
        except NotFound:
            self.cache.delete(uid)
            raise
        workload = self.state.get_workload_for_replica(replica, cancel=cancel)
        if not is_enabled(workload):
            return None
        if not has_deletion_cost(replica) and not is_accepted(replica):
            log.debug("[controller] replica=%s not running/ready, skipped", uid)
            return None
        return self.manager.handle(replica, workload, cancel=cancel)

    def _run_one(self, uid: str) -> ReconcileResult:
        self._count("reconciles")
        try:
            value = self.reconcile(uid, cancel=self._stop_event)
        except Exception as e:
            err = as_pod_cost_error(e)
            if not isinstance(e, PodCostError):
                log.exception("[controller] replica=%s unexpected failure", uid)
            return self._on_failure(uid, err)
        self._reset_attempts(uid)
        if value is not None:
            self._count("assigned")
        return ReconcileResult(uid=uid, value=value)

    def _on_failure(self, uid: str, err: PodCostError) -> ReconcileResult:
        self._count(f"error_{err.kind.name.lower()}")
        policy = err.requeue
        if policy is Requeue.DROP:
            self._reset_attempts(uid)
            if err.kind is ErrorKind.OWNER_MISSING:
                log.warning("[controller] replica=%s dropped: %s", uid, err)
            else:
                log.debug("[controller] replica=%s dropped: %s", uid, err)
        elif policy is Requeue.IMMEDIATE:
            log.info("[controller] replica=%s requeued: %s", uid, err)
            self.enqueue(uid)
        else:
            attempts = self._next_attempt(uid)
            delay = min(
                float(self.cfg["backoff_max_s"]),
                float(self.cfg["backoff_base_s"]) * (2 ** min(attempts - 1, 32)),
            )
            log.warning(
                "[controller] replica=%s retry #%d in %.2fs: %s",
                uid,
                attempts,
                delay,
                err,
            )
            self._enqueue_after(uid, delay)
        return ReconcileResult(uid=uid, error=err, requeue=policy)

    # -------- runners --------

    def drain(self) -> List[ReconcileResult]:
        """Process queued uids in the calling thread until the queue is empty."""
        results: List[ReconcileResult] = []
        for _ in range(int(self.cfg["drain_limit"])):
            with self._cond:
                uid = self._take_locked()
            if uid is None:
                break
            try:
                results.append(self._run_one(uid))
            finally:
                self._done(uid)
        return results

    def _worker_loop(self):
        poll = max(0.01, float(self.cfg["poll_interval_s"]))
        while not self._stop_event.is_set():
            with self._cond:
                uid = self._take_locked()
                if uid is None:
                    self._cond.wait(poll)
                    continue
            try:
                self._run_one(uid)
            finally:
                self._done(uid)
