#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
podcost/state.py — In-memory cluster store for the deletion-cost controller.

Responsibilities
---------------
- Load a cluster description:        cluster.yaml (nodes, workloads, replica_groups, replicas)
- Maintain thread-safe object maps plus two owner indexes:
    • replica-group uid -> replica uids
    • workload uid      -> replica-group uids
- Offer the collaborator API the allocator consumes:
    • get_replica(uid)                       → Replica copy      (NotFound)
    • list_replicas_by_group(group_uid)      → [Replica copies]
    • list_groups_by_workload(workload_uid)  → [ReplicaGroup copies]
    • get_node(name)                         → Node copy         (NotFound)
    • get_workload_for_replica(replica)      → Workload copy     (OwnerMissing)
    • patch_replica_annotations(uid, ann, expected_version)      (Conflict)
- Publish change events to subscribers (the controller).
- Fault injection for the read/write paths (sim/rollout.py steps, tests).

Design notes
------------
- Every read returns a deep copy: callers hold an observed snapshot whose
  resource_version guards the conditional write.
- Subscribers are notified outside the lock so they may call back in.
- Every collaborator call takes an optional ``cancel`` threading.Event and
  raises Cancelled before touching state when it is set.

Example YAML
------------
nodes:
  - {name: node-a1, labels: {topology.kubernetes.io/zone: us-east-1a}}
workloads:
  - {uid: wl-web, name: web, annotations: {deletion-cost.podcost.dev/enabled: "true"}}
replica_groups:
  - {uid: rg-web-1, name: web-6f7c, workload_uid: wl-web}
replicas:
  - {uid: r-1, group_uid: rg-web-1, node_name: node-a1, phase: Running, ready: true}
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import yaml

from .errors import Cancelled, Conflict, NotFound, OwnerMissing, TransientIO
from .objects import Node, Replica, ReplicaGroup, Workload

log = logging.getLogger("podcost.state")

FAULT_OPS = ("get", "list", "patch")
FAULT_KINDS = ("conflict", "transient", "not_found")


# ----------------------------- helpers -----------------------------

def utc_ms() -> int:
    return int(time.time() * 1000)


def check_cancel(cancel: Optional[threading.Event], op: str) -> None:
    if cancel is not None and cancel.is_set():
        raise Cancelled(f"{op} cancelled")


# ----------------------------- events -----------------------------

class EventKind(Enum):
    REPLICA = "replica"
    WORKLOAD = "workload"


class EventAction(Enum):
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class Event:
    """A change notification; exactly one payload is set, matching ``kind``."""
    kind: EventKind
    action: EventAction
    replica: Optional[Replica] = None
    workload: Optional[Workload] = None

    @classmethod
    def for_replica(cls, replica: Replica, action: EventAction = EventAction.UPSERT) -> "Event":
        return cls(kind=EventKind.REPLICA, action=action, replica=replica)

    @classmethod
    def for_workload(cls, workload: Workload, action: EventAction = EventAction.UPSERT) -> "Event":
        return cls(kind=EventKind.WORKLOAD, action=action, workload=workload)


Listener = Callable[[Event], None]


# ----------------------------- Cluster State -----------------------------

class ClusterState:
    def __init__(self, cluster_path: Optional[str] = None):
        self._lock = threading.RLock()

        self.nodes_by_name: Dict[str, Node] = {}
        self.workloads_by_uid: Dict[str, Workload] = {}
        self.groups_by_uid: Dict[str, ReplicaGroup] = {}
        self.replicas_by_uid: Dict[str, Replica] = {}

        # Owner indexes
        self._replicas_by_group: Dict[str, Set[str]] = {}
        self._groups_by_workload: Dict[str, Set[str]] = {}

        self._listeners: List[Listener] = []
        # op -> pending fault kinds, consumed one per call
        self._faults: Dict[str, List[str]] = {op: [] for op in FAULT_OPS}

        self.cluster_path = Path(cluster_path) if cluster_path else None
        if self.cluster_path is not None:
            self.load(self.cluster_path)

    # -------- loading --------

    def load(self, path: Path) -> None:
        """Load a cluster YAML; a missing file leaves the store empty."""
        path = Path(path)
        if not path.exists():
            log.warning("[state] cluster file not found: %s (starting empty)", path)
            return
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        self.load_dict(data)
        log.info(
            "[state] loaded %s nodes=%d workloads=%d groups=%d replicas=%d",
            path,
            len(self.nodes_by_name),
            len(self.workloads_by_uid),
            len(self.groups_by_uid),
            len(self.replicas_by_uid),
        )

    def load_dict(self, data: Dict[str, Any]) -> None:
        for raw in data.get("nodes") or []:
            self.upsert_node(Node.from_dict(raw))
        for raw in data.get("workloads") or []:
            self.upsert_workload(Workload.from_dict(raw))
        for raw in data.get("replica_groups") or []:
            self.upsert_group(ReplicaGroup.from_dict(raw))
        for raw in data.get("replicas") or []:
            self.upsert_replica(Replica.from_dict(raw))

    # -------- subscriptions & faults --------

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _notify(self, event: Event) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for fn in listeners:
            fn(event)

    def inject_fault(self, op: str, kind: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``op`` fail with ``kind``."""
        if op not in FAULT_OPS:
            raise ValueError(f"unknown op {op!r}, expected one of {FAULT_OPS}")
        if kind not in FAULT_KINDS:
            raise ValueError(f"unknown fault {kind!r}, expected one of {FAULT_KINDS}")
        with self._lock:
            self._faults[op].extend([kind] * max(0, int(times)))

    def clear_faults(self) -> None:
        with self._lock:
            for q in self._faults.values():
                q.clear()

    def _enter(self, op: str, cancel: Optional[threading.Event], **context: Any) -> None:
        check_cancel(cancel, op)
        with self._lock:
            queue = self._faults[op]
            kind = queue.pop(0) if queue else None
        if kind == "conflict":
            raise Conflict(f"injected conflict on {op}", **context)
        if kind == "transient":
            raise TransientIO(f"injected transient failure on {op}", **context)
        if kind == "not_found":
            raise NotFound(f"injected not found on {op}", **context)

    # -------- public API (write) --------

    def apply_observation(self, payload: Dict[str, Any]) -> None:
        """
        Apply one change in the shape /observe and sim/rollout.py use:
        { "kind": "node"|"workload"|"replica_group"|"replica"|"fault",
          "action": "upsert"|"delete", "object": {...} }

        Faults carry {"op": ..., "fault": ..., "times": n} in "object".
        Raises ValueError for unknown kinds/actions, KeyError for missing ids.
        """
        kind = str(payload.get("kind") or "").lower().strip()
        action = str(payload.get("action") or "upsert").lower().strip()
        obj = payload.get("object") or {}
        if action not in ("upsert", "delete"):
            raise ValueError(f"unknown action {action!r}")
        delete = action == "delete"

        if kind == "node":
            if delete:
                self.delete_node(obj["name"])
            else:
                self.upsert_node(Node.from_dict(obj))
        elif kind == "workload":
            if delete:
                self.delete_workload(obj["uid"])
            else:
                self.upsert_workload(Workload.from_dict(obj))
        elif kind == "replica_group":
            if delete:
                self.delete_group(obj["uid"])
            else:
                self.upsert_group(ReplicaGroup.from_dict(obj))
        elif kind == "replica":
            if delete:
                self.delete_replica(obj["uid"])
            else:
                self.upsert_replica(Replica.from_dict(obj))
        elif kind == "fault":
            if delete:
                self.clear_faults()
            else:
                self.inject_fault(obj["op"], obj["fault"], int(obj.get("times", 1)))
        else:
            raise ValueError(f"unknown kind {kind!r}")

    def upsert_node(self, node: Node) -> None:
        with self._lock:
            self.nodes_by_name[node.name] = copy.deepcopy(node)

    def delete_node(self, name: str) -> bool:
        with self._lock:
            return self.nodes_by_name.pop(name, None) is not None

    def upsert_workload(self, workload: Workload) -> None:
        with self._lock:
            self.workloads_by_uid[workload.uid] = copy.deepcopy(workload)
            self._groups_by_workload.setdefault(workload.uid, set())
        self._notify(Event.for_workload(copy.deepcopy(workload)))

    def delete_workload(self, uid: str) -> bool:
        with self._lock:
            wl = self.workloads_by_uid.pop(uid, None)
        if wl is None:
            return False
        self._notify(Event.for_workload(wl, EventAction.DELETE))
        return True

    def upsert_group(self, group: ReplicaGroup) -> None:
        """Store a replica group; its workload is re-announced so early replicas get queued."""
        with self._lock:
            old = self.groups_by_uid.get(group.uid)
            if old is not None and old.workload_uid and old.workload_uid != group.workload_uid:
                self._groups_by_workload.get(old.workload_uid, set()).discard(group.uid)
            self.groups_by_uid[group.uid] = copy.deepcopy(group)
            if group.workload_uid:
                self._groups_by_workload.setdefault(group.workload_uid, set()).add(group.uid)
            owner = copy.deepcopy(self.workloads_by_uid.get(group.workload_uid or ""))
        if owner is not None:
            self._notify(Event.for_workload(owner))

    def delete_group(self, uid: str) -> bool:
        with self._lock:
            group = self.groups_by_uid.pop(uid, None)
            if group is None:
                return False
            if group.workload_uid:
                self._groups_by_workload.get(group.workload_uid, set()).discard(uid)
            return True

    def upsert_replica(self, replica: Replica) -> Replica:
        """Store a replica as the orchestrator reports it; bumps its version."""
        with self._lock:
            old = self.replicas_by_uid.get(replica.uid)
            stored = copy.deepcopy(replica)
            if old is not None:
                stored.resource_version = max(old.resource_version, stored.resource_version) + 1
                if old.group_uid and old.group_uid != stored.group_uid:
                    self._replicas_by_group.get(old.group_uid, set()).discard(stored.uid)
            self.replicas_by_uid[stored.uid] = stored
            if stored.group_uid:
                self._replicas_by_group.setdefault(stored.group_uid, set()).add(stored.uid)
            out = copy.deepcopy(stored)
        self._notify(Event.for_replica(copy.deepcopy(out)))
        return out

    def delete_replica(self, uid: str) -> bool:
        with self._lock:
            replica = self.replicas_by_uid.pop(uid, None)
            if replica is None:
                return False
            if replica.group_uid:
                self._replicas_by_group.get(replica.group_uid, set()).discard(uid)
        self._notify(Event.for_replica(replica, EventAction.DELETE))
        return True

    def patch_replica_annotations(
        self,
        uid: str,
        annotations: Dict[str, str],
        expected_version: int,
        cancel: Optional[threading.Event] = None,
    ) -> Replica:
        """Merge ``annotations`` into the replica if its version still matches."""
        self._enter("patch", cancel, replica=uid)
        with self._lock:
            current = self.replicas_by_uid.get(uid)
            if current is None:
                raise NotFound("replica not found", replica=uid)
            if current.resource_version != expected_version:
                raise Conflict(
                    "stale replica version",
                    replica=uid,
                    expected=expected_version,
                    actual=current.resource_version,
                )
            current.annotations.update(annotations)
            current.resource_version += 1
            out = copy.deepcopy(current)
        self._notify(Event.for_replica(copy.deepcopy(out)))
        return out

    # -------- public API (read) --------

    def get_replica(self, uid: str, cancel: Optional[threading.Event] = None) -> Replica:
        self._enter("get", cancel, replica=uid)
        with self._lock:
            replica = self.replicas_by_uid.get(uid)
            if replica is None:
                raise NotFound("replica not found", replica=uid)
            return copy.deepcopy(replica)

    def list_replicas_by_group(self, group_uid: str, cancel: Optional[threading.Event] = None) -> List[Replica]:
        self._enter("list", cancel, group=group_uid)
        with self._lock:
            uids = sorted(self._replicas_by_group.get(group_uid, ()))
            return [copy.deepcopy(self.replicas_by_uid[u]) for u in uids if u in self.replicas_by_uid]

    def list_groups_by_workload(self, workload_uid: str, cancel: Optional[threading.Event] = None) -> List[ReplicaGroup]:
        self._enter("list", cancel, workload=workload_uid)
        with self._lock:
            uids = sorted(self._groups_by_workload.get(workload_uid, ()))
            return [copy.deepcopy(self.groups_by_uid[u]) for u in uids if u in self.groups_by_uid]

    def get_node(self, name: str, cancel: Optional[threading.Event] = None) -> Node:
        self._enter("get", cancel, node=name)
        with self._lock:
            node = self.nodes_by_name.get(name)
            if node is None:
                raise NotFound("node not found", node=name)
            return copy.deepcopy(node)

    def get_workload(self, uid: str, cancel: Optional[threading.Event] = None) -> Workload:
        self._enter("get", cancel, workload=uid)
        with self._lock:
            wl = self.workloads_by_uid.get(uid)
            if wl is None:
                raise NotFound("workload not found", workload=uid)
            return copy.deepcopy(wl)

    def list_workloads(self) -> List[Workload]:
        with self._lock:
            return [copy.deepcopy(w) for w in self.workloads_by_uid.values()]

    def get_workload_for_replica(self, replica: Replica, cancel: Optional[threading.Event] = None) -> Workload:
        """Two hops: replica -> replica group -> workload."""
        self._enter("get", cancel, replica=replica.uid)
        with self._lock:
            if not replica.group_uid:
                raise OwnerMissing("replica has no owning replica group", replica=replica.uid)
            group = self.groups_by_uid.get(replica.group_uid)
            if group is None:
                raise OwnerMissing(
                    "owning replica group not found",
                    replica=replica.uid,
                    group=replica.group_uid,
                )
            if not group.workload_uid:
                raise OwnerMissing("replica group has no owning workload", group=group.uid)
            wl = self.workloads_by_uid.get(group.workload_uid)
            if wl is None:
                raise OwnerMissing(
                    "owning workload not found",
                    group=group.uid,
                    workload=group.workload_uid,
                )
            return copy.deepcopy(wl)

    def snapshot(self) -> Dict[str, Any]:
        """Return a thread-safe snapshot for API clients."""
        with self._lock:
            return {
                "ts": utc_ms(),
                "nodes": [n.to_dict() for n in self.nodes_by_name.values()],
                "workloads": [w.to_dict() for w in self.workloads_by_uid.values()],
                "replica_groups": [g.to_dict() for g in self.groups_by_uid.values()],
                "replicas": [r.to_dict() for r in self.replicas_by_uid.values()],
            }
