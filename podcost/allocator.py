#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
podcost/allocator.py — Zone-aware deletion-cost allocation.

What it does
------------
For one unassigned replica:
  1. resolve its zone (node label, see podcost/zone.py)
  2. list its replica-group siblings and keep the ones in the same zone
  3. claim every value those siblings hold, persisted first, pending second
  4. take the highest free value, remember it as pending, patch it onto the replica

Key API
-------
allocator = ZoneAllocator(state, cache)
value     = allocator.process(replica, workload, cancel=None)   # None when nothing was written

register_zone(manager, state, cache, algorithm_types) wires the allocator into a
ModuleManager (podcost/controller.py) for the "zone" and default algorithm types.

Notes
-----
- Uniqueness is per zone per replica-group; two zones may hold equal values.
- A Conflict on the write drops the pending entry; other write failures keep it
  because the value is still believed correct.
- Concurrent calls within one zone are tolerated, not serialized. Two calls that
  both read the pool before either records a pending value can pick the same
  number; the CAS write and later reconciles keep that window small.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence

from .cost_pool import MAX_COST, MIN_COST, CostPool
from .errors import Conflict, NotFound
from .expectations import PendingCache
from .objects import (
    Node,
    Replica,
    Workload,
    cost_annotation,
    get_deletion_cost,
    has_deletion_cost,
)
from .state import ClusterState, check_cancel
from .zone import resolve_zone

log = logging.getLogger("podcost.allocator")

# Algorithm type handled by this allocator; "" means "type not specified".
TYPE_ZONE = "zone"
TYPE_DEFAULT = ""
MODULE_NAME = "zone"


class ZoneAllocator:
    def __init__(
        self,
        state: ClusterState,
        cache: PendingCache,
        max_value: int = MAX_COST,
        min_value: int = MIN_COST,
    ):
        self.state = state
        self.cache = cache
        self.max_value = max_value
        self.min_value = min_value

    # ---------- module interface ----------

    def accept_types(self) -> List[str]:
        return [TYPE_ZONE, TYPE_DEFAULT]

    def handle(self, replica: Replica, workload: Workload, cancel: Optional[threading.Event] = None) -> Optional[int]:
        return self.process(replica, workload, cancel=cancel)

    # ---------- allocation ----------

    def process(self, replica: Replica, workload: Workload, cancel: Optional[threading.Event] = None) -> Optional[int]:
        if has_deletion_cost(replica):
            self.cache.delete(replica.uid)
            log.debug("[zone] replica=%s already has a cost, pending entry cleared", replica.uid)
            return None
        if replica.deleting:
            return None

        nodes: Dict[str, Optional[Node]] = {}
        target_node = self._node_for(replica, nodes, cancel, strict=True)
        zone = resolve_zone(target_node, workload)

        siblings = self._siblings_in_zone(replica, workload, zone, nodes, cancel)

        pool = CostPool(max_value=self.max_value, min_value=self.min_value)
        for sib in siblings:
            if sib.uid == replica.uid:
                continue
            persisted = get_deletion_cost(sib)
            if persisted is not None:
                pool.add(persisted)
                continue
            pending, found = self.cache.get(sib.uid)
            if found:
                pool.add(pending)

        value = pool.find_next_free()
        self.cache.set(replica.uid, value)

        check_cancel(cancel, "patch")
        try:
            self.state.patch_replica_annotations(
                replica.uid,
                cost_annotation(value),
                expected_version=replica.resource_version,
                cancel=cancel,
            )
        except Conflict:
            self.cache.delete(replica.uid)
            raise

        log.info(
            "[zone] updated replica=%s node=%s zone=%r zone_replicas=%d cost=%d",
            replica.uid,
            replica.node_name or "-",
            zone,
            len(siblings),
            value,
        )
        return value

    # ---------- helpers ----------

    def _node_for(
        self,
        replica: Replica,
        nodes: Dict[str, Optional[Node]],
        cancel: Optional[threading.Event],
        strict: bool = False,
    ) -> Optional[Node]:
        """Node hosting ``replica``; None when unscheduled or (siblings only) gone."""
        name = replica.node_name
        if not name:
            return None
        if name in nodes:
            return nodes[name]
        try:
            node: Optional[Node] = self.state.get_node(name, cancel=cancel)
        except NotFound:
            if strict:
                raise
            log.debug("[zone] node=%s of sibling=%s not found, using empty zone", name, replica.uid)
            node = None
        nodes[name] = node
        return node

    def _siblings_in_zone(
        self,
        replica: Replica,
        workload: Workload,
        zone: str,
        nodes: Dict[str, Optional[Node]],
        cancel: Optional[threading.Event],
    ) -> Sequence[Replica]:
        if not replica.group_uid:
            return []
        out: List[Replica] = []
        for sib in self.state.list_replicas_by_group(replica.group_uid, cancel=cancel):
            if resolve_zone(self._node_for(sib, nodes, cancel), workload) != zone:
                continue
            out.append(sib)
        return out


def register_zone(manager, state: ClusterState, cache: PendingCache, algorithm_types: Sequence[str] = ()) -> Optional[ZoneAllocator]:
    """Add a ZoneAllocator to ``manager`` unless ``algorithm_types`` excludes it."""
    if algorithm_types and MODULE_NAME not in algorithm_types:
        log.debug("[zone] module=%s NOT registered (types=%s)", MODULE_NAME, list(algorithm_types))
        return None
    allocator = ZoneAllocator(state, cache)
    try:
        manager.add_module(allocator)
    except ValueError as e:
        raise ValueError(f"register zone module failed: {e}") from e
    log.info("[zone] module=%s registered", MODULE_NAME)
    return allocator
