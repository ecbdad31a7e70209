"""
Event filters: which replicas and workloads may trigger an allocation.
"""

from __future__ import annotations

from typing import List

from .objects import PHASE_RUNNING, Replica, Workload, has_deletion_cost
from .state import ClusterState


def is_enabled(workload: Workload) -> bool:
    return workload.enabled


def is_deleting(replica: Replica) -> bool:
    return replica.deleting


def is_accepted(replica: Replica) -> bool:
    """Deleting replicas always pass; others must be running and ready."""
    if is_deleting(replica):
        return True
    return replica.phase == PHASE_RUNNING and replica.ready


def accept_replica(replica: Replica, workload: Workload) -> bool:
    if not is_enabled(workload):
        return False
    if not is_accepted(replica):
        return False
    return not has_deletion_cost(replica)


def accept_workload(workload: Workload) -> bool:
    return is_enabled(workload)


def replicas_to_requeue(state: ClusterState, workload: Workload) -> List[str]:
    """Uids of replicas that still need a cost once ``workload`` is opted in."""
    if not accept_workload(workload):
        return []
    out: List[str] = []
    for group in state.list_groups_by_workload(workload.uid):
        for replica in state.list_replicas_by_group(group.uid):
            if not is_accepted(replica):
                continue
            if has_deletion_cost(replica):
                continue
            out.append(replica.uid)
    return out
