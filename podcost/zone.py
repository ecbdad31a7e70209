"""Zone derivation for replicas: which node label groups them."""

from __future__ import annotations

from typing import Optional

from .objects import TOPOLOGY_ZONE_LABEL, Node, Workload


def resolve_zone(node: Optional[Node], workload: Workload) -> str:
    """
    Zone string for a replica hosted on ``node`` and owned by ``workload``.

    The workload's spread-by label wins when the node carries it; otherwise the
    standard topology label is used. Never raises: unscheduled replicas and
    label-less nodes all land in the "" zone.
    """
    if node is None:
        return ""
    labels = node.labels or {}
    spread_by = workload.spread_by
    if spread_by and spread_by in labels:
        return labels[spread_by]
    return labels.get(TOPOLOGY_ZONE_LABEL, "")
