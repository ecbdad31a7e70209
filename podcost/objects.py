#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
podcost/objects.py — Cluster object model for the deletion-cost controller.

Objects
-------
Node          name + labels (one label carries the zone)
Workload      top-level owner; opt-in, spread-by and type live in annotations
ReplicaGroup  direct parent of replicas, points at its workload
Replica       schedulable unit; the deletion cost is persisted in annotations

Parent references are typed fields (Replica.group_uid, ReplicaGroup.workload_uid)
resolved through ClusterState indexes, never by matching owner kinds.

Annotation keys
---------------
DELETION_COST_ANNOTATION   decimal string read by the orchestrator on scale-down
ENABLE_ANNOTATION          "true" opts a workload in
SPREAD_BY_ANNOTATION       node label used to derive the zone (override)
TYPE_ANNOTATION            allocation algorithm ("zone" or empty)
"""

from __future__ import annotations

import copy
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

DELETION_COST_ANNOTATION = "controller.kubernetes.io/pod-deletion-cost"
ENABLE_ANNOTATION = "deletion-cost.podcost.dev/enabled"
SPREAD_BY_ANNOTATION = "deletion-cost.podcost.dev/spread-by"
TYPE_ANNOTATION = "deletion-cost.podcost.dev/type"

TOPOLOGY_ZONE_LABEL = "topology.kubernetes.io/zone"

PHASE_PENDING = "Pending"
PHASE_RUNNING = "Running"

# decimal, optional sign, ASCII digits only; no padding or underscores
_COST_RE = re.compile(r"[+-]?[0-9]+")


# ----------------------------- helpers -----------------------------

def safe_int(x: Any) -> Optional[int]:
    try:
        return int(str(x).strip())
    except (TypeError, ValueError):
        return None


def _str_map(raw: Any) -> Dict[str, str]:
    if not raw:
        return {}
    return {str(k): str(v) for k, v in dict(raw).items()}


# ----------------------------- data classes -----------------------------

@dataclass
class Node:
    name: str
    labels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Node":
        return cls(name=str(d["name"]), labels=_str_map(d.get("labels")))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Workload:
    uid: str
    name: str = ""
    namespace: str = "default"
    annotations: Dict[str, str] = field(default_factory=dict)

    @property
    def enabled(self) -> bool:
        return self.annotations.get(ENABLE_ANNOTATION) == "true"

    @property
    def spread_by(self) -> Optional[str]:
        return self.annotations.get(SPREAD_BY_ANNOTATION) or None

    @property
    def algorithm_type(self) -> str:
        return self.annotations.get(TYPE_ANNOTATION, "")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Workload":
        return cls(
            uid=str(d["uid"]),
            name=str(d.get("name") or d["uid"]),
            namespace=str(d.get("namespace") or "default"),
            annotations=_str_map(d.get("annotations")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReplicaGroup:
    uid: str
    name: str = ""
    namespace: str = "default"
    workload_uid: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ReplicaGroup":
        return cls(
            uid=str(d["uid"]),
            name=str(d.get("name") or d["uid"]),
            namespace=str(d.get("namespace") or "default"),
            workload_uid=d.get("workload_uid") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Replica:
    """Observed state of one replica. ``resource_version`` guards conditional writes."""
    uid: str
    name: str = ""
    namespace: str = "default"
    group_uid: Optional[str] = None
    node_name: str = ""
    phase: str = PHASE_PENDING
    ready: bool = False
    deleting: bool = False
    annotations: Dict[str, str] = field(default_factory=dict)
    resource_version: int = 1

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Replica":
        return cls(
            uid=str(d["uid"]),
            name=str(d.get("name") or d["uid"]),
            namespace=str(d.get("namespace") or "default"),
            group_uid=d.get("group_uid") or None,
            node_name=str(d.get("node_name") or ""),
            phase=str(d.get("phase") or PHASE_PENDING),
            ready=bool(d.get("ready", False)),
            deleting=bool(d.get("deleting", False)),
            annotations=_str_map(d.get("annotations")),
            resource_version=safe_int(d.get("resource_version")) or 1,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def copy(self) -> "Replica":
        return copy.deepcopy(self)


# ----------------------------- deletion cost -----------------------------

def has_deletion_cost(replica: Replica) -> bool:
    """True if the cost annotation is present at all, parseable or not."""
    return DELETION_COST_ANNOTATION in replica.annotations


def get_deletion_cost(replica: Replica) -> Optional[int]:
    """Persisted cost, or None when absent or malformed."""
    raw = replica.annotations.get(DELETION_COST_ANNOTATION)
    if raw is None or not _COST_RE.fullmatch(raw):
        return None
    return int(raw)


def cost_annotation(value: int) -> Dict[str, str]:
    return {DELETION_COST_ANNOTATION: str(int(value))}
