import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from podcost.expectations import PendingCache
from podcost.objects import (
    ENABLE_ANNOTATION,
    PHASE_RUNNING,
    TOPOLOGY_ZONE_LABEL,
    Node,
    Replica,
    ReplicaGroup,
    Workload,
    cost_annotation,
)
from podcost.state import ClusterState

ZONE_A = "us-east-1a"
ZONE_B = "us-east-1b"


@pytest.fixture()
def state():
    """Two zones (a1/a2 in A, b1 in B), a label-less node, one opted-in workload."""
    st = ClusterState()
    st.upsert_node(Node("node-a1", {TOPOLOGY_ZONE_LABEL: ZONE_A, "rack": "r1"}))
    st.upsert_node(Node("node-a2", {TOPOLOGY_ZONE_LABEL: ZONE_A, "rack": "r2"}))
    st.upsert_node(Node("node-b1", {TOPOLOGY_ZONE_LABEL: ZONE_B, "rack": "r1"}))
    st.upsert_node(Node("node-bare", {}))
    st.upsert_workload(Workload("wl-web", "web", annotations={ENABLE_ANNOTATION: "true"}))
    st.upsert_group(ReplicaGroup("rg-1", "web-6f7c", workload_uid="wl-web"))
    return st


@pytest.fixture()
def cache():
    return PendingCache()


@pytest.fixture()
def add_replica(state):
    """Upsert a running, ready replica of rg-1; ``cost`` pre-sets the annotation."""

    def _add(uid, node_name="node-a1", cost=None, group_uid="rg-1", **fields):
        annotations = dict(fields.pop("annotations", {}) or {})
        if cost is not None:
            annotations.update(cost_annotation(cost))
        fields.setdefault("phase", PHASE_RUNNING)
        fields.setdefault("ready", True)
        return state.upsert_replica(
            Replica(uid=uid, name=uid, group_uid=group_uid, node_name=node_name, annotations=annotations, **fields)
        )

    return _add
