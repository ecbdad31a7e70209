from podcost.objects import (
    ENABLE_ANNOTATION,
    PHASE_PENDING,
    PHASE_RUNNING,
    Replica,
    Workload,
    cost_annotation,
)
from podcost.predicate import (
    accept_replica,
    accept_workload,
    is_accepted,
    is_enabled,
    replicas_to_requeue,
)

ON = Workload("wl", "wl", annotations={ENABLE_ANNOTATION: "true"})
OFF = Workload("wl", "wl", annotations={ENABLE_ANNOTATION: "false"})


def test_enabled_requires_exact_true():
    assert is_enabled(ON)
    assert not is_enabled(OFF)
    assert not is_enabled(Workload("wl", annotations={ENABLE_ANNOTATION: "True"}))
    assert not is_enabled(Workload("wl"))
    assert accept_workload(ON) and not accept_workload(OFF)


def test_accepted_means_running_and_ready_or_deleting():
    assert is_accepted(Replica("r", phase=PHASE_RUNNING, ready=True))
    assert not is_accepted(Replica("r", phase=PHASE_RUNNING, ready=False))
    assert not is_accepted(Replica("r", phase=PHASE_PENDING, ready=True))
    assert is_accepted(Replica("r", phase=PHASE_PENDING, ready=False, deleting=True))


def test_accept_replica():
    ready = Replica("r", phase=PHASE_RUNNING, ready=True)
    assert accept_replica(ready, ON)
    assert not accept_replica(ready, OFF)
    costed = Replica("r", phase=PHASE_RUNNING, ready=True, annotations=cost_annotation(7))
    assert not accept_replica(costed, ON)
    malformed = Replica("r", phase=PHASE_RUNNING, ready=True, annotations={"controller.kubernetes.io/pod-deletion-cost": "x"})
    assert not accept_replica(malformed, ON)


def test_replicas_to_requeue_lists_ready_uncosted_replicas(state, add_replica):
    add_replica("r-1")
    add_replica("r-2", cost=5)
    add_replica("r-3", ready=False)
    add_replica("r-4", node_name="node-b1")
    workload = state.get_workload("wl-web")
    assert sorted(replicas_to_requeue(state, workload)) == ["r-1", "r-4"]


def test_replicas_to_requeue_is_empty_for_disabled_workload(state, add_replica):
    add_replica("r-1")
    assert replicas_to_requeue(state, OFF) == []
