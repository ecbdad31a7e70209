from podcost.objects import SPREAD_BY_ANNOTATION, TOPOLOGY_ZONE_LABEL, Node, Workload
from podcost.zone import resolve_zone


def wl(spread_by=None):
    annotations = {SPREAD_BY_ANNOTATION: spread_by} if spread_by else {}
    return Workload("wl", "wl", annotations=annotations)


def test_topology_label_is_the_default_zone():
    node = Node("n1", {TOPOLOGY_ZONE_LABEL: "eu-west-1a"})
    assert resolve_zone(node, wl()) == "eu-west-1a"


def test_unscheduled_or_unlabelled_replicas_share_the_empty_zone():
    assert resolve_zone(None, wl()) == ""
    assert resolve_zone(Node("n1", {}), wl()) == ""
    assert resolve_zone(None, wl("rack")) == ""


def test_spread_by_label_overrides_topology():
    node = Node("n1", {TOPOLOGY_ZONE_LABEL: "eu-west-1a", "rack": "r7"})
    assert resolve_zone(node, wl("rack")) == "r7"


def test_spread_by_falls_back_to_topology_when_node_lacks_label():
    node = Node("n1", {TOPOLOGY_ZONE_LABEL: "eu-west-1a"})
    assert resolve_zone(node, wl("rack")) == "eu-west-1a"


def test_empty_spread_by_annotation_is_ignored():
    node = Node("n1", {TOPOLOGY_ZONE_LABEL: "eu-west-1a", "": "weird"})
    workload = Workload("wl", "wl", annotations={SPREAD_BY_ANNOTATION: ""})
    assert resolve_zone(node, workload) == "eu-west-1a"
