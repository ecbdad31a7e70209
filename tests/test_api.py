import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from podcost import api
from podcost.cost_pool import MAX_COST

CLUSTER = ROOT / "examples" / "cluster.yaml"


@pytest.fixture()
def client():
    api.configure(str(CLUSTER))
    with api.app.test_client() as client:
        yield client


def new_replica(uid, node_name="node-a1"):
    return {
        "kind": "replica",
        "object": {
            "uid": uid,
            "group_uid": "rg-web-1",
            "node_name": node_name,
            "phase": "Running",
            "ready": True,
        },
    }


def test_health_and_ready(client):
    for path in ("/healthz", "/health", "/readyz"):
        response = client.get(path)
        assert response.status_code == 200
        assert response.get_json()["ok"] is True


def test_startup_resync_queues_opted_in_replicas(client):
    payload = client.get("/snapshot").get_json()
    assert payload["ok"] is True
    data = payload["data"]
    assert data["queued"] == ["r-1", "r-2", "r-3"]
    assert data["pending"] == {}
    assert len(data["replicas"]) == 7


def test_reconcile_assigns_costs_per_zone(client):
    response = client.post("/reconcile")
    assert response.status_code == 200
    data = response.get_json()["data"]

    assert data["assigned"] == {"r-1": MAX_COST, "r-2": MAX_COST - 1, "r-3": MAX_COST}
    assert data["failed"] == []
    # assignments were observed back, nothing stays pending
    assert client.get("/pending").get_json()["data"] == {}

    stats = client.get("/snapshot").get_json()["data"]["stats"]
    assert stats["assigned"] == 3


def test_zone_table(client):
    client.post("/reconcile")
    response = client.get("/zones/wl-web")
    assert response.status_code == 200
    [group] = response.get_json()["data"]["groups"]
    zones = group["zones"]

    assert [r["uid"] for r in zones["us-east-1a"]] == ["r-1", "r-2"]
    assert [r["cost"] for r in zones["us-east-1a"]] == [MAX_COST, MAX_COST - 1]
    assert zones["us-east-1c"][0]["cost"] is None


def test_zone_table_unknown_workload(client):
    response = client.get("/zones/wl-nope")
    assert response.status_code == 404
    assert response.get_json()["ok"] is False


def test_zone_table_list_failure_is_a_json_error(client):
    api.RT.state.inject_fault("list", "transient")
    response = client.get("/zones/wl-web")
    assert response.status_code == 503
    payload = response.get_json()
    assert payload["ok"] is False
    assert payload["kind"] == "TRANSIENT_IO"
    assert "injected transient failure on list" in payload["error"]

    # fault consumed, the next call succeeds
    assert client.get("/zones/wl-web").status_code == 200


def test_observe_then_reconcile(client):
    client.post("/reconcile")
    response = client.post("/observe", json=new_replica("r-4"))
    assert response.status_code == 200
    assert response.get_json()["data"]["queued"] == ["r-4"]

    data = client.post("/reconcile").get_json()["data"]
    assert data["assigned"] == {"r-4": MAX_COST - 2}


def test_observe_injected_conflict_is_retried(client):
    client.post("/reconcile")
    client.post("/observe", json={"kind": "fault", "object": {"op": "patch", "fault": "conflict"}})
    client.post("/observe", json=new_replica("r-5", node_name="node-b1"))

    data = client.post("/reconcile").get_json()["data"]
    assert data["failed"] == ["r-5"]
    assert data["results"][0]["requeue"] == "IMMEDIATE"
    assert data["results"][0]["error"]["kind"] == "CONFLICT"
    assert data["assigned"] == {"r-5": MAX_COST - 1}


def test_opting_in_requeues_workload_replicas(client):
    client.post("/reconcile")
    body = {
        "kind": "workload",
        "object": {
            "uid": "wl-batch",
            "name": "batch",
            "annotations": {
                "deletion-cost.podcost.dev/enabled": "true",
                "deletion-cost.podcost.dev/spread-by": "rack",
            },
        },
    }
    assert client.post("/observe", json=body).get_json()["data"]["queued"] == ["b-1", "b-2", "b-3"]

    data = client.post("/reconcile").get_json()["data"]
    # b-1 and b-3 share rack r1 across zones; b-2 is alone on r2
    assert data["assigned"] == {"b-1": MAX_COST, "b-2": MAX_COST, "b-3": MAX_COST - 1}


@pytest.mark.parametrize(
    "body, fragment",
    [
        ({"kind": "pod", "object": {}}, "unknown kind"),
        ({"kind": "replica", "action": "evict", "object": {"uid": "x"}}, "unknown action"),
        ({"kind": "replica", "object": {"node_name": "n"}}, "missing field"),
    ],
)
def test_observe_rejects_bad_bodies(client, body, fragment):
    response = client.post("/observe", json=body)
    assert response.status_code == 400
    payload = response.get_json()
    assert payload["ok"] is False
    assert fragment in payload["error"]


def test_observe_requires_json(client):
    response = client.post("/observe", data="kind=replica")
    assert response.status_code == 400
