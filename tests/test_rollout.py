import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from podcost.cost_pool import MAX_COST
from sim.rollout import load_cluster, print_summary, run_local

CLUSTER = ROOT / "examples" / "cluster.yaml"


def test_demo_rollout_costs():
    rows = run_local(load_cluster(CLUSTER), batch=False)
    costs = {r["replica"]: r["cost"] for r in rows}

    assert costs == {
        "r-1": MAX_COST,
        "r-3": MAX_COST,
        "r-4": MAX_COST - 2,
        "r-5": MAX_COST - 1,
        "r-9": MAX_COST,
        "b-1": MAX_COST,
        "b-2": MAX_COST,
        "b-3": MAX_COST - 1,
    }
    assert all(r["pending"] is None for r in rows)


def test_leftover_list_fault_does_not_break_the_report(capsys):
    cluster = load_cluster(CLUSTER)
    cluster["rollout"] = [{"kind": "fault", "object": {"op": "list", "fault": "transient", "times": 3}}]

    rows = run_local(cluster, batch=True)

    assert {r["replica"] for r in rows if r["cost"] is not None} == {"r-1", "r-2", "r-3"}
    print_summary(rows)
    assert "r-1" in capsys.readouterr().out
