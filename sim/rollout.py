#!/usr/bin/env python3
"""
Rollout driver for the deletion-cost controller.

- Loads a cluster YAML (nodes, workloads, replica_groups, replicas).
- Applies its `rollout:` steps (scale-ups, deletions, opt-ins, injected faults)
  either:
    a) in-process, against a local ClusterState + Controller (default), or
    b) by POSTing each step to a running API (--remote http://127.0.0.1:8081).
- Reconciles after every step (or once at the end with --batch).
- Prints the per-zone deletion-cost table for each workload.

Usage:
  python3 sim/rollout.py --cluster examples/cluster.yaml
  python3 sim/rollout.py --cluster examples/cluster.yaml --batch --out /tmp/costs.json
  python3 sim/rollout.py --cluster examples/cluster.yaml --remote http://127.0.0.1:8081

Step format (same body /observe accepts):
  rollout:
    - {kind: replica, object: {uid: r-4, group_uid: rg-web-1, node_name: node-b1, phase: Running, ready: true}}
    - {kind: replica, action: delete, object: {uid: r-2}}
    - {kind: fault, object: {op: patch, fault: conflict, times: 1}}
"""

import argparse, json, logging, sys
from pathlib import Path
from typing import Any, Dict, List

import yaml

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from podcost.allocator import register_zone
from podcost.controller import Controller, ModuleManager
from podcost.errors import NotFound, PodCostError
from podcost.expectations import PendingCache
from podcost.objects import get_deletion_cost
from podcost.state import ClusterState
from podcost.zone import resolve_zone

# Optional pretty console
try:
    from rich.console import Console
    from rich.table import Table
    RICH = True
    console = Console()
except ImportError:
    RICH = False
    console = None  # type: ignore

# ----------------------------- Helpers -----------------------------

def load_cluster(path: Path) -> Dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError("cluster YAML must be a mapping")
    return data

def zone_rows_local(state: ClusterState, cache: PendingCache) -> List[Dict[str, Any]]:
    """Flatten workload/group/zone/replica into table rows."""
    pending = cache.snapshot()
    rows: List[Dict[str, Any]] = []
    for wl in state.list_workloads():
        for group in state.list_groups_by_workload(wl.uid):
            for r in state.list_replicas_by_group(group.uid):
                try:
                    node = state.get_node(r.node_name) if r.node_name else None
                except NotFound:
                    node = None
                rows.append({
                    "workload": wl.name,
                    "enabled": wl.enabled,
                    "group": group.name,
                    "zone": resolve_zone(node, wl),
                    "replica": r.uid,
                    "node": r.node_name or None,
                    "cost": get_deletion_cost(r),
                    "pending": pending.get(r.uid),
                })
    return rows

def zone_rows_remote(base: str) -> List[Dict[str, Any]]:
    import requests  # only needed in remote mode
    snap = _remote_json(requests.get(f"{base}/snapshot", timeout=30))
    rows: List[Dict[str, Any]] = []
    for wl in snap.get("workloads") or []:
        data = _remote_json(requests.get(f"{base}/zones/{wl['uid']}", timeout=30))
        enabled = (wl.get("annotations") or {}).get("deletion-cost.podcost.dev/enabled") == "true"
        for g in data.get("groups") or []:
            for zone, replicas in (g.get("zones") or {}).items():
                for r in replicas:
                    rows.append({
                        "workload": wl.get("name"),
                        "enabled": enabled,
                        "group": g.get("name"),
                        "zone": zone,
                        "replica": r.get("uid"),
                        "node": r.get("node"),
                        "cost": r.get("cost"),
                        "pending": r.get("pending"),
                    })
    return rows

def _remote_json(resp) -> Any:
    j = resp.json()
    if not j.get("ok"):
        raise RuntimeError(f"remote error: {j.get('error')}")
    return j["data"]

def print_summary(rows: List[Dict[str, Any]]) -> None:
    rows = sorted(rows, key=lambda r: (r["workload"], r["group"], r["zone"], r["cost"] is None, -(r["cost"] or 0)))
    if not RICH:
        for r in rows:
            print(
                f"{r['workload']:<12} {r['group']:<14} zone={r['zone'] or '-':<12} "
                f"{r['replica']:<10} node={r['node'] or '-':<10} cost={r['cost']}  pending={r['pending']}"
            )
        return

    tbl = Table(title="Deletion costs by zone", show_lines=False)
    tbl.add_column("Workload", style="bold")
    tbl.add_column("Group")
    tbl.add_column("Zone")
    tbl.add_column("Replica")
    tbl.add_column("Node", style="dim")
    tbl.add_column("Cost", justify="right")
    tbl.add_column("Pending", justify="right", style="dim")
    for r in rows:
        wl = r["workload"] if r["enabled"] else f"{r['workload']} [dim](off)[/dim]"
        tbl.add_row(
            wl,
            r["group"],
            r["zone"] or "—",
            r["replica"],
            r["node"] or "—",
            "—" if r["cost"] is None else str(r["cost"]),
            "" if r["pending"] is None else str(r["pending"]),
        )
    console.print(tbl)  # type: ignore

# ----------------------------- Runners -----------------------------

def run_local(cluster: Dict[str, Any], batch: bool) -> List[Dict[str, Any]]:
    state = ClusterState()
    cache = PendingCache()
    manager = ModuleManager()
    register_zone(manager, state, cache)
    controller = Controller(state, manager, cache)

    state.load_dict(cluster)
    controller.drain()

    for step in cluster.get("rollout") or []:
        state.apply_observation(step)
        if not batch:
            controller.drain()
    controller.drain()

    for uid in controller.delayed():
        print(f"[rollout] {uid}: retry still pending (backoff)")
    # unconsumed injected faults are meant for reconciles, not for the report
    state.clear_faults()
    return zone_rows_local(state, cache)

def run_remote(base_url: str, cluster: Dict[str, Any], batch: bool) -> List[Dict[str, Any]]:
    import requests  # only needed in remote mode
    base = base_url.rstrip("/")

    def observe(body: Dict[str, Any]) -> None:
        _remote_json(requests.post(f"{base}/observe", json=body, timeout=30))

    def reconcile() -> None:
        _remote_json(requests.post(f"{base}/reconcile", timeout=120))

    for n in cluster.get("nodes") or []:
        observe({"kind": "node", "object": n})
    for w in cluster.get("workloads") or []:
        observe({"kind": "workload", "object": w})
    for g in cluster.get("replica_groups") or []:
        observe({"kind": "replica_group", "object": g})
    for r in cluster.get("replicas") or []:
        observe({"kind": "replica", "object": r})
    reconcile()

    for step in cluster.get("rollout") or []:
        observe(step)
        if not batch:
            reconcile()
    reconcile()
    return zone_rows_remote(base)

# ----------------------------- CLI -----------------------------

def build_argparser():
    ap = argparse.ArgumentParser(description="Deletion-cost rollout driver")
    ap.add_argument("--cluster", type=str, default=str(ROOT / "examples" / "cluster.yaml"),
                    help="Path to cluster YAML (with optional rollout steps)")
    ap.add_argument("--remote", type=str, default=None, help="Base URL of podcost/api (e.g., http://127.0.0.1:8081)")
    ap.add_argument("--batch", action="store_true", help="Reconcile once after all steps instead of after each")
    ap.add_argument("--out", type=str, default=None, help="Write JSON rows to this path")
    ap.add_argument("--log-level", type=str, default="WARNING")
    return ap

def main():
    ap = build_argparser()
    args = ap.parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s %(message)s")

    cluster_path = Path(args.cluster)
    if not cluster_path.exists():
        print(f"error: cluster file not found: {cluster_path}", file=sys.stderr)
        sys.exit(2)
    try:
        cluster = load_cluster(cluster_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"error: failed to load cluster YAML: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        if args.remote:
            rows = run_remote(args.remote, cluster, batch=args.batch)
        else:
            rows = run_local(cluster, batch=args.batch)
    except (PodCostError, RuntimeError, ValueError, KeyError) as e:
        print(f"error: rollout failed: {e}", file=sys.stderr)
        sys.exit(1)

    print_summary(rows)

    if args.out:
        outp = Path(args.out)
        outp.parent.mkdir(parents=True, exist_ok=True)
        outp.write_text(json.dumps(rows, indent=2), encoding="utf-8")
        print(f"Saved results -> {outp}")

if __name__ == "__main__":
    main()
