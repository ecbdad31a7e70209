#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
podcost/api.py — Flask API for the deletion-cost controller

Endpoints
---------
GET  /healthz | /health
GET  /readyz
GET  /snapshot
POST /observe            { kind: "node"|"workload"|"replica_group"|"replica"|"fault", action?: "upsert"|"delete", object: {...} }
POST /reconcile          drain the queue synchronously, return per-replica results
GET  /pending            pending (not yet observed) cost assignments
GET  /zones/<workload>   per replica-group, per zone: replicas and their costs

Run
---
export FLASK_APP=podcost.api:app
flask run -h 0.0.0.0 -p 8081

or:

python3 -m podcost.api --cluster examples/cluster.yaml --port 8081 --workers 4
"""

from __future__ import annotations
import argparse
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from flask import Flask, jsonify, request

from .allocator import register_zone
from .controller import Controller, ModuleManager
from .errors import NotFound, PodCostError
from .expectations import PendingCache
from .objects import Workload, get_deletion_cost
from .state import ClusterState, utc_ms
from .zone import resolve_zone

log = logging.getLogger("podcost.api")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


# -----------------------------------
# Runtime wiring
# -----------------------------------


@dataclass
class Runtime:
    state: ClusterState
    cache: PendingCache
    manager: ModuleManager
    controller: Controller


def build_runtime(
    cluster_path: Optional[str] = None,
    algorithm_types: Sequence[str] = (),
    **controller_cfg,
) -> Runtime:
    state = ClusterState(cluster_path)
    cache = PendingCache()
    manager = ModuleManager()
    register_zone(manager, state, cache, algorithm_types)
    controller = Controller(state, manager, cache, **controller_cfg)
    controller.resync()
    return Runtime(state=state, cache=cache, manager=manager, controller=controller)


RT = build_runtime(os.environ.get("PODCOST_CLUSTER", "cluster.yaml"))

app = Flask(__name__)


def configure(cluster_path: Optional[str] = None, algorithm_types: Sequence[str] = (), **controller_cfg) -> Runtime:
    """Replace the process runtime (stops the old workers first)."""
    global RT
    RT.controller.stop()
    RT = build_runtime(cluster_path, algorithm_types, **controller_cfg)
    log.info(
        "[api] runtime configured cluster=%s types=%s queued=%d",
        cluster_path,
        list(algorithm_types) or "all",
        len(RT.controller.queued()),
    )
    return RT


# -----------------------------------
# Helpers
# -----------------------------------


def _ok(data: Any, status: int = 200):
    return jsonify({"ok": True, "data": data}), status


def _err(msg: str, status: int = 400, **extra):
    return jsonify({"ok": False, "error": msg, **extra}), status


def _zone_table(workload: Workload) -> List[Dict[str, Any]]:
    groups = []
    pending = RT.cache.snapshot()
    for group in RT.state.list_groups_by_workload(workload.uid):
        zones: Dict[str, List[Dict[str, Any]]] = {}
        for replica in RT.state.list_replicas_by_group(group.uid):
            node = None
            if replica.node_name:
                try:
                    node = RT.state.get_node(replica.node_name)
                except NotFound:
                    node = None
            zone = resolve_zone(node, workload)
            zones.setdefault(zone, []).append(
                {
                    "uid": replica.uid,
                    "name": replica.name,
                    "node": replica.node_name or None,
                    "cost": get_deletion_cost(replica),
                    "pending": pending.get(replica.uid),
                }
            )
        for rows in zones.values():
            rows.sort(key=lambda r: (r["cost"] is None, -(r["cost"] or 0), r["uid"]))
        groups.append({"group": group.uid, "name": group.name, "zones": zones})
    return groups


# -----------------------------------
# Routes
# -----------------------------------


@app.get("/healthz")
@app.get("/health")
def healthz():
    return _ok({"ts": utc_ms()})


@app.get("/readyz")
def readyz():
    if not RT.controller.healthy:
        return _err("workers not running", status=503)
    return _ok({"ts": utc_ms(), "running": RT.controller.running})


@app.get("/snapshot")
def snapshot():
    snap = RT.state.snapshot()
    snap["pending"] = RT.cache.snapshot()
    snap["queued"] = RT.controller.queued()
    snap["stats"] = dict(RT.controller.stats)
    return _ok(snap)


@app.post("/observe")
def observe():
    if not request.is_json:
        return _err("expected JSON body")
    body = request.get_json() or {}
    try:
        RT.state.apply_observation(body)
    except KeyError as e:
        return _err(f"object missing field {e}")
    except ValueError as e:
        return _err(str(e))
    return _ok({"applied": True, "queued": RT.controller.queued()})


@app.post("/reconcile")
def reconcile():
    results = RT.controller.drain()
    return _ok(
        {
            "results": [r.to_dict() for r in results],
            "assigned": {r.uid: r.value for r in results if r.ok and r.value is not None},
            "failed": [r.uid for r in results if not r.ok],
            "delayed": RT.controller.delayed(),
        }
    )


@app.get("/pending")
def pending():
    return _ok(RT.cache.snapshot())


@app.get("/zones/<workload_uid>")
def zones(workload_uid: str):
    try:
        workload = RT.state.get_workload(workload_uid)
        groups = _zone_table(workload)
    except NotFound as e:
        return _err(str(e), status=404)
    except PodCostError as e:
        log.warning("[api] zone table failed workload=%s: %s", workload_uid, e)
        return _err(str(e), status=503, kind=e.kind.name)
    return _ok({"workload": workload.uid, "groups": groups})


# -----------------------------------
# CLI entrypoint
# -----------------------------------


def main():
    ap = argparse.ArgumentParser(description="Zone-aware deletion-cost controller")
    ap.add_argument("--host", default=os.environ.get("PODCOST_API_HOST", "127.0.0.1"))
    ap.add_argument(
        "--port", type=int, default=int(os.environ.get("PODCOST_API_PORT", "8081"))
    )
    ap.add_argument("--cluster", default=os.environ.get("PODCOST_CLUSTER", "cluster.yaml"))
    ap.add_argument(
        "--workers", type=int, default=int(os.environ.get("PODCOST_WORKERS", "4"))
    )
    ap.add_argument(
        "--algorithm-type",
        action="append",
        default=[],
        help="algorithm types to enable (repeatable; default: all)",
    )
    ap.add_argument("--log-level", default=os.environ.get("PODCOST_LOG_LEVEL", "INFO"))
    ap.add_argument("--debug", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    rt = configure(args.cluster, args.algorithm_type, workers=args.workers)
    if args.workers > 0:
        rt.controller.start()
    try:
        app.run(host=args.host, port=args.port, debug=args.debug, use_reloader=False)
    finally:
        rt.controller.stop()


if __name__ == "__main__":
    main()
