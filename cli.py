from __future__ import annotations

import argparse
import json
import sys

import requests

from cpr import db
from cpr.cluster import ClusterAPIError
from cpr.container_ops import make_runtime
from cpr.errors import RecoveryError
from cpr.operators import OPERATOR_RESOURCES, OperatorClient
from cpr.probes import NodeStatusProbe
from cpr.procedure import RecoveryProcedure, build_cluster_client
from cpr.reconciler import RevisionReconciler
from cpr.settings import settings
from cpr.status import render_summary
from cpr.watcher import RestartWatcher


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _cmd_restore(args: argparse.Namespace) -> int:
    proc = RecoveryProcedure.from_settings(settings, backup_dir=args.dir)
    try:
        run_id = proc.run(force=args.force, skip_images=args.skip_images)
    finally:
        proc.close()
    print(f"Recovery run {run_id} complete")
    return 0


def _cmd_baseline(args: argparse.Namespace) -> int:
    runtime = make_runtime(settings)
    try:
        watcher = RestartWatcher(NodeStatusProbe(runtime), settings.recovery_config())
        _print({name: watcher.capture_baseline(name).instance_id for name in args.names})
    finally:
        runtime.close()
    return 0


def _cmd_wait_restart(args: argparse.Namespace) -> int:
    runtime = make_runtime(settings)
    try:
        watcher = RestartWatcher(NodeStatusProbe(runtime), settings.recovery_config())
        ident = watcher.wait_for_restart(args.name, args.prior_id or None, timeout_s=args.timeout)
    finally:
        runtime.close()
    print(f"{args.name} is running: {ident.instance_id}")
    return 0


def _cmd_redeploy(args: argparse.Namespace) -> int:
    runtime = make_runtime(settings)
    client = build_cluster_client(settings)
    try:
        operators = OperatorClient(client)
        reconciler = RevisionReconciler(NodeStatusProbe(runtime, operators), operators, settings.recovery_config())
        for name in args.names:
            rev = reconciler.trigger_and_confirm(name, timeout_s=args.timeout)
            print(f"{name} redeployed: revision {rev}")
    finally:
        runtime.close()
        client.close()
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    client = build_cluster_client(settings)
    try:
        print(render_summary(client))
    except ClusterAPIError as e:
        print(f"Unable to read cluster status: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Control-plane post-rollback recovery")
    p.add_argument("--api", default=settings.api_url, help="Status API base URL (runs/events)")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_restore = sub.add_parser("restore", help="Run the full post-rollback restore procedure")
    s_restore.add_argument("--dir", default=settings.backup_dir, help="Location of backup content")
    s_restore.add_argument("--force", action="store_true", help="Skip ostree deployment check")
    s_restore.add_argument("--skip-images", action="store_true", help="Skip restore of container images")

    s_base = sub.add_parser("baseline", help="Print current container ids")
    s_base.add_argument("names", nargs="+")

    s_wait = sub.add_parser("wait-restart", help="Wait for a container to be replaced by a new running one")
    s_wait.add_argument("name")
    s_wait.add_argument("--prior-id", default="", help="Container id from before the restart")
    s_wait.add_argument("--timeout", type=int, default=None, help="Seconds (default: CPR_RESTART_TIMEOUT_S)")

    s_redeploy = sub.add_parser("redeploy", help="Force and confirm a new revision")
    s_redeploy.add_argument("names", nargs="+", choices=sorted(OPERATOR_RESOURCES))
    s_redeploy.add_argument("--timeout", type=int, default=None, help="Seconds (default: CPR_REDEPLOYMENT_TIMEOUT_S)")

    sub.add_parser("status", help="Show cluster version, operators, nodes and pools")

    s_runs = sub.add_parser("runs", help="List recovery runs (via the status API)")
    s_runs.add_argument("--id", type=int, default=None, help="Show one run with its steps")

    s_ev = sub.add_parser("events", help="Show events (via the status API)")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--run-id", type=int, default=None)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "runs":
        url = f"{base}/runs/{args.id}" if args.id is not None else f"{base}/runs"
        r = requests.get(url, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.run_id is not None:
            params["run_id"] = args.run_id
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    handlers = {
        "restore": _cmd_restore,
        "baseline": _cmd_baseline,
        "wait-restart": _cmd_wait_restart,
        "redeploy": _cmd_redeploy,
        "status": _cmd_status,
    }
    db.init_db()
    try:
        return handlers[args.cmd](args)
    except RecoveryError as e:
        print(f"{e}. Please investigate", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
