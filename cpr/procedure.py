from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from . import alerts, db
from .cluster import ClusterAPIError, ClusterClient
from .container_ops import make_runtime
from .errors import PreflightError, RecoveryError
from .models import ComponentIdentity
from .operators import OperatorClient
from .polling import Clock, Sleeper, print_progress
from .probes import MutationCommand, NodeStatusProbe, StatusProbe
from .reconciler import RevisionReconciler
from .restore_ops import NodeRestore
from .settings import RecoveryConfig, Settings, settings
from .status import render_summary
from .watcher import RestartWatcher


# Containers that must come back with a new instance after the cluster restore, in order.
RESTART_CONTAINERS: tuple[str, ...] = (
    "etcd",
    "etcd-operator",
    "kube-apiserver-operator",
    "kube-controller-manager-operator",
    "kube-scheduler-operator-container",
)

# Operator-managed components that get a forced redeployment, in order.
REDEPLOY_COMPONENTS: tuple[str, ...] = (
    "etcd",
    "kubeapiserver",
    "kubecontrollermanager",
    "kubescheduler",
)


def failure_detail(err: BaseException) -> str:
    if isinstance(err, RecoveryError):
        return str(err)
    return f"{type(err).__name__}: {err}"


def build_cluster_client(cfg: Settings) -> ClusterClient:
    if not cfg.kubeconfig or not os.access(cfg.kubeconfig, os.R_OK):
        raise PreflightError("kubeconfig", "Please provide kubeconfig location in KUBECONFIG env variable")
    try:
        return ClusterClient.from_kubeconfig(cfg.kubeconfig, timeout_s=cfg.api_timeout_s)
    except ClusterAPIError as e:
        raise PreflightError("kubeconfig", str(e)) from e


class RecoveryProcedure:
    """Post-rollback restore runbook: raw restore, then restart and revision convergence."""

    def __init__(
        self,
        node: NodeRestore,
        probe: StatusProbe,
        command: MutationCommand,
        config: RecoveryConfig,
        cluster: ClusterClient | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
        progress=print_progress,
        restart_containers: tuple[str, ...] = RESTART_CONTAINERS,
        redeploy_components: tuple[str, ...] = REDEPLOY_COMPONENTS,
        resources: tuple[Any, ...] = (),
    ):
        self.node = node
        self.probe = probe
        self.command = command
        self.config = config
        self.cluster = cluster
        self.clock = clock
        self.sleep = sleep
        self.progress = progress
        self.restart_containers = restart_containers
        self.redeploy_components = redeploy_components
        self.resources = resources
        self.last_run_id: int | None = None

    @classmethod
    def from_settings(cls, cfg: Settings = settings, backup_dir: str | None = None) -> RecoveryProcedure:
        cluster = build_cluster_client(cfg)
        try:
            runtime = make_runtime(cfg)
        except ValueError:
            cluster.close()
            raise
        operators = OperatorClient(cluster)
        return cls(
            node=NodeRestore(backup_dir or cfg.backup_dir, cfg.cluster_restore_script),
            probe=NodeStatusProbe(runtime, operators),
            command=operators,
            config=cfg.recovery_config(),
            cluster=cluster,
            resources=(runtime, cluster),
        )

    def close(self) -> None:
        """Release the runtime and API connections handed in as resources."""
        for res in self.resources:
            res.close()

    def watcher(self, run_id: int | None = None) -> RestartWatcher:
        return RestartWatcher(
            self.probe, self.config, clock=self.clock, sleep=self.sleep, progress=self.progress, run_id=run_id
        )

    def reconciler(self, run_id: int | None = None) -> RevisionReconciler:
        return RevisionReconciler(
            self.probe,
            self.command,
            self.config,
            clock=self.clock,
            sleep=self.sleep,
            progress=self.progress,
            run_id=run_id,
        )

    def _timed(
        self,
        run_id: int | None,
        name: str,
        fn: Callable[[], Any],
        component: str | None = None,
        record_revision: bool = False,
    ) -> Any:
        step = db.start_step(run_id, name, component)
        db.log_event("INFO", f"Starting {name}", component=component, run_id=run_id)
        t0 = time.monotonic()
        try:
            result = fn()
        except Exception as e:
            db.finish_step(step.id, "failed", time.monotonic() - t0, detail=failure_detail(e))
            raise
        elapsed = time.monotonic() - t0
        revision = result if record_revision and isinstance(result, int) else None
        db.finish_step(step.id, "done", elapsed, revision=revision)
        db.log_event("INFO", f"Completed {name} in {elapsed:.1f}s", component=component, run_id=run_id)
        return result

    def display_status(self, run_id: int | None = None) -> str | None:
        if self.cluster is None:
            return None
        try:
            summary = render_summary(self.cluster)
        except ClusterAPIError as e:
            db.log_event("WARN", f"Unable to display cluster status: {e}", run_id=run_id)
            return None
        print(summary, flush=True)
        return summary

    def preflight(self, run_id: int | None, force: bool) -> None:
        self.node.check_backup_content()
        if not self.node.deployment_pinned():
            if not force:
                raise PreflightError("ostree", "Active ostree deployment is not pinned and should be rolled back.")
            db.log_event(
                "WARN", "Active ostree deployment is not pinned and should be rolled back.", component="ostree", run_id=run_id
            )

    def wait_for_restarts(self, run_id: int | None, baselines: dict[str, ComponentIdentity]) -> dict[str, ComponentIdentity]:
        watcher = self.watcher(run_id)
        out: dict[str, ComponentIdentity] = {}
        for name in self.restart_containers:
            prior = baselines.get(name)
            out[name] = self._timed(
                run_id,
                "wait-restart",
                lambda name=name, prior=prior: watcher.wait_for_restart(name, prior.instance_id if prior else None),
                component=name,
            )
        return out

    def redeploy_all(self, run_id: int | None, components: tuple[str, ...] | None = None) -> dict[str, int]:
        components = self.redeploy_components if components is None else components

        def _one(name: str) -> int:
            return self._timed(
                run_id,
                "redeploy",
                lambda: self.reconciler(run_id).trigger_and_confirm(name),
                component=name,
                record_revision=True,
            )

        if not self.config.parallel_redeploy or len(components) < 2:
            return {name: _one(name) for name in components}

        with ThreadPoolExecutor(max_workers=len(components)) as pool:
            futures = [(name, pool.submit(_one, name)) for name in components]
        # first failure in caller order wins
        return {name: fut.result() for name, fut in futures}

    def _run_steps(self, run_id: int, force: bool, skip_images: bool) -> None:
        self.preflight(run_id, force)
        self.display_status(run_id)

        if skip_images:
            db.log_event("INFO", "Skipping container image restore", component="images", run_id=run_id)
        else:
            self._timed(run_id, "restore-images", self.node.restore_images, component="images")
        self._timed(run_id, "restore-usrlocal", self.node.restore_usrlocal, component="usrlocal")
        self._timed(run_id, "restore-etc", self.node.restore_etc, component="etc")
        if self.node.has_extras():
            self._timed(run_id, "restore-extras", self.node.restore_extras, component="extras")
        self._timed(run_id, "daemon-reload", self.node.daemon_reload, component="systemd")

        watcher = self.watcher(run_id)
        baselines = {name: watcher.capture_baseline(name) for name in self.restart_containers}

        self._timed(run_id, "restore-cluster", self.node.restore_cluster, component="cluster")
        self._timed(run_id, "restart-kubelet", lambda: self.node.restart_unit("kubelet.service"), component="kubelet")
        self._timed(run_id, "restart-crio", lambda: self.node.restart_unit("crio.service"), component="crio")

        db.log_event("INFO", "Waiting for required container restarts", run_id=run_id)
        self.wait_for_restarts(run_id, baselines)
        db.log_event("INFO", "Required containers have restarted", run_id=run_id)

        db.log_event("INFO", "Triggering redeployments", run_id=run_id)
        self.redeploy_all(run_id)
        db.log_event("INFO", "Redeployments complete", run_id=run_id)

        self.display_status(run_id)

    def run(self, force: bool = False, skip_images: bool = False) -> int:
        """Run the whole procedure; returns the run id. Any failure marks the run failed, alerts and is re-raised."""
        run = db.create_run(self.node.backup_dir)
        self.last_run_id = run.id
        db.log_event("INFO", f"Recovery run {run.id} started from {self.node.backup_dir}", run_id=run.id)
        try:
            self._run_steps(run.id, force, skip_images)
        except Exception as e:
            component = e.component if isinstance(e, RecoveryError) else "procedure"
            detail = failure_detail(e)
            db.finish_run(run.id, "failed", detail)
            db.log_event("ERROR", f"Recovery failed: {detail}", component=component, run_id=run.id)
            alerts.notify_run_failed(run.id, e)
            raise
        db.finish_run(run.id, "succeeded", "Recovery complete")
        db.log_event("INFO", "Recovery complete", run_id=run.id)
        return run.id
