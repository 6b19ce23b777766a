from __future__ import annotations

import sys
import time

from . import db
from .errors import NotRunning, ProbeError
from .models import ComponentIdentity, ContainerState
from .polling import Clock, Deadline, PollOutcome, PollResult, Sleeper, poll_until, print_progress
from .probes import StatusProbe
from .settings import RecoveryConfig


class RestartWatcher:
    """Blocks until a named container has been replaced by a new running instance."""

    def __init__(
        self,
        probe: StatusProbe,
        config: RecoveryConfig,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
        progress=print_progress,
        run_id: int | None = None,
    ):
        self.probe = probe
        self.config = config
        self.clock = clock
        self.sleep = sleep
        self.progress = progress
        self.run_id = run_id

    def snapshot(self, name: str) -> ComponentIdentity:
        """Raises ProbeError if the runtime cannot be queried."""
        instance_id = self.probe.get_container_identity(name)
        state = self.probe.get_container_state(name) if instance_id else None
        return ComponentIdentity(name=name, instance_id=instance_id or None, state=state or ContainerState.UNKNOWN)

    def capture_baseline(self, name: str) -> ComponentIdentity:
        try:
            ident = self.snapshot(name)
        except ProbeError as e:
            db.log_event("WARN", f"Could not read baseline container: {e}", component=name, run_id=self.run_id)
            ident = ComponentIdentity(name=name, instance_id=None)
        db.log_event(
            "INFO",
            f"Baseline container id: {ident.instance_id or '-'} ({ident.state.value})",
            component=name,
            run_id=self.run_id,
        )
        return ident

    def wait_for_restart(self, name: str, prior_identity: str | None, timeout_s: int | None = None) -> ComponentIdentity:
        timeout_s = self.config.restart_timeout_s if timeout_s is None else timeout_s
        deadline = Deadline.after(timeout_s, clock=self.clock)
        db.log_event("INFO", f"Waiting for {name} container to restart", component=name, run_id=self.run_id)

        seen: list[ComponentIdentity] = []

        def _check() -> PollOutcome:
            try:
                current = self.snapshot(name)
            except ProbeError as e:
                db.log_event("DEBUG", f"Container probe failed: {e}", component=name, run_id=self.run_id)
                return PollOutcome.PROBE_FAILED
            if current.is_restart_of(prior_identity):
                seen.append(current)
                return PollOutcome.MATCHED
            return PollOutcome.NOT_YET_MATCHED

        result = poll_until(deadline, self.config.poll_interval_s, _check, progress=self.progress, sleep=self.sleep)
        if self.progress is print_progress:
            sys.stdout.write("\n")

        if result is PollResult.SUCCESS:
            final = seen[-1]
        else:
            final = self._final_check(name)
        if not final.is_restart_of(prior_identity):
            err = NotRunning(name, prior_identity, final.instance_id, final.state.value)
            db.log_event("ERROR", f"{err}. Please investigate", component=name, run_id=self.run_id)
            raise err

        db.log_event("INFO", f"{name} container restarted: {final.instance_id}", component=name, run_id=self.run_id)
        return final

    def _final_check(self, name: str) -> ComponentIdentity:
        try:
            return self.snapshot(name)
        except ProbeError as e:
            db.log_event("DEBUG", f"Final container probe failed: {e}", component=name, run_id=self.run_id)
            return ComponentIdentity(name=name, instance_id=None)
