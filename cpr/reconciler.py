from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from enum import Enum

from . import db
from .cluster import ClusterAPIError
from .errors import ConvergenceTimeout, InfoUnavailable, MutationRejected, ProbeError
from .models import RevisionState
from .polling import Clock, Deadline, PollOutcome, PollResult, Sleeper, poll_until, print_progress
from .probes import MutationCommand, StatusProbe
from .settings import RecoveryConfig


class AttemptState(str, Enum):
    IDLE = "idle"
    BASELINE_READ = "baseline_read"
    MUTATING = "mutating"
    POLLING = "polling"
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


_TRANSITIONS: dict[AttemptState, set[AttemptState]] = {
    AttemptState.IDLE: {AttemptState.BASELINE_READ},
    AttemptState.BASELINE_READ: {AttemptState.MUTATING, AttemptState.FAILED},
    AttemptState.MUTATING: {AttemptState.POLLING, AttemptState.FAILED},
    AttemptState.POLLING: {AttemptState.CONVERGED, AttemptState.TIMED_OUT},
    AttemptState.CONVERGED: set(),
    AttemptState.TIMED_OUT: set(),
    AttemptState.FAILED: set(),
}


@dataclass
class ReconcileAttempt:
    component: str
    state: AttemptState = AttemptState.IDLE
    baseline: RevisionState | None = None
    expected_revision: int | None = None
    applied_revision: int | None = None
    marker: str | None = None
    history: list[AttemptState] = field(default_factory=lambda: [AttemptState.IDLE])

    def advance(self, new_state: AttemptState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal reconcile transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


class RevisionReconciler:
    """Forces a new revision of an operator-managed component and waits for it to roll out."""

    def __init__(
        self,
        probe: StatusProbe,
        command: MutationCommand,
        config: RecoveryConfig,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
        progress=print_progress,
        run_id: int | None = None,
    ):
        self.probe = probe
        self.command = command
        self.config = config
        self.clock = clock
        self.sleep = sleep
        self.progress = progress
        self.run_id = run_id
        self.last_attempt: ReconcileAttempt | None = None

    def _log(self, level: str, message: str, name: str) -> None:
        db.log_event(level, message, component=name, run_id=self.run_id)

    def _read_current(self, name: str) -> int | None:
        try:
            return self.probe.get_current_revision(name)
        except ProbeError:
            return None

    def read_baseline(self, name: str) -> RevisionState:
        try:
            current = self.probe.get_current_revision(name)
            latest = self.probe.get_latest_available_revision(name)
        except ProbeError:
            current, latest = None, None
        return RevisionState(current_revision=current, latest_available_revision=latest)

    def trigger_and_confirm(self, name: str, timeout_s: int | None = None) -> int:
        """Force a new revision of `name` and return the revision it converged to."""
        timeout_s = self.config.redeployment_timeout_s if timeout_s is None else timeout_s
        deadline = Deadline.after(timeout_s, clock=self.clock)
        attempt = ReconcileAttempt(component=name)
        self.last_attempt = attempt
        self._log("INFO", f"Triggering {name} redeployment", name)

        attempt.advance(AttemptState.BASELINE_READ)
        baseline = self.read_baseline(name)
        attempt.baseline = baseline
        if not baseline.complete:
            attempt.advance(AttemptState.FAILED)
            err = InfoUnavailable(
                name,
                f"failed to get revision info (current: {baseline.current_revision}, "
                f"latest available: {baseline.latest_available_revision})",
            )
            self._log("ERROR", str(err), name)
            raise err

        expected = baseline.latest_available_revision + 1
        attempt.expected_revision = expected

        attempt.advance(AttemptState.MUTATING)
        self._log(
            "INFO",
            f"Patching {name}. Starting rev is {baseline.current_revision}. Expected new rev is {expected}.",
            name,
        )
        try:
            marker = self.command.force_new_revision(name)
        except MutationRejected as e:
            attempt.advance(AttemptState.FAILED)
            self._log("ERROR", f"{e}. Please investigate", name)
            raise
        except ClusterAPIError as e:
            attempt.advance(AttemptState.FAILED)
            err = MutationRejected(name, f"patch rejected: {e}")
            self._log("ERROR", f"{err}. Please investigate", name)
            raise err from e
        attempt.marker = marker if isinstance(marker, str) else None

        attempt.advance(AttemptState.POLLING)
        observed: list[int] = []

        def _check() -> PollOutcome:
            rev = self._read_current(name)
            if rev is None:
                # intermittent API failure
                self._log("DEBUG", "Current revision unreadable, retrying", name)
                return PollOutcome.PROBE_FAILED
            observed.append(rev)
            return PollOutcome.MATCHED if rev >= expected else PollOutcome.NOT_YET_MATCHED

        result = poll_until(deadline, self.config.poll_interval_s, _check, progress=self.progress, sleep=self.sleep)
        if self.progress is print_progress:
            sys.stdout.write("\n")

        final = self._read_current(name)
        if result is PollResult.SUCCESS:
            # the counter only moves forward; keep the best reading we have
            applied = max(v for v in (final, observed[-1]) if v is not None)
        else:
            applied = final
            if applied is None or applied < expected:
                attempt.advance(AttemptState.TIMED_OUT)
                last = applied if applied is not None else (observed[-1] if observed else None)
                err = ConvergenceTimeout(name, expected, last)
                self._log("ERROR", f"Failed to redeploy {name}: {err}. Please investigate", name)
                raise err

        attempt.applied_revision = applied
        attempt.advance(AttemptState.CONVERGED)
        self._log("INFO", f"{name} redeployed successfully: revision {applied}", name)
        return applied
