from __future__ import annotations


class RecoveryError(RuntimeError):
    """A fatal outcome for one component; the caller should halt the recovery."""

    def __init__(self, component: str, message: str):
        super().__init__(f"{component}: {message}")
        self.component = component


class InfoUnavailable(RecoveryError):
    pass


class MutationRejected(RecoveryError):
    pass


class ConvergenceTimeout(RecoveryError):
    def __init__(self, component: str, expected: int, observed: int | None):
        super().__init__(
            component,
            f"revision did not reach {expected} in time (last observed: {observed if observed is not None else 'unknown'})",
        )
        self.expected = expected
        self.observed = observed


class NotRunning(RecoveryError):
    def __init__(self, component: str, prior_identity: str | None, observed_identity: str | None, observed_state: str):
        super().__init__(
            component,
            f"container is not running a new instance (prior id: {prior_identity or '-'}, "
            f"observed id: {observed_identity or '-'}, state: {observed_state})",
        )
        self.prior_identity = prior_identity
        self.observed_identity = observed_identity
        self.observed_state = observed_state


class PreflightError(RecoveryError):
    pass


class CommandFailed(RecoveryError):
    def __init__(self, component: str, cmd: list[str], returncode: int, stderr: str = ""):
        tail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        super().__init__(component, f"`{' '.join(cmd)}` exited with {returncode}" + (f": {tail}" if tail else ""))
        self.cmd = cmd
        self.returncode = returncode


class ProbeError(Exception):
    """A status query failed transiently. Never surfaced by the polling loop."""
