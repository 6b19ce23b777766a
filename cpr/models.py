from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ContainerState(str, Enum):
    UNKNOWN = "unknown"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"


@dataclass(frozen=True)
class ComponentIdentity:
    """Snapshot of one named container at a point in time."""

    name: str
    instance_id: str | None
    state: ContainerState = ContainerState.UNKNOWN

    def is_restart_of(self, prior_id: str | None) -> bool:
        """New, non-empty id that differs from the prior one, and running."""
        return bool(self.instance_id) and self.instance_id != prior_id and self.state is ContainerState.RUNNING


@dataclass(frozen=True)
class RevisionState:
    current_revision: int | None
    latest_available_revision: int | None

    @property
    def complete(self) -> bool:
        return self.current_revision is not None and self.latest_available_revision is not None
