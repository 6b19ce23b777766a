from __future__ import annotations

from typing import Protocol

from .models import ComponentIdentity, ContainerState
from .operators import OperatorClient


class StatusProbe(Protocol):
    """Read-only view of the node and cluster.

    Container lookups raise ProbeError when the runtime cannot be queried and
    return None when no container of that name exists. Revision lookups return
    None when the value cannot be read.
    """

    def get_container_identity(self, name: str) -> str | None: ...

    def get_container_state(self, name: str) -> ContainerState | None: ...

    def get_current_revision(self, name: str) -> int | None: ...

    def get_latest_available_revision(self, name: str) -> int | None: ...


class MutationCommand(Protocol):
    def force_new_revision(self, name: str) -> object: ...


class ContainerRuntime(Protocol):
    def inspect(self, name: str) -> ComponentIdentity: ...

    def close(self) -> None: ...


class NodeStatusProbe:
    """StatusProbe backed by the local container runtime and the cluster API.

    An identity lookup keeps its listing so the state lookup that follows it
    reads the same container without querying the runtime again.
    """

    def __init__(self, containers: ContainerRuntime, operators: OperatorClient | None = None):
        self.containers = containers
        self.operators = operators
        self._pending: dict[str, ComponentIdentity] = {}

    def get_container_identity(self, name: str) -> str | None:
        ident = self.containers.inspect(name)
        if ident.instance_id:
            self._pending[name] = ident
        else:
            self._pending.pop(name, None)
        return ident.instance_id

    def get_container_state(self, name: str) -> ContainerState | None:
        ident = self._pending.pop(name, None) or self.containers.inspect(name)
        return ident.state if ident.instance_id else None

    def get_current_revision(self, name: str) -> int | None:
        if self.operators is None:
            return None
        return self.operators.get_current_revision(name)

    def get_latest_available_revision(self, name: str) -> int | None:
        if self.operators is None:
            return None
        return self.operators.get_latest_available_revision(name)
