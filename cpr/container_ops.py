from __future__ import annotations

import json
import re
import subprocess
from typing import Any

import docker
from docker.errors import DockerException

from .errors import ProbeError
from .models import ComponentIdentity, ContainerState
from .settings import Settings, settings


CONTAINER_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9\-\.]{0,62}$")

# Kubernetes container name label set by the kubelet on every pod container.
K8S_CONTAINER_NAME_LABEL = "io.kubernetes.container.name"

_CRI_STATES = {
    "CONTAINER_RUNNING": ContainerState.RUNNING,
    "CONTAINER_CREATED": ContainerState.STARTING,
    "CONTAINER_EXITED": ContainerState.FAILED,
    "CONTAINER_UNKNOWN": ContainerState.UNKNOWN,
}

_DOCKER_STATES = {
    "running": ContainerState.RUNNING,
    "created": ContainerState.STARTING,
    "restarting": ContainerState.STARTING,
    "exited": ContainerState.FAILED,
    "dead": ContainerState.FAILED,
}


def validate_container_name(name: str) -> None:
    if not CONTAINER_NAME_RE.match(name):
        raise ValueError(
            "Invalid container name. Use lowercase letters/numbers, '-' and '.', starting with a letter or digit (max 63 chars)."
        )


class CrictlRuntime:
    """Looks up pod containers through `crictl ps -a -o json`."""

    def __init__(self, crictl_path: str = "crictl", timeout_s: int = 60):
        self.crictl_path = crictl_path
        self.timeout_s = timeout_s

    def _list(self, name: str) -> list[dict[str, Any]]:
        cmd = [self.crictl_path, "ps", "-a", "-o", "json", "--name", f"^{re.escape(name)}$"]
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_s, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProbeError(f"crictl failed: {type(e).__name__}: {e}") from e
        if proc.returncode != 0:
            raise ProbeError(f"crictl exited with {proc.returncode}: {proc.stderr.strip()}")
        try:
            data = json.loads(proc.stdout or "{}")
        except json.JSONDecodeError as e:
            raise ProbeError(f"crictl returned invalid JSON: {e}") from e
        return list(data.get("containers") or [])

    def inspect(self, name: str) -> ComponentIdentity:
        """Newest container whose name is exactly `name`; empty identity if none."""
        validate_container_name(name)
        matches = [c for c in self._list(name) if (c.get("metadata") or {}).get("name") == name]
        if not matches:
            return ComponentIdentity(name=name, instance_id=None)
        newest = max(matches, key=lambda c: int(c.get("createdAt") or 0))
        state = _CRI_STATES.get(str(newest.get("state", "")), ContainerState.UNKNOWN)
        return ComponentIdentity(name=name, instance_id=newest.get("id") or None, state=state)

    def close(self) -> None:
        pass


class DockerRuntime:
    """Looks up pod containers through the Docker Engine API.

    One client is created lazily and reused across lookups; a failed lookup
    drops it so the next one reconnects.
    """

    def __init__(self):
        self._docker: docker.DockerClient | None = None

    def _client(self) -> docker.DockerClient:
        if self._docker is None:
            client = docker.from_env()
            try:
                client.ping()
            except DockerException:
                client.close()
                raise
            self._docker = client
        return self._docker

    def close(self) -> None:
        if self._docker is not None:
            self._docker.close()
            self._docker = None

    def inspect(self, name: str) -> ComponentIdentity:
        validate_container_name(name)
        try:
            containers = self._client().containers.list(
                all=True, filters={"label": f"{K8S_CONTAINER_NAME_LABEL}={name}"}
            )
        except DockerException as e:
            self.close()
            raise ProbeError(f"docker query failed: {type(e).__name__}: {e}") from e
        if not containers:
            return ComponentIdentity(name=name, instance_id=None)
        newest = max(containers, key=lambda x: str(x.attrs.get("Created", "")))
        state = _DOCKER_STATES.get(newest.status, ContainerState.UNKNOWN)
        return ComponentIdentity(name=name, instance_id=newest.id, state=state)


def make_runtime(cfg: Settings = settings) -> CrictlRuntime | DockerRuntime:
    kind = cfg.container_runtime.strip().lower()
    if kind == "crictl":
        return CrictlRuntime(cfg.crictl_path, timeout_s=cfg.command_timeout_s)
    if kind == "docker":
        return DockerRuntime()
    raise ValueError(f"Unknown container runtime '{cfg.container_runtime}' (expected crictl or docker).")
