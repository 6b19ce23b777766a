from __future__ import annotations

import time
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable

from . import db
from .cluster import ClusterAPIError, ClusterClient


OPERATOR_API = "/apis/operator.openshift.io/v1"

# logical component name -> plural of its operator.openshift.io/v1 resource
OPERATOR_RESOURCES: dict[str, str] = {
    "etcd": "etcds",
    "kubeapiserver": "kubeapiservers",
    "kubecontrollermanager": "kubecontrollermanagers",
    "kubescheduler": "kubeschedulers",
}

MARKER_PREFIX = "recovery-"


def resource_path(name: str) -> str:
    plural = OPERATOR_RESOURCES.get(name)
    if not plural:
        raise ValueError(f"Unknown operator component '{name}'. Known: {', '.join(sorted(OPERATOR_RESOURCES))}.")
    return f"{OPERATOR_API}/{plural}/cluster"


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def format_marker(ns: int) -> str:
    """`recovery-` + RFC 3339 timestamp with nanoseconds, e.g. 2024-05-01 10:00:00.000000001+00:00."""
    secs, frac = divmod(ns, 1_000_000_000)
    dt = datetime.fromtimestamp(secs, timezone.utc)
    return f"{MARKER_PREFIX}{dt:%Y-%m-%d %H:%M:%S}.{frac:09d}+00:00"


class OperatorClient:
    """Reads and bumps revisions of operator-managed control-plane components."""

    def __init__(self, client: ClusterClient, clock_ns: Callable[[], int] = time.time_ns):
        self.client = client
        self._clock_ns = clock_ns
        self._lock = Lock()
        self._last_ns = 0

    def _status(self, name: str) -> dict[str, Any] | None:
        path = resource_path(name)
        try:
            obj = self.client.get(path)
        except ClusterAPIError as e:
            db.log_event("DEBUG", f"Status read failed: {e}", component=name)
            return None
        return obj.get("status") or {}

    def get_current_revision(self, name: str) -> int | None:
        status = self._status(name)
        if status is None:
            return None
        nodes = status.get("nodeStatuses") or []
        if not nodes:
            return None
        return _as_int(nodes[0].get("currentRevision"))

    def get_latest_available_revision(self, name: str) -> int | None:
        status = self._status(name)
        if status is None:
            return None
        return _as_int(status.get("latestAvailableRevision"))

    def next_marker(self) -> str:
        # strictly increasing, even when the clock does not move between calls
        with self._lock:
            ns = max(self._clock_ns(), self._last_ns + 1)
            self._last_ns = ns
        return format_marker(ns)

    def force_new_revision(self, name: str) -> str:
        """Merge-patch a fresh forceRedeploymentReason; returns the marker used.

        Raises ClusterAPIError if the API refuses the patch.
        """
        marker = self.next_marker()
        self.client.merge_patch(resource_path(name), {"spec": {"forceRedeploymentReason": marker}})
        return marker
