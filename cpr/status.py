from __future__ import annotations

from typing import Any

from .cluster import ClusterClient


def _conditions(obj: dict[str, Any]) -> dict[str, str]:
    return {c.get("type", ""): c.get("status", "") for c in (obj.get("status") or {}).get("conditions") or []}


def cluster_version(client: ClusterClient) -> str:
    cv = client.get("/apis/config.openshift.io/v1/clusterversions/version")
    desired = ((cv.get("status") or {}).get("desired") or {}).get("version", "unknown")
    cond = _conditions(cv)
    return f"version {desired} (Available={cond.get('Available', '?')}, Progressing={cond.get('Progressing', '?')})"


def cluster_operators(client: ClusterClient) -> list[tuple[str, str, str, str]]:
    items = client.get("/apis/config.openshift.io/v1/clusteroperators").get("items") or []
    rows = []
    for co in items:
        cond = _conditions(co)
        rows.append(
            (
                (co.get("metadata") or {}).get("name", "?"),
                cond.get("Available", "?"),
                cond.get("Progressing", "?"),
                cond.get("Degraded", "?"),
            )
        )
    return rows


def nodes(client: ClusterClient) -> list[tuple[str, str]]:
    items = client.get("/api/v1/nodes").get("items") or []
    return [((n.get("metadata") or {}).get("name", "?"), _conditions(n).get("Ready", "?")) for n in items]


def machine_config_pools(client: ClusterClient) -> list[tuple[str, str, str, str]]:
    items = client.get("/apis/machineconfiguration.openshift.io/v1/machineconfigpools").get("items") or []
    rows = []
    for mcp in items:
        cond = _conditions(mcp)
        rows.append(
            (
                (mcp.get("metadata") or {}).get("name", "?"),
                cond.get("Updated", "?"),
                cond.get("Updating", "?"),
                cond.get("Degraded", "?"),
            )
        )
    return rows


def _table(header: tuple[str, ...], rows: list[tuple[str, ...]]) -> list[str]:
    widths = [max(len(str(x)) for x in col) for col in zip(header, *rows)]
    return ["   ".join(str(v).ljust(w) for v, w in zip(r, widths)).rstrip() for r in [header, *rows]]


def render_summary(client: ClusterClient) -> str:
    """Human-readable snapshot of upgrade, operator, node and pool status.

    Raises ClusterAPIError if any query fails.
    """
    out = [cluster_version(client), ""]
    out += _table(("NAME", "AVAILABLE", "PROGRESSING", "DEGRADED"), cluster_operators(client))
    out.append("")
    out += _table(("NODE", "READY"), nodes(client))
    out.append("")
    out += _table(("POOL", "UPDATED", "UPDATING", "DEGRADED"), machine_config_pools(client))
    return "\n".join(out)

