from __future__ import annotations

import base64
import binascii
import os
import ssl
import tempfile
from dataclasses import dataclass
from typing import Any

import httpx
import yaml


class ClusterAPIError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class KubeConfig:
    server: str
    token: str | None = None
    ca_file: str | None = None
    ca_data: str | None = None  # PEM
    cert_file: str | None = None
    key_file: str | None = None
    cert_data: bytes | None = None
    key_data: bytes | None = None
    insecure: bool = False


def _decode(data_b64: str, field: str) -> bytes:
    try:
        return base64.b64decode(data_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ClusterAPIError(f"kubeconfig {field} is not valid base64") from e


def _named(items: list[dict[str, Any]] | None, name: str, key: str) -> dict[str, Any]:
    for item in items or []:
        if item.get("name") == name:
            return item.get(key) or {}
    raise ClusterAPIError(f"kubeconfig has no {key} named '{name}'")


def load_kubeconfig(path: str) -> KubeConfig:
    """Resolve the current context of a kubeconfig file into connection details.

    Inline `*-data` credentials stay in memory; nothing is written to disk here.
    """
    if not path or not os.access(path, os.R_OK):
        raise ClusterAPIError(f"kubeconfig '{path}' is not readable")
    with open(path, encoding="utf-8") as fh:
        doc = yaml.safe_load(fh) or {}

    ctx_name = doc.get("current-context")
    contexts = doc.get("contexts") or []
    if not ctx_name and contexts:
        ctx_name = contexts[0].get("name")
    if not ctx_name:
        raise ClusterAPIError("kubeconfig has no usable context")

    ctx = _named(contexts, ctx_name, "context")
    cluster = _named(doc.get("clusters"), ctx.get("cluster", ""), "cluster")
    user = _named(doc.get("users"), ctx.get("user", ""), "user") if ctx.get("user") else {}

    base = os.path.dirname(os.path.abspath(path))

    def _path(value: str | None) -> str | None:
        if not value:
            return None
        return value if os.path.isabs(value) else os.path.join(base, value)

    ca_file = _path(cluster.get("certificate-authority"))
    ca_data = None
    if not ca_file and cluster.get("certificate-authority-data"):
        ca_data = _decode(cluster["certificate-authority-data"], "certificate-authority-data").decode("ascii", "replace")

    cert_file = _path(user.get("client-certificate"))
    cert_data = None
    if not cert_file and user.get("client-certificate-data"):
        cert_data = _decode(user["client-certificate-data"], "client-certificate-data")
    key_file = _path(user.get("client-key"))
    key_data = None
    if not key_file and user.get("client-key-data"):
        key_data = _decode(user["client-key-data"], "client-key-data")

    server = cluster.get("server")
    if not server:
        raise ClusterAPIError(f"kubeconfig cluster for context '{ctx_name}' has no server")

    return KubeConfig(
        server=server,
        token=user.get("token"),
        ca_file=ca_file,
        ca_data=ca_data,
        cert_file=cert_file,
        key_file=key_file,
        cert_data=cert_data,
        key_data=key_data,
        insecure=bool(cluster.get("insecure-skip-tls-verify", False)),
    )


def _load_client_cert(ctx: ssl.SSLContext, cfg: KubeConfig) -> None:
    """`load_cert_chain` only reads files, so inline data lives on disk just for the call."""
    written: list[str] = []
    try:
        paths = []
        for path, data, suffix in ((cfg.cert_file, cfg.cert_data, ".crt"), (cfg.key_file, cfg.key_data, ".key")):
            if path is None and data is not None:
                fd, path = tempfile.mkstemp(prefix="cpr-", suffix=suffix)
                written.append(path)
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
            paths.append(path)
        if all(paths):
            ctx.load_cert_chain(paths[0], paths[1])
    finally:
        for path in written:
            os.remove(path)


def _ssl_context(cfg: KubeConfig) -> ssl.SSLContext:
    ctx = ssl.create_default_context(cafile=cfg.ca_file, cadata=cfg.ca_data)
    if cfg.insecure:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    _load_client_cert(ctx, cfg)
    return ctx


class ClusterClient:
    """Minimal JSON client for the cluster API server."""

    def __init__(self, cfg: KubeConfig, timeout_s: float = 30.0, transport: httpx.BaseTransport | None = None):
        headers = {"Accept": "application/json"}
        if cfg.token:
            headers["Authorization"] = f"Bearer {cfg.token}"
        kwargs: dict[str, Any] = {
            "base_url": cfg.server.rstrip("/"),
            "headers": headers,
            "timeout": timeout_s,
            "follow_redirects": False,
        }
        if transport is not None:
            kwargs["transport"] = transport
        else:
            kwargs["verify"] = _ssl_context(cfg)
        self._http = httpx.Client(**kwargs)

    @classmethod
    def from_kubeconfig(cls, path: str, timeout_s: float = 30.0) -> ClusterClient:
        cfg = load_kubeconfig(path)
        try:
            return cls(cfg, timeout_s=timeout_s)
        except (ssl.SSLError, OSError) as e:
            raise ClusterAPIError(f"kubeconfig '{path}' has unusable TLS material: {e}") from e

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ClusterAPIError(f"{method} {path} failed: {type(e).__name__}: {e}") from e
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = None
            detail = body.get("message", "") if isinstance(body, dict) else resp.text[:200]
            raise ClusterAPIError(f"{method} {path} returned HTTP {resp.status_code}: {detail}", resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise ClusterAPIError(f"{method} {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ClusterAPIError(f"{method} {path} returned unexpected payload: {data!r}")
        return data

    def get(self, path: str) -> dict[str, Any]:
        return self._request("GET", path)

    def merge_patch(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._request(
            "PATCH",
            path,
            json=body,
            headers={"Content-Type": "application/merge-patch+json"},
        )
