import base64
import json
import os
import tempfile

import httpx
import pytest

from cpr.cluster import ClusterAPIError, ClusterClient, KubeConfig, load_kubeconfig
from cpr.operators import OperatorClient, format_marker, resource_path

ETCD_PATH = "/apis/operator.openshift.io/v1/etcds/cluster"


def _client(handler) -> ClusterClient:
    cfg = KubeConfig(server="https://api.example.test:6443", token="s3cret")
    return ClusterClient(cfg, transport=httpx.MockTransport(handler))


def _etcd_status(current=3, latest=7):
    return {"kind": "Etcd", "status": {"latestAvailableRevision": latest, "nodeStatuses": [{"nodeName": "m0", "currentRevision": current}]}}


def test_reads_current_and_latest_revision():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        assert request.url.path == ETCD_PATH
        return httpx.Response(200, json=_etcd_status())

    ops = OperatorClient(_client(handler))

    assert ops.get_current_revision("etcd") == 3
    assert ops.get_latest_available_revision("etcd") == 7
    assert seen[0].headers["authorization"] == "Bearer s3cret"


def test_unreadable_status_is_none():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/kubeapiservers/cluster"):
            return httpx.Response(503, json={"message": "etcdserver: leader changed"})
        return httpx.Response(200, json={"status": {}})

    ops = OperatorClient(_client(handler))

    assert ops.get_current_revision("kubeapiserver") is None
    assert ops.get_latest_available_revision("kubeapiserver") is None
    # present object without node statuses
    assert ops.get_current_revision("etcd") is None


def test_connection_errors_are_none():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert OperatorClient(_client(handler)).get_current_revision("etcd") is None


def test_force_new_revision_sends_merge_patch():
    patches = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        assert request.url.path == "/apis/operator.openshift.io/v1/kubeschedulers/cluster"
        assert request.headers["content-type"] == "application/merge-patch+json"
        patches.append(json.loads(request.content))
        return httpx.Response(200, json={"kind": "KubeScheduler"})

    ops = OperatorClient(_client(handler), clock_ns=lambda: 1_700_000_000_123_456_789)
    marker = ops.force_new_revision("kubescheduler")

    assert marker == "recovery-2023-11-14 22:13:20.123456789+00:00"
    assert patches == [{"spec": {"forceRedeploymentReason": marker}}]


def test_markers_are_unique_even_with_a_frozen_clock():
    ops = OperatorClient(_client(lambda r: httpx.Response(200, json={})), clock_ns=lambda: 1_700_000_000_000_000_000)

    first = ops.force_new_revision("etcd")
    second = ops.force_new_revision("etcd")

    assert first != second
    assert second == format_marker(1_700_000_000_000_000_001)


def test_rejected_patch_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "spec.forceRedeploymentReason: Invalid value"})

    with pytest.raises(ClusterAPIError) as exc:
        OperatorClient(_client(handler)).force_new_revision("etcd")

    assert exc.value.status_code == 422
    assert "Invalid value" in str(exc.value)


def test_unknown_component_is_rejected():
    with pytest.raises(ValueError):
        resource_path("openshift-apiserver")


def test_load_kubeconfig_with_inline_ca_and_token(tmp_path):
    ca = b"-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"
    kubeconfig = tmp_path / "kubeconfig"
    kubeconfig.write_text(
        f"""
apiVersion: v1
kind: Config
current-context: admin
clusters:
- name: sno
  cluster:
    server: https://api.sno.example.test:6443
    certificate-authority-data: {base64.b64encode(ca).decode()}
contexts:
- name: admin
  context:
    cluster: sno
    user: admin
users:
- name: admin
  user:
    token: sha256~abc
""",
        encoding="utf-8",
    )

    cfg = load_kubeconfig(str(kubeconfig))

    assert cfg.server == "https://api.sno.example.test:6443"
    assert cfg.token == "sha256~abc"
    assert cfg.insecure is False
    assert cfg.ca_file is None
    assert cfg.ca_data == ca.decode()


def test_load_kubeconfig_resolves_relative_cert_paths(tmp_path):
    kubeconfig = tmp_path / "kubeconfig"
    kubeconfig.write_text(
        """
current-context: c
clusters:
- name: k
  cluster: {server: "https://localhost:6443", insecure-skip-tls-verify: true}
contexts:
- name: c
  context: {cluster: k, user: u}
users:
- name: u
  user: {client-certificate: certs/admin.crt, client-key: certs/admin.key}
""",
        encoding="utf-8",
    )

    cfg = load_kubeconfig(str(kubeconfig))

    assert cfg.insecure is True
    assert cfg.cert_file == str(tmp_path / "certs" / "admin.crt")
    assert cfg.key_file == str(tmp_path / "certs" / "admin.key")


def test_unreadable_kubeconfig(tmp_path):
    with pytest.raises(ClusterAPIError):
        load_kubeconfig(str(tmp_path / "missing"))


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def test_inline_client_credentials_never_outlive_the_tls_setup(tmp_path, monkeypatch):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    kubeconfig = tmp_path / "kubeconfig"
    kubeconfig.write_text(
        f"""
current-context: c
clusters:
- name: k
  cluster: {{server: "https://localhost:6443", insecure-skip-tls-verify: true}}
contexts:
- name: c
  context: {{cluster: k, user: u}}
users:
- name: u
  user:
    client-certificate-data: {_b64(b"not a certificate")}
    client-key-data: {_b64(b"not a key")}
""",
        encoding="utf-8",
    )

    cfg = load_kubeconfig(str(kubeconfig))
    assert cfg.key_data == b"not a key"
    assert os.listdir(scratch) == []

    with pytest.raises(ClusterAPIError):
        ClusterClient.from_kubeconfig(str(kubeconfig))
    assert os.listdir(scratch) == []


def test_error_body_that_is_not_an_object():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=["bad", "request"])

    with pytest.raises(ClusterAPIError) as exc:
        _client(handler).get(ETCD_PATH)

    assert exc.value.status_code == 400
    assert "bad" in str(exc.value)
