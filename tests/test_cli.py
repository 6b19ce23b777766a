from types import SimpleNamespace

import cli
from cpr.errors import PreflightError


def test_redeploy_without_kubeconfig_exits_nonzero(monkeypatch, capsys):
    def no_kubeconfig(cfg):
        raise PreflightError("kubeconfig", "Please provide kubeconfig location in KUBECONFIG env variable")

    monkeypatch.setattr(cli, "build_cluster_client", no_kubeconfig)

    assert cli.main(["redeploy", "etcd"]) == 1
    assert "KUBECONFIG" in capsys.readouterr().err


def test_events_query_the_status_api(monkeypatch, capsys):
    seen = {}

    def fake_get(url, params=None, timeout=None):
        seen["url"] = url
        seen["params"] = params
        return SimpleNamespace(ok=True, json=lambda: [{"id": 1, "message": "Recovery complete"}])

    monkeypatch.setattr(cli.requests, "get", fake_get)

    assert cli.main(["--api", "http://cpr.local:8000/", "events", "--limit", "5", "--run-id", "3"]) == 0
    assert seen["url"] == "http://cpr.local:8000/events"
    assert seen["params"] == {"limit": 5, "run_id": 3}
    assert "Recovery complete" in capsys.readouterr().out


def test_runs_detail_failure_exit_code(monkeypatch):
    monkeypatch.setattr(
        cli.requests,
        "get",
        lambda url, timeout=None: SimpleNamespace(ok=False, json=lambda: {"detail": "Unknown run 7"}),
    )

    assert cli.main(["runs", "--id", "7"]) == 1
