import smtplib
from dataclasses import replace

import pytest

from cpr import alerts, db
from cpr.errors import ConvergenceTimeout, NotRunning


class FakeSMTP:
    instances = []
    login_error = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.sent = []
        self.closed = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        if FakeSMTP.login_error is not None:
            raise FakeSMTP.login_error

    def send_message(self, msg):
        self.sent.append(msg)


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.login_error = None
    monkeypatch.setattr(alerts.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(
        alerts,
        "settings",
        replace(
            alerts.settings,
            enable_email=True,
            smtp_host="smtp.example.com",
            smtp_port=587,
            smtp_user="ops",
            smtp_password="secret",
            email_from="recovery@example.com",
            email_to="oncall@example.com",
        ),
    )
    return FakeSMTP


def _failed_redeploy():
    run = db.create_run("/var/recovery")
    step = db.start_step(run.id, "redeploy", "kubeapiserver")
    db.finish_step(step.id, "failed", 1200.0, detail="revision did not reach 8 in time")
    return run.id


def test_failed_run_alert_is_sent_and_connection_closed(smtp):
    run_id = _failed_redeploy()

    assert alerts.notify_run_failed(run_id, ConvergenceTimeout("kubeapiserver", 8, 7)) is True

    (server,) = smtp.instances
    assert server.closed
    (msg,) = server.sent
    assert msg["To"] == "oncall@example.com"
    assert "kubeapiserver" in msg["Subject"]
    body = msg.get_content()
    assert "Failed step: redeploy after 1200.0s" in body
    assert "Expected revision: 8" in body
    assert "Observed revision: 7" in body


def test_login_failure_still_closes_connection(smtp):
    smtp.login_error = smtplib.SMTPAuthenticationError(535, b"bad credentials")
    run_id = _failed_redeploy()

    assert alerts.notify_run_failed(run_id, ConvergenceTimeout("kubeapiserver", 8, None)) is False

    (server,) = smtp.instances
    assert server.closed
    assert server.sent == []
    warnings = [e for e in db.latest_events() if e["level"] == "WARN"]
    assert any("SMTPAuthenticationError" in w["message"] for w in warnings)


def test_disabled_alerts_send_nothing(smtp, monkeypatch):
    monkeypatch.setattr(alerts, "settings", replace(alerts.settings, enable_email=False))

    assert alerts.send_email("subject", "body") is False
    assert smtp.instances == []


def test_report_for_container_that_did_not_restart():
    run = db.create_run("/var/recovery")
    err = NotRunning("etcd", "abc123", "abc123", "running")

    subject, body = alerts.failure_report(run.id, err)

    assert subject.endswith("(etcd)")
    assert "Backup: /var/recovery" in body
    assert "Prior container: abc123" in body
    assert "Observed state: running" in body


def test_report_for_unexpected_error():
    run = db.create_run("/var/recovery")

    subject, body = alerts.failure_report(run.id, PermissionError("Permission denied"))

    assert "(procedure)" in subject
    assert "Error: PermissionError: Permission denied" in body
