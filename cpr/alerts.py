from __future__ import annotations

import smtplib
from email.message import EmailMessage

from . import db
from .errors import CommandFailed, ConvergenceTimeout, NotRunning, RecoveryError
from .settings import settings


def _measured(err: BaseException) -> list[str]:
    if isinstance(err, ConvergenceTimeout):
        observed = err.observed if err.observed is not None else "unknown"
        return [f"Expected revision: {err.expected}", f"Observed revision: {observed}"]
    if isinstance(err, NotRunning):
        return [
            f"Prior container: {err.prior_identity or '-'}",
            f"Observed container: {err.observed_identity or '-'}",
            f"Observed state: {err.observed_state}",
        ]
    if isinstance(err, CommandFailed):
        return [f"Command: {' '.join(err.cmd)}", f"Exit status: {err.returncode}"]
    return []


def failure_report(run_id: int, err: BaseException) -> tuple[str, str]:
    """Subject and body for a failed run: where it stopped and what was measured."""
    component = err.component if isinstance(err, RecoveryError) else "procedure"
    run = db.get_run(run_id)
    failed = [s for s in db.list_steps(run_id) if s.state == "failed"]

    lines = [f"Run: {run_id}"]
    if run is not None:
        lines.append(f"Backup: {run.backup_dir}")
        lines.append(f"Started: {run.started_at}")
    if failed:
        step = failed[-1]
        took = f" after {step.duration_s:.1f}s" if step.duration_s is not None else ""
        lines.append(f"Failed step: {step.name}{took}")
    lines.append(f"Component: {component}")
    lines.extend(_measured(err))
    lines.append(f"Error: {type(err).__name__}: {err}")
    lines.append("")
    lines.append("The recovery procedure was halted. Please investigate.")

    subject = f"🚨 RECOVERY FAILED: run {run_id} ({component})"
    return subject, "\n".join(lines)


def send_email(subject: str, body: str) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - CPR_ENABLE_EMAIL=true
      - CPR_SMTP_HOST / CPR_SMTP_PORT
      - CPR_SMTP_USER / CPR_SMTP_PASSWORD
      - CPR_EMAIL_FROM / CPR_EMAIL_TO

    Returns False (and journals a warning) when delivery fails; the connection
    is closed either way.
    """
    if not settings.enable_email:
        return False
    required = (settings.smtp_host, settings.smtp_user, settings.smtp_password, settings.email_from, settings.email_to)
    if not all(required):
        db.log_event("WARN", "Email alerts enabled but SMTP settings are incomplete", component="alerts")
        return False

    msg = EmailMessage()
    msg["From"] = settings.email_from
    msg["To"] = settings.email_to
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        db.log_event("WARN", f"Unable to send alert email: {type(e).__name__}: {e}", component="alerts")
        return False
    return True


def notify_run_failed(run_id: int, err: BaseException) -> bool:
    subject, body = failure_report(run_id, err)
    return send_email(subject, body)
