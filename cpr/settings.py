from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class RecoveryConfig:
    """Knobs handed to every wait/verify operation."""

    poll_interval_s: int = 10
    restart_timeout_s: int = 1200
    redeployment_timeout_s: int = 1200
    parallel_redeploy: bool = False


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("CPR_DB_PATH", "cpr.db")
    poll_interval_s: int = _env_int("CPR_POLL_INTERVAL_S", 10)
    restart_timeout_s: int = _env_int("CPR_RESTART_TIMEOUT_S", 1200)  # 20 minutes
    redeployment_timeout_s: int = _env_int("CPR_REDEPLOYMENT_TIMEOUT_S", 1200)  # 20 minutes
    parallel_redeploy: bool = _env_bool("CPR_PARALLEL_REDEPLOY", False)

    # Node / cluster access
    backup_dir: str = os.getenv("CPR_BACKUP_DIR", "/var/recovery")
    kubeconfig: str | None = os.getenv("KUBECONFIG")
    api_timeout_s: int = _env_int("CPR_API_TIMEOUT_S", 30)
    container_runtime: str = os.getenv("CPR_CONTAINER_RUNTIME", "crictl")  # crictl|docker
    crictl_path: str = os.getenv("CPR_CRICTL_PATH", "crictl")
    command_timeout_s: int = _env_int("CPR_COMMAND_TIMEOUT_S", 60)
    cluster_restore_script: str = os.getenv("CPR_CLUSTER_RESTORE_SCRIPT", "/usr/local/bin/cluster-restore.sh")

    # Status API used by `cli.py runs|events`
    api_url: str = os.getenv("CPR_API_URL", "http://localhost:8000")

    # Email alerting (optional)
    enable_email: bool = _env_bool("CPR_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("CPR_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("CPR_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("CPR_SMTP_USER")
    smtp_password: str | None = os.getenv("CPR_SMTP_PASSWORD")
    email_from: str | None = os.getenv("CPR_EMAIL_FROM")
    email_to: str | None = os.getenv("CPR_EMAIL_TO")

    def recovery_config(self) -> RecoveryConfig:
        return RecoveryConfig(
            poll_interval_s=max(1, self.poll_interval_s),
            restart_timeout_s=max(0, self.restart_timeout_s),
            redeployment_timeout_s=max(0, self.redeployment_timeout_s),
            parallel_redeploy=self.parallel_redeploy,
        )


settings = Settings()
