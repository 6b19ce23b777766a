from __future__ import annotations

import os
import subprocess

from .errors import CommandFailed, PreflightError


REQUIRED_BACKUP_DIRS = ("cluster", "containers", "etc", "usrlocal")


def run_command(cmd: list[str], component: str, timeout_s: int | None = None) -> subprocess.CompletedProcess:
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_s, check=False)
    except subprocess.TimeoutExpired as e:
        raise CommandFailed(component, cmd, 124, f"timed out after {timeout_s}s") from e
    except OSError as e:
        raise CommandFailed(component, cmd, 127, str(e)) from e
    if proc.returncode != 0:
        raise CommandFailed(component, cmd, proc.returncode, proc.stderr or "")
    return proc


def booted_deployment_pinned(status_output: str) -> bool:
    """True if the booted (`*`) deployment in `ostree admin status` output is pinned."""
    lines = status_output.splitlines()
    for i, line in enumerate(lines):
        if line.startswith("*"):
            return any("Pinned: yes" in x for x in lines[i + 1 : i + 4])
    return False


def image_dirs(containers_dir: str) -> list[str]:
    """Directories one or two levels below `containers_dir`, sorted."""
    out: list[str] = []
    for entry in sorted(os.scandir(containers_dir), key=lambda e: e.name):
        if not entry.is_dir():
            continue
        out.append(entry.path)
        for sub in sorted(os.scandir(entry.path), key=lambda e: e.name):
            if sub.is_dir():
                out.append(sub.path)
    return out


class NodeRestore:
    """Moves backed-up bytes back onto the node using the platform tools."""

    def __init__(self, backup_dir: str, cluster_restore_script: str = "/usr/local/bin/cluster-restore.sh"):
        self.backup_dir = backup_dir
        self.cluster_restore_script = cluster_restore_script

    def _p(self, *parts: str) -> str:
        return os.path.join(self.backup_dir, *parts)

    def check_backup_content(self) -> None:
        missing = [d for d in REQUIRED_BACKUP_DIRS if not os.path.isdir(self._p(d))]
        if missing:
            raise PreflightError("backup", f"Required backup content not found in {self.backup_dir}: {', '.join(missing)}")

    def deployment_pinned(self) -> bool:
        proc = run_command(["ostree", "admin", "status"], "ostree")
        return booted_deployment_pinned(proc.stdout)

    def restore_images(self) -> int:
        dirs = image_dirs(self._p("containers"))
        for d in dirs:
            run_command(
                ["/usr/bin/skopeo", "copy", f"dir:{d}", f"containers-storage:local/{os.path.basename(d)}"],
                "images",
            )
        return len(dirs)

    def restore_usrlocal(self) -> None:
        run_command(["rsync", "-avc", "--delete", "--no-t", self._p("usrlocal") + "/", "/usr/local/"], "usrlocal")

    def restore_etc(self) -> None:
        run_command(
            [
                "rsync",
                "-avc",
                "--delete",
                "--no-t",
                "--exclude-from",
                self._p("etc.exclude.list"),
                self._p("etc") + "/",
                "/etc/",
            ],
            "etc",
        )

    def has_extras(self) -> bool:
        return os.path.isfile(self._p("extras.tgz"))

    def restore_extras(self) -> None:
        run_command(["tar", "xzf", self._p("extras.tgz"), "-C", "/"], "extras")

    def daemon_reload(self) -> None:
        run_command(["systemctl", "daemon-reload"], "systemd")

    def restore_cluster(self) -> None:
        run_command([self.cluster_restore_script, self._p("cluster")], "cluster")

    def restart_unit(self, unit: str) -> None:
        run_command(["systemctl", "restart", unit], unit)
