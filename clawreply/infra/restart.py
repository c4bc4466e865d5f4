"""Gateway restart via launchd (macOS) or systemd user units (Linux)."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess

from loguru import logger

SERVICE_LABEL = "com.clawreply.gateway"
SYSTEMD_UNIT_NAME = "clawreply.service"


def detect_service_manager(system_name: str | None = None) -> str | None:
    """Detect supported user service manager for the current OS."""
    system = system_name or platform.system()
    if system == "Darwin" and shutil.which("launchctl"):
        return "launchd"
    if system == "Linux" and shutil.which("systemctl"):
        return "systemd"
    return None


def restart_command(manager: str, uid: int | None = None) -> list[str]:
    """Build the argv that restarts the gateway under a service manager."""
    if manager == "launchd":
        user_id = os.getuid() if uid is None else uid
        return ["launchctl", "kickstart", "-k", f"gui/{user_id}/{SERVICE_LABEL}"]
    if manager == "systemd":
        return ["systemctl", "--user", "restart", SYSTEMD_UNIT_NAME]
    raise ValueError(f"Unsupported service manager: {manager}")


class RestartUnavailableError(RuntimeError):
    """Raised when no supported service manager can restart the gateway."""


def trigger_restart(system_name: str | None = None) -> str:
    """
    Ask the service manager to restart the gateway.

    The restart is fire-and-forget; the process is expected to go away
    shortly after this returns.

    Returns:
        Label of the restart method used.

    Raises:
        RestartUnavailableError: Neither launchd nor systemd is available.
    """
    manager = detect_service_manager(system_name)
    if manager is None:
        raise RestartUnavailableError("No supported service manager (launchd or systemd) found")

    args = restart_command(manager)
    logger.info(f"Restarting via {manager}: {' '.join(args)}")
    subprocess.Popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, start_new_session=True)
    return manager
