"""
Telegraf Config Deployment
==========================

Uploads a generated telegraf.conf to the IOT2050, restarts the Telegraf
service and checks that it came back up. When the service is not active
the status output, the tail of the Telegraf log and its latest error lines
are collected so the user can see why.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from .errors import WriteFailure
from .ssh_connection import DeviceTarget, SSHConnectionManager

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class DeploymentCommands:
    """Remote commands used by a deployment."""
    restart: str = "sudo systemctl restart telegraf"
    status: str = "systemctl is-active --quiet telegraf && echo 'active' || echo 'failed'"
    detailed_status: str = "sudo systemctl status telegraf --no-pager"
    log_file: str = "/var/log/telegraf/telegraf.log"
    restart_wait_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings) -> "DeploymentCommands":
        return cls(
            restart=settings.restart_command,
            status=settings.status_command,
            detailed_status=settings.detailed_status_command,
            log_file=settings.remote_log_file,
            restart_wait_seconds=settings.restart_wait_seconds
        )

    @property
    def recent_logs(self) -> str:
        return f"tail -n 20 {self.log_file}"

    @property
    def recent_errors(self) -> str:
        return f"tail -n 10 {self.log_file} | grep 'E!'"


@dataclass
class DeploymentResult:
    """Outcome of a config upload and service restart."""
    remote_path: str
    bytes_uploaded: int = 0
    service_status: str = "unknown"
    diagnostics: Dict[str, str] = field(default_factory=dict)

    @property
    def active(self) -> bool:
        return self.service_status == "active"


def send_and_restart_telegraf(config_path: Union[str, Path], target: DeviceTarget,
                              commands: Optional[DeploymentCommands] = None,
                              manager: Optional[SSHConnectionManager] = None,
                              sleep: Callable[[float], None] = time.sleep) -> DeploymentResult:
    """
    Send telegraf.conf to the device and restart Telegraf.

    Args:
        config_path: Local telegraf.conf to upload
        target: Device to deploy to; target.remote_path is the destination
        commands: Remote commands, defaults to DeploymentCommands()
        manager: SSH connection manager, created from target if omitted
        sleep: Wait function used while the service starts
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise WriteFailure(config_path, "config file does not exist", operation="read")

    commands = commands or DeploymentCommands()
    manager = manager or SSHConnectionManager(target)
    result = DeploymentResult(remote_path=target.remote_path)

    logger.info(f"Sending {config_path} to {target.address}")
    result.bytes_uploaded = manager.upload_file(config_path, target.remote_path)

    with manager.get_connection() as session:
        logger.info("Restarting telegraf service on the remote host")
        session.run(commands.restart)

        logger.info(f"Waiting {commands.restart_wait_seconds}s for the service to start")
        sleep(commands.restart_wait_seconds)

        result.service_status = session.run(commands.status).strip() or "unknown"
        if result.active:
            logger.info(f"Telegraf service restarted successfully on {target.address}")
            return result

        logger.warning(f"Telegraf service restarted, but it's not active. Current status: {result.service_status}")
        result.diagnostics['status'] = session.run(commands.detailed_status)
        result.diagnostics['logs'] = session.run(commands.recent_logs)
        result.diagnostics['errors'] = session.run(commands.recent_errors)

    return result
