"""
Remote Backup Execution
=======================

This module runs the backups of the IOT2050 data services over SSH:

- InfluxDB v2: ``influx backup`` into a dated folder under /tmp on the
  device, then every file of that folder is copied to a local folder of the
  same name.
- Grafana: the grafana.ini configuration file is copied to a local file.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .file_storage import dated_backup_name, ensure_directory
from .ssh_connection import DeviceTarget, SSHConnectionManager

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class BackupResult:
    """Result of a backup operation."""
    name: str
    local_path: Path
    start_time: datetime
    end_time: Optional[datetime] = None
    files: List[Tuple[str, int]] = field(default_factory=list)
    command_output: str = ""
    execution_log: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(size for _, size in self.files)

    def add_log_entry(self, level: str, message: str):
        """Add entry to execution log."""
        self.execution_log.append({
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': level,
            'message': message
        })

        # Also log to system logger
        logger_method = getattr(logger, level.lower(), logger.info)
        logger_method(f"{self.name}: {message}")


def backup_influxdb(target: DeviceTarget,
                    local_root: Union[str, Path] = ".",
                    data_path: str = "/var/lib/influxdb2",
                    read_timeout: float = 600.0,
                    timestamp: Optional[datetime] = None,
                    manager: Optional[SSHConnectionManager] = None) -> BackupResult:
    """
    Back up the InfluxDB v2 database of the device into local_root.

    The remote and local folders are both named influx_backup_<YYYY-MM-DD>.
    """
    timestamp = timestamp or datetime.now(timezone.utc)
    manager = manager or SSHConnectionManager(target)
    folder_name = dated_backup_name("influx_backup", timestamp)
    remote_folder = f"/tmp/{folder_name}"

    result = BackupResult(
        name="influxdb",
        local_path=Path(local_root) / folder_name,
        start_time=datetime.now(timezone.utc)
    )

    result.add_log_entry("info", f"Backing up InfluxDB to {remote_folder}")
    result.command_output = manager.execute_command(
        f"influx backup -p {data_path} {remote_folder}",
        read_timeout=read_timeout
    )
    logger.debug(f"influx backup output: {result.command_output}")

    ensure_directory(result.local_path)
    result.files = manager.download_directory(remote_folder, result.local_path)
    for file_name, size in result.files:
        result.add_log_entry("info", f"Copied {file_name} ({size} bytes)")

    result.end_time = datetime.now(timezone.utc)
    result.add_log_entry("info", f"Backup completed, files are located at {result.local_path}")
    return result


def backup_grafana_config(target: DeviceTarget,
                          local_path: Union[str, Path] = "grafana_backup.ini",
                          remote_path: str = "/etc/grafana/grafana.ini",
                          manager: Optional[SSHConnectionManager] = None) -> BackupResult:
    """Copy the Grafana configuration of the device to local_path."""
    manager = manager or SSHConnectionManager(target)
    local_path = Path(local_path)

    result = BackupResult(
        name="grafana",
        local_path=local_path,
        start_time=datetime.now(timezone.utc)
    )

    if local_path.parent != Path("."):
        ensure_directory(local_path.parent)

    size = manager.download_file(remote_path, local_path)
    result.files.append((local_path.name, size))
    result.end_time = datetime.now(timezone.utc)
    result.add_log_entry("info", f"Grafana configuration backed up to {local_path}")
    return result
