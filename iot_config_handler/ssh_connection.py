"""
SSH Connection Manager for IOT2050 Devices
==========================================

This module provides SSH access to the IOT2050 using Netmiko for remote
command execution and Paramiko SFTP for file transfers.

Features:
- Device target parsing and validation (host[:port])
- Password or key file authentication
- Context managed sessions with guaranteed disconnect
- Every connect, authentication, copy or command failure is raised as
  TransportFailure carrying the host and the failing phase
"""

import logging
import stat
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

import paramiko
from netmiko import ConnectHandler, NetmikoAuthenticationException, NetmikoTimeoutException
from netmiko.exceptions import NetmikoBaseException, ReadTimeout

from .errors import ErrorCategory, OptionError, TransportFailure, TransportPhase

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22


@dataclass(frozen=True)
class DeviceTarget:
    """Remote device connection parameters."""
    host: str
    username: str
    password: str = ""
    port: int = DEFAULT_SSH_PORT
    key_file: Optional[str] = None
    remote_path: str = "/etc/telegraf/telegraf.conf"
    timeout: int = 30
    device_type: str = "linux"  # Netmiko device type

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def parse_host(value: str) -> Tuple[str, int]:
    """
    Split 'host[:port]' into host and port.

    Raises OptionError for an empty host or a port outside 1-65535.
    """
    value = (value or "").strip()
    invalid = OptionError(f"Invalid IOT host format for '{value}', expecting something like: 192.168.0.1:22")
    host, port = value, DEFAULT_SSH_PORT
    if value.count(':') > 1:
        raise invalid
    if value.count(':') == 1:
        host, port_text = value.split(':')
        if not port_text.isdecimal():
            raise invalid
        port = int(port_text)

    if not host or not 0 < port <= 65535:
        raise invalid
    return host, port


class CommandSession:
    """An open Netmiko session on the device."""

    def __init__(self, connection, target: DeviceTarget):
        self.connection = connection
        self.target = target

    def run(self, command: str, read_timeout: float = 30.0) -> str:
        """Execute a single command and return its output."""
        logger.debug(f"Executing on {self.target.address}: {command}")
        try:
            output = self.connection.send_command(command, read_timeout=read_timeout)
        except ReadTimeout as e:
            raise TransportFailure(
                self.target.address, TransportPhase.EXECUTE,
                f"'{command}' did not finish within {read_timeout}s: {e}",
                category=ErrorCategory.TIMEOUT
            ) from e
        except (NetmikoBaseException, paramiko.SSHException, OSError) as e:
            raise TransportFailure(self.target.address, TransportPhase.EXECUTE, f"'{command}': {e}") from e
        return output


class SSHConnectionManager:
    """SSH connection manager for a single IOT2050 device."""

    def __init__(self, target: DeviceTarget):
        self.target = target

    def _create_netmiko_connection(self):
        """Create new Netmiko SSH connection."""
        target = self.target
        device_params = {
            'device_type': target.device_type,
            'host': target.host,
            'username': target.username,
            'password': target.password,
            'port': target.port,
            'timeout': target.timeout,
            'conn_timeout': target.timeout,
            'auth_timeout': target.timeout,
            'banner_timeout': target.timeout,
            'verbose': False
        }

        # Add SSH key file if provided
        if target.key_file:
            device_params['key_file'] = target.key_file
            device_params['use_keys'] = True

        logger.debug(f"Attempting SSH connection to {target.address}")
        try:
            connection = ConnectHandler(**device_params)
        except NetmikoAuthenticationException as e:
            raise TransportFailure(target.address, TransportPhase.AUTHENTICATE, str(e)) from e
        except NetmikoTimeoutException as e:
            raise TransportFailure(target.address, TransportPhase.CONNECT, str(e),
                                   category=ErrorCategory.TIMEOUT) from e
        except (NetmikoBaseException, paramiko.SSHException, OSError, ValueError) as e:
            raise TransportFailure(target.address, TransportPhase.CONNECT, str(e)) from e

        logger.info(f"Connected to {target.address}")
        return connection

    @contextmanager
    def get_connection(self) -> Iterator[CommandSession]:
        """Context manager for a command session with automatic cleanup."""
        connection = self._create_netmiko_connection()
        try:
            yield CommandSession(connection, self.target)
        finally:
            try:
                connection.disconnect()
                logger.debug(f"Disconnected from {self.target.address}")
            except (NetmikoBaseException, paramiko.SSHException, OSError) as e:
                logger.warning(f"Error disconnecting from {self.target.address}: {e}")

    def execute_command(self, command: str, read_timeout: float = 30.0) -> str:
        """Execute a single command using a dedicated session."""
        with self.get_connection() as session:
            return session.run(command, read_timeout=read_timeout)

    def _create_sftp_connection(self) -> paramiko.SFTPClient:
        """Create new SFTP connection."""
        target = self.target
        ssh = paramiko.SSHClient()
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            ssh.connect(
                hostname=target.host,
                port=target.port,
                username=target.username,
                password=target.password or None,
                key_filename=target.key_file,
                timeout=target.timeout
            )
            sftp = ssh.open_sftp()
        except paramiko.AuthenticationException as e:
            ssh.close()
            raise TransportFailure(target.address, TransportPhase.AUTHENTICATE, str(e)) from e
        except (paramiko.SSHException, OSError) as e:
            ssh.close()
            raise TransportFailure(target.address, TransportPhase.CONNECT, str(e)) from e

        sftp.ssh = ssh  # Keep reference to SSH connection
        return sftp

    @contextmanager
    def get_sftp(self) -> Iterator[paramiko.SFTPClient]:
        """Context manager for an SFTP session with automatic cleanup."""
        sftp = self._create_sftp_connection()
        try:
            yield sftp
        finally:
            sftp.close()
            sftp.ssh.close()

    def upload_file(self, local_path: Union[str, Path], remote_path: str, mode: int = 0o644) -> int:
        """Upload a local file and return the remote size in bytes."""
        with self.get_sftp() as sftp:
            try:
                sftp.put(str(local_path), remote_path)
                sftp.chmod(remote_path, mode)
                size = sftp.stat(remote_path).st_size
            except (paramiko.SSHException, OSError) as e:
                raise TransportFailure(self.target.address, TransportPhase.UPLOAD,
                                       f"{local_path} -> {remote_path}: {e}") from e

        logger.info(f"Uploaded {local_path} to {self.target.address}:{remote_path} ({size} bytes)")
        return size

    def download_file(self, remote_path: str, local_path: Union[str, Path]) -> int:
        """Download a remote file and return its size in bytes."""
        with self.get_sftp() as sftp:
            return self._download(sftp, remote_path, Path(local_path))

    def download_directory(self, remote_dir: str, local_dir: Union[str, Path]) -> List[Tuple[str, int]]:
        """Download every regular file of remote_dir into local_dir."""
        local_dir = Path(local_dir)
        copied = []
        with self.get_sftp() as sftp:
            try:
                entries = sorted(sftp.listdir_attr(remote_dir), key=lambda entry: entry.filename)
            except (paramiko.SSHException, OSError) as e:
                raise TransportFailure(self.target.address, TransportPhase.DOWNLOAD,
                                       f"cannot list {remote_dir}: {e}") from e

            for entry in entries:
                if entry.st_mode is not None and not stat.S_ISREG(entry.st_mode):
                    continue
                remote_path = f"{remote_dir.rstrip('/')}/{entry.filename}"
                size = self._download(sftp, remote_path, local_dir / entry.filename)
                copied.append((entry.filename, size))
        return copied

    def _download(self, sftp: paramiko.SFTPClient, remote_path: str, local_path: Path) -> int:
        try:
            sftp.get(remote_path, str(local_path))
            size = sftp.stat(remote_path).st_size
        except (paramiko.SSHException, OSError) as e:
            raise TransportFailure(self.target.address, TransportPhase.DOWNLOAD,
                                   f"{remote_path} -> {local_path}: {e}") from e

        logger.info(f"Copied {remote_path} to {local_path} ({size} bytes)")
        return size
