"""
Run Option Resolution
=====================

Merges command line flags, settings defaults and interactively collected
answers into one immutable RunOptions object before any work starts.

Interactive questions (skipped with --yes, where defaults are used):
- confirmation of the discovered template files
- which OPC UA nodeset files run as listeners (subscribers)
- namespace number and interval for every nodeset file
- the InfluxDB token when no token.txt is found
"""

import ipaddress
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

import typer

from .errors import OperationAborted, OptionError
from .file_storage import read_token
from .ssh_connection import DeviceTarget, parse_host
from .template_loader import NodesetSettings, OpcServer, is_nodeset, is_valid_duration

# Configure logging
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CliFlags:
    """Raw flag values; None means 'use the settings default'."""
    folder: Optional[Path] = None
    ip: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    iot_host: Optional[str] = None
    iot_password: Optional[str] = None
    token_folder: Optional[Path] = None
    influx_token: Optional[str] = None
    listeners: Tuple[str, ...] = ()
    send: bool = False
    backup_influx: bool = False
    backup_grafana: bool = False
    assume_yes: bool = False


@dataclass(frozen=True)
class RunOptions:
    """Fully resolved options of one run."""
    folder: Path
    opc_server: OpcServer
    target: DeviceTarget
    token_folder: Path
    send: bool = False
    backup_influx: bool = False
    backup_grafana: bool = False
    assume_yes: bool = False
    template_files: Tuple[Path, ...] = ()
    nodeset_settings: Mapping[str, NodesetSettings] = field(default_factory=lambda: MappingProxyType({}))
    influx_token: Optional[str] = None
    config_file_name: str = "telegraf.conf"

    @property
    def config_path(self) -> Path:
        return self.folder / self.config_file_name


class Prompter:
    """Asks the user through typer prompts."""

    def confirm(self, text: str, default: bool = False) -> bool:
        return typer.confirm(text, default=default)

    def ask(self, text: str, default: str = "", hide_input: bool = False) -> str:
        return typer.prompt(text, default=default, show_default=bool(default), hide_input=hide_input)


class DefaultsPrompter(Prompter):
    """Answers every question with its default; used with --yes."""

    def confirm(self, text: str, default: bool = False) -> bool:
        return default

    def ask(self, text: str, default: str = "", hide_input: bool = False) -> str:
        return default


def validate_ipv4(value: str) -> str:
    """Check the OPC server address is an IPv4 address."""
    try:
        ipaddress.IPv4Address(value)
    except (ipaddress.AddressValueError, ValueError):
        raise OptionError(f"Invalid IP address format for '{value}', expecting something like: 192.168.0.1")
    return value


def parse_listener_indexes(answer: str, count: int) -> List[int]:
    """Parse '1,3' into 0-based indexes, dropping entries that are not valid."""
    indexes = []
    for part in answer.split(','):
        part = part.strip()
        if not part.isdecimal():
            continue
        number = int(part)
        if 0 < number <= count and number - 1 not in indexes:
            indexes.append(number - 1)
    return indexes


def resolve_base_options(flags: CliFlags, settings) -> RunOptions:
    """Resolve the options every mode needs; no prompts."""
    folder = Path(flags.folder) if flags.folder is not None else Path.cwd()
    token_folder = Path(flags.token_folder) if flags.token_folder is not None else folder

    opc_server = OpcServer(
        ip=validate_ipv4(flags.ip if flags.ip is not None else settings.default_ip),
        username=flags.username if flags.username is not None else settings.default_username,
        password=flags.password if flags.password is not None else settings.default_password,
        port=settings.opc_port
    )

    host, port = parse_host(flags.iot_host if flags.iot_host is not None else settings.default_iot_ip)
    target = DeviceTarget(
        host=host,
        port=port,
        username=settings.iot_username,
        password=flags.iot_password if flags.iot_password is not None else settings.default_iot_password,
        key_file=settings.ssh_key_file or None,
        remote_path=settings.remote_config_path,
        timeout=settings.ssh_timeout
    )

    return RunOptions(
        folder=folder,
        opc_server=opc_server,
        target=target,
        token_folder=token_folder,
        send=flags.send,
        backup_influx=flags.backup_influx,
        backup_grafana=flags.backup_grafana,
        assume_yes=flags.assume_yes,
        config_file_name=settings.config_file_name
    )


def _select_listeners(files: Sequence[Path], nodesets: Sequence[Path], flags: CliFlags,
                      prompter: Prompter) -> List[str]:
    listeners = set(flags.listeners)
    unknown = sorted(listeners - {path.name for path in nodesets})
    if unknown:
        raise OptionError(f"Listener file(s) {unknown} are not OPC UA nodeset templates in the folder")

    if flags.assume_yes or not nodesets:
        return sorted(listeners)

    typer.echo("OPC clients can be active (standard), pulling data every interval, or\n"
               "passive (subscribers), listening for changes.")
    answer = prompter.ask(
        "Enter the indexes of the files that should be listeners (subscribers),\n"
        "separated by commas (e.g., 1,3). If none, just press enter",
        default=""
    )
    for index in parse_listener_indexes(answer, len(files)):
        if files[index] in nodesets:
            listeners.add(files[index].name)
        else:
            logger.warning(f"{files[index].name} is not an OPC UA nodeset, ignoring listener selection")
    return sorted(listeners)


def _nodeset_settings(path: Path, listener: bool, settings, prompter: Prompter) -> NodesetSettings:
    namespace = prompter.ask(
        f"----Enter the namespace number for {path.name}",
        default=settings.default_namespace
    ).strip() or settings.default_namespace
    if not namespace.isdecimal():
        raise OptionError(f"Namespace for {path.name} must be a number, got '{namespace}'")
    namespace = str(int(namespace))

    label = "sampling_interval" if listener else "interval"
    interval = prompter.ask(
        f"----Enter the {label} for {path.name}",
        default=settings.default_node_interval
    ).strip() or settings.default_node_interval
    if interval.isdecimal():
        interval = f"{int(interval)}ms"
    if not is_valid_duration(interval):
        raise OptionError(f"Interval for {path.name} is not a valid duration: '{interval}'")

    return NodesetSettings(namespace=namespace, interval=interval, listener=listener)


def _resolve_token(options: RunOptions, flags: CliFlags, settings, prompter: Prompter) -> str:
    if flags.influx_token:
        return flags.influx_token

    token = read_token(options.token_folder, settings.token_file_name)
    if token is not None:
        typer.echo(f"InfluxDB token read from {options.token_folder / settings.token_file_name}")
        return token

    if settings.influx_token:
        return settings.influx_token

    if flags.assume_yes:
        raise OptionError(
            f"No '{settings.token_file_name}' found in {options.token_folder}; "
            "pass --influx-token or set INFLUX_TOKEN"
        )

    token = prompter.ask(
        f"No '{settings.token_file_name}' found, enter the InfluxDB token manually",
        hide_input=True
    ).strip()
    if not token:
        raise OptionError("An InfluxDB token is required")
    return token


def resolve_generation_options(options: RunOptions, files: Iterable[Path], flags: CliFlags,
                               settings, prompter: Prompter) -> RunOptions:
    """
    Extend base options with everything config generation needs.

    Args:
        options: Result of resolve_base_options()
        files: Template files from discover_templates(), sorted by name
        flags: Raw flag values
        settings: Settings defaults
        prompter: Source of interactive answers
    """
    files = list(files)
    if not flags.assume_yes and not prompter.confirm("Do you want to use these files?", default=False):
        raise OperationAborted("Aborted, the template files were not confirmed")

    nodesets = [path for path in files if is_nodeset(path)]
    listeners = _select_listeners(files, nodesets, flags, prompter)

    per_file = {
        path.name: _nodeset_settings(path, path.name in listeners, settings, prompter)
        for path in nodesets
    }

    token = _resolve_token(options, flags, settings, prompter)

    return replace(
        options,
        template_files=tuple(files),
        nodeset_settings=MappingProxyType(per_file),
        influx_token=token
    )
