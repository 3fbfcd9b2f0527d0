"""Command line front end of the IOT2050 config handler."""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from typing_extensions import Annotated

from . import __version__
from .backup_executor import backup_grafana_config, backup_influxdb
from .config import settings
from .deployment import DeploymentCommands, send_and_restart_telegraf
from .errors import ConfigHandlerError, ErrorClassifier, OperationAborted
from .file_storage import atomic_write_text
from .options import (
    CliFlags,
    DefaultsPrompter,
    Prompter,
    RunOptions,
    resolve_base_options,
    resolve_generation_options,
)
from .renderer import AgentSettings, render_config
from .template_loader import discover_templates, load_templates

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="iot-config-handler",
    help="Generates a config file for Telegraf from XML files in the folder.",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"IOT2050 config handler {__version__}")
        raise typer.Exit()


def _mask(secret: str) -> str:
    return "********" if secret else "(not set)"


def print_config(options: RunOptions) -> None:
    typer.echo("Current configuration:")
    typer.echo("=====================")
    typer.echo(f"Folder: {options.folder}")
    typer.echo(f"IP: {options.opc_server.ip}")
    typer.echo(f"Username: {options.opc_server.username}")
    typer.echo(f"Password: {_mask(options.opc_server.password)}")
    typer.echo(f"IOT Host: {options.target.address}")
    typer.echo(f"IOT Password: {_mask(options.target.password)}")
    typer.echo(f"Token Folder: {options.token_folder}")
    typer.echo(f"Send config: {options.send}")
    typer.echo(f"Backup InfluxDB: {options.backup_influx}")
    typer.echo(f"Backup Grafana: {options.backup_grafana}")
    typer.echo("=====================\n")


def deploy(options: RunOptions) -> None:
    """Send telegraf.conf to the device, restart Telegraf and report its state."""
    typer.echo(f"Sending {options.config_path} to {options.target.address} ..")
    result = send_and_restart_telegraf(
        options.config_path,
        options.target,
        commands=DeploymentCommands.from_settings(settings)
    )

    if result.active:
        typer.echo(f"Telegraf service restarted successfully. Current status: {result.service_status}")
        return

    typer.echo(f"Telegraf service restarted, but it's not active. Current status: {result.service_status}", err=True)
    typer.echo(f"Detailed Telegraf status:\n{result.diagnostics.get('status', '')}", err=True)
    typer.echo(f"Recent Telegraf logs:\n{result.diagnostics.get('logs', '')}", err=True)
    errors = result.diagnostics.get('errors', '').strip()
    if errors:
        typer.echo(f"Latest Telegraf error logs:\n{errors}", err=True)
    else:
        typer.echo("No recent error logs found for Telegraf.", err=True)
    raise typer.Exit(code=1)


def run_backups(options: RunOptions) -> None:
    if options.backup_influx:
        result = backup_influxdb(
            options.target,
            local_root=Path.cwd(),
            data_path=settings.influx_data_path,
            read_timeout=settings.influx_backup_timeout
        )
        for file_name, size in result.files:
            typer.echo(f"Copied {file_name} ({size} bytes)")
        typer.echo(f"Backup completed successfully. Files are located at: {result.local_path}")

    if options.backup_grafana:
        result = backup_grafana_config(
            options.target,
            local_path=Path.cwd() / settings.grafana_backup_file,
            remote_path=settings.grafana_config_path
        )
        typer.echo(f"Grafana configuration backed up to {result.local_path}")


def generate(options: RunOptions, flags: CliFlags, prompter: Prompter) -> None:
    """Render telegraf.conf from the templates in the folder and optionally send it."""
    files = discover_templates(options.folder)
    typer.echo("Found the following XML files in the folder:")
    for index, path in enumerate(files, start=1):
        typer.echo(f"{index}. {path}")
    typer.echo("")

    options = resolve_generation_options(options, files, flags, settings, prompter)

    templates = load_templates(
        list(options.template_files),
        server=options.opc_server,
        nodeset_settings=options.nodeset_settings,
        namespace_index=settings.nodeset_namespace_index
    )
    rendered = render_config(
        templates,
        AgentSettings.from_settings(settings, options.influx_token),
        origin=str(options.folder)
    )
    atomic_write_text(options.config_path, rendered.text)
    typer.echo(f"Config file generated successfully! ({options.config_path})")

    if prompter.confirm("Do you want to send the config file to the IOT box?", default=False):
        deploy(options)
    else:
        typer.echo("Config file generated. Please copy it and run telegraf manually.")


@app.command()
def run(
    folder: Annotated[
        Optional[Path],
        typer.Option("--folder", "-f", help="Folder containing the XML files; telegraf.conf is written here (default: cwd)."),
    ] = None,
    ip: Annotated[
        Optional[str],
        typer.Option("--ip", "-i", help="OPC UA server IP address."),
    ] = None,
    username: Annotated[
        Optional[str],
        typer.Option("--username", "-u", help="OPC UA username."),
    ] = None,
    password: Annotated[
        Optional[str],
        typer.Option("--password", "-p", help="OPC UA password."),
    ] = None,
    iot_host: Annotated[
        Optional[str],
        typer.Option("--iot-host", "-a", help="IOT2050 host address and port (HOST[:PORT])."),
    ] = None,
    iot_password: Annotated[
        Optional[str],
        typer.Option("--iot-password", "-w", help="IOT2050 SSH password."),
    ] = None,
    token: Annotated[
        Optional[Path],
        typer.Option("--token", "-t", help="Folder containing the InfluxDB token.txt (default: the template folder)."),
    ] = None,
    influx_token: Annotated[
        Optional[str],
        typer.Option("--influx-token", help="InfluxDB token, used instead of token.txt."),
    ] = None,
    listener: Annotated[
        Optional[List[str]],
        typer.Option("--listener", help="Nodeset file to render as an OPC UA listener. Repeatable."),
    ] = None,
    send: Annotated[
        bool,
        typer.Option("--send", "-s", help="Send the existing telegraf.conf file to the IOT2050 and quit."),
    ] = False,
    backup_influx: Annotated[
        bool,
        typer.Option("--backup-influx", "-b", help="Back up the InfluxDB v2 database of the IOT2050 into the current directory."),
    ] = False,
    backup_grafana: Annotated[
        bool,
        typer.Option("--backup-grafana", "-g", help="Back up the Grafana configuration of the IOT2050 into the current directory."),
    ] = False,
    assume_yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not prompt; use defaults for every question."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit."),
    ] = None,
) -> None:
    """Generate telegraf.conf from XML templates, send it to the IOT2050 or back up its data."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.WARNING),
        format="[%(levelname)s] %(message)s",
    )

    flags = CliFlags(
        folder=folder,
        ip=ip,
        username=username,
        password=password,
        iot_host=iot_host,
        iot_password=iot_password,
        token_folder=token,
        influx_token=influx_token,
        listeners=tuple(listener or ()),
        send=send,
        backup_influx=backup_influx,
        backup_grafana=backup_grafana,
        assume_yes=assume_yes,
    )
    prompter = DefaultsPrompter() if assume_yes else Prompter()

    try:
        options = resolve_base_options(flags, settings)
        print_config(options)

        if options.send:
            deploy(options)
        elif options.backup_influx or options.backup_grafana:
            run_backups(options)
        else:
            generate(options, flags, prompter)
    except OperationAborted:
        typer.echo("Aborting.", err=True)
        raise typer.Exit(code=1)
    except ConfigHandlerError as e:
        logger.debug("Run failed", exc_info=True)
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Suggested action: {ErrorClassifier.suggest_action(e)}", err=True)
        raise typer.Exit(code=1)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
