"""Bifrost CLI - bridge a CLI agent to the IDE."""

from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bifrost import __version__
from bifrost.config import BifrostConfig, validate_config
from bifrost.logging import setup_logging

# Logs go to stderr; this console is for the user
console = Console()
# Everything serve prints goes to stderr, like the logs
serve_console = Console(stderr=True)


@click.group()
@click.version_option(version=__version__)
def cli():
    """Bifrost - MCP bridge between CLI agents and the IDE"""
    pass


@cli.command()
@click.option(
    "--root",
    "-r",
    "roots",
    multiple=True,
    type=click.Path(exists=True, file_okay=False),
    help="Workspace root to expose (can specify multiple; default: current directory)",
)
@click.option("--host", default=None, help="Interface to bind")
@click.option("--port-start", type=int, default=None, help="First port to try")
@click.option("--port-end", type=int, default=None, help="Last port to try")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Config file")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON")
@click.option("--no-lockfile", is_flag=True, help="Do not write a discovery lock file")
def serve(
    roots: tuple,
    host: Optional[str],
    port_start: Optional[int],
    port_end: Optional[int],
    config_path: Optional[str],
    log_level: Optional[str],
    json_logs: bool,
    no_lockfile: bool,
):
    """Serve the workspace to CLI agents over MCP.

    Examples:

        bifrost serve

        bifrost serve --root ~/src/api --root ~/src/web --port-start 9000
    """
    from bifrost.ide.headless import HeadlessIDE
    from bifrost.ide.server import BridgeServer

    config = BifrostConfig.load(config_path)
    if roots:
        config.workspace_roots = [Path(r) for r in roots]
    if not config.workspace_roots:
        config.workspace_roots = [Path.cwd()]
    if host:
        config.server.host = host
    if port_start is not None:
        config.server.port_start = port_start
    if port_end is not None:
        config.server.port_end = port_end
    if log_level:
        config.log_level = log_level.upper()
    if json_logs:
        config.json_logs = True
    if no_lockfile:
        config.server.write_lockfile = False

    setup_logging(
        level=config.log_level,
        log_file=str(config.log_file) if config.log_file else None,
        json_format=config.json_logs,
    )

    for warning in validate_config(config):
        serve_console.print(f"[yellow]⚠ {warning}[/yellow]")

    server = BridgeServer(HeadlessIDE(config.workspace_roots), config)
    serve_console.print(
        Panel(
            f"[bold blue]Bifrost MCP bridge[/bold blue]\n\n"
            f"Host: {config.server.host}\n"
            f"Ports: {config.server.port_start}-{config.server.port_end}\n"
            f"Roots: {', '.join(str(r) for r in config.workspace_roots)}",
            title="🌈 Starting Bridge",
        )
    )

    try:
        server.run()
    except OSError as e:
        serve_console.print(f"[red]✗ {e}[/red]")
        raise SystemExit(1)
    except KeyboardInterrupt:
        serve_console.print("\n[dim]Bridge stopped[/dim]")


@cli.command()
@click.option("--lock-dir", type=click.Path(), default=None, help="Lock file directory")
def status(lock_dir: Optional[str]):
    """List running bridges from their lock files."""
    from bifrost.ide.lockfile import DEFAULT_LOCK_DIR, list_lock_files

    directory = Path(lock_dir) if lock_dir else DEFAULT_LOCK_DIR
    locks = list_lock_files(directory)
    if not locks:
        console.print(f"[yellow]No lock files in {directory}[/yellow]")
        return

    table = Table(title="IDE Bridges")
    table.add_column("Port", style="cyan")
    table.add_column("IDE")
    table.add_column("PID")
    table.add_column("Status")
    table.add_column("Workspace Folders")

    for info in locks:
        alive = "[green]running[/green]" if info.process_alive else "[red]stale[/red]"
        table.add_row(
            str(info.port),
            info.ide_name,
            str(info.pid),
            alive,
            "\n".join(info.workspace_folders),
        )

    console.print(table)


@cli.command()
def tools():
    """Show the tools offered to agents."""
    from bifrost.tools.registry import ToolRegistry

    registry = ToolRegistry.default()

    table = Table(title="Bifrost Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Parameters")
    table.add_column("Description")

    for definition in registry.list_definitions():
        schema = definition["inputSchema"]
        required = set(schema.get("required", []))
        params = [
            f"{name}*" if name in required else name
            for name in schema.get("properties", {})
        ]
        table.add_row(definition["name"], ", ".join(params) or "-", definition["description"])

    console.print(table)
    console.print("[dim]* required[/dim]")


@cli.command("config-check")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Config file")
def config_check(config_path: Optional[str]):
    """Validate the configuration and report problems."""
    config = BifrostConfig.load(config_path)
    warnings = validate_config(config)

    console.print(
        Panel(
            f"Ports: {config.server.port_start}-{config.server.port_end} on {config.server.host}\n"
            f"Subprotocols: {', '.join(config.server.subprotocols)}\n"
            f"Lock dir: {config.server.lock_dir}\n"
            f"Diff TTL: {config.diff.pending_ttl_seconds or 'never'}",
            title="Bifrost Configuration",
        )
    )

    if not warnings:
        console.print("[green]✓ Configuration OK[/green]")
        return
    for warning in warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")


def main():
    cli()


if __name__ == "__main__":
    main()
