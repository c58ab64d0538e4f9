"""
CLI interface for IP Run Gate.

Runs the HTTP service and exposes the gate, cleanup and summary
operations for operators.
"""

import logging
import sys
from datetime import date
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ip_run_gate.config.loader import GateConfig, config_from_env, load_gate_config
from ip_run_gate.core.decision import GateDecision
from ip_run_gate.core.service import build_service

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_DENIED = 1
EXIT_CODE_FAIL = 2

CONFIG_HELP = "YAML configuration file (environment variables are used when omitted)"


def _load_config(config_path: Optional[str]) -> GateConfig:
    if config_path:
        return load_gate_config(config_path)
    return config_from_env()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("INFO", "--log-level", help="Python logging level")
):
    """IP Run Gate CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    if ctx.invoked_subcommand is None:
        console.print("IP Run Gate - Use --help to see available commands")


@app.command()
def serve(
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port")
):
    """Run the HTTP service."""
    import uvicorn

    from ip_run_gate.api.app import create_app

    try:
        gate_config = _load_config(config)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    uvicorn.run(
        create_app(gate_config),
        host=host or gate_config.server.host,
        port=port or gate_config.server.port,
    )


@app.command()
def cleanup(
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_HELP)
):
    """Delete records older than the retention horizon."""
    try:
        service = build_service(_load_config(config))
        deleted = service.cleanup()
    except Exception as e:
        console.print(f"[red]Cleanup failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Deleted {deleted} expired records")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def gate(
    ip: str = typer.Argument(..., help="Address to evaluate"),
    run_id: str = typer.Option(..., "--run-id", "-r", help="Run identifier of the caller"),
    ts: Optional[str] = typer.Option(None, "--ts", help="Caller timestamp (ISO-8601, defaults to now)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_HELP)
):
    """
    Evaluate a gate decision against the configured event log.

    Read-only: nothing is appended and no notification is sent.
    Exits 0 when the run would be admitted and 1 when it would be denied.
    """
    try:
        service = build_service(_load_config(config))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    decision = service.gate(ip, run_id, ts)
    _display_decision(ip, run_id, decision)
    sys.exit(EXIT_CODE_PASS if decision.admit else EXIT_CODE_DENIED)


@app.command()
def summary(
    day: Optional[str] = typer.Option(None, "--day", "-d", help="UTC day (YYYY-MM-DD), defaults to today"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_HELP)
):
    """Show how many distinct addresses were seen on a day."""
    try:
        service = build_service(_load_config(config))
        result = service.summary(date.fromisoformat(day) if day else None)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[bold]{result['day']}[/bold]: {result['unique_addresses']} unique addresses")
    sys.exit(EXIT_CODE_PASS)


def _display_decision(ip: str, run_id: str, decision: GateDecision) -> None:
    """Render a decision as a two-column table."""
    table = Table(title="Gate Decision")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("IP", ip)
    table.add_row("Run", run_id)
    table.add_row("Admit", "[green]yes[/]" if decision.admit else "[red]no[/]")
    table.add_row("Uses today", str(decision.uses_today))
    table.add_row("Last use (UTC)", decision.last_use_utc or "-")
    table.add_row("Reason", decision.reason.value or "-")
    console.print(table)


if __name__ == "__main__":
    app()
