"""
CLI: ``unity-builder`` — run reconciliation and dispatch outside the function runtime.

Commands:
    reconcile   Print the MatchSet (table or JSON).
    dispatch    Full reconcile + guard + dispatch flow; prints the DispatchResult.
    check       Ping the catalog and list its collections.
    config      Show effective settings.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from unity_builder import __version__
from unity_builder.core.errors import BuilderError
from unity_builder.core.logging import configure_logging
from unity_builder.core.settings import BuilderSettings, get_settings
from unity_builder.environment import BuilderEnvironment

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="unity-builder",
    help="unity-builder — reconcile uploaded tour assets and dispatch builds.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_SENSITIVE_MARKERS = ("password", "token", "uri")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"unity-builder {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override the log level."),
) -> None:
    """unity-builder CLI."""
    settings = _settings()
    configure_logging(log_level or settings.log_level, json_format=settings.log_json)


# ── Helpers ──────────────────────────────────────────────────────────────


def _settings() -> BuilderSettings:
    try:
        return get_settings()
    except ValueError as exc:
        err_console.print(f"[red]Configuration Error:[/red] {exc}")
        raise typer.Exit(2) from exc


def _environment() -> BuilderEnvironment:
    return BuilderEnvironment(_settings())


def _fail(exc: BuilderError) -> typer.Exit:
    err_console.print(f"[red]{exc.kind.value}:[/red] {exc.message}")
    if exc.diagnostics:
        err_console.print(f"  {exc.diagnostics}")
    return typer.Exit(1)


def redact_settings(values: dict[str, Any]) -> dict[str, Any]:
    return {
        key: "**********" if value and any(m in key for m in _SENSITIVE_MARKERS) else value
        for key, value in values.items()
    }


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("reconcile")
def reconcile_command(
    output_json: bool = typer.Option(False, "--json", help="Print the MatchSet as JSON."),
) -> None:
    """Reconcile the catalog against storage and print the matches."""
    env = _environment()
    try:
        service = env.service()
        matches = service.reconcile()
    except BuilderError as exc:
        raise _fail(exc) from exc
    finally:
        env.close()

    if output_json:
        console.print_json(json.dumps([ref.to_payload() for ref in matches]))
        return

    table = Table(title=f"Matching assets ({len(matches)})")
    table.add_column("Tour")
    table.add_column("Scene")
    table.add_column("Name")
    table.add_column("Storage key")
    for ref in matches:
        table.add_row(ref.tour_id or "", ref.scene_id or "", ref.name or "", ref.storage_key or "")
    console.print(table)


@app.command("dispatch")
def dispatch_command(
    backend: str | None = typer.Option(
        None, "--backend", "-b", help="Backend: instance or task (default: configured)."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Reconcile only; do not dispatch."),
) -> None:
    """Reconcile and dispatch a build."""
    if backend is not None and backend not in ("instance", "task"):
        err_console.print(f"[red]Error:[/red] unknown backend {backend!r}")
        raise typer.Exit(2)

    env = _environment()
    try:
        target = env.target(backend)
        result = env.service(backend).run(target, deadline=env.deadline(), dry_run=dry_run)
    except BuilderError as exc:
        raise _fail(exc) from exc
    finally:
        env.close()

    console.print_json(json.dumps(result.to_dict()))
    if not result.succeeded:
        raise typer.Exit(1)


@app.command("check")
def check_command() -> None:
    """Check catalog connectivity."""
    env = _environment()
    try:
        env.catalog_pool.database()
        alive = env.catalog_pool.ping()
        collections = env.catalog.list_collections()
    except BuilderError as exc:
        raise _fail(exc) from exc
    finally:
        env.close()

    status = "[green]✓ reachable[/green]" if alive else "[red]✗ unreachable[/red]"
    console.print(f"[bold]Catalog:[/bold] {status}")
    table = Table()
    table.add_column("Collection")
    for name in sorted(collections):
        table.add_row(name)
    console.print(table)
    if not alive:
        raise typer.Exit(1)


@app.command("config")
def config_command(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show effective settings."""
    values = redact_settings(_settings().model_dump())

    if format == "json":
        console.print_json(json.dumps(values, default=str))
        return

    if format == "env":
        for key, value in sorted(values.items()):
            console.print(f"UNITY_BUILDER_{key.upper()}={'' if value is None else value}")
        return

    table = Table()
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in sorted(values.items()):
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


if __name__ == "__main__":
    app()
