"""Sandpiper CLI.

Commands:
    sandpiper parse    — Parse model output and show the resulting plan
    sandpiper apply    — Parse model output and apply it to a sandbox
    sandpiper archive  — Download the sandbox project as a zip
    sandpiper version  — Print version info
"""

from __future__ import annotations

import asyncio
import base64
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sandpiper.utils import get_logger, setup_logging

# Initialize logging on import
setup_logging()
logger = get_logger("cli")

app = typer.Typer(
    name="sandpiper",
    help="Sandpiper — apply model-generated code to live sandboxes",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug-level logging on stderr"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines"),
):
    if verbose or json_logs:
        setup_logging(level="debug" if verbose else None, fmt="json" if json_logs else None)


def _get_service():
    """Build the process-wide ApplyService (one registry per CLI run)."""
    from sandpiper.apply.service import ApplyService
    if not hasattr(_get_service, "_service"):
        _get_service._service = ApplyService()
    return _get_service._service


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.is_file():
        console.print(f"[red]No such file:[/] {source}")
        raise typer.Exit(code=2)
    return path.read_text(encoding="utf-8")


# ── sandpiper parse ───────────────────────────────────────────


@app.command()
def parse(
    source: str = typer.Argument(..., help="File with raw model output, or '-' for stdin"),
):
    """🔍 Parse model output and show files, packages and commands."""
    from sandpiper.apply.parser import parse_ai_response
    from sandpiper.errors import ParseError

    try:
        plan = parse_ai_response(_read_source(source))
    except ParseError as e:
        console.print(f"[red]Parse failed:[/] {e.message}")
        raise typer.Exit(code=1)

    if plan.explanation:
        console.print(Panel(plan.explanation, title="[bold cyan]Explanation[/]", border_style="cyan"))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Kind", style="cyan")
    table.add_column("Item", style="white")
    table.add_column("Detail", style="dim")
    for f in plan.files:
        table.add_row("file", f.path, f"{len(f.content)} chars")
    for spec in plan.packages:
        table.add_row("package", spec, "")
    for command in plan.commands:
        table.add_row("command", command, "")
    for issue in plan.parse_errors:
        table.add_row("[red]error[/]", issue.item, issue.message)
    console.print(table)

    if plan.structure:
        console.print(Panel(plan.structure, title="[bold yellow]Structure[/]", border_style="yellow"))


# ── sandpiper apply ───────────────────────────────────────────


@app.command()
def apply(
    source: str = typer.Argument(..., help="File with raw model output, or '-' for stdin"),
    edit: bool = typer.Option(False, "--edit", "-e", help="Edit mode (smart merge known files)"),
    package: list[str] = typer.Option([], "--package", "-p", help="Extra package to install"),
    sandbox_id: str = typer.Option("default", "--sandbox-id", "-s", help="Sandbox to apply into"),
    keep: bool = typer.Option(False, "--keep", help="Leave the sandbox running afterwards"),
):
    """🚀 Parse model output and apply it to a sandbox."""
    raw = _read_source(source)
    status, body = asyncio.run(_apply(raw, edit, package, sandbox_id, keep))
    _render_apply(status, body)
    if status != 200:
        raise typer.Exit(code=1)


async def _apply(raw: str, edit: bool, packages: list[str], sandbox_id: str, keep: bool):
    service = _get_service()
    try:
        return await service.handle_apply({
            "response": raw,
            "isEdit": edit,
            "packages": packages,
            "sandboxId": sandbox_id,
        })
    finally:
        if not keep:
            await service.shutdown()


def _render_apply(status: int, body: dict) -> None:
    if status != 200:
        console.print(f"[red]✗ {body.get('code', 'ERROR')}[/] {body.get('error', '')}")
        details = body.get("details") or {}
        if details.get("message"):
            console.print(f"[dim]{details['message']}[/]")
        return

    results = body.get("results", {})
    table = Table(show_header=True, header_style="bold")
    table.add_column("Stage", style="cyan")
    table.add_column("Item", style="white")
    table.add_column("Status")
    for path in results.get("filesCreated", []):
        table.add_row("files", path, "[green]✓[/]")
    for spec in results.get("packagesInstalled", []):
        table.add_row("packages", spec, "[green]✓[/]")
    for command in results.get("commandsExecuted", []):
        table.add_row("commands", command, "[green]✓[/]")
    for err in results.get("errors", []):
        table.add_row(err["stage"], err["item"], f"[red]✗ {err['message']}[/]")
    console.print(table)
    console.print(f"[bold]{body.get('message', '')}[/]")


# ── sandpiper archive ─────────────────────────────────────────


@app.command()
def archive(
    sandbox_id: str = typer.Option("default", "--sandbox-id", "-s", help="Sandbox to archive"),
    output: Path = typer.Option(Path("project.zip"), "--output", "-o", help="Where to save the zip"),
):
    """📦 Zip the sandbox project and save it locally."""
    from sandpiper.errors import SandpiperError

    try:
        result = asyncio.run(_archive(sandbox_id))
    except SandpiperError as e:
        console.print(f"[red]✗ {e.code}[/] {e.message}")
        raise typer.Exit(code=1)

    _, _, payload = result.data_url.partition("base64,")
    output.write_bytes(base64.b64decode(payload))
    console.print(f"[green]✓[/] Saved {result.size} bytes to {output}")


async def _archive(sandbox_id: str):
    from sandpiper.errors import ProviderUnavailable

    service = _get_service()
    provider = await service.registry.get_or_create_provider(sandbox_id)
    if service.registry.get_session(sandbox_id) is None:
        # Nothing was reattached; drop the provider built for the attempt
        try:
            await provider.terminate()
        except Exception as e:
            logger.warning("archive_provider_cleanup_failed", sandbox_id=sandbox_id, error=str(e))
        raise ProviderUnavailable(f"Sandbox {sandbox_id!r} could not be reattached")
    return await service.create_archive(sandbox_id)


# ── sandpiper version ─────────────────────────────────────────


@app.command()
def version():
    """Show the Sandpiper version."""
    from sandpiper import __version__
    from sandpiper.config import settings

    console.print(
        f"[bold cyan]sandpiper[/] {__version__}  "
        f"[dim]python {sys.version_info.major}.{sys.version_info.minor} · "
        f"provider={settings.sandbox_provider}[/]"
    )


if __name__ == "__main__":
    app()
