"""cubic-plugin CLI - install cubic skills, commands and MCP config into AI coding agents."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from cubic_plugin import __version__
from cubic_plugin.events import EventEmitter
from cubic_plugin.installer import InstallOptions, run_install, run_uninstall
from cubic_plugin.placement import InstallMethod
from cubic_plugin.targets import ALL_TARGETS, TARGET_NAMES

app = typer.Typer(
    name="cubic-plugin",
    help="Install the cubic AI code review plugin for AI coding tools.",
    no_args_is_help=True,
)

console = Console()

TARGET_HELP = f"Target: {', '.join(TARGET_NAMES)}, or \"{ALL_TARGETS}\""
OUTPUT_HELP = "Output directory (overrides default per-target paths)"


def version_callback(value: bool) -> None:
    if value:
        console.print(f"cubic-plugin {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Send diagnostics to stderr so stdout stays clean for --json."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="Log diagnostics to stderr")] = False,
) -> None:
    """cubic-plugin - cubic code review for Claude Code, OpenCode, Cursor, Codex, Droid, Pi and Gemini."""
    configure_logging(verbose)


@app.command("install")
def install(
    to: Annotated[str, typer.Option("--to", help=TARGET_HELP)] = "claude",
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help=OUTPUT_HELP)] = None,
    skills_only: Annotated[
        bool, typer.Option("--skills-only", help="Install only the run-review skill and command, no MCP server")
    ] = False,
    method: Annotated[
        str, typer.Option("--method", help="How files are placed: paste (copy) or symlink")
    ] = InstallMethod.PASTE.value,
    json_output: Annotated[bool, typer.Option("--json", help="Emit NDJSON events on stdout")] = False,
) -> None:
    """Install the cubic plugin for AI coding tools."""
    options = InstallOptions(to=to, output=output, skills_only=skills_only, method=method)
    code = run_install(options, EventEmitter(json_output), Console(quiet=json_output))
    if code:
        raise typer.Exit(code)


@app.command("uninstall")
def uninstall(
    to: Annotated[str, typer.Option("--to", help=TARGET_HELP)] = "claude",
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help=OUTPUT_HELP)] = None,
) -> None:
    """Remove the cubic plugin from AI coding tools."""
    code = run_uninstall(InstallOptions(to=to, output=output), console)
    if code:
        raise typer.Exit(code)
