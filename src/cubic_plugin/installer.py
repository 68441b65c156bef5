"""Install and uninstall orchestration across the selected targets."""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from rich.console import Console
from rich.markup import escape

from cubic_plugin.config import API_KEY_ENV_VAR, API_KEY_PREFIX, MCP_DESCRIPTOR, SETTINGS_URL
from cubic_plugin.errors import ConfigurationError, CubicPluginError
from cubic_plugin.events import (
    EventEmitter,
    InstallCompleted,
    InstallFailed,
    InstallStarted,
    InstallSummary,
    TargetResult,
    TargetStarted,
)
from cubic_plugin.formats import inline_api_key
from cubic_plugin.keys import acquire_api_key
from cubic_plugin.manifest import Manifest, delete_manifest, entry_from_asset, read_plugin_version, write_manifest
from cubic_plugin.placement import InstallMethod
from cubic_plugin.source import PluginSource, plugin_source
from cubic_plugin.targets import InstallContext, Target, output_root_for, read_source_descriptor, select_targets

logger = logging.getLogger(__name__)


@dataclass
class InstallOptions:
    to: str = "claude"
    output: Path | None = None
    skills_only: bool = False
    method: str = InstallMethod.PASTE.value

    @property
    def mode(self) -> str:
        return "skills-only" if self.skills_only else "full"


def parse_method(value: str) -> InstallMethod:
    try:
        return InstallMethod(value)
    except ValueError:
        choices = ", ".join(m.value for m in InstallMethod)
        raise ConfigurationError(f"Unknown method: {value}. Available: {choices}", code="UNKNOWN_METHOD") from None


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def describe_result(result: TargetResult) -> str:
    parts = [_plural(result.skills, "skill")]
    if result.commands or not result.prompts:
        parts.append(_plural(result.commands, "command"))
    if result.prompts:
        parts.append(_plural(result.prompts, "prompt"))
    if result.mcp_servers:
        parts.append(_plural(result.mcp_servers, "MCP server"))
    return ", ".join(parts)


@contextmanager
def inlined_api_key(source_root: Path, api_key: str | None) -> Iterator[None]:
    """Write the API key into the bundle's MCP descriptor for the duration.

    The descriptor's original text is restored on exit, whatever happens.
    """
    descriptor = source_root / MCP_DESCRIPTOR
    if not api_key or not descriptor.is_file():
        yield
        return

    original = descriptor.read_text(encoding="utf-8")
    try:
        servers = read_source_descriptor(source_root)
        inline_api_key(servers, api_key)
        descriptor.write_text(json.dumps(servers, indent=2) + "\n", encoding="utf-8")
        yield
    finally:
        descriptor.write_text(original, encoding="utf-8")


def install_target(
    target: Target,
    source: PluginSource,
    options: InstallOptions,
    method: InstallMethod,
    plugin_version: str,
    api_key: str | None,
) -> TargetResult:
    """Install one target and write its manifest. Failures become a failed result."""
    output_root = output_root_for(target, options.output)
    ctx = InstallContext(
        source_root=source.root,
        output_root=output_root,
        method=method,
        api_key=api_key,
        skills_only=options.skills_only,
    )
    try:
        output_root.mkdir(parents=True, exist_ok=True)
        outcome = target.install(ctx)
        manifest = Manifest(
            plugin_version=plugin_version,
            method=method,
            target=target.name,
            source_root=str(source.root.resolve()) if method is InstallMethod.SYMLINK else None,
            entries=[entry_from_asset(asset, output_root) for asset in outcome.assets],
        )
        write_manifest(output_root, manifest)
    except Exception as e:
        logger.debug("Install failed for %s", target.name, exc_info=True)
        return TargetResult(agent=target.name, status="failed", reason=str(e) or type(e).__name__)

    return TargetResult(
        agent=target.name,
        skills=outcome.skills,
        commands=outcome.commands,
        prompts=outcome.prompts,
        mcp_servers=outcome.mcp_servers,
    )


def summarize(results: list[TargetResult]) -> InstallSummary:
    succeeded = [r for r in results if r.status == "ok"]
    return InstallSummary(
        targets_total=len(results),
        targets_succeeded=len(succeeded),
        targets_failed=len(results) - len(succeeded),
        skills_total=sum(r.skills for r in succeeded),
        commands_total=sum(r.commands for r in succeeded),
        prompts_total=sum(r.prompts for r in succeeded),
        mcp_servers_total=sum(r.mcp_servers for r in succeeded),
    )


def _fail(error: CubicPluginError, emitter: EventEmitter, console: Console) -> int:
    emitter.emit(InstallFailed(code=error.code, message=error.message, retryable=error.retryable))
    console.print(f"[red]Error:[/red] {escape(error.message)}")
    return 1


def run_install(
    options: InstallOptions,
    emitter: EventEmitter,
    console: Console,
    stdin: TextIO | None = None,
) -> int:
    """Install into every selected target. Returns the process exit code."""
    try:
        targets = select_targets(options.to)
        method = parse_method(options.method)

        api_key = None
        if not options.skills_only:
            api_key = acquire_api_key(emitter, console, stdin)

        with plugin_source() as source:
            if method is InstallMethod.SYMLINK and source.cloned:
                raise ConfigurationError(
                    "The symlink method needs a local plugin source; the bundle was fetched into a temporary clone",
                    code="SYMLINK_REQUIRES_LOCAL_SOURCE",
                )
            plugin_version = read_plugin_version(source.root)
            if not options.skills_only:
                read_source_descriptor(source.root)
            logger.info("Installing plugin %s from %s", plugin_version, source.root)

            emitter.emit(InstallStarted(mode=options.mode, target=options.to))
            what = "skills" if options.skills_only else "plugin"
            console.print(f"Installing cubic {what}...\n")

            results: list[TargetResult] = []
            with inlined_api_key(source.root, api_key):
                for target in targets:
                    emitter.emit(TargetStarted(agent=target.name))
                    result = install_target(target, source, options, method, plugin_version, api_key)
                    emitter.emit(result)
                    results.append(result)
                    if result.status == "ok":
                        console.print(f"  {target.name}: {describe_result(result)}")
                    else:
                        console.print(f"  [red]{target.name}: failed[/red] ({escape(result.reason or '')})")
    except CubicPluginError as e:
        return _fail(e, emitter, console)

    summary = summarize(results)
    emitter.emit(summary)

    if summary.targets_failed:
        message = f"{summary.targets_failed} of {summary.targets_total} targets failed"
        emitter.emit(InstallFailed(code="TARGETS_FAILED", message=message, retryable=True))
        console.print(f"\n[red]{message}.[/red]")
        return 1

    emitter.emit(InstallCompleted())
    console.print("\nDone!")
    if not options.skills_only:
        console.print("\nNext steps:")
        step = 1
        if not api_key:
            console.print(f"  1. Set your API key: export {API_KEY_ENV_VAR}={API_KEY_PREFIX}your_key_here")
            console.print(f"     Get one at: {SETTINGS_URL}")
            step = 2
        console.print(f"  {step}. Restart your editor")
    return 0


def run_uninstall(options: InstallOptions, console: Console) -> int:
    """Remove cubic assets from every selected target. Returns the exit code."""
    try:
        targets = select_targets(options.to)
    except CubicPluginError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        return 1

    console.print("Removing cubic plugin...\n")
    failed = False
    for target in targets:
        output_root = output_root_for(target, options.output)
        try:
            target.uninstall(output_root)
            delete_manifest(output_root)
        except (OSError, ValueError) as e:
            logger.debug("Uninstall failed for %s", target.name, exc_info=True)
            console.print(f"  [red]{target.name}: failed[/red] ({escape(str(e))})")
            failed = True
        else:
            console.print(f"  {target.name}: removed")

    console.print("\nRestart your editor to apply changes.")
    return 1 if failed else 0
