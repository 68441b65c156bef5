"""
targets:
    The fixed set of coding agents cubic-plugin installs into.

Each target binds a directory layout, a command format and an MCP config
strategy. Targets are looked up by name in TARGETS; "all" selects every one.
"""

import json
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import cubic_plugin.config as config
from cubic_plugin.errors import ConfigurationError, SourceFetchError
from cubic_plugin.formats import CommandFormat, auth_header, convert_mcp_config
from cubic_plugin.manifest import read_manifest
from cubic_plugin.placement import (
    InstallMethod,
    PlacedAsset,
    install_commands,
    install_skills,
    merge_flat_mcp_config,
    merge_json_config,
    merge_opencode_config,
    merge_toml_config,
    remove_files,
    remove_flat_mcp_config,
    remove_json_config,
    remove_opencode_config,
    remove_toml_config,
    uninstall_skills,
)

logger = logging.getLogger(__name__)

ALL_TARGETS = "all"


def prefixed(filename: str) -> str:
    return f"{config.COMMAND_PREFIX}{filename}"


def prefixed_toml(filename: str) -> str:
    return f"{config.COMMAND_PREFIX}{Path(filename).stem}.toml"


@dataclass(frozen=True)
class TargetLayout:
    """Where a target keeps skills and commands, and how commands are rendered."""

    skills_dir: Callable[[Path], Path]
    command_dir: Callable[[Path], Path]
    command_format: CommandFormat
    command_filename: Callable[[str], str]
    command_kind: str = "command"


def _standard_layout(
    command_subdir: str = "commands",
    command_format: CommandFormat = CommandFormat.STRIPPED,
    command_filename: Callable[[str], str] = prefixed,
) -> TargetLayout:
    return TargetLayout(
        skills_dir=lambda root: root / "skills",
        command_dir=lambda root: root / command_subdir,
        command_format=command_format,
        command_filename=command_filename,
        command_kind="prompt" if command_subdir == "prompts" else "command",
    )


@dataclass
class InstallContext:
    source_root: Path
    output_root: Path
    method: InstallMethod = InstallMethod.PASTE
    api_key: str | None = None
    skills_only: bool = False


@dataclass
class InstallOutcome:
    """Everything one target placed, in install order."""

    assets: list[PlacedAsset] = field(default_factory=list)

    def count(self, kind: str) -> int:
        return sum(1 for a in self.assets if a.kind == kind)

    @property
    def skills(self) -> int:
        return self.count("skill")

    @property
    def commands(self) -> int:
        return self.count("command")

    @property
    def prompts(self) -> int:
        return self.count("prompt")

    @property
    def mcp_servers(self) -> int:
        return self.count("mcp-config")


@dataclass
class RemovalOutcome:
    skills: int = 0
    files: int = 0
    mcp: bool = False


# =============================================================================
# Base target
# =============================================================================


class Target:
    """Shared install/uninstall logic driven by the target's layout."""

    name: str = ""
    layout: TargetLayout = _standard_layout()

    def default_root(self) -> Path:
        raise NotImplementedError

    def command_dir(self, output_root: Path) -> Path:
        return self.layout.command_dir(output_root)

    def skills_dir(self, output_root: Path) -> Path:
        return self.layout.skills_dir(output_root)

    def known_command_files(self) -> list[str]:
        return [self.layout.command_filename(f"{name}.md") for name in config.CUBIC_COMMANDS]

    def install(self, ctx: InstallContext) -> InstallOutcome:
        skill_names = [config.REVIEW_SKILL] if ctx.skills_only else None
        command_names = [config.REVIEW_COMMAND] if ctx.skills_only else None
        # The lone review command counts as a command even where the layout holds prompts
        command_kind = "command" if ctx.skills_only else self.layout.command_kind

        outcome = InstallOutcome()
        outcome.assets += install_skills(
            ctx.source_root, self.skills_dir(ctx.output_root), ctx.method, names=skill_names
        )
        outcome.assets += install_commands(
            ctx.source_root,
            self.command_dir(ctx.output_root),
            self.layout.command_format,
            self.layout.command_filename,
            ctx.method,
            names=command_names,
            kind=command_kind,
        )
        if not ctx.skills_only:
            outcome.assets += self.install_mcp(ctx)
        return outcome

    def install_mcp(self, ctx: InstallContext) -> list[PlacedAsset]:
        return []

    def remove_mcp(self, output_root: Path) -> bool:
        return False

    def uninstall(self, output_root: Path) -> RemovalOutcome:
        """Remove every known cubic asset plus anything the manifest recorded."""
        outcome = RemovalOutcome()
        outcome.skills = uninstall_skills(self.skills_dir(output_root), config.CUBIC_SKILLS)
        outcome.files = remove_files(self.command_dir(output_root), self.known_command_files())

        manifest = read_manifest(output_root)
        if manifest is not None:
            for entry in manifest.entries:
                if entry.kind == "mcp-config":
                    continue
                path = output_root / entry.path
                if path.is_symlink() or path.is_file():
                    path.unlink()
                    outcome.files += 1
                if entry.kind == "skill" and path.parent.is_dir() and not any(path.parent.iterdir()):
                    path.parent.rmdir()

        outcome.mcp = self.remove_mcp(output_root)
        return outcome

    def _mcp_asset(self, config_path: Path) -> PlacedAsset:
        return PlacedAsset(config.MCP_SERVER_NAME, "mcp-config", config_path, InstallMethod.PASTE)

    def _server_entry(self, api_key: str | None) -> dict[str, Any]:
        return {
            "url": config.MCP_URL,
            "headers": {"Authorization": auth_header(api_key)},
        }


def read_source_descriptor(source_root: Path) -> dict[str, Any] | None:
    """Load the bundle's flat ``.mcp.json`` server mapping, if present.

    Raises SourceFetchError when the file is not a mapping of server name to
    server object.
    """
    path = source_root / config.MCP_DESCRIPTOR
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise SourceFetchError(f"{path} is not valid JSON: {e}", retryable=False) from e
    if not isinstance(data, dict):
        raise SourceFetchError(f"{path} does not contain a JSON object", retryable=False)
    for name, server in data.items():
        if not isinstance(server, dict):
            raise SourceFetchError(f"Server '{name}' in {path} is not an object", retryable=False)
    return data


# =============================================================================
# Concrete targets
# =============================================================================


class ClaudeTarget(Target):
    """Claude Code.

    Installed at the default root, the MCP server goes into ``~/.claude.json``.
    Installed anywhere else, it goes into a plugin-style ``.mcp.json`` beside
    the skills so nothing outside the output root is touched.
    """

    name = "claude"
    layout = _standard_layout(command_format=CommandFormat.ORIGINAL)

    def default_root(self) -> Path:
        return Path.home() / ".claude"

    def _uses_user_config(self, output_root: Path) -> bool:
        return output_root.resolve() == self.default_root().resolve()

    def mcp_config_path(self, output_root: Path) -> Path:
        if self._uses_user_config(output_root):
            return Path.home() / ".claude.json"
        return output_root / config.MCP_DESCRIPTOR

    def install_mcp(self, ctx: InstallContext) -> list[PlacedAsset]:
        servers = read_source_descriptor(ctx.source_root)
        if not servers:
            return []
        config_path = self.mcp_config_path(ctx.output_root)
        if self._uses_user_config(ctx.output_root):
            merge_json_config(config_path, servers)
        else:
            merge_flat_mcp_config(config_path, servers)
        return [PlacedAsset(name, "mcp-config", config_path, InstallMethod.PASTE) for name in servers]

    def remove_mcp(self, output_root: Path) -> bool:
        config_path = self.mcp_config_path(output_root)
        if self._uses_user_config(output_root):
            return remove_json_config(config_path)
        return remove_flat_mcp_config(config_path)


class OpenCodeTarget(Target):
    name = "opencode"

    def default_root(self) -> Path:
        return Path.home() / ".config" / "opencode"

    def install_mcp(self, ctx: InstallContext) -> list[PlacedAsset]:
        servers = read_source_descriptor(ctx.source_root)
        if not servers:
            return []
        converted = convert_mcp_config(servers)
        config_path = ctx.output_root / "opencode.json"
        merge_opencode_config(config_path, converted)
        return [PlacedAsset(name, "mcp-config", config_path, InstallMethod.PASTE) for name in converted]

    def remove_mcp(self, output_root: Path) -> bool:
        return remove_opencode_config(output_root / "opencode.json")


class CursorTarget(Target):
    name = "cursor"

    def default_root(self) -> Path:
        return Path.home() / ".cursor"

    def install_mcp(self, ctx: InstallContext) -> list[PlacedAsset]:
        config_path = ctx.output_root / "mcp.json"
        merge_json_config(config_path, {config.MCP_SERVER_NAME: self._server_entry(ctx.api_key)})
        return [self._mcp_asset(config_path)]

    def remove_mcp(self, output_root: Path) -> bool:
        return remove_json_config(output_root / "mcp.json")


class CodexTarget(Target):
    name = "codex"
    layout = _standard_layout(command_subdir="prompts")

    def default_root(self) -> Path:
        return Path.home() / ".codex"

    def install_mcp(self, ctx: InstallContext) -> list[PlacedAsset]:
        config_path = ctx.output_root / "config.toml"
        table = "\n".join(
            [
                f"[mcp_servers.{config.MCP_SERVER_NAME}]",
                f"url = {json.dumps(config.MCP_URL)}",
                f"http_headers = {{ Authorization = {json.dumps(auth_header(ctx.api_key))} }}",
            ]
        )
        merge_toml_config(config_path, table)
        return [self._mcp_asset(config_path)]

    def remove_mcp(self, output_root: Path) -> bool:
        return remove_toml_config(output_root / "config.toml")


class DroidTarget(Target):
    name = "droid"

    def default_root(self) -> Path:
        return Path.home() / ".factory"

    def install_mcp(self, ctx: InstallContext) -> list[PlacedAsset]:
        config_path = ctx.output_root / "mcp.json"
        entry = {"type": "http", **self._server_entry(ctx.api_key), "disabled": False}
        merge_json_config(config_path, {config.MCP_SERVER_NAME: entry})
        return [self._mcp_asset(config_path)]

    def remove_mcp(self, output_root: Path) -> bool:
        return remove_json_config(output_root / "mcp.json")


class PiTarget(Target):
    """Pi agent. MCP servers are reached through mcporter, in a directory we own."""

    name = "pi"
    layout = _standard_layout(command_subdir="prompts")

    def default_root(self) -> Path:
        return Path.home() / ".pi" / "agent"

    def install_mcp(self, ctx: InstallContext) -> list[PlacedAsset]:
        config_path = ctx.output_root / "cubic" / "mcporter.json"
        entry = {
            "baseUrl": config.MCP_URL,
            "headers": {"Authorization": auth_header(ctx.api_key)},
        }
        merge_json_config(config_path, {config.MCP_SERVER_NAME: entry})
        return [self._mcp_asset(config_path)]

    def remove_mcp(self, output_root: Path) -> bool:
        mcporter_dir = output_root / "cubic"
        if not mcporter_dir.exists():
            return False
        shutil.rmtree(mcporter_dir)
        return True


class GeminiTarget(Target):
    name = "gemini"
    layout = _standard_layout(command_format=CommandFormat.TOML, command_filename=prefixed_toml)

    def default_root(self) -> Path:
        return Path.cwd() / ".gemini"

    def install_mcp(self, ctx: InstallContext) -> list[PlacedAsset]:
        config_path = ctx.output_root / "settings.json"
        merge_json_config(config_path, {config.MCP_SERVER_NAME: self._server_entry(ctx.api_key)})
        return [self._mcp_asset(config_path)]

    def remove_mcp(self, output_root: Path) -> bool:
        return remove_json_config(output_root / "settings.json")


# =============================================================================
# Registry
# =============================================================================

TARGETS: dict[str, Target] = {
    target.name: target
    for target in (
        ClaudeTarget(),
        OpenCodeTarget(),
        CursorTarget(),
        CodexTarget(),
        DroidTarget(),
        PiTarget(),
        GeminiTarget(),
    )
}

TARGET_NAMES = list(TARGETS)


def get_target(name: str) -> Target:
    """Get a target by name. Raises ConfigurationError if not found."""
    if name not in TARGETS:
        raise ConfigurationError(
            f"Unknown target: {name}. Available: {', '.join(TARGET_NAMES)}, {ALL_TARGETS}",
            code="UNKNOWN_TARGET",
        )
    return TARGETS[name]


def select_targets(selector: str) -> list[Target]:
    if selector == ALL_TARGETS:
        return list(TARGETS.values())
    return [get_target(selector)]


def output_root_for(target: Target, output: Path | None) -> Path:
    """Per-target output root: ``<output>/<name>`` when overridden, else the default."""
    if output is not None:
        return output.expanduser().resolve() / target.name
    return target.default_root()
