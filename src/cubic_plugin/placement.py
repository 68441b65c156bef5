"""Place skills, commands and MCP config entries into agent directories."""

import json
import logging
import os
import re
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from cubic_plugin.config import (
    COMMANDS_SUBDIR,
    MCP_SERVER_NAME,
    OPENCODE_SCHEMA_URL,
    SKILL_DESCRIPTOR,
    SKILLS_SUBDIR,
)
from cubic_plugin.formats import CommandFormat, render_command

logger = logging.getLogger(__name__)


class InstallMethod(str, Enum):
    """How an asset reaches the target directory: copied or linked."""

    PASTE = "paste"
    SYMLINK = "symlink"


@dataclass(frozen=True)
class PlacedAsset:
    """One file written into a target directory."""

    name: str
    kind: str
    path: Path
    method: InstallMethod


# ── Files ────────────────────────────────────────────────────────


def _clear(dest: Path) -> None:
    if dest.is_symlink() or dest.exists():
        dest.unlink()


def install_file(source: Path, dest: Path, method: InstallMethod) -> None:
    """Copy ``source`` to ``dest``, or link it with a relative symlink.

    The link target is computed between the real (symlink-resolved) paths of
    the source and of the destination's parent, so it stays valid when the
    filesystem exposes the same directory under several aliases.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    # Never write through an existing link into the source tree
    _clear(dest)

    if method is InstallMethod.SYMLINK:
        real_parent = dest.parent.resolve()
        real_source = source.resolve()
        dest.symlink_to(os.path.relpath(real_source, real_parent))
    else:
        shutil.copyfile(source, dest)


def write_generated(dest: Path, content: str) -> None:
    """Write generated content, replacing any file or link at ``dest``."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    _clear(dest)
    dest.write_text(content, encoding="utf-8")


def install_skills(
    source_root: Path,
    skills_dir: Path,
    method: InstallMethod = InstallMethod.PASTE,
    names: Iterable[str] | None = None,
) -> list[PlacedAsset]:
    """Place every ``skills/<name>/SKILL.md`` of the bundle under ``skills_dir``.

    Subdirectories without a descriptor are skipped. ``names`` restricts the
    install to the given skills.
    """
    source_dir = source_root / SKILLS_SUBDIR
    if not source_dir.is_dir():
        return []

    wanted = set(names) if names is not None else None
    placed: list[PlacedAsset] = []
    for entry in sorted(source_dir.iterdir()):
        if not entry.is_dir():
            continue
        if wanted is not None and entry.name not in wanted:
            continue
        descriptor = entry / SKILL_DESCRIPTOR
        if not descriptor.is_file():
            continue
        dest = skills_dir / entry.name / SKILL_DESCRIPTOR
        install_file(descriptor, dest, method)
        placed.append(PlacedAsset(entry.name, "skill", dest, method))

    logger.debug("Placed %d skills in %s", len(placed), skills_dir)
    return placed


def install_commands(
    source_root: Path,
    command_dir: Path,
    fmt: CommandFormat,
    filename: Callable[[str], str],
    method: InstallMethod = InstallMethod.PASTE,
    names: Iterable[str] | None = None,
    kind: str = "command",
) -> list[PlacedAsset]:
    """Render every ``commands/*.md`` of the bundle into ``command_dir``.

    Only the original format can be linked; any other format is generated
    content and always written as a file.
    """
    source_dir = source_root / COMMANDS_SUBDIR
    if not source_dir.is_dir():
        return []

    wanted = set(names) if names is not None else None
    placed: list[PlacedAsset] = []
    for source in sorted(source_dir.glob("*.md")):
        if not source.is_file():
            continue
        if wanted is not None and source.name not in wanted:
            continue
        dest = command_dir / filename(source.name)
        if fmt is CommandFormat.ORIGINAL:
            install_file(source, dest, method)
            used = method
        else:
            text = source.read_text(encoding="utf-8")
            write_generated(dest, render_command(text, fmt))
            used = InstallMethod.PASTE
        placed.append(PlacedAsset(source.stem, kind, dest, used))

    logger.debug("Placed %d %ss in %s", len(placed), kind, command_dir)
    return placed


def uninstall_skills(skills_dir: Path, names: Iterable[str]) -> int:
    """Remove the named skill directories. Returns the number removed."""
    count = 0
    for name in names:
        skill_dir = skills_dir / name
        if skill_dir.is_symlink():
            skill_dir.unlink()
            count += 1
        elif skill_dir.exists():
            shutil.rmtree(skill_dir)
            count += 1
    return count


def remove_files(directory: Path, filenames: Iterable[str]) -> int:
    """Remove the named files (or links) from ``directory``."""
    count = 0
    for filename in filenames:
        path = directory / filename
        if path.is_symlink() or path.is_file():
            path.unlink()
            count += 1
    return count


# ── JSON configs ─────────────────────────────────────────────────

JSONC_COMMENT_RE = re.compile(r"^\s*//.*$", re.MULTILINE)


def _read_json_config(config_path: Path, allow_comments: bool = False) -> dict[str, Any]:
    """Load a JSON config file. Missing or empty files read as ``{}``.

    Unparseable files raise instead of being overwritten.
    """
    if not config_path.exists():
        return {}
    text = config_path.read_text(encoding="utf-8")
    if allow_comments:
        text = JSONC_COMMENT_RE.sub("", text)
    if not text.strip():
        return {}
    config = json.loads(text)
    if not isinstance(config, dict):
        raise ValueError(f"{config_path} does not contain a JSON object")
    return config


def _write_json_config(config_path: Path, config: dict[str, Any]) -> None:
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _section(config: dict[str, Any], key: str, config_path: Path) -> dict[str, Any]:
    section = config.get(key)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"'{key}' in {config_path} is not an object")
    return section


def _merge_section(config_path: Path, key: str, entries: dict[str, Any], allow_comments: bool = False) -> dict[str, Any]:
    config = _read_json_config(config_path, allow_comments)
    config[key] = {**_section(config, key, config_path), **entries}
    return config


def _remove_from_section(config_path: Path, key: str, name: str, allow_comments: bool = False) -> bool:
    if not config_path.exists():
        return False
    config = _read_json_config(config_path, allow_comments)
    section = _section(config, key, config_path)
    if name not in section:
        return False
    del section[name]
    if section:
        config[key] = section
    else:
        config.pop(key, None)
    _write_json_config(config_path, config)
    return True


def merge_json_config(config_path: Path, entries: dict[str, Any]) -> None:
    """Merge server entries under the ``mcpServers`` key."""
    _write_json_config(config_path, _merge_section(config_path, "mcpServers", entries))


def remove_json_config(config_path: Path, name: str = MCP_SERVER_NAME) -> bool:
    """Remove one ``mcpServers`` entry, dropping the key once it is empty."""
    return _remove_from_section(config_path, "mcpServers", name)


def merge_flat_mcp_config(config_path: Path, entries: dict[str, Any]) -> None:
    """Merge server entries at the top level of a plugin-style ``.mcp.json``."""
    config = _read_json_config(config_path)
    config.update(entries)
    _write_json_config(config_path, config)


def remove_flat_mcp_config(config_path: Path, name: str = MCP_SERVER_NAME) -> bool:
    """Remove one top-level server entry from a plugin-style ``.mcp.json``."""
    if not config_path.exists():
        return False
    config = _read_json_config(config_path)
    if name not in config:
        return False
    del config[name]
    _write_json_config(config_path, config)
    return True


def merge_opencode_config(config_path: Path, entries: dict[str, Any]) -> None:
    """Merge server entries under OpenCode's ``mcp`` key."""
    config = _merge_section(config_path, "mcp", entries, allow_comments=True)
    config.setdefault("$schema", OPENCODE_SCHEMA_URL)
    _write_json_config(config_path, config)


def remove_opencode_config(config_path: Path, name: str = MCP_SERVER_NAME) -> bool:
    """Remove one entry from OpenCode's ``mcp`` key, dropping the key once it is empty."""
    return _remove_from_section(config_path, "mcp", name, allow_comments=True)


# ── TOML configs ─────────────────────────────────────────────────

TOML_MARKER_START = "# cubic:start"
TOML_MARKER_END = "# cubic:end"


def _legacy_table_re(name: str) -> re.Pattern[str]:
    return re.compile(rf"\[mcp_servers\.{re.escape(name)}\][^\[]*")


def _strip_toml_block(text: str, name: str) -> str:
    start = text.find(TOML_MARKER_START)
    end = text.find(TOML_MARKER_END)
    if start != -1 and end != -1:
        before = text[:start].rstrip()
        after = text[end + len(TOML_MARKER_END) :].lstrip()
        separator = "\n\n" if before and after else ""
        text = before + separator + after
    # Unmarked tables written by older releases
    return _legacy_table_re(name).sub("", text)


def merge_toml_config(config_path: Path, table: str, name: str = MCP_SERVER_NAME) -> None:
    """Write an ``[mcp_servers.<name>]`` table into a Codex ``config.toml``.

    The table is wrapped in marker comments so reinstalling replaces it.
    """
    block = "\n".join([TOML_MARKER_START, table.strip(), TOML_MARKER_END])
    config_path.parent.mkdir(parents=True, exist_ok=True)

    if config_path.exists():
        text = _strip_toml_block(config_path.read_text(encoding="utf-8"), name).strip()
        separator = "\n\n" if text else ""
        config_path.write_text(text + separator + block + "\n", encoding="utf-8")
    else:
        config_path.write_text(block + "\n", encoding="utf-8")


def remove_toml_config(config_path: Path, name: str = MCP_SERVER_NAME) -> bool:
    """Remove the cubic table, deleting the file if nothing else remains."""
    if not config_path.exists():
        return False
    original = config_path.read_text(encoding="utf-8")
    cleaned = _strip_toml_block(original, name).strip()
    if cleaned == original.strip():
        return False
    if cleaned:
        config_path.write_text(cleaned + "\n", encoding="utf-8")
    else:
        config_path.unlink()
    return True
