"""Per-target install manifest: what was installed, how, and when."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from cubic_plugin.config import (
    DEFAULT_PLUGIN_VERSION,
    MANIFEST_FILENAME,
    MANIFEST_SCHEMA_VERSION,
    VERSION_FILES,
)
from cubic_plugin.events import timestamp
from cubic_plugin.placement import InstallMethod, PlacedAsset

logger = logging.getLogger(__name__)

EntryKind = Literal["skill", "command", "prompt", "mcp-config"]


class ManifestEntry(BaseModel):
    """One installed item, with its path relative to the output root."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    kind: EntryKind
    path: str
    method: InstallMethod


class Manifest(BaseModel):
    """Record of one target's installation.

    Attributes:
        schema_version: Manifest format version.
        plugin_version: Version of the installed plugin bundle.
        method: Install method requested for the run.
        installed_at: ISO-8601 timestamp of the install.
        target: Target name.
        source_root: Absolute bundle path, kept for symlink installs only.
        entries: Installed items, in install order.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    schema_version: Literal[1] = MANIFEST_SCHEMA_VERSION
    plugin_version: str
    method: InstallMethod
    installed_at: str = Field(default_factory=timestamp)
    target: str
    source_root: str | None = None
    entries: list[ManifestEntry] = Field(default_factory=list)


def manifest_path(output_root: Path) -> Path:
    return output_root / MANIFEST_FILENAME


def entry_from_asset(asset: PlacedAsset, output_root: Path) -> ManifestEntry:
    """Build an entry, storing the path relative to ``output_root`` when possible."""
    try:
        rel = asset.path.relative_to(output_root)
        path = rel.as_posix()
    except ValueError:
        path = str(asset.path)
    return ManifestEntry(name=asset.name, kind=asset.kind, path=path, method=asset.method)


def _atomic_write_text(path: Path, content: str) -> None:
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix=f".{path.stem}-")
    closed = False
    try:
        os.write(fd, content.encode("utf-8"))
        os.fsync(fd)
        os.close(fd)
        closed = True
        os.replace(tmp_path, path)
    except BaseException:
        if not closed:
            os.close(fd)
        if Path(tmp_path).exists():
            os.unlink(tmp_path)
        raise


def write_manifest(output_root: Path, manifest: Manifest) -> Path:
    """Write the manifest into ``output_root``, replacing any previous one."""
    output_root.mkdir(parents=True, exist_ok=True)
    path = manifest_path(output_root)
    content = manifest.model_dump_json(indent=2, by_alias=True, exclude_none=True)
    _atomic_write_text(path, content + "\n")
    logger.debug("Wrote manifest %s (%d entries)", path, len(manifest.entries))
    return path


def read_manifest(output_root: Path) -> Manifest | None:
    """Load the manifest for ``output_root``. Returns None if absent or invalid."""
    path = manifest_path(output_root)
    try:
        return Manifest.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValueError, ValidationError) as e:
        if path.exists():
            logger.debug("Ignoring unreadable manifest %s: %s", path, e)
        return None


def delete_manifest(output_root: Path) -> bool:
    path = manifest_path(output_root)
    if path.exists():
        path.unlink()
        return True
    return False


def read_plugin_version(source_root: Path) -> str:
    """Read the plugin version from the bundle's package metadata."""
    for name in VERSION_FILES:
        try:
            data = json.loads((source_root / name).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            continue
        version = data.get("version") if isinstance(data, dict) else None
        if isinstance(version, str) and version:
            return version
    return DEFAULT_PLUGIN_VERSION
