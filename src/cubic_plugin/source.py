"""Locate the plugin bundle: the co-located package data, or a fresh git clone."""

import logging
import os
import shutil
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import cubic_plugin.config as config
from cubic_plugin.errors import SourceFetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginSource:
    root: Path
    cloned: bool


def _is_bundle(path: Path) -> bool:
    return (path / config.MCP_DESCRIPTOR).is_file()


def clone_plugin_repo(repo_url: str | None = None) -> Path:
    """Shallow-clone the plugin repository into a new temporary directory."""
    repo_url = repo_url or config.PLUGIN_REPO_URL
    temp_dir = Path(tempfile.mkdtemp(prefix=config.CLONE_PREFIX))
    logger.info("Cloning %s into %s", repo_url, temp_dir)
    try:
        result = subprocess.run(
            ["git", "clone", "--depth", "1", repo_url, str(temp_dir)],
            capture_output=True,
            text=True,
        )
    except OSError as e:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise SourceFetchError(f"Failed to clone plugin: {e}") from e

    if result.returncode != 0:
        shutil.rmtree(temp_dir, ignore_errors=True)
        error = result.stderr.strip() or "Unknown error"
        raise SourceFetchError(f"Failed to clone plugin: {error}")
    return temp_dir


def resolve_plugin_root() -> PluginSource:
    """Find the bundle root, cloning it only when no local copy is available."""
    override = os.environ.get(config.SOURCE_ENV_VAR)
    if override:
        path = Path(override).expanduser().resolve()
        if not _is_bundle(path):
            raise SourceFetchError(
                f"{config.SOURCE_ENV_VAR}={override} has no {config.MCP_DESCRIPTOR}",
                retryable=False,
            )
        return PluginSource(path, cloned=False)

    if _is_bundle(config.BUNDLE_DIR):
        return PluginSource(config.BUNDLE_DIR, cloned=False)

    return PluginSource(clone_plugin_repo(), cloned=True)


def discard_source(source: PluginSource) -> None:
    if source.cloned:
        logger.debug("Removing cloned bundle %s", source.root)
        shutil.rmtree(source.root, ignore_errors=True)


@contextmanager
def plugin_source() -> Iterator[PluginSource]:
    """Resolve the bundle and remove a cloned copy on exit."""
    source = resolve_plugin_root()
    try:
        yield source
    finally:
        discard_source(source)
