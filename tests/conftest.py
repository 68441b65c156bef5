"""Shared fixtures: an isolated home directory and a private copy of the bundle."""

import shutil

import pytest

import cubic_plugin.config as config


@pytest.fixture(autouse=True)
def home(tmp_path, monkeypatch):
    """Point Path.home() at a temp dir and clear any real API key or forced colour."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.delenv(config.API_KEY_ENV_VAR, raising=False)
    monkeypatch.delenv(config.SOURCE_ENV_VAR, raising=False)
    monkeypatch.delenv("FORCE_COLOR", raising=False)
    return home_dir


@pytest.fixture
def bundle(tmp_path, monkeypatch):
    """Copy the shipped bundle so installs can mutate its MCP descriptor safely."""
    dest = tmp_path / "bundle"
    shutil.copytree(config.BUNDLE_DIR, dest)
    monkeypatch.setenv(config.SOURCE_ENV_VAR, str(dest))
    return dest


@pytest.fixture
def out(tmp_path):
    """Output directory passed as --output; each target lands in out/<name>."""
    path = tmp_path / "out"
    path.mkdir()
    return path
