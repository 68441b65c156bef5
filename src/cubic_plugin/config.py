"""Configuration constants for cubic-plugin."""

import os
from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent
BUNDLE_DIR = PACKAGE_DIR / "bundle"

# Environment variable naming an explicit local bundle directory
SOURCE_ENV_VAR = "CUBIC_PLUGIN_SOURCE"

PLUGIN_REPO_URL = "https://github.com/mrge-io/cubic-claude-plugin"
CLONE_PREFIX = "cubic-plugin-install-"

# Marker file identifying a usable bundle root
MCP_DESCRIPTOR = ".mcp.json"
SKILL_DESCRIPTOR = "SKILL.md"
SKILLS_SUBDIR = "skills"
COMMANDS_SUBDIR = "commands"

# Package metadata files searched for the plugin version, in order
VERSION_FILES = ("package.json", ".claude-plugin/plugin.json")
DEFAULT_PLUGIN_VERSION = "0.0.0"

MANIFEST_FILENAME = ".cubic-manifest.json"
MANIFEST_SCHEMA_VERSION = 1

MCP_SERVER_NAME = "cubic"
MCP_URL = "https://www.cubic.dev/api/mcp"
SETTINGS_URL = "https://www.cubic.dev/settings?tab=integrations&integration=mcp"
OPENCODE_SCHEMA_URL = "https://opencode.ai/config.json"

API_KEY_ENV_VAR = "CUBIC_API_KEY"
API_KEY_PREFIX = "cbk_"
API_KEY_PLACEHOLDER = "${CUBIC_API_KEY}"

COMMAND_PREFIX = "cubic-"

# Assets installed in skills-only mode
REVIEW_SKILL = "run-review"
REVIEW_COMMAND = "run-review.md"

# Known asset names, used by uninstall
CUBIC_SKILLS = [
    "review-patterns",
    "codebase-context",
    "review-and-fix-issues",
    "run-review",
]

CUBIC_COMMANDS = [
    "comments",
    "wiki",
    "scan",
    "learnings",
    "run-review",
]


def api_key_from_env() -> str | None:
    """Return the API key from the environment if it looks like a cubic key."""
    key = os.environ.get(API_KEY_ENV_VAR, "").strip()
    if key.startswith(API_KEY_PREFIX):
        return key
    return None
