"""Format adapters: frontmatter, Gemini TOML commands and MCP descriptor shapes."""

import json
import re
from enum import Enum
from typing import Any

import yaml

from cubic_plugin.config import API_KEY_PLACEHOLDER

FRONTMATTER_RE = re.compile(r"\A---\r?\n(.*?)\r?\n---\r?\n?(.*)\Z", re.DOTALL)
PLACEHOLDER_RE = re.compile(r"\$\{(\w+)\}")
TOML_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]|\r(?!\n)")


class CommandFormat(str, Enum):
    """How a source command file is rendered for a target."""

    ORIGINAL = "original"
    STRIPPED = "stripped"
    TOML = "toml"


def _parse_naive(block: str) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for line in block.splitlines():
        key, sep, value = line.partition(":")
        key = key.strip()
        if sep and key:
            fields[key] = value.strip()
    return fields


def parse_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split a markdown document into its YAML frontmatter fields and body.

    A document without a leading ``---`` block yields empty fields and the
    whole text as body. Frontmatter that is not a valid YAML mapping falls
    back to plain ``key: value`` line splitting.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text

    block, body = match.group(1), match.group(2)
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError:
        return _parse_naive(block), body

    if data is None:
        return {}, body
    if not isinstance(data, dict):
        return _parse_naive(block), body
    return data, body


def format_frontmatter(fields: dict[str, Any], body: str) -> str:
    """Serialize fields as a YAML frontmatter block followed by the body."""
    dumped = yaml.safe_dump(
        fields,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=float("inf"),
    ).strip()
    return f"---\n{dumped}\n---\n{body}"


def strip_frontmatter(text: str) -> str:
    """Reduce frontmatter to the ``description`` field, keeping the body."""
    fields, body = parse_frontmatter(text)
    stripped: dict[str, Any] = {}
    if fields.get("description"):
        stripped["description"] = fields["description"]
    return format_frontmatter(stripped, body)


def _escape_toml_multiline(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"""', '\\"\\"\\"')
    return TOML_CONTROL_RE.sub(lambda m: f"\\u{ord(m.group(0)):04x}", escaped)


def _toml_basic_string(value: str) -> str:
    quoted = json.dumps(value, ensure_ascii=False)
    return TOML_CONTROL_RE.sub(lambda m: f"\\u{ord(m.group(0)):04x}", quoted)


def to_toml(description: str, prompt: str) -> str:
    """Render a Gemini CLI command file."""
    return "\n".join(
        [
            f"description = {_toml_basic_string(description)}",
            'prompt = """',
            _escape_toml_multiline(prompt),
            '"""',
            "",
        ]
    )


def render_command(text: str, fmt: CommandFormat) -> str:
    """Apply a command format to the text of one source command file."""
    if fmt is CommandFormat.ORIGINAL:
        return text
    if fmt is CommandFormat.STRIPPED:
        return strip_frontmatter(text)
    fields, body = parse_frontmatter(text)
    description = fields.get("description")
    return to_toml("" if description is None else str(description), body.strip())


def _convert_headers(headers: dict[str, str]) -> dict[str, str]:
    return {key: PLACEHOLDER_RE.sub(r"{env:\1}", value) for key, value in headers.items()}


def convert_mcp_config(servers: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Convert Claude-style MCP server descriptors into OpenCode's shape."""
    result: dict[str, dict[str, Any]] = {}
    for name, server in servers.items():
        if server.get("type") == "http" or server.get("url"):
            entry: dict[str, Any] = {"type": "remote", "url": server.get("url")}
            if server.get("headers"):
                entry["headers"] = _convert_headers(server["headers"])
            entry["enabled"] = True
            result[name] = entry
        elif server.get("command"):
            entry = {
                "type": "local",
                "command": [server["command"], *server.get("args", [])],
            }
            if server.get("env"):
                entry["environment"] = server["env"]
            entry["enabled"] = True
            result[name] = entry
    return result


def inline_api_key(servers: dict[str, Any], api_key: str) -> dict[str, Any]:
    """Replace the API key placeholder in every server's headers, in place."""
    for server in servers.values():
        if not isinstance(server, dict):
            continue
        headers = server.get("headers")
        if not isinstance(headers, dict):
            continue
        for key, value in headers.items():
            if isinstance(value, str):
                headers[key] = value.replace(API_KEY_PLACEHOLDER, api_key)
    return servers


def auth_header(api_key: str | None) -> str:
    return f"Bearer {api_key}" if api_key else f"Bearer {API_KEY_PLACEHOLDER}"
