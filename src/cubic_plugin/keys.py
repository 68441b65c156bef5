"""API key acquisition: environment, interactive prompt, or one line of stdin."""

import logging
import re
import sys
import webbrowser
from typing import TextIO

from rich.console import Console
from rich.prompt import Confirm, Prompt

from cubic_plugin.config import API_KEY_ENV_VAR, API_KEY_PREFIX, SETTINGS_URL, api_key_from_env
from cubic_plugin.errors import AuthError
from cubic_plugin.events import (
    AuthOpenUrl,
    AuthPrompt,
    AuthRequired,
    AuthSuccess,
    AuthWarning,
    EventEmitter,
)

logger = logging.getLogger(__name__)

QUOTES_RE = re.compile(r"^[\"']|[\"']$")
PREFIX_WARNING = f"Key doesn't start with '{API_KEY_PREFIX}'. Double-check your key."


def open_browser(url: str) -> bool:
    """Best-effort attempt to open ``url``. Never raises."""
    try:
        return webbrowser.open(url)
    except (webbrowser.Error, OSError) as e:
        logger.debug("Could not open browser: %s", e)
        return False


def mask_key(key: str) -> str:
    if len(key) <= 11:
        return key[:7] + "..."
    return key[:7] + "..." + key[-4:]


def clean_key(raw: str) -> str:
    return QUOTES_RE.sub("", raw.strip())


def _read_key_from_stream(emitter: EventEmitter, stdin: TextIO) -> str | None:
    emitter.emit(AuthRequired(source="prompt", has_env_key=False))
    emitter.emit(AuthOpenUrl(url=SETTINGS_URL))
    emitter.emit(AuthPrompt())

    line = stdin.readline()
    if line == "":
        raise AuthError("No API key received on standard input", code="AUTH_NO_INPUT")

    key = clean_key(line)
    if not key:
        emitter.emit(AuthWarning(message=f"No API key provided. Set {API_KEY_ENV_VAR} later."))
        return None
    if not key.startswith(API_KEY_PREFIX):
        emitter.emit(AuthWarning(message=PREFIX_WARNING))
    emitter.emit(AuthSuccess(source="prompt"))
    return key


def _prompt_for_key(console: Console) -> str | None:
    existing = api_key_from_env()
    if existing:
        if Confirm.ask(
            f"  API key found in environment ({mask_key(existing)}). Use it?",
            default=True,
            console=console,
        ):
            return existing

    console.print("\n  Generate your API key at cubic.dev")
    Prompt.ask("  Press Enter to open in browser", default="", show_default=False, console=console)
    open_browser(SETTINGS_URL)

    key = clean_key(Prompt.ask("\n  Paste your API key", password=True, default="", show_default=False, console=console))
    if not key:
        console.print(f"  Skipped. You can set {API_KEY_ENV_VAR} later.\n")
        return None
    if not key.startswith(API_KEY_PREFIX):
        console.print(f"  [yellow]Warning:[/yellow] {PREFIX_WARNING}")
    return key


def acquire_api_key(
    emitter: EventEmitter,
    console: Console,
    stdin: TextIO | None = None,
    interactive: bool | None = None,
) -> str | None:
    """Return an API key, or None to leave the placeholder in installed configs.

    In JSON mode no prompt text is written: auth events are emitted and the key
    is read from a single line of ``stdin``.
    """
    stdin = stdin or sys.stdin

    if emitter.json_mode:
        existing = api_key_from_env()
        if existing:
            emitter.emit(AuthRequired(source="env", has_env_key=True))
            emitter.emit(AuthSuccess(source="env"))
            return existing
        return _read_key_from_stream(emitter, stdin)

    if interactive is None:
        interactive = stdin.isatty()
    if not interactive:
        console.print("\n  No TTY detected. Set your API key manually:")
        console.print(f"    export {API_KEY_ENV_VAR}={API_KEY_PREFIX}your_key_here")
        console.print(f"    Get one at: {SETTINGS_URL}\n")
        return None
    return _prompt_for_key(console)
