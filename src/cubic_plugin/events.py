"""Structured NDJSON progress events for programmatic callers."""

import json
import sys
from datetime import datetime, timezone
from typing import Literal, TextIO
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

EVENT_SCHEMA_VERSION = 1


class InstallEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str


# ── Event types ──────────────────────────────────────────────────


class InstallStarted(InstallEvent):
    type: Literal["install_started"] = "install_started"
    mode: Literal["full", "skills-only"]
    target: str


class AuthRequired(InstallEvent):
    type: Literal["auth_required"] = "auth_required"
    method: Literal["api_key"] = "api_key"
    source: Literal["env", "prompt"]
    has_env_key: bool


class AuthOpenUrl(InstallEvent):
    type: Literal["auth_open_url"] = "auth_open_url"
    url: str


class AuthPrompt(InstallEvent):
    type: Literal["auth_prompt"] = "auth_prompt"
    field: Literal["api_key"] = "api_key"
    masked: Literal[True] = True


class AuthSuccess(InstallEvent):
    type: Literal["auth_success"] = "auth_success"
    source: Literal["env", "prompt"]


class AuthWarning(InstallEvent):
    type: Literal["auth_warning"] = "auth_warning"
    message: str


class TargetStarted(InstallEvent):
    type: Literal["target_started"] = "target_started"
    agent: str


class TargetResult(InstallEvent):
    type: Literal["target_result"] = "target_result"
    agent: str
    skills: int = 0
    commands: int = 0
    prompts: int = 0
    mcp_servers: int = 0
    status: Literal["ok", "failed"] = "ok"
    reason: str | None = None


class InstallSummary(InstallEvent):
    type: Literal["install_summary"] = "install_summary"
    targets_total: int
    targets_succeeded: int
    targets_failed: int
    skills_total: int
    commands_total: int
    prompts_total: int
    mcp_servers_total: int


class InstallCompleted(InstallEvent):
    type: Literal["install_completed"] = "install_completed"
    ok: Literal[True] = True


class InstallFailed(InstallEvent):
    type: Literal["install_failed"] = "install_failed"
    code: str
    message: str
    retryable: bool


# ── Emitter ──────────────────────────────────────────────────────


def new_run_id() -> str:
    return uuid4().hex[:12]


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class EventEmitter:
    """Write events as one JSON object per line. A no-op outside JSON mode.

    Every line carries ``type``, ``version``, ``ts`` and ``runId`` first, then
    the event's own fields in declaration order. All events of one emitter
    share a run id.
    """

    def __init__(self, json_mode: bool, stream: TextIO | None = None):
        self.json_mode = json_mode
        self.run_id = new_run_id()
        self._stream = stream

    def emit(self, event: InstallEvent) -> None:
        if not self.json_mode:
            return
        fields = event.model_dump(by_alias=True)
        line = {
            "type": fields.pop("type"),
            "version": EVENT_SCHEMA_VERSION,
            "ts": timestamp(),
            "runId": self.run_id,
            **fields,
        }
        stream = self._stream or sys.stdout
        stream.write(json.dumps(line) + "\n")
        stream.flush()
