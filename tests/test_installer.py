"""Tests for install/uninstall orchestration and the event sequence."""

import io
import json
import tomllib

import pytest
from rich.console import Console

import cubic_plugin.source as source
from cubic_plugin.config import API_KEY_ENV_VAR, MANIFEST_FILENAME
from cubic_plugin.events import EventEmitter, TargetResult
from cubic_plugin.installer import InstallOptions, describe_result, run_install, run_uninstall
from cubic_plugin.source import PluginSource
from cubic_plugin.targets import TARGET_NAMES, TARGETS


class Run:
    """One run_install call in JSON mode, with its parsed events."""

    def __init__(self, options, stdin=""):
        self.stream = io.StringIO()
        self.code = run_install(
            options,
            EventEmitter(True, stream=self.stream),
            Console(quiet=True),
            stdin=io.StringIO(stdin),
        )
        self.events = [json.loads(line) for line in self.stream.getvalue().splitlines()]

    @property
    def types(self):
        return [e["type"] for e in self.events]

    def of_type(self, type_):
        return [e for e in self.events if e["type"] == type_]

    def one(self, type_):
        (event,) = self.of_type(type_)
        return event


@pytest.fixture
def env_key(monkeypatch):
    monkeypatch.setenv(API_KEY_ENV_VAR, "cbk_env_key")
    return "cbk_env_key"


class TestSkillsOnly:
    def test_event_sequence(self, bundle, out):
        run = Run(InstallOptions(to="claude", output=out, skills_only=True))

        assert run.code == 0
        assert run.types == [
            "install_started",
            "target_started",
            "target_result",
            "install_summary",
            "install_completed",
        ]
        assert run.one("install_started")["mode"] == "skills-only"
        result = run.one("target_result")
        assert (result["agent"], result["skills"], result["commands"], result["mcpServers"]) == ("claude", 1, 1, 0)
        assert result["status"] == "ok"
        assert len({e["runId"] for e in run.events}) == 1

    def test_all_targets(self, bundle, out):
        run = Run(InstallOptions(to="all", output=out, skills_only=True))

        assert [e["agent"] for e in run.of_type("target_result")] == TARGET_NAMES
        assert [e["agent"] for e in run.of_type("target_started")] == TARGET_NAMES
        summary = run.one("install_summary")
        assert summary["targetsTotal"] == 7
        assert summary["targetsSucceeded"] == 7
        assert summary["skillsTotal"] == 7
        assert summary["commandsTotal"] == 7
        assert summary["promptsTotal"] == 0
        assert summary["mcpServersTotal"] == 0

    def test_never_asks_for_a_key(self, bundle, out):
        run = Run(InstallOptions(to="cursor", output=out, skills_only=True))
        assert not [t for t in run.types if t.startswith("auth_")]
        assert not (out / "cursor" / "mcp.json").exists()


class TestSelectionErrors:
    def test_unknown_target(self, bundle, out):
        run = Run(InstallOptions(to="vscode", output=out))

        assert run.code == 1
        assert run.types == ["install_failed"]
        failed = run.one("install_failed")
        assert failed["code"] == "UNKNOWN_TARGET"
        assert failed["retryable"] is False
        assert list(out.iterdir()) == []

    def test_unknown_method(self, bundle, out):
        run = Run(InstallOptions(to="claude", output=out, method="hardlink"))

        assert run.types == ["install_failed"]
        assert run.one("install_failed")["code"] == "UNKNOWN_METHOD"

    def test_symlink_needs_local_source(self, bundle, out, monkeypatch):
        monkeypatch.setattr(source, "resolve_plugin_root", lambda: PluginSource(bundle, cloned=True))

        run = Run(InstallOptions(to="claude", output=out, skills_only=True, method="symlink"))

        assert run.code == 1
        assert run.types == ["install_failed"]
        assert run.one("install_failed")["code"] == "SYMLINK_REQUIRES_LOCAL_SOURCE"
        # The temporary clone is cleaned up even on failure
        assert not bundle.exists()

    def test_source_fetch_failure(self, tmp_path, out, monkeypatch):
        monkeypatch.setenv("CUBIC_PLUGIN_SOURCE", str(tmp_path / "missing"))

        run = Run(InstallOptions(to="claude", output=out, skills_only=True))

        failed = run.one("install_failed")
        assert failed["code"] == "SOURCE_FETCH_FAILED"
        assert "target_started" not in run.types


class TestApiKey:
    def test_env_key(self, bundle, out, env_key):
        original = (bundle / ".mcp.json").read_text()

        run = Run(InstallOptions(to="all", output=out))

        assert run.code == 0
        assert run.types[:3] == ["auth_required", "auth_success", "install_started"]
        assert run.one("auth_required")["source"] == "env"
        assert run.one("auth_required")["hasEnvKey"] is True

        cursor = json.loads((out / "cursor" / "mcp.json").read_text())
        assert cursor["mcpServers"]["cubic"]["headers"]["Authorization"] == "Bearer cbk_env_key"
        claude = json.loads((out / "claude" / ".mcp.json").read_text())
        assert claude["cubic"]["headers"]["Authorization"] == "Bearer cbk_env_key"
        # The bundle descriptor is back to its placeholder form
        assert (bundle / ".mcp.json").read_text() == original

        summary = run.one("install_summary")
        assert summary["mcpServersTotal"] == 7
        assert summary["skillsTotal"] == 28

    def test_key_from_stdin(self, bundle, out):
        run = Run(InstallOptions(to="codex", output=out), stdin="  'cbk_from_stdin'\n")

        assert run.code == 0
        assert run.types[:5] == ["auth_required", "auth_open_url", "auth_prompt", "auth_success", "install_started"]
        assert run.one("auth_required")["hasEnvKey"] is False
        assert run.one("auth_success")["source"] == "prompt"
        assert "cbk_from_stdin" not in run.stream.getvalue()

        data = tomllib.loads((out / "codex" / "config.toml").read_text())
        assert data["mcp_servers"]["cubic"]["http_headers"]["Authorization"] == "Bearer cbk_from_stdin"

    def test_unprefixed_key_warns(self, bundle, out):
        run = Run(InstallOptions(to="cursor", output=out), stdin="not-a-cubic-key\n")

        assert run.code == 0
        assert run.one("auth_warning")
        assert run.one("auth_success")

    def test_empty_key_keeps_placeholder(self, bundle, out):
        run = Run(InstallOptions(to="cursor", output=out), stdin="\n")

        assert run.code == 0
        assert run.one("auth_warning")
        assert not run.of_type("auth_success")
        cursor = json.loads((out / "cursor" / "mcp.json").read_text())
        assert cursor["mcpServers"]["cubic"]["headers"]["Authorization"] == "Bearer ${CUBIC_API_KEY}"

    def test_no_input(self, bundle, out):
        run = Run(InstallOptions(to="cursor", output=out), stdin="")

        assert run.code == 1
        assert run.types[-1] == "install_failed"
        assert run.one("install_failed")["code"] == "AUTH_NO_INPUT"
        assert "install_started" not in run.types


class TestTargetFailure:
    def test_one_target_fails_others_continue(self, bundle, out):
        (out / "cursor").write_text("not a directory")

        run = Run(InstallOptions(to="all", output=out, skills_only=True))

        assert run.code == 1
        results = {e["agent"]: e for e in run.of_type("target_result")}
        assert results["cursor"]["status"] == "failed"
        assert results["cursor"]["reason"]
        assert results["cursor"]["skills"] == 0
        assert all(r["status"] == "ok" for name, r in results.items() if name != "cursor")

        summary = run.one("install_summary")
        assert (summary["targetsSucceeded"], summary["targetsFailed"]) == (6, 1)
        assert summary["skillsTotal"] == 6

        assert run.types[-1] == "install_failed"
        failed = run.one("install_failed")
        assert failed["code"] == "TARGETS_FAILED"
        assert failed["retryable"] is True
        assert "install_completed" not in run.types


class TestMalformedDescriptor:
    @pytest.mark.parametrize(
        "content",
        ['{"cubic": "not-a-dict"}', "{ not json", '["cubic"]'],
    )
    def test_full_install_fails_once(self, bundle, out, env_key, content):
        (bundle / ".mcp.json").write_text(content)

        run = Run(InstallOptions(to="all", output=out))

        assert run.code == 1
        assert run.types == ["auth_required", "auth_success", "install_failed"]
        failed = run.one("install_failed")
        assert failed["code"] == "SOURCE_FETCH_FAILED"
        assert failed["retryable"] is False
        assert (bundle / ".mcp.json").read_text() == content
        assert list(out.iterdir()) == []

    def test_skills_only_ignores_descriptor(self, bundle, out):
        (bundle / ".mcp.json").write_text('{"cubic": "not-a-dict"}')

        run = Run(InstallOptions(to="all", output=out, skills_only=True))

        assert run.code == 0
        assert run.one("install_summary")["targetsSucceeded"] == 7


class TestUnexpectedTargetError:
    def test_recorded_as_failed_result(self, bundle, out, monkeypatch):
        def broken_install(ctx):
            raise RuntimeError("unexpected layout")

        monkeypatch.setattr(TARGETS["cursor"], "install", broken_install)

        run = Run(InstallOptions(to="all", output=out, skills_only=True))

        assert run.code == 1
        results = {e["agent"]: e for e in run.of_type("target_result")}
        assert list(results) == TARGET_NAMES
        assert results["cursor"]["status"] == "failed"
        assert results["cursor"]["reason"] == "unexpected layout"
        assert run.one("install_summary")["targetsFailed"] == 1
        assert run.one("install_failed")["code"] == "TARGETS_FAILED"
class TestManifest:
    def test_written_per_target(self, bundle, out):
        Run(InstallOptions(to="all", output=out, skills_only=True))

        for name in TARGET_NAMES:
            manifest = json.loads((out / name / MANIFEST_FILENAME).read_text())
            assert manifest["target"] == name
            assert manifest["pluginVersion"] == "1.0.0"
            assert manifest["method"] == "paste"
            assert "sourceRoot" not in manifest
            assert {e["kind"] for e in manifest["entries"]} <= {"skill", "command", "prompt"}

    def test_symlink_install(self, bundle, out, env_key):
        run = Run(InstallOptions(to="opencode", output=out, method="symlink"))
        assert run.code == 0

        manifest = json.loads((out / "opencode" / MANIFEST_FILENAME).read_text())
        assert manifest["method"] == "symlink"
        assert manifest["sourceRoot"] == str(bundle.resolve())

        methods = {(e["kind"], e["method"]) for e in manifest["entries"]}
        # Stripped commands and MCP config are generated, so they are pasted
        assert methods == {("skill", "symlink"), ("command", "paste"), ("mcp-config", "paste")}
        assert (out / "opencode" / "skills" / "run-review" / "SKILL.md").is_symlink()

    def test_reinstall_is_idempotent(self, bundle, out, env_key):
        Run(InstallOptions(to="all", output=out))
        first = {p: p.read_bytes() for p in out.rglob("*") if p.is_file() and p.name != MANIFEST_FILENAME}

        run = Run(InstallOptions(to="all", output=out))

        assert run.code == 0
        second = {p: p.read_bytes() for p in out.rglob("*") if p.is_file() and p.name != MANIFEST_FILENAME}
        assert second == first


class TestUninstall:
    def test_round_trip(self, bundle, out, env_key):
        Run(InstallOptions(to="all", output=out))

        code = run_uninstall(InstallOptions(to="all", output=out), Console(quiet=True))

        assert code == 0
        for name in TARGET_NAMES:
            root = out / name
            assert not (root / MANIFEST_FILENAME).exists()
            assert list((root / "skills").iterdir()) == []
            assert not [p for p in root.rglob("cubic-*") if p.is_file()]
        assert not (out / "codex" / "config.toml").exists()
        assert not (out / "pi" / "cubic").exists()
        assert json.loads((out / "cursor" / "mcp.json").read_text()) == {}

    def test_unknown_target(self, out):
        console = Console(file=io.StringIO(), width=200)
        assert run_uninstall(InstallOptions(to="vscode", output=out), console) == 1
        assert "Unknown target: vscode" in console.file.getvalue()

    def test_output(self, bundle, out):
        Run(InstallOptions(to="claude", output=out, skills_only=True))
        console = Console(file=io.StringIO(), width=200)

        run_uninstall(InstallOptions(to="claude", output=out), console)

        text = console.file.getvalue()
        assert "claude: removed" in text
        assert "Restart your editor" in text


class TestTextOutput:
    def test_progress_lines(self, bundle, out):
        stream = io.StringIO()
        console = Console(file=io.StringIO(), width=200)

        code = run_install(
            InstallOptions(to="claude", output=out, skills_only=True),
            EventEmitter(False, stream=stream),
            console,
        )

        text = console.file.getvalue()
        assert code == 0
        assert "Installing cubic skills" in text
        assert "claude: 1 skill, 1 command" in text
        assert "Done!" in text
        assert stream.getvalue() == ""

    def test_full_install_without_tty(self, bundle, out):
        console = Console(file=io.StringIO(), width=200)

        code = run_install(
            InstallOptions(to="cursor", output=out),
            EventEmitter(False),
            console,
            stdin=io.StringIO(""),
        )

        text = console.file.getvalue()
        assert code == 0
        assert "export CUBIC_API_KEY=cbk_your_key_here" in text
        assert "cursor: 4 skills, 5 commands, 1 MCP server" in text
        assert "Next steps:" in text


class TestDescribeResult:
    @pytest.mark.parametrize(
        "result,expected",
        [
            (TargetResult(agent="claude", skills=1, commands=1), "1 skill, 1 command"),
            (TargetResult(agent="codex", skills=4, prompts=5, mcp_servers=1), "4 skills, 5 prompts, 1 MCP server"),
            (TargetResult(agent="pi"), "0 skills, 0 commands"),
        ],
    )
    def test_describe(self, result, expected):
        assert describe_result(result) == expected
