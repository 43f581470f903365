"""Unit tests for the command-line entry point."""
from __future__ import annotations

import logging
from pathlib import Path

import pytest

import run_agent
from agent import BrowserAgent
from conftest import NO_DELAYS, FakeBrowser, ScriptedEndpoint, tool_call
from run_agent import LoggingSender, build_parser, main


@pytest.fixture
def isolated(temp_dir: Path, monkeypatch) -> Path:
    """Run from an empty directory with no routing environment."""
    monkeypatch.chdir(temp_dir)
    for var in ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "GOOGLE_API_KEY", "OLLAMA_BASE_URL", "LMSTUDIO_BASE_URL"):
        monkeypatch.delenv(var, raising=False)
    return temp_dir


def write_config(directory: Path) -> Path:
    config = directory / "agent.yaml"
    lines = ["agent:"] + [f"  {key}: {value}" for key, value in NO_DELAYS.items()]
    config.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return config


class TestParser:
    """Tests for CLI argument parsing."""

    def test_repeatable_task(self):
        args = build_parser().parse_args(["--task", "one", "--task", "two"])
        assert args.task == ["one", "two"]
        assert args.start_url is None
        assert args.config is None

    def test_flags_default_to_none(self):
        args = build_parser().parse_args(["--task", "x"])
        assert args.headful is None
        assert args.save_trace is None
        assert args.verbose is None
        assert args.mode is None

    def test_mode_choices(self):
        args = build_parser().parse_args(["--task", "x", "--mode", "text-only", "--max-steps", "4"])
        assert args.mode == "text-only"
        assert args.max_steps == 4

        with pytest.raises(SystemExit):
            build_parser().parse_args(["--task", "x", "--mode", "pixels"])


class TestLoggingSender:
    """Tests for the log-backed progress sender."""

    def test_levels(self, caplog):
        log = logging.getLogger("test_run_agent")
        sender = LoggingSender(log)

        with caplog.at_level(logging.INFO, logger="test_run_agent"):
            sender.send("browser-agent:status", {"step": 1, "phase": "acting", "message": "Call: snapshot()"})
            sender.send("browser-agent:status", {"step": 2, "phase": "error", "message": "Error (attempt 1/3): boom"})
            sender.send("browser-agent:done", {"error": "No model configured."})
            sender.send("browser-agent:done", {"success": True, "summary": "ok"})

        levels = [(r.levelname, r.getMessage()) for r in caplog.records]
        assert levels == [
            ("INFO", "[Step 1] Call: snapshot()"),
            ("WARNING", "[Step 2] Error (attempt 1/3): boom"),
            ("ERROR", "No model configured."),
        ]


class TestMain:
    """Tests for main()."""

    def test_missing_model_exits_with_config_error(self, isolated: Path):
        config = write_config(isolated)
        assert main(["--task", "anything", "--config", str(config)]) == 2

    def test_missing_config_file_exits_with_config_error(self, isolated: Path, caplog):
        with caplog.at_level(logging.ERROR):
            code = main(["--task", "anything", "--config", str(isolated / "absent.json")])

        assert code == 2
        assert "Configuration file not found" in caplog.text

    def test_runs_each_task_and_writes_suite_report(self, isolated: Path, monkeypatch, capsys):
        config = write_config(isolated)
        endpoint = ScriptedEndpoint(
            [tool_call("done", summary="first finished"), tool_call("done", summary="second finished")]
        )
        monkeypatch.setattr(run_agent, "resolve_model", lambda role, settings: endpoint)
        monkeypatch.setattr(
            run_agent,
            "BrowserAgent",
            lambda settings, endpoint, **kwargs: BrowserAgent(settings, endpoint, browser=FakeBrowser(), **kwargs),
        )
        reports = isolated / "reports"

        code = main(
            ["--task", "one", "--task", "two", "--config", str(config), "--save-trace", "--reports-dir", str(reports)]
        )

        assert code == 0
        assert capsys.readouterr().out.splitlines() == ["first finished", "second finished"]
        assert len(list(reports.glob("suite-*.json"))) == 1
        assert len(list(reports.glob("*.json"))) == 3

    def test_unfinished_task_returns_one(self, isolated: Path, monkeypatch):
        config = write_config(isolated)
        endpoint = ScriptedEndpoint([])
        monkeypatch.setattr(run_agent, "resolve_model", lambda role, settings: endpoint)
        monkeypatch.setattr(
            run_agent,
            "BrowserAgent",
            lambda settings, endpoint, **kwargs: BrowserAgent(settings, endpoint, browser=FakeBrowser(), **kwargs),
        )

        assert main(["--task", "never done", "--config", str(config), "--max-steps", "1"]) == 1
