"""Tests for the layered configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from chatloop.config import ChatloopConfig, load_config

CONFIG_YAML = """\
providers:
  default_provider: anthropic
  default_model: sonnet
loop:
  max_iterations: 6
tools:
  timeouts:
    sql: 20
  disabled: [execute_user_approved_sql]
  unknown_key: ignored
profiles:
  fast:
    loop:
      max_iterations: 2
    providers:
      default_provider: groq
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    p = tmp_path / "chatloop.yaml"
    p.write_text(CONFIG_YAML, encoding="utf-8")
    return p


class TestDefaults:
    def test_defaults(self):
        cfg = load_config()
        assert cfg.providers.default_provider == "groq"
        assert cfg.providers.default_model == "openai/gpt-oss-120b"
        assert cfg.loop.max_iterations == 10
        assert cfg.loop.enable_loop_default is True
        assert "batch_tool" in cfg.loop.analysis_tools
        assert cfg.loop.terminal_tools == ["complete_task", "prepare_sql_for_user"]

    def test_timeout_classes(self):
        tools = ChatloopConfig().tools
        assert tools.timeout_for("sql") == 45.0
        assert tools.timeout_for("knowledge") == 15.0
        assert tools.timeout_for("batch") == 60.0
        assert tools.timeout_for("anything-else") == 30.0

    def test_missing_file_is_ignored(self, tmp_path: Path):
        assert load_config(tmp_path / "absent.yaml").loop.max_iterations == 10

    def test_to_dict(self):
        d = ChatloopConfig().to_dict()
        assert d["server"]["port"] == 8000
        assert d["tools"]["timeouts"]["default"] == 30.0


class TestLayering:
    def test_file_values(self, config_file: Path):
        cfg = load_config(config_file)
        assert cfg.providers.default_provider == "anthropic"
        assert cfg.providers.default_model == "sonnet"
        assert cfg.loop.max_iterations == 6
        assert cfg.tools.disabled == ["execute_user_approved_sql"]

    def test_partial_timeouts_keep_other_defaults(self, config_file: Path):
        cfg = load_config(config_file)
        assert cfg.tools.timeout_for("sql") == 20
        assert cfg.tools.timeout_for("knowledge") == 15.0

    def test_profile_overlay(self, config_file: Path):
        cfg = load_config(config_file, profile="fast")
        assert cfg.loop.max_iterations == 2
        assert cfg.providers.default_provider == "groq"
        assert cfg.providers.default_model == "sonnet"

    def test_unknown_profile_is_noop(self, config_file: Path):
        assert load_config(config_file, profile="nope").loop.max_iterations == 6

    def test_env_beats_file(self, config_file: Path, monkeypatch):
        monkeypatch.setenv("CHATLOOP_MAX_ITERATIONS", "4")
        monkeypatch.setenv("CHATLOOP_ENABLE_LOOP", "false")
        monkeypatch.setenv("CHATLOOP_TERMINAL_TOOLS", "complete_task, finish")
        cfg = load_config(config_file)
        assert cfg.loop.max_iterations == 4
        assert cfg.loop.enable_loop_default is False
        assert cfg.loop.terminal_tools == ["complete_task", "finish"]

    def test_timeout_env(self, monkeypatch):
        monkeypatch.setenv("CHATLOOP_TIMEOUT_KNOWLEDGE", "2.5")
        monkeypatch.setenv("CHATLOOP_TIMEOUT_CUSTOM", "7")
        cfg = load_config()
        assert cfg.tools.timeout_for("knowledge") == 2.5
        assert cfg.tools.timeout_for("custom") == 7.0

    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv("CHATLOOP_PORT", "9000")
        cfg = load_config(cli_overrides={"server.port": 9100, "providers.default_model": "haiku"})
        assert cfg.server.port == 9100
        assert cfg.providers.default_model == "haiku"

    def test_sections_are_independent(self):
        a, b = load_config(), load_config()
        a.loop.analysis_tools.append("extra")
        a.tools.timeouts["sql"] = 1
        assert "extra" not in b.loop.analysis_tools
        assert b.tools.timeouts["sql"] == 45.0
