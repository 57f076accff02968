"""Tests for configuration loading and the structured logger."""

import json

import pytest

from shared.config import LancetConfig
from shared.logger import LancetLogger


class TestLancetConfig:
    """TOML loading with defaults."""

    def test_defaults(self):
        """Defaults match the documented values."""
        config = LancetConfig()
        assert config.workspace.arch == "x86"
        assert config.workspace.mode == "32"
        assert config.workspace.num_opcode_bytes == 8
        assert config.explorer.strategy == "dfs"
        assert config.explorer.max_instructions == 0
        assert config.emulator.stack_address == 0x69690000
        assert config.emulator.stack_size == 0x40000

    def test_partial_file(self, tmp_path):
        """Missing keys fall back, unknown keys are ignored."""
        path = tmp_path / "config.toml"
        path.write_text(
            "[explorer]\n"
            'strategy = "bfs"\n'
            "colour = true\n"
            "[emulator]\n"
            "stack_size = 0x10000\n"
        )
        config = LancetConfig.load(path)
        assert config.explorer.strategy == "bfs"
        assert config.explorer.max_instructions == 0
        assert config.emulator.stack_size == 0x10000
        assert config.emulator.stack_address == 0x69690000

    def test_explicit_missing_path(self, tmp_path):
        """An explicitly requested file must exist."""
        with pytest.raises(FileNotFoundError):
            LancetConfig.load(tmp_path / "nope.toml")

    def test_to_dict(self):
        """The config tree serialises to nested dicts."""
        data = LancetConfig().to_dict()
        assert data["loader"]["default_loader"] == "auto"
        assert data["global_settings"]["log_level"] == "INFO"


class TestLancetLogger:
    """Structured file output."""

    def test_json_lines(self, tmp_path):
        """JSON records carry component, operation and hex address fields."""
        log_file = tmp_path / "lancet.log"
        log = LancetLogger(
            "explorer", log_level="DEBUG", log_file=log_file,
            json_logs=True, console_output=False,
        )
        with log.operation("explore_function"):
            log.warning("Decode failed", address=0x1800, reason="no instruction")
        log.info("done", count=3)
        for handler in log.underlying.handlers:
            handler.flush()

        records = [json.loads(line) for line in log_file.read_text().splitlines()]
        failure, finished, done = records
        assert failure["component"] == "explorer"
        assert failure["operation"] == "explore_function"
        assert failure["fields"] == {"address": "0x1800", "reason": "no instruction"}
        assert failure["level"] == "WARNING"
        assert finished["level"] == "DEBUG"
        assert finished["message"].startswith("explore_function finished in ")
        assert "operation" not in done
        assert done["fields"] == {"count": 3}

    def test_nested_operations(self, tmp_path):
        """Leaving an inner scope restores the outer operation name."""
        log_file = tmp_path / "lancet.log"
        log = LancetLogger(
            "emulator", log_level="INFO", log_file=log_file,
            json_logs=True, console_output=False,
        )
        with log.operation("outer"):
            with log.operation("inner"):
                log.info("a")
            log.info("b")
        for handler in log.underlying.handlers:
            handler.flush()

        inner, outer = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert inner["operation"] == "inner"
        assert outer["operation"] == "outer"
        assert "fields" not in outer

    def test_from_config(self):
        """from_config honours an explicit level override."""
        log = LancetLogger.from_config("cli", LancetConfig(), log_level="DEBUG")
        assert log.component == "cli"
        assert log.underlying.name == "lancet.cli"
        assert log.underlying.level == 10

