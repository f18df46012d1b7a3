"""Tests for the configuration system."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from maker_orchestrator.config import Config, _apply_env_overrides, get_config, load_config
from maker_orchestrator.tree import RedFlagSeverity


def test_config_defaults():
	"""Config should have sensible defaults."""
	config = Config()
	assert config.config_dir.is_absolute()
	assert config.data_dir.is_absolute()
	assert config.state_file == config.data_dir / "maker-state.json"
	assert config.log_dir == config.data_dir / "logs"
	assert config.worker_command[0] == "claude"


def test_config_env_overrides():
	"""Environment variables should override defaults."""
	config = Config()
	with patch.dict(os.environ, {
		"MAKER_ORCHESTRATOR_DATA_DIR": "/tmp/test-data",
		"MAKER_ORCHESTRATOR_CONFIG_DIR": "/tmp/test-config",
		"MAKER_ORCHESTRATOR_MODEL": "sonnet",
		"MAKER_ORCHESTRATOR_MAX_DEPTH": "5",
		"MAKER_ORCHESTRATOR_VOTING_THRESHOLD": "4",
	}):
		config = _apply_env_overrides(config)
		assert config.data_dir == Path("/tmp/test-data")
		assert config.config_dir == Path("/tmp/test-config")
		# Derived paths should be recomputed
		assert config.state_file == Path("/tmp/test-data/maker-state.json")
		assert config.model_name == "sonnet"
		assert config.max_recursion_depth == 5
		assert config.voting_threshold == 4


def test_state_file_override():
	with patch.dict(os.environ, {"MAKER_ORCHESTRATOR_STATE_FILE": "/tmp/elsewhere/run.json"}):
		config = _apply_env_overrides(Config())
	assert config.state_file == Path("/tmp/elsewhere/run.json")


def test_config_ensure_dirs(tmp_path: Path):
	"""ensure_dirs should create all required directories."""
	config = Config(
		config_dir=tmp_path / "config",
		data_dir=tmp_path / "data",
	)
	assert not config.config_dir.exists()

	config.ensure_dirs()

	assert config.config_dir.exists()
	assert config.data_dir.exists()
	assert config.log_dir.exists()


def test_load_config_reads_toml(tmp_path: Path):
	"""config.toml values apply, and env vars still win over them."""
	config_dir = tmp_path / "config"
	config_dir.mkdir()
	(config_dir / "config.toml").write_text(
		'model_name = "haiku"\n'
		"voting_threshold = 3\n"
		"poll_interval = 0\n"
		'worker_command = ["my-agent", "{prompt}"]\n'
	)
	with patch.dict(os.environ, {
		"MAKER_ORCHESTRATOR_DATA_DIR": str(tmp_path / "data"),
		"MAKER_ORCHESTRATOR_CONFIG_DIR": str(config_dir),
		"MAKER_ORCHESTRATOR_VOTING_THRESHOLD": "5",
	}):
		config = load_config()

	assert config.model_name == "haiku"
	assert config.poll_interval == 0.0
	assert config.worker_command == ["my-agent", "{prompt}"]
	assert config.voting_threshold == 5
	assert config.data_dir.exists()


class TestRunConfig:
	"""Tests for building a RunConfig from the configured defaults."""

	def test_defaults(self):
		run_config = Config(max_recursion_depth=4, red_flag_severity_threshold="medium").run_config()
		assert run_config.max_recursion_depth == 4
		assert run_config.voting_threshold == 2
		assert run_config.red_flag_severity_threshold == RedFlagSeverity.MEDIUM
		assert run_config.model_name == "opus"

	def test_none_overrides_are_ignored(self):
		run_config = Config().run_config(max_recursion_depth=None, voting_threshold=5)
		assert run_config.max_recursion_depth == 3
		assert run_config.voting_threshold == 5

	def test_invalid_threshold(self):
		with pytest.raises(ValueError):
			Config().run_config(voting_threshold=0)


def test_get_config_is_cached(tmp_path: Path):
	"""get_config loads once and hands back the same instance."""
	with patch("maker_orchestrator.config._config", None), patch.dict(os.environ, {
		"MAKER_ORCHESTRATOR_DATA_DIR": str(tmp_path / "data"),
		"MAKER_ORCHESTRATOR_CONFIG_DIR": str(tmp_path / "config"),
	}):
		first = get_config()
		second = get_config()

	assert first is second
	assert first.data_dir == tmp_path / "data"
