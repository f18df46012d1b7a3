"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

from .tree.models import RedFlagSeverity, RunConfig
from .worker import DEFAULT_COMMAND

APP_NAME = "maker-orchestrator"
ENV_PREFIX = "MAKER_ORCHESTRATOR_"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	state_file: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Worker
	worker_command: list[str] = field(default_factory=lambda: list(DEFAULT_COMMAND))
	worker_cwd: str = ""

	# Run defaults
	max_recursion_depth: int = 3
	voting_threshold: int = 2
	red_flag_severity_threshold: str = RedFlagSeverity.HIGH.value
	model_name: str = "opus"
	batch_size: int = 3
	max_rounds: int = 10
	poll_interval: float = 2.0
	max_polls: int = 30

	def __post_init__(self) -> None:
		self.state_file = self.data_dir / "maker-state.json"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)

	def run_config(self, **overrides) -> RunConfig:
		"""Build a RunConfig from the configured defaults; None overrides are ignored."""
		values = {
			"max_recursion_depth": self.max_recursion_depth,
			"voting_threshold": self.voting_threshold,
			"red_flag_severity_threshold": self.red_flag_severity_threshold,
			"model_name": self.model_name,
			"batch_size": self.batch_size,
			"max_rounds": self.max_rounds,
			"poll_interval": self.poll_interval,
			"max_polls": self.max_polls,
		}
		values.update({key: val for key, val in overrides.items() if val is not None})
		return RunConfig(**values)


PATH_FIELDS = {"config_dir", "data_dir"}
INT_FIELDS = {"max_recursion_depth", "voting_threshold", "batch_size", "max_rounds", "max_polls"}
FLOAT_FIELDS = {"poll_interval"}


def _apply_env_overrides(config: Config) -> Config:
	"""Apply MAKER_ORCHESTRATOR_* environment variable overrides."""
	env_map = {
		"CONFIG_DIR": "config_dir",
		"DATA_DIR": "data_dir",
		"MODEL": "model_name",
		"WORKER_CWD": "worker_cwd",
		"MAX_DEPTH": "max_recursion_depth",
		"VOTING_THRESHOLD": "voting_threshold",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(ENV_PREFIX + env_key)
		if val:
			setattr(config, attr, _coerce(attr, val))
	# Recompute derived paths after overrides
	config.__post_init__()

	state_file = os.getenv(ENV_PREFIX + "STATE_FILE")
	if state_file:
		config.state_file = Path(os.path.expanduser(state_file))
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if hasattr(config, key) and key not in {"state_file", "log_dir"}:
			setattr(config, key, _coerce(key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def _coerce(key: str, val):
	if key in PATH_FIELDS:
		return Path(os.path.expanduser(val))
	if key in INT_FIELDS:
		return int(val)
	if key in FLOAT_FIELDS:
		return float(val)
	return val


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# config.toml lives in config_dir, so an env override of it must come first
	config_dir = os.getenv(ENV_PREFIX + "CONFIG_DIR")
	if config_dir:
		config.config_dir = Path(os.path.expanduser(config_dir))
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
