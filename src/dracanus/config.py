"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs
from dotenv import load_dotenv

APP_NAME = "dracanus"
APP_AUTHOR = "dracanus"

DEFAULT_FALLBACK_ORDER = ["ollama", "plus-coder", "openai"]

# USD per 1,000 tokens
DEFAULT_PRICING = {
	"ollama": 0.0,
	"plus-coder": 0.0,
	"openai": 0.002,
}


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	log_level: str = "INFO"

	# Completion backends
	ollama_url: str = field(default_factory=lambda: os.getenv("OLLAMA_API_URL", "http://localhost:11434"))
	ollama_model: str = "llama3.2"
	plus_coder_url: str = "https://api.pluscoder.example/v1/complete"
	plus_coder_api_key: str = field(default_factory=lambda: os.getenv("PLUS_CODER_API_KEY", ""))
	openai_url: str = "https://api.openai.com/v1/chat/completions"
	openai_model: str = "gpt-3.5-turbo"
	openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
	request_timeout: float = 120.0
	temperature: float = 0.7
	max_tokens: int = 2000
	fallback_order: list[str] = field(default_factory=lambda: list(DEFAULT_FALLBACK_ORDER))
	decomposition_backend: str = "ollama"
	pricing: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_PRICING))

	# Governance / orchestration
	default_environment: str = "production"
	default_owner: str = "local"
	respect_dependencies: bool = False

	def __post_init__(self) -> None:
		self.db_path = self.data_dir / "dracanus.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


def _apply_env_overrides(config: Config) -> Config:
	"""Apply DRACANUS_* environment variable overrides."""
	path_map = {
		"DRACANUS_CONFIG_DIR": "config_dir",
		"DRACANUS_DATA_DIR": "data_dir",
	}
	for env_key, attr in path_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, Path(val))

	str_map = {
		"DRACANUS_LOG_LEVEL": "log_level",
		"DRACANUS_ENVIRONMENT": "default_environment",
		"DRACANUS_OWNER": "default_owner",
		"DRACANUS_DECOMPOSITION_BACKEND": "decomposition_backend",
	}
	for env_key, attr in str_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, val)

	order = os.getenv("DRACANUS_FALLBACK_ORDER")
	if order:
		config.fallback_order = [name.strip() for name in order.split(",") if name.strip()]

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	path_fields = {"config_dir", "data_dir"}
	for key, val in data.items():
		if not hasattr(config, key):
			continue
		if key in path_fields:
			setattr(config, key, Path(os.path.expanduser(val)))
		elif key == "pricing":
			config.pricing.update({name: float(price) for name, price in val.items()})
		else:
			setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	load_dotenv()
	config = Config()
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config
