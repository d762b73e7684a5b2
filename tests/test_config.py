"""Tests for the configuration system."""

import os
from pathlib import Path
from unittest.mock import patch

from dracanus.config import DEFAULT_FALLBACK_ORDER, Config, _apply_env_overrides, _apply_toml, load_config


def test_config_defaults():
	"""Config should have sensible defaults."""
	config = Config()
	assert config.config_dir.is_absolute()
	assert config.data_dir.is_absolute()
	assert config.db_path == config.data_dir / "dracanus.db"
	assert config.log_dir == config.data_dir / "logs"
	assert config.fallback_order == DEFAULT_FALLBACK_ORDER
	assert config.pricing["openai"] == 0.002
	assert config.default_environment == "production"
	assert config.respect_dependencies is False


def test_fallback_order_is_not_shared():
	a = Config()
	b = Config()
	a.fallback_order.append("custom")
	assert "custom" not in b.fallback_order


def test_config_env_overrides():
	"""Environment variables should override defaults."""
	config = Config()
	with patch.dict(os.environ, {
		"DRACANUS_DATA_DIR": "/tmp/test-data",
		"DRACANUS_CONFIG_DIR": "/tmp/test-config",
		"DRACANUS_OWNER": "alice",
		"DRACANUS_FALLBACK_ORDER": "openai, ollama",
	}):
		config = _apply_env_overrides(config)
		assert config.data_dir == Path("/tmp/test-data")
		assert config.config_dir == Path("/tmp/test-config")
		# Derived paths should be recomputed
		assert config.db_path == Path("/tmp/test-data/dracanus.db")
		assert config.default_owner == "alice"
		assert config.fallback_order == ["openai", "ollama"]


def test_config_toml_overrides(tmp_path: Path):
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
	config.config_dir.mkdir(parents=True)
	(config.config_dir / "config.toml").write_text(
		'default_environment = "sandbox"\n'
		'max_tokens = 512\n'
		'unknown_key = 1\n'
		'\n'
		'[pricing]\n'
		'openai = 0.01\n'
	)

	config = _apply_toml(config)

	assert config.default_environment == "sandbox"
	assert config.max_tokens == 512
	assert config.pricing["openai"] == 0.01
	assert config.pricing["ollama"] == 0.0
	assert not hasattr(config, "unknown_key")


def test_config_ensure_dirs(tmp_path: Path):
	"""ensure_dirs should create all required directories."""
	config = Config(
		config_dir=tmp_path / "config",
		data_dir=tmp_path / "data",
	)
	assert not config.config_dir.exists()
	assert not config.data_dir.exists()

	config.ensure_dirs()

	assert config.config_dir.exists()
	assert config.data_dir.exists()
	assert config.log_dir.exists()


def test_load_config_env_beats_toml(tmp_path: Path):
	config_dir = tmp_path / "config"
	config_dir.mkdir()
	(config_dir / "config.toml").write_text('default_owner = "from-toml"\n')

	with patch.dict(os.environ, {
		"DRACANUS_CONFIG_DIR": str(config_dir),
		"DRACANUS_DATA_DIR": str(tmp_path / "data"),
		"DRACANUS_OWNER": "from-env",
	}):
		with patch("dracanus.config.platformdirs.user_config_dir", return_value=str(config_dir)):
			config = load_config()

	assert config.default_owner == "from-env"
	assert config.data_dir.exists()
