"""
Unit tests for configuration loader functionality.

Tests config file discovery, defaults, environment overrides, derived values
and the starter config writer.
"""

import os
import stat
from pathlib import Path

import pytest
import yaml

from config.defaults import ENV_VAR_MAPPING, get_state_dir
from config.loader import ConfigurationLoader, sanitize_identifier
from core.exceptions import ConfigurationError
from core.models.config import GlobalSettings, VaultConfig


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No VAULT_SYNC_* overrides and a working directory without config.yaml"""
    for name in list(ENV_VAR_MAPPING) + ["VAULT_SYNC_CONFIG_DIR", "DB_PASSWORD"]:
        monkeypatch.delenv(name, raising=False)
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return monkeypatch


@pytest.fixture
def loader(clean_env, tmp_path):
    return ConfigurationLoader(GlobalSettings(config_dir=tmp_path / "config-home"))


def write_yaml(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestSanitizeIdentifier:

    @pytest.mark.parametrize("name,expected", [
        ("My Vault", "my_vault"),
        ("work-notes", "work_notes"),
        ("2024 Journal", "vault_2024_journal"),
        ("Ünïcode & Stuff!", "ncode_stuff"),
        ("__a__b__", "a_b"),
        ("!!!", "vault"),
        ("", "vault"),
    ])
    def test_sanitize(self, name, expected):
        assert sanitize_identifier(name) == expected

    def test_truncates_to_postgres_limit(self):
        result = sanitize_identifier("x" * 100)
        assert len(result) == 63


class TestConfigurationLoader:
    """Test ConfigurationLoader functionality"""

    def test_load_explicit_file(self, loader, tmp_path, vault, clean_env):
        clean_env.setenv("DB_PASSWORD", "s3cret")
        config_file = write_yaml(tmp_path / "my.yaml", {
            "vault_path": str(vault),
            "database": {"host": "db.example.com", "user": "sync", "password": "${DB_PASSWORD}"},
            "sync": {"debounce_ms": 500},
        })

        config = loader.load(config_file)

        assert isinstance(config, VaultConfig)
        assert config.vault_path == vault.resolve()
        assert config.database.host == "db.example.com"
        assert config.database.password == "s3cret"
        assert config.database.schema_name == "vault"
        assert config.sync.debounce_ms == 500
        assert config.sync.batch_size == 100
        assert ".obsidian/**" in config.ignore_patterns

    def test_explicit_schema_is_kept(self, loader, tmp_path, vault):
        config_file = write_yaml(tmp_path / "c.yaml", {
            "vault_path": str(vault),
            "database": {"schema": "custom_schema"},
        })

        assert loader.load(config_file).database.schema_name == "custom_schema"

    def test_missing_explicit_file(self, loader, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            loader.load(tmp_path / "nope.yaml")

    def test_vault_path_required(self, loader, tmp_path):
        config_file = write_yaml(tmp_path / "c.yaml", {"database": {"host": "x"}})

        with pytest.raises(ConfigurationError, match="vault_path"):
            loader.load(config_file)

    def test_missing_vault_directory(self, loader, tmp_path):
        config_file = write_yaml(tmp_path / "c.yaml", {"vault_path": str(tmp_path / "missing")})

        with pytest.raises(ConfigurationError, match="not a directory"):
            loader.load(config_file)

        config = loader.load(config_file, require_vault=False)
        assert config.vault_path.name == "missing"

    def test_invalid_yaml(self, loader, tmp_path):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("vault_path: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            loader.load(config_file)

    def test_non_mapping_yaml(self, loader, tmp_path):
        config_file = write_yaml(tmp_path / "list.yaml", ["a", "b"])

        with pytest.raises(ConfigurationError, match="mapping"):
            loader.load(config_file)

    def test_validation_errors_are_configuration_errors(self, loader, tmp_path, vault):
        config_file = write_yaml(tmp_path / "c.yaml", {
            "vault_path": str(vault),
            "database": {"sslmode": "sometimes"},
        })

        with pytest.raises(ConfigurationError, match="validation"):
            loader.load(config_file)

    def test_environment_overrides(self, loader, vault, clean_env):
        clean_env.setenv("VAULT_SYNC_VAULT_PATH", str(vault))
        clean_env.setenv("VAULT_SYNC_DATABASE_PORT", "6543")
        clean_env.setenv("VAULT_SYNC_DATABASE_PASSWORD", "12345")
        clean_env.setenv("VAULT_SYNC_SYNC_DEBOUNCE_MS", "250")

        config = loader.load()

        assert config.vault_path == vault.resolve()
        assert config.database.port == 6543
        assert config.database.password == "12345"
        assert config.sync.debounce_ms == 250

    def test_convert_env_value(self, loader):
        assert loader._convert_env_value("true") is True
        assert loader._convert_env_value("off") is False
        assert loader._convert_env_value("42") == 42
        assert loader._convert_env_value("1.5") == 1.5
        assert loader._convert_env_value("text") == "text"

    def test_find_prefers_working_directory(self, loader, tmp_path, vault):
        write_yaml(loader.config_dir / "config.yaml", {"vault_path": "/elsewhere"})
        local = write_yaml(Path.cwd() / "config.yaml", {"vault_path": str(vault)})

        assert loader.find_config_file() == local

    def test_find_falls_back_to_config_dir(self, loader, vault):
        home_config = write_yaml(loader.config_dir / "config.yaml", {"vault_path": str(vault)})

        assert loader.find_config_file() == home_config
        assert loader.load().vault_path == vault.resolve()

    def test_find_returns_none_without_config(self, loader):
        assert loader.find_config_file() is None

    def test_state_file_lives_in_config_dir(self, loader, tmp_path, vault):
        config_file = write_yaml(tmp_path / "c.yaml", {"vault_path": str(vault)})
        config = loader.load(config_file)

        state_file = loader.state_file(config)

        assert state_file.parent == loader.config_dir
        assert loader.config_dir.is_dir()


class TestWriteConfig:

    def test_written_config_loads_back(self, loader, vault, clean_env):
        written = loader.write_config(
            vault_path=vault,
            host="db.local",
            user="me",
            database="notes",
            port=5433,
        )
        clean_env.setenv("DB_PASSWORD", "pw")

        assert written == loader.config_dir / "config.yaml"
        config = loader.load(written)

        assert config.vault_path == vault.resolve()
        assert config.database.host == "db.local"
        assert config.database.port == 5433
        assert config.database.password == "pw"
        assert config.database.schema_name == "vault"
        assert config.database.sslmode == "require"
        assert "**/.DS_Store" in config.ignore_patterns

    def test_custom_destination_and_schema(self, loader, tmp_path, vault):
        target = tmp_path / "out" / "vault-sync.yaml"

        loader.write_config(vault, "h", "u", "d", schema="team_vault", config_file=target)

        data = yaml.safe_load(target.read_text(encoding="utf-8"))
        assert data["database"]["schema"] == "team_vault"
        assert data["database"]["password"] == "${DB_PASSWORD}"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_written_config_is_owner_only(self, loader, vault):
        written = loader.write_config(vault, "h", "u", "d")

        assert stat.S_IMODE(written.stat().st_mode) == 0o600


class TestStateDir:

    def test_state_dir_is_created(self, tmp_path):
        target = tmp_path / "a" / "b"
        assert get_state_dir(target) == target
        assert target.is_dir()
