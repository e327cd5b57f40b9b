"""
Configuration loading for vault-sync.

Reads a YAML config file, layers it over the defaults, applies environment
variable overrides and derives the values left implicit (schema name,
expanded paths).
"""

import copy
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from core.exceptions import ConfigurationError
from core.models.config import GlobalSettings, VaultConfig
from core.sync.state import state_file_for
from .defaults import (
    CONFIG_FILENAME,
    CONFIG_TEMPLATE,
    DEFAULT_IGNORE_PATTERNS,
    DEFAULT_SETTINGS,
    ENV_VAR_MAPPING,
    STRING_ENV_PATHS,
    get_config_dir,
    get_state_dir,
)

logger = logging.getLogger(__name__)

MAX_IDENTIFIER_LENGTH = 63


def sanitize_identifier(name: str) -> str:
    """
    Turn a folder name into a valid unquoted PostgreSQL identifier.

    Lowercases, maps spaces and hyphens to underscores, drops anything else
    outside ``[a-z0-9_]``, collapses and trims underscores, prefixes names
    starting with a digit with ``vault_`` and truncates to 63 characters.
    """
    name = name.lower().replace(" ", "_").replace("-", "_")
    name = re.sub(r"[^a-z0-9_]", "", name)
    name = re.sub(r"_+", "_", name).strip("_")

    if not name:
        name = "vault"
    elif name[0].isdigit():
        name = f"vault_{name}"

    if len(name) > MAX_IDENTIFIER_LENGTH:
        name = name[:MAX_IDENTIFIER_LENGTH].rstrip("_")
    return name


def expand_path(path: str) -> str:
    """Expand ``~`` and environment variables"""
    return os.path.expandvars(os.path.expanduser(path))


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


class ConfigurationLoader:
    """Locate, load and validate vault configuration"""

    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()
        self.config_dir = Path(self.global_settings.config_dir or get_config_dir())

    def find_config_file(self, config_path: Optional[Union[str, Path]] = None) -> Optional[Path]:
        """
        Resolve the config file to read.

        An explicit path must exist. Otherwise ``./config.yaml`` is tried
        first, then the per-user config directory.

        Raises:
            ConfigurationError: If an explicit path does not exist
        """
        if config_path:
            path = Path(expand_path(str(config_path)))
            if not path.is_file():
                raise ConfigurationError(f"Config file not found: {path}")
            return path

        for candidate in (Path.cwd() / CONFIG_FILENAME, self.config_dir / CONFIG_FILENAME):
            if candidate.is_file():
                return candidate
        return None

    def load(
        self,
        config_path: Optional[Union[str, Path]] = None,
        require_vault: bool = True
    ) -> VaultConfig:
        """
        Load the effective configuration.

        Args:
            config_path: Explicit config file; searched for when omitted
            require_vault: Fail if the vault directory does not exist

        Returns:
            Validated configuration

        Raises:
            ConfigurationError: If the file is unreadable or the result is invalid
        """
        data = copy.deepcopy(DEFAULT_SETTINGS)

        config_file = self.find_config_file(config_path)
        if config_file is not None:
            _deep_merge(data, self._read_yaml(config_file))
            logger.debug(f"Loaded configuration from {config_file}")
        else:
            logger.debug("No config file found, using defaults and environment")

        data = self._apply_env_overrides(data)

        if not data.get("vault_path"):
            raise ConfigurationError("vault_path is required (config file or VAULT_SYNC_VAULT_PATH)")
        data["vault_path"] = expand_path(str(data["vault_path"]))

        database = data.setdefault("database", {})
        if database.get("password"):
            database["password"] = os.path.expandvars(str(database["password"]))
        if not database.get("schema"):
            database["schema"] = sanitize_identifier(Path(data["vault_path"]).name)

        try:
            config = VaultConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Config validation failed: {e}") from e

        if require_vault and not config.vault_path.is_dir():
            raise ConfigurationError(f"Vault path is not a directory: {config.vault_path}")

        return config

    def _read_yaml(self, config_file: Path) -> Dict[str, Any]:
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Error reading config file {config_file}: {e}") from e

        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a mapping")
        return loaded

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using dot notation path"""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        if path in STRING_ENV_PATHS:
            current[keys[-1]] = value
        else:
            current[keys[-1]] = self._convert_env_value(value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        return value

    @property
    def state_dir(self) -> Path:
        return get_state_dir(self.config_dir)

    def state_file(self, config: VaultConfig) -> Path:
        """Snapshot location for a vault"""
        return state_file_for(self.state_dir, config.vault_path)

    def write_config(
        self,
        vault_path: Union[str, Path],
        host: str,
        user: str,
        database: str,
        port: int = 5432,
        schema: Optional[str] = None,
        sslmode: str = "require",
        ignore_patterns: Optional[List[str]] = None,
        config_file: Optional[Path] = None
    ) -> Path:
        """
        Write a starter config file readable only by the owner.

        The password is not written; the file references ``${DB_PASSWORD}``.

        Returns:
            Path of the written file
        """
        vault_path = Path(expand_path(str(vault_path)))
        schema = schema or sanitize_identifier(vault_path.name)
        patterns = ignore_patterns if ignore_patterns is not None else DEFAULT_IGNORE_PATTERNS

        content = CONFIG_TEMPLATE.format(
            vault_path=vault_path,
            host=host,
            port=port,
            user=user,
            database=database,
            schema=schema,
            sslmode=sslmode,
            ignore_patterns="\n".join(f'  - "{pattern}"' for pattern in patterns),
        )

        config_file = config_file or (self.config_dir / CONFIG_FILENAME)
        config_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(config_file), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)

        logger.info(f"Saved configuration to {config_file}")
        return config_file
