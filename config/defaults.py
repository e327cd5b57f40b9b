"""
Default configuration values for vault-sync.

Centralized defaults that can be overridden by the config file or by
environment variables.
"""

import os
import platform
from pathlib import Path
from typing import Any, Dict, List, Optional

APP_NAME = "vault-sync"
CONFIG_FILENAME = "config.yaml"

DEFAULT_IGNORE_PATTERNS: List[str] = [
    ".obsidian/**",
    ".trash/**",
    ".git/**",
    "**/.DS_Store",
    "**/node_modules/**",
]

# Global default settings
DEFAULT_SETTINGS: Dict[str, Any] = {
    "database": {
        "host": "localhost",
        "port": 5432,
        "sslmode": "require",
        "min_connections": 2,
        "max_connections": 10,
        "max_connection_lifetime_s": 3600,
        "pool_timeout_s": 30.0,
        "operation_timeout_s": 30.0,
    },

    "sync": {
        "debounce_ms": 2000,
        "max_binary_size_mb": 50,
        "batch_size": 100,
        "retry_attempts": 3,
        "retry_delay_ms": 1000,
        "queue_size": 100,
        "maintenance_interval_s": 30.0,
        "note_extensions": [".md"],
    },

    "ignore_patterns": DEFAULT_IGNORE_PATTERNS,
    "include_patterns": [],
}

# Environment variable mappings
ENV_VAR_MAPPING = {
    'VAULT_SYNC_VAULT_PATH': 'vault_path',
    'VAULT_SYNC_DATABASE_URL': 'database.url',
    'VAULT_SYNC_DATABASE_HOST': 'database.host',
    'VAULT_SYNC_DATABASE_PORT': 'database.port',
    'VAULT_SYNC_DATABASE_USER': 'database.user',
    'VAULT_SYNC_DATABASE_PASSWORD': 'database.password',
    'VAULT_SYNC_DATABASE_DATABASE': 'database.database',
    'VAULT_SYNC_DATABASE_SCHEMA': 'database.schema',
    'VAULT_SYNC_DATABASE_SSLMODE': 'database.sslmode',
    'VAULT_SYNC_SYNC_DEBOUNCE_MS': 'sync.debounce_ms',
    'VAULT_SYNC_SYNC_MAX_BINARY_SIZE_MB': 'sync.max_binary_size_mb',
    'VAULT_SYNC_SYNC_BATCH_SIZE': 'sync.batch_size',
    'VAULT_SYNC_SYNC_RETRY_ATTEMPTS': 'sync.retry_attempts',
    'VAULT_SYNC_SYNC_RETRY_DELAY_MS': 'sync.retry_delay_ms',
}

# Env values for these paths are always kept as strings
STRING_ENV_PATHS = {
    'vault_path', 'database.url', 'database.host', 'database.user',
    'database.password', 'database.database', 'database.schema',
}

CONFIG_TEMPLATE = """\
vault_path: '{vault_path}'

database:
  host: "{host}"
  port: {port}
  user: "{user}"
  password: "${{DB_PASSWORD}}"  # Set the DB_PASSWORD environment variable
  database: "{database}"
  schema: "{schema}"  # Each vault gets its own schema
  sslmode: "{sslmode}"

sync:
  debounce_ms: 2000
  max_binary_size_mb: 50
  batch_size: 100

ignore_patterns:
{ignore_patterns}
"""


def get_config_dir() -> Path:
    """Per-user configuration directory for the current platform"""
    if platform.system() == "Windows":
        app_data = os.environ.get("APPDATA")
        if app_data:
            return Path(app_data) / APP_NAME
        return Path(os.environ.get("USERPROFILE", str(Path.home()))) / ".config" / APP_NAME

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME
    return Path.home() / ".config" / APP_NAME


def get_state_dir(config_dir: Optional[Path] = None) -> Path:
    """Directory for state snapshots, created on demand"""
    state_dir = Path(config_dir) if config_dir else get_config_dir()
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir
