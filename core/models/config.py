"""
Configuration models for vault-sync.

Handles the vault location, remote database connection, and synchronization
tuning.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


VALID_SSL_MODES = {'disable', 'allow', 'prefer', 'require', 'verify-ca', 'verify-full'}


class DatabaseConfig(BaseModel):
    """PostgreSQL connection configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        populate_by_name=True
    )

    # Connection settings
    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    user: str = "postgres"
    password: str = ""
    database: str = "postgres"
    schema_name: str = Field(default="", alias="schema")
    sslmode: str = "require"

    # Full SQLAlchemy URL, overrides the discrete fields when set
    url: Optional[str] = None

    # Pool settings
    min_connections: int = Field(default=2, ge=0, le=100)
    max_connections: int = Field(default=10, ge=1, le=100)
    max_connection_lifetime_s: int = Field(default=3600, ge=1)
    pool_timeout_s: float = Field(default=30.0, gt=0)
    operation_timeout_s: float = Field(default=30.0, gt=0)

    @field_validator('sslmode')
    @classmethod
    def validate_sslmode(cls, v: str) -> str:
        """Validate PostgreSQL sslmode"""
        if v.lower() not in VALID_SSL_MODES:
            raise ValueError(f'sslmode must be one of: {sorted(VALID_SSL_MODES)}')
        return v.lower()

    @field_validator('schema_name')
    @classmethod
    def validate_schema_name(cls, v: str) -> str:
        """Schema names are used unquoted in DDL"""
        if v and not v.replace('_', '').isalnum():
            raise ValueError('Schema name must contain only letters, digits and underscores')
        return v

    @model_validator(mode='after')
    def validate_pool_bounds(self) -> 'DatabaseConfig':
        if self.min_connections > self.max_connections:
            raise ValueError('min_connections must not exceed max_connections')
        return self

    def get_url(self) -> str:
        """SQLAlchemy URL for the asyncpg driver"""
        if self.url:
            return self.url
        return (
            f"postgresql+asyncpg://{quote_plus(self.user)}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def is_postgres(self) -> bool:
        return self.get_url().startswith("postgresql")


class SyncConfig(BaseModel):
    """Synchronization tuning"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    debounce_ms: int = Field(default=2000, ge=0)
    max_binary_size_mb: int = Field(default=50, ge=1)
    batch_size: int = Field(default=100, ge=1, le=10000)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    queue_size: int = Field(default=100, ge=1)
    maintenance_interval_s: float = Field(default=30.0, gt=0)
    note_extensions: List[str] = Field(default_factory=lambda: [".md"])

    @field_validator('note_extensions')
    @classmethod
    def validate_note_extensions(cls, v: List[str]) -> List[str]:
        """Normalize to lowercase with a leading dot"""
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith('.') else f'.{ext}')
        if not normalized:
            raise ValueError('At least one note extension is required')
        return normalized

    @property
    def max_binary_size_bytes(self) -> int:
        """Get max attachment size in bytes"""
        return self.max_binary_size_mb * 1024 * 1024


class VaultConfig(BaseModel):
    """Top-level configuration for one synchronized vault"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    vault_path: Path
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    ignore_patterns: List[str] = Field(default_factory=list)
    include_patterns: List[str] = Field(default_factory=list)

    @field_validator('vault_path')
    @classmethod
    def validate_vault_path(cls, v: Path) -> Path:
        """Expand ~ and make absolute; existence is checked by the commands that need it"""
        return Path(os.path.expanduser(str(v))).resolve()

    @property
    def vault_name(self) -> str:
        return self.vault_path.name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML serialization"""
        data = self.model_dump(by_alias=True, exclude_none=True)
        data['vault_path'] = str(data['vault_path'])
        return data


class GlobalSettings(BaseSettings):
    """Process-wide settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="VAULT_SYNC_",
        case_sensitive=False,
        extra="ignore"
    )

    config_dir: Optional[Path] = None
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    @field_validator('log_level', mode='before')
    @classmethod
    def upper_log_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v
