"""
Configuration management for vault-sync

Handles loading, validation and environment overrides.
"""

from .loader import ConfigurationLoader, sanitize_identifier
from .defaults import DEFAULT_SETTINGS, DEFAULT_IGNORE_PATTERNS

__all__ = ["ConfigurationLoader", "sanitize_identifier", "DEFAULT_SETTINGS", "DEFAULT_IGNORE_PATTERNS"]
