"""Configuration error types."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when a configuration value cannot be used."""


class MissingConfigurationError(ConfigurationError):
    """Raised when required environment variables are unset or blank."""
