"""Exceptions raised while loading or validating configuration."""


class ConfigError(Exception):
    """Raised when configuration files, environment overrides, or values are invalid."""
