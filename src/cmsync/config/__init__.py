"""Configuration management for cmsync."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import CmsyncConfig, CollectionDefaults, LoggingSettings, SiteSettings
from .resolver import resolve_with_precedence

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.cmsync/config.yaml")
ENV_PREFIX = "CMSYNC__"
TIMESTAMP_PREFIX = "# Last updated: "
# Site identifiers stay strings even when they look numeric, e.g. site code "001".
TEXT_KEYS = frozenset({"site.server", "site.site_code", "site.username", "site.password"})
_HEADER_LINES = (
    "# cmsync configuration file",
    "# Site connection, collection defaults, logging and CLI preferences.",
    f"# Override any key with {ENV_PREFIX}SECTION__KEY, e.g. {ENV_PREFIX}SITE__SERVER.",
)


class ConfigManager:
    """Read and write the cmsync YAML file and resolve the effective settings."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = os.environ if env is None else env

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> CmsyncConfig:
        """Return the effective configuration.

        Args:
            cli_overrides: Dotted keys supplied on the command line; `None` values are ignored.
            include_env: Whether `CMSYNC__` environment variables are applied.
            ensure_file: Create the file with defaults when it is missing.
            env_overrides: Environment mapping used instead of the process environment.

        Returns:
            CmsyncConfig: Validated settings.

        Raises:
            ConfigError: If the file cannot be parsed or a value is invalid.
        """
        if ensure_file:
            self.ensure_exists()

        environment: dict[str, Any] | None = None
        if include_env:
            environment = parse_env_overrides(
                self._env if env_overrides is None else env_overrides
            )

        return resolve_with_precedence(
            defaults=CmsyncConfig(),
            file_overrides=self.load_file_overrides(),
            env_overrides=environment,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return the mapping stored in the config file, or an empty dict."""
        text = self.read_text()
        if not text:
            return {}
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"{self._config_path} must contain a mapping at the top level."
            )
        return data

    def save(self, config: CmsyncConfig | Mapping[str, Any]) -> None:
        """Write `config` to the file behind a fresh header."""
        if isinstance(config, CmsyncConfig):
            data = config.model_dump(mode="json")
        else:
            data = dict(config)

        site = data.get("site")
        if isinstance(site, Mapping) and site.get("password"):
            LOGGER.warning("Storing the site password in plain text in %s", self._config_path)

        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        lines = [*_HEADER_LINES, TIMESTAMP_PREFIX + stamp]
        body = yaml.safe_dump(data, sort_keys=False)
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text("\n".join(lines) + "\n" + body, encoding="utf-8")

    def ensure_exists(self) -> Path:
        """Write the default configuration when no file exists yet."""
        if not self._config_path.exists():
            self.save(CmsyncConfig())
        return self._config_path

    def read_text(self) -> str:
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")


def parse_env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect `CMSYNC__SECTION__KEY` variables into dotted override keys.

    Values are parsed as YAML scalars so `true`, `30` and `null` keep their types.
    """
    overrides: dict[str, Any] = {}
    for name, raw in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        segments = [part.lower() for part in name[len(ENV_PREFIX) :].split("__") if part]
        if not segments:
            continue
        key = ".".join(segments)
        if key in TEXT_KEYS:
            overrides[key] = raw
            continue
        try:
            overrides[key] = yaml.safe_load(raw)
        except yaml.YAMLError:
            overrides[key] = raw
    return overrides


__all__ = [
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "ENV_PREFIX",
    "TEXT_KEYS",
    "TIMESTAMP_PREFIX",
    "CmsyncConfig",
    "CollectionDefaults",
    "LoggingSettings",
    "SiteSettings",
    "parse_env_overrides",
    "resolve_with_precedence",
    "ConfigError",
]
