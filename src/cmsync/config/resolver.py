"""Configuration resolution helpers."""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from typing import Any, Optional

from pydantic import ValidationError

from .exceptions import ConfigError
from .models import CmsyncConfig


def resolve_with_precedence(
    *,
    defaults: CmsyncConfig,
    file_overrides: Optional[Mapping[str, Any]] = None,
    env_overrides: Optional[Mapping[str, Any]] = None,
    cli_overrides: Optional[Mapping[str, Any]] = None,
) -> CmsyncConfig:
    """Layer override sources over `defaults` and validate the result.

    Sources apply in order (file, environment, CLI) so later ones win. Keys may
    be dotted paths such as ``site.server`` or nested mappings. CLI values of
    ``None`` mean the option was not given and are dropped.

    Raises:
        ConfigError: If a source is malformed or the merged values fail validation.
    """
    if cli_overrides is not None:
        cli_overrides = {key: value for key, value in cli_overrides.items() if value is not None}

    merged = defaults.model_dump(mode="json")
    for source_name, layer in (
        ("file", file_overrides),
        ("environment", env_overrides),
        ("cli", cli_overrides),
    ):
        if layer is None:
            continue
        merged = _merge(merged, _expand(layer, source_name))

    try:
        return CmsyncConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def _expand(layer: Any, source_name: str) -> dict[str, Any]:
    """Turn dotted keys into nested dictionaries."""
    if not isinstance(layer, Mapping):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    tree: dict[str, Any] = {}
    for key, value in layer.items():
        if not isinstance(key, str) or not all(key.split(".")):
            raise ConfigError(f"Invalid {source_name} override key: {key!r}")
        *parents, leaf = key.split(".")
        node = tree
        for segment in parents:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(
                    f"{source_name.capitalize()} override {key} conflicts with {segment}."
                )
            node = child
        if isinstance(value, Mapping):
            value = _expand(value, source_name)
            if isinstance(node.get(leaf), dict):
                value = _merge(node[leaf], value)
        node[leaf] = value
    return tree


def _merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    result = deepcopy(dict(base))
    for key, value in overlay.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            result[key] = _merge(current, value)
        else:
            result[key] = deepcopy(value)
    return result


__all__ = ["resolve_with_precedence"]
