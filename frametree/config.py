"""Tree configuration and defaults."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping

from frametree.timeutil import NANOS_PER_SECOND

# Strict by default, like tf2: a query must land inside the recorded range.
DEFAULT_MAX_EXTRAPOLATION_NS = 0
DEFAULT_MAX_STORAGE_NS = 10 * NANOS_PER_SECOND
DEFAULT_MAX_CAPACITY = 50_000


@dataclass(frozen=True)
class TreeConfig:
    max_extrapolation_ns: int = DEFAULT_MAX_EXTRAPOLATION_NS
    max_storage_ns: int = DEFAULT_MAX_STORAGE_NS
    max_capacity: int = DEFAULT_MAX_CAPACITY


_CONFIG_FIELDS = {f.name for f in fields(TreeConfig)}


def validate_config(cfg: TreeConfig) -> None:
    for key in sorted(_CONFIG_FIELDS):
        value = getattr(cfg, key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{key} must be an integer, got {value!r}")
    if cfg.max_extrapolation_ns < 0:
        raise ValueError("max_extrapolation_ns must be >= 0")
    if cfg.max_storage_ns <= 0:
        raise ValueError("max_storage_ns must be > 0")
    if cfg.max_capacity < 1:
        raise ValueError("max_capacity must be >= 1")


def _normalize_config_key(raw_key: Any) -> str:
    if not isinstance(raw_key, str):
        raise ValueError(f"config key must be string, got {type(raw_key).__name__}")
    key = raw_key.strip().replace("-", "_")
    if not key:
        raise ValueError("config key cannot be empty")
    return key


def config_from_mapping(data: Mapping[str, Any]) -> TreeConfig:
    """Build a validated `TreeConfig` from a flat mapping, e.g. a section of a host's YAML file."""
    values: dict[str, int] = {}
    for raw_key, raw_value in data.items():
        key = _normalize_config_key(raw_key)
        if key not in _CONFIG_FIELDS:
            raise ValueError(f"unknown config key: {raw_key!r}")
        if isinstance(raw_value, bool):
            raise ValueError(f"invalid value for config key '{key}': {raw_value!r}")
        try:
            values[key] = int(raw_value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid value for config key '{key}': {raw_value!r}") from exc
    cfg = TreeConfig(**values)
    validate_config(cfg)
    return cfg
