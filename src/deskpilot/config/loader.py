"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Layered merging (system -> user -> project -> environment)
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from deskpilot.config.paths import get_config_paths
from deskpilot.config.schema import (
    AgentConfig,
    ChannelConfig,
    Config,
    DetectorConfig,
    LLMConfig,
    LoggingConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("deskpilot.config")

_cached_config: Config | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict if missing or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def merge_layers(*layers: dict[str, Any]) -> dict[str, Any]:
    """Fold config layers together, later layers winning.

    Sections (nested dicts) merge key by key. A None in a later layer leaves
    the earlier value alone; lists and scalars are replaced outright.
    """
    merged: dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            if value is None:
                continue
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                merged[key] = merge_layers(current, value)
            else:
                merged[key] = value
    return merged


def env_overrides() -> dict[str, Any]:
    """Build a config layer from environment variables.

    API keys are not read here; use fetch_secret() for those.
    """
    overrides: dict[str, Any] = {}

    api_url = os.environ.get("DESKPILOT_API_URL")
    if api_url:
        overrides.setdefault("channel", {})["api_base_url"] = api_url

    model = os.environ.get("DESKPILOT_MODEL")
    if model:
        overrides.setdefault("llm", {})["model"] = model

    backend = os.environ.get("DESKPILOT_BACKEND")
    if backend:
        overrides.setdefault("llm", {})["backend"] = backend

    log_path = os.environ.get("DESKPILOT_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    return overrides


def _section(cls: type, data: Any) -> Any:
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        _log.debug("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    return cls(**{k: v for k, v in data.items() if k in known})


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to a typed Config."""
    return Config(
        channel=_section(ChannelConfig, data.get("channel")),
        llm=_section(LLMConfig, data.get("llm")),
        detector=_section(DetectorConfig, data.get("detector")),
        agent=_section(AgentConfig, data.get("agent")),
        logging=_section(LoggingConfig, data.get("logging")),
    )


def load_config(project_root: str | Path | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config (<project_root>/.deskpilot/config.yaml)
    3. User config (~/.config/deskpilot or %APPDATA%)
    4. System config (/etc/deskpilot or %PROGRAMDATA%)

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for path in get_config_paths(project_root):
        data = load_yaml_file(path)
        if data:
            _log.debug("Loaded config from %s", path)
            layers.append(data)

    layers.append(env_overrides())
    config = dict_to_config(merge_layers(*layers))

    if project_root is None:
        _cached_config = config
    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Forget the cached config."""
    global _cached_config
    _cached_config = None
