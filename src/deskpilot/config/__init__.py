"""Configuration management for deskpilot.

Layered YAML configuration:
- System-level config (/etc/deskpilot/ or %PROGRAMDATA%)
- User-level config (~/.config/deskpilot/ or %APPDATA%)
- Project-level config (<project>/.deskpilot/)
- Environment variable overrides (highest priority)

Example usage:
    from deskpilot.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.channel.api_base_url)
    print(config.llm.model)
"""

from deskpilot.config.loader import (
    get_config,
    load_config,
    merge_layers,
    reset_config,
)
from deskpilot.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from deskpilot.config.schema import (
    AgentConfig,
    ChannelConfig,
    Config,
    DetectorConfig,
    LLMConfig,
    LoggingConfig,
)
from deskpilot.config.secrets import (
    GEMINI_API_KEY,
    OPENROUTER_API_KEY,
    SESSION_API_KEY,
    clear_secret_cache,
    fetch_secret,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "merge_layers",
    # Schema types
    "AgentConfig",
    "ChannelConfig",
    "DetectorConfig",
    "LLMConfig",
    "LoggingConfig",
    # Secret management
    "fetch_secret",
    "clear_secret_cache",
    "SESSION_API_KEY",
    "OPENROUTER_API_KEY",
    "GEMINI_API_KEY",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
