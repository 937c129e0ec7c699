"""Configuration schema dataclasses for deskpilot.

Defines the structure of configuration at all levels (system, user, project).
Every field has a default so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ChannelConfig:
    """Remote session and command channel settings.

    Example config.yaml:
        channel:
          api_base_url: https://api.example.com
          image: windows-11-base
          vcpu: 4
          memory_gb: 16
          request_timeout: 120
    """

    api_base_url: str | None = None
    api_key: str | None = None  # Normally fetched via DESKPILOT_API_KEY
    environment_id: str | None = None
    vcpu: int | None = None
    memory_gb: int | None = None
    storage_gb: int | None = None
    image: str | None = None
    tags: dict[str, str] = field(default_factory=dict)
    ready_timeout: float = 300.0  # Seconds to wait for Ready after connect
    request_timeout: float = 120.0  # Per-command response deadline
    capture_timeout: float = 1800.0  # Asset capture deadline
    checkpoint_timeout: float = 600.0  # Checkpoint create/restore deadline
    reconnect_wait: float = 30.0  # Bound on waiting for the reconnect barrier
    max_attempts: int = 3
    retry_delay: float = 2.0  # Used when no reconnection is in progress
    reconnect_delays: list[float] = field(default_factory=lambda: [1.0, 2.0, 5.0])


@dataclass
class LLMConfig:
    """Language-model backend configuration."""

    backend: str = "openrouter"  # openrouter, gemini, litellm
    model: str | None = None
    api_base: str | None = None  # Custom endpoint
    max_tokens: int | None = None


@dataclass
class DetectorConfig:
    """UI-element detection service."""

    enabled: bool = False
    base_url: str | None = None
    timeout: float = 120.0
    box_threshold: float = 0.3
    iou_threshold: float = 0.1


@dataclass
class AgentConfig:
    """Agent loop settings."""

    max_iterations: int = 100
    recent_screenshots: int = 3  # Screenshot turns kept with full images
    action_delay: float = 0.5  # Seconds between consecutive tool calls
    screenshot_after_action: bool = False  # Report a fresh screenshot after each tool call
    screenshot_delay: float = 0.5  # Settle time before that screenshot
    system_prompt: str | None = None


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, wins over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    channel: ChannelConfig = field(default_factory=ChannelConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
