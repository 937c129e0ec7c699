"""deskpilot: drive a remote desktop session and run a vision agent against it."""

__version__ = "0.1.0"

# Public API
from deskpilot.agent import AgentOrchestrator, AgentResult, AgentResultKind, ToolExecutor
from deskpilot.channel import CommandChannel, ComputerInterface, ConnectOptions, SessionState
from deskpilot.config import Config, get_config, load_config
from deskpilot.errors import (
    ChannelConnectionError,
    ChannelTimeoutError,
    DeskPilotError,
    IterationBudgetExceeded,
    ModelBackendError,
    ProtocolError,
    SessionStateError,
)
from deskpilot.llm import AgentMessage, create_adapter

__all__ = [
    "__version__",
    # Channel
    "CommandChannel",
    "ComputerInterface",
    "ConnectOptions",
    "SessionState",
    # Agent
    "AgentOrchestrator",
    "AgentResult",
    "AgentResultKind",
    "ToolExecutor",
    "AgentMessage",
    "create_adapter",
    # Config
    "Config",
    "load_config",
    "get_config",
    # Errors
    "DeskPilotError",
    "ChannelConnectionError",
    "ChannelTimeoutError",
    "ProtocolError",
    "SessionStateError",
    "ModelBackendError",
    "IterationBudgetExceeded",
]
