"""Exception taxonomy for deskpilot."""

from __future__ import annotations


class DeskPilotError(Exception):
    """Base class for all deskpilot errors."""


class ChannelConnectionError(DeskPilotError, ConnectionError):
    """The command channel could not be established or was lost.

    Raised for invalid connect options, transport failures, and when a
    retried operation exhausts its attempts.
    """


class ProtocolError(DeskPilotError):
    """The peer reported a failure or answered with an unexpected shape.

    Attributes:
        error_code: Peer-supplied error code, if any
    """

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class ChannelTimeoutError(DeskPilotError, TimeoutError):
    """A request, readiness wait, or reconnect wait ran out of time."""


class SessionStateError(DeskPilotError):
    """The operation needs a session state the channel is not in."""


class ToolNotSupportedError(DeskPilotError):
    """The model asked for a tool the executor does not know."""


class ToolArgumentError(DeskPilotError):
    """The model supplied arguments that do not fit the tool."""


class ModelBackendError(DeskPilotError):
    """Transport-level failure talking to a language-model backend.

    Attributes:
        status_code: HTTP status returned by the backend, if any
        body: Response body for diagnosis, if any
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        detail = f" - {self.body}" if self.body else ""
        return f"{base} (status {self.status_code}){detail}"


class IterationBudgetExceeded(DeskPilotError):
    """The agent loop hit its iteration limit before the model finished."""

    def __init__(self, max_iterations: int) -> None:
        super().__init__(f"Agent reached maximum iterations ({max_iterations})")
        self.max_iterations = max_iterations
