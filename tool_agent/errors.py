"""Exception hierarchy for agent runs."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tool_agent.engine.models import AgentSession


class AgentError(Exception):
    """Base class for fatal run errors.

    ``session`` holds the partial transcript of the run that failed, when the
    error escaped from a run. Transcripts are never rolled back.
    """

    def __init__(self, message: str, *, session: AgentSession | None = None) -> None:
        super().__init__(message)
        self.session = session


class ConfigurationError(AgentError):
    pass


class TransportError(AgentError):
    """Network failure or non-success status from the completion backend."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        session: AgentSession | None = None,
    ) -> None:
        super().__init__(message, session=session)
        self.status_code = status_code


class ResponseDecodeError(AgentError):
    """A buffered backend response could not be interpreted."""


class StreamDecodeError(AgentError):
    """Malformed SSE framing or an undecodable ``data:`` payload."""


class DelegationError(AgentError):
    """A cross-agent delegation could not be completed."""


class UnknownAgentError(DelegationError):
    def __init__(self, agent_name: str, *, session: AgentSession | None = None) -> None:
        super().__init__(f"agent not found: {agent_name}", session=session)
        self.agent_name = agent_name


class RunCancelled(AgentError):
    pass


class ToolNotFoundError(LookupError):
    """Raised by the tool registry; recoverable inside a run."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' not found")
        self.name = name
