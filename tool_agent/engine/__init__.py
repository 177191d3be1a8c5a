from tool_agent.engine.models import (
    AgentSession,
    CompletionRequest,
    CompletionResult,
    ConversationMessage,
    RunResult,
    RunStatus,
    ToolCallRequest,
    ToolDefinition,
)
from tool_agent.engine.events import AgentEvent, ErrorReason, EventKind
from tool_agent.engine.bus import EventBus, EventSubscription
from tool_agent.engine.stream import StreamAggregator
from tool_agent.engine.transport import OpenAITransport, ScriptedTransport, Transport
from tool_agent.engine.agent import Agent, AgentConfig, RunHandle

__all__ = [
    "Agent",
    "AgentConfig",
    "AgentEvent",
    "AgentSession",
    "CompletionRequest",
    "CompletionResult",
    "ConversationMessage",
    "ErrorReason",
    "EventBus",
    "EventKind",
    "EventSubscription",
    "OpenAITransport",
    "RunHandle",
    "RunResult",
    "RunStatus",
    "ScriptedTransport",
    "StreamAggregator",
    "ToolCallRequest",
    "ToolDefinition",
    "Transport",
]
