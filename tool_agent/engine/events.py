"""Lifecycle events (loop → observers) as a closed tagged union."""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class EventKind(str, Enum):
    START = "start"
    ITERATION = "iteration"
    ASSISTANT_DELTA = "assistant_delta"
    ASSISTANT_RESPONSE = "assistant_response"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    FINAL_ANSWER = "final_answer"
    ERROR = "error"


TERMINAL_KINDS = frozenset({EventKind.FINAL_ANSWER.value, EventKind.ERROR.value})


class ErrorReason(str, Enum):
    TRANSPORT = "transport"
    DECODE = "decode"
    DELEGATION = "delegation"
    CANCELLED = "cancelled"
    BUDGET_EXHAUSTED = "budget_exhausted"
    INTERNAL = "internal"


class _BaseEvent(BaseModel):
    run_id: str = ""
    timestamp: float = Field(default_factory=time.time)

    @property
    def terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS  # type: ignore[attr-defined]


class StartEvent(_BaseEvent):
    kind: Literal["start"] = "start"
    input: str


class IterationEvent(_BaseEvent):
    kind: Literal["iteration"] = "iteration"
    current: int
    max: int


class AssistantDeltaEvent(_BaseEvent):
    """A flushed fragment of streamed assistant text."""
    kind: Literal["assistant_delta"] = "assistant_delta"
    text: str


class AssistantResponseEvent(_BaseEvent):
    kind: Literal["assistant_response"] = "assistant_response"
    content: str | None = None
    finish_reason: str | None = None
    tool_calls: int = 0


class ToolCallEvent(_BaseEvent):
    kind: Literal["tool_call"] = "tool_call"
    call_id: str
    tool: str
    arguments: str


class ToolResultEvent(_BaseEvent):
    kind: Literal["tool_result"] = "tool_result"
    call_id: str
    tool: str
    result: str
    ok: bool = True
    agent: str | None = None


class FinalAnswerEvent(_BaseEvent):
    kind: Literal["final_answer"] = "final_answer"
    answer: str
    content: str | None = None


class ErrorEvent(_BaseEvent):
    kind: Literal["error"] = "error"
    message: str
    reason: ErrorReason


AgentEvent = Annotated[
    Union[
        StartEvent,
        IterationEvent,
        AssistantDeltaEvent,
        AssistantResponseEvent,
        ToolCallEvent,
        ToolResultEvent,
        FinalAnswerEvent,
        ErrorEvent,
    ],
    Field(discriminator="kind"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(AgentEvent)


def parse_event(data: dict[str, Any]) -> AgentEvent:
    """Rebuild a typed event from its ``model_dump()`` form (e.g. a trace line)."""
    return _EVENT_ADAPTER.validate_python(data)
