"""Core data models — no internal dependencies, only Pydantic + stdlib."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FinishReason:
    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

class FunctionCall(BaseModel):
    name: str
    arguments: str = ""


class ToolCallRequest(BaseModel):
    """A single tool/function call requested by the backend."""
    id: str
    type: str = "function"
    function: FunctionCall

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> str:
        """Raw argument text, JSON as produced by the backend."""
        return self.function.arguments


class ConversationMessage(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    role: Role
    content: str | None = None
    tool_calls: list[ToolCallRequest] | None = None
    tool_call_id: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ToolDefinition(BaseModel):
    """Catalog entry advertised to the backend. Shared read-only across runs."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


# ---------------------------------------------------------------------------
# Backend request / response
# ---------------------------------------------------------------------------

class CompletionRequest(BaseModel):
    model: str
    messages: list[ConversationMessage]
    temperature: float | None = None
    max_tokens: int | None = None
    tools: list[ToolDefinition] | None = None
    tool_choice: str | None = None
    stream: bool | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_wire() for m in self.messages],
        }
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if self.max_tokens:
            body["max_tokens"] = self.max_tokens
        if self.tools:
            body["tools"] = [t.to_openai() for t in self.tools]
            body["tool_choice"] = self.tool_choice or "auto"
        if self.stream:
            body["stream"] = True
        return body


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Choice(BaseModel):
    index: int = 0
    message: ConversationMessage
    finish_reason: str | None = None


class CompletionResult(BaseModel):
    """Complete (non-streaming) backend response."""
    id: str | None = None
    model: str | None = None
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage | None = None


# ---------------------------------------------------------------------------
# Session and run outcome
# ---------------------------------------------------------------------------

class AgentSession(BaseModel):
    """Conversation state threaded through runs.

    A run copies the session it is given and returns the extended copy, so the
    caller's value is never mutated.
    """
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    messages: list[ConversationMessage] = Field(default_factory=list)
    iterations: int = 0

    @classmethod
    def seeded(cls, system_prompt: str) -> AgentSession:
        return cls(messages=[ConversationMessage(role=Role.SYSTEM, content=system_prompt)])

    def fork(self) -> AgentSession:
        return self.model_copy(deep=True)

    def append(self, message: ConversationMessage) -> None:
        self.messages.append(message)

    def __len__(self) -> int:
        return len(self.messages)


class RunStatus(str, Enum):
    COMPLETED = "completed"
    BUDGET_EXHAUSTED = "budget_exhausted"


class RunResult(BaseModel):
    status: RunStatus
    content: str | None = None
    answer: str | None = None
    session: AgentSession
    iterations: int = 0
    usage: Usage = Field(default_factory=Usage)

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.COMPLETED
