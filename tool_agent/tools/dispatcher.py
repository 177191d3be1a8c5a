"""Runs one tool call and turns the outcome into a transcript entry."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from tool_agent.engine.models import ConversationMessage, Role, ToolCallRequest

logger = logging.getLogger(__name__)

# ``(name, arguments) -> result text``; raising is the error channel.
ToolExecutor = Callable[[str, dict[str, Any]], Union[str, Awaitable[str]]]


class ArgumentDecodeError(ValueError):
    pass


@dataclass(frozen=True)
class ToolOutcome:
    message: ConversationMessage
    ok: bool
    error: str | None = None

    @property
    def content(self) -> str:
        return self.message.content or ""


def format_success(name: str, result: str) -> str:
    return f"Tool {name} executed successfully. Result: {result}"


def format_failure(name: str, error: str) -> str:
    return f"Tool {name} execution failed. Error: {error}"


def decode_arguments(raw: str) -> dict[str, Any]:
    if not raw or not raw.strip():
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ArgumentDecodeError(f"failed to parse tool arguments: {exc}") from exc
    if not isinstance(decoded, dict):
        raise ArgumentDecodeError(
            f"failed to parse tool arguments: expected a JSON object, got {type(decoded).__name__}"
        )
    return decoded


class ToolDispatcher:
    """Resolves tool calls against a caller-supplied executor.

    Argument decode failures and executor failures are folded into the tool
    message instead of propagating, so the run can continue.
    """

    def __init__(self, executor: ToolExecutor) -> None:
        self._executor = executor

    async def dispatch(self, call: ToolCallRequest) -> ToolOutcome:
        try:
            arguments = decode_arguments(call.arguments)
        except ArgumentDecodeError as exc:
            logger.warning("tool=%s call_id=%s bad arguments: %s", call.name, call.id, exc)
            return self._outcome(call, format_failure(call.name, str(exc)), error=str(exc))

        try:
            result = self._executor(call.name, arguments)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.warning("tool=%s call_id=%s error=%s", call.name, call.id, exc)
            return self._outcome(call, format_failure(call.name, str(exc)), error=str(exc))

        logger.info("tool=%s call_id=%s OK", call.name, call.id)
        return self._outcome(call, format_success(call.name, str(result)))

    @staticmethod
    def _outcome(call: ToolCallRequest, content: str, error: str | None = None) -> ToolOutcome:
        message = ConversationMessage(role=Role.TOOL, content=content, tool_call_id=call.id)
        return ToolOutcome(message=message, ok=error is None, error=error)
