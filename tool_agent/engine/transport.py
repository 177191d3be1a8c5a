"""Transport — ABC, OpenAI implementation, and a scripted test double."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Sequence, Union

import openai
from pydantic import ValidationError

from tool_agent.engine.models import (
    Choice,
    CompletionRequest,
    CompletionResult,
    ConversationMessage,
    FinishReason,
    FunctionCall,
    Role,
    ToolCallRequest,
)
from tool_agent.engine.stream import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_FLUSH_INTERVAL,
    StreamAggregator,
)
from tool_agent.errors import ResponseDecodeError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com"


def normalize_base_url(url: str) -> str:
    """``https://host/``, ``https://host/v1`` and ``https://host`` all map to ``https://host/v1``."""
    url = url.strip()
    while True:
        trimmed = url.rstrip("/")
        if trimmed.endswith("/v1"):
            trimmed = trimmed[: -len("/v1")]
        if trimmed == url:
            break
        url = trimmed
    return url + "/v1"


class Transport(ABC):
    """One request to the completion backend, buffered or streamed.

    Implementations raise ``TransportError`` on network failure or a
    non-success status and never retry.
    """

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResult: ...

    @abstractmethod
    def stream_lines(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Raw SSE lines of a streaming completion."""

    async def stream_text(
        self,
        request: CompletionRequest,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ) -> AsyncIterator[str]:
        """Plain text streaming without the agent loop."""
        request = request.model_copy(update={"stream": True})
        aggregator = StreamAggregator(
            self.stream_lines(request),
            chunk_size=chunk_size,
            flush_interval=flush_interval,
        )
        async for fragment in aggregator.fragments():
            yield fragment


# ---------------------------------------------------------------------------
# OpenAI implementation
# ---------------------------------------------------------------------------

class OpenAITransport(Transport):
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        http_client: Any = None,
        debug: bool = False,
    ) -> None:
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=normalize_base_url(base_url),
            timeout=timeout,
            max_retries=0,
            http_client=http_client,
        )
        self._debug = debug

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        body = request.to_body()
        body.pop("stream", None)
        if self._debug:
            logger.debug("Sending request to backend: %s", json.dumps(body, default=str))

        try:
            response = await self._client.chat.completions.create(**body)
        except openai.APIStatusError as exc:
            raise TransportError(
                f"API request failed with status {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except openai.APIError as exc:
            raise TransportError(f"error sending request: {exc}") from exc

        try:
            result = CompletionResult.model_validate(response.model_dump())
        except ValidationError as exc:
            raise ResponseDecodeError(f"error decoding response: {exc}") from exc
        if not result.choices:
            raise ResponseDecodeError("no choices returned from API")

        if self._debug:
            logger.debug("Received response from backend: %s", result.model_dump_json())
        return result

    async def stream_lines(self, request: CompletionRequest) -> AsyncIterator[str]:
        body = request.to_body()
        body["stream"] = True
        if self._debug:
            logger.debug("Sending streaming request to backend: %s", json.dumps(body, default=str))

        try:
            async with self._client.chat.completions.with_streaming_response.create(**body) as response:
                async for line in response.iter_lines():
                    yield line
        except openai.APIStatusError as exc:
            raise TransportError(
                f"API request failed with status {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except openai.APIError as exc:
            raise TransportError(f"error reading stream: {exc}") from exc


# ---------------------------------------------------------------------------
# Test double: deterministic, pre-loaded responses
# ---------------------------------------------------------------------------

Scripted = Union[CompletionResult, Exception, Sequence[str]]


class ScriptedTransport(Transport):
    """Plays back pre-configured steps in order. Used in unit tests.

    A step is a ``CompletionResult`` (buffered call), a list of SSE lines
    (streaming call) or an exception to raise. Every request is recorded.
    """

    def __init__(self, steps: Sequence[Scripted]) -> None:
        self._steps = list(steps)
        self._call_index = 0
        self.requests: list[CompletionRequest] = []

    @property
    def call_count(self) -> int:
        return self._call_index

    def _next(self, request: CompletionRequest) -> Scripted:
        # Snapshot: the loop keeps extending its own history after the call.
        self.requests.append(request.model_copy(deep=True))
        if self._call_index >= len(self._steps):
            raise TransportError("scripted transport exhausted")
        step = self._steps[self._call_index]
        self._call_index += 1
        if isinstance(step, Exception):
            raise step
        return step

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        step = self._next(request)
        if not isinstance(step, CompletionResult):
            raise TypeError("scripted step is not a buffered result")
        return step

    async def stream_lines(self, request: CompletionRequest) -> AsyncIterator[str]:
        step = self._next(request)
        if isinstance(step, CompletionResult):
            raise TypeError("scripted step is not a line stream")
        for line in step:
            yield line


def tool_call(call_id: str, name: str, arguments: str | dict[str, Any] = "") -> ToolCallRequest:
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return ToolCallRequest(id=call_id, function=FunctionCall(name=name, arguments=arguments))


def scripted_completion(
    content: str | None = None,
    *,
    tool_calls: Sequence[ToolCallRequest] = (),
    finish_reason: str | None = None,
) -> CompletionResult:
    """Build a buffered result; finish reason defaults from the presence of tool calls."""
    if finish_reason is None:
        finish_reason = FinishReason.TOOL_CALLS if tool_calls else FinishReason.STOP
    message = ConversationMessage(
        role=Role.ASSISTANT,
        content=content,
        tool_calls=list(tool_calls) or None,
    )
    return CompletionResult(choices=[Choice(message=message, finish_reason=finish_reason)])


def scripted_stream(
    deltas: Sequence[str],
    *,
    finish_reason: str | None = FinishReason.STOP,
    done: bool = True,
) -> list[str]:
    """SSE lines carrying ``deltas`` as content, then the finish reason and sentinel."""
    lines = [
        "data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": d}, "finish_reason": None}]})
        for d in deltas
    ]
    if finish_reason is not None:
        lines.append(
            "data: " + json.dumps({"choices": [{"index": 0, "delta": {}, "finish_reason": finish_reason}]})
        )
    if done:
        lines.append("data: [DONE]")
    return lines
