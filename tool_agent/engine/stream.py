"""SSE reassembly: turns ``data: <json>`` lines into ordered text fragments.

The aggregator buffers content deltas and flushes them as one fragment when the
buffer reaches ``chunk_size`` characters or when ``flush_interval`` seconds have
passed since the previous flush. The size threshold is checked first; a delta
that satisfies both thresholds produces a single fragment.

Tool-call deltas and the finish reason are merged alongside the text so that a
streamed completion can be turned back into a full assistant message.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Callable

from tool_agent.engine.models import (
    ConversationMessage,
    FunctionCall,
    Role,
    ToolCallRequest,
)
from tool_agent.errors import StreamDecodeError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
DEFAULT_CHUNK_SIZE = 100
DEFAULT_FLUSH_INTERVAL = 0.5


@dataclass
class _ToolCallParts:
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)


class StreamAggregator:
    """Consumes one SSE line stream. Not restartable."""

    def __init__(
        self,
        lines: AsyncIterable[str],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lines = lines
        self._chunk_size = chunk_size if chunk_size > 0 else DEFAULT_CHUNK_SIZE
        self._interval = flush_interval
        self._clock = clock
        self._buffer: list[str] = []
        self._buffered = 0
        self._last_flush = 0.0
        self._started = False
        self._text: list[str] = []
        self._tool_calls: dict[int, _ToolCallParts] = {}

        self.completed = False
        self.finish_reason: str | None = None
        self.role: str = Role.ASSISTANT.value

    # -- output -------------------------------------------------------------

    def fragments(self) -> AsyncIterator[str]:
        """Lazy fragment sequence; raises ``StreamDecodeError`` after flushing
        any partial output when the stream is malformed."""
        if self._started:
            raise RuntimeError("stream already consumed")
        self._started = True
        return self._run()

    async def collect(self) -> str:
        return "".join([fragment async for fragment in self.fragments()])

    @property
    def text(self) -> str:
        """Everything flushed so far."""
        return "".join(self._text)

    def to_message(self) -> ConversationMessage:
        calls = [
            ToolCallRequest(
                id=parts.id,
                function=FunctionCall(name=parts.name, arguments="".join(parts.arguments)),
            )
            for _, parts in sorted(self._tool_calls.items())
        ]
        return ConversationMessage(
            role=Role.ASSISTANT,
            content=self.text or None,
            tool_calls=calls or None,
        )

    # -- internals ----------------------------------------------------------

    async def _run(self) -> AsyncIterator[str]:
        try:
            async for fragment in self._consume():
                yield fragment
        finally:
            aclose = getattr(self._lines, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _consume(self) -> AsyncIterator[str]:
        self._last_flush = self._clock()
        async for raw in self._lines:
            line = raw.strip()
            if not line or line.startswith(":"):
                continue

            if not line.startswith(DATA_PREFIX):
                for fragment in self._flush():
                    yield fragment
                raise StreamDecodeError(f"unexpected line format: {line}")

            payload = line[len(DATA_PREFIX):].strip()
            if payload == DONE_SENTINEL:
                for fragment in self._flush():
                    yield fragment
                self.completed = True
                return

            try:
                chunk = json.loads(payload)
                delta = self._apply(chunk)
            except (ValueError, TypeError, AttributeError, KeyError) as exc:
                for fragment in self._flush():
                    yield fragment
                raise StreamDecodeError(f"error unmarshaling stream data: {exc}") from exc

            if delta:
                self._buffer.append(delta)
                self._buffered += len(delta)
                if self._buffered >= self._chunk_size:
                    for fragment in self._flush():
                        yield fragment
                elif self._clock() - self._last_flush >= self._interval:
                    for fragment in self._flush():
                        yield fragment

        # Backend closed the stream without the sentinel.
        logger.debug("stream ended without %s sentinel", DONE_SENTINEL)
        for fragment in self._flush():
            yield fragment
        self.completed = True

    def _flush(self) -> list[str]:
        if not self._buffer:
            return []
        fragment = "".join(self._buffer)
        self._buffer.clear()
        self._buffered = 0
        self._last_flush = self._clock()
        self._text.append(fragment)
        return [fragment]

    def _apply(self, chunk: dict) -> str:
        choices = chunk.get("choices") or []
        if not choices:
            return ""
        choice = choices[0]
        if choice.get("finish_reason"):
            self.finish_reason = choice["finish_reason"]
        delta = choice.get("delta") or {}
        if delta.get("role"):
            self.role = delta["role"]
        for tc in delta.get("tool_calls") or []:
            parts = self._tool_calls.setdefault(tc.get("index", 0), _ToolCallParts())
            if tc.get("id"):
                parts.id = tc["id"]
            function = tc.get("function") or {}
            name = function.get("name")
            if name:
                # Some backends repeat the whole name in every delta.
                if parts.name and name.startswith(parts.name):
                    parts.name = name
                else:
                    parts.name += name
            if function.get("arguments"):
                parts.arguments.append(function["arguments"])
        return delta.get("content") or ""
