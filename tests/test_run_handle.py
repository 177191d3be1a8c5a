"""Tests for run_with_events: event channel, result race, cancellation."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

import pytest

from tool_agent.engine.agent import Agent, AgentConfig
from tool_agent.engine.events import ErrorReason, EventKind
from tool_agent.engine.models import CompletionRequest, CompletionResult, RunStatus
from tool_agent.engine.transport import ScriptedTransport, Transport, scripted_completion, tool_call
from tool_agent.errors import RunCancelled, TransportError


class HangingTransport(Transport):
    """Never answers; records that a request arrived."""

    def __init__(self) -> None:
        self.called = asyncio.Event()
        self.cancelled = False

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        self.called.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        raise AssertionError("unreachable")

    async def stream_lines(self, request: CompletionRequest) -> AsyncIterator[str]:
        self.called.set()
        await asyncio.Event().wait()
        yield ""


class TestEventChannel:
    async def test_events_then_result(self, executor_calls, tool_definitions):
        executor, _ = executor_calls
        transport = ScriptedTransport([
            scripted_completion(tool_calls=[tool_call("a", "get_weather", {"location": "x"})]),
            scripted_completion("Final Answer: sunny"),
        ])
        agent = Agent(transport, executor, AgentConfig(tools=tool_definitions))

        handle = agent.run_with_events("weather?")
        kinds = [event.kind async for event in handle.events()]
        result = await handle.result()

        assert kinds[0] == "start"
        assert kinds[-1] == "final_answer"
        assert kinds.count("final_answer") + kinds.count("error") == 1
        assert result.answer == "sunny"
        assert handle.done
        assert handle.session is result.session

    async def test_events_can_only_be_taken_once(self, executor_calls):
        executor, _ = executor_calls
        agent = Agent(ScriptedTransport([scripted_completion("ok")]), executor)

        handle = agent.run_with_events("hi")
        handle.events()
        with pytest.raises(RuntimeError):
            handle.events()
        await handle.result()

    async def test_bounded_channel_stalls_until_drained(self, executor_calls):
        executor, _ = executor_calls
        agent = Agent(ScriptedTransport([scripted_completion("ok")]), executor, AgentConfig(event_capacity=2))

        handle = agent.run_with_events("hi")
        await asyncio.sleep(0.05)
        assert not handle.done

        kinds = [event.kind async for event in handle.events()]
        assert kinds == ["start", "iteration", "assistant_response", "final_answer"]
        assert (await handle.result()).status == RunStatus.COMPLETED

    async def test_fatal_error_surfaces_from_result(self, executor_calls):
        executor, _ = executor_calls
        agent = Agent(ScriptedTransport([TransportError("connection refused")]), executor)

        handle = agent.run_with_events("hi")
        events = [event async for event in handle.events()]

        with pytest.raises(TransportError, match="connection refused") as exc_info:
            await handle.result()
        assert events[-1].kind == EventKind.ERROR
        assert events[-1].reason == ErrorReason.TRANSPORT
        assert len(exc_info.value.session) == 2

    async def test_trace_observer_and_channel_see_same_events(self, executor_calls):
        executor, _ = executor_calls
        observed = []
        agent = Agent(ScriptedTransport([scripted_completion("ok")]), executor, observers=[observed.append])

        handle = agent.run_with_events("hi")
        channel = [event async for event in handle.events()]
        await handle.wait_closed()

        assert [e.kind for e in observed] == [e.kind for e in channel]


class TestCancellation:
    async def test_cancel_while_waiting_for_backend(self, executor_calls):
        executor, _ = executor_calls
        transport = HangingTransport()
        agent = Agent(transport, executor)

        handle = agent.run_with_events("hi")
        await asyncio.wait_for(transport.called.wait(), timeout=1)
        handle.cancel()

        with pytest.raises(RunCancelled):
            await asyncio.wait_for(handle.result(), timeout=1)
        events = [event async for event in handle.events()]
        await handle.wait_closed()

        assert transport.cancelled
        assert events[-1].kind == EventKind.ERROR
        assert events[-1].reason == ErrorReason.CANCELLED

    async def test_pre_set_signal_stops_before_first_call(self, executor_calls):
        executor, _ = executor_calls
        transport = ScriptedTransport([scripted_completion("never")])
        agent = Agent(transport, executor)
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(RunCancelled) as exc_info:
            await agent.run("hi", cancel=cancel)

        assert transport.call_count == 0
        assert len(exc_info.value.session) == 2

    async def test_task_cancellation_resolves_result(self, executor_calls):
        executor, _ = executor_calls
        transport = HangingTransport()
        agent = Agent(transport, executor)

        handle = agent.run_with_events("hi")
        await asyncio.wait_for(transport.called.wait(), timeout=1)
        handle._task.cancel()

        with pytest.raises(RunCancelled):
            await asyncio.wait_for(handle.result(), timeout=1)

    async def test_dropped_error_event_is_logged(self, executor_calls, caplog):
        executor, _ = executor_calls
        agent = Agent(ScriptedTransport([scripted_completion("ok")]), executor, AgentConfig(event_capacity=1))

        handle = agent.run_with_events("hi")
        # "start" fills the channel; the run blocks publishing "iteration".
        await asyncio.sleep(0.05)
        handle.cancel()

        with pytest.raises(RunCancelled):
            await asyncio.wait_for(handle.result(), timeout=1)
        kinds = [event.kind async for event in handle.events()]

        assert kinds == ["start"]
        assert "error event dropped" in caplog.text
