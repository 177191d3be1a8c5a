"""Tests for Agent.interact, the multi-turn event stream."""

from __future__ import annotations

import asyncio

from tool_agent.engine.agent import Agent
from tool_agent.engine.events import ErrorReason, EventKind
from tool_agent.engine.transport import ScriptedTransport, scripted_completion
from tool_agent.errors import TransportError


async def _inputs(*texts: str):
    for text in texts:
        yield text


class TestInteract:
    async def test_turns_share_the_conversation(self, executor_calls):
        executor, _ = executor_calls
        transport = ScriptedTransport([scripted_completion("Final Answer: one"), scripted_completion("two")])
        agent = Agent(transport, executor)

        events = [event async for event in agent.interact(_inputs("first", "second"))]

        kinds = [e.kind for e in events]
        assert kinds == [
            "start", "iteration", "assistant_response", "final_answer",
            "start", "iteration", "assistant_response", "final_answer",
        ]
        assert [e.answer for e in events if e.kind == EventKind.FINAL_ANSWER] == ["one", "two"]
        assert len({e.run_id for e in events}) == 2

        second = transport.requests[1].messages
        assert [m.role for m in second] == ["system", "user", "assistant", "user"]
        assert second[3].content == "second"

    async def test_failed_turn_does_not_stop_the_next(self, executor_calls):
        executor, _ = executor_calls
        transport = ScriptedTransport([TransportError("backend down"), scripted_completion("recovered")])
        agent = Agent(transport, executor)

        events = [event async for event in agent.interact(_inputs("first", "second"))]

        errors = [e for e in events if e.kind == EventKind.ERROR]
        assert len(errors) == 1
        assert errors[0].reason == ErrorReason.TRANSPORT
        assert errors[0].message == "backend down"
        assert events[-1].kind == EventKind.FINAL_ANSWER
        assert events[-1].answer == "recovered"

        # The failed turn's user message stays in the transcript.
        second = transport.requests[1].messages
        assert [m.content for m in second[1:]] == ["first", "second"]

    async def test_given_session_is_continued_not_mutated(self, executor_calls):
        executor, _ = executor_calls
        agent = Agent(ScriptedTransport([scripted_completion("ok")]), executor)
        session = agent.new_session()

        [event async for event in agent.interact(_inputs("hi"), session)]

        assert len(session) == 1

    async def test_set_cancel_stops_before_next_turn(self, executor_calls):
        executor, _ = executor_calls
        transport = ScriptedTransport([scripted_completion("ok"), scripted_completion("never")])
        agent = Agent(transport, executor)
        cancel = asyncio.Event()

        events = []
        async for event in agent.interact(_inputs("first", "second"), cancel=cancel):
            events.append(event)
            if event.kind == EventKind.FINAL_ANSWER:
                cancel.set()

        assert transport.call_count == 1
        assert events[-1].kind == EventKind.FINAL_ANSWER
