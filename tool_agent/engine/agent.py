"""Agent — the tool-calling runtime loop.

An :class:`Agent` is a read-only template (transport, tool executor, config).
Each run works on its own copy of an :class:`AgentSession` and returns the
extended copy, so runs on distinct sessions never share mutable state.

States of a run::

    START -> ITERATE -> AWAIT_COMPLETION -> FINAL
                ^                        -> TOOL_ROUND -> ITERATE
                |                        -> ERROR
                +-- budget check --------> BUDGET_EXHAUSTED
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from typing import AsyncIterable, AsyncIterator, Awaitable, Iterable, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from tool_agent.engine.bus import DEFAULT_CAPACITY, EventBus, EventObserver, EventSubscription
from tool_agent.engine.collaboration import ASK_AGENT, ASK_AGENT_TOOL, delegate
from tool_agent.engine.events import (
    AgentEvent,
    AssistantDeltaEvent,
    AssistantResponseEvent,
    ErrorEvent,
    ErrorReason,
    FinalAnswerEvent,
    IterationEvent,
    StartEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from tool_agent.engine.models import (
    AgentSession,
    CompletionRequest,
    ConversationMessage,
    FinishReason,
    Role,
    RunResult,
    RunStatus,
    ToolCallRequest,
    ToolDefinition,
    Usage,
)
from tool_agent.engine.prompts import DEFAULT_SYSTEM_PROMPT, render_system_prompt
from tool_agent.engine.stream import DEFAULT_CHUNK_SIZE, DEFAULT_FLUSH_INTERVAL, StreamAggregator
from tool_agent.engine.transport import Transport
from tool_agent.errors import (
    AgentError,
    DelegationError,
    ResponseDecodeError,
    RunCancelled,
    StreamDecodeError,
    TransportError,
)
from tool_agent.tools.dispatcher import ToolDispatcher, ToolExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_AGENT_MODEL = "gpt-4o"
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_TEMPERATURE = 0.7
FINAL_ANSWER_PREFIX = "Final Answer:"
BUDGET_EXHAUSTED_MESSAGE = "max iterations reached without resolution"


class AgentConfig(BaseModel):
    """Immutable template data shared by every run of an agent."""
    model_config = ConfigDict(frozen=True)

    name: str = "default"
    model: str = DEFAULT_AGENT_MODEL
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int | None = None
    tools: tuple[ToolDefinition, ...] = ()
    stream: bool = False
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, ge=1)
    flush_interval: float = Field(default=DEFAULT_FLUSH_INTERVAL, ge=0)
    event_capacity: int = Field(default=DEFAULT_CAPACITY, ge=1)
    debug: bool = False


def extract_final_answer(content: str) -> str:
    """Text after the first ``Final Answer:`` line, or the whole content."""
    for line in content.splitlines():
        if line.startswith(FINAL_ANSWER_PREFIX):
            return line[len(FINAL_ANSWER_PREFIX):].strip()
    return content


class Agent:
    """Public API: ``result = await agent.run(text)`` or ``agent.run_with_events(text)``."""

    def __init__(
        self,
        transport: Transport,
        executor: ToolExecutor,
        config: AgentConfig | None = None,
        *,
        observers: Iterable[EventObserver] = (),
        trace_collector: EventObserver | None = None,
    ) -> None:
        self._transport = transport
        self._executor = executor
        self.config = config or AgentConfig()
        self._observers = tuple(observers) + ((trace_collector,) if trace_collector else ())
        self._observer_tasks: set[asyncio.Task[None]] = set()

    @property
    def name(self) -> str:
        return self.config.name

    def new_session(self) -> AgentSession:
        return AgentSession.seeded(render_system_prompt(self.config.system_prompt, self.config.tools))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        user_input: str,
        session: AgentSession | None = None,
        *,
        peers: Mapping[str, Agent] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> RunResult:
        """Run to a terminal state.

        Returns the result (completed or budget-exhausted). Fatal errors are
        raised with the partial session attached as ``exc.session``. Observers
        may still be consuming the run's events; see :meth:`wait_observers`.
        """
        bus = self._new_bus()
        run = _AgentRun(self, session, bus, peers=peers, cancel=cancel)
        try:
            return await run.execute(user_input)
        finally:
            bus.close()

    async def collaborate(
        self,
        query: str,
        peers: Mapping[str, Agent],
        session: AgentSession | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> RunResult:
        """Like :meth:`run`, with ``ask_agent`` calls delegated to ``peers``."""
        return await self.run(query, session, peers=peers, cancel=cancel)

    async def interact(
        self,
        inputs: AsyncIterable[str],
        session: AgentSession | None = None,
        *,
        peers: Mapping[str, Agent] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Run every input as one turn of a continuing conversation.

        Yields the events of each turn in order. A failed turn ends with its
        ``error`` event and the next input runs on the partial transcript the
        failure left behind. Stops when ``inputs`` is exhausted or ``cancel``
        is set.
        """
        if session is None:
            session = self.new_session()
        async for user_input in inputs:
            if cancel is not None and cancel.is_set():
                return
            handle = self.run_with_events(user_input, session, peers=peers, cancel=cancel)
            try:
                async for event in handle.events():
                    yield event
            finally:
                if not handle.done:
                    handle._task.cancel()
            try:
                session = (await handle.result()).session
            except AgentError as exc:
                logger.warning("agent=%s turn failed: %s", self.name, exc)
                if exc.session is not None:
                    session = exc.session

    def run_with_events(
        self,
        user_input: str,
        session: AgentSession | None = None,
        *,
        peers: Mapping[str, Agent] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> RunHandle:
        """Start the run on a background task and return its handle.

        The handle's event channel is bounded (``config.event_capacity``): keep
        draining ``handle.events()`` or the run stalls on a full channel.
        """
        cancel = cancel or asyncio.Event()
        bus = self._new_bus()
        subscription = bus.subscribe()
        run = _AgentRun(self, session, bus, peers=peers, cancel=cancel)
        loop = asyncio.get_running_loop()
        result: asyncio.Future[RunResult] = loop.create_future()
        error: asyncio.Future[BaseException] = loop.create_future()

        async def _worker() -> None:
            try:
                outcome = await run.execute(user_input)
            except asyncio.CancelledError:
                error.set_result(RunCancelled("run cancelled", session=run.session))
                raise
            except Exception as exc:
                error.set_result(exc)
            else:
                result.set_result(outcome)
            finally:
                bus.close()

        task = asyncio.create_task(_worker(), name=f"agent-run-{run.run_id}")
        return RunHandle(run, bus, subscription, task, result, error, cancel)

    # ------------------------------------------------------------------

    async def wait_observers(self) -> None:
        """Wait until observers have consumed every event of the finished runs.

        Runs return without waiting for their observers; call this when traces
        must be on disk, e.g. before shutdown.
        """
        if self._observer_tasks:
            await asyncio.gather(*list(self._observer_tasks))

    def _new_bus(self) -> EventBus:
        bus = EventBus(self.config.event_capacity)
        for observer in self._observers:
            task = bus.add_observer(observer)
            self._observer_tasks.add(task)
            task.add_done_callback(self._observer_tasks.discard)
        return bus


class RunHandle:
    """Foreground side of a background run."""

    def __init__(
        self,
        run: _AgentRun,
        bus: EventBus,
        subscription: EventSubscription,
        task: asyncio.Task[None],
        result: asyncio.Future[RunResult],
        error: asyncio.Future[BaseException],
        cancel: asyncio.Event,
    ) -> None:
        self._run = run
        self._bus = bus
        self._subscription = subscription
        self._task = task
        self._result = result
        self._error = error
        self._cancel = cancel
        self._events_taken = False

    @property
    def run_id(self) -> str:
        return self._run.run_id

    @property
    def session(self) -> AgentSession:
        """The run's session; partial until the run terminates."""
        return self._run.session

    @property
    def done(self) -> bool:
        return self._result.done() or self._error.done()

    def events(self) -> AsyncIterator[AgentEvent]:
        if self._events_taken:
            raise RuntimeError("event stream already taken")
        self._events_taken = True
        return self._subscription.__aiter__()

    async def result(self) -> RunResult:
        """Wait for the first terminal signal: the result or the fatal error."""
        done, _ = await asyncio.wait({self._result, self._error}, return_when=asyncio.FIRST_COMPLETED)
        if self._error in done:
            raise self._error.result()
        return self._result.result()

    def cancel(self) -> None:
        self._cancel.set()

    async def wait_closed(self) -> None:
        """Wait until the worker has exited and this run's observers are done."""
        await asyncio.gather(self._task, return_exceptions=True)
        await self._bus.drain_observers()


class _AgentRun:
    """One execution of the loop. Exclusively owns its session copy."""

    def __init__(
        self,
        agent: Agent,
        session: AgentSession | None,
        bus: EventBus,
        *,
        peers: Mapping[str, Agent] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self.run_id = str(uuid.uuid4())
        self.session = session.fork() if session is not None else agent.new_session()
        self.session.iterations = 0
        self._agent = agent
        self._config = agent.config
        self._transport = agent._transport
        self._dispatcher = ToolDispatcher(agent._executor)
        self._bus = bus
        self._peers = peers
        self._cancel = cancel
        self._usage = Usage()

        tools = list(self._config.tools)
        if peers is not None and not any(t.name == ASK_AGENT for t in tools):
            tools.append(ASK_AGENT_TOOL)
        self._tools = tools

    # ------------------------------------------------------------------

    async def execute(self, user_input: str) -> RunResult:
        try:
            return await self._loop(user_input)
        except AgentError as exc:
            if exc.session is None:
                exc.session = self.session
            await self._fail(exc, _reason_for(exc))
            raise
        except Exception as exc:
            await self._fail(exc, ErrorReason.INTERNAL)
            raise

    async def _loop(self, user_input: str) -> RunResult:
        cfg = self._config

        # START ----------------------------------------------------------
        self.session.append(ConversationMessage(role=Role.USER, content=user_input))
        logger.info("run=%s agent=%s started", self.run_id, cfg.name)
        await self._emit(StartEvent(input=user_input))

        while True:
            # ITERATE ------------------------------------------------------
            self._check_cancel()
            iteration = self.session.iterations + 1
            if iteration > cfg.max_iterations:
                return await self._exhausted()
            self.session.iterations = iteration
            await self._emit(IterationEvent(current=iteration, max=cfg.max_iterations))

            # AWAIT_COMPLETION ----------------------------------------------
            message, finish_reason = await self._await_completion()
            self.session.append(message)
            calls = message.tool_calls or []
            await self._emit(AssistantResponseEvent(
                content=message.content,
                finish_reason=finish_reason,
                tool_calls=len(calls),
            ))

            # Decision -------------------------------------------------------
            if not self._tools or finish_reason != FinishReason.TOOL_CALLS:
                return await self._final(message)

            # TOOL_ROUND -----------------------------------------------------
            for call in calls:
                await self._tool_call(call)

    # -- completion -----------------------------------------------------

    def _request(self) -> CompletionRequest:
        cfg = self._config
        return CompletionRequest(
            model=cfg.model,
            messages=list(self.session.messages),
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
            tools=list(self._tools) or None,
            stream=cfg.stream or None,
        )

    async def _await_completion(self) -> tuple[ConversationMessage, str | None]:
        request = self._request()
        if self._config.debug:
            logger.debug("run=%s request: %s", self.run_id, request.to_body())

        if not self._config.stream:
            result = await self._guard(self._transport.complete(request))
            if not result.choices:
                raise ResponseDecodeError("no choices returned from API")
            if result.usage:
                self._usage.prompt_tokens += result.usage.prompt_tokens
                self._usage.completion_tokens += result.usage.completion_tokens
                self._usage.total_tokens += result.usage.total_tokens
            choice = result.choices[0]
            if self._config.debug:
                logger.debug("run=%s response: %s", self.run_id, choice.model_dump())
            return choice.message, choice.finish_reason

        aggregator = StreamAggregator(
            self._transport.stream_lines(request),
            chunk_size=self._config.chunk_size,
            flush_interval=self._config.flush_interval,
        )
        fragments = aggregator.fragments()
        try:
            while (fragment := await self._guard(_next_fragment(fragments))) is not None:
                await self._emit(AssistantDeltaEvent(text=fragment))
        finally:
            await fragments.aclose()
        return aggregator.to_message(), aggregator.finish_reason

    # -- tool round -----------------------------------------------------

    async def _tool_call(self, call: ToolCallRequest) -> None:
        self._check_cancel()
        await self._emit(ToolCallEvent(call_id=call.id, tool=call.name, arguments=call.arguments))

        agent_name: str | None = None
        if call.name == ASK_AGENT and self._peers is not None:
            agent_name, content = await delegate(call, self._peers, self._cancel)
            message = ConversationMessage(role=Role.TOOL, content=content, tool_call_id=call.id)
            ok = True
        else:
            outcome = await self._dispatcher.dispatch(call)
            message, ok = outcome.message, outcome.ok

        self.session.append(message)
        await self._emit(ToolResultEvent(
            call_id=call.id,
            tool=call.name,
            result=message.content or "",
            ok=ok,
            agent=agent_name,
        ))

    # -- terminal states ------------------------------------------------

    async def _final(self, message: ConversationMessage) -> RunResult:
        content = message.content or ""
        answer = extract_final_answer(content)
        await self._emit(FinalAnswerEvent(answer=answer, content=content))
        logger.info("run=%s finished after %d iteration(s)", self.run_id, self.session.iterations)
        return RunResult(
            status=RunStatus.COMPLETED,
            content=content,
            answer=answer,
            session=self.session,
            iterations=self.session.iterations,
            usage=self._usage,
        )

    async def _exhausted(self) -> RunResult:
        logger.warning(
            "run=%s agent=%s: %s (%d)",
            self.run_id, self._config.name, BUDGET_EXHAUSTED_MESSAGE, self._config.max_iterations,
        )
        await self._emit(ErrorEvent(message=BUDGET_EXHAUSTED_MESSAGE, reason=ErrorReason.BUDGET_EXHAUSTED))
        return RunResult(
            status=RunStatus.BUDGET_EXHAUSTED,
            session=self.session,
            iterations=self.session.iterations,
            usage=self._usage,
        )

    async def _fail(self, exc: BaseException, reason: ErrorReason) -> None:
        logger.error("run=%s agent=%s failed: %s", self.run_id, self._config.name, exc)
        event = ErrorEvent(run_id=self.run_id, message=str(exc), reason=reason)
        if self._bus.closed:
            return
        if self._cancel is not None and self._cancel.is_set():
            self._publish_nowait(event)
            return
        try:
            await self._emit(event)
        except RunCancelled:
            self._publish_nowait(event)

    def _publish_nowait(self, event: ErrorEvent) -> None:
        if not self._bus.publish_nowait(event):
            logger.warning(
                "run=%s error event dropped: event channel full (%d)",
                self.run_id, self._config.event_capacity,
            )

    # -- plumbing -------------------------------------------------------

    async def _emit(self, event: AgentEvent) -> None:
        event.run_id = self.run_id
        await self._guard(self._bus.publish(event))

    def _check_cancel(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise RunCancelled("run cancelled")

    async def _guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the cancellation signal fires first."""
        if self._cancel is None:
            return await awaitable
        if self._cancel.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RunCancelled("run cancelled")

        task: asyncio.Future[T] = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise RunCancelled("run cancelled")


def _reason_for(exc: AgentError) -> ErrorReason:
    if isinstance(exc, RunCancelled):
        return ErrorReason.CANCELLED
    if isinstance(exc, DelegationError):
        return ErrorReason.DELEGATION
    if isinstance(exc, (StreamDecodeError, ResponseDecodeError)):
        return ErrorReason.DECODE
    if isinstance(exc, TransportError):
        return ErrorReason.TRANSPORT
    return ErrorReason.INTERNAL


async def _next_fragment(fragments: AsyncIterator[str]) -> str | None:
    try:
        return await fragments.__anext__()
    except StopAsyncIteration:
        return None
