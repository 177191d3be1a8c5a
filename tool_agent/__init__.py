"""tool_agent — tool-calling agent loop over an OpenAI-compatible completion backend.

Usage::

    from tool_agent import create_agent

    agent = create_agent(executor=my_executor, tools=my_tools)
    result = await agent.run("What's the weather in Paris?")

    handle = agent.run_with_events("And in Rome?")
    async for event in handle.events():
        print(event)
"""

from __future__ import annotations

from typing import Iterable

from dotenv import load_dotenv

load_dotenv()  # reads .env into os.environ (no-op if file missing)

from tool_agent.config import AgentSettings, load_settings
from tool_agent.engine.agent import Agent, AgentConfig, RunHandle
from tool_agent.engine.bus import EventObserver
from tool_agent.engine.collaboration import ASK_AGENT, ASK_AGENT_TOOL
from tool_agent.engine.events import AgentEvent, EventKind
from tool_agent.engine.models import AgentSession, RunResult, RunStatus, ToolDefinition
from tool_agent.engine.transport import OpenAITransport
from tool_agent.errors import AgentError, ConfigurationError
from tool_agent.tools.dispatcher import ToolExecutor
from tool_agent.tools.registry import ToolRegistry, ToolSpec
from tool_agent.tracing.jsonl_tracer import JSONLTraceCollector

__all__ = [
    "ASK_AGENT",
    "ASK_AGENT_TOOL",
    "Agent",
    "AgentConfig",
    "AgentError",
    "AgentEvent",
    "AgentSession",
    "AgentSettings",
    "EventKind",
    "RunHandle",
    "RunResult",
    "RunStatus",
    "ToolRegistry",
    "ToolSpec",
    "create_agent",
    "load_settings",
]


def create_agent(
    executor: ToolExecutor | None = None,
    *,
    tools: Iterable[ToolDefinition] | None = None,
    api_key: str | None = None,
    base_url: str | None = None,
    model: str | None = None,
    trace_dir: str | None = None,
    observers: Iterable[EventObserver] = (),
    **config: object,
) -> Agent:
    """Wire settings, transport and tools into a ready-to-use Agent.

    ``executor`` may be a :class:`ToolRegistry`; its definitions become the
    catalog unless ``tools`` is given. Extra keyword arguments go to
    :class:`AgentConfig`.
    """
    settings = load_settings(api_key=api_key, base_url=base_url, model=model)
    transport = OpenAITransport(
        api_key=settings.require_api_key(),
        base_url=settings.base_url,
        timeout=settings.timeout,
        debug=bool(config.get("debug", False)),
    )

    if executor is None:
        executor = ToolRegistry()
    if tools is None and isinstance(executor, ToolRegistry):
        tools = executor.definitions()

    agent_config = AgentConfig(model=settings.model, tools=tuple(tools or ()), **config)
    trace_collector = JSONLTraceCollector(trace_dir) if trace_dir else None
    return Agent(
        transport,
        executor,
        agent_config,
        observers=observers,
        trace_collector=trace_collector,
    )
