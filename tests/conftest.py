"""Shared fixtures for tool_agent tests."""

from __future__ import annotations

import pytest

from tool_agent.engine.models import ToolDefinition
from tool_agent.tools.registry import ToolRegistry, ToolSpec
from tool_agent.tracing.jsonl_tracer import JSONLTraceCollector

WEATHER_SCHEMA = {
    "type": "object",
    "properties": {"location": {"type": "string"}},
    "required": ["location"],
}
SEARCH_SCHEMA = {
    "type": "object",
    "properties": {"query": {"type": "string"}},
    "required": ["query"],
}


def _get_weather(location: str) -> str:
    return f"The weather in {location} is sunny and 25C"


async def _search_web(query: str) -> str:
    return f"Top search result for '{query}'"


@pytest.fixture
def tool_registry():
    registry = ToolRegistry()
    registry.register(ToolSpec(
        name="get_weather",
        description="Get the current weather for a location",
        handler=_get_weather,
        parameters=WEATHER_SCHEMA,
    ))
    registry.register(ToolSpec(
        name="search_web",
        description="Search the web for a query",
        handler=_search_web,
        parameters=SEARCH_SCHEMA,
    ))
    return registry


@pytest.fixture
def tool_definitions(tool_registry) -> tuple[ToolDefinition, ...]:
    return tool_registry.definitions()


@pytest.fixture
def executor_calls():
    """A recording executor: ``(executor, calls)``."""
    calls: list[tuple[str, dict]] = []

    def executor(name: str, arguments: dict) -> str:
        calls.append((name, arguments))
        return f"{name} ok"

    return executor, calls


@pytest.fixture
def trace_collector(tmp_path):
    return JSONLTraceCollector(trace_dir=str(tmp_path / "traces"))
