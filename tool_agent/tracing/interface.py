"""TraceCollector ABC — consumes run events as a bus observer."""

from __future__ import annotations

from abc import ABC, abstractmethod

from tool_agent.engine.events import AgentEvent


class TraceCollector(ABC):
    """Collects run events for observability.

    Instances are event observers: pass one as ``Agent(trace_collector=...)``
    and it receives every event of every run on its own consumer task.
    """

    async def __call__(self, event: AgentEvent) -> None:
        await self.emit(event)
        if event.terminal:
            await self.flush(event.run_id)

    @abstractmethod
    async def emit(self, event: AgentEvent) -> None: ...

    @abstractmethod
    async def flush(self, run_id: str) -> None: ...
