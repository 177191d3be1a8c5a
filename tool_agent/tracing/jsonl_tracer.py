"""JSONL file-based trace collector."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from tool_agent.engine.events import AgentEvent
from tool_agent.tracing.interface import TraceCollector

logger = logging.getLogger(__name__)


class JSONLTraceCollector(TraceCollector):
    """Writes run events to ``./traces/{run_id}.jsonl``.

    Events are buffered in memory and flushed when the run's terminal event
    (``final_answer`` or ``error``) arrives.
    """

    def __init__(self, trace_dir: str = "./traces") -> None:
        self._dir = Path(trace_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._buffers: dict[str, list[dict[str, Any]]] = {}

    def path_for(self, run_id: str) -> Path:
        return self._dir / f"{run_id}.jsonl"

    async def emit(self, event: AgentEvent) -> None:
        self._buffers.setdefault(event.run_id, []).append(event.model_dump(mode="json"))

    async def flush(self, run_id: str) -> None:
        entries = self._buffers.pop(run_id, [])
        if not entries:
            return
        path = self.path_for(run_id)
        with open(path, "a") as f:
            for entry in entries:
                f.write(json.dumps(entry, default=str) + "\n")
        logger.debug("wrote %d trace events to %s", len(entries), path)
