"""Tool registry — catalog definitions plus a ready-made tool executor."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel

from tool_agent.engine.models import ToolDefinition
from tool_agent.errors import ToolNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ToolSpec:
    """Registration record for a single tool.

    ``parameters`` is either a JSON schema dict or a Pydantic model class whose
    schema is advertised. Arguments reach the handler as keyword arguments and
    are not validated against the schema.
    """

    name: str
    description: str
    handler: Callable[..., Any]
    parameters: dict[str, Any] | type[BaseModel] | None = None
    timeout: float = 30.0

    def definition(self) -> ToolDefinition:
        params = self.parameters
        if isinstance(params, type) and issubclass(params, BaseModel):
            schema = params.model_json_schema()
        elif params is None:
            schema = {"type": "object", "properties": {}}
        else:
            schema = dict(params)
        return ToolDefinition(name=self.name, description=self.description, parameters=schema)


class ToolRegistry:
    """Central tool store. ``await registry(name, arguments)`` is a tool executor."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    # -- registration -------------------------------------------------------

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec
        logger.info("Registered tool %s", spec.name)

    def tool(
        self,
        name: str | None = None,
        description: str = "",
        parameters: dict[str, Any] | type[BaseModel] | None = None,
        timeout: float = 30.0,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register(ToolSpec(
                name=name or fn.__name__,
                description=description or inspect.getdoc(fn) or "",
                handler=fn,
                parameters=parameters,
                timeout=timeout,
            ))
            return fn

        return decorator

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def definitions(self) -> tuple[ToolDefinition, ...]:
        return tuple(spec.definition() for spec in self._tools.values())

    # -- execution ----------------------------------------------------------

    async def __call__(self, name: str, arguments: dict[str, Any]) -> str:
        return await self.execute(name, arguments)

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        spec = self._tools.get(name)
        if spec is None:
            raise ToolNotFoundError(name)

        t0 = time.time()
        raw = spec.handler(**arguments)
        if inspect.isawaitable(raw):
            try:
                raw = await asyncio.wait_for(raw, timeout=spec.timeout)
            except asyncio.TimeoutError as exc:
                logger.warning("tool=%s timed out after %.1fs", name, spec.timeout)
                raise asyncio.TimeoutError(f"tool {name} timed out after {spec.timeout}s") from exc
        logger.info("tool=%s latency=%.3fs OK", name, time.time() - t0)

        if isinstance(raw, str):
            return raw
        if isinstance(raw, BaseModel):
            return raw.model_dump_json()
        return json.dumps(raw, default=str)
