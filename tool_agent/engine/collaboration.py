"""Cross-agent delegation through the reserved ``ask_agent`` tool."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Mapping

from pydantic import BaseModel, ValidationError

from tool_agent.engine.models import ToolCallRequest, ToolDefinition
from tool_agent.errors import AgentError, DelegationError, RunCancelled, UnknownAgentError

if TYPE_CHECKING:
    from tool_agent.engine.agent import Agent

logger = logging.getLogger(__name__)

ASK_AGENT = "ask_agent"


class DelegationRequest(BaseModel):
    agent_name: str
    question: str


ASK_AGENT_TOOL = ToolDefinition(
    name=ASK_AGENT,
    description="Ask another agent a question and get back its final answer.",
    parameters=DelegationRequest.model_json_schema(),
)


def parse_delegation(call: ToolCallRequest) -> DelegationRequest:
    """Unlike ordinary tool arguments, a bad delegation payload is fatal."""
    try:
        return DelegationRequest.model_validate(json.loads(call.arguments or "{}"))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise DelegationError(f"failed to parse {ASK_AGENT} arguments: {exc}") from exc


async def delegate(
    call: ToolCallRequest,
    peers: Mapping[str, Agent],
    cancel: asyncio.Event | None = None,
) -> tuple[str, str]:
    """Run the named peer to completion and return ``(agent_name, tool content)``.

    The peer starts from a fresh session and may delegate further through the
    same ``peers`` mapping. Chains that revisit an agent are not detected.
    """
    request = parse_delegation(call)
    peer = peers.get(request.agent_name)
    if peer is None:
        raise UnknownAgentError(request.agent_name)

    logger.info("delegating call_id=%s to agent=%s", call.id, request.agent_name)
    try:
        result = await peer.run(request.question, peers=peers, cancel=cancel)
    except RunCancelled as exc:
        raise RunCancelled(str(exc)) from exc
    except AgentError as exc:
        raise DelegationError(f"error asking agent {request.agent_name}: {exc}") from exc

    if not result.completed:
        raise DelegationError(
            f"error asking agent {request.agent_name}: max iterations reached without resolution"
        )
    return request.agent_name, f"Response from {request.agent_name}: {result.answer}"
