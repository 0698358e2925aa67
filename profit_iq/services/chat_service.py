"""Model-driven project chat.

Runs the configured chat model over the caller's transcript with the
project's read-only tools. Each step is one model turn; tools the model
asks for are executed and their results fed back until it answers in
plain text or the step budget runs out.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.orm import Session

from profit_iq.core.config import get_settings
from profit_iq.core.errors import ChatFailure, ModelFailure, NotFoundError, ValidationError
from profit_iq.models.project import Project
from profit_iq.services.ai.common.providers import ChatTurn, ToolCall
from profit_iq.services.ai.common.router import PROJECT_CHAT_SCOPE, ResolvedConfig, resolve
from profit_iq.services.chat_tools import ProjectChatTools, build_system_prompt

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    content: str
    model: str
    provider: str
    steps: int
    finish_reason: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)


def _execute_tool(tools: ProjectChatTools, call: ToolCall) -> dict[str, Any]:
    # Bad tool names or arguments go back to the model, which can correct itself.
    try:
        return tools.execute(call.name, call.arguments)
    except (NotFoundError, ValidationError) as exc:
        logger.info("Chat tool %s rejected: %s", call.name, exc.message)
        return {"error": exc.message}


async def _next_turn(
    config: ResolvedConfig,
    transcript: list[dict[str, Any]],
    system_prompt: str,
    tool_definitions: list[dict[str, Any]],
) -> ChatTurn:
    try:
        return await asyncio.wait_for(
            config.provider.converse(
                transcript,
                system_prompt=system_prompt,
                tools=tool_definitions,
                model=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout_seconds=config.timeout_seconds,
            ),
            timeout=config.timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        logger.warning("Chat model timed out after %.0fs (provider=%s)", config.timeout_seconds, config.provider.name)
        raise ChatFailure("Chat model call timed out") from exc
    except Exception as exc:
        logger.exception("Chat model call failed (provider=%s)", config.provider.name)
        raise ChatFailure("Chat model call failed") from exc


async def run_project_chat(
    db: Session,
    project: Project,
    messages: Optional[list[dict[str, Any]]],
    *,
    max_steps: Optional[int] = None,
) -> ChatReply:
    """Answer the latest message in *messages* for an already authorized *project*.

    *messages* are ``{"role": "user" | "assistant", "content": str}`` dicts.
    Raises ``ValidationError`` when there are none and ``ChatFailure`` when
    the model cannot be reached.
    """
    if not messages:
        raise ValidationError("Messages are required")
    max_steps = max_steps or get_settings().ai_chat_max_steps

    try:
        config = resolve(PROJECT_CHAT_SCOPE)
    except ModelFailure as exc:
        raise ChatFailure(exc.message) from exc

    tools = ProjectChatTools(db, project.id)
    tool_definitions = tools.definitions()
    system_prompt = build_system_prompt(project)
    transcript = [{"role": m["role"], "content": m["content"]} for m in messages]
    executed: list[dict[str, Any]] = []

    turn: Optional[ChatTurn] = None
    for step in range(1, max_steps + 1):
        turn = await _next_turn(config, transcript, system_prompt, tool_definitions)
        if not turn.tool_calls:
            return ChatReply(
                content=turn.text,
                model=turn.model,
                provider=turn.provider,
                steps=step,
                finish_reason="stop",
                tool_calls=executed,
            )

        transcript.append({"role": "assistant", "content": turn.text, "tool_calls": list(turn.tool_calls)})
        for call in turn.tool_calls:
            result = _execute_tool(tools, call)
            executed.append({"name": call.name, "arguments": call.arguments, "result": result})
            transcript.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": json.dumps(result, default=str),
                }
            )

    logger.warning("Chat for project %s stopped after %d steps", project.id, max_steps)
    return ChatReply(
        content=turn.text,
        model=turn.model,
        provider=turn.provider,
        steps=max_steps,
        finish_reason="max_steps",
        tool_calls=executed,
    )
