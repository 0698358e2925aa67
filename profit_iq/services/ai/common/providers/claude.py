"""Anthropic / Claude provider."""

from __future__ import annotations

import logging
import time
from typing import Any, Sequence

from .base import Attachment, BaseProvider, ChatTurn, ProviderResult, ToolCall

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-sonnet-4-5"


def _content_blocks(prompt: str, attachment: Attachment | None) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    if attachment is not None:
        if attachment.is_text:
            blocks.append({"type": "text", "text": attachment.as_text()})
        else:
            blocks.append(
                {
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": attachment.mime_type,
                        "data": attachment.as_base64(),
                    },
                }
            )
    blocks.append({"type": "text", "text": prompt})
    return blocks


def _chat_messages(messages: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """Map the neutral transcript onto Messages API turns.

    Consecutive tool results are folded into a single user turn.
    """
    out: list[dict[str, Any]] = []
    for message in messages:
        role = message["role"]
        if role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message["tool_call_id"],
                "content": message["content"],
            }
            previous = out[-1] if out else None
            if previous and previous.get("tool_results"):
                previous["content"].append(block)
            else:
                out.append({"role": "user", "content": [block], "tool_results": True})
        elif role == "assistant" and message.get("tool_calls"):
            blocks: list[dict[str, Any]] = []
            if message.get("content"):
                blocks.append({"type": "text", "text": message["content"]})
            blocks.extend(
                {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments}
                for call in message["tool_calls"]
            )
            out.append({"role": "assistant", "content": blocks})
        else:
            out.append({"role": role, "content": message["content"]})
    for turn in out:
        turn.pop("tool_results", None)
    return out


def _tool_specs(tools: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {"name": tool["name"], "description": tool["description"], "input_schema": tool["parameters"]}
        for tool in tools
    ]


class ClaudeProvider(BaseProvider):
    name = "claude"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def _post(self, body: dict[str, Any], timeout_seconds: float) -> dict[str, Any]:
        import httpx

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                API_URL,
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json=body,
            )
            resp.raise_for_status()
            return resp.json()

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        attachment: Attachment | None = None,
        model: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout_seconds: float = 8.0,
    ) -> ProviderResult:
        model = model or DEFAULT_MODEL
        t0 = time.monotonic()

        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": _content_blocks(prompt, attachment)}],
        }
        if system_prompt:
            body["system"] = system_prompt
        data = await self._post(body, timeout_seconds)

        elapsed = (time.monotonic() - t0) * 1000
        text = "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
        usage = data.get("usage", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            latency_ms=round(elapsed, 2),
        )

    async def converse(
        self,
        messages: Sequence[dict[str, Any]],
        *,
        system_prompt: str | None = None,
        tools: Sequence[dict[str, Any]] = (),
        model: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout_seconds: float = 8.0,
    ) -> ChatTurn:
        model = model or DEFAULT_MODEL
        t0 = time.monotonic()

        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": _chat_messages(messages),
        }
        if system_prompt:
            body["system"] = system_prompt
        if tools:
            body["tools"] = _tool_specs(tools)
        data = await self._post(body, timeout_seconds)

        elapsed = (time.monotonic() - t0) * 1000
        content = data.get("content", [])
        usage = data.get("usage", {})
        return ChatTurn(
            text="".join(block.get("text", "") for block in content if block.get("type") == "text"),
            model=model,
            provider=self.name,
            tool_calls=tuple(
                ToolCall(id=block["id"], name=block["name"], arguments=block.get("input") or {})
                for block in content
                if block.get("type") == "tool_use"
            ),
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            latency_ms=round(elapsed, 2),
        )
