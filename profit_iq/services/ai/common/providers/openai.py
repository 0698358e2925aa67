"""OpenAI provider."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Sequence

from .base import Attachment, BaseProvider, ChatTurn, ProviderResult, ToolCall

logger = logging.getLogger(__name__)

API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-2024-08-06"


def _user_content(prompt: str, attachment: Attachment | None) -> str | list[dict[str, Any]]:
    if attachment is None:
        return prompt
    if attachment.is_text:
        return [
            {"type": "text", "text": attachment.as_text()},
            {"type": "text", "text": prompt},
        ]
    return [
        {
            "type": "file",
            "file": {
                "filename": attachment.filename,
                "file_data": f"data:{attachment.mime_type};base64,{attachment.as_base64()}",
            },
        },
        {"type": "text", "text": prompt},
    ]


def _chat_messages(messages: Sequence[dict[str, Any]], system_prompt: str | None) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    for message in messages:
        role = message["role"]
        if role == "tool":
            out.append({"role": "tool", "tool_call_id": message["tool_call_id"], "content": message["content"]})
        elif role == "assistant" and message.get("tool_calls"):
            out.append(
                {
                    "role": "assistant",
                    "content": message.get("content") or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                        }
                        for call in message["tool_calls"]
                    ],
                }
            )
        else:
            out.append({"role": role, "content": message["content"]})
    return out


def _tool_specs(tools: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool["description"],
                "parameters": tool["parameters"],
            },
        }
        for tool in tools
    ]


class OpenAIProvider(BaseProvider):
    name = "openai"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def _post(self, body: dict[str, Any], timeout_seconds: float) -> dict[str, Any]:
        import httpx

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                API_URL,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
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

        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": _user_content(prompt, attachment)})

        data = await self._post(
            {"model": model, "max_tokens": max_tokens, "temperature": temperature, "messages": messages},
            timeout_seconds,
        )

        elapsed = (time.monotonic() - t0) * 1000
        text = data["choices"][0]["message"]["content"] or ""
        usage = data.get("usage", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
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
            "messages": _chat_messages(messages, system_prompt),
        }
        if tools:
            body["tools"] = _tool_specs(tools)
        data = await self._post(body, timeout_seconds)

        elapsed = (time.monotonic() - t0) * 1000
        reply = data["choices"][0]["message"]
        usage = data.get("usage", {})
        return ChatTurn(
            text=reply.get("content") or "",
            model=model,
            provider=self.name,
            # Malformed argument JSON raises here and fails the turn.
            tool_calls=tuple(
                ToolCall(
                    id=call["id"],
                    name=call["function"]["name"],
                    arguments=json.loads(call["function"].get("arguments") or "{}"),
                )
                for call in reply.get("tool_calls") or ()
            ),
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            latency_ms=round(elapsed, 2),
        )
