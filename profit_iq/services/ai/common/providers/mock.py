"""Mock provider: deterministic responses, used only when selected by name."""

from __future__ import annotations

import json
import time
from typing import Any, Sequence

from .base import Attachment, BaseProvider, ChatTurn, ProviderResult, ToolCall

MOCK_EXTRACTION = {
    "document_type": "invoice",
    "confidence": 0.9,
    "vendor": {"name": "Mock Supply Co.", "address": None, "phone": None, "email": None},
    "document_info": {
        "number": "MOCK-001",
        "date": "2026-01-15",
        "due_date": "2026-02-14",
        "po_number": None,
        "valid_until": None,
        "project_reference": None,
    },
    "line_items": [
        {
            "description": "Framing lumber",
            "quantity": 10,
            "unit": "ea",
            "unit_price": 25.0,
            "total": 250.0,
            "category": "Materials",
        },
    ],
    "totals": {"subtotal": 250.0, "tax": 0, "total": 250.0, "contingency": None},
    "notes": None,
}


class MockProvider(BaseProvider):
    """Returns ``MOCK_EXTRACTION`` for extraction.

    For chat it replays *chat_script* turn by turn when one is given.
    Otherwise it asks for ``get_project_status`` once and then answers from
    the tool result.
    """

    name = "mock"

    def __init__(self, chat_script: Sequence[ChatTurn] | None = None) -> None:
        self._chat_script = list(chat_script or ())

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
        t0 = time.monotonic()
        text = json.dumps(MOCK_EXTRACTION)
        elapsed = (time.monotonic() - t0) * 1000
        return ProviderResult(
            raw_text=text,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()) + len((system_prompt or "").split()),
            completion_tokens=len(text.split()),
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
        if self._chat_script:
            return self._chat_script.pop(0)

        model = model or "mock-v1"
        tool_results = [m for m in messages if m.get("role") == "tool"]
        tool_names = {tool["name"] for tool in tools}
        if not tool_results and "get_project_status" in tool_names:
            return ChatTurn(
                text="",
                model=model,
                provider=self.name,
                tool_calls=(ToolCall(id="mock-call-1", name="get_project_status", arguments={}),),
            )
        used = ", ".join(m["name"] for m in tool_results) or "no tools"
        return ChatTurn(text=f"Mock answer based on {used}.", model=model, provider=self.name)
