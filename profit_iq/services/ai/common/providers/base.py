"""Abstract base for all AI providers."""

from __future__ import annotations

import abc
import base64
from dataclasses import dataclass, field
from typing import Any, Sequence

TEXT_MIME_PREFIXES = ("text/", "message/rfc822")


@dataclass(frozen=True)
class ProviderResult:
    """Immutable result returned by every provider."""

    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


@dataclass(frozen=True)
class Attachment:
    """Document bytes sent alongside the prompt."""

    content: bytes
    mime_type: str = "application/pdf"
    filename: str = "document.pdf"

    @property
    def is_text(self) -> bool:
        return self.mime_type.lower().startswith(TEXT_MIME_PREFIXES)

    def as_text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def as_base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatTurn:
    """One assistant turn: reply text and any tools the model asked to run."""

    text: str
    model: str
    provider: str
    tool_calls: tuple[ToolCall, ...] = ()
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


class BaseProvider(abc.ABC):
    """Contract that every AI provider must implement."""

    name: str = "base"

    @abc.abstractmethod
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
        """Send *prompt* (plus optional document) and return a ``ProviderResult``."""

    @abc.abstractmethod
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
        """Run one assistant turn over a provider-neutral transcript.

        Transcript entries are ``{"role": "user" | "assistant", "content": str}``.
        Assistant turns that called tools also carry ``"tool_calls"`` (a list of
        ``ToolCall``), and each tool result is ``{"role": "tool", "tool_call_id",
        "name", "content"}`` with JSON text as content. *tools* are
        ``{"name", "description", "parameters"}`` dicts with a JSON schema.
        """
