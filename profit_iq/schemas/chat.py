from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=20000)


class ChatRequest(BaseModel):
    # Missing or empty transcripts are rejected by the chat service with a 400.
    messages: Optional[list[ChatMessageIn]] = None


class ChatMessageOut(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class ChatToolCallOut(BaseModel):
    name: str
    arguments: dict[str, Any]
    result: dict[str, Any]


class ChatResponse(BaseModel):
    message: ChatMessageOut
    tool_calls: list[ChatToolCallOut]
    steps: int
    finish_reason: Literal["stop", "max_steps"]
    model: str
    provider: str
