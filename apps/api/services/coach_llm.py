"""
Model client adapter for the coach.

The streamer only sees `ModelClient.stream_turn`, which yields one model turn
as a sequence of events:

    TextDelta*  ToolCallRequest*  TurnComplete

`AnthropicModelClient` adapts the Anthropic Messages streaming API. Tests
substitute a scripted client with the same shape.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

from anthropic import AsyncAnthropic

from core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(self.input_tokens + other.input_tokens, self.output_tokens + other.output_tokens)


@dataclass(frozen=True)
class TurnComplete:
    stop_reason: Optional[str]
    usage: Usage
    # Assistant content blocks as plain dicts, ready to append to `messages`.
    assistant_content: List[Dict[str, Any]] = field(default_factory=list)


ModelEvent = Union[TextDelta, ToolCallRequest, TurnComplete]


class ModelUnavailableError(RuntimeError):
    """No usable model client is configured."""


class ModelClient(Protocol):
    model: str

    def stream_turn(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[ModelEvent]:
        ...


def content_block_to_dict(block: Any) -> Optional[Dict[str, Any]]:
    if block.type == "text":
        return {"type": "text", "text": block.text}
    if block.type == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return None


class AnthropicModelClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Any = None,
    ):
        self.model = model or settings.COACH_MODEL
        self.max_tokens = max_tokens or settings.COACH_MAX_OUTPUT_TOKENS
        if client is not None:
            self.client = client
        elif api_key or settings.ANTHROPIC_API_KEY:
            self.client = AsyncAnthropic(api_key=api_key or settings.ANTHROPIC_API_KEY)
        else:
            self.client = None

    async def stream_turn(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[ModelEvent]:
        if self.client is None:
            raise ModelUnavailableError("Anthropic client not configured")

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools

        async with self.client.messages.stream(**kwargs) as stream:
            async for event in stream:
                if event.type == "text" and event.text:
                    yield TextDelta(event.text)
            final = await stream.get_final_message()

        content = []
        for block in final.content:
            as_dict = content_block_to_dict(block)
            if as_dict is None:
                continue
            content.append(as_dict)
            if as_dict["type"] == "tool_use":
                yield ToolCallRequest(id=as_dict["id"], name=as_dict["name"], input=dict(as_dict["input"] or {}))

        usage = getattr(final, "usage", None)
        yield TurnComplete(
            stop_reason=final.stop_reason,
            usage=Usage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
            ),
            assistant_content=content,
        )


def get_model_client() -> ModelClient:
    """FastAPI dependency; overridden in tests."""
    return AnthropicModelClient()
