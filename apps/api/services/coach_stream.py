"""
Coach response streaming.

Wire format (one SSE `data:` line per event, blank-line separated):

    {"type": "start", "messageId": ...}
    {"type": "tool-call", "toolName": ...}
    {"type": "tool-result", "toolName": ..., "outcome": "data|empty|refused|error"}
    {"type": "text-delta", "delta": ...}
    {"type": "finish", "messageId": ..., "intent": ..., "toolsUsed": [...], "usage": {...}}
    {"type": "error", "code": ..., "message": ...}
    [DONE]

Every stream ends with exactly one `finish` or `error`, then `[DONE]`.
Error messages are fixed strings; upstream text never reaches the client.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
from uuid import UUID

from core.config import settings
from services.ai_observability import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_TIMED_OUT,
    AiLogEntry,
    AiRequestRecorder,
)
from services.coach_llm import (
    ModelClient,
    ModelUnavailableError,
    TextDelta,
    ToolCallRequest,
    TurnComplete,
    Usage,
)
from services.coach_tools import ToolRegistry, tool_result_json
from services.context_builder import (
    CoachProfile,
    DynamicContext,
    build_dynamic_context,
    build_system_prompt,
)
from services.intent_classifier import Intent
from services.privacy import REFUSAL_MESSAGE, PrivacyGate
from services.token_utils import CHARS_PER_TOKEN
from services.tool_result import ToolResult

logger = logging.getLogger(__name__)

DONE_LINE = "data: [DONE]\n\n"
EVENT_TYPES = frozenset({"start", "text-delta", "tool-call", "tool-result", "finish", "error"})

ERROR_TIMEOUT = "timeout"
ERROR_UPSTREAM = "upstream_error"
ERROR_UNAVAILABLE = "model_unavailable"

ERROR_MESSAGES = {
    ERROR_TIMEOUT: "The coach took too long to respond. Please try again.",
    ERROR_UPSTREAM: "The coach ran into a problem generating a response. Please try again.",
    ERROR_UNAVAILABLE: "The coach is temporarily unavailable. Please try again later.",
}


def encode_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, separators=(',', ':'), default=str)}\n\n"


def error_event(code: str) -> str:
    return encode_event({"type": "error", "code": code, "message": ERROR_MESSAGES[code]})


def parse_stream_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Decode one wire line. Returns None for anything that is not a known event.

    `data: [DONE]` decodes to {"type": "done"}.
    """
    if not line:
        return None
    line = line.strip()
    if not line.startswith("data:"):
        return None
    body = line[len("data:"):].strip()
    if body == "[DONE]":
        return {"type": "done"}
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict) or payload.get("type") not in EVENT_TYPES:
        return None
    return payload


@dataclass
class ChatTurn:
    """Everything the streamer needs, resolved before the first byte is sent."""
    user_id: UUID
    intent: Intent
    gate: PrivacyGate
    profile: CoachProfile
    messages: List[Dict[str, str]]
    latest_message: str
    program: Optional[Dict[str, Any]] = None
    today: Optional[str] = None
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class _StreamState:
    usage: Usage = field(default_factory=Usage)
    tools_used: List[str] = field(default_factory=list)
    # Characters streamed in the turn that has not completed yet.
    open_turn_chars: int = 0
    emitted_text: bool = False
    status: str = STATUS_COMPLETED
    error_code: Optional[str] = None
    recorded: bool = False

    def use(self, tool: str) -> None:
        if tool not in self.tools_used:
            self.tools_used.append(tool)

    @property
    def partial_usage(self) -> Usage:
        return self.usage + Usage(0, math.ceil(self.open_turn_chars / CHARS_PER_TOKEN))


def conversation_for_model(messages: Sequence[Dict[str, str]]) -> List[Dict[str, Any]]:
    """Chat history in provider shape; must open with a user turn."""
    convo = [{"role": m["role"], "content": m["content"]} for m in messages if m.get("content")]
    while convo and convo[0]["role"] != "user":
        convo.pop(0)
    return convo


class CoachStreamer:
    def __init__(
        self,
        model: ModelClient,
        registry: ToolRegistry,
        recorder: Optional[AiRequestRecorder] = None,
        max_tool_rounds: Optional[int] = None,
        max_duration_seconds: Optional[float] = None,
        context_budget: Optional[int] = None,
    ):
        self.model = model
        self.registry = registry
        self.recorder = recorder
        self.max_tool_rounds = max_tool_rounds if max_tool_rounds is not None else settings.MAX_TOOL_ROUNDS
        self.max_duration_seconds = (
            max_duration_seconds if max_duration_seconds is not None else settings.CHAT_MAX_DURATION_SECONDS
        )
        self.context_budget = context_budget

    async def stream(self, turn: ChatTurn) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_duration_seconds
        started = time.monotonic()
        state = _StreamState()

        def remaining() -> float:
            left = deadline - loop.time()
            if left <= 0:
                raise asyncio.TimeoutError()
            return left

        yield encode_event({"type": "start", "messageId": turn.message_id})
        try:
            context = await asyncio.wait_for(
                build_dynamic_context(
                    turn.intent,
                    turn.user_id,
                    turn.gate,
                    self.registry,
                    turn.profile,
                    program=turn.program,
                    messages=turn.messages,
                    latest_message=turn.latest_message,
                    today=turn.today,
                    budget=self.context_budget,
                ),
                timeout=remaining(),
            )
            for entry in context.entries:
                state.use(entry.tool)
                yield encode_event({"type": "tool-call", "toolName": entry.tool})
                yield encode_event({"type": "tool-result", "toolName": entry.tool, "outcome": entry.outcome.value})

            if context.refused:
                yield encode_event({"type": "text-delta", "delta": REFUSAL_MESSAGE + "\n\n"})

            model_lines = self._model_loop(turn, context, state, remaining)
            try:
                async for line in model_lines:
                    yield line
            finally:
                await model_lines.aclose()

            yield encode_event({
                "type": "finish",
                "messageId": turn.message_id,
                "intent": turn.intent.value,
                "toolsUsed": state.tools_used,
                "usage": {"inputTokens": state.usage.input_tokens, "outputTokens": state.usage.output_tokens},
            })
        except asyncio.TimeoutError:
            state.status, state.error_code = STATUS_TIMED_OUT, ERROR_TIMEOUT
            state.usage = state.partial_usage
            logger.warning(
                f"Chat stream exceeded {self.max_duration_seconds}s",
                extra={"extra_fields": {"message_id": turn.message_id, "user_id": str(turn.user_id)}},
            )
            self._record(turn, state, started)
            yield error_event(ERROR_TIMEOUT)
        except ModelUnavailableError as e:
            state.status, state.error_code = STATUS_FAILED, ERROR_UNAVAILABLE
            logger.error(f"Coach model unavailable: {e}")
            self._record(turn, state, started)
            yield error_event(ERROR_UNAVAILABLE)
        except (asyncio.CancelledError, GeneratorExit):
            state.status = STATUS_CANCELLED
            state.usage = state.partial_usage
            self._record(turn, state, started)
            raise
        except Exception as e:
            state.status, state.error_code = STATUS_FAILED, ERROR_UPSTREAM
            state.usage = state.partial_usage
            logger.error(
                f"Chat stream failed: {e}",
                exc_info=True,
                extra={"extra_fields": {"message_id": turn.message_id, "user_id": str(turn.user_id)}},
            )
            self._record(turn, state, started)
            yield error_event(ERROR_UPSTREAM)

        self._record(turn, state, started)
        yield DONE_LINE

    async def _model_loop(self, turn: ChatTurn, context: DynamicContext, state: _StreamState, remaining):
        system = build_system_prompt(turn.profile, context, turn.gate)
        convo = conversation_for_model(turn.messages)
        tools = self.registry.schemas() if turn.gate.can_read_history() else None

        rounds = 0
        while True:
            complete: Optional[TurnComplete] = None
            calls: List[ToolCallRequest] = []
            events = self.model.stream_turn(system, convo, tools).__aiter__()
            try:
                while True:
                    try:
                        event = await asyncio.wait_for(events.__anext__(), timeout=remaining())
                    except StopAsyncIteration:
                        break
                    if isinstance(event, TextDelta):
                        state.open_turn_chars += len(event.text)
                        state.emitted_text = True
                        yield encode_event({"type": "text-delta", "delta": event.text})
                    elif isinstance(event, ToolCallRequest):
                        calls.append(event)
                        state.use(event.name)
                        yield encode_event({"type": "tool-call", "toolName": event.name})
                    elif isinstance(event, TurnComplete):
                        complete = event
            finally:
                aclose = getattr(events, "aclose", None)
                if aclose is not None:
                    await aclose()

            if complete is None:
                raise RuntimeError("model stream ended without completing the turn")
            state.usage = state.usage + complete.usage
            state.open_turn_chars = 0

            if complete.stop_reason != "tool_use" or not calls:
                return
            if rounds >= self.max_tool_rounds:
                logger.warning(
                    f"Tool round limit {self.max_tool_rounds} reached",
                    extra={"extra_fields": {"message_id": turn.message_id}},
                )
                return
            rounds += 1

            results: List[ToolResult] = await asyncio.wait_for(
                asyncio.gather(*(self.registry.execute_async(c.name, turn.user_id, c.input) for c in calls)),
                timeout=remaining(),
            )
            for result in results:
                yield encode_event({"type": "tool-result", "toolName": result.tool, "outcome": result.outcome.value})

            convo.append({"role": "assistant", "content": complete.assistant_content})
            convo.append({
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": c.id, "content": tool_result_json(r)}
                    for c, r in zip(calls, results)
                ],
            })

    def _record(self, turn: ChatTurn, state: _StreamState, started: float) -> None:
        """Write the request's log entry; every terminal path calls this, only the first writes."""
        if self.recorder is None or state.recorded:
            return
        state.recorded = True
        # A request cancelled before anything was produced leaves no trace.
        if state.status == STATUS_CANCELLED and not state.emitted_text and state.usage.output_tokens == 0:
            return
        self.recorder.log_request(AiLogEntry(
            user_id=turn.user_id,
            message_id=turn.message_id,
            intent=turn.intent.value,
            model=getattr(self.model, "model", None),
            tools_used=list(state.tools_used),
            input_tokens=state.usage.input_tokens,
            output_tokens=state.usage.output_tokens,
            latency_ms=int((time.monotonic() - started) * 1000),
            status=state.status,
            error_code=state.error_code,
        ))


def today_name(user_day: Optional[str] = None) -> str:
    if user_day and user_day.strip():
        return user_day.strip().upper()
    return date.today().strftime("%A").upper()
