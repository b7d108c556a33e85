"""
AI Coach API Router

Streaming chat with the coach. Everything that can reject the request
(auth, admission, validation, prompt guard) happens before the stream opens.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from core.auth import CallerIdentity, get_caller
from core.database import get_db
from core.exceptions import RequestValidationFailed
from core.rate_limit import RATE_LIMITS, enforce_rate_limit
from schemas import ChatRequest
from services.coach_llm import ModelClient, get_model_client
from services.coach_stream import ChatTurn, CoachStreamer, today_name
from services.coach_tools import ToolRegistry
from services.context_builder import load_coach_profile
from services.intent_classifier import detect_intent
from services.privacy import PrivacyGate, resolve_privacy
from services.program_context import load_program
from services.prompt_guard import guard_messages

router = APIRouter(prefix="/v1/coach", tags=["AI Coach"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Nginx / some proxies buffer by default; disable buffering when present.
    "X-Accel-Buffering": "no",
}


def chat_admission(request: Request, caller: CallerIdentity = Depends(get_caller)) -> CallerIdentity:
    enforce_rate_limit(request, f"user:{caller.user_id}", RATE_LIMITS["chat"])
    return caller


@router.post("/chat")
async def chat_with_coach(
    request: Request,
    body: ChatRequest,
    caller: CallerIdentity = Depends(chat_admission),
    db: Session = Depends(get_db),
    model: ModelClient = Depends(get_model_client),
):
    """
    Stream a coach response (SSE over fetch).

    The client keeps the conversation; the full message list is sent on
    every turn and the last message must be from the user.
    """
    messages = guard_messages(body.messages, caller.user_id)
    latest = messages[-1].content
    if not latest:
        raise RequestValidationFailed("Message content is empty", field="messages")

    history = [m.model_dump() for m in messages]
    intent = detect_intent(latest, history[:-1])
    gate = PrivacyGate(resolve_privacy(db, caller.user_id))
    profile = load_coach_profile(db, caller.user_id)
    program = load_program(db)

    registry = ToolRegistry(gate, analytics=request.app.state.query_analytics)
    streamer = CoachStreamer(model, registry, recorder=request.app.state.recorder)
    turn = ChatTurn(
        user_id=caller.user_id,
        intent=intent,
        gate=gate,
        profile=profile,
        messages=history,
        latest_message=latest,
        program=program,
        today=today_name(body.user_day),
    )

    return StreamingResponse(
        streamer.stream(turn),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Message-Id": turn.message_id},
    )
