"""
AI request recorder.

One `ai_logs` row per chat request that reached the model. Writes happen on
a worker thread so the response stream never waits on the database; a
failed write is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional, Set
from uuid import UUID

from sqlalchemy.orm import Session

from core.database import SessionLocal
from models import AiLog
from services.intent_classifier import INTENT_SET_VERSION
from services.llm_cost import estimate_cost_usd

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
STATUS_TIMED_OUT = "timed_out"


@dataclass
class AiLogEntry:
    user_id: UUID
    intent: str
    model: Optional[str]
    message_id: Optional[str] = None
    tools_used: List[str] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: Optional[int] = None
    status: str = STATUS_COMPLETED
    error_code: Optional[str] = None
    intent_set_version: int = INTENT_SET_VERSION

    @property
    def estimated_cost_usd(self) -> float:
        return estimate_cost_usd(self.model, self.input_tokens, self.output_tokens)

    def to_row(self) -> AiLog:
        return AiLog(
            user_id=self.user_id,
            message_id=self.message_id,
            intent=self.intent,
            intent_set_version=self.intent_set_version,
            tools_used=list(self.tools_used),
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            estimated_cost_usd=Decimal(str(self.estimated_cost_usd)),
            latency_ms=self.latency_ms,
            model=self.model,
            status=self.status,
            error_code=self.error_code,
        )


class AiRequestRecorder:
    """Fire-and-forget persistence for `AiLogEntry` rows."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory
        self._pending: Set[asyncio.Task] = set()

    def write(self, entry: AiLogEntry) -> bool:
        db = self.session_factory()
        try:
            db.add(entry.to_row())
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            logger.error(
                f"Failed to write AI log: {e}",
                extra={"extra_fields": {"user_id": str(entry.user_id), "message_id": entry.message_id}},
            )
            return False
        finally:
            db.close()

    def log_request(self, entry: AiLogEntry) -> None:
        """Schedule the write and return immediately."""
        logger.info(
            "AI request",
            extra={"extra_fields": {
                "user_id": str(entry.user_id),
                "message_id": entry.message_id,
                "intent": entry.intent,
                "tools_used": entry.tools_used,
                "input_tokens": entry.input_tokens,
                "output_tokens": entry.output_tokens,
                "latency_ms": entry.latency_ms,
                "status": entry.status,
                "error_code": entry.error_code,
            }},
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.write(entry)
            return
        task = loop.create_task(asyncio.to_thread(self.write, entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
