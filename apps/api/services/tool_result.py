"""
Tool outcome envelope shared by the data tools, the privacy gate and the
context builder.

Every data tool resolves to exactly one outcome:

  DATA     payload present (narrative + data + evidence)
  EMPTY    the lookup ran and found nothing for the window
  REFUSED  privacy policy blocked the read
  ERROR    the lookup failed (bad exercise name, timeout, database error)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ToolOutcome(str, Enum):
    DATA = "data"
    EMPTY = "empty"
    REFUSED = "refused"
    ERROR = "error"


def _iso(dt: datetime) -> str:
    return dt.replace(microsecond=0).isoformat()


@dataclass(frozen=True)
class ToolResult:
    tool: str
    outcome: ToolOutcome
    payload: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    generated_at: str = field(default_factory=lambda: _iso(datetime.now(timezone.utc)))

    @classmethod
    def data(cls, tool: str, payload: Dict[str, Any]) -> "ToolResult":
        return cls(tool=tool, outcome=ToolOutcome.DATA, payload=payload)

    @classmethod
    def empty(cls, tool: str, message: str) -> "ToolResult":
        return cls(tool=tool, outcome=ToolOutcome.EMPTY, message=message)

    @classmethod
    def refused(cls, tool: str, message: str) -> "ToolResult":
        return cls(tool=tool, outcome=ToolOutcome.REFUSED, message=message)

    @classmethod
    def error(cls, tool: str, message: str) -> "ToolResult":
        return cls(tool=tool, outcome=ToolOutcome.ERROR, message=message)

    @property
    def ok(self) -> bool:
        return self.outcome == ToolOutcome.DATA

    def to_dict(self) -> Dict[str, Any]:
        """Shape handed back to the model as a tool_result block."""
        out: Dict[str, Any] = {
            "ok": self.ok,
            "tool": self.tool,
            "outcome": self.outcome.value,
            "generated_at": self.generated_at,
        }
        if self.payload is not None:
            out.update(self.payload)
        if self.message:
            out["message"] = self.message
        return out
