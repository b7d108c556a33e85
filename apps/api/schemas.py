from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import datetime
from uuid import UUID
from typing import Optional, List, Dict, Literal, Any

MESSAGE_MAX_LENGTH = 5000
MAX_MESSAGES = 50
FEEDBACK_TEXT_MAX_LENGTH = 500


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=MESSAGE_MAX_LENGTH)


class ChatRequest(BaseModel):
    """Conversation so far. Identity comes from the session, never the body."""
    messages: List[ChatMessage] = Field(..., min_length=1, max_length=MAX_MESSAGES)
    timestamp: Optional[datetime] = None
    # Client-local weekday name, e.g. "Monday"; server date is used when absent.
    user_day: Optional[str] = Field(default=None, alias="userDay", max_length=16)

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def last_turn_is_user(self):
        last = self.messages[-1]
        if last.role != "user" or not last.content.strip():
            raise ValueError("last message must be a non-empty user message")
        return self

    @property
    def latest_user_message(self) -> str:
        return self.messages[-1].content


class FeedbackCreate(BaseModel):
    message_id: str = Field(..., alias="messageId", min_length=1, max_length=128)
    rating: Literal["positive", "negative"]
    user_message: Optional[str] = Field(default=None, alias="userMessage")
    ai_response: Optional[str] = Field(default=None, alias="aiResponse")
    intent: Optional[str] = Field(default=None, max_length=64)
    tools_used: List[str] = Field(default_factory=list, alias="toolsUsed", max_length=20)
    latency_ms: Optional[int] = Field(default=None, alias="latencyMs", ge=0)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("message_id")
    @classmethod
    def message_id_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("messageId is required")
        return v


class FeedbackResponse(BaseModel):
    id: UUID
    message_id: str = Field(serialization_alias="messageId")
    rating: str
    intent: Optional[str] = None
    tools_used: List[str] = Field(default_factory=list, serialization_alias="toolsUsed")
    latency_ms: Optional[int] = Field(default=None, serialization_alias="latencyMs")
    created_at: datetime = Field(serialization_alias="createdAt")

    model_config = ConfigDict(from_attributes=True)


class FeedbackSubmitResponse(BaseModel):
    success: bool = True
    feedback: FeedbackResponse


class FeedbackListResponse(BaseModel):
    feedback: List[FeedbackResponse]


class AnalyticsPeriod(BaseModel):
    days: int
    start: datetime
    end: datetime


class NegativeFeedbackItem(BaseModel):
    intent: Optional[str] = None
    tools: List[str] = Field(default_factory=list)
    latency: Optional[int] = None
    date: datetime
    user_message: Optional[str] = None
    ai_response: Optional[str] = None


class FeedbackSummary(BaseModel):
    total: int
    positive: int
    negative: int
    satisfactionRate: Optional[int] = None
    recentNegative: List[NegativeFeedbackItem] = Field(default_factory=list)


class EngineeringMetrics(BaseModel):
    requests: int
    inputTokens: int
    outputTokens: int
    totalCostUsd: float
    avgLatencyMs: Optional[int] = None
    p95LatencyMs: Optional[int] = None
    errorRate: float
    statusBreakdown: Dict[str, int] = Field(default_factory=dict)


class UserUsage(BaseModel):
    userId: UUID
    requests: int
    totalTokens: int
    costUsd: float


class IntentBreakdown(BaseModel):
    intent: str
    positive: int
    negative: int
    total: int
    successRate: int


class ToolCount(BaseModel):
    tool: str
    count: int


class QueryAnalyticsSnapshot(BaseModel):
    totalQueries: int
    topExercises: List[Dict[str, Any]]
    correctionRate: float
    typoPatterns: List[Dict[str, Any]]


class AnalyticsReport(BaseModel):
    period: AnalyticsPeriod
    feedback: FeedbackSummary
    engineering: EngineeringMetrics
    topUsers: List[UserUsage]
    intents: List[IntentBreakdown]
    tools: List[ToolCount]
    queryAnalytics: QueryAnalyticsSnapshot
