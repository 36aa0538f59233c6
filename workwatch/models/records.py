"""Persistent records shared by the stores, the aggregator and the pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Severity = Literal["low", "medium", "high"]
PatternType = Literal["single_incident", "cumulative", "escalation", "none"]

ISSUE_TYPES = (
    "discrimination",
    "harassment",
    "bullying",
    "implicit_bias",
    "labeling",
    "targeting",
    "inappropriate",
)
SEVERITIES = ("low", "medium", "high")
SEVERITY_SCORES: Dict[str, int] = {"low": 1, "medium": 2, "high": 3}

# Bumped whenever the persisted breakdown documents change shape.
BREAKDOWN_SCHEMA_VERSION = 1


class MessageEvent(BaseModel):
    """Inbound message as delivered by the chat binding."""

    id: int
    guild_id: int
    channel_id: int
    author_id: int
    content: str
    timestamp: datetime
    mentioned_user_ids: List[int] = Field(default_factory=list)
    reply_to_message_id: Optional[int] = None


class StoredMessage(BaseModel):
    """A message kept for cross-channel context until the retention sweep removes it."""

    id: int
    guild_id: int
    channel_id: int
    author_id: int
    content: str
    timestamp: datetime
    reply_to_id: Optional[int] = None
    reply_to_author_id: Optional[int] = None
    mentioned_user_ids: List[int] = Field(default_factory=list)

    def involves(self, user_id: int) -> bool:
        return self.author_id == user_id or user_id in self.mentioned_user_ids


class Interaction(BaseModel):
    """Order-normalised mention/reply counter between two users."""

    guild_id: int
    user_a_id: int
    user_b_id: int
    last_interaction_at: datetime
    interaction_count: int = 1
    context_chain: List[int] = Field(default_factory=list)


class AlertRecord(BaseModel):
    """Bookkeeping for a delivered notification, used for dedup and cooldown."""

    message_id: int
    guild_id: int
    channel_id: int
    author_id: int
    alerted_at: datetime
    severity: str
    reason: Optional[str] = None


class IssueBreakdown(BaseModel):
    discrimination: int = 0
    harassment: int = 0
    bullying: int = 0
    implicit_bias: int = 0
    labeling: int = 0
    targeting: int = 0
    inappropriate: int = 0

    def nonzero(self) -> Dict[str, int]:
        return {key: count for key, count in self.model_dump().items() if count > 0}


class SeverityBreakdown(BaseModel):
    low: int = 0
    medium: int = 0
    high: int = 0

    def nonzero(self) -> Dict[str, int]:
        return {key: count for key, count in self.model_dump().items() if count > 0}


class UserSignal(BaseModel):
    """Cumulative verdicts for one directional (source -> target) pair in a guild."""

    guild_id: int
    source_user_id: int
    target_user_id: int
    total_interactions: int = 0
    concerning_count: int = 0
    issue_breakdown: IssueBreakdown = Field(default_factory=IssueBreakdown)
    severity_breakdown: SeverityBreakdown = Field(default_factory=SeverityBreakdown)
    avg_confidence: float = 0.0
    trend: int = 0
    first_seen: datetime
    last_seen: datetime
    last_aggregated: datetime

    @property
    def key(self) -> tuple[int, int, int]:
        return (self.guild_id, self.source_user_id, self.target_user_id)


class DailySnapshot(BaseModel):
    """One calendar day's contribution to a pair's signal."""

    guild_id: int
    source_user_id: int
    target_user_id: int
    date: str
    interaction_count: int = 0
    concerning_count: int = 0
    avg_severity: float = 0.0
    primary_issue_type: Optional[str] = None


class Verdict(BaseModel):
    """Structured result returned by the external analyzer."""

    is_concerning: bool
    severity: Severity = "low"
    issue_type: str = "none"
    reason: str = ""
    suggestion: str = ""
    confidence: float = 0.0
    pattern_type: Optional[PatternType] = None

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(1.0, max(0.0, float(value)))

    @classmethod
    def default(cls, reason: str = "Analysis failed, defaulting to non-concerning") -> "Verdict":
        return cls(is_concerning=False, severity="low", issue_type="none", reason=reason)


class AnalysisRequest(BaseModel):
    """Everything the analyzer sees about one triggered message."""

    formatted_context: str
    message_content: str
    author_label: str
    target_label: Optional[str] = None
    language: str = "en"
    signal_summary: Optional[str] = None
