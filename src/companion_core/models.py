"""Companion core data models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import InvalidScope


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


class MemoryCategory(str, Enum):
    FACT = "fact"
    PREFERENCE = "preference"
    GOAL = "goal"
    RELATIONSHIP = "relationship"
    EMOTION = "emotion"
    EVENT = "event"
    CONVERSATION = "conversation"


class MemoryAction(str, Enum):
    CREATED = "created"
    MERGED = "merged"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class InteractionType(str, Enum):
    ROMANTIC = "romantic"
    INTIMATE = "intimate"
    DEEP = "deep"
    EMOTIONAL = "emotional"
    CASUAL = "casual"


class InteractionQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    NORMAL = "normal"
    POOR = "poor"


class CommunicationStyle(str, Enum):
    POLITE = "polite"
    FRIENDLY = "friendly"
    CASUAL = "casual"
    AFFECTIONATE = "affectionate"
    INTIMATE = "intimate"


class Milestone(str, Enum):
    # Detected from message content
    FIRST_MEETING = "first_meeting"
    FIRST_CONFESSION = "first_confession"
    SECRET_SHARING = "secret_sharing"
    PROMISE = "promise"
    # Reached through levels
    FIRST_CONVERSATION = "first_conversation"
    BECOMING_FRIENDS = "becoming_friends"
    TRUSTED_FRIEND = "trusted_friend"
    ROMANTIC_FEELINGS = "romantic_feelings"
    PARTNER_STATUS = "partner_status"
    SOULMATE_BOND = "soulmate_bond"


class Scope(BaseModel):
    """The (user, character) pair that owns memories and relationship state."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    character_id: str

    @classmethod
    def of(cls, user_id: str | None, character_id: str | None) -> "Scope":
        """Build a scope, rejecting missing or blank identifiers."""
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidScope("user_id")
        if not isinstance(character_id, str) or not character_id.strip():
            raise InvalidScope("character_id")
        return cls(user_id=user_id, character_id=character_id)

    @property
    def pair(self) -> tuple[str, str]:
        """Identity tuple used for cache and lock lookups."""
        return (self.user_id, self.character_id)

    @property
    def key(self) -> str:
        """Display form for log lines; not unique when ids contain ':'."""
        return f"{self.user_id}:{self.character_id}"


class MemoryRecord(BaseModel):
    """A durable, deduplicated memory extracted from a message."""

    id: str = Field(default_factory=_uuid)
    user_id: str
    character_id: str
    category: MemoryCategory
    content: str
    embedding: list[float] = Field(default_factory=list)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    importance: float = Field(default=0.5, ge=0.1, le=1.0)
    access_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
    last_accessed_at: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def scope(self) -> Scope:
        return Scope(user_id=self.user_id, character_id=self.character_id)


class QualityFactors(BaseModel):
    """Heuristic quality signals for a single message."""

    length: str = "brief"  # "detailed" or "brief"
    personal_sharing: str = "low"  # "high" or "low"
    emotional_depth: str = "surface"  # "deep", "moderate" or "surface"
    frequency: str = "occasional"  # "frequent" or "occasional"
    special_content: bool = False

    def score(self) -> int:
        """Quality score: 50 base plus a bonus for each positive factor."""
        score = 50
        if self.length == "detailed":
            score += 10
        if self.personal_sharing == "high":
            score += 15
        if self.emotional_depth == "deep":
            score += 20
        elif self.emotional_depth == "moderate":
            score += 10
        if self.special_content:
            score += 15
        if self.frequency == "frequent":
            score += 5
        return score

    def quality(self) -> InteractionQuality:
        score = self.score()
        if score >= 80:
            return InteractionQuality.EXCELLENT
        if score >= 65:
            return InteractionQuality.GOOD
        if score >= 50:
            return InteractionQuality.NORMAL
        return InteractionQuality.POOR


class InteractionAnalysis(BaseModel):
    """Transient scoring of one message; never persisted."""

    sentiment: Sentiment = Sentiment.NEUTRAL
    interaction_type: InteractionType = InteractionType.CASUAL
    quality_factors: QualityFactors = Field(default_factory=QualityFactors)
    quality: InteractionQuality = InteractionQuality.NORMAL
    detected_milestones: set[str] = Field(default_factory=set)


class MilestoneEntry(BaseModel):
    """When a milestone was first recorded."""

    name: str
    achieved_at: datetime = Field(default_factory=_utcnow)


class RelationshipState(BaseModel):
    """Leveling, trust and intimacy record for one (user, character) pair."""

    user_id: str
    character_id: str
    level: int = Field(default=1, ge=1, le=10)
    points: int = Field(default=0, ge=0)
    total_interactions: int = 0
    positive_interactions: int = 0
    negative_interactions: int = 0
    trust_level: float = Field(default=0.0, ge=0.0, le=100.0)
    emotional_bond: float = Field(default=0.0, ge=0.0, le=100.0)
    milestones: set[str] = Field(default_factory=set)
    milestone_log: list[MilestoneEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    last_interaction_at: datetime | None = None
    version: int = 0  # optimistic concurrency token, 0 = never persisted

    @property
    def scope(self) -> Scope:
        return Scope(user_id=self.user_id, character_id=self.character_id)

    @property
    def communication_style(self) -> CommunicationStyle:
        if self.level <= 2:
            return CommunicationStyle.POLITE
        if self.level <= 4:
            return CommunicationStyle.FRIENDLY
        if self.level <= 6:
            return CommunicationStyle.CASUAL
        if self.level <= 8:
            return CommunicationStyle.AFFECTIONATE
        return CommunicationStyle.INTIMATE

    def recent_milestones(self, limit: int = 3) -> list[str]:
        """Most recently recorded milestone names, newest first."""
        if limit <= 0:
            return []
        return [entry.name for entry in reversed(self.milestone_log)][:limit]


class LevelUpEvent(BaseModel):
    """Emitted when a processed message raises the relationship level."""

    old_level: int
    new_level: int
    stage: str
    level_name: str
    description: str
    celebration_text: str


class ConsolidationResult(BaseModel):
    """Outcome of a single consolidate call."""

    action: MemoryAction
    record: MemoryRecord


class RelationshipUpdate(BaseModel):
    """Outcome of a single relationship transition."""

    state: RelationshipState
    analysis: InteractionAnalysis
    points_change: int
    level_up_event: LevelUpEvent | None = None


class InteractionResult(BaseModel):
    """Per-sub-operation outcome of processing one inbound message."""

    relationship_state: RelationshipState | None = None
    memory_actions: list[ConsolidationResult] = Field(default_factory=list)
    level_up_event: LevelUpEvent | None = None
    analysis: InteractionAnalysis | None = None
    points_change: int = 0
    relationship_error: str | None = None
    memory_error: str | None = None

    @property
    def relationship_ok(self) -> bool:
        return self.relationship_error is None

    @property
    def memory_ok(self) -> bool:
        return self.memory_error is None
