"""Heuristic interaction analysis.

Scores one inbound message for sentiment, interaction type, quality factors
and milestone triggers. The analysis is a pure function of the text and the
prior relationship snapshot; it never touches storage.
"""

from __future__ import annotations

import re

from .models import (
    InteractionAnalysis,
    InteractionType,
    Milestone,
    QualityFactors,
    RelationshipState,
    Sentiment,
)

POSITIVE_KEYWORDS: tuple[str, ...] = (
    "爱", "喜欢", "开心", "高兴", "快乐", "幸福", "甜蜜", "温暖",
    "谢谢", "感谢", "棒", "好", "赞", "完美",
    "amazing", "beautiful", "love", "happy", "thank", "great", "wonderful", "perfect",
)

NEGATIVE_KEYWORDS: tuple[str, ...] = (
    "讨厌", "不喜欢", "生气", "愤怒", "伤心", "难过", "失望", "烦恼",
    "糟糕", "坏", "无聊", "厌倦",
    "terrible", "awful", "hate", "angry", "sad", "disappointed", "boring", "annoyed",
)

# Checked in this order; the first hit wins, default is CASUAL.
TYPE_KEYWORDS: tuple[tuple[InteractionType, tuple[str, ...]], ...] = (
    (
        InteractionType.ROMANTIC,
        ("爱你", "想你", "亲爱的", "宝贝", "心动", "喜欢你",
         "love you", "miss you", "darling", "sweetheart"),
    ),
    (
        InteractionType.INTIMATE,
        ("秘密", "私人", "只有你", "特别", "重要",
         "secret", "private", "only you"),
    ),
    (
        InteractionType.DEEP,
        ("人生", "理想", "梦想", "未来", "哲学", "思考",
         "meaning of life", "dream", "future", "philosophy"),
    ),
    (
        InteractionType.EMOTIONAL,
        ("感觉", "情绪", "心情", "开心", "伤心", "担心",
         "feel", "mood", "happy", "upset", "worried"),
    ),
)

PERSONAL_SHARING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"我是", r"我叫", r"我的", r"我喜欢", r"我不喜欢", r"我觉得",
        r"\bi am\b", r"\bi'm\b", r"\bmy (?:name|job|work|family|home|friend|life)\b",
        r"\bi (?:like|don't like|think)\b",
    )
)

DEEP_EMOTION_KEYWORDS: tuple[str, ...] = (
    "感动", "心痛", "幸福", "恐惧", "焦虑", "希望", "绝望",
    "爱", "恨", "依恋", "思念", "孤独", "温暖",
    "touched", "heartbroken", "fear", "anxious", "hope", "despair",
    "lonely", "longing",
)

SPECIAL_CONTENT_KEYWORDS: tuple[str, ...] = (
    "第一次", "特别", "重要", "难忘", "记住", "永远",
    "承诺", "约定", "秘密", "只告诉你", "生日", "纪念日",
    "first time", "special", "important", "unforgettable", "remember",
    "forever", "promise", "secret", "birthday", "anniversary",
)

MILESTONE_PATTERNS: dict[str, re.Pattern[str]] = {
    Milestone.FIRST_CONFESSION.value: re.compile(r"爱你|喜欢你|\bi love you\b|\bi like you\b"),
    Milestone.SECRET_SHARING.value: re.compile(r"秘密|只告诉你|\bsecret\b|\bonly telling you\b"),
    Milestone.PROMISE.value: re.compile(r"承诺|约定|\bpromise\b"),
}

DETAILED_LENGTH = 50
FREQUENT_AFTER = 10


class KeywordInteractionAnalyzer:
    """Keyword and pattern based interaction analyzer."""

    def analyze(self, text: str, prior_state: RelationshipState) -> InteractionAnalysis:
        text = text or ""
        lowered = text.lower()
        factors = self.quality_factors(text, prior_state)
        return InteractionAnalysis(
            sentiment=self.sentiment(lowered),
            interaction_type=self.interaction_type(lowered),
            quality_factors=factors,
            quality=factors.quality(),
            detected_milestones=self.detect_milestones(lowered, prior_state),
        )

    @staticmethod
    def _count(text: str, keywords: tuple[str, ...]) -> int:
        return sum(1 for keyword in keywords if keyword in text)

    def sentiment(self, lowered: str) -> Sentiment:
        negative = self._count(lowered, NEGATIVE_KEYWORDS)
        # "不喜欢" must not also count as "喜欢"
        remainder = lowered
        for keyword in NEGATIVE_KEYWORDS:
            remainder = remainder.replace(keyword, " ")
        positive = self._count(remainder, POSITIVE_KEYWORDS)
        if positive > negative:
            return Sentiment.POSITIVE
        if negative > positive:
            return Sentiment.NEGATIVE
        return Sentiment.NEUTRAL

    def interaction_type(self, lowered: str) -> InteractionType:
        for interaction_type, keywords in TYPE_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return interaction_type
        return InteractionType.CASUAL

    def quality_factors(self, text: str, prior_state: RelationshipState) -> QualityFactors:
        lowered = text.lower()
        depth_hits = self._count(lowered, DEEP_EMOTION_KEYWORDS)
        if depth_hits >= 2:
            depth = "deep"
        elif depth_hits == 1:
            depth = "moderate"
        else:
            depth = "surface"

        return QualityFactors(
            length="detailed" if len(text) > DETAILED_LENGTH else "brief",
            personal_sharing=(
                "high"
                if any(p.search(lowered) for p in PERSONAL_SHARING_PATTERNS)
                else "low"
            ),
            emotional_depth=depth,
            frequency=(
                "frequent" if prior_state.total_interactions > FREQUENT_AFTER else "occasional"
            ),
            special_content=any(k in lowered for k in SPECIAL_CONTENT_KEYWORDS),
        )

    def detect_milestones(self, lowered: str, prior_state: RelationshipState) -> set[str]:
        milestones: set[str] = set()
        if prior_state.total_interactions == 0:
            milestones.add(Milestone.FIRST_MEETING.value)
        for name, pattern in MILESTONE_PATTERNS.items():
            if pattern.search(lowered):
                milestones.add(name)
        return milestones
