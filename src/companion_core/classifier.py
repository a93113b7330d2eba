"""Keyword-based memory classification.

Deterministic and side-effect free: a message is assigned the first category
whose keyword set it hits, checked in priority order, and scored from a
per-category baseline plus a bonus for each high-value keyword it contains.
Chinese and English keywords are both recognised; English matching is
case-insensitive.
"""

from __future__ import annotations

from .models import MemoryCategory

# Checked in this order; the first hit wins, default is EVENT.
CATEGORY_KEYWORDS: tuple[tuple[MemoryCategory, tuple[str, ...]], ...] = (
    (
        MemoryCategory.PREFERENCE,
        (
            "喜欢", "讨厌", "偏好",
            "i like", "i love", "i hate", "i prefer", "i don't like",
            "i dislike", "favorite", "favourite",
        ),
    ),
    (
        MemoryCategory.EMOTION,
        (
            "感觉", "心情", "情绪",
            "i feel", "feeling", "my mood",
        ),
    ),
    (
        MemoryCategory.FACT,
        (
            "生日", "年龄", "职业",
            "birthday", "my age", "years old", "occupation", "my job", "i work as",
        ),
    ),
    (
        MemoryCategory.CONVERSATION,
        (
            "说", "回答", "对话",
            "said", "told me", "you asked", "conversation",
        ),
    ),
)

BASE_IMPORTANCE: dict[MemoryCategory, float] = {
    MemoryCategory.FACT: 0.8,
    MemoryCategory.RELATIONSHIP: 0.8,
    MemoryCategory.PREFERENCE: 0.7,
    MemoryCategory.GOAL: 0.7,
    MemoryCategory.EMOTION: 0.6,
    MemoryCategory.EVENT: 0.5,
    MemoryCategory.CONVERSATION: 0.3,
}

HIGH_VALUE_KEYWORDS: tuple[str, ...] = (
    "生日", "职业", "家人", "梦想", "目标", "爱好",
    "birthday", "occupation", "family", "dream", "goal", "hobby",
)

HIGH_VALUE_BONUS = 0.1
MIN_IMPORTANCE = 0.1
MAX_IMPORTANCE = 1.0


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


class KeywordMemoryClassifier:
    """Keyword-membership memory classifier."""

    def classify(self, text: str) -> MemoryCategory:
        """Return exactly one category for ``text``."""
        lowered = (text or "").lower()
        for category, keywords in CATEGORY_KEYWORDS:
            if _contains_any(lowered, keywords):
                return category
        return MemoryCategory.EVENT

    def score_importance(self, text: str, category: MemoryCategory) -> float:
        """Baseline importance for ``category`` plus 0.1 per high-value keyword.

        The result is clamped to [0.1, 1.0].
        """
        lowered = (text or "").lower()
        score = BASE_IMPORTANCE.get(MemoryCategory(category), 0.5)
        hits = sum(1 for keyword in HIGH_VALUE_KEYWORDS if keyword in lowered)
        score += hits * HIGH_VALUE_BONUS
        return round(min(MAX_IMPORTANCE, max(MIN_IMPORTANCE, score)), 4)
