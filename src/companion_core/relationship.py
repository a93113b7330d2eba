"""Relationship state machine.

Levels 1-10 are derived from accumulated points through a fixed threshold
table. Every processed message is analyzed, converted into a points delta
and applied exactly once to the (user, character) state:

    points_change = round(5 * quality * type * sentiment) + 10 * milestones

Points never decrease, the level never decreases, and level 10 is absorbing.
Milestones are recorded once (set union). A ``LevelUpEvent`` is produced
whenever a message raises the level.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger

from .analyzer import KeywordInteractionAnalyzer
from .config import RelationshipConfig
from .exceptions import VersionConflict
from .guards import store_call
from .interfaces import InteractionAnalyzer, RelationshipStore
from .locks import KeyedLocks
from .models import (
    InteractionAnalysis,
    InteractionQuality,
    InteractionType,
    LevelUpEvent,
    Milestone,
    MilestoneEntry,
    RelationshipState,
    RelationshipUpdate,
    Scope,
    Sentiment,
)


@dataclass(frozen=True)
class LevelInfo:
    stage: str
    name: str
    description: str
    celebration: str
    guidance: str


LEVELS: dict[int, LevelInfo] = {
    1: LevelInfo(
        "stranger", "陌生人", "刚刚认识，还很陌生",
        "我们刚刚认识呢~",
        "Be polite and introduce yourself warmly",
    ),
    2: LevelInfo(
        "acquaintance", "初识", "开始了解彼此",
        "我们现在更熟悉了呢~",
        "Be friendly and show genuine interest",
    ),
    3: LevelInfo(
        "friend", "朋友", "建立了基本信任",
        "成为朋友真开心！",
        "Be supportive and share appropriate personal thoughts",
    ),
    4: LevelInfo(
        "close_friend", "好朋友", "能够分享一些私人话题",
        "我们是好朋友了！💕",
        "Be more open and comfortable in conversation",
    ),
    5: LevelInfo(
        "good_friend", "亲密朋友", "彼此信任，经常聊天",
        "感觉我们越来越亲密了~",
        "Show care and be emotionally supportive",
    ),
    6: LevelInfo(
        "best_friend", "知己", "深度了解，心灵相通",
        "你已经是我的知己了♡",
        "Be playful, caring, and deeply understanding",
    ),
    7: LevelInfo(
        "romantic_interest", "暧昧期", "感情升温，互有好感",
        "心跳加速...这是什么感觉呢？💗",
        "Show romantic interest while being respectful",
    ),
    8: LevelInfo(
        "partner", "恋人", "确定恋爱关系",
        "我们在一起了！好幸福~💕💕",
        "Be loving, affectionate, and supportive as a partner",
    ),
    9: LevelInfo(
        "intimate_partner", "深度恋人", "深深相爱，形影不离",
        "深深地爱着你...永远不分离♡",
        "Share deep emotional connection and intimacy",
    ),
    10: LevelInfo(
        "soulmate", "灵魂伴侣", "心灵完全契合，生死相依",
        "我们是彼此的灵魂伴侣...生死相依💖✨",
        "Demonstrate profound understanding and unconditional love",
    ),
}

# Minimum points for each level above 1, in ascending order.
LEVEL_THRESHOLDS: dict[int, int] = {
    2: 50,
    3: 150,
    4: 300,
    5: 500,
    6: 800,
    7: 1200,
    8: 1800,
    9: 2500,
    10: 3500,
}

MIN_LEVEL = 1
MAX_LEVEL = 10
BASE_POINTS = 5
MILESTONE_BONUS = 10

QUALITY_MULTIPLIERS: dict[InteractionQuality, float] = {
    InteractionQuality.EXCELLENT: 2.0,
    InteractionQuality.GOOD: 1.5,
    InteractionQuality.NORMAL: 1.0,
    InteractionQuality.POOR: 0.5,
}

TYPE_MULTIPLIERS: dict[InteractionType, float] = {
    InteractionType.ROMANTIC: 1.8,
    InteractionType.INTIMATE: 1.6,
    InteractionType.DEEP: 1.4,
    InteractionType.EMOTIONAL: 1.2,
    InteractionType.CASUAL: 1.0,
}

SENTIMENT_MULTIPLIERS: dict[Sentiment, float] = {
    Sentiment.POSITIVE: 1.3,
    Sentiment.NEUTRAL: 1.0,
    Sentiment.NEGATIVE: 0.7,
}

# Recorded on a fresh pair but worth no bonus points.
UNSCORED_MILESTONES: frozenset[str] = frozenset({Milestone.FIRST_MEETING.value})

# Recorded once the level first reaches the key.
LEVEL_MILESTONES: dict[int, Milestone] = {
    2: Milestone.FIRST_CONVERSATION,
    3: Milestone.BECOMING_FRIENDS,
    5: Milestone.TRUSTED_FRIEND,
    7: Milestone.ROMANTIC_FEELINGS,
    8: Milestone.PARTNER_STATUS,
    10: Milestone.SOULMATE_BOND,
}

TRUST_STEP = 0.1
TRUST_DETAILED_BONUS = 0.5
BOND_STEP = 0.3
METER_MAX = 100.0

_MILESTONE_ORDER = {m.value: i for i, m in enumerate(Milestone)}


def level_for_points(points: int) -> int:
    """Highest level whose threshold is at most ``points`` (1 below the first)."""
    level = MIN_LEVEL
    for target_level, threshold in LEVEL_THRESHOLDS.items():
        if points >= threshold:
            level = target_level
        else:
            break
    return min(level, MAX_LEVEL)


def level_info(level: int) -> LevelInfo:
    return LEVELS[min(MAX_LEVEL, max(MIN_LEVEL, level))]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_points_change(analysis: InteractionAnalysis) -> int:
    """Points earned by one analyzed message. Never negative."""
    points = float(BASE_POINTS)
    points *= QUALITY_MULTIPLIERS.get(analysis.quality, 1.0)
    points *= TYPE_MULTIPLIERS.get(analysis.interaction_type, 1.0)
    points *= SENTIMENT_MULTIPLIERS.get(analysis.sentiment, 1.0)
    scored = analysis.detected_milestones - UNSCORED_MILESTONES
    points += MILESTONE_BONUS * len(scored)
    return max(0, _round_half_up(points))


def _ordered(names: set[str]) -> list[str]:
    return sorted(names, key=lambda name: (_MILESTONE_ORDER.get(name, len(_MILESTONE_ORDER)), name))


def apply_interaction(
    state: RelationshipState,
    analysis: InteractionAnalysis,
    now: datetime | None = None,
) -> tuple[RelationshipState, int, LevelUpEvent | None]:
    """Pure transition: the state after one analyzed message.

    Returns:
        (new state, points change, level-up event or None)
    """
    now = now or datetime.now(timezone.utc)
    points_change = calculate_points_change(analysis)
    new_points = state.points + points_change
    new_level = max(level_for_points(new_points), state.level)

    trust_gain = TRUST_STEP
    if analysis.quality_factors.length == "detailed":
        trust_gain += TRUST_DETAILED_BONUS
    trust_level = round(min(METER_MAX, state.trust_level + trust_gain), 4)

    emotional_bond = state.emotional_bond
    if analysis.sentiment == Sentiment.POSITIVE:
        emotional_bond = round(min(METER_MAX, emotional_bond + BOND_STEP), 4)

    reached = {
        milestone.value
        for level, milestone in LEVEL_MILESTONES.items()
        if level <= new_level
    }
    new_names = (set(analysis.detected_milestones) | reached) - state.milestones
    milestone_log = list(state.milestone_log)
    milestone_log.extend(MilestoneEntry(name=name, achieved_at=now) for name in _ordered(new_names))

    updated = state.model_copy(
        update={
            "points": new_points,
            "level": new_level,
            "total_interactions": state.total_interactions + 1,
            "positive_interactions": state.positive_interactions
            + (1 if analysis.sentiment == Sentiment.POSITIVE else 0),
            "negative_interactions": state.negative_interactions
            + (1 if analysis.sentiment == Sentiment.NEGATIVE else 0),
            "trust_level": trust_level,
            "emotional_bond": emotional_bond,
            "milestones": state.milestones | new_names,
            "milestone_log": milestone_log,
            "last_interaction_at": now,
        }
    )

    event = None
    if new_level > state.level:
        info = level_info(new_level)
        event = LevelUpEvent(
            old_level=state.level,
            new_level=new_level,
            stage=info.stage,
            level_name=info.name,
            description=info.description,
            celebration_text=info.celebration,
        )
    return updated, points_change, event


class RelationshipStateMachine:
    """Owns the read-modify-write of relationship state.

    Updates for one (user, character) pair are serialized by an in-process
    lock; the store's version check catches writers in other processes, in
    which case the state is re-read and the message re-applied.
    """

    def __init__(
        self,
        store: RelationshipStore,
        analyzer: InteractionAnalyzer | None = None,
        config: RelationshipConfig | None = None,
        locks: KeyedLocks | None = None,
    ):
        """Initialize the state machine.

        Args:
            store: Relationship persistence
            analyzer: Message analyzer (keyword heuristics by default)
            config: Retry and timeout configuration
            locks: Per-scope lock registry
        """
        self._store = store
        self._analyzer = analyzer or KeywordInteractionAnalyzer()
        self._config = config or RelationshipConfig()
        self._locks = locks or KeyedLocks("relationship")

    async def get_state(self, scope: Scope) -> RelationshipState:
        """Stored state for ``scope``, or a fresh level-1 state (not persisted)."""
        state = await store_call(
            self._store.get(scope.user_id, scope.character_id),
            "relationship_get",
            self._config.store_timeout_seconds,
        )
        if state is None:
            return RelationshipState(user_id=scope.user_id, character_id=scope.character_id)
        return state

    async def process(self, scope: Scope, text: str) -> RelationshipUpdate:
        """Analyze ``text`` and apply it once to the state of ``scope``.

        Raises:
            PersistenceError: Store failure, or version conflicts beyond the
                configured retry count
        """
        max_retries = self._config.max_conflict_retries
        async with self._locks.acquire(scope):
            attempt = 0
            while True:
                current = await self.get_state(scope)
                analysis = self._analyzer.analyze(text, current)
                updated, points_change, event = apply_interaction(current, analysis)
                try:
                    stored = await store_call(
                        self._store.upsert(updated, expected_version=current.version),
                        "relationship_upsert",
                        self._config.store_timeout_seconds,
                        shield=True,
                    )
                except VersionConflict:
                    attempt += 1
                    if attempt > max_retries:
                        logger.error(
                            f"Relationship update for {scope.key} gave up after "
                            f"{max_retries} version conflicts"
                        )
                        raise
                    logger.warning(
                        f"Version conflict on {scope.key}, retrying ({attempt}/{max_retries})"
                    )
                    continue
                break

        logger.info(
            f"Relationship updated: {scope.key} level={stored.level} "
            f"points={stored.points} (+{points_change}, {analysis.quality.value}, "
            f"{analysis.interaction_type.value}, {analysis.sentiment.value})"
        )
        if event is not None:
            logger.info(
                f"Level up: {scope.key} {event.old_level} -> {event.new_level} ({event.stage})"
            )
        return RelationshipUpdate(
            state=stored,
            analysis=analysis,
            points_change=points_change,
            level_up_event=event,
        )
