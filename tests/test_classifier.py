import pytest

from companion_core.classifier import KeywordMemoryClassifier
from companion_core.models import MemoryCategory


@pytest.fixture
def classifier():
    return KeywordMemoryClassifier()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("我喜欢吃火锅", MemoryCategory.PREFERENCE),
        ("我讨厌下雨天", MemoryCategory.PREFERENCE),
        ("I prefer tea over coffee", MemoryCategory.PREFERENCE),
        ("我感觉今天很累", MemoryCategory.EMOTION),
        ("I feel tired today", MemoryCategory.EMOTION),
        ("我的生日是三月五号", MemoryCategory.FACT),
        ("I am 25 years old", MemoryCategory.FACT),
        ("他说明天会下雨", MemoryCategory.CONVERSATION),
        ("今天去公园散步了", MemoryCategory.EVENT),
        ("", MemoryCategory.EVENT),
    ],
)
def test_classify(classifier, text, expected):
    assert classifier.classify(text) == expected


def test_preference_wins_over_emotion_and_fact(classifier):
    # hits preference, emotion and fact keywords at once
    assert classifier.classify("我喜欢在生日的时候感觉被关心") == MemoryCategory.PREFERENCE


def test_emotion_wins_over_fact(classifier):
    assert classifier.classify("过生日的时候心情很好") == MemoryCategory.EMOTION


def test_english_matching_is_case_insensitive(classifier):
    assert classifier.classify("MY BIRTHDAY is in May") == MemoryCategory.FACT


def test_classify_never_emits_goal_or_relationship(classifier):
    for text in ("我的目标是考研", "we are best friends", "随便聊聊"):
        assert classifier.classify(text) not in (MemoryCategory.GOAL, MemoryCategory.RELATIONSHIP)


@pytest.mark.parametrize(
    "category, expected",
    [
        (MemoryCategory.FACT, 0.8),
        (MemoryCategory.PREFERENCE, 0.7),
        (MemoryCategory.GOAL, 0.7),
        (MemoryCategory.RELATIONSHIP, 0.8),
        (MemoryCategory.EMOTION, 0.6),
        (MemoryCategory.EVENT, 0.5),
        (MemoryCategory.CONVERSATION, 0.3),
    ],
)
def test_baseline_importance(classifier, category, expected):
    assert classifier.score_importance("随便聊聊", category) == pytest.approx(expected)


def test_high_value_keywords_add_bonus(classifier):
    assert classifier.score_importance("我的生日是三月", MemoryCategory.FACT) == pytest.approx(0.9)
    assert classifier.score_importance(
        "I love my family and my dream is to travel", MemoryCategory.PREFERENCE
    ) == pytest.approx(0.9)


def test_importance_is_clamped(classifier):
    text = "生日 职业 家人 梦想 目标 爱好"
    assert classifier.score_importance(text, MemoryCategory.FACT) == 1.0


@pytest.mark.parametrize("text", ["", "hello", "生日 家人", "x" * 10000])
@pytest.mark.parametrize("category", list(MemoryCategory))
def test_importance_always_in_range(classifier, text, category):
    assert 0.1 <= classifier.score_importance(text, category) <= 1.0
