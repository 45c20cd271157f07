"""疑わしいレビューパターンの判定モジュール.

ルールは (label, predicate) のデータとして定義する。
チューニングはこのテーブルの追加・変更だけで行い、抽出やスコア計算には手を入れない。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol


class ReviewLike(Protocol):
    title: str
    content: str
    rating: float
    verified: bool


@dataclass(frozen=True)
class PatternRule:
    label: str
    predicate: Callable[[ReviewLike], bool]


MARKETING_PHRASES = ("amazing", "perfect", "best ever", "life-changing", "game changer")

MARKETING_PHRASES_LABEL = "contains common marketing phrases"
BRIEF_HIGH_RATING_LABEL = "very brief review with high rating"
UNVERIFIED_HIGH_RATING_LABEL = "high rating without verified purchase"

BRIEF_CONTENT_LENGTH = 50
HIGH_RATING = 4


def _has_marketing_phrases(review: ReviewLike) -> bool:
    text = f"{review.title}\n{review.content}".lower()
    return any(phrase in text for phrase in MARKETING_PHRASES)


def _is_brief_with_high_rating(review: ReviewLike) -> bool:
    return len(review.content) < BRIEF_CONTENT_LENGTH and review.rating >= HIGH_RATING


def _is_unverified_with_high_rating(review: ReviewLike) -> bool:
    return not review.verified and review.rating >= HIGH_RATING


# 判定順 = 出力順
SUSPICIOUS_PATTERN_RULES: list[PatternRule] = [
    PatternRule(MARKETING_PHRASES_LABEL, _has_marketing_phrases),
    PatternRule(BRIEF_HIGH_RATING_LABEL, _is_brief_with_high_rating),
    PatternRule(UNVERIFIED_HIGH_RATING_LABEL, _is_unverified_with_high_rating),
]


def detect_suspicious_patterns(
    review: ReviewLike, rules: list[PatternRule] | None = None
) -> list[str]:
    """全ルールを評価し、該当したラベルをテーブル順で返す."""
    return [rule.label for rule in (rules or SUSPICIOUS_PATTERN_RULES) if rule.predicate(review)]
