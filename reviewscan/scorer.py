"""信頼度スコアの計算モジュール.

個別スコア:
  75 を基準に、パターン1件ごとに -10、購入確認済みなら +15（なければ -10）、
  参考になった票 ×2（上限 10）、本文の長さ /10（上限 15）を加え、0〜100 に丸める。

全体スコアは個別スコアの平均（四捨五入）で、判定ラベルは全体スコアのみから決まる。
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Sequence

from reviewscan.models import PatternCount, ReviewAnalysis, ReviewRecord

BASE_SCORE = 75
PATTERN_PENALTY = 10
VERIFIED_BONUS = 15
UNVERIFIED_PENALTY = 10
HELPFUL_BONUS_CAP = 10
LENGTH_BONUS_CAP = 15
TOP_PATTERNS = 5

LOW_VERIFICATION_RATE = 30
FIVE_STAR_SHARE_LIMIT = 80

# (下限スコア, 判定ラベル) — 呼び出し側が文字列で判定するため変更不可
VERDICTS: list[tuple[int, str]] = [
    (80, "Likely Authentic"),
    (60, "Mixed Signals"),
    (40, "Likely Manipulated"),
    (0, "Highly Suspicious"),
]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_review(
    patterns: Sequence[str], verified: bool, helpful_votes: int, content: str
) -> int:
    """1件のレビューの信頼度スコア（0〜100 の整数）を計算する."""
    score: float = BASE_SCORE
    score -= len(patterns) * PATTERN_PENALTY
    score += VERIFIED_BONUS if verified else -UNVERIFIED_PENALTY
    score += min(max(helpful_votes, 0) * 2, HELPFUL_BONUS_CAP)
    score += min(len(content) / 10, LENGTH_BONUS_CAP)
    return max(0, min(100, _round_half_up(score)))


def verdict_for(score: int) -> str:
    for threshold, verdict in VERDICTS:
        if score >= threshold:
            return verdict
    return VERDICTS[-1][1]


def rating_distribution(reviews: Sequence[ReviewRecord]) -> dict[int, int]:
    """評価を切り捨てた 1〜5 の整数ごとの件数."""
    dist: Counter[int] = Counter()
    for review in reviews:
        bucket = min(5, max(1, math.floor(review.rating)))
        dist[bucket] += 1
    return dict(dist)


def common_patterns(reviews: Sequence[ReviewRecord], top: int = TOP_PATTERNS) -> list[PatternCount]:
    counts = Counter(p for r in reviews for p in r.suspicious_patterns)
    return [PatternCount(pattern=p, count=c) for p, c in counts.most_common(top)]


def derive_red_flags(
    verification_rate: int, distribution: dict[int, int], total: int
) -> list[str]:
    """集計値から読み取れる注意点を文章にする."""
    flags: list[str] = []
    if verification_rate < LOW_VERIFICATION_RATE:
        flags.append(
            f"Low verification rate: only {verification_rate}% of reviews are verified purchases"
        )
    five_star_share = distribution.get(5, 0) / total * 100
    if five_star_share > FIVE_STAR_SHARE_LIMIT:
        flags.append(
            f"Suspicious rating distribution: {_round_half_up(five_star_share)}% are 5-star reviews"
        )
    return flags


def analyze_reviews(reviews: Sequence[ReviewRecord]) -> ReviewAnalysis:
    """レビュー群から全体スコア・判定などの集計を作る.

    Raises:
        ValueError: レビューが 0 件
    """
    if not reviews:
        raise ValueError("analyze_reviews requires at least one review")

    total = len(reviews)
    verified_count = sum(1 for r in reviews if r.verified)
    verification_rate = _round_half_up(verified_count / total * 100)
    overall = _round_half_up(sum(r.authenticity_score for r in reviews) / total)
    overall = max(0, min(100, overall))
    distribution = rating_distribution(reviews)

    return ReviewAnalysis(
        overall_authenticity_score=overall,
        total_reviews=total,
        verified_count=verified_count,
        verification_rate=verification_rate,
        rating_distribution=distribution,
        common_suspicious_patterns=common_patterns(reviews),
        verdict=verdict_for(overall),
        red_flags=derive_red_flags(verification_rate, distribution, total),
    )
