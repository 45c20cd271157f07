"""データモデル定義."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass(frozen=True)
class ReviewRecord:
    """スクレイピングした1件のレビューを表す."""

    id: str  # バッチ内で一意 (例: review_0)
    author: str
    rating: float  # 1.0〜5.0
    title: str
    content: str  # プレビュー（最大 200 文字 + "..."）
    date: str  # 取得できなければ "Unknown"
    verified: bool
    helpful_votes: int
    link: str
    suspicious_patterns: tuple[str, ...] = ()
    authenticity_score: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author": self.author,
            "rating": self.rating,
            "title": self.title,
            "content": self.content,
            "date": self.date,
            "verified": self.verified,
            "helpfulVotes": self.helpful_votes,
            "link": self.link,
            "suspiciousPatterns": list(self.suspicious_patterns),
            "authenticityScore": self.authenticity_score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ReviewRecord:
        return cls(
            id=data["id"],
            author=data["author"],
            rating=float(data["rating"]),
            title=data["title"],
            content=data["content"],
            date=data.get("date") or "Unknown",
            verified=bool(data.get("verified", False)),
            helpful_votes=int(data.get("helpfulVotes", 0)),
            link=data.get("link", ""),
            suspicious_patterns=tuple(data.get("suspiciousPatterns", [])),
            authenticity_score=int(data.get("authenticityScore", 0)),
        )


@dataclass(frozen=True)
class PatternCount:
    """頻出する疑わしいパターンとその件数."""

    pattern: str
    count: int


@dataclass(frozen=True)
class ReviewAnalysis:
    """1回のスクレイピング結果の集計."""

    overall_authenticity_score: int
    total_reviews: int
    verified_count: int
    verification_rate: int  # %
    rating_distribution: dict[int, int]
    common_suspicious_patterns: list[PatternCount]
    verdict: str
    red_flags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "overallAuthenticityScore": self.overall_authenticity_score,
            "averageIndividualScore": self.overall_authenticity_score,
            "totalReviews": self.total_reviews,
            "verifiedPurchases": self.verified_count,
            "verificationRate": self.verification_rate,
            # JSON のキーは文字列になるため保存時に揃えておく
            "ratingDistribution": {str(k): v for k, v in sorted(self.rating_distribution.items())},
            "commonSuspiciousPatterns": [
                {"pattern": p.pattern, "count": p.count} for p in self.common_suspicious_patterns
            ],
            "verdict": self.verdict,
            "redFlags": list(self.red_flags),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ReviewAnalysis:
        return cls(
            overall_authenticity_score=int(data["overallAuthenticityScore"]),
            total_reviews=int(data["totalReviews"]),
            verified_count=int(data.get("verifiedPurchases", 0)),
            verification_rate=int(data.get("verificationRate", 0)),
            rating_distribution={
                int(k): int(v) for k, v in (data.get("ratingDistribution") or {}).items()
            },
            common_suspicious_patterns=[
                PatternCount(pattern=p["pattern"], count=int(p["count"]))
                for p in data.get("commonSuspiciousPatterns", [])
            ],
            verdict=data["verdict"],
            red_flags=list(data.get("redFlags", [])),
        )


@dataclass(frozen=True)
class CacheEntry:
    """キャッシュテーブルの1行（ASIN 単位で丸ごと置き換える）."""

    asin: str
    product_title: str
    product_images: list[str]
    product_videos: list[dict]
    reviews: list[ReviewRecord]
    analysis: ReviewAnalysis
    total_reviews: int
    scraped_at: datetime
    expires_at: datetime

    @classmethod
    def create(
        cls,
        asin: str,
        *,
        product_title: str,
        product_images: list[str],
        product_videos: list[dict],
        reviews: list[ReviewRecord],
        analysis: ReviewAnalysis,
        scraped_at: datetime,
        ttl: timedelta,
    ) -> CacheEntry:
        """expires_at = scraped_at + TTL を満たすエントリを作る."""
        return cls(
            asin=asin,
            product_title=product_title,
            product_images=list(product_images),
            product_videos=list(product_videos),
            reviews=list(reviews),
            analysis=analysis,
            total_reviews=len(reviews),
            scraped_at=scraped_at,
            expires_at=scraped_at + ttl,
        )

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at

    def to_row(self) -> dict:
        """Supabase に書き込む行に変換する."""
        return {
            "asin": self.asin,
            "product_title": self.product_title,
            "product_images": self.product_images,
            "product_videos": self.product_videos,
            "reviews": [r.to_dict() for r in self.reviews],
            "analysis": self.analysis.to_dict(),
            "total_reviews": self.total_reviews,
            "scraped_at": self.scraped_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict) -> CacheEntry:
        return cls(
            asin=row["asin"],
            product_title=row.get("product_title") or "",
            product_images=list(row.get("product_images") or []),
            product_videos=list(row.get("product_videos") or []),
            reviews=[ReviewRecord.from_dict(r) for r in row.get("reviews") or []],
            analysis=ReviewAnalysis.from_dict(row["analysis"]),
            total_reviews=int(row.get("total_reviews") or 0),
            scraped_at=_parse_timestamp(row["scraped_at"]),
            expires_at=_parse_timestamp(row["expires_at"]),
        )


@dataclass(frozen=True)
class ScanResult:
    """パイプラインの最終結果（成功 or ソフトフェイル）."""

    success: bool
    product_id: str = ""
    reviews_url: str = ""
    reviews: list[ReviewRecord] = field(default_factory=list)
    analysis: ReviewAnalysis | None = None
    total_reviews: int = 0
    product_title: str = ""
    product_images: list[str] = field(default_factory=list)
    product_videos: list[dict] = field(default_factory=list)
    from_cache: bool = False
    error: str = ""
    is_blocked: bool = False

    @classmethod
    def soft_failure(cls, error: str) -> ScanResult:
        return cls(success=False, error=error, is_blocked=True)

    def to_dict(self) -> dict:
        if not self.success:
            return {"success": False, "error": self.error, "isBlocked": self.is_blocked}
        return {
            "success": True,
            "productId": self.product_id,
            "reviewsUrl": self.reviews_url,
            "totalReviews": self.total_reviews,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "reviews": [r.to_dict() for r in self.reviews],
            "productVideos": list(self.product_videos),
            "productImages": list(self.product_images),
            "productTitle": self.product_title,
            "fromCache": self.from_cache,
        }


def _parse_timestamp(value: str | datetime) -> datetime:
    """Supabase の timestamptz 文字列を datetime に変換する."""
    if isinstance(value, datetime):
        return value
    # Python 3.10 の fromisoformat は "Z" を受け付けない
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
