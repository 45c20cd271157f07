"""Amazon レビュー一覧 HTML からレビューを抽出するモジュール.

マークアップは頻繁に変わるため、抽出は「戦略のリスト」で行う。

  1. レビューブロックの切り出し: コンテナ戦略を順に試し、最初にヒットした戦略を採用
  2. 各フィールドの抽出: フィールドごとの戦略を順に試し、最初に値が取れたものを採用

あるフィールドのマークアップが変わっても、他のフィールドの抽出には影響しない。
新しいマークアップへの対応は戦略を1つ追加するだけで済む。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from bs4 import BeautifulSoup, Tag

from reviewscan.config import (
    CONTENT_PREVIEW_LENGTH,
    MAX_CANDIDATE_BLOCKS,
    MAX_PRODUCT_IMAGES,
    MAX_PRODUCT_VIDEOS,
    MAX_REVIEWS,
    MIN_CONTENT_LENGTH,
    REVIEW_LINK_TEMPLATE,
)
from reviewscan.models import ReviewRecord
from reviewscan.patterns import detect_suspicious_patterns
from reviewscan.scorer import score_review

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BREAK_RE = re.compile(r"<br\s*/?>|</p>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_ENTITY_RE = re.compile(r"&[^;\s]+;")
_SPACE_RE = re.compile(r"\s+")
_RATING_TEXT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*out of 5 stars", re.IGNORECASE)
_STAR_CLASS_RE = re.compile(r"\ba-star-(?:mini-)?(\d)(?:-(\d))?\b")
_HELPFUL_RE = re.compile(r"(\d[\d,]*|one)\s+(?:people|person)\s+found this helpful", re.IGNORECASE)
_REVIEW_ID_RE = re.compile(r"^R[A-Z0-9]{6,}$")
_READ_MORE_RE = re.compile(r"\s*Read more\s*$", re.IGNORECASE)

# 「review」「customer-review」「review-card」など、レビュー1件を包むクラス名
_REVIEW_CLASS_RE = re.compile(r"^(?:[a-z]+-)*review(?:-(?:card|item|block|container))?$", re.IGNORECASE)

# プレースホルダー（ダミー）レビューの本文
_PLACEHOLDER_CONTENT = "This is a detailed review of the product"

_IMAGE_HOST_KEYWORDS = (
    "images-amazon.com",
    "media-amazon.com",
    "ssl-images-amazon",
)
_TITLE_PREFIX_RE = re.compile(r"^Amazon\.com:\s*(?:Customer reviews:\s*)?", re.IGNORECASE)


@dataclass(frozen=True)
class ReviewDraft:
    """ブロックから抽出した生のフィールド（スコア付け前）."""

    author: str | None
    rating: float | None
    title: str | None
    content: str | None
    date: str | None
    verified: bool
    helpful_votes: int
    source_id: str | None = None

    def is_valid(self) -> bool:
        """author / rating / title / content が揃い、本文が十分な長さを持つか."""
        if not (self.author and self.rating and self.title and self.content):
            return False
        if len(self.content) <= MIN_CONTENT_LENGTH:
            return False
        return _PLACEHOLDER_CONTENT not in self.content


# ---------------------------------------------------------------------------
# テキスト正規化
# ---------------------------------------------------------------------------

def clean_text(text: str) -> str:
    """タグ除去・エンティティを空白に置換・空白の正規化を行う."""
    text = _BREAK_RE.sub(" ", text)
    text = _TAG_RE.sub("", text)
    text = _ENTITY_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", text).strip()


def truncate_content(content: str, limit: int = CONTENT_PREVIEW_LENGTH) -> str:
    """本文をプレビュー長に切り詰める（切り詰めた場合は "..." を付ける）."""
    if len(content) <= limit:
        return content
    return content[:limit] + "..."


# ---------------------------------------------------------------------------
# コンテナ戦略: soup -> レビューブロックのリスト
# ---------------------------------------------------------------------------

def _outermost(tags: list[Tag]) -> list[Tag]:
    """他の候補の内側にある要素を除外する."""
    selected: list[Tag] = []
    seen: set[int] = set()
    for tag in tags:
        if any(id(parent) in seen for parent in tag.parents):
            continue
        seen.add(id(tag))
        selected.append(tag)
    return selected


def _blocks_by_data_hook(soup: BeautifulSoup) -> list[Tag]:
    return soup.select('[data-hook="review"]')


def _blocks_by_class_name(soup: BeautifulSoup) -> list[Tag]:
    tags = [
        tag for tag in soup.find_all(True)
        if any(_REVIEW_CLASS_RE.match(c) for c in tag.get("class") or [])
    ]
    return _outermost(tags)


def _blocks_by_semantic_tag(soup: BeautifulSoup) -> list[Tag]:
    return soup.find_all("article") or soup.find_all("section")


CONTAINER_STRATEGIES: list[Callable[[BeautifulSoup], list[Tag]]] = [
    _blocks_by_data_hook,
    _blocks_by_class_name,
    _blocks_by_semantic_tag,
]


def find_review_blocks(soup: BeautifulSoup) -> list[Tag]:
    """コンテナ戦略を順に試し、最初にヒットした戦略のブロックを返す."""
    for strategy in CONTAINER_STRATEGIES:
        blocks = strategy(soup)
        if blocks:
            logger.debug("レビューブロック検出: strategy=%s, count=%d", strategy.__name__, len(blocks))
            return blocks[:MAX_CANDIDATE_BLOCKS]
    return []


# ---------------------------------------------------------------------------
# フィールド戦略: block -> 値 or None
# ---------------------------------------------------------------------------

def _text_by_selector(css: str) -> Callable[[Tag], Optional[str]]:
    def strategy(block: Tag) -> str | None:
        el = block.select_one(css)
        if el is None:
            return None
        return clean_text(el.decode_contents()) or None

    strategy.__name__ = f"selector({css})"
    return strategy


def _text_by_regex(pattern: str) -> Callable[[Tag], Optional[str]]:
    compiled = re.compile(pattern, re.IGNORECASE | re.DOTALL)

    def strategy(block: Tag) -> str | None:
        m = compiled.search(str(block))
        if not m:
            return None
        return clean_text(m.group(1)) or None

    strategy.__name__ = f"regex({pattern})"
    return strategy


def _parse_rating(text: str | None) -> float | None:
    if not text:
        return None
    m = _RATING_TEXT_RE.search(text)
    if not m:
        return None
    return _valid_rating(float(m.group(1)))


def _valid_rating(value: float) -> float | None:
    return value if 1.0 <= value <= 5.0 else None


def _rating_by_selector(css: str) -> Callable[[Tag], Optional[float]]:
    def strategy(block: Tag) -> float | None:
        el = block.select_one(css)
        return _parse_rating(el.get_text(" ")) if el is not None else None

    return strategy


def _rating_from_block_text(block: Tag) -> float | None:
    return _parse_rating(block.get_text(" "))


def _rating_from_star_class(block: Tag) -> float | None:
    """a-star-4 / a-star-4-5 のようなクラス名から評価を読む."""
    for el in block.select('[class*="a-star-"]'):
        for cls in el.get("class") or []:
            m = _STAR_CLASS_RE.match(cls)
            if m:
                value = float(m.group(1))
                if m.group(2):
                    value += int(m.group(2)) / 10
                return _valid_rating(value)
    return None


def _parse_helpful(text: str | None) -> int | None:
    if not text:
        return None
    m = _HELPFUL_RE.search(text)
    if not m:
        return None
    raw = m.group(1).lower()
    return 1 if raw == "one" else int(raw.replace(",", ""))


def _helpful_by_selector(css: str) -> Callable[[Tag], Optional[int]]:
    def strategy(block: Tag) -> int | None:
        el = block.select_one(css)
        return _parse_helpful(el.get_text(" ")) if el is not None else None

    return strategy


def _helpful_from_block_text(block: Tag) -> int | None:
    return _parse_helpful(block.get_text(" "))


def _verified_by_badge(block: Tag) -> bool | None:
    return True if block.select_one('[data-hook="avp-badge"]') is not None else None


def _verified_by_text(block: Tag) -> bool | None:
    return True if "Verified Purchase" in block.get_text(" ") else None


AUTHOR_STRATEGIES = [
    _text_by_selector(".a-profile-name"),
    _text_by_selector('[data-hook="review-author"]'),
    _text_by_regex(r'class="[^"]*profile-name[^"]*"[^>]*>([^<]+)<'),
    _text_by_regex(r'class="[^"]*\bauthor\b[^"]*"[^>]*>([^<]+)<'),
]

RATING_STRATEGIES = [
    _rating_by_selector('[data-hook="review-star-rating"]'),
    _rating_by_selector('[data-hook="cmps-review-star-rating"]'),
    _rating_from_block_text,
    _rating_from_star_class,
]

TITLE_STRATEGIES = [
    _text_by_selector('[data-hook="review-title"] > span:not(.a-letter-space)'),
    _text_by_selector('[data-hook="review-title"]'),
    _text_by_selector(".review-title"),
    _text_by_regex(r'class="[^"]*review-title[^"]*"[^>]*>(.*?)</'),
]

CONTENT_STRATEGIES = [
    _text_by_selector('[data-hook="review-body"]'),
    _text_by_selector(".review-text-content"),
    _text_by_selector(".review-text"),
    _text_by_regex(r'class="[^"]*review-(?:text|body|content)[^"]*"[^>]*>(.*?)</(?:div|span|p)>'),
]

DATE_STRATEGIES = [
    _text_by_selector('[data-hook="review-date"]'),
    _text_by_selector(".review-date"),
    _text_by_regex(r"(Reviewed in [^<]+? on [^<]+)<"),
]

VERIFIED_STRATEGIES = [
    _verified_by_badge,
    _verified_by_text,
]

HELPFUL_STRATEGIES = [
    _helpful_by_selector('[data-hook="helpful-vote-statement"]'),
    _helpful_from_block_text,
]


def first_match(strategies: list[Callable[[Tag], Optional[T]]], block: Tag) -> T | None:
    """戦略を順に試し、最初に値が取れたものを返す."""
    for strategy in strategies:
        value = strategy(block)
        if value is not None:
            return value
    return None


def _normalize_title(title: str | None) -> str | None:
    if not title:
        return None
    # タイトル要素に星評価のテキストが混ざる場合がある
    title = _RATING_TEXT_RE.sub("", title).strip()
    return title or None


def _normalize_content(content: str | None) -> str | None:
    if not content:
        return None
    return _READ_MORE_RE.sub("", content).strip() or None


def _normalize_date(date: str | None) -> str | None:
    """「Reviewed in <国> on <日付>」形式なら日付部分だけを取り出す."""
    if not date:
        return None
    if " on " in date:
        date = date.rsplit(" on ", 1)[1]
    return date.strip() or None


def _source_review_id(block: Tag) -> str | None:
    review_id = block.get("id")
    if isinstance(review_id, str):
        # customer_review-R1ABC... のような id にも対応
        review_id = review_id.rsplit("-", 1)[-1]
        if _REVIEW_ID_RE.match(review_id):
            return review_id
    return None


def extract_fields(block: Tag) -> ReviewDraft:
    """1ブロックから各フィールドを独立に抽出する."""
    return ReviewDraft(
        author=first_match(AUTHOR_STRATEGIES, block),
        rating=first_match(RATING_STRATEGIES, block),
        title=_normalize_title(first_match(TITLE_STRATEGIES, block)),
        content=_normalize_content(first_match(CONTENT_STRATEGIES, block)),
        date=_normalize_date(first_match(DATE_STRATEGIES, block)),
        verified=bool(first_match(VERIFIED_STRATEGIES, block)),
        helpful_votes=first_match(HELPFUL_STRATEGIES, block) or 0,
        source_id=_source_review_id(block),
    )


def extract_drafts(html: str) -> list[ReviewDraft]:
    """HTML から有効なレビュー候補を抽出する（最大 MAX_REVIEWS 件）.

    必須フィールドが欠けた候補は黙って捨てる（部分的な抽出失敗は想定内）。
    """
    soup = BeautifulSoup(html, "html.parser")
    drafts: list[ReviewDraft] = []
    dropped = 0

    for block in find_review_blocks(soup):
        try:
            draft = extract_fields(block)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("レビューブロックの解析に失敗。スキップします: error=%s", e)
            dropped += 1
            continue
        if not draft.is_valid():
            dropped += 1
            continue
        drafts.append(draft)
        if len(drafts) >= MAX_REVIEWS:
            break

    logger.info("レビュー抽出: valid=%d, dropped=%d", len(drafts), dropped)
    return drafts


def build_review(draft: ReviewDraft, asin: str, index: int) -> ReviewRecord:
    """候補にパターン判定とスコアを付けて ReviewRecord にする.

    判定・スコアは切り詰め前の本文で行う。
    """
    patterns = detect_suspicious_patterns(draft)
    review_id = draft.source_id or f"R{index}{asin}"
    return ReviewRecord(
        id=f"review_{index}",
        author=draft.author,
        rating=draft.rating,
        title=draft.title,
        content=truncate_content(draft.content),
        date=draft.date or "Unknown",
        verified=draft.verified,
        helpful_votes=draft.helpful_votes,
        link=REVIEW_LINK_TEMPLATE.format(review_id=review_id),
        suspicious_patterns=tuple(patterns),
        authenticity_score=score_review(
            patterns, draft.verified, draft.helpful_votes, draft.content
        ),
    )


def extract_reviews(html: str, asin: str) -> list[ReviewRecord]:
    """HTML からスコア付きのレビューを抽出する.

    0 件の場合は空リストを返す（NoReviewsExtracted の判断は pipeline 側）。
    """
    return [build_review(d, asin, i) for i, d in enumerate(extract_drafts(html))]


# ---------------------------------------------------------------------------
# 商品情報（レビューとは独立した領域）
# ---------------------------------------------------------------------------

def extract_product_title(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for css in ('[data-hook="product-link"]', "#productTitle", "#cm_cr-product_info h1"):
        el = soup.select_one(css)
        if el is not None:
            title = clean_text(el.decode_contents())
            if title:
                return title

    if soup.title and soup.title.string:
        return _TITLE_PREFIX_RE.sub("", clean_text(soup.title.string))
    return ""


def extract_product_images(html: str) -> list[str]:
    """Amazon の画像ホストにある商品画像 URL を抽出する（アバター・gif は除外）."""
    soup = BeautifulSoup(html, "html.parser")
    images: list[str] = []

    for img in soup.find_all("img"):
        src = img.get("data-old-hires") or img.get("src") or img.get("data-src") or ""
        if not src.startswith("http"):
            continue
        if not any(host in src for host in _IMAGE_HOST_KEYWORDS):
            continue
        if "amazon-avatars" in src or src.lower().endswith(".gif"):
            continue
        if src not in images:
            images.append(src)
        if len(images) >= MAX_PRODUCT_IMAGES:
            break

    return images


def extract_product_videos(html: str) -> list[dict]:
    soup = BeautifulSoup(html, "html.parser")
    videos: list[dict] = []
    seen: set[str] = set()

    candidates = [(el.get("data-video-url"), el) for el in soup.select("[data-video-url]")]
    for el in soup.select("video[src], video source[src]"):
        candidates.append((el.get("src"), el.find_parent("video") or el))

    for url, el in candidates:
        if not url or url in seen:
            continue
        seen.add(url)
        videos.append({"url": url, "title": el.get("data-title") or el.get("title") or ""})
        if len(videos) >= MAX_PRODUCT_VIDEOS:
            break

    return videos
