"""レビュー取得〜スコア計算のパイプライン.

処理フロー:
  1. 商品 URL から ASIN を抽出（不正なら InvalidInputError）
  2. キャッシュ確認（有効期限内ならそのまま返す）
  3. レビューページ取得 → ブロック判定 → レビュー抽出
  4. ブロック or 0 件なら、表示順を変えて 1 回だけ再試行
  5. 集計・判定 → キャッシュ保存 → 返却

InvalidInputError 以外の失敗はすべてソフトフェイル（isBlocked: true）として返す。
同じ ASIN への同時リクエストは 1 回のスクレイピングにまとめる。
"""

from __future__ import annotations

import functools
import logging
import random
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, TypeVar

import requests

from reviewscan.config import Settings
from reviewscan.db import CacheStore, now_utc
from reviewscan.errors import (
    BlockedError,
    CacheWriteError,
    CancelledScanError,
    NetworkError,
    NoReviewsExtractedError,
)
from reviewscan.extractor import (
    extract_product_images,
    extract_product_title,
    extract_product_videos,
    extract_reviews,
)
from reviewscan.fetcher import (
    PageStatus,
    build_reviews_url,
    classify_page,
    fetch_reviews_page,
    parse_product_id,
)
from reviewscan.models import CacheEntry, ReviewRecord, ScanResult
from reviewscan.scorer import analyze_reviews

logger = logging.getLogger(__name__)

T = TypeVar("T")

BLOCKED_MESSAGE = (
    "Amazon blocked the request or the review page could not be parsed. "
    "Please try again later."
)
NETWORK_MESSAGE = "Unable to reach Amazon. Please try again later."
CANCELLED_MESSAGE = "Review scan was cancelled."

_WAIT_POLL_SECONDS = 0.1


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise CancelledScanError("scan cancelled by caller")


class _Flight:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result = None
        self.error: BaseException | None = None


class SingleFlight:
    """キーごとに同時実行を 1 つに制限し、後続の呼び出しは先行の結果を待つ.

    先行の呼び出しがキャンセルで終わった場合、待っていた呼び出しは結果を引き継がず、
    自分が先行になってやり直す（キャンセルは呼び出し元ごとのもの）。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flights: dict[str, _Flight] = {}

    def do(self, key: str, fn: Callable[[], T], *, cancel: threading.Event | None = None) -> T:
        while True:
            with self._lock:
                flight = self._flights.get(key)
                leader = flight is None
                if leader:
                    flight = _Flight()
                    self._flights[key] = flight

            if leader:
                return self._run(key, flight, fn)

            logger.info("同一キーの処理を待機: key=%s", key)
            while not flight.done.wait(_WAIT_POLL_SECONDS):
                _check_cancel(cancel)
            if isinstance(flight.error, CancelledScanError):
                logger.info("先行処理がキャンセルされたため再実行: key=%s", key)
                _check_cancel(cancel)
                continue
            if flight.error is not None:
                raise flight.error
            return flight.result

    def _run(self, key: str, flight: _Flight, fn: Callable[[], T]) -> T:
        try:
            flight.result = fn()
            return flight.result
        except BaseException as e:
            flight.error = e
            raise
        finally:
            with self._lock:
                del self._flights[key]
            flight.done.set()


class ReviewScanPipeline:
    """キャッシュ確認 → 取得 → ブロック判定 → 抽出 → 集計 → キャッシュ保存."""

    def __init__(
        self,
        settings: Settings,
        cache: CacheStore,
        *,
        fetch: Callable[..., str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._settings = settings
        self._cache = cache
        if fetch is None:
            # 同一プロセス内のリクエストで接続を使い回す
            self._session = requests.Session()
            fetch = functools.partial(fetch_reviews_page, session=self._session)
        self._fetch = fetch
        self._sleep = sleep
        self._clock = clock
        self._flights = SingleFlight()

    def scan(self, product_url: str, *, cancel: threading.Event | None = None) -> ScanResult:
        """商品 URL のレビューを解析する.

        Args:
            product_url: Amazon の商品 URL
            cancel: セットされると次のネットワーク処理の前で中断する

        Raises:
            InvalidInputError: URL が不正（ネットワーク処理の前に判定）
        """
        asin = parse_product_id(product_url)
        try:
            return self._flights.do(asin, lambda: self._scan(asin, cancel), cancel=cancel)
        except CancelledScanError:
            logger.warning("処理をキャンセルしました: asin=%s", asin)
            return ScanResult.soft_failure(CANCELLED_MESSAGE)

    def _scan(self, asin: str, cancel: threading.Event | None) -> ScanResult:
        try:
            return self._scan_once(asin, cancel)
        except CancelledScanError:
            raise
        except Exception:
            logger.error("予期しないエラー。ソフトフェイルとして返します: asin=%s", asin, exc_info=True)
            return ScanResult.soft_failure(BLOCKED_MESSAGE)

    def _scan_once(self, asin: str, cancel: threading.Event | None) -> ScanResult:
        reviews_url = build_reviews_url(asin)

        cached = self._read_cache(asin)
        if cached is not None:
            logger.info("キャッシュヒット: asin=%s, scraped_at=%s", asin, cached.scraped_at.isoformat())
            return self._to_result(cached, reviews_url, from_cache=True)

        logger.info("キャッシュミス。スクレイピング開始: asin=%s", asin)
        try:
            html, reviews = self._scrape(asin, cancel)
        except NetworkError:
            return ScanResult.soft_failure(NETWORK_MESSAGE)
        except (BlockedError, NoReviewsExtractedError) as e:
            logger.warning("再試行後も取得できませんでした: asin=%s, reason=%s", asin, e)
            return ScanResult.soft_failure(BLOCKED_MESSAGE)

        entry = CacheEntry.create(
            asin,
            product_title=extract_product_title(html) or f"Amazon Product {asin}",
            product_images=extract_product_images(html),
            product_videos=extract_product_videos(html),
            reviews=reviews,
            analysis=analyze_reviews(reviews),
            scraped_at=self._clock(),
            ttl=timedelta(hours=self._settings.cache_ttl_hours),
        )
        logger.info(
            "解析完了: asin=%s, reviews=%d, score=%d, verdict=%s",
            asin, len(reviews), entry.analysis.overall_authenticity_score, entry.analysis.verdict,
        )

        _check_cancel(cancel)
        try:
            self._cache.upsert(entry)
        except CacheWriteError as e:
            logger.error("キャッシュ保存失敗（結果はそのまま返却）: asin=%s, error=%s", asin, e)

        return self._to_result(entry, reviews_url, from_cache=False)

    def _read_cache(self, asin: str) -> CacheEntry | None:
        try:
            return self._cache.get(asin, now=self._clock())
        except Exception as e:
            logger.warning("キャッシュ読み込み失敗。キャッシュミスとして扱います: asin=%s, error=%s", asin, e)
            return None

    def _scrape(
        self, asin: str, cancel: threading.Event | None
    ) -> tuple[str, list[ReviewRecord]]:
        """取得・ブロック判定・抽出を行う. ブロック or 0 件なら 1 回だけ再試行する.

        Raises:
            NetworkError: 通信エラー（再試行しない）
            BlockedError / NoReviewsExtractedError: 2 回目も失敗
        """
        attempts = [
            (build_reviews_url(asin), self._settings.request_timeout),
            (
                build_reviews_url(asin, sort_by=self._settings.retry_sort_by, page=1),
                self._settings.retry_timeout,
            ),
        ]

        last_error: Exception | None = None
        for attempt, (url, timeout) in enumerate(attempts, start=1):
            if attempt > 1:
                self._wait_before_retry(cancel)
            _check_cancel(cancel)

            logger.info("レビューページ取得中 (%d/%d): %s", attempt, len(attempts), url)
            html = self._fetch(url, timeout=timeout, headers=self._settings.headers)

            if classify_page(html) is PageStatus.BLOCKED:
                logger.warning("ボット対策ページを検出: asin=%s, attempt=%d, length=%d", asin, attempt, len(html))
                last_error = BlockedError(f"blocked on attempt {attempt}")
                continue

            reviews = extract_reviews(html, asin)
            if not reviews:
                logger.warning("レビューを抽出できませんでした: asin=%s, attempt=%d", asin, attempt)
                last_error = NoReviewsExtractedError(f"no reviews on attempt {attempt}")
                continue

            return html, reviews

        raise last_error

    def _wait_before_retry(self, cancel: threading.Event | None) -> None:
        """再試行前に 1〜3 秒ランダムで待機する."""
        interval = random.uniform(*self._settings.retry_interval)
        if cancel is not None:
            if cancel.wait(interval):
                raise CancelledScanError("scan cancelled while waiting to retry")
            return
        self._sleep(interval)

    @staticmethod
    def _to_result(entry: CacheEntry, reviews_url: str, *, from_cache: bool) -> ScanResult:
        return ScanResult(
            success=True,
            product_id=entry.asin,
            reviews_url=reviews_url,
            reviews=list(entry.reviews),
            analysis=entry.analysis,
            total_reviews=entry.total_reviews,
            product_title=entry.product_title,
            product_images=list(entry.product_images),
            product_videos=list(entry.product_videos),
            from_cache=from_cache,
        )
