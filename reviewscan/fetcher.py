"""Amazon レビューページの取得とブロック判定モジュール."""

from __future__ import annotations

import enum
import logging
import re
from urllib.parse import urlencode, urlparse

import requests

from reviewscan.config import (
    BLOCK_MARKERS,
    BROWSER_HEADERS,
    MIN_PAGE_LENGTH,
    REQUEST_TIMEOUT,
    REVIEWS_URL_TEMPLATE,
)
from reviewscan.errors import InvalidInputError, NetworkError

logger = logging.getLogger(__name__)

# /dp/{ASIN}, /gp/product/{ASIN}, /product-reviews/{ASIN} から抽出する正規表現
_ASIN_PATTERN = re.compile(r"/(?:dp|gp/product|product-reviews)/([A-Z0-9]{10})(?:[/?#]|$)")


class PageStatus(enum.Enum):
    OK = "ok"
    BLOCKED = "blocked"


def parse_product_id(product_url: str) -> str:
    """商品 URL から ASIN を抽出する.

    Raises:
        InvalidInputError: amazon.com 以外の URL、または ASIN を含まない URL
    """
    if not product_url or not isinstance(product_url, str):
        raise InvalidInputError("Invalid Amazon product URL")

    parsed = urlparse(product_url.strip())
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not (
        host == "amazon.com" or host.endswith(".amazon.com")
    ):
        raise InvalidInputError("Invalid Amazon product URL")

    m = _ASIN_PATTERN.search(parsed.path)
    if not m:
        raise InvalidInputError("Could not extract product ID from URL")
    return m.group(1)


def build_reviews_url(asin: str, *, sort_by: str | None = None, page: int | None = None) -> str:
    """ASIN からレビュー一覧ページの URL を組み立てる.

    再試行時は sortBy / pageNumber を付けて別の表示順でリクエストする。
    """
    url = REVIEWS_URL_TEMPLATE.format(asin=asin)
    extra: dict[str, str | int] = {}
    if sort_by:
        extra["sortBy"] = sort_by
    if page:
        extra["pageNumber"] = page
    if extra:
        url = f"{url}&{urlencode(extra)}"
    return url


def fetch_reviews_page(
    url: str,
    *,
    timeout: float = REQUEST_TIMEOUT,
    headers: dict[str, str] | None = None,
    session: requests.Session | None = None,
) -> str:
    """レビューページの HTML を取得する.

    この層では再試行しない（再試行ポリシーは pipeline が持つ）。

    Args:
        url: 取得する URL
        timeout: タイムアウト秒数
        headers: リクエストヘッダー（省略時はブラウザ相当のヘッダー）
        session: 接続を使い回す場合の requests.Session

    Returns:
        HTML 文字列

    Raises:
        NetworkError: 非 2xx・タイムアウト・接続失敗
    """
    http = session or requests
    try:
        resp = http.get(url, headers=headers or BROWSER_HEADERS, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error("レビューページ取得失敗: url=%s, error=%s", url, e)
        raise NetworkError(str(e)) from e

    logger.info("レビューページ取得: status=%d, length=%d", resp.status_code, len(resp.text))
    return resp.text


def classify_page(html: str) -> PageStatus:
    """取得した HTML がボット対策ページかどうかを判定する.

    誤検知（本物のページを BLOCKED と判定）は許容する。
    その場合もソフトフェイルになるだけでデータは壊れない。
    """
    if len(html) < MIN_PAGE_LENGTH:
        return PageStatus.BLOCKED
    lowered = html.lower()
    if any(marker in lowered for marker in BLOCK_MARKERS):
        return PageStatus.BLOCKED
    return PageStatus.OK
