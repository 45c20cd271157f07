"""設定モジュール — 環境変数・定数定義."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- Supabase ---
# 未設定の場合はインメモリキャッシュで動作する
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_SECRET_KEY: str = os.getenv("SUPABASE_SECRET_KEY", "")
CACHE_TABLE = "scraped_products_cache"

# --- Amazon ---
REVIEWS_URL_TEMPLATE = (
    "https://www.amazon.com/product-reviews/{asin}/"
    "ref=cm_cr_dp_d_show_all_btm?ie=UTF8&reviewerType=all_reviews"
)
REVIEW_LINK_TEMPLATE = "https://www.amazon.com/gp/customer-reviews/{review_id}"

# --- User-Agent / ヘッダー ---
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
    "Connection": "keep-alive",
}

# --- ブロック判定 ---
BLOCK_MARKERS = ("robot check", "captcha", "automated access")
MIN_PAGE_LENGTH = 1000

# --- 抽出上限 ---
MAX_CANDIDATE_BLOCKS = 20
MAX_REVIEWS = 10
MIN_CONTENT_LENGTH = 10
CONTENT_PREVIEW_LENGTH = 200
MAX_PRODUCT_IMAGES = 10
MAX_PRODUCT_VIDEOS = 5

# --- リクエスト設定 ---
REQUEST_TIMEOUT = 15.0  # 秒
RETRY_TIMEOUT = 30.0  # 秒（再試行時は長めに待つ）
RETRY_INTERVAL_MIN = 1.0
RETRY_INTERVAL_MAX = 3.0
RETRY_SORT_BY = "recent"

# --- キャッシュ ---
CACHE_TTL_HOURS = 24

# --- ログ ---
LOG_DIR = _PROJECT_ROOT / "logs"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    """パイプラインに注入する設定値."""

    request_timeout: float = REQUEST_TIMEOUT
    retry_timeout: float = RETRY_TIMEOUT
    retry_interval: tuple[float, float] = (RETRY_INTERVAL_MIN, RETRY_INTERVAL_MAX)
    retry_sort_by: str = RETRY_SORT_BY
    cache_ttl_hours: float = CACHE_TTL_HOURS
    headers: dict[str, str] = field(default_factory=lambda: dict(BROWSER_HEADERS))
    supabase_url: str = ""
    supabase_secret_key: str = ""

    @property
    def cache_enabled(self) -> bool:
        """Supabase の接続情報が揃っているか."""
        return bool(self.supabase_url and self.supabase_secret_key)


def load_settings() -> Settings:
    """環境変数から Settings を組み立てる."""
    return Settings(
        request_timeout=_env_float("REVIEWSCAN_REQUEST_TIMEOUT", REQUEST_TIMEOUT),
        retry_timeout=_env_float("REVIEWSCAN_RETRY_TIMEOUT", RETRY_TIMEOUT),
        cache_ttl_hours=_env_float("REVIEWSCAN_CACHE_TTL_HOURS", CACHE_TTL_HOURS),
        supabase_url=SUPABASE_URL,
        supabase_secret_key=SUPABASE_SECRET_KEY,
    )


def cors_allow_origins() -> list[str]:
    raw = os.getenv("REVIEWSCAN_CORS_ORIGINS", "").strip()
    if not raw:
        return ["http://localhost:3000"]
    return [o.strip() for o in raw.split(",") if o.strip()]
