"""レビュー解析結果のキャッシュストア.

ASIN をキーに scraped_products_cache テーブルへ保存する。
期限切れの行はバックグラウンドで消さず、読み込み時に無視し、次の書き込みで上書きする。
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Protocol

from supabase import Client, create_client

from reviewscan.config import CACHE_TABLE, Settings
from reviewscan.errors import CacheWriteError
from reviewscan.models import CacheEntry

logger = logging.getLogger(__name__)

_client: Client | None = None
_client_lock = threading.Lock()


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _get_client(settings: Settings) -> Client:
    """Supabase クライアントを初回利用時に生成する."""
    global _client
    with _client_lock:
        if _client is None:
            _client = create_client(settings.supabase_url, settings.supabase_secret_key)
        return _client


def _table(settings: Settings, name: str = CACHE_TABLE):
    return _get_client(settings).table(name)


class CacheStore(Protocol):
    def get(self, asin: str, *, now: datetime | None = None) -> CacheEntry | None: ...

    def upsert(self, entry: CacheEntry) -> None: ...

    def purge_expired(self, *, now: datetime | None = None) -> int: ...


class SupabaseCacheStore:
    """Supabase の scraped_products_cache テーブルを使うキャッシュ."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def get(self, asin: str, *, now: datetime | None = None) -> CacheEntry | None:
        """有効期限内のキャッシュを取得する. なければ None."""
        now = now or now_utc()
        resp = (
            _table(self._settings)
            .select("*")
            .eq("asin", asin)
            .gt("expires_at", now.isoformat())
            .limit(1)
            .execute()
        )
        if not resp.data:
            return None

        entry = CacheEntry.from_row(resp.data[0])
        # DB 側の時刻比較に加えて、こちらでも期限を確認する
        if not entry.is_fresh(now):
            return None
        return entry

    def upsert(self, entry: CacheEntry) -> None:
        """ASIN 単位で行を丸ごと置き換える.

        Raises:
            CacheWriteError: 書き込み失敗
        """
        try:
            _table(self._settings).upsert(entry.to_row(), on_conflict="asin").execute()
        except Exception as e:
            raise CacheWriteError(str(e)) from e
        logger.info("キャッシュ保存: asin=%s, reviews=%d", entry.asin, len(entry.reviews))

    def purge_expired(self, *, now: datetime | None = None) -> int:
        """期限切れの行を削除し、削除件数を返す."""
        now = now or now_utc()
        resp = _table(self._settings).delete().lt("expires_at", now.isoformat()).execute()
        count = len(resp.data or [])
        logger.info("期限切れキャッシュ削除: %d 件", count)
        return count


class MemoryCacheStore:
    """プロセス内のキャッシュ（Supabase 未設定時・テスト用）."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, asin: str, *, now: datetime | None = None) -> CacheEntry | None:
        now = now or now_utc()
        with self._lock:
            entry = self._entries.get(asin)
        if entry is None or not entry.is_fresh(now):
            return None
        return entry

    def upsert(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.asin] = entry

    def purge_expired(self, *, now: datetime | None = None) -> int:
        now = now or now_utc()
        with self._lock:
            expired = [k for k, e in self._entries.items() if not e.is_fresh(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)


def create_cache_store(settings: Settings) -> CacheStore:
    """設定に応じてキャッシュストアを選ぶ."""
    if settings.cache_enabled:
        return SupabaseCacheStore(settings)
    logger.warning("Supabase が未設定のため、インメモリキャッシュを使用します")
    return MemoryCacheStore()
