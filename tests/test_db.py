"""db モジュールのモックテスト."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from reviewscan.config import Settings
from reviewscan.db import MemoryCacheStore, SupabaseCacheStore, create_cache_store
from reviewscan.errors import CacheWriteError
from reviewscan.models import CacheEntry, ReviewRecord
from reviewscan.scorer import analyze_reviews

NOW = datetime(2026, 2, 27, 0, 0, tzinfo=timezone.utc)


def _entry(asin: str = "B0TEST1234", scraped_at: datetime = NOW) -> CacheEntry:
    review = ReviewRecord(
        id="review_0", author="Jane Doe", rating=5.0, title="Works exactly as described",
        content="I have used this blender every morning for three months.", date="May 1, 2024",
        verified=True, helpful_votes=12, link="https://www.amazon.com/gp/customer-reviews/R1JANEDOE01",
        suspicious_patterns=(), authenticity_score=100,
    )
    return CacheEntry.create(
        asin,
        product_title="Acme Pro Blender 1200W",
        product_images=["https://m.media-amazon.com/images/I/71abcDEFghL.jpg"],
        product_videos=[],
        reviews=[review],
        analysis=analyze_reviews([review]),
        scraped_at=scraped_at,
        ttl=timedelta(hours=24),
    )


def _chain(data):
    mock_chain = MagicMock()
    for name in ("select", "eq", "gt", "lt", "limit", "upsert", "delete"):
        getattr(mock_chain, name).return_value = mock_chain
    mock_chain.execute.return_value = MagicMock(data=data)
    return mock_chain


class TestCacheEntry:
    """CacheEntry の有効期限."""

    def test_expires_after_ttl(self):
        entry = _entry()
        assert entry.expires_at == NOW + timedelta(hours=24)
        assert entry.is_fresh(NOW + timedelta(hours=23, minutes=59))
        assert not entry.is_fresh(NOW + timedelta(hours=24))


class TestSupabaseCacheStore:
    """SupabaseCacheStore のテスト."""

    @patch("reviewscan.db._table")
    def test_get_hit(self, mock_table):
        mock_chain = _chain([_entry().to_row()])
        mock_table.return_value = mock_chain

        entry = SupabaseCacheStore(Settings()).get("B0TEST1234", now=NOW + timedelta(hours=1))

        assert entry is not None
        assert entry.asin == "B0TEST1234"
        assert entry.reviews[0].author == "Jane Doe"
        assert entry.analysis.verdict == "Likely Authentic"
        mock_chain.eq.assert_called_once_with("asin", "B0TEST1234")
        mock_chain.gt.assert_called_once_with("expires_at", (NOW + timedelta(hours=1)).isoformat())

    @patch("reviewscan.db._table")
    def test_get_miss(self, mock_table):
        mock_table.return_value = _chain([])

        assert SupabaseCacheStore(Settings()).get("B0TEST1234", now=NOW) is None

    @patch("reviewscan.db._table")
    def test_get_ignores_expired_row(self, mock_table):
        mock_table.return_value = _chain([_entry().to_row()])

        assert SupabaseCacheStore(Settings()).get("B0TEST1234", now=NOW + timedelta(hours=25)) is None

    @patch("reviewscan.db._table")
    def test_upsert_on_asin(self, mock_table):
        mock_chain = _chain([])
        mock_table.return_value = mock_chain
        entry = _entry()

        SupabaseCacheStore(Settings()).upsert(entry)

        mock_chain.upsert.assert_called_once_with(entry.to_row(), on_conflict="asin")

    @patch("reviewscan.db._table")
    def test_upsert_failure_wrapped(self, mock_table):
        mock_chain = _chain([])
        mock_chain.execute.side_effect = RuntimeError("connection reset")
        mock_table.return_value = mock_chain

        with pytest.raises(CacheWriteError):
            SupabaseCacheStore(Settings()).upsert(_entry())

    @patch("reviewscan.db._table")
    def test_purge_expired(self, mock_table):
        mock_chain = _chain([{"asin": "A"}, {"asin": "B"}])
        mock_table.return_value = mock_chain

        assert SupabaseCacheStore(Settings()).purge_expired(now=NOW) == 2
        mock_chain.lt.assert_called_once_with("expires_at", NOW.isoformat())


class TestMemoryCacheStore:
    """MemoryCacheStore のテスト."""

    def test_get_and_upsert(self):
        store = MemoryCacheStore()
        assert store.get("B0TEST1234", now=NOW) is None

        store.upsert(_entry())
        assert store.get("B0TEST1234", now=NOW + timedelta(hours=1)) is not None
        assert store.get("B0TEST1234", now=NOW + timedelta(hours=25)) is None

    def test_upsert_replaces_entry(self):
        store = MemoryCacheStore()
        store.upsert(_entry())
        newer = _entry(scraped_at=NOW + timedelta(hours=30))
        store.upsert(newer)

        assert store.get("B0TEST1234", now=NOW + timedelta(hours=31)) is newer

    def test_purge_expired(self):
        store = MemoryCacheStore()
        store.upsert(_entry("B0TEST0001"))
        store.upsert(_entry("B0TEST0002", scraped_at=NOW + timedelta(hours=20)))

        assert store.purge_expired(now=NOW + timedelta(hours=25)) == 1
        assert store.get("B0TEST0002", now=NOW + timedelta(hours=25)) is not None


class TestCreateCacheStore:

    def test_memory_when_supabase_missing(self):
        assert isinstance(create_cache_store(Settings()), MemoryCacheStore)

    def test_supabase_when_configured(self):
        settings = Settings(supabase_url="https://x.supabase.co", supabase_secret_key="secret")
        assert isinstance(create_cache_store(settings), SupabaseCacheStore)
