"""Amazon レビュー信頼度チェック — CLI エントリーポイント.

使い方:
  python -m reviewscan.main scan <product_url>   解析結果の JSON を出力
  python -m reviewscan.main purge-cache          期限切れキャッシュを削除
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime

from reviewscan.config import LOG_DIR, load_settings
from reviewscan.db import create_cache_store
from reviewscan.errors import InvalidInputError
from reviewscan.pipeline import ReviewScanPipeline


def setup_logging() -> None:
    """ロギングの初期設定."""
    LOG_DIR.mkdir(exist_ok=True)
    log_file = LOG_DIR / f"reviewscan_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reviewscan", description="Amazon review authenticity scanner")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="scrape and score reviews for a product URL")
    scan.add_argument("product_url")

    sub.add_parser("purge-cache", help="delete expired cache entries")
    return parser


def run(argv: list[str] | None = None) -> int:
    """メイン処理. 終了コードを返す."""
    args = _build_parser().parse_args(argv)
    setup_logging()
    logger = logging.getLogger(__name__)

    settings = load_settings()
    cache = create_cache_store(settings)

    if args.command == "purge-cache":
        removed = cache.purge_expired()
        logger.info("期限切れキャッシュ削除完了: %d 件", removed)
        return 0

    pipeline = ReviewScanPipeline(settings, cache)
    try:
        result = pipeline.scan(args.product_url)
    except InvalidInputError as e:
        logger.error("入力エラー: %s", e)
        print(json.dumps({"success": False, "error": str(e)}, ensure_ascii=False))
        return 2

    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(run())
