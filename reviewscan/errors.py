"""パイプラインの例外定義.

呼び出し側まで伝播するのは InvalidInputError のみ。
それ以外はパイプライン内でソフトフェイル（isBlocked: true）に変換される。
"""


class ReviewScanError(Exception):
    """reviewscan の例外の基底クラス."""


class InvalidInputError(ReviewScanError):
    """商品 URL が不正、または ASIN を抽出できない."""


class NetworkError(ReviewScanError):
    """通信エラー（非 2xx・タイムアウト・接続失敗）."""


class BlockedError(ReviewScanError):
    """ボット対策ページ（captcha 等）を検出した."""


class NoReviewsExtractedError(ReviewScanError):
    """取得には成功したが有効なレビューを 1 件も抽出できなかった."""


class CacheWriteError(ReviewScanError):
    """キャッシュへの書き込みに失敗した（致命的ではない）."""


class CancelledScanError(ReviewScanError):
    """呼び出し元によって処理がキャンセルされた."""
