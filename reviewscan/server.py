"""HTTP エンドポイント.

スクレイピングの失敗は 200 + {"success": false, "isBlocked": true} で返す。
クライアントは転送層のエラー処理に頼らず、ペイロードだけで劣化表示を判断できる。
不正な URL・リクエストボディのみ 400 を返す。
"""

from __future__ import annotations

import asyncio
import logging
import threading

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from reviewscan.config import cors_allow_origins, load_settings
from reviewscan.db import create_cache_store
from reviewscan.errors import InvalidInputError
from reviewscan.pipeline import ReviewScanPipeline

logger = logging.getLogger(__name__)

MISSING_URL_MESSAGE = "productUrl is required."

# クライアント切断を確認する間隔（秒）
DISCONNECT_POLL_SECONDS = 0.5


class ScrapeRequest(BaseModel):
    productUrl: str = Field(..., min_length=1)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": message})


def create_app(pipeline: ReviewScanPipeline | None = None) -> FastAPI:
    if pipeline is None:
        settings = load_settings()
        pipeline = ReviewScanPipeline(settings, create_cache_store(settings))

    app = FastAPI(title="reviewscan", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allow_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("不正なリクエストボディ: errors=%s", exc.errors())
        return _bad_request(MISSING_URL_MESSAGE)

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    @app.post("/scrape-reviews")
    async def scrape_reviews(req: ScrapeRequest, request: Request):
        # スキャンはスレッドプールで実行し、クライアントが切断したら中断させる
        cancel = threading.Event()
        task = asyncio.ensure_future(run_in_threadpool(pipeline.scan, req.productUrl, cancel=cancel))
        try:
            while not task.done():
                done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
                if not done and not cancel.is_set() and await request.is_disconnected():
                    logger.info("クライアント切断を検知。スキャンを中断します: url=%s", req.productUrl)
                    cancel.set()
            result = task.result()
        except InvalidInputError as e:
            return _bad_request(str(e))
        finally:
            cancel.set()
        return result.to_dict()

    return app
