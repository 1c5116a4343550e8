from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import redis.asyncio as redis
import uvicorn
from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from google.api_core import exceptions as google_exceptions
from pythonjsonlogger import jsonlogger
from redis.exceptions import RedisError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .config import settings
from .engines import EngineError, OcrEngine, build_engine, is_supported

# Configure JSON logging
root_logger = logging.getLogger()
handler = logging.StreamHandler()
handler.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
root_logger.handlers = [handler]
root_logger.setLevel(settings.log_level.upper())

logger = logging.getLogger(__name__)


def parse_rate(rate: str) -> tuple[int, int]:
    amount, per = rate.split('/')
    periods = {'second': 1, 'minute': 60, 'hour': 3600, 'day': 86400}
    return int(amount), periods.get(per, 60)


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """Fixed-window limit per client address, counted in Redis.

    Requests pass through when Redis is unreachable.
    """

    def __init__(self, app, redis_client, limit: int, period: int):
        super().__init__(app)
        self.redis = redis_client
        self.limit = limit
        self.period = period

    async def dispatch(self, request: Request, call_next):
        ip = request.client.host if request.client else "unknown"
        key = f"rl:ocr:{ip}"
        try:
            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, self.period)
            if current > self.limit:
                return JSONResponse(status_code=429, content={"error": "Rate limit exceeded"})
        except RedisError:
            logger.warning("Rate limiter unavailable, letting request through")
        return await call_next(request)


app = FastAPI(title="Invoice OCR proxy")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
if settings.redis_url:
    limit, period = parse_rate(settings.rate_limit)
    app.add_middleware(
        RateLimiterMiddleware,
        redis_client=redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True),
        limit=limit,
        period=period,
    )


@lru_cache
def get_engine() -> OcrEngine:
    return build_engine(settings.engine, max_pdf_pages=settings.max_pdf_pages)


@app.get("/health")
def health():
    return {"status": "ok", "engine": settings.engine}


@app.post("/api/ocr")
async def ocr(file: Optional[UploadFile] = File(None), engine: OcrEngine = Depends(get_engine)):
    if file is None:
        return JSONResponse(status_code=400, content={"error": "No file uploaded"})
    if not is_supported(file.content_type):
        return JSONResponse(
            status_code=415,
            content={"error": "Unsupported file type. Please upload PDF or image files."},
        )

    content = await file.read()
    try:
        text = await run_in_threadpool(engine.extract, content, file.content_type)
    except (EngineError, google_exceptions.GoogleAPIError) as exc:
        logger.error("OCR failed", extra={"upload": file.filename, "error": str(exc)})
        return JSONResponse(status_code=502, content={"error": f"OCR failed: {exc}"})

    logger.info("OCR done", extra={"upload": file.filename, "chars": len(text)})
    return {"text": text}


if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port)
