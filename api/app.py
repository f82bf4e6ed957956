"""
api/app.py — FastAPI 앱 인스턴스 + 엔진 오류 → HTTP 변환 + 백그라운드 루프
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import STALE_ATTEMPT_TTL
from api.engine import Engine, build_engine
from api.routes import router
from exam_engine.errors import (
    InputValidationError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
)

logger = logging.getLogger(__name__)

_CLEANUP_INTERVAL = 300  # 5분


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    engine = engine or build_engine()
    stop_cleanup = threading.Event()

    # 시작 전 상태로 방치된 응시 주기적 정리
    def _cleanup_loop():
        while not stop_cleanup.wait(_CLEANUP_INTERVAL):
            try:
                removed = engine.store.cleanup_stale(STALE_ATTEMPT_TTL)
            except StorageError as e:
                logger.warning(f"방치된 응시 정리 실패: {e}")
                continue
            if removed:
                logger.info(f"방치된 응시 {removed}개 정리")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine.timer.start()
        t = threading.Thread(target=_cleanup_loop, name="attempt-cleanup", daemon=True)
        t.start()
        yield
        stop_cleanup.set()
        engine.timer.stop(timeout=5.0)

    app = FastAPI(title="Exam Session Engine", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.engine = engine

    # CORS (응시 화면이 다른 출처에서 호출)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── 엔진 오류 → HTTP 상태 코드 ──────────────────────────────────────────
    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InputValidationError)
    async def validation_handler(request: Request, exc: InputValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_handler(request: Request, exc: StorageError):
        logger.error(f"저장소 오류: {request.method} {request.url.path} - {exc}")
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app
