"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + 오류 변환
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from api.routes import router
from api.session import SessionStore
from free_test.errors import (
    AuthError,
    FreeTestError,
    LoadError,
    NotFoundOrServerError,
    RateLimitError,
    ValidationError,
)
from free_test.services.api_client import TestApiClient
from free_test.services.timer import TimerRefresher

logger = logging.getLogger(__name__)

SESSION_COOKIE = "free_test_session"
CLEANUP_INTERVAL = 300  # 5분


def _status_for(exc: FreeTestError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, RateLimitError):
        return 429
    if isinstance(exc, LoadError):
        return 503
    if isinstance(exc, NotFoundOrServerError) and exc.status_code == 404:
        return 404
    return 502


def create_app(
    api_factory: Optional[Callable[[], TestApiClient]] = None,
    clock: Callable[[], float] = time.time,
    default_test_id: str = config.FREE_TEST_ID,
    time_limit_seconds: int = config.TEST_TIME_LIMIT_SECONDS,
    warning_seconds: int = config.TIME_WARNING_SECONDS,
    questions_per_page: int = config.QUESTIONS_PER_PAGE,
    top_users_limit: int = config.TOP_USERS_LIMIT,
    session_ttl: int = config.SESSION_TTL,
    deadline_check_interval: float = config.DEADLINE_CHECK_INTERVAL,
) -> FastAPI:
    """
    앱을 만든다. 모든 설정은 인자로 받아 app.state 에 보관한다.

    Args:
        api_factory: 세션별 백엔드 클라이언트 생성 함수. 없으면 config.API_BASE_URL 로 생성.
        clock:       응시 엔진이 사용할 현재 시각 함수.
        deadline_check_interval: 제한 시간 초과 응시를 확인하는 주기 (초).
    """
    if api_factory is None:
        def api_factory() -> TestApiClient:
            return TestApiClient(config.API_BASE_URL, timeout=config.REQUEST_TIMEOUT)

    sessions = SessionStore(
        api_factory,
        engine_options={
            "clock": clock,
            "time_limit_seconds": time_limit_seconds,
            "warning_seconds": warning_seconds,
            "questions_per_page": questions_per_page,
        },
        ttl=session_ttl,
    )

    # 만료 세션 정리
    def _cleanup_expired():
        removed = sessions.cleanup_expired()
        if removed:
            logger.info(f"만료 세션 {removed}개 정리")

    # 제한 시간이 지난 응시 자동 제출 (응시자가 화면을 닫아도 결과가 저장되도록)
    async def _sweep_deadlines():
        for state in sessions.states():
            try:
                await state.engine.check_deadline()
            except FreeTestError as e:
                logger.warning(f"자동 제출 실패: {e.message}")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        refreshers = [
            TimerRefresher(_cleanup_expired, interval=CLEANUP_INTERVAL),
            TimerRefresher(_sweep_deadlines, interval=deadline_check_interval),
        ]
        for refresher in refreshers:
            refresher.start()
        try:
            yield
        finally:
            for refresher in refreshers:
                await refresher.stop()

    app = FastAPI(title="Free English Test", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.sessions = sessions
    app.state.session_cookie = SESSION_COOKIE
    app.state.default_test_id = default_test_id
    app.state.top_users_limit = top_users_limit

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or sessions.get_session(sid) is None:
            sid = sessions.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=session_ttl,
        )
        return response

    # free_test 오류 → HTTP 응답. kind 로 화면이 인라인 문구/대화상자를 고른다.
    @app.exception_handler(FreeTestError)
    async def free_test_error_handler(request: Request, exc: FreeTestError):
        status = _status_for(exc)
        if status >= 500:
            logger.warning(f"{request.method} {request.url.path} 실패: {exc.message}")
        return JSONResponse(status_code=status, content={"detail": exc.message, "kind": exc.kind})

    app.include_router(router)

    @app.get("/")
    async def root():
        return {"message": "Free English Test API", "sessions": len(sessions)}

    return app
