"""
api/session.py — 멀티유저 인메모리 세션 (쿠키 기반)

각 사용자에게 UUID 세션 ID를 발급하고, 세션별로 독립된 응시 상태
(등록 게이트, 응시 엔진, 이력 조회, 문제 편집 서비스)를 유지.
TTL(기본 1시간) 경과 시 자동 만료.

SessionStore 는 create_app() 이 만들어 app.state 에 보관한다 (모듈 전역 상태 없음).
"""

import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from free_test.services.api_client import TestApiClient
from free_test.services.authoring_service import TestAuthoringService
from free_test.services.delivery_engine import DeliveryEngine
from free_test.services.registration_service import HistoryRecorder, RegistrationGate

SESSION_TTL = 3600  # 1시간


@dataclass
class SessionState:
    """세션 하나가 가진 서비스 묶음. 모두 같은 백엔드 클라이언트(같은 쿠키)를 공유."""

    api: TestApiClient
    engine: DeliveryEngine
    gate: RegistrationGate
    recorder: HistoryRecorder
    authoring: TestAuthoringService


class SessionStore:
    """
    Args:
        api_factory:    세션마다 새 백엔드 클라이언트를 만드는 함수.
        engine_options: DeliveryEngine 생성 인자 (clock, time_limit_seconds ...).
        ttl:            세션 만료 시간 (초).
    """

    def __init__(
        self,
        api_factory: Callable[[], TestApiClient],
        engine_options: Optional[dict] = None,
        ttl: int = SESSION_TTL,
    ):
        self._api_factory = api_factory
        self._engine_options = engine_options or {}
        self.ttl = ttl
        self._lock = threading.Lock()
        self._sessions: Dict[str, SessionState] = {}
        self._timestamps: Dict[str, float] = {}

    def _new_state(self) -> SessionState:
        api = self._api_factory()
        recorder = HistoryRecorder(api)
        engine = DeliveryEngine(api, recorder, **self._engine_options)
        return SessionState(
            api=api,
            engine=engine,
            gate=RegistrationGate(api, engine),
            recorder=recorder,
            authoring=TestAuthoringService(api),
        )

    def create_session(self) -> str:
        """새 세션을 생성하고 세션 ID를 반환."""
        sid = uuid.uuid4().hex
        state = self._new_state()
        with self._lock:
            self._sessions[sid] = state
            self._timestamps[sid] = time.time()
        return sid

    def get_session(self, sid: str) -> Optional[SessionState]:
        """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
        with self._lock:
            if sid not in self._sessions:
                return None
            if time.time() - self._timestamps[sid] > self.ttl:
                del self._sessions[sid]
                del self._timestamps[sid]
                return None
            self._timestamps[sid] = time.time()  # 접근 시 갱신
            return self._sessions[sid]

    def reset(self, sid: str) -> None:
        """세션 상태 초기화 (새 응시)."""
        state = self._new_state()
        with self._lock:
            if sid in self._sessions:
                self._sessions[sid] = state
                self._timestamps[sid] = time.time()

    def cleanup_expired(self) -> int:
        """만료된 세션을 정리. 제거된 수 반환."""
        now = time.time()
        removed = 0
        with self._lock:
            expired = [sid for sid, ts in self._timestamps.items() if now - ts > self.ttl]
            for sid in expired:
                del self._sessions[sid]
                del self._timestamps[sid]
                removed += 1
        return removed

    def states(self) -> List[SessionState]:
        """현재 세션 상태들의 스냅샷 (락 밖에서 순회하기 위함)."""
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
