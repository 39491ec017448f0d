"""
services/api_client.py

백엔드 REST API 클라이언트 (동기, requests 기반).

세션 쿠키(로그인 자격 증명)는 requests.Session 에 보관되어 모든 요청에 함께 전송된다.
이 모듈이 네트워크/HTTP/JSON 오류를 free_test.errors 의 분류로 바꾸는 유일한 경계다.
비동기 서비스들은 asyncio.to_thread() 로 이 클라이언트를 호출한다.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from free_test.errors import AuthError, NotFoundOrServerError, RateLimitError
from free_test.models.question_model import FreeTest, drop_unknown_questions, dump_question, parse_question
from free_test.models.result_model import Registrant, TestResult, TopPerformer

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

# 서버 rate limiter 메시지 (영문) 와 이전 버전 서버의 베트남어 메시지
RATE_LIMIT_MARKERS = ("Too many requests", "Quá nhiều yêu cầu đến")


def is_rate_limit_message(message: Optional[str]) -> bool:
    return bool(message) and any(marker in message for marker in RATE_LIMIT_MARKERS)


class TestApiClient:
    """
    무료 테스트 백엔드 API 래퍼.

    Args:
        base_url: 서버 루트 URL (예: http://localhost:5000/api)
        timeout:  요청 타임아웃 (초)
        session:  공유할 requests.Session. 없으면 새로 만든다.
    """

    __test__ = False

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("Content-Type", "application/json")

    # ── 내부 헬퍼 ────────────────────────────────────────────────────────────

    def _url(self, *parts: str) -> str:
        return "/".join([self.base_url] + [quote(str(p), safe="") for p in parts])

    def _request(self, method: str, url: str, fallback: str, **kwargs) -> Any:
        """
        요청을 보내고 JSON 본문을 반환한다. 본문이 없으면 None.

        Raises:
            AuthError:             401 / 403
            RateLimitError:        429 또는 rate limit 메시지
            NotFoundOrServerError: 그 밖의 모든 실패 (네트워크, 비정상 응답, JSON 파싱)
        """
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.warning(f"{method} {url} 네트워크 오류: {e}")
            raise NotFoundOrServerError(fallback) from e

        data = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                if response.ok:
                    raise NotFoundOrServerError(
                        f"{fallback}: invalid response body", response.status_code
                    )

        if response.ok:
            return data

        message = data.get("message") if isinstance(data, dict) else None
        status = response.status_code
        logger.warning(f"{method} {url} 실패: {status} {message or ''}".rstrip())

        if status in (401, 403):
            raise AuthError(message or "Please log in again.", status_code=status)
        if status == 429 or is_rate_limit_message(message):
            raise RateLimitError(message or "Too many requests. Please try again after 1 minute.")
        raise NotFoundOrServerError(message or fallback, status)

    # ── 테스트 조회 / 문제 관리 ──────────────────────────────────────────────

    def get_test(self, test_id: str, skip_unknown_types: bool = False) -> FreeTest:
        """
        테스트 전체(정답 포함)를 가져온다.

        Args:
            skip_unknown_types: True 면 지원하지 않는 유형의 문제를 경고 로그와 함께 제외한다.
                응시 화면용. 편집 화면은 False (알 수 없는 유형이면 실패).
        """
        data = self._request("GET", self._url("testFree", test_id), "Failed to fetch test")
        if not isinstance(data, dict):
            raise NotFoundOrServerError("Failed to fetch test: empty response")
        if skip_unknown_types:
            data, dropped = drop_unknown_questions(data)
            if dropped:
                logger.warning(f"테스트 {test_id}: 지원하지 않는 유형의 문제 {len(dropped)}개 제외 {dropped}")
        try:
            return FreeTest.model_validate(data)
        except ValueError as e:
            raise NotFoundOrServerError(f"Failed to fetch test: {e}") from e

    def add_question(self, test_id: str, question):
        data = self._request(
            "POST",
            self._url("testFree", test_id, "questions"),
            "Failed to add question",
            json={"question": dump_question(question)},
        )
        return self._question_from(data, "addedQuestion", question)

    def update_question(self, test_id: str, question_id: str, question):
        data = self._request(
            "PUT",
            self._url("testFree", test_id, "questions", question_id),
            "Failed to update question",
            json={"question": dump_question(question)},
        )
        return self._question_from(data, "updatedQuestion", question)

    def delete_question(self, test_id: str, question_id: str) -> bool:
        self._request(
            "DELETE",
            self._url("testFree", test_id, "questions", question_id),
            "Failed to delete question",
        )
        return True

    def update_basic_info(self, test_id: str, info: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request(
            "PATCH",
            self._url("testFree", test_id, "basic-info"),
            "Failed to update test information",
            json=info,
        )
        if isinstance(data, dict) and isinstance(data.get("updatedTest"), dict):
            return data["updatedTest"]
        return data or {}

    # ── 응시자 / 결과 ────────────────────────────────────────────────────────

    def register_user(self, registrant: Registrant) -> Dict[str, Any]:
        data = self._request(
            "POST",
            self._url("testFree", "register"),
            "Failed to register user",
            json=registrant.registration_payload(),
        )
        return data or {}

    def save_result(self, email: str, result: TestResult) -> Dict[str, Any]:
        payload = result.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload["email"] = email
        data = self._request(
            "POST",
            self._url("testFree", "save-result"),
            "Failed to save test result",
            json=payload,
        )
        return data or {}

    def get_user_test(self, email: str) -> Optional[Registrant]:
        data = self._request("GET", self._url("testFree", "user-test", email), "Failed to fetch user test history")
        user_test = data.get("userTest") if isinstance(data, dict) else None
        if not user_test:
            return None
        try:
            return Registrant.model_validate(user_test)
        except ValueError as e:
            raise NotFoundOrServerError(f"Failed to fetch user test history: {e}") from e

    def get_top_users(self) -> List[TopPerformer]:
        data = self._request("GET", self._url("testFree", "top-users"), "Failed to fetch top performers")
        rows = data.get("topUsers", []) if isinstance(data, dict) else (data or [])
        return [TopPerformer.model_validate(row) for row in rows]

    # ── 변환 ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _question_from(data: Any, key: str, fallback):
        """응답의 key 항목을 Question 으로 변환. 없으면 보낸 문제를 그대로 사용."""
        raw = data.get(key) if isinstance(data, dict) else None
        if not isinstance(raw, dict):
            return fallback
        try:
            return parse_question(raw)
        except ValueError:
            logger.warning(f"응답의 {key} 를 해석하지 못해 요청 본문으로 대체")
            return fallback
