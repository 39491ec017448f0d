"""
errors.py

테스트 엔진의 오류 분류.
API 클라이언트 경계에서 모든 네트워크/파싱 실패를 아래 종류 중 하나로 변환하므로
상위 계층(서비스, 라우트)은 requests 예외를 직접 보지 않는다.
"""

from typing import Optional


class FreeTestError(Exception):
    """모든 테스트 엔진 오류의 기반 클래스."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FreeTestError):
    """클라이언트에서 감지한 입력 오류. 변경을 막고, 서버로 전송되지 않는다."""

    kind = "validation"


class AuthError(FreeTestError):
    """401/403 응답. 문맥에 따라 재로그인 안내 또는 '데이터 없음'으로 처리."""

    kind = "auth"

    def __init__(self, message: str = "Please log in again.", status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(FreeTestError):
    """요청 한도 초과. 인라인 문구가 아니라 차단형 대화상자로 안내."""

    kind = "rate_limit"


class NotFoundOrServerError(FreeTestError):
    """일반 실패(404, 5xx, 네트워크 오류 등). 재시도 가능."""

    kind = "server"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LoadError(FreeTestError):
    """화면 진입 시 테스트/문제 데이터를 불러오지 못함. 해당 화면에서는 치명적."""

    kind = "load"
