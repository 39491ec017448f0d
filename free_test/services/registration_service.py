"""
services/registration_service.py

응시 전 신원 등록(RegistrationGate)과 응시 후 결과 기록/조회(HistoryRecorder).
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from free_test.errors import AuthError, NotFoundOrServerError, RateLimitError, ValidationError
from free_test.models.result_model import Registrant, TestResult, TopPerformer
from free_test.services.api_client import TestApiClient

logger = logging.getLogger(__name__)

REQUIRED_FIELDS_MESSAGE = "Please fill in all required fields."

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class HistoryRecorder:
    """
    응시 결과 저장과 이력 조회.

    401/403 응답은 오류가 아니라 '이력 없음'으로 취급한다 (권한 정보를 화면에 노출하지 않음).
    """

    def __init__(self, api: TestApiClient):
        self._api = api

    async def record_result(self, email: str, result: TestResult) -> dict:
        """결과를 응시자 이력에 추가한다. 실패하면 예외를 그대로 전파."""
        response = await asyncio.to_thread(self._api.save_result, email, result)
        logger.info(f"결과 저장: {email} {result.score}/{result.total_questions}")
        return response

    async def fetch_profile(self, email: str) -> Optional[Registrant]:
        """
        응시자 정보와 이력. 등록된 적이 없거나(404) 권한이 없으면(401/403) None.
        그 밖의 실패는 NotFoundOrServerError 로 전파.
        """
        try:
            return await asyncio.to_thread(self._api.get_user_test, email)
        except AuthError:
            logger.info(f"이력 조회 권한 없음: {email}")
            return None
        except NotFoundOrServerError as e:
            if e.status_code == 404:
                return None
            raise

    async def fetch_history(self, email: str) -> List[TestResult]:
        """
        submitted_at 오름차순 결과 리스트. 이력이 없으면 빈 리스트 (오류 아님).
        화면에서 최신순이 필요하면 뒤집어서 사용.
        """
        profile = await self.fetch_profile(email)
        if profile is None:
            return []
        # 제출 시각이 없는 기록은 맨 앞
        return sorted(
            profile.test_history,
            key=lambda r: (r.submitted_at is not None, r.submitted_at or _EPOCH),
        )

    async def fetch_top_performers(self, limit: int = 5) -> List[TopPerformer]:
        """리더보드. 정답률 내림차순, 동률이면 소요 시간이 짧은 순."""
        rows = await asyncio.to_thread(self._api.get_top_users)

        def _key(row: TopPerformer):
            seconds = row.time_taken.total_seconds if row.time_taken else float("inf")
            return -row.percentage, seconds

        return sorted(rows, key=_key)[:limit]


class RegistrationGate:
    """
    응시 시작 전 연락처 등록.

    form 은 입력 중인 등록 정보. 검증 실패나 요청 한도 초과 시에도 지워지지 않는다.
    등록에 성공하면 engine.begin() 으로 응시를 시작시킨다.
    """

    def __init__(self, api: TestApiClient, engine):
        self._api = api
        self._engine = engine
        self.form = Registrant()
        self.registered_email: Optional[str] = None

    @property
    def is_registered(self) -> bool:
        return self.registered_email is not None

    def update_form(self, **fields) -> Registrant:
        self.form = self.form.model_copy(update=fields)
        return self.form

    async def register(self, registrant: Optional[Registrant] = None):
        """
        등록 후 응시를 시작한다.

        Raises:
            ValidationError:  fullName / email / phone 중 하나라도 비어 있거나 형식이 틀림,
                              또는 이미 응시 중. 상태 변화 없음, 서버 요청 없음.
            LoadError:        테스트를 아직 불러오지 못함.
            RateLimitError:   요청 한도 초과. 입력값은 유지.
            AuthError / NotFoundOrServerError: 그 밖의 등록 실패.
        """
        if registrant is not None:
            self.form = registrant
        form = self.form

        if form.missing_required_fields():
            raise ValidationError(REQUIRED_FIELDS_MESSAGE)
        format_errors = form.format_errors()
        if format_errors:
            raise ValidationError(next(iter(format_errors.values())))
        self._engine.check_can_begin()

        try:
            await asyncio.to_thread(self._api.register_user, form)
        except RateLimitError:
            logger.warning(f"등록 요청 한도 초과: {form.email}")
            raise

        self.registered_email = form.email
        attempt = self._engine.begin(form.email)
        logger.info(f"등록 완료: {form.email}")
        return attempt
