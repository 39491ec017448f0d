"""
services/authoring_service.py

관리자용 테스트 문제 편집(CRUD) 오케스트레이션.

저장은 백엔드 API 에 위임한다. 이 서비스는 별도 저장소를 갖지 않고,
테스트별로 마지막으로 불러온 문제 리스트를 ID 중복 검사의 기준으로 삼는다.
따라서 중복 검사는 참고용이다. 다른 관리자가 동시에 편집하면 리스트가 낡을 수 있고,
최종 판정은 서버가 한다 (서버의 400 "Question ID already exists" 는 그대로 전파).
"""

import asyncio
import logging
import random
import time
from typing import Dict, List, Optional

from free_test.errors import ValidationError
from free_test.models.question_model import QUESTION_CLASSES, FreeTest, Option, QuestionType
from free_test.services.api_client import TestApiClient
from free_test.services.question_validator import (
    check_underline_ranges,
    requires_reading_passage,
    validate_question,
)

logger = logging.getLogger(__name__)

DUPLICATE_ID_MESSAGE = "Question ID already exists. Please use a unique ID."
NEW_QUESTION_OPTION_COUNT = 4


def generate_question_id() -> str:
    """q_<epoch 밀리초>_<0~999 난수> 형식의 새 문제 ID."""
    timestamp = int(time.time() * 1000)
    return f"q_{timestamp}_{random.randint(0, 999)}"


def new_question(question_type: QuestionType, question_id: Optional[str] = None):
    """
    편집 화면용 빈 문제 초안. 빈 보기 4개를 가진다.
    오류 식별 문제는 [0, 0] 밑줄 구간 4개로 시작한다.
    """
    qtype = QuestionType(question_type)
    cls = QUESTION_CLASSES[qtype]
    fields = {
        "id": question_id or generate_question_id(),
        "options": [Option(text="") for _ in range(NEW_QUESTION_OPTION_COUNT)],
    }
    if qtype == QuestionType.ERROR_IDENTIFICATION:
        fields["underlined_indexes"] = [[0, 0] for _ in range(NEW_QUESTION_OPTION_COUNT)]
    return cls(**fields)


class TestAuthoringService:
    """
    테스트 문제 추가/수정/삭제와 기본 정보 수정.

    검증 실패는 ValidationError 로 막고 서버에 보내지 않는다.
    API 실패(AuthError, RateLimitError, NotFoundOrServerError)는 변환 없이 그대로 전파.
    """

    __test__ = False

    def __init__(self, api: TestApiClient):
        self._api = api
        self._loaded: Dict[str, List] = {}

    # ── 조회 ─────────────────────────────────────────────────────────────────

    async def load_test(self, test_id: str) -> FreeTest:
        test = await asyncio.to_thread(self._api.get_test, test_id)
        self._loaded[test_id] = list(test.questions)
        logger.info(f"테스트 {test_id} 로드: 문제 {len(test.questions)}개")
        return test

    def loaded_questions(self, test_id: str) -> list:
        return list(self._loaded.get(test_id, []))

    def id_exists(self, test_id: str, question_id: str, exclude_id: Optional[str] = None) -> bool:
        """불러온 리스트 기준 ID 중복 여부. exclude_id 는 수정 중인 문제 자신."""
        return any(
            q.id == question_id and q.id != exclude_id
            for q in self._loaded.get(test_id, [])
        )

    # ── 변경 ─────────────────────────────────────────────────────────────────

    async def add_question(self, test_id: str, question):
        self._check(question)
        if self.id_exists(test_id, question.id):
            raise ValidationError(DUPLICATE_ID_MESSAGE)

        created = await asyncio.to_thread(self._api.add_question, test_id, question)
        self._loaded.setdefault(test_id, []).append(created)
        logger.info(f"테스트 {test_id} 문제 추가: {created.id}")
        return created

    async def update_question(self, test_id: str, question_id: str, question):
        """question_id 위치의 문제를 교체한다. 순서는 바뀌지 않는다."""
        self._check(question)
        if question.id != question_id and self.id_exists(test_id, question.id, exclude_id=question_id):
            raise ValidationError(DUPLICATE_ID_MESSAGE)

        updated = await asyncio.to_thread(self._api.update_question, test_id, question_id, question)

        questions = self._loaded.get(test_id)
        if questions is not None:
            for index, q in enumerate(questions):
                if q.id == question_id:
                    questions[index] = updated
                    break
        logger.info(f"테스트 {test_id} 문제 수정: {question_id}")
        return updated

    async def delete_question(self, test_id: str, question_id: str) -> bool:
        ok = await asyncio.to_thread(self._api.delete_question, test_id, question_id)
        if ok and test_id in self._loaded:
            self._loaded[test_id] = [q for q in self._loaded[test_id] if q.id != question_id]
        logger.info(f"테스트 {test_id} 문제 삭제: {question_id}")
        return ok

    async def update_test_basic_info(
        self,
        test_id: str,
        title: Optional[str] = None,
        reading_passage: Optional[str] = None,
    ) -> dict:
        """title / readingPassage 만 부분 수정한다. questions 는 절대 보내지 않는다."""
        info = {}
        if title is not None:
            info["title"] = title
        if reading_passage is not None:
            info["readingPassage"] = reading_passage
        if not info:
            raise ValidationError("Nothing to update")
        if reading_passage is not None and not reading_passage.strip():
            if requires_reading_passage(self._loaded.get(test_id, [])):
                raise ValidationError("Reading passage is required for reading comprehension questions")

        return await asyncio.to_thread(self._api.update_basic_info, test_id, info)

    # ── 내부 ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _check(question) -> None:
        for result in (validate_question(question), check_underline_ranges(question)):
            if not result.valid:
                raise ValidationError(result.error_message or "Invalid question data")
