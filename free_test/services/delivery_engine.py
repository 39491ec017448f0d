"""
services/delivery_engine.py

응시자에게 테스트를 제공하는 엔진.

상태 전이 (Attempt 단위):
  NOT_STARTED --begin()--> IN_PROGRESS --submit()--> SUBMITTED (종료 상태)

- IN_PROGRESS 동안 답은 몇 번이든 선택/변경 가능.
- submit() 시점의 경과 시간이 time_taken 으로 확정되고, 채점은 한 번만 한다.
- 결과 저장이 실패하면 채점 결과를 보관하고, 다시 submit() 하면 재채점 없이 재전송한다.
- 저장에 성공하면 Attempt 는 버려진다 (결과와 답안은 last_result / last_answers 로만 남는다).
- 제한 시간이 지나면 답안 변경을 막고 그 시점에 채점을 확정한다.
  소요 시간은 제한 시간을 넘지 않는다. 전송은 check_deadline() 이 맡는다.

모든 메서드는 단일 이벤트 루프에서 호출된다고 가정한다 (락 없음).
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from free_test.errors import FreeTestError, LoadError, ValidationError
from free_test.models.question_model import FreeTest
from free_test.models.result_model import TestResult, TimeTaken
from free_test.models.session_state import Attempt, AttemptStatus
from free_test.services import timer
from free_test.services.api_client import TestApiClient
from free_test.services.exam_service import build_result

logger = logging.getLogger(__name__)

LOAD_ERROR_MESSAGE = "Failed to load test. Please try again later."
EMPTY_TEST_MESSAGE = "No tests available. Please try again later."
ALREADY_STARTED_MESSAGE = "Test has already been started."
TIME_UP_MESSAGE = "Time is up. Your answers have been submitted."


class DeliveryEngine:
    """
    Args:
        api:                 테스트를 불러올 백엔드 클라이언트.
        recorder:            결과를 저장할 HistoryRecorder (record_result 를 가진 객체).
        clock:               현재 시각 (Unix timestamp) 함수. 테스트에서 교체용.
        time_limit_seconds:  제한 시간. 0 이하이면 제한 없음.
        warning_seconds:     남은 시간이 이 값 이하이면 should_warn() 이 True.
        questions_per_page:  sections() 의 페이지 크기.
    """

    def __init__(
        self,
        api: TestApiClient,
        recorder,
        clock: Callable[[], float] = time.time,
        time_limit_seconds: int = timer.TEST_DURATION_SECONDS,
        warning_seconds: int = timer.WARNING_THRESHOLD_SECONDS,
        questions_per_page: int = 2,
    ):
        self._api = api
        self._recorder = recorder
        self._clock = clock
        self.time_limit_seconds = time_limit_seconds
        self.warning_seconds = warning_seconds
        self.questions_per_page = max(1, questions_per_page)

        self.test: Optional[FreeTest] = None
        self.load_error: Optional[LoadError] = None
        self.attempt: Optional[Attempt] = None
        self.pending_result: Optional[TestResult] = None
        self.last_result: Optional[TestResult] = None
        self.last_answers: Dict[str, str] = {}
        self._submitting = False
        self._auto_submit_due = False

    # ── 로드 ─────────────────────────────────────────────────────────────────

    async def load(self, test_id: str) -> FreeTest:
        """
        테스트를 불러온다. 실패하거나 문제가 없으면 LoadError.
        LoadError 상태에서는 begin()/submit() 이 허용되지 않는다 (다시 load() 해야 함).
        """
        self.test = None
        self.load_error = None
        try:
            test = await asyncio.to_thread(self._api.get_test, test_id, skip_unknown_types=True)
        except FreeTestError as e:
            logger.warning(f"테스트 {test_id} 로드 실패: {e}")
            self.load_error = LoadError(LOAD_ERROR_MESSAGE)
            raise self.load_error from e

        if not test.questions:
            self.load_error = LoadError(EMPTY_TEST_MESSAGE)
            raise self.load_error

        self.test = test
        self.attempt = Attempt()
        self._auto_submit_due = False
        logger.info(f"테스트 {test_id} 로드 완료: 문제 {len(test.questions)}개")
        return test

    def require_test(self) -> FreeTest:
        if self.load_error is not None:
            raise self.load_error
        if self.test is None:
            raise LoadError("Test is not loaded.")
        return self.test

    # ── 상태 전이 ────────────────────────────────────────────────────────────

    @property
    def status(self) -> AttemptStatus:
        if self.attempt is None:
            return AttemptStatus.SUBMITTED if self.last_result else AttemptStatus.NOT_STARTED
        return self.attempt.status

    def check_can_begin(self) -> None:
        """begin() 이 가능한지 확인한다. 등록 게이트가 서버 요청 전에 호출."""
        self.require_test()
        if self.attempt is not None and self.attempt.status != AttemptStatus.NOT_STARTED:
            raise ValidationError(ALREADY_STARTED_MESSAGE)

    def begin(self, registrant_email: str) -> Attempt:
        """NOT_STARTED → IN_PROGRESS. 등록 게이트를 통과한 뒤에만 호출한다."""
        self.check_can_begin()
        if self.attempt is None:
            self.attempt = Attempt()

        now = self._clock()
        self.attempt.registrant_email = registrant_email
        self.attempt.status = AttemptStatus.IN_PROGRESS
        self.attempt.start_time = now
        self.last_result = None
        first = self.test.questions[0]
        self.attempt.current_question_id = first.id
        self.attempt.focused_at = now
        logger.info(f"응시 시작: {registrant_email}")
        return self.attempt

    def _require_in_progress(self) -> Attempt:
        self.require_test()
        if self._expire_if_due():
            raise ValidationError(TIME_UP_MESSAGE)
        if self.attempt is None or not self.attempt.is_in_progress:
            raise ValidationError("Test is not in progress.")
        return self.attempt

    # ── 답안 ─────────────────────────────────────────────────────────────────

    def select_answer(self, question_id: str, option_text: str) -> Dict[str, str]:
        """
        답을 기록한다. 빈 문자열이면 해당 문제의 답을 지운다.
        없는 문제 ID 나 보기에 없는 text 는 ValidationError.
        """
        attempt = self._require_in_progress()
        question = self.test.find_question(question_id)
        if question is None:
            raise ValidationError(f"Unknown question: {question_id}")

        if option_text:
            if option_text not in question.option_texts():
                raise ValidationError("Answer must be one of the options")
            attempt.user_answers[question_id] = option_text
        else:
            attempt.user_answers.pop(question_id, None)
        return dict(attempt.user_answers)

    def focus(self, question_id: str) -> None:
        """현재 보는 문제를 바꾸고, 이전 문제의 체류 시간을 누적한다."""
        attempt = self._require_in_progress()
        if self.test.find_question(question_id) is None:
            raise ValidationError(f"Unknown question: {question_id}")
        self._flush_focus(attempt)
        attempt.current_question_id = question_id

    def _flush_focus(self, attempt: Attempt) -> None:
        now = self._clock()
        if attempt.current_question_id is not None and attempt.focused_at is not None:
            spent = max(0.0, now - attempt.focused_at)
            qid = attempt.current_question_id
            attempt.question_elapsed[qid] = attempt.question_elapsed.get(qid, 0.0) + spent
        attempt.focused_at = now

    def is_all_answered(self) -> bool:
        if self.test is None or self.attempt is None:
            return False
        return all(self.attempt.user_answers.get(q.id) for q in self.test.questions)

    # ── 시간 ─────────────────────────────────────────────────────────────────

    def elapsed_seconds(self) -> float:
        if self.attempt is None or self.attempt.start_time is None:
            return 0.0
        if self.attempt.time_taken is not None:
            return float(self.attempt.time_taken.total_seconds)
        return timer.elapsed(self.attempt.start_time, self._clock())

    def remaining_seconds(self) -> Optional[float]:
        """남은 시간. 제한 시간이 없으면 None."""
        if self.time_limit_seconds <= 0:
            return None
        return max(0.0, self.time_limit_seconds - self.elapsed_seconds())

    def time_taken(self) -> TimeTaken:
        """지금까지의 소요 시간. 제출 후에는 확정된 값."""
        if self.attempt is None and self.last_result is not None:
            return self.last_result.time_taken
        return TimeTaken.from_seconds(self.elapsed_seconds())

    def is_time_up(self) -> bool:
        remaining = self.remaining_seconds()
        return remaining is not None and remaining <= 0

    def should_warn(self) -> bool:
        remaining = self.remaining_seconds()
        return (
            self.attempt is not None
            and self.attempt.is_in_progress
            and remaining is not None
            and 0 < remaining <= self.warning_seconds
        )

    # ── 제출 ─────────────────────────────────────────────────────────────────

    @property
    def can_submit(self) -> bool:
        """제출 버튼 활성 여부. 전송 중이거나 이미 저장 완료면 False."""
        if self._submitting or self.load_error is not None:
            return False
        return self.attempt is not None and (
            self.attempt.is_in_progress or self.pending_result is not None
        )

    def _finalize(self, attempt: Attempt) -> TestResult:
        """IN_PROGRESS → SUBMITTED. 시간 확정 후 한 번만 채점."""
        self._flush_focus(attempt)
        now = self._clock()
        seconds = timer.elapsed(attempt.start_time, now)
        if self.time_limit_seconds > 0:
            seconds = min(seconds, self.time_limit_seconds)
        attempt.time_taken = TimeTaken.from_seconds(seconds)
        attempt.submitted_at = datetime.fromtimestamp(now, tz=timezone.utc)
        attempt.status = AttemptStatus.SUBMITTED
        result = build_result(
            self.test.questions,
            attempt.user_answers,
            attempt.time_taken,
            attempt.submitted_at,
            test_id=self.test.id or None,
        )
        logger.info(
            f"채점 완료: {attempt.registrant_email} "
            f"{result.score}/{result.total_questions} ({result.percentage}%)"
        )
        return result

    async def submit(self) -> TestResult:
        """
        제출하고 결과를 저장한다.

        Returns:
            저장된 TestResult.

        Raises:
            RuntimeError:   이전 submit() 이 아직 진행 중.
            ValidationError: 제출할 Attempt 가 없음.
            AuthError / RateLimitError / NotFoundOrServerError:
                저장 실패. 결과는 pending_result 에 남고 다시 submit() 할 수 있다.
        """
        if self._submitting:
            raise RuntimeError("Submission already in progress")
        self.require_test()
        attempt = self.attempt
        if attempt is None:
            raise ValidationError("There is no attempt to submit.")

        if attempt.is_in_progress:
            self.pending_result = self._finalize(attempt)
        elif self.pending_result is None:
            raise ValidationError("Test is not in progress.")

        result = self.pending_result
        self._auto_submit_due = False
        self._submitting = True
        try:
            await self._recorder.record_result(attempt.registrant_email, result)
        except FreeTestError:
            logger.warning(f"결과 저장 실패, 재전송 대기: {attempt.registrant_email}")
            raise
        finally:
            self._submitting = False

        self.last_result = result
        self.last_answers = dict(attempt.user_answers)
        self.pending_result = None
        self.attempt = None
        return result

    def _expire_if_due(self) -> bool:
        """진행 중인데 제한 시간이 지났으면 채점을 확정하고 자동 제출 대상으로 표시."""
        attempt = self.attempt
        if attempt is None or not attempt.is_in_progress or not self.is_time_up():
            return False
        logger.info(f"제한 시간 종료: {attempt.registrant_email}")
        self.pending_result = self._finalize(attempt)
        self._auto_submit_due = True
        return True

    async def check_deadline(self) -> Optional[TestResult]:
        """
        제한 시간이 지났으면 자동 제출한다.
        만료로 채점만 확정되고 아직 보내지 않은 결과도 여기서 보낸다.
        자동 전송은 한 번만 시도하고, 실패하면 pending_result 로 남아 submit() 을 기다린다.

        Returns:
            저장된 TestResult. 제출할 것이 없으면 None.
        """
        if self._submitting:
            return None
        self._expire_if_due()
        if not self._auto_submit_due:
            return None
        logger.info(f"자동 제출: {self.attempt.registrant_email}")
        return await self.submit()

    def abandon(self) -> None:
        """진행 중이거나 저장 대기 중인 응시를 버린다."""
        if self.attempt is not None:
            logger.info(f"응시 포기: {self.attempt.registrant_email or '-'}")
        self.attempt = Attempt() if self.test is not None else None
        self.pending_result = None
        self._auto_submit_due = False

    # ── 화면용 ───────────────────────────────────────────────────────────────

    def public_questions(self) -> list:
        """정답을 비운 문제 리스트 (응시 중 화면 표시용)."""
        test = self.require_test()
        return [q.model_copy(update={"correct_answer": ""}) for q in test.questions]

    def sections(self) -> List[Dict[str, object]]:
        """
        문제를 유형별로 묶고 questions_per_page 단위로 나눈다.

        Returns:
            [{"type": str, "pages": [[question, ...], ...]}, ...]
            유형은 테스트에 처음 등장한 순서.
        """
        grouped: Dict[str, list] = {}
        for q in self.public_questions():
            grouped.setdefault(str(q.type), []).append(q)

        size = self.questions_per_page
        return [
            {
                "type": qtype,
                "pages": [questions[i:i + size] for i in range(0, len(questions), size)],
            }
            for qtype, questions in grouped.items()
        ]
