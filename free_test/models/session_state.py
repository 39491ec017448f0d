"""
models/session_state.py

응시(Attempt) 진행 상태를 담는 답안지 모델.
Pydantic BaseModel 기반. 클라이언트 메모리에만 존재하며 저장되지 않는다.
상태 전이 규칙은 services/delivery_engine.py 가 담당하고, 이 모델은 데이터만 가진다.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

from free_test.models.result_model import TimeTaken


class AttemptStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class Attempt(BaseModel):
    """
    응시자 한 명의 테스트 진행 상태.

    Attributes:
        registrant_email:    등록된 응시자 이메일 (응시자 식별자).
        status:              NOT_STARTED → IN_PROGRESS → SUBMITTED.
        user_answers:        답안지. {question.id: 선택한 보기 text}
        start_time:          응시 시작 시각 (Unix timestamp). 시작 전에는 None.
        current_question_id: 현재 보고 있는 문제 ID.
        focused_at:          현재 문제를 보기 시작한 시각 (Unix timestamp).
        question_elapsed:    문제별 누적 체류 시간(초). {question.id: seconds}
        submitted_at:        제출 시각.
        time_taken:          제출 시점에 확정된 소요 시간.
    """

    registrant_email: str = ""
    status: AttemptStatus = AttemptStatus.NOT_STARTED
    user_answers: Dict[str, str] = Field(
        default_factory=dict,
        description="key: question.id, value: 선택한 보기 text"
    )
    start_time: Optional[float] = None
    current_question_id: Optional[str] = None
    focused_at: Optional[float] = None
    question_elapsed: Dict[str, float] = Field(default_factory=dict)
    submitted_at: Optional[datetime] = None
    time_taken: Optional[TimeTaken] = None

    @property
    def is_in_progress(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS

    @property
    def is_submitted(self) -> bool:
        return self.status == AttemptStatus.SUBMITTED

    def answered_count(self) -> int:
        return len(self.user_answers)
