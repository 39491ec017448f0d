"""
models/result_model.py

응시 결과(TestResult)와 응시자(Registrant) 모델.
TestResult 는 생성 후 변경할 수 없다 (frozen). 응시 이력은 추가만 가능.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9]{8,15}$")


class TimeTaken(BaseModel):
    """소요 시간. 분/초와 미리 계산된 총 초."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    minutes: int = 0
    seconds: int = 0
    total_seconds: int = 0

    @classmethod
    def from_seconds(cls, total_seconds: float) -> "TimeTaken":
        """경과 초(소수 허용) → TimeTaken. 소수점 이하는 버린다."""
        total = max(0, int(total_seconds))
        return cls(minutes=total // 60, seconds=total % 60, total_seconds=total)


class TestResult(BaseModel):
    """
    제출된 응시 1회의 결과.

    Attributes:
        score:           정답 수.
        total_questions: 전체 문제 수.
        percentage:      round(100 * score / total_questions), 반올림은 half-up.
        time_taken:      소요 시간.
        submitted_at:    제출 시각 (UTC). 서버 이력에 없으면 None.
        test_id:         응시한 테스트 ID (서버 이력에는 없을 수 있음).
    """

    __test__ = False  # pytest 수집 대상 아님

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    score: int = Field(..., ge=0)
    total_questions: int = Field(..., ge=0)
    percentage: int = Field(..., ge=0, le=100)
    time_taken: TimeTaken
    submitted_at: Optional[datetime] = None
    test_id: Optional[str] = None

    @field_validator("time_taken", mode="before")
    @classmethod
    def accept_plain_seconds(cls, v: Any) -> Any:
        """이력 API 가 timeTaken 을 초 단위 숫자로 주는 경우도 허용한다."""
        if isinstance(v, (int, float)):
            return TimeTaken.from_seconds(v)
        return v

    @field_validator("submitted_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """시간대가 없는 서버 시각은 UTC 로 본다 (이력 정렬 시 비교 가능하도록)."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class Registrant(BaseModel):
    """
    테스트 응시를 위해 연락처를 등록한 사람.
    fullName / email / phone 은 등록 게이트에서 필수. address 는 선택.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    registered_at: Optional[datetime] = None
    test_history: List[TestResult] = Field(default_factory=list)

    def missing_required_fields(self) -> List[str]:
        return [
            name
            for name in ("full_name", "email", "phone")
            if not getattr(self, name).strip()
        ]

    def format_errors(self) -> Dict[str, str]:
        """
        입력은 되어 있지만 형식이 틀린 필드. {필드명: 안내 문구}
        빈 값은 missing_required_fields() 가 따로 다룬다.
        """
        errors = {}
        if self.email.strip() and not EMAIL_PATTERN.fullmatch(self.email):
            errors["email"] = "Invalid email format"
        if self.phone.strip() and not PHONE_PATTERN.fullmatch(self.phone):
            errors["phone"] = "Invalid phone format (8-15 digits)"
        return errors

    def registration_payload(self) -> dict:
        """등록 API 요청 본문 (이력 제외)."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            include={"full_name", "email", "phone", "address"},
        )


class TopPerformer(BaseModel):
    """리더보드 한 줄 (응시자별 최고 기록)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: Optional[str] = None
    full_name: str = ""
    email: str = ""
    best_score: int = 0
    total_questions: int = 0
    percentage: int = 0
    time_taken: Optional[TimeTaken] = None
    submitted_at: Optional[datetime] = None

    @field_validator("time_taken", mode="before")
    @classmethod
    def accept_plain_seconds(cls, v: Any) -> Any:
        if isinstance(v, (int, float)):
            return TimeTaken.from_seconds(v)
        return v
