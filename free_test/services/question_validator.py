"""
services/question_validator.py

문제 초안 검증 로직.
순수 함수. 입력을 변경하지 않고, 같은 입력에는 항상 같은 결과를 돌려준다.
"""

from typing import List, Optional

from pydantic import BaseModel

from free_test.models.question_model import (
    UNDERLINED_OPTION_TYPES,
    ErrorIdentificationQuestion,
    QuestionType,
)


class ValidationResult(BaseModel):
    valid: bool
    error_message: Optional[str] = None


def _fail(message: str) -> ValidationResult:
    return ValidationResult(valid=False, error_message=message)


def has_duplicate_options(option_texts: List[str]) -> bool:
    """
    trim 기준으로 비어 있지 않은 보기들 중 text 가 같은 것이 있으면 True.
    비교 자체는 원문 그대로 한다 ("A" 와 "A " 는 다른 보기).
    """
    non_empty = [text for text in option_texts if text.strip()]
    return len(set(non_empty)) != len(non_empty)


def validate_question(question) -> ValidationResult:
    """
    문제 하나를 검증한다. 아래 순서대로 확인하며 첫 실패에서 즉시 반환한다.

    1. id 필수
    2. question_text 필수
    3. correct_answer 필수
    4. 비어 있지 않은 보기끼리 중복 금지
    5. 보기 최소 1개
    6. correct_answer 가 보기 text 중 하나와 정확히 일치 (대소문자 구분, trim 없음)

    Returns:
        ValidationResult(valid=True) 또는 첫 실패 메시지를 담은 결과.
    """
    if not question.id:
        return _fail("Question ID is required")

    if not question.question_text:
        return _fail("Question text is required")

    if not question.correct_answer:
        return _fail("Correct answer is required")

    if has_duplicate_options(question.option_texts()):
        return _fail("Options must be unique")

    if not question.options:
        return _fail("At least one option is required")

    if question.correct_answer not in question.option_texts():
        return _fail("Correct answer must match one of the options")

    return ValidationResult(valid=True)


def _range_ok(pair, text: str) -> bool:
    if pair is None or len(pair) != 2:
        return False
    start, end = pair
    return 0 <= start <= end < len(text)


def check_underline_ranges(question) -> ValidationResult:
    """
    밑줄 범위의 구조적 유효성 검사: 0 <= start <= end < len(text).

    - pronunciation / stress: 보기별 underlined_indexes 를 해당 보기 text 기준으로 검사.
      범위가 없는 보기(빈 리스트 포함)는 통과.
    - error_identification: 문제 수준 underlined_indexes 를 question_text 기준으로 검사.

    validate_question() 과 분리되어 있으며, 저장 직전에 편집 계층이 함께 호출한다.
    """
    if question.type in UNDERLINED_OPTION_TYPES:
        for position, opt in enumerate(question.options, start=1):
            if not opt.underlined_indexes:
                continue
            if not _range_ok(opt.underlined_indexes, opt.text):
                return _fail(f"Underline range of option {position} is out of bounds")

    elif isinstance(question, ErrorIdentificationQuestion) and question.underlined_indexes:
        for position, pair in enumerate(question.underlined_indexes, start=1):
            if not _range_ok(pair, question.question_text):
                return _fail(f"Underline range {position} is out of bounds")

    return ValidationResult(valid=True)


def requires_reading_passage(questions) -> bool:
    """독해 문제가 하나라도 있으면 테스트에 reading_passage 가 필요하다."""
    return any(q.type == QuestionType.READING_COMPREHENSION for q in questions)
