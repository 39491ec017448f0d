"""
services/exam_service.py

채점 및 결과 분석 비즈니스 로직.
상태를 갖지 않는 함수들. 입력 문제와 답안만 보고 결과를 계산한다.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional

from free_test.models.result_model import TestResult, TimeTaken


def calculate_score(questions, user_answers: Dict[str, str]) -> int:
    """
    사용자 답안을 채점하여 정답 수를 반환한다.

    정답 판정 기준: user_answers.get(question.id) == question.correct_answer (정확히 일치)
    응답하지 않은 문제(키 없음)는 오답으로 처리.
    """
    return sum(
        1
        for q in questions
        if q.id in user_answers and user_answers[q.id] == q.correct_answer
    )


def calculate_percentage(score: int, total_questions: int) -> int:
    """
    정답률(%)을 정수로 반환한다.

    반올림은 half-up (x.5 는 올림). 부동소수 오차를 피하려고 정수 연산으로 계산:
        floor(100 * score / total + 0.5) == (200 * score + total) // (2 * total)

    total_questions 가 0 이면 0.
    """
    if total_questions <= 0:
        return 0
    return (200 * score + total_questions) // (2 * total_questions)


def get_incorrect_questions(questions, user_answers: Dict[str, str]) -> list:
    """
    오답 문제 리스트 (미응답 포함). 원본 순서 유지.
    """
    return [q for q in questions if user_answers.get(q.id) != q.correct_answer]


def get_unanswered_questions(questions, user_answers: Dict[str, str]) -> list:
    return [q for q in questions if not user_answers.get(q.id)]


def calculate_type_scores(questions, user_answers: Dict[str, str]) -> List[Dict[str, object]]:
    """
    문제 유형별 점수를 계산하여 반환한다.

    Returns:
        [{"type": str, "total": int, "correct": int,
          "incorrect": int, "unanswered": int, "percentage": int}, ...]
        테스트에 처음 등장한 유형 순서.
    """
    buckets: "OrderedDict[str, Dict[str, int]]" = OrderedDict()

    for q in questions:
        b = buckets.setdefault(
            str(q.type), {"total": 0, "correct": 0, "incorrect": 0, "unanswered": 0}
        )
        b["total"] += 1

        user_ans = user_answers.get(q.id)
        if not user_ans:
            b["unanswered"] += 1
        elif user_ans == q.correct_answer:
            b["correct"] += 1
        else:
            b["incorrect"] += 1

    return [
        {"type": qtype, **b, "percentage": calculate_percentage(b["correct"], b["total"])}
        for qtype, b in buckets.items()
    ]


def build_review(questions, user_answers: Dict[str, str]) -> List[Dict[str, object]]:
    """
    제출 후 해설 화면용. 틀렸거나 답하지 않은 문제마다 정답과 응시자의 선택을 보여준다.

    Returns:
        [{"question_id", "type", "question_text", "correct_answer",
          "user_answer" (미응답이면 None), "unanswered": bool}, ...]
        원본 문제 순서.
    """
    unanswered = {q.id for q in get_unanswered_questions(questions, user_answers)}
    return [
        {
            "question_id": q.id,
            "type": str(q.type),
            "question_text": q.question_text,
            "correct_answer": q.correct_answer,
            "user_answer": user_answers.get(q.id) or None,
            "unanswered": q.id in unanswered,
        }
        for q in get_incorrect_questions(questions, user_answers)
    ]


def build_result(
    questions,
    user_answers: Dict[str, str],
    time_taken: TimeTaken,
    submitted_at: datetime,
    test_id: Optional[str] = None,
) -> TestResult:
    """채점 결과를 불변 TestResult 로 만든다."""
    score = calculate_score(questions, user_answers)
    total = len(questions)
    return TestResult(
        score=score,
        total_questions=total,
        percentage=calculate_percentage(score, total),
        time_taken=time_taken,
        submitted_at=submitted_at,
        test_id=test_id,
    )
