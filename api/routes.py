"""
api/routes.py — FastAPI 엔드포인트

응시자 화면용 (/api/...) 과 관리자 문제 편집용 (/api/admin/...) 라우트.
free_test 오류는 api/app.py 의 예외 핸들러가 HTTP 응답으로 변환한다.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from api.session import SessionState
from free_test.errors import FreeTestError, ValidationError
from free_test.models.question_model import (
    ErrorIdentificationQuestion,
    Question,
    QuestionType,
    dump_question,
    underline_pieces,
)
from free_test.services import timer
from free_test.services.authoring_service import new_question
from free_test.services.delivery_engine import TIME_UP_MESSAGE
from free_test.services.exam_service import build_review, calculate_type_scores
from free_test.services.question_validator import check_underline_ranges, validate_question

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class LoadTestBody(BaseModel):
    test_id: Optional[str] = None

class RegisterBody(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""

class SaveAnswerBody(BaseModel):
    question_id: str
    answer: str = ""

class FocusBody(BaseModel):
    question_id: str

class QuestionBody(BaseModel):
    question: Question

class NewQuestionBody(BaseModel):
    type: QuestionType

class BasicInfoBody(BaseModel):
    title: Optional[str] = None
    reading_passage: Optional[str] = None


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def get_state(request: Request) -> SessionState:
    state = request.app.state.sessions.get_session(request.state.session_id)
    if state is None:
        raise HTTPException(status_code=404, detail="세션이 없습니다.")
    return state


def forward_credentials(request: Request, state: SessionState = Depends(get_state)) -> SessionState:
    """
    관리자 요청의 쿠키(외부 인증 세션)를 백엔드 클라이언트 세션에 옮긴다.
    앱 자체의 세션 쿠키는 제외.
    """
    http_session = getattr(state.api, "session", None)
    if http_session is not None:
        own = request.app.state.session_cookie
        for name, value in request.cookies.items():
            if name != own:
                http_session.cookies.set(name, value)
    return state


def _result_to_dict(result) -> dict:
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


def _display_question(question) -> dict:
    """
    화면 표시용 문제 dict.
    밑줄 범위가 있는 보기에는 segments 를, 오류 식별 문제에는
    오류 후보 구간(underlinedIndexes)과 발문 segments 를 붙인다.
    """
    data = dump_question(question)
    for opt, raw in zip(question.options, data["options"]):
        span = opt.underline_range()
        if span is not None:
            raw["segments"] = underline_pieces(opt.text, [span])
    if isinstance(question, ErrorIdentificationQuestion):
        positions = question.derive_error_positions()
        data["underlinedIndexes"] = positions
        data["segments"] = underline_pieces(question.question_text, positions)
    return data


def _result_payload(engine) -> dict:
    """마지막으로 저장된 결과 + 유형별 점수 + 오답 해설."""
    questions = engine.require_test().questions
    answers = engine.last_answers
    return {
        "ok": True,
        "result": _result_to_dict(engine.last_result),
        "type_scores": calculate_type_scores(questions, answers),
        "review": build_review(questions, answers),
    }


# ── 응시 ─────────────────────────────────────────────────────────────────────

@router.post("/api/load-test")
async def load_test(request: Request, body: LoadTestBody, state: SessionState = Depends(get_state)):
    test_id = body.test_id or request.app.state.default_test_id
    test = await state.engine.load(test_id)
    return {
        "id": test.id,
        "title": test.title,
        "total": len(test.questions),
        "question_ids": test.question_ids(),
        "ok": True,
    }


@router.post("/api/register")
async def register(body: RegisterBody, state: SessionState = Depends(get_state)):
    state.gate.update_form(**body.model_dump())
    attempt = await state.gate.register()
    return {"ok": True, "status": attempt.status.value, "start_time": attempt.start_time}


@router.get("/api/test")
async def get_test(state: SessionState = Depends(get_state)):
    engine = state.engine
    test = engine.require_test()
    sections = [
        {
            "type": section["type"],
            "pages": [[_display_question(q) for q in page] for page in section["pages"]],
        }
        for section in engine.sections()
    ]
    return {
        "id": test.id,
        "title": test.title,
        "reading_passage": test.reading_passage,
        "total": len(test.questions),
        "sections": sections,
    }


@router.post("/api/save-answer")
async def save_answer(body: SaveAnswerBody, state: SessionState = Depends(get_state)):
    if await state.engine.check_deadline() is not None:
        raise ValidationError(TIME_UP_MESSAGE)
    answers = state.engine.select_answer(body.question_id, body.answer)
    return {"ok": True, "answered_count": len(answers)}


@router.post("/api/focus")
async def focus(body: FocusBody, state: SessionState = Depends(get_state)):
    if await state.engine.check_deadline() is not None:
        raise ValidationError(TIME_UP_MESSAGE)
    state.engine.focus(body.question_id)
    return {"ok": True}


@router.get("/api/exam-state")
async def get_exam_state(state: SessionState = Depends(get_state)):
    engine = state.engine
    try:
        await engine.check_deadline()
    except FreeTestError as e:
        # 자동 제출 실패: pending_result 로 남아 있으므로 상태 조회는 계속한다
        logger.warning(f"자동 제출 실패: {e.message}")
    attempt = engine.attempt
    remaining = engine.remaining_seconds()
    return {
        "status": engine.status.value,
        "registered": state.gate.is_registered,
        "total": len(engine.test.questions) if engine.test else 0,
        "answered_count": attempt.answered_count() if attempt else 0,
        "user_answers": dict(attempt.user_answers) if attempt else {},
        "all_answered": engine.is_all_answered(),
        "elapsed_seconds": int(engine.elapsed_seconds()),
        "time_taken": engine.time_taken().model_dump(by_alias=True),
        "remaining_seconds": None if remaining is None else int(remaining),
        "remaining_clock": None if remaining is None else timer.format_clock(remaining),
        "warn": engine.should_warn(),
        "can_submit": engine.can_submit,
        "pending_result": engine.pending_result is not None,
        "has_result": engine.last_result is not None,
    }


@router.post("/api/submit-exam")
async def submit_exam(state: SessionState = Depends(get_state)):
    engine = state.engine
    if engine.attempt is None:
        raise HTTPException(status_code=400, detail="시험 세션이 없습니다.")

    try:
        await engine.submit()
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _result_payload(engine)


@router.get("/api/result")
async def get_result(state: SessionState = Depends(get_state)):
    """마지막 제출 결과 (시간 초과 자동 제출 포함)."""
    if state.engine.last_result is None:
        raise HTTPException(status_code=404, detail="제출된 결과가 없습니다.")
    return _result_payload(state.engine)


@router.post("/api/abandon")
async def abandon(state: SessionState = Depends(get_state)):
    state.engine.abandon()
    return {"ok": True}


@router.get("/api/history/{email}")
async def get_history(email: str, state: SessionState = Depends(get_state)):
    history = await state.recorder.fetch_history(email)
    return {"email": email, "history": [_result_to_dict(r) for r in history]}


@router.get("/api/top-users")
async def get_top_users(request: Request, state: SessionState = Depends(get_state)):
    rows = await state.recorder.fetch_top_performers(request.app.state.top_users_limit)
    return {"top_users": [r.model_dump(mode="json", by_alias=True) for r in rows]}


@router.post("/api/reset")
async def reset_session(request: Request):
    request.app.state.sessions.reset(request.state.session_id)
    return {"ok": True}


# ── 관리자: 문제 편집 ────────────────────────────────────────────────────────

@router.post("/api/admin/tests/{test_id}/load")
async def admin_load_test(test_id: str, state: SessionState = Depends(forward_credentials)):
    test = await state.authoring.load_test(test_id)
    return test.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/api/admin/tests/{test_id}/questions", status_code=201)
async def admin_add_question(test_id: str, body: QuestionBody, state: SessionState = Depends(forward_credentials)):
    created = await state.authoring.add_question(test_id, body.question)
    return {"ok": True, "question": dump_question(created)}


@router.put("/api/admin/tests/{test_id}/questions/{question_id}")
async def admin_update_question(
    test_id: str,
    question_id: str,
    body: QuestionBody,
    state: SessionState = Depends(forward_credentials),
):
    updated = await state.authoring.update_question(test_id, question_id, body.question)
    return {"ok": True, "question": dump_question(updated)}


@router.delete("/api/admin/tests/{test_id}/questions/{question_id}")
async def admin_delete_question(test_id: str, question_id: str, state: SessionState = Depends(forward_credentials)):
    ok = await state.authoring.delete_question(test_id, question_id)
    return {"ok": ok}


@router.patch("/api/admin/tests/{test_id}/basic-info")
async def admin_update_basic_info(test_id: str, body: BasicInfoBody, state: SessionState = Depends(forward_credentials)):
    updated = await state.authoring.update_test_basic_info(
        test_id, title=body.title, reading_passage=body.reading_passage
    )
    return {"ok": True, "test": updated}


@router.post("/api/admin/validate")
async def admin_validate(body: QuestionBody):
    result = validate_question(body.question)
    if result.valid:
        result = check_underline_ranges(body.question)
    return result.model_dump()


@router.post("/api/admin/new-question")
async def admin_new_question(body: NewQuestionBody):
    return dump_question(new_question(body.type))
