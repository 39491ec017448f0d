"""
models/question_model.py

무료 영어 테스트 문제 모델.
문제 유형(type)별 태그드 유니온 — Pydantic v2 discriminated union 적용.
JSON 필드는 camelCase(questionText, correctAnswer ...), 파이썬 속성은 snake_case.

편집 화면이 미완성 초안을 그대로 담을 수 있도록 모델 자체는
필수값/정답 일치 여부를 강제하지 않는다. 그 검증은
services/question_validator.py 가 담당한다.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class QuestionType(str, Enum):
    PRONUNCIATION = "pronunciation"
    STRESS = "stress"
    FILL_IN_BLANK = "fill_in_blank"
    ERROR_IDENTIFICATION = "error_identification"
    READING_COMPREHENSION = "reading_comprehension"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Option(_CamelModel):
    """
    보기(선지) 하나.

    Attributes:
        text:               보기 문자열.
        underlined_indexes: 밑줄 범위 [start, end] (양 끝 포함). 발음/강세 문제 전용.
    """
    text: str = ""
    underlined_indexes: Optional[List[int]] = Field(
        None,
        description="밑줄 범위 [start, end], 양 끝 포함 (pronunciation/stress 전용)"
    )

    def underline_range(self) -> Optional[Tuple[int, int]]:
        """[start, end] 쌍을 튜플로 반환. 범위가 없거나 비어 있으면 None."""
        if not self.underlined_indexes or len(self.underlined_indexes) < 2:
            return None
        return self.underlined_indexes[0], self.underlined_indexes[1]


class _QuestionBase(_CamelModel):
    id: str = Field(
        "",
        description="테스트 내 고유 문제 ID (예: q_1712345678901_42)"
    )
    question_text: str = Field(
        "",
        description="발문"
    )
    options: List[Option] = Field(
        default_factory=list,
        description="보기 리스트. 순서가 곧 화면 표시 순서"
    )
    correct_answer: str = Field(
        "",
        description="정답 보기의 text (대소문자 구분, trim 하지 않음)"
    )

    def option_texts(self) -> List[str]:
        return [opt.text for opt in self.options]


class PronunciationQuestion(_QuestionBase):
    """밑줄 친 부분의 발음이 다른 단어 고르기."""
    type: Literal["pronunciation"] = "pronunciation"


class StressQuestion(_QuestionBase):
    """강세 위치가 다른 단어 고르기."""
    type: Literal["stress"] = "stress"


class FillInBlankQuestion(_QuestionBase):
    type: Literal["fill_in_blank"] = "fill_in_blank"


class ReadingComprehensionQuestion(_QuestionBase):
    """테스트의 reading_passage 를 지문으로 사용하는 독해 문제."""
    type: Literal["reading_comprehension"] = "reading_comprehension"


class ErrorIdentificationQuestion(_QuestionBase):
    """
    문장 속 밑줄 친 부분 중 틀린 곳 고르기.

    underlined_indexes 는 보기별 밑줄이 아니라 question_text 안의
    [start, end] 범위 리스트. 서버가 주지 않으면 derive_error_positions() 로 계산.
    """
    type: Literal["error_identification"] = "error_identification"
    underlined_indexes: Optional[List[List[int]]] = Field(
        None,
        description="question_text 내 오류 후보 구간 [[start, end], ...]"
    )

    def derive_error_positions(self) -> List[List[int]]:
        """
        밑줄 구간을 반환한다.
        명시된 구간이 없으면 각 보기 text 가 question_text 에서 처음 나타나는 위치로 계산.
        찾을 수 없는 보기는 건너뛴다.
        """
        if self.underlined_indexes:
            return [list(pair) for pair in self.underlined_indexes]

        positions: List[List[int]] = []
        for opt in self.options:
            if not opt.text:
                continue
            start = self.question_text.find(opt.text)
            if start != -1:
                positions.append([start, start + len(opt.text) - 1])
        return positions


UNDERLINED_OPTION_TYPES = (QuestionType.PRONUNCIATION, QuestionType.STRESS)

Question = Annotated[
    Union[
        PronunciationQuestion,
        StressQuestion,
        FillInBlankQuestion,
        ErrorIdentificationQuestion,
        ReadingComprehensionQuestion,
    ],
    Field(discriminator="type"),
]

QUESTION_CLASSES = {
    QuestionType.PRONUNCIATION: PronunciationQuestion,
    QuestionType.STRESS: StressQuestion,
    QuestionType.FILL_IN_BLANK: FillInBlankQuestion,
    QuestionType.ERROR_IDENTIFICATION: ErrorIdentificationQuestion,
    QuestionType.READING_COMPREHENSION: ReadingComprehensionQuestion,
}

_question_adapter = TypeAdapter(Question)


class FreeTest(_CamelModel):
    """
    무료 테스트 한 세트.

    Attributes:
        id:              테스트 ID (서버 JSON 에서는 "_id").
        title:           테스트 제목.
        reading_passage: 독해 지문. reading_comprehension 문제에만 필요.
        questions:       문제 리스트 (순서 유지).
    """
    id: str = Field("", alias="_id")
    title: str = ""
    reading_passage: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)

    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions]

    def find_question(self, question_id: str):
        return next((q for q in self.questions if q.id == question_id), None)


def parse_question(data: Dict[str, Any]):
    """서버 JSON(dict) → 유형별 Question 인스턴스."""
    return _question_adapter.validate_python(data)


def dump_question(question) -> Dict[str, Any]:
    """Question → 전송용 camelCase dict. 보기 순서 보존."""
    return question.model_dump(mode="json", by_alias=True, exclude_none=True)


def underline_segments(text: str, start: int, end: int) -> Tuple[str, str, str]:
    """
    text 를 (앞, 밑줄 부분, 뒤) 세 조각으로 나눈다. end 는 포함 인덱스.
    표시 계층이 밑줄을 그릴 때 사용.
    """
    return text[:start], text[start:end + 1], text[end + 1:]


def underline_pieces(text: str, spans) -> List[Dict[str, Any]]:
    """
    여러 밑줄 구간을 적용한 조각 리스트.

    Args:
        text:  원문.
        spans: [start, end] 쌍들 (end 포함). 앞 구간과 겹치는 구간은 무시.

    Returns:
        [{"text": str, "underlined": bool}, ...]  빈 조각은 제외.
    """
    pieces: List[Dict[str, Any]] = []
    cursor = 0
    for start, end in sorted(tuple(span) for span in spans):
        if start < cursor:
            continue
        before, marked, _ = underline_segments(text, start, end)
        pieces.append({"text": before[cursor:], "underlined": False})
        pieces.append({"text": marked, "underlined": True})
        cursor = end + 1
    pieces.append({"text": text[cursor:], "underlined": False})
    return [p for p in pieces if p["text"]]


KNOWN_QUESTION_TYPES = frozenset(t.value for t in QuestionType)


def drop_unknown_questions(data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    서버 테스트 JSON 에서 지원하지 않는 유형(예: multi_choice)의 문제를 뺀다.

    Returns:
        (문제를 걸러낸 새 dict, 제외된 문제 ID 리스트)
    """
    kept, dropped = [], []
    for raw in data.get("questions") or []:
        if isinstance(raw, dict) and raw.get("type") not in KNOWN_QUESTION_TYPES:
            dropped.append(str(raw.get("id", "")))
        else:
            kept.append(raw)
    return {**data, "questions": kept}, dropped
