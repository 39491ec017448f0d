"""
Tests for question draft validation.
"""

from free_test.models.question_model import (
    ErrorIdentificationQuestion,
    FillInBlankQuestion,
    Option,
    PronunciationQuestion,
    StressQuestion,
)
from free_test.services.question_validator import (
    check_underline_ranges,
    has_duplicate_options,
    requires_reading_passage,
    validate_question,
)


def _question(**overrides):
    fields = {
        "id": "q1",
        "question_text": "Pick one",
        "options": [Option(text="A"), Option(text="B")],
        "correct_answer": "B",
    }
    fields.update(overrides)
    return FillInBlankQuestion(**fields)


class TestValidateQuestion:
    """validate_question runs six ordered checks and reports the first failure."""

    def test_valid_question(self):
        result = validate_question(_question())
        assert result.valid is True
        assert result.error_message is None

    def test_correct_answer_not_in_options(self):
        result = validate_question(_question(correct_answer="C"))
        assert result.valid is False
        assert result.error_message == "Correct answer must match one of the options"

    def test_missing_id(self):
        result = validate_question(_question(id=""))
        assert result.error_message == "Question ID is required"

    def test_missing_question_text(self):
        result = validate_question(_question(question_text=""))
        assert result.error_message == "Question text is required"

    def test_missing_correct_answer(self):
        result = validate_question(_question(correct_answer=""))
        assert result.error_message == "Correct answer is required"

    def test_duplicate_options(self):
        q = _question(options=[Option(text="A"), Option(text="A"), Option(text="B")])
        assert validate_question(q).error_message == "Options must be unique"

    def test_blank_options_are_not_duplicates(self):
        q = _question(options=[Option(text=""), Option(text="  "), Option(text="B")])
        assert validate_question(q).valid is True

    def test_no_options(self):
        q = _question(options=[])
        assert validate_question(q).error_message == "At least one option is required"

    def test_first_failure_wins(self):
        q = _question(id="", question_text="", correct_answer="", options=[])
        assert validate_question(q).error_message == "Question ID is required"

        q = _question(question_text="", correct_answer="Z")
        assert validate_question(q).error_message == "Question text is required"

    def test_duplicates_reported_before_missing_match(self):
        q = _question(options=[Option(text="A"), Option(text="A")], correct_answer="C")
        assert validate_question(q).error_message == "Options must be unique"

    def test_correct_answer_match_is_exact(self):
        assert validate_question(_question(correct_answer="b")).valid is False
        assert validate_question(_question(correct_answer="B ")).valid is False

    def test_validation_is_idempotent(self):
        q = _question(correct_answer="C")
        before = q.model_dump()
        assert validate_question(q) == validate_question(q)
        assert q.model_dump() == before


class TestDuplicateOptions:

    def test_untrimmed_texts_compare_raw(self):
        assert has_duplicate_options(["A", "A "]) is False
        assert has_duplicate_options(["A", "A"]) is True

    def test_empty_texts_ignored(self):
        assert has_duplicate_options(["", "", "x"]) is False


class TestUnderlineRanges:

    def test_option_ranges_within_bounds(self):
        q = PronunciationQuestion(
            id="p1",
            question_text="Pick",
            options=[Option(text="cat", underlined_indexes=[1, 1]), Option(text="late", underlined_indexes=[0, 3])],
            correct_answer="late",
        )
        assert check_underline_ranges(q).valid is True

    def test_end_past_text(self):
        q = StressQuestion(
            id="s1",
            question_text="Pick",
            options=[Option(text="cat", underlined_indexes=[1, 3])],
            correct_answer="cat",
        )
        result = check_underline_ranges(q)
        assert result.valid is False
        assert "option 1" in result.error_message

    def test_start_after_end(self):
        q = StressQuestion(
            id="s1",
            question_text="Pick",
            options=[Option(text="water"), Option(text="begin", underlined_indexes=[3, 1])],
            correct_answer="begin",
        )
        result = check_underline_ranges(q)
        assert result.valid is False
        assert "option 2" in result.error_message

    def test_missing_ranges_pass(self):
        q = PronunciationQuestion(
            id="p1",
            question_text="Pick",
            options=[Option(text="cat"), Option(text="hat", underlined_indexes=[])],
            correct_answer="cat",
        )
        assert check_underline_ranges(q).valid is True

    def test_error_spans_checked_against_question_text(self):
        q = ErrorIdentificationQuestion(
            id="e1",
            question_text="He go home.",
            options=[Option(text="go")],
            correct_answer="go",
            underlined_indexes=[[3, 4], [8, 20]],
        )
        result = check_underline_ranges(q)
        assert result.valid is False
        assert result.error_message == "Underline range 2 is out of bounds"

    def test_plain_types_always_pass(self):
        assert check_underline_ranges(_question()).valid is True


def test_reading_passage_required_only_for_reading_questions(sample_test):
    assert requires_reading_passage(sample_test.questions) is True
    assert requires_reading_passage(sample_test.questions[:4]) is False
