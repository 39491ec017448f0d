"""
Shared fixtures: an in-memory stand-in for the backend REST API and sample tests.
"""

import pytest

from free_test.errors import NotFoundOrServerError
from free_test.models.question_model import FreeTest, drop_unknown_questions, parse_question
from free_test.models.result_model import Registrant


SAMPLE_TEST_ID = "67e79f28f9e4c1541848651a"


def sample_test_data():
    return {
        "_id": SAMPLE_TEST_ID,
        "title": "English Placement Test",
        "readingPassage": "Tom lives in a small village near the sea.",
        "questions": [
            {
                "id": "q1",
                "type": "pronunciation",
                "questionText": "Choose the word whose underlined part is pronounced differently.",
                "options": [
                    {"text": "cat", "underlinedIndexes": [1, 1]},
                    {"text": "hat", "underlinedIndexes": [1, 1]},
                    {"text": "late", "underlinedIndexes": [1, 1]},
                    {"text": "map", "underlinedIndexes": [1, 1]},
                ],
                "correctAnswer": "late",
            },
            {
                "id": "q2",
                "type": "stress",
                "questionText": "Choose the word with a different stress pattern.",
                "options": [{"text": "begin"}, {"text": "happy"}, {"text": "table"}, {"text": "water"}],
                "correctAnswer": "begin",
            },
            {
                "id": "q3",
                "type": "fill_in_blank",
                "questionText": "She ___ to school every day.",
                "options": [{"text": "go"}, {"text": "goes"}, {"text": "going"}, {"text": "gone"}],
                "correctAnswer": "goes",
            },
            {
                "id": "q4",
                "type": "error_identification",
                "questionText": "He have lived here since 2010.",
                "options": [{"text": "He"}, {"text": "have"}, {"text": "lived"}, {"text": "since"}],
                "correctAnswer": "have",
            },
            {
                "id": "q5",
                "type": "reading_comprehension",
                "questionText": "Where does Tom live?",
                "options": [{"text": "In a city"}, {"text": "Near the sea"}, {"text": "In the mountains"}],
                "correctAnswer": "Near the sea",
            },
        ],
    }


class FakeApi:
    """Backend double. Mirrors TestApiClient's method surface."""

    def __init__(self, test_data=None):
        data = test_data if test_data is not None else sample_test_data()
        self.tests = {data["_id"]: data}
        self.users = {}
        self.top_users = []
        self.saved_results = []
        self.registrations = []
        self.basic_info_calls = []
        self.errors = {}
        self.calls = []

    def fail(self, method, error):
        """Make the next call to `method` raise `error`."""
        self.errors[method] = error

    def _maybe_fail(self, method):
        self.calls.append(method)
        error = self.errors.pop(method, None)
        if error is not None:
            raise error

    def _test(self, test_id):
        if test_id not in self.tests:
            raise NotFoundOrServerError("Test not found", 404)
        return self.tests[test_id]

    def get_test(self, test_id, skip_unknown_types=False):
        self._maybe_fail("get_test")
        data = self._test(test_id)
        if skip_unknown_types:
            data, _ = drop_unknown_questions(data)
        return FreeTest.model_validate(data)

    def add_question(self, test_id, question):
        self._maybe_fail("add_question")
        data = self._test(test_id)
        if any(q["id"] == question.id for q in data["questions"]):
            raise NotFoundOrServerError("Question ID already exists in this test", 400)
        raw = question.model_dump(mode="json", by_alias=True, exclude_none=True)
        data["questions"].append(raw)
        return parse_question(raw)

    def update_question(self, test_id, question_id, question):
        self._maybe_fail("update_question")
        data = self._test(test_id)
        for index, q in enumerate(data["questions"]):
            if q["id"] == question_id:
                raw = question.model_dump(mode="json", by_alias=True, exclude_none=True)
                data["questions"][index] = raw
                return parse_question(raw)
        raise NotFoundOrServerError("Question not found", 404)

    def delete_question(self, test_id, question_id):
        self._maybe_fail("delete_question")
        data = self._test(test_id)
        before = len(data["questions"])
        data["questions"] = [q for q in data["questions"] if q["id"] != question_id]
        if len(data["questions"]) == before:
            raise NotFoundOrServerError("Question not found", 404)
        return True

    def update_basic_info(self, test_id, info):
        self._maybe_fail("update_basic_info")
        self.basic_info_calls.append(dict(info))
        data = self._test(test_id)
        data.update(info)
        return {"_id": test_id, "title": data["title"], "readingPassage": data.get("readingPassage")}

    def register_user(self, registrant):
        self._maybe_fail("register_user")
        self.registrations.append(registrant)
        user = self.users.setdefault(registrant.email, {"testHistory": []})
        user.update(registrant.registration_payload())
        return {"userId": registrant.email, "message": "User test registered successfully"}

    def save_result(self, email, result):
        self._maybe_fail("save_result")
        self.saved_results.append((email, result))
        user = self.users.setdefault(email, {"email": email, "testHistory": []})
        user["testHistory"].append(result.model_dump(mode="json", by_alias=True))
        return {"message": "Test result saved successfully"}

    def get_user_test(self, email):
        self._maybe_fail("get_user_test")
        if email not in self.users:
            raise NotFoundOrServerError("User test data not found", 404)
        return Registrant.model_validate(self.users[email])

    def get_top_users(self):
        self._maybe_fail("get_top_users")
        return list(self.top_users)


class FakeClock:
    """Manually advanced clock (Unix seconds)."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_test():
    return FreeTest.model_validate(sample_test_data())
