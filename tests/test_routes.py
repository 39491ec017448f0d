"""
HTTP-level tests: candidate flow, error mapping and admin editing routes.
"""

import time

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from free_test.errors import NotFoundOrServerError, RateLimitError
from free_test.services.authoring_service import DUPLICATE_ID_MESSAGE
from free_test.services.delivery_engine import TIME_UP_MESSAGE

from conftest import SAMPLE_TEST_ID

REGISTRANT = {"full_name": "An Nguyen", "email": "an@example.com", "phone": "0901234567"}


@pytest.fixture
def client(api, clock):
    app = create_app(
        api_factory=lambda: api,
        clock=clock,
        default_test_id=SAMPLE_TEST_ID,
        time_limit_seconds=600,
        warning_seconds=60,
        deadline_check_interval=3600,
    )
    with TestClient(app) as c:
        yield c


def _start(client):
    assert client.post("/api/load-test", json={}).status_code == 200
    assert client.post("/api/register", json=REGISTRANT).status_code == 200


class TestCandidateFlow:

    def test_full_attempt(self, client, api, clock):
        resp = client.post("/api/load-test", json={})
        assert resp.json()["total"] == 5
        assert resp.json()["question_ids"] == ["q1", "q2", "q3", "q4", "q5"]

        resp = client.post("/api/register", json=REGISTRANT)
        assert resp.json()["status"] == "in_progress"

        test = client.get("/api/test").json()
        assert [s["type"] for s in test["sections"]][0] == "pronunciation"
        shown = [q for s in test["sections"] for page in s["pages"] for q in page]
        assert len(shown) == 5
        assert all(q["correctAnswer"] == "" for q in shown)

        for qid, answer in [("q1", "late"), ("q2", "begin"), ("q3", "go")]:
            assert client.post("/api/save-answer", json={"question_id": qid, "answer": answer}).status_code == 200

        clock.advance(65)
        state = client.get("/api/exam-state").json()
        assert state["answered_count"] == 3
        assert state["remaining_clock"] == "08:55"
        assert state["time_taken"] == {"minutes": 1, "seconds": 5, "totalSeconds": 65}
        assert state["registered"] is True
        assert state["can_submit"] is True

        resp = client.post("/api/submit-exam")
        assert resp.status_code == 200
        body = resp.json()
        assert body["result"]["score"] == 2
        assert body["result"]["percentage"] == 40
        assert body["result"]["timeTaken"]["totalSeconds"] == 65
        assert len(body["type_scores"]) == 5
        assert [r["question_id"] for r in body["review"]] == ["q3", "q4", "q5"]
        assert client.get("/api/result").json()["result"] == body["result"]

        history = client.get("/api/history/an@example.com").json()["history"]
        assert [h["score"] for h in history] == [2]

        assert client.post("/api/submit-exam").status_code == 400

    def test_sessions_are_isolated(self, api, clock):
        app = create_app(api_factory=lambda: api, clock=clock, default_test_id=SAMPLE_TEST_ID)
        with TestClient(app) as first, TestClient(app) as second:
            _start(first)
            second.post("/api/load-test", json={})
            assert first.get("/api/exam-state").json()["status"] == "in_progress"
            assert second.get("/api/exam-state").json()["status"] == "not_started"

    def test_unknown_user_history_is_empty(self, client):
        resp = client.get("/api/history/new@user.com")
        assert resp.status_code == 200
        assert resp.json()["history"] == []

    def test_reset_starts_over(self, client):
        _start(client)
        client.post("/api/reset")
        assert client.get("/api/exam-state").json()["status"] == "not_started"


    def test_question_display_carries_underlines(self, client):
        _start(client)
        test = client.get("/api/test").json()
        shown = {q["id"]: q for s in test["sections"] for page in s["pages"] for q in page}

        q4 = shown["q4"]
        assert q4["underlinedIndexes"] == [[0, 1], [3, 6], [8, 12], [19, 23]]
        assert [p["text"] for p in q4["segments"] if p["underlined"]] == ["He", "have", "lived", "since"]

        cat = shown["q1"]["options"][0]
        assert cat["segments"] == [
            {"text": "c", "underlined": False},
            {"text": "a", "underlined": True},
            {"text": "t", "underlined": False},
        ]
        assert "segments" not in shown["q2"]["options"][0]

    def test_result_missing_before_submit(self, client):
        _start(client)
        assert client.get("/api/result").status_code == 404

    def test_register_rejects_malformed_email(self, client, api):
        client.post("/api/load-test", json={})
        resp = client.post("/api/register", json=dict(REGISTRANT, email="an.example.com"))
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Invalid email format", "kind": "validation"}
        assert "register_user" not in api.calls

    def test_register_twice_sends_once(self, client, api):
        _start(client)
        resp = client.post("/api/register", json=REGISTRANT)
        assert resp.status_code == 400
        assert api.calls.count("register_user") == 1


class TestDeadline:

    def test_answer_after_time_limit_is_rejected_and_submitted(self, client, api, clock):
        _start(client)
        client.post("/api/save-answer", json={"question_id": "q1", "answer": "late"})
        clock.advance(3600)

        resp = client.post("/api/save-answer", json={"question_id": "q2", "answer": "begin"})
        assert resp.status_code == 400
        assert resp.json() == {"detail": TIME_UP_MESSAGE, "kind": "validation"}
        assert len(api.saved_results) == 1
        email, saved = api.saved_results[0]
        assert email == "an@example.com"
        assert saved.score == 1
        assert saved.time_taken.total_seconds == 600

        state = client.get("/api/exam-state").json()
        assert state["status"] == "submitted"
        assert state["has_result"] is True
        assert state["time_taken"]["totalSeconds"] == 600

        result = client.get("/api/result").json()
        assert result["result"]["timeTaken"]["totalSeconds"] == 600
        assert [r["question_id"] for r in result["review"]] == ["q2", "q3", "q4", "q5"]

    def test_exam_state_submits_expired_attempt(self, client, api, clock):
        _start(client)
        clock.advance(601)
        state = client.get("/api/exam-state").json()
        assert state["status"] == "submitted"
        assert state["can_submit"] is False
        assert len(api.saved_results) == 1

    def test_exam_state_reports_failed_auto_submit(self, client, api, clock):
        _start(client)
        clock.advance(601)
        api.fail("save_result", NotFoundOrServerError("down", 500))
        state = client.get("/api/exam-state").json()
        assert state["pending_result"] is True
        assert state["can_submit"] is True

        resp = client.post("/api/submit-exam")
        assert resp.status_code == 200
        assert resp.json()["result"]["timeTaken"]["totalSeconds"] == 600

    def test_background_sweep_submits_without_requests(self, api, clock):
        app = create_app(
            api_factory=lambda: api,
            clock=clock,
            default_test_id=SAMPLE_TEST_ID,
            time_limit_seconds=600,
            deadline_check_interval=0.01,
        )
        with TestClient(app) as c:
            _start(c)
            clock.advance(601)
            deadline = time.monotonic() + 5
            while not api.saved_results and time.monotonic() < deadline:
                time.sleep(0.02)
        assert len(api.saved_results) == 1
        assert api.saved_results[0][1].time_taken.total_seconds == 600

class TestErrorMapping:

    def test_missing_field_is_validation(self, client):
        client.post("/api/load-test", json={})
        resp = client.post("/api/register", json=dict(REGISTRANT, phone=""))
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Please fill in all required fields.", "kind": "validation"}

    def test_rate_limit(self, client, api):
        client.post("/api/load-test", json={})
        api.fail("register_user", RateLimitError("Too many requests"))
        resp = client.post("/api/register", json=REGISTRANT)
        assert resp.status_code == 429
        assert resp.json()["kind"] == "rate_limit"

    def test_load_failure(self, client, api):
        api.fail("get_test", NotFoundOrServerError("boom", 500))
        resp = client.post("/api/load-test", json={})
        assert resp.status_code == 503
        assert resp.json() == {"detail": "Failed to load test. Please try again later.", "kind": "load"}

    def test_failed_save_can_be_retried(self, client, api):
        _start(client)
        api.fail("save_result", NotFoundOrServerError("down", 500))
        resp = client.post("/api/submit-exam")
        assert resp.status_code == 502
        assert resp.json()["kind"] == "server"
        assert client.get("/api/exam-state").json()["pending_result"] is True

        resp = client.post("/api/submit-exam")
        assert resp.status_code == 200
        assert len(api.saved_results) == 1

    def test_bad_answer(self, client):
        _start(client)
        resp = client.post("/api/save-answer", json={"question_id": "q1", "answer": "nope"})
        assert resp.status_code == 400


class TestAdmin:

    NEW_QUESTION = {
        "id": "q_new",
        "type": "fill_in_blank",
        "questionText": "I ___ a student.",
        "options": [{"text": "is"}, {"text": "am"}, {"text": "are"}],
        "correctAnswer": "am",
    }

    def test_load_add_update_delete(self, client, api):
        loaded = client.post(f"/api/admin/tests/{SAMPLE_TEST_ID}/load").json()
        assert loaded["_id"] == SAMPLE_TEST_ID
        assert len(loaded["questions"]) == 5

        resp = client.post(f"/api/admin/tests/{SAMPLE_TEST_ID}/questions", json={"question": self.NEW_QUESTION})
        assert resp.status_code == 201
        assert resp.json()["question"]["id"] == "q_new"

        resp = client.post(f"/api/admin/tests/{SAMPLE_TEST_ID}/questions", json={"question": self.NEW_QUESTION})
        assert resp.status_code == 400
        assert resp.json()["detail"] == DUPLICATE_ID_MESSAGE

        edited = dict(self.NEW_QUESTION, questionText="You ___ a student.", correctAnswer="are")
        resp = client.put(f"/api/admin/tests/{SAMPLE_TEST_ID}/questions/q_new", json={"question": edited})
        assert resp.json()["question"]["questionText"] == "You ___ a student."

        assert client.delete(f"/api/admin/tests/{SAMPLE_TEST_ID}/questions/q_new").json() == {"ok": True}
        assert len(api.tests[SAMPLE_TEST_ID]["questions"]) == 5

    def test_delete_missing_is_404(self, client):
        resp = client.delete(f"/api/admin/tests/{SAMPLE_TEST_ID}/questions/nope")
        assert resp.status_code == 404

    def test_basic_info(self, client, api):
        resp = client.patch(f"/api/admin/tests/{SAMPLE_TEST_ID}/basic-info", json={"title": "Placement v2"})
        assert resp.json()["test"]["title"] == "Placement v2"
        assert api.basic_info_calls == [{"title": "Placement v2"}]

    def test_validate(self, client):
        bad = dict(self.NEW_QUESTION, correctAnswer="be")
        assert client.post("/api/admin/validate", json={"question": bad}).json() == {
            "valid": False,
            "error_message": "Correct answer must match one of the options",
        }
        assert client.post("/api/admin/validate", json={"question": self.NEW_QUESTION}).json()["valid"] is True

    def test_unknown_question_type_rejected(self, client):
        bad = dict(self.NEW_QUESTION, type="essay")
        assert client.post("/api/admin/validate", json={"question": bad}).status_code == 422

    def test_new_question_template(self, client):
        draft = client.post("/api/admin/new-question", json={"type": "error_identification"}).json()
        assert draft["type"] == "error_identification"
        assert draft["id"].startswith("q_")
        assert len(draft["options"]) == 4
        assert draft["underlinedIndexes"] == [[0, 0]] * 4
