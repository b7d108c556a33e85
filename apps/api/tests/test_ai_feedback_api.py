"""
AI feedback API tests.

Feedback is scoped to the session user, rejected when malformed, and
idempotent per message.
"""

from fastapi.testclient import TestClient

from main import app
from models import AiFeedback
from coach_test_helpers import make_profile, session_cookies


def _payload(**overrides):
    body = {
        "messageId": "msg-abc",
        "rating": "positive",
        "userMessage": "What's my squat max?",
        "aiResponse": "Your squat max is 300 lbs.",
        "intent": "history_question",
        "toolsUsed": ["pr_lookup"],
        "latencyMs": 1200,
    }
    body.update(overrides)
    return body


class TestSubmitFeedback:
    def test_creates_feedback(self, db_session):
        profile = make_profile(db_session)
        with TestClient(app, cookies=session_cookies(profile.id)) as client:
            response = client.post("/v1/ai/feedback", json=_payload())

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["feedback"]["messageId"] == "msg-abc"
        assert data["feedback"]["rating"] == "positive"
        assert data["feedback"]["toolsUsed"] == ["pr_lookup"]

        row = db_session.query(AiFeedback).one()
        assert row.user_id == profile.id
        assert row.latency_ms == 1200

    def test_invalid_rating_is_rejected_and_not_persisted(self, db_session):
        profile = make_profile(db_session)
        with TestClient(app, cookies=session_cookies(profile.id)) as client:
            response = client.post("/v1/ai/feedback", json=_payload(rating="maybe"))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR_RATING"
        assert db_session.query(AiFeedback).count() == 0

    def test_missing_message_id_is_rejected(self, db_session):
        profile = make_profile(db_session)
        body = _payload()
        del body["messageId"]
        with TestClient(app, cookies=session_cookies(profile.id)) as client:
            response = client.post("/v1/ai/feedback", json=body)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR_MESSAGEID"

    def test_duplicate_returns_existing_row(self, db_session):
        profile = make_profile(db_session)
        with TestClient(app, cookies=session_cookies(profile.id)) as client:
            first = client.post("/v1/ai/feedback", json=_payload())
            second = client.post("/v1/ai/feedback", json=_payload(rating="negative"))

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["feedback"]["id"] == first.json()["feedback"]["id"]
        assert second.json()["feedback"]["rating"] == "positive"
        assert db_session.query(AiFeedback).count() == 1

    def test_long_text_is_clipped(self, db_session):
        profile = make_profile(db_session)
        with TestClient(app, cookies=session_cookies(profile.id)) as client:
            client.post("/v1/ai/feedback", json=_payload(aiResponse="x" * 2000))

        assert len(db_session.query(AiFeedback).one().ai_response) == 500

    def test_user_id_in_body_is_ignored(self, db_session):
        me = make_profile(db_session)
        other = make_profile(db_session)
        with TestClient(app, cookies=session_cookies(me.id)) as client:
            client.post("/v1/ai/feedback", json=_payload(userId=str(other.id)))

        assert db_session.query(AiFeedback).one().user_id == me.id

    def test_requires_authentication(self):
        with TestClient(app) as client:
            response = client.post("/v1/ai/feedback", json=_payload())
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"


class TestListFeedback:
    def test_lists_only_callers_feedback(self, db_session):
        me = make_profile(db_session)
        other = make_profile(db_session)
        with TestClient(app, cookies=session_cookies(other.id)) as client:
            client.post("/v1/ai/feedback", json=_payload(messageId="theirs"))
        with TestClient(app, cookies=session_cookies(me.id)) as client:
            client.post("/v1/ai/feedback", json=_payload(messageId="mine-1"))
            client.post("/v1/ai/feedback", json=_payload(messageId="mine-2", rating="negative"))
            response = client.get("/v1/ai/feedback")

        assert response.status_code == 200
        ids = {f["messageId"] for f in response.json()["feedback"]}
        assert ids == {"mine-1", "mine-2"}

    def test_limit_is_validated(self, db_session):
        profile = make_profile(db_session)
        with TestClient(app, cookies=session_cookies(profile.id)) as client:
            assert client.get("/v1/ai/feedback?limit=1").status_code == 200
            assert client.get("/v1/ai/feedback?limit=0").status_code == 400
            assert client.get("/v1/ai/feedback?limit=500").status_code == 400
