from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from toefl_writing.main import create_app
from toefl_writing.models import COMPLETED, Question
from toefl_writing.routers.auth import create_access_token

from conftest import (
	GRAMMAR_MISTAKE,
	LECTURE,
	StubGradingOracle,
	StubMediaStore,
	StubNarrationOracle,
	add_user,
	grading_json,
)

ESSAY = "The lecture supports the reading in some ways but challenges it in others. " * 4


@pytest.fixture()
def oracle():
	return StubGradingOracle(grading_json(24, [GRAMMAR_MISTAKE]), grading_json(27))


@pytest.fixture()
def narrator():
	return StubNarrationOracle(b"mp3-bytes")


@pytest.fixture()
def client(settings, oracle, narrator):
	app = create_app(settings, grading_oracle=oracle, narration_oracle=narrator, media_store=StubMediaStore())
	with TestClient(app) as c:
		with app.state.session_factory.begin() as db:
			db.add(
				Question(
					id=7,
					title="Four-Day Work Week",
					task_type="integrated_writing",
					reading_passage="A four-day week raises productivity.",
					lecture_script=LECTURE,
				)
			)
		yield c


def _auth(client, username="alice"):
	app = client.app
	uid = add_user(app.state.session_factory, username)
	token = create_access_token(app.state.settings, uid)
	return {"Authorization": f"Bearer {token}"}


def _wait_for(client, sid, headers, status=COMPLETED):
	for _ in range(200):
		r = client.get(f"/submissions/{sid}/status", headers=headers)
		assert r.status_code == 200
		if r.json()["processing_status"] == status:
			return r.json()
		time.sleep(0.02)
	raise AssertionError(f"submission {sid} never reached {status}: {r.json()}")


def test_submit_then_poll_until_graded(client, oracle):
	headers = _auth(client)
	r = client.post(
		"/submissions",
		json={"item_id": 7, "task_category": "integrated_writing", "text": ESSAY, "word_count": 50},
		headers=headers,
	)
	assert r.status_code == 201
	body = r.json()
	assert body["status"] == "processing"
	sid = body["submission_id"]

	status = _wait_for(client, sid, headers)
	assert status == {"processing_status": "completed", "processing_error": None, "score": 24}

	mistakes = client.app.state.controller.store.mistakes_for(sid)
	assert [(m.type, m.original_text, m.corrected_text) for m in mistakes] == [("grammar", "he go", "he goes")]
	assert oracle.calls == 1


@pytest.mark.parametrize(
	"payload",
	[
		{"item_id": 7, "task_category": "integrated_writing", "text": ESSAY},
		{"item_id": 7, "task_category": "integrated_writing", "text": ESSAY, "word_count": "fifty"},
		{"item_id": 7, "task_category": "integrated_writing", "text": ESSAY, "word_count": -3},
		{"item_id": 7, "task_category": "essay", "text": ESSAY, "word_count": 50},
		{"task_category": "integrated_writing", "text": ESSAY, "word_count": 50},
		{"item_id": 404, "task_category": "integrated_writing", "text": ESSAY, "word_count": 50},
	],
)
def test_malformed_submission_is_rejected(client, oracle, payload):
	r = client.post("/submissions", json=payload, headers=_auth(client))
	assert r.status_code == 400
	assert oracle.calls == 0


def test_endpoints_require_a_valid_token(client):
	assert client.post("/submissions", json={}).status_code == 401
	assert client.get("/submissions/abc/status").status_code == 401
	bad = {"Authorization": "Bearer not-a-jwt"}
	assert client.post("/submissions/abc/rescore", headers=bad).status_code == 401


def test_other_users_cannot_see_or_rescore(client):
	alice = _auth(client, "alice")
	bob = _auth(client, "bob")
	r = client.post(
		"/submissions",
		json={"item_id": 7, "task_category": "integrated_writing", "text": ESSAY, "word_count": 50},
		headers=alice,
	)
	sid = r.json()["submission_id"]
	_wait_for(client, sid, alice)

	assert client.get(f"/submissions/{sid}/status", headers=bob).status_code == 404
	assert client.post(f"/submissions/{sid}/rescore", headers=bob).status_code == 404
	assert client.get("/submissions/nope/status", headers=alice).status_code == 404


def test_rescore_regrades_a_completed_submission(client, oracle):
	headers = _auth(client)
	r = client.post(
		"/submissions",
		json={"item_id": 7, "task_category": "integrated_writing", "text": ESSAY, "word_count": 50},
		headers=headers,
	)
	sid = r.json()["submission_id"]
	_wait_for(client, sid, headers)

	r = client.post(f"/submissions/{sid}/rescore", headers=headers)
	assert r.status_code == 202
	for _ in range(200):
		status = client.get(f"/submissions/{sid}/status", headers=headers).json()
		if status["score"] == 27:
			break
		time.sleep(0.02)
	assert status == {"processing_status": "completed", "processing_error": None, "score": 27}
	assert oracle.calls == 2
	assert client.app.state.controller.store.mistakes_for(sid) == []


def test_reading_a_question_starts_narration(client, narrator):
	r = client.get("/questions/7")
	assert r.status_code == 200
	assert r.json()["lecture_script"] == LECTURE

	for _ in range(200):
		audio = client.get("/questions/7").json()["audio_url"]
		if audio:
			break
		time.sleep(0.02)
	assert audio == "https://cdn.example.test/question-7-1.mp3"
	assert narrator.calls == 1
	assert client.get("/questions/8").status_code == 404


def test_generate_audio_endpoint(client, narrator):
	headers = _auth(client)
	r = client.post("/questions/7/audio", headers=headers)
	assert r.status_code == 200
	assert r.json() == {"url": "https://cdn.example.test/question-7-1.mp3"}
	assert client.post("/questions/99/audio", headers=headers).status_code == 404
	assert narrator.calls == 1


def test_drafts_and_mistake_review(client):
	headers = _auth(client)
	assert client.put("/drafts/7", json={"content": "first paragraph"}, headers=headers).json() == {"ok": True}
	assert client.put("/drafts/99", json={"content": "x"}, headers=headers).status_code == 404

	r = client.post(
		"/submissions",
		json={"item_id": 7, "task_category": "integrated_writing", "text": ESSAY, "word_count": 50},
		headers=headers,
	)
	sid = r.json()["submission_id"]
	_wait_for(client, sid, headers)
	mistake_id = client.app.state.controller.store.mistakes_for(sid)[0].id

	r = client.patch(f"/mistakes/{mistake_id}", json={"status": "reviewing"}, headers=headers)
	assert r.status_code == 200
	assert r.json() == {"id": mistake_id, "status": "reviewing"}
	assert client.patch(f"/mistakes/{mistake_id}", json={"status": "forgotten"}, headers=headers).status_code == 400
	assert client.patch(f"/mistakes/{mistake_id}", json={"status": "mastered"}, headers=_auth(client, "bob")).status_code == 404


def test_health(client):
	r = client.get("/health")
	assert r.status_code == 200
	assert r.json() == {"status": "ok", "database": "connected"}


def test_achievements_lists_the_catalog_with_unlock_flags(client):
	headers = _auth(client, "carol")
	r = client.post(
		"/submissions",
		json={"item_id": 7, "task_category": "integrated_writing", "text": ESSAY, "word_count": 50},
		headers=headers,
	)
	_wait_for(client, r.json()["submission_id"], headers)

	# granted right after the grade is committed
	for _ in range(200):
		r = client.get("/achievements", headers=headers)
		assert r.status_code == 200
		if any(a["unlocked"] for a in r.json()):
			break
		time.sleep(0.02)
	assert {a["tag"]: a["unlocked"] for a in r.json()} == {
		"FIRST_PRACTICE": True,
		"TEN_PRACTICES": False,
		"HIGH_SCORER_25": False,
		"INTEGRATED_MASTER": False,
		"ACADEMIC_EXPERT": False,
	}
	assert client.get("/achievements").status_code == 401
