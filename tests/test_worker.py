from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from toefl_writing.errors import GradingOracleError
from toefl_writing.models import COMPLETED, FAILED, QUEUED, Mistake, Submission
from toefl_writing.worker import ORACLE_UNAVAILABLE, ORACLE_UNUSABLE, GradingWorker

from conftest import GRAMMAR_MISTAKE, StubGradingOracle, grading_json, make_controller


def _submit(store, user_id, item_id, text="The lecture supports the reading.", word_count=50):
	return store.create_submission(
		user_id=user_id,
		item_id=item_id,
		task_category="integrated_writing",
		content=text,
		word_count=word_count,
	)


def _mistake_count(session_factory, submission_id):
	with session_factory() as db:
		return db.execute(select(func.count(Mistake.id)).where(Mistake.submission_id == submission_id)).scalar()


@pytest.mark.anyio
async def test_successful_grade_commits_score_feedback_and_mistakes(store, user_id, item_id):
	sid = _submit(store, user_id, item_id)
	oracle = StubGradingOracle(grading_json(24, [GRAMMAR_MISTAKE]))

	assert await GradingWorker(store, oracle).run(sid) == COMPLETED

	assert store.status_for(sid, user_id) == {"processing_status": COMPLETED, "processing_error": None, "score": 24}
	mistakes = store.mistakes_for(sid)
	assert [(m.type, m.original_text, m.corrected_text, m.status) for m in mistakes] == [
		("grammar", "he go", "he goes", "new")
	]
	assert mistakes[0].user_id == user_id


@pytest.mark.anyio
async def test_oracle_receives_item_context(store, user_id, item_id):
	sid = _submit(store, user_id, item_id)
	oracle = StubGradingOracle()
	await GradingWorker(store, oracle).run(sid)
	context = oracle.contexts[0]
	assert context.submission_id == sid
	assert context.item["lecture_script"].startswith("The professor argues")
	assert context.content == "The lecture supports the reading."


@pytest.mark.anyio
@pytest.mark.parametrize("score", [35, "A"])
async def test_invalid_score_marks_submission_failed(store, user_id, item_id, score):
	sid = _submit(store, user_id, item_id)

	assert await GradingWorker(store, StubGradingOracle(grading_json(score, [GRAMMAR_MISTAKE]))).run(sid) == FAILED

	status = store.status_for(sid, user_id)
	assert status == {"processing_status": FAILED, "processing_error": ORACLE_UNUSABLE, "score": None}
	assert store.mistakes_for(sid) == []


@pytest.mark.anyio
async def test_oracle_error_marks_submission_failed_without_retry(store, user_id, item_id):
	sid = _submit(store, user_id, item_id)
	oracle = StubGradingOracle(GradingOracleError("502 Bad Gateway from upstream"), grading_json(24))

	assert await GradingWorker(store, oracle).run(sid) == FAILED

	assert oracle.calls == 1
	status = store.status_for(sid, user_id)
	assert status["processing_status"] == FAILED
	# the raw upstream message is logged, not stored
	assert status["processing_error"] == ORACLE_UNAVAILABLE


@pytest.mark.anyio
async def test_claim_only_from_queued(store, user_id, item_id):
	sid = _submit(store, user_id, item_id)
	oracle = StubGradingOracle()
	worker = GradingWorker(store, oracle)
	await worker.run(sid)

	assert await worker.run(sid) is None
	assert oracle.calls == 1


@pytest.mark.anyio
async def test_failed_mistake_insert_returns_a_first_attempt_to_queued(store, session_factory, user_id, item_id, monkeypatch):
	sid = _submit(store, user_id, item_id)

	def _boom(db, context, grading):
		raise SQLAlchemyError("disk I/O error")

	monkeypatch.setattr(store, "_insert_mistakes", _boom)
	worker = GradingWorker(store, StubGradingOracle(grading_json(24, [GRAMMAR_MISTAKE])))

	with pytest.raises(SQLAlchemyError):
		await worker.run(sid)

	with session_factory() as db:
		row = db.get(Submission, sid)
		assert row.processing_status == QUEUED
		assert row.score is None
		assert row.feedback is None
		assert row.processing_error is None
	assert _mistake_count(session_factory, sid) == 0


@pytest.mark.anyio
async def test_failed_regrade_keeps_the_previous_grade(store, session_factory, user_id, item_id, monkeypatch):
	oracle = StubGradingOracle(grading_json(24, [GRAMMAR_MISTAKE]), grading_json(29))
	controller = make_controller(store, oracle)
	sid = await controller.submit(user_id=user_id, item_id=item_id, task_category="integrated_writing", text="x", word_count=1)
	await controller.dispatcher.drain()
	before = store.status_for(sid, user_id)
	with session_factory() as db:
		feedback_before = db.get(Submission, sid).feedback

	def _boom(db, context, grading):
		raise SQLAlchemyError("disk I/O error")

	monkeypatch.setattr(store, "_insert_mistakes", _boom)
	await controller.rescore(sid, user_id)
	await controller.dispatcher.drain()

	assert oracle.calls == 2
	assert store.status_for(sid, user_id) == before == {"processing_status": COMPLETED, "processing_error": None, "score": 24}
	with session_factory() as db:
		assert db.get(Submission, sid).feedback == feedback_before
	assert [m.original_text for m in store.mistakes_for(sid)] == ["he go"]

	# the restored row can be rescored again
	monkeypatch.undo()
	await controller.rescore(sid, user_id)
	await controller.dispatcher.drain()
	assert store.status_for(sid, user_id)["score"] == 29
	assert store.mistakes_for(sid) == []


@pytest.mark.anyio
async def test_failed_regrade_of_a_failed_submission_keeps_its_error(store, user_id, item_id, monkeypatch):
	oracle = StubGradingOracle("no json here", grading_json(22))
	controller = make_controller(store, oracle)
	sid = await controller.submit(user_id=user_id, item_id=item_id, task_category="integrated_writing", text="x", word_count=1)
	await controller.dispatcher.drain()

	def _boom(db, context, grading):
		raise SQLAlchemyError("disk I/O error")

	monkeypatch.setattr(store, "_insert_mistakes", _boom)
	await controller.rescore(sid, user_id)
	await controller.dispatcher.drain()

	assert store.status_for(sid, user_id) == {"processing_status": FAILED, "processing_error": ORACLE_UNUSABLE, "score": None}


@pytest.mark.anyio
async def test_regrading_replaces_the_whole_mistake_set(store, session_factory, user_id, item_id):
	first = [
		{"type": "spelling", "original": "recieve", "corrected": "receive", "explanation": "spelling"},
		{"type": "punctuation", "original": "However the", "corrected": "However, the", "explanation": "comma"},
	]
	oracle = StubGradingOracle(grading_json(20, first), grading_json(26, [GRAMMAR_MISTAKE]))
	controller = make_controller(store, oracle)
	sid = await controller.submit(
		user_id=user_id, item_id=item_id, task_category="integrated_writing", text="The lecture", word_count=2
	)
	await controller.dispatcher.drain()
	assert _mistake_count(session_factory, sid) == 2

	await controller.rescore(sid, user_id)
	await controller.dispatcher.drain()

	assert store.status_for(sid, user_id)["score"] == 26
	assert [m.original_text for m in store.mistakes_for(sid)] == ["he go"]


@pytest.mark.anyio
async def test_achievement_errors_never_undo_the_grade(store, user_id, item_id):
	class _BrokenEvaluator:
		calls = 0

		async def evaluate(self, user_id, submission_id):
			self.calls += 1
			raise RuntimeError("achievements table is locked")

	evaluator = _BrokenEvaluator()
	sid = _submit(store, user_id, item_id)

	assert await GradingWorker(store, StubGradingOracle(), evaluator).run(sid) == COMPLETED

	assert evaluator.calls == 1
	assert store.status_for(sid, user_id)["processing_status"] == COMPLETED


@pytest.mark.anyio
async def test_achievements_are_not_evaluated_for_failed_grades(store, user_id, item_id):
	sid = _submit(store, user_id, item_id)
	await GradingWorker(store, StubGradingOracle("not json")).run(sid)
	assert store.granted_tags(user_id) == []


@pytest.mark.anyio
async def test_submission_stays_queued_until_claimed(store, user_id, item_id):
	sid = _submit(store, user_id, item_id)
	assert store.status_for(sid, user_id)["processing_status"] == QUEUED
