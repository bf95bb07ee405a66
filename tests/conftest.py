from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from toefl_writing.achievements import AchievementEvaluator, catalog
from toefl_writing.db import Base, make_engine, make_session_factory
from toefl_writing.dispatcher import TaskDispatcher
from toefl_writing.models import INTEGRATED_WRITING, Question, UserAccount
from toefl_writing.narration import NarrationJob
from toefl_writing.pipeline import PipelineController
from toefl_writing.repository import GradingContext, SubmissionStore
from toefl_writing.settings import Settings
from toefl_writing.worker import GradingWorker


LECTURE = "The professor argues that the reading overstates the benefits of the new policy."


def grading_json(score: Any = 24, mistakes: Optional[List[Dict[str, Any]]] = None, **extra: Any) -> str:
	payload: Dict[str, Any] = {
		"overallScore": score,
		"feedback": {
			"taskResponse": {"rating": "Good", "comment": "Addresses the lecture."},
			"organization": {"rating": "Fair", "comment": "Some jumps between points."},
			"languageUse": {"rating": "Good", "comment": "Mostly accurate."},
			"generalSuggestion": "Link each lecture point to the reading.",
		},
		"mistakes": mistakes if mistakes is not None else [],
	}
	payload.update(extra)
	return json.dumps(payload)


GRAMMAR_MISTAKE = {
	"type": "grammar",
	"original": "he go",
	"corrected": "he goes",
	"explanation": "subject-verb agreement",
}


class StubGradingOracle:
	"""Replays canned model outputs; an Exception in the list is raised instead."""

	def __init__(self, *responses: Any, gate: Optional[asyncio.Event] = None) -> None:
		self.responses = list(responses) or [grading_json()]
		self.gate = gate
		self.calls = 0
		self.contexts: List[GradingContext] = []

	async def grade(self, context: GradingContext) -> str:
		self.calls += 1
		self.contexts.append(context)
		if self.gate is not None:
			await self.gate.wait()
		response = self.responses[min(self.calls, len(self.responses)) - 1]
		if isinstance(response, Exception):
			raise response
		return response


class StubNarrationOracle:
	def __init__(self, *outcomes: Any) -> None:
		self.outcomes = list(outcomes) or [b"ID3-audio-bytes"]
		self.calls = 0

	async def synthesize(self, script: str) -> bytes:
		self.calls += 1
		outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
		if isinstance(outcome, Exception):
			raise outcome
		return outcome


class StubMediaStore:
	def __init__(self) -> None:
		self.uploads: List[bytes] = []

	async def upload(self, data: bytes, *, name: str) -> str:
		self.uploads.append(data)
		return f"https://cdn.example.test/{name}-{len(self.uploads)}.mp3"


@pytest.fixture
def anyio_backend():
	return "asyncio"


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
	return Settings(
		_env_file=None,
		database_url=f"sqlite:///{tmp_path / 'test.db'}",
		media_root=str(tmp_path / "media"),
		narration_retry_delay_seconds=0,
		requeue_on_startup=False,
		jwt_secret_key="test-secret",
	)


@pytest.fixture()
def session_factory(settings: Settings) -> sessionmaker:
	engine = make_engine(settings.database_url)
	Base.metadata.create_all(bind=engine)
	try:
		yield make_session_factory(engine)
	finally:
		engine.dispose()


@pytest.fixture()
def store(session_factory: sessionmaker) -> SubmissionStore:
	store = SubmissionStore(session_factory)
	store.seed_achievements(catalog())
	return store


def add_user(session_factory: sessionmaker, username: str = "alice") -> int:
	with session_factory.begin() as db:
		row = UserAccount(username=username)
		db.add(row)
		db.flush()
		return row.id


def add_question(session_factory: sessionmaker, **fields: Any) -> int:
	values: Dict[str, Any] = {
		"title": "Urban Beekeeping",
		"task_type": INTEGRATED_WRITING,
		"reading_passage": "Urban beekeeping helps bee populations recover.",
		"lecture_script": LECTURE,
	}
	values.update(fields)
	with session_factory.begin() as db:
		row = Question(**values)
		db.add(row)
		db.flush()
		return row.id


@pytest.fixture()
def user_id(session_factory: sessionmaker) -> int:
	return add_user(session_factory)


@pytest.fixture()
def item_id(session_factory: sessionmaker) -> int:
	return add_question(session_factory)


def make_controller(store: SubmissionStore, oracle: StubGradingOracle, achievements: Any = "default") -> PipelineController:
	evaluator = AchievementEvaluator(store) if achievements == "default" else achievements
	worker = GradingWorker(store, oracle, evaluator)
	narration = NarrationJob(store, StubNarrationOracle(), StubMediaStore(), retry_delay=0)
	return PipelineController(store, TaskDispatcher(), worker, narration)
