from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from .achievements import AchievementEvaluator
from .dispatcher import TaskDispatcher
from .errors import RescoreConflict, SubmissionInvalid, SubmissionNotFound
from .grading_oracle import GeminiGradingOracle, GradingOracle
from .media_store import MediaStore, build_media_store
from .models import COMPLETED, FAILED, TASK_CATEGORIES
from .narration import NarrationJob, NarrationOracle, build_narration_oracle
from .repository import SubmissionStore
from .settings import Settings
from .worker import GradingWorker, grading_key

logger = logging.getLogger(__name__)

RESCORABLE_STATES = (COMPLETED, FAILED)


def narration_key(item_id: int) -> str:
	return f"narrate:{item_id}"


def validate_submission(item_id: Any, task_category: Any, text: Optional[str], word_count: Any) -> None:
	if word_count is None or isinstance(word_count, bool) or not isinstance(word_count, int):
		raise SubmissionInvalid("word_count is required and must be an integer")
	if word_count < 0:
		raise SubmissionInvalid("word_count must not be negative")
	if item_id is None or isinstance(item_id, bool) or not isinstance(item_id, int):
		raise SubmissionInvalid("item_id is required and must be an integer")
	if task_category not in TASK_CATEGORIES:
		raise SubmissionInvalid(f"task_category must be one of {list(TASK_CATEGORIES)}")
	if not (text or "").strip() and word_count > 0:
		raise SubmissionInvalid("text may only be empty when word_count is 0")


class PipelineController:
	"""Entry points of the submission pipeline: intake, status, rescore, narration."""

	def __init__(
		self,
		store: SubmissionStore,
		dispatcher: TaskDispatcher,
		worker: GradingWorker,
		narration: Optional[NarrationJob] = None,
	) -> None:
		self.store = store
		self.dispatcher = dispatcher
		self.worker = worker
		self.narration = narration

	async def submit(self, *, user_id: int, item_id: Any, task_category: Any, text: Optional[str], word_count: Any) -> str:
		validate_submission(item_id, task_category, text, word_count)
		submission_id = await run_in_threadpool(
			self.store.create_submission,
			user_id=user_id,
			item_id=item_id,
			task_category=task_category,
			content=text or "",
			word_count=word_count,
		)
		logger.info("Submission %s accepted for user #%s (item #%s)", submission_id, user_id, item_id)
		self.dispatcher.dispatch(grading_key(submission_id), self.worker.run(submission_id))
		return submission_id

	async def get_status(self, submission_id: str, user_id: int) -> Dict[str, Any]:
		status = await run_in_threadpool(self.store.status_for, submission_id, user_id)
		if status is None:
			raise SubmissionNotFound(submission_id)
		return status

	async def rescore(self, submission_id: str, user_id: int) -> None:
		if await run_in_threadpool(self.store.status_for, submission_id, user_id) is None:
			raise SubmissionNotFound(submission_id)
		key = grading_key(submission_id)
		if not self.dispatcher.reserve(key):
			raise RescoreConflict("a grading attempt for this submission is already running")
		try:
			context = await run_in_threadpool(
				self.store.claim, submission_id, RESCORABLE_STATES, owner_id=user_id, reset=True
			)
		except BaseException:
			self.dispatcher.release(key)
			raise
		if context is None:
			self.dispatcher.release(key)
			raise RescoreConflict("this submission has not been graded yet")
		logger.info("Rescore of submission %s requested by user #%s", submission_id, user_id)
		self.dispatcher.start(key, self.worker.grade_claimed(context))

	def request_narration(self, item_id: int) -> None:
		"""Fire-and-forget narration for an item."""
		if self.narration is None:
			return
		self.dispatcher.dispatch(narration_key(item_id), self.narration.run(item_id))

	async def narrate_now(self, item_id: int) -> Optional[str]:
		if self.narration is None:
			return None
		return await self.narration.run(item_id)


def build_controller(
	settings: Settings,
	session_factory: sessionmaker,
	*,
	grading_oracle: Optional[GradingOracle] = None,
	narration_oracle: Optional[NarrationOracle] = None,
	media_store: Optional[MediaStore] = None,
) -> PipelineController:
	store = SubmissionStore(session_factory)
	worker = GradingWorker(
		store,
		grading_oracle or GeminiGradingOracle(settings),
		AchievementEvaluator(store),
	)
	narration = NarrationJob(
		store,
		narration_oracle or build_narration_oracle(settings),
		media_store or build_media_store(settings),
		max_attempts=settings.narration_max_attempts,
		retry_delay=settings.narration_retry_delay_seconds,
	)
	return PipelineController(store, TaskDispatcher(), worker, narration)
