"""
Grading worker.

One call to ``run`` is one grading attempt for one submission:

    queued -> processing -> completed | failed

The claim into ``processing`` is a compare-and-set in the database, so an
attempt that loses the claim stops without touching the row. Oracle and parse
failures are recorded as ``failed`` and are not retried here; the submitter
has to ask for a rescore. A database error while saving a grade rolls the
whole write back, returns the row to the state it had before the claim and
propagates to the dispatcher, which logs it.
"""

from __future__ import annotations
import logging
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from .achievements import AchievementEvaluator
from .errors import GradingOracleError
from .grading_oracle import GradingOracle
from .models import COMPLETED, FAILED, QUEUED
from .oracle_parser import ParseFailure, parse_grading_response
from .repository import GradingContext, SubmissionStore

logger = logging.getLogger(__name__)

# Stored on the row and shown to the submitter; details only go to the log
ORACLE_UNAVAILABLE = "The grading service could not be reached. Try rescoring later."
ORACLE_UNUSABLE = "The grading service returned an unusable result. Try rescoring later."


def grading_key(submission_id: str) -> str:
	return f"grade:{submission_id}"


class GradingWorker:
	def __init__(
		self,
		store: SubmissionStore,
		oracle: GradingOracle,
		achievements: Optional[AchievementEvaluator] = None,
	) -> None:
		self.store = store
		self.oracle = oracle
		self.achievements = achievements

	async def run(self, submission_id: str, from_states: Sequence[str] = (QUEUED,)) -> Optional[str]:
		context = await run_in_threadpool(self.store.claim, submission_id, from_states)
		if context is None:
			logger.warning("Submission %s was not in %s; skipping", submission_id, "/".join(from_states))
			return None
		return await self.grade_claimed(context)

	async def grade_claimed(self, context: GradingContext) -> Optional[str]:
		sid = context.submission_id
		logger.info("Grading submission %s (%s)", sid, context.task_category)
		try:
			raw = await self.oracle.grade(context)
		except GradingOracleError as exc:
			logger.warning("Grading oracle failed for submission %s: %s", sid, exc)
			return await self._record_failure(context, ORACLE_UNAVAILABLE)
		except Exception:
			logger.exception("Grading oracle raised unexpectedly for submission %s", sid)
			return await self._record_failure(context, ORACLE_UNAVAILABLE)

		result = parse_grading_response(raw)
		if isinstance(result, ParseFailure):
			logger.warning("Unusable grading response for submission %s: %s", sid, result.reason)
			return await self._record_failure(context, ORACLE_UNUSABLE)

		try:
			saved = await run_in_threadpool(self.store.complete, context, result)
		except SQLAlchemyError:
			logger.exception("Saving the grade for submission %s failed; transaction rolled back", sid)
			await self._restore(context)
			raise
		if not saved:
			logger.warning("Submission %s left processing during grading; result discarded", sid)
			return None
		logger.info("Submission %s graded: score=%s, %s mistakes", sid, result.score, len(result.mistakes))

		if self.achievements is not None:
			try:
				await self.achievements.evaluate(context.user_id, sid)
			except Exception:
				logger.exception("Achievement check failed for user #%s", context.user_id)
		return COMPLETED

	async def _restore(self, context: GradingContext) -> None:
		try:
			restored = await run_in_threadpool(self.store.restore, context)
		except SQLAlchemyError:
			logger.exception("Submission %s could not be returned to %s", context.submission_id, context.prior_status)
			return
		if restored:
			logger.info("Submission %s returned to %s", context.submission_id, context.prior_status)

	async def _record_failure(self, context: GradingContext, message: str) -> Optional[str]:
		try:
			saved = await run_in_threadpool(self.store.fail, context, message)
		except SQLAlchemyError:
			logger.exception("Recording the failure of submission %s failed", context.submission_id)
			raise
		return FAILED if saved else None
