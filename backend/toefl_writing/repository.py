from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from .errors import SubmissionInvalid
from .models import (
	Achievement,
	Draft,
	Mistake,
	Question,
	Submission,
	UserAchievement,
	COMPLETED,
	FAILED,
	PROCESSING,
	QUEUED,
	REVIEW_STATUSES,
)
from .oracle_parser import ParsedGrading


@dataclass(frozen=True)
class GradingContext:
	"""Snapshot of a claimed submission and the item it answers."""
	submission_id: str
	user_id: int
	item_id: int
	task_category: str
	content: str
	word_count: int
	item: Dict[str, Any]
	# Row state before the claim; put back if the grade cannot be saved
	prior_status: str = QUEUED
	prior_score: Optional[int] = None
	prior_feedback: Optional[str] = None
	prior_error: Optional[str] = None


@dataclass(frozen=True)
class NarrationSource:
	item_id: int
	task_type: str
	script: Optional[str]
	audio_url: Optional[str]


@dataclass(frozen=True)
class UserStats:
	total_submissions: int
	by_category: Dict[str, int]
	latest_score: Optional[int]


class SubmissionStore:
	"""Every read and write the pipeline makes against the database.

	Methods are synchronous; async callers go through ``run_in_threadpool``.
	"""

	def __init__(self, session_factory: sessionmaker) -> None:
		self._sessions = session_factory

	def ping(self) -> bool:
		with self._sessions() as db:
			return db.execute(text("SELECT 1")).scalar() == 1

	# ---- items ----

	def get_question(self, item_id: int) -> Optional[Dict[str, Any]]:
		with self._sessions() as db:
			row = db.get(Question, item_id)
			return row.as_dict() if row else None

	def narration_source(self, item_id: int) -> Optional[NarrationSource]:
		with self._sessions() as db:
			row = db.get(Question, item_id)
			if row is None:
				return None
			return NarrationSource(item_id=row.id, task_type=row.task_type, script=row.lecture_script, audio_url=row.audio_url)

	def set_audio_url(self, item_id: int, url: str) -> Optional[str]:
		"""Store ``url`` unless the item already has audio; return the URL now on the item."""
		with self._sessions.begin() as db:
			db.execute(
				update(Question)
				.where(Question.id == item_id, Question.audio_url.is_(None))
				.values(audio_url=url)
				.execution_options(synchronize_session=False)
			)
			return db.execute(select(Question.audio_url).where(Question.id == item_id)).scalar()

	# ---- submissions ----

	def create_submission(self, *, user_id: int, item_id: int, task_category: str, content: str, word_count: int) -> str:
		db = self._sessions()
		try:
			if db.get(Question, item_id) is None:
				raise SubmissionInvalid(f"item {item_id} does not exist")
			row = Submission(
				user_id=user_id,
				item_id=item_id,
				task_category=task_category,
				content=content,
				word_count=word_count,
				processing_status=QUEUED,
			)
			db.add(row)
			db.execute(delete(Draft).where(Draft.user_id == user_id, Draft.item_id == item_id))
			db.commit()
			return row.id
		except Exception:
			db.rollback()
			raise
		finally:
			db.close()

	def claim(
		self,
		submission_id: str,
		from_states: Sequence[str],
		*,
		owner_id: Optional[int] = None,
		reset: bool = False,
	) -> Optional[GradingContext]:
		"""Move a submission into ``processing`` if it is currently in ``from_states``.

		The state check and the write are one UPDATE, so of two concurrent
		claims at most one sees a matched row. With ``reset`` the previous
		score, feedback and error are cleared; the old mistake set stays until
		the attempt's own result replaces it. The returned context carries the
		row as it was before the claim so ``restore`` can put it back.
		"""
		with self._sessions.begin() as db:
			prior = db.execute(
				select(
					Submission.processing_status,
					Submission.score,
					Submission.feedback,
					Submission.processing_error,
				).where(Submission.id == submission_id)
			).first()
			if prior is None:
				return None
			stmt = update(Submission).where(
				Submission.id == submission_id,
				Submission.processing_status == prior.processing_status,
				Submission.processing_status.in_(list(from_states)),
			)
			if owner_id is not None:
				stmt = stmt.where(Submission.user_id == owner_id)
			values: Dict[str, Any] = {"processing_status": PROCESSING, "processing_error": None}
			if reset:
				values.update(score=None, feedback=None)
			res = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
			if res.rowcount != 1:
				return None
			row = db.get(Submission, submission_id)
			question = db.get(Question, row.item_id)
			return GradingContext(
				submission_id=row.id,
				user_id=row.user_id,
				item_id=row.item_id,
				task_category=row.task_category,
				content=row.content or "",
				word_count=row.word_count,
				item=question.as_dict() if question else {},
				prior_status=prior.processing_status,
				prior_score=prior.score,
				prior_feedback=prior.feedback,
				prior_error=prior.processing_error,
			)

	def restore(self, context: GradingContext) -> bool:
		"""Put a claimed submission back to the state it had before ``claim``."""
		with self._sessions.begin() as db:
			res = db.execute(
				update(Submission)
				.where(Submission.id == context.submission_id, Submission.processing_status == PROCESSING)
				.values(
					processing_status=context.prior_status,
					score=context.prior_score,
					feedback=context.prior_feedback,
					processing_error=context.prior_error,
				)
				.execution_options(synchronize_session=False)
			)
			return res.rowcount == 1

	def complete(self, context: GradingContext, grading: ParsedGrading) -> bool:
		"""Replace the mistake set and write the grade in one transaction.

		Returns False (and writes nothing) if the submission left
		``processing`` while the oracle was running.
		"""
		db = self._sessions()
		try:
			db.execute(delete(Mistake).where(Mistake.submission_id == context.submission_id))
			res = db.execute(
				update(Submission)
				.where(Submission.id == context.submission_id, Submission.processing_status == PROCESSING)
				.values(
					score=grading.score,
					feedback=json.dumps(grading.feedback, ensure_ascii=False),
					processing_status=COMPLETED,
					processing_error=None,
				)
				.execution_options(synchronize_session=False)
			)
			if res.rowcount != 1:
				db.rollback()
				return False
			self._insert_mistakes(db, context, grading)
			db.commit()
			return True
		except Exception:
			db.rollback()
			raise
		finally:
			db.close()

	def _insert_mistakes(self, db: Session, context: GradingContext, grading: ParsedGrading) -> None:
		db.add_all(
			Mistake(
				submission_id=context.submission_id,
				user_id=context.user_id,
				type=m.type,
				sub_type=m.sub_type,
				original_text=m.original,
				corrected_text=m.corrected,
				explanation=m.explanation,
			)
			for m in grading.mistakes
		)
		db.flush()

	def fail(self, context: GradingContext, error: str) -> bool:
		with self._sessions.begin() as db:
			res = db.execute(
				update(Submission)
				.where(Submission.id == context.submission_id, Submission.processing_status == PROCESSING)
				.values(processing_status=FAILED, processing_error=error, score=None, feedback=None)
				.execution_options(synchronize_session=False)
			)
			if res.rowcount != 1:
				return False
			db.execute(delete(Mistake).where(Mistake.submission_id == context.submission_id))
			return True

	def status_for(self, submission_id: str, user_id: int) -> Optional[Dict[str, Any]]:
		with self._sessions() as db:
			row = db.execute(
				select(Submission.processing_status, Submission.processing_error, Submission.score)
				.where(Submission.id == submission_id, Submission.user_id == user_id)
			).first()
			if row is None:
				return None
			return {"processing_status": row[0], "processing_error": row[1], "score": row[2]}

	def requeue_interrupted(self) -> int:
		"""Send rows a stopped process left in ``processing`` back to ``queued``.

		Only safe before this process has dispatched any grading attempt.
		"""
		with self._sessions.begin() as db:
			res = db.execute(
				update(Submission)
				.where(Submission.processing_status == PROCESSING)
				.values(processing_status=QUEUED, score=None, feedback=None, processing_error=None)
				.execution_options(synchronize_session=False)
			)
			return res.rowcount

	def queued_submission_ids(self) -> List[str]:
		with self._sessions() as db:
			return list(
				db.scalars(
					select(Submission.id)
					.where(Submission.processing_status == QUEUED)
					.order_by(Submission.submitted_at)
				)
			)

	def mistakes_for(self, submission_id: str) -> List[Mistake]:
		with self._sessions() as db:
			return list(db.scalars(select(Mistake).where(Mistake.submission_id == submission_id).order_by(Mistake.id)))

	# ---- user-owned state ----

	def save_draft(self, user_id: int, item_id: int, content: str) -> bool:
		with self._sessions.begin() as db:
			if db.get(Question, item_id) is None:
				return False
			row = db.get(Draft, (user_id, item_id))
			if row is None:
				db.add(Draft(user_id=user_id, item_id=item_id, content=content))
			else:
				row.content = content
			return True

	def set_mistake_status(self, mistake_id: int, user_id: int, status: str) -> bool:
		if status not in REVIEW_STATUSES:
			raise ValueError(f"status must be one of {list(REVIEW_STATUSES)}")
		with self._sessions.begin() as db:
			res = db.execute(
				update(Mistake)
				.where(Mistake.id == mistake_id, Mistake.user_id == user_id)
				.values(status=status)
				.execution_options(synchronize_session=False)
			)
			return res.rowcount == 1

	# ---- achievements ----

	def seed_achievements(self, catalog: Iterable[Dict[str, str]]) -> None:
		with self._sessions.begin() as db:
			existing = set(db.scalars(select(Achievement.tag)))
			for entry in catalog:
				if entry["tag"] not in existing:
					db.add(Achievement(**entry))

	def user_stats(self, user_id: int, submission_id: str) -> UserStats:
		with self._sessions() as db:
			counts = dict(
				db.execute(
					select(Submission.task_category, func.count(Submission.id))
					.where(Submission.user_id == user_id)
					.group_by(Submission.task_category)
				).all()
			)
			latest = db.execute(select(Submission.score).where(Submission.id == submission_id)).scalar()
			return UserStats(
				total_submissions=sum(counts.values()),
				by_category={k: int(v) for k, v in counts.items()},
				latest_score=latest,
			)

	def grant_achievements(self, user_id: int, tags: Sequence[str]) -> List[str]:
		"""Grant each tag the user does not hold yet; return the newly granted tags."""
		if not tags:
			return []
		granted: List[str] = []
		with self._sessions.begin() as db:
			rows = db.execute(select(Achievement.id, Achievement.tag).where(Achievement.tag.in_(list(tags)))).all()
			for achievement_id, tag in rows:
				if self._insert_grant(db, user_id, achievement_id):
					granted.append(tag)
		return granted

	def granted_tags(self, user_id: int) -> List[str]:
		with self._sessions() as db:
			return list(
				db.scalars(
					select(Achievement.tag)
					.join(UserAchievement, UserAchievement.achievement_id == Achievement.id)
					.where(UserAchievement.user_id == user_id)
					.order_by(Achievement.id)
				)
			)

	def _insert_grant(self, db: Session, user_id: int, achievement_id: int) -> bool:
		values = {"user_id": user_id, "achievement_id": achievement_id}
		dialect = db.get_bind().dialect.name
		if dialect in ("sqlite", "postgresql"):
			insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
			res = db.execute(insert(UserAchievement).values(**values).on_conflict_do_nothing())
			return res.rowcount == 1
		if db.get(UserAchievement, (user_id, achievement_id)) is not None:
			return False
		db.add(UserAchievement(**values))
		db.flush()
		return True
