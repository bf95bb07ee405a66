from __future__ import annotations
import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, PrimaryKeyConstraint
from .db import Base


# Submission processing states
QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

# Task categories an item (and a submission) can belong to
INTEGRATED_WRITING = "integrated_writing"
ACADEMIC_DISCUSSION = "academic_discussion"
TASK_CATEGORIES = (INTEGRATED_WRITING, ACADEMIC_DISCUSSION)

MISTAKE_TYPES = ("grammar", "spelling", "punctuation", "vocabulary", "style")
REVIEW_STATUSES = ("new", "reviewing", "mastered")


def _new_submission_id() -> str:
	return uuid.uuid4().hex


class UserAccount(Base):
	__tablename__ = "users"
	id = Column(Integer, primary_key=True, autoincrement=True)
	username = Column(String(128), unique=True, index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Question(Base):
	__tablename__ = "questions"
	id = Column(Integer, primary_key=True, autoincrement=True)
	title = Column(String(256), nullable=False, default="")
	task_type = Column(String(32), nullable=False)
	# Integrated writing context
	reading_passage = Column(Text, nullable=True)
	lecture_script = Column(Text, nullable=True)
	# Narrated lecture; set once, never overwritten
	audio_url = Column(String(512), nullable=True)
	# Academic discussion context
	professor_prompt = Column(Text, nullable=True)
	student1_author = Column(String(128), nullable=True)
	student1_post = Column(Text, nullable=True)
	student2_author = Column(String(128), nullable=True)
	student2_post = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	def as_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"title": self.title,
			"task_type": self.task_type,
			"reading_passage": self.reading_passage,
			"lecture_script": self.lecture_script,
			"audio_url": self.audio_url,
			"professor_prompt": self.professor_prompt,
			"student1_author": self.student1_author,
			"student1_post": self.student1_post,
			"student2_author": self.student2_author,
			"student2_post": self.student2_post,
		}


class Submission(Base):
	__tablename__ = "submissions"
	id = Column(String(32), primary_key=True, default=_new_submission_id)
	user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
	item_id = Column(Integer, ForeignKey("questions.id"), index=True, nullable=False)
	task_category = Column(String(32), nullable=False)
	content = Column(Text, nullable=False, default="")
	word_count = Column(Integer, nullable=False, default=0)
	processing_status = Column(String(16), nullable=False, default=QUEUED, index=True)
	processing_error = Column(Text, nullable=True)
	score = Column(Integer, nullable=True)
	feedback = Column(Text, nullable=True)  # JSON string snapshot
	submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Mistake(Base):
	__tablename__ = "mistakes"
	id = Column(Integer, primary_key=True, autoincrement=True)
	submission_id = Column(String(32), ForeignKey("submissions.id", ondelete="CASCADE"), index=True, nullable=False)
	# Denormalized owner so a user's mistake notebook needs no join
	user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
	type = Column(String(32), nullable=False)
	sub_type = Column(String(64), nullable=True)
	original_text = Column(Text, nullable=False, default="")
	corrected_text = Column(Text, nullable=False, default="")
	explanation = Column(Text, nullable=False, default="")
	status = Column(String(16), nullable=False, default="new")
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Draft(Base):
	__tablename__ = "drafts"
	__table_args__ = (PrimaryKeyConstraint("user_id", "item_id"),)
	user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
	item_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
	content = Column(Text, nullable=False, default="")
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Achievement(Base):
	__tablename__ = "achievements"
	id = Column(Integer, primary_key=True, autoincrement=True)
	tag = Column(String(64), unique=True, nullable=False)
	name = Column(String(128), nullable=False)
	description = Column(Text, nullable=True)


class UserAchievement(Base):
	__tablename__ = "user_achievements"
	# One grant per (user, achievement)
	__table_args__ = (PrimaryKeyConstraint("user_id", "achievement_id"),)
	user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
	achievement_id = Column(Integer, ForeignKey("achievements.id"), nullable=False)
	unlocked_at = Column(DateTime, default=datetime.utcnow, nullable=False)
