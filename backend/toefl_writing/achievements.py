from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from starlette.concurrency import run_in_threadpool

from .models import ACADEMIC_DISCUSSION, INTEGRATED_WRITING
from .repository import SubmissionStore, UserStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AchievementRule:
	tag: str
	name: str
	description: str
	qualifies: Callable[[UserStats], bool]


RULES: Sequence[AchievementRule] = (
	AchievementRule(
		"FIRST_PRACTICE",
		"First Practice",
		"Submit your first writing practice.",
		lambda s: s.total_submissions >= 1,
	),
	AchievementRule(
		"TEN_PRACTICES",
		"Ten Practices",
		"Submit ten writing practices.",
		lambda s: s.total_submissions >= 10,
	),
	AchievementRule(
		"HIGH_SCORER_25",
		"High Scorer",
		"Score 25 or more on a practice.",
		lambda s: s.latest_score is not None and s.latest_score >= 25,
	),
	AchievementRule(
		"INTEGRATED_MASTER",
		"Integrated Master",
		"Complete five Integrated Writing practices.",
		lambda s: s.by_category.get(INTEGRATED_WRITING, 0) >= 5,
	),
	AchievementRule(
		"ACADEMIC_EXPERT",
		"Academic Expert",
		"Complete five Academic Discussion practices.",
		lambda s: s.by_category.get(ACADEMIC_DISCUSSION, 0) >= 5,
	),
)


def catalog(rules: Sequence[AchievementRule] = RULES) -> List[Dict[str, str]]:
	return [{"tag": r.tag, "name": r.name, "description": r.description} for r in rules]


def qualifying_tags(stats: UserStats, rules: Sequence[AchievementRule] = RULES) -> List[str]:
	return [rule.tag for rule in rules if rule.qualifies(stats)]


class AchievementEvaluator:
	def __init__(self, store: SubmissionStore, rules: Sequence[AchievementRule] = RULES) -> None:
		self.store = store
		self.rules = rules

	async def evaluate(self, user_id: int, submission_id: str) -> List[str]:
		"""Grant whatever the user newly qualifies for after ``submission_id`` was graded.

		Grants are never revoked; re-granting a held achievement is a no-op.
		"""
		stats = await run_in_threadpool(self.store.user_stats, user_id, submission_id)
		tags = qualifying_tags(stats, self.rules)
		granted = await run_in_threadpool(self.store.grant_achievements, user_id, tags)
		if granted:
			logger.info("User #%s was awarded: %s", user_id, ", ".join(granted))
		return granted
