from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from .errors import GradingOracleError
from .gemini_client import GeminiClient
from .models import INTEGRATED_WRITING
from .oracle_parser import MAX_SCORE, MIN_SCORE
from .repository import GradingContext
from .settings import Settings

logger = logging.getLogger(__name__)

# Keep prompts within a sane size for the model
MAX_RESPONSE_CHARS = 12000


class GradingOracle(Protocol):
	async def grade(self, context: GradingContext) -> str:
		"""Return the raw model output for ``context``; raise GradingOracleError on failure."""
		...


def _task_name(task_category: str) -> str:
	return "Integrated Writing" if task_category == INTEGRATED_WRITING else "Academic Discussion"


def build_system_prompt() -> str:
	return (
		"You are an ETS-trained rater for the TOEFL iBT Writing section.\n"
		"Rate the response against the official rubric for its task type, then list the individual "
		"grammar, spelling, punctuation, vocabulary and style errors it contains.\n"
		"You may reason inside a <thinking> block first. Your final answer must be ONE JSON object "
		"with exactly these keys:\n"
		f"- overallScore: integer from {MIN_SCORE} to {MAX_SCORE}\n"
		"- feedback: object with taskResponse, organization and languageUse (each {rating, comment}) "
		"and generalSuggestion (string)\n"
		"- mistakes: array of {type (grammar|spelling|punctuation|vocabulary|style), subType (optional), "
		"original (exact phrase from the response), corrected, explanation}\n"
		"No markdown, no text after the JSON object."
	)


def build_task_context(task_category: str, item: Dict[str, Any]) -> str:
	if task_category == INTEGRATED_WRITING:
		return f"Reading: {item.get('reading_passage') or ''}\nLecture: {item.get('lecture_script') or ''}"
	return (
		f"Professor's Prompt: {item.get('professor_prompt') or ''}\n"
		f"{item.get('student1_author') or 'Student 1'}'s Post: {item.get('student1_post') or ''}\n"
		f"{item.get('student2_author') or 'Student 2'}'s Post: {item.get('student2_post') or ''}"
	)


def build_grading_prompt(context: GradingContext) -> str:
	content = context.content
	if len(content) > MAX_RESPONSE_CHARS:
		content = content[:MAX_RESPONSE_CHARS]
	return (
		f"## TASK TYPE ##\n{_task_name(context.task_category)}\n\n"
		f"## PROMPT ##\n{build_task_context(context.task_category, context.item)}\n\n"
		f"## USER RESPONSE ##\n{content}"
	)


class GeminiGradingOracle:
	"""Grades through Gemini, with the OpenRouter fallback when configured."""

	def __init__(self, settings: Settings, *, model: Optional[str] = None) -> None:
		self._settings = settings
		self._model = model

	async def grade(self, context: GradingContext) -> str:
		try:
			client = GeminiClient(self._settings, model=self._model, timeout=self._settings.grading_timeout_seconds)
		except ValueError as exc:
			raise GradingOracleError(str(exc)) from exc
		try:
			return await asyncio.wait_for(
				client.generate(build_grading_prompt(context), system=build_system_prompt(), temperature=0.5, json_mode=True),
				timeout=self._settings.grading_timeout_seconds,
			)
		except asyncio.TimeoutError as exc:
			raise GradingOracleError(f"grading timed out after {self._settings.grading_timeout_seconds}s") from exc
		except (httpx.HTTPError, RuntimeError) as exc:
			raise GradingOracleError(str(exc)) from exc
		finally:
			await client.aclose()
