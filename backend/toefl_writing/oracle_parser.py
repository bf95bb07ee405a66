"""
Grading response parser.

The grading model is asked for a single JSON object but routinely wraps it in
reasoning blocks, markdown fences or prose. Everything brittle about pulling
that object out and checking its shape lives here, so the worker only ever
sees a ``ParsedGrading`` or a ``ParseFailure``.
"""

from __future__ import annotations
import json
import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .models import MISTAKE_TYPES


MIN_SCORE = 0
MAX_SCORE = 30

_THINKING_BLOCK = re.compile(r"<thinking>[\s\S]*?</thinking>", re.IGNORECASE)
_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class MistakePayload(BaseModel):
	type: str
	subType: Optional[str] = None
	original: str
	corrected: str
	explanation: str = ""


class GradingPayload(BaseModel):
	# Strict: "24", 24.0 and True are rejected rather than coerced
	overallScore: Annotated[int, Field(strict=True, ge=MIN_SCORE, le=MAX_SCORE)]
	feedback: Dict[str, Any]
	mistakes: List[MistakePayload] = Field(default_factory=list)


@dataclass(frozen=True)
class ParsedMistake:
	type: str
	sub_type: Optional[str]
	original: str
	corrected: str
	explanation: str


@dataclass(frozen=True)
class ParsedGrading:
	score: int
	feedback: Dict[str, Any]
	mistakes: List[ParsedMistake] = field(default_factory=list)


@dataclass(frozen=True)
class ParseFailure:
	reason: str


ParseResult = Union[ParsedGrading, ParseFailure]


def normalize_mistake_type(value: str) -> str:
	kind = str(value or "").strip().lower()
	return kind if kind in MISTAKE_TYPES else "style"


def _candidates(text: str) -> List[str]:
	stripped = _THINKING_BLOCK.sub("", text).strip()
	out = [stripped]
	for block in _CODE_BLOCK.findall(stripped):
		out.append(block)
	first = stripped.find("{")
	last = stripped.rfind("}")
	if first != -1 and last > first:
		out.append(stripped[first : last + 1])
	return out


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
	"""Return the first JSON object found in ``text``, or None."""
	for candidate in _candidates(text or ""):
		try:
			data = json.loads(candidate)
		except ValueError:
			continue
		if isinstance(data, dict):
			return data
	return None


def parse_grading_response(text: str) -> ParseResult:
	data = extract_json_object(text)
	if data is None:
		return ParseFailure("response did not contain a JSON object")
	try:
		payload = GradingPayload.model_validate(data)
	except ValidationError as exc:
		return ParseFailure(f"response JSON has the wrong shape: {exc.errors(include_url=False)}")
	mistakes = [
		ParsedMistake(
			type=normalize_mistake_type(m.type),
			sub_type=(m.subType or "").strip() or None,
			original=m.original,
			corrected=m.corrected,
			explanation=m.explanation,
		)
		for m in payload.mistakes
	]
	return ParsedGrading(score=payload.overallScore, feedback=payload.feedback, mistakes=mistakes)
