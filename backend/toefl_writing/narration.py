from __future__ import annotations
import logging
from typing import Optional, Protocol

import httpx
from starlette.concurrency import run_in_threadpool
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_fixed

from .errors import NarrationError
from .media_store import MediaStore
from .models import INTEGRATED_WRITING
from .repository import SubmissionStore
from .settings import Settings

logger = logging.getLogger(__name__)


class NarrationOracle(Protocol):
	async def synthesize(self, script: str) -> bytes:
		...


class CloudflareNarrationOracle:
	"""Text-to-speech through Cloudflare Workers AI (Deepgram Aura)."""

	def __init__(self, settings: Settings) -> None:
		if not settings.narration_configured:
			raise ValueError("CLOUDFLARE_ACCOUNT_ID / CLOUDFLARE_API_TOKEN are not configured")
		self._url = (
			f"https://api.cloudflare.com/client/v4/accounts/{settings.cloudflare_account_id}"
			f"/ai/run/{settings.narration_model}"
		)
		self._headers = {
			"Authorization": f"Bearer {settings.cloudflare_api_token}",
			"Content-Type": "application/json",
		}
		self._timeout = settings.narration_timeout_seconds

	async def synthesize(self, script: str) -> bytes:
		try:
			async with httpx.AsyncClient(timeout=self._timeout) as client:
				r = await client.post(self._url, headers=self._headers, json={"text": script})
				r.raise_for_status()
				return r.content
		except httpx.HTTPError as exc:
			raise NarrationError(f"text-to-speech request failed: {exc}") from exc


class NarrationJob:
	"""Generates lecture audio for an item at most once.

	Safe to trigger repeatedly: an item that already has audio, is not an
	integrated writing task, or has no script is left alone without calling
	any external service. Failures are retried a fixed number of times and
	then dropped; nothing is recorded, so a later trigger simply tries again.
	"""

	def __init__(
		self,
		store: SubmissionStore,
		oracle: Optional[NarrationOracle],
		media: MediaStore,
		*,
		max_attempts: int = 3,
		retry_delay: float = 3.0,
	) -> None:
		self.store = store
		self.oracle = oracle
		self.media = media
		self.max_attempts = max_attempts
		self.retry_delay = retry_delay

	async def run(self, item_id: int) -> Optional[str]:
		try:
			source = await run_in_threadpool(self.store.narration_source, item_id)
		except Exception:
			logger.exception("Narration for item #%s could not read the item", item_id)
			return None
		if source is None or source.audio_url:
			return source.audio_url if source else None
		# Only integrated tasks have a lecture to read out
		if source.task_type != INTEGRATED_WRITING or not (source.script or "").strip():
			return None
		if self.oracle is None:
			logger.info("Narration for item #%s skipped: text-to-speech is not configured", item_id)
			return None

		try:
			async for attempt in AsyncRetrying(
				stop=stop_after_attempt(self.max_attempts),
				wait=wait_fixed(self.retry_delay),
				before_sleep=self._log_retry(item_id),
			):
				with attempt:
					url = await self._attempt(item_id, source.script)
		except RetryError as exc:
			logger.error(
				"Narration for item #%s abandoned after %s attempts: %s",
				item_id,
				self.max_attempts,
				exc.last_attempt.exception(),
			)
			return None
		logger.info("Narration for item #%s saved: %s", item_id, url)
		return url

	async def _attempt(self, item_id: int, script: str) -> str:
		audio = await self.oracle.synthesize(script)
		if not audio:
			raise NarrationError("text-to-speech returned an empty audio buffer")
		url = await self.media.upload(audio, name=f"question-{item_id}")
		stored = await run_in_threadpool(self.store.set_audio_url, item_id, url)
		return stored or url

	def _log_retry(self, item_id: int):
		def _before_sleep(retry_state) -> None:
			logger.warning(
				"Narration attempt %s/%s for item #%s failed: %s",
				retry_state.attempt_number,
				self.max_attempts,
				item_id,
				retry_state.outcome.exception(),
			)
		return _before_sleep


def build_narration_oracle(settings: Settings) -> Optional[NarrationOracle]:
	if not settings.narration_configured:
		return None
	return CloudflareNarrationOracle(settings)
