from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .settings import Settings

logger = logging.getLogger(__name__)

AI_STUDIO_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
VERTEX_URL = (
	"https://{region}-aiplatform.googleapis.com/v1/projects/{project}"
	"/locations/{region}/publishers/google/models/{model}:generateContent"
)


def gemini_endpoint(settings: Settings, model: str) -> Tuple[str, bool]:
	"""Return the generateContent URL and whether the API key travels in the query string."""
	if settings.gemini_provider == "vertex":
		project = settings.vertex_project or "placeholder-project"
		return VERTEX_URL.format(region=settings.vertex_region, project=project, model=model), False
	return AI_STUDIO_URL.format(model=model), True


class GeminiClient:
	"""Single-turn text generation on Gemini, retried once on OpenRouter when configured."""

	def __init__(self, settings: Settings, *, base_url: Optional[str] = None, model: Optional[str] = None, timeout: float = 30) -> None:
		self.api_key = settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		url, self._key_in_query = gemini_endpoint(settings, self.model)
		self.base_url = base_url or url
		self._settings = settings
		self._client = httpx.AsyncClient(timeout=timeout)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		if settings.openrouter_api_key:
			self._fallback_client = httpx.AsyncClient(timeout=timeout)

	async def generate(
		self,
		prompt: str,
		*,
		system: Optional[str] = None,
		temperature: Optional[float] = None,
		json_mode: bool = False,
	) -> str:
		try:
			return await self._gemini(prompt, system, temperature, json_mode)
		except (httpx.HTTPError, RuntimeError) as primary:
			if self._fallback_client is None:
				raise
			logger.warning("Gemini call failed (%s); falling back to OpenRouter", primary)
			try:
				return await self._openrouter(prompt, system, temperature, json_mode)
			except (httpx.HTTPError, RuntimeError) as fallback:
				raise RuntimeError(f"Gemini call failed ({primary}); OpenRouter fallback also failed ({fallback})") from fallback

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _gemini(self, prompt: str, system: Optional[str], temperature: Optional[float], json_mode: bool) -> str:
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
		if system:
			payload["systemInstruction"] = {"parts": [{"text": system}]}
		config: Dict[str, Any] = {}
		if temperature is not None:
			config["temperature"] = temperature
		if json_mode:
			config["responseMimeType"] = "application/json"
		if config:
			payload["generationConfig"] = config
		if self._key_in_query:
			params, headers = {"key": self.api_key}, {}
		else:
			params, headers = {}, {"x-goog-api-key": self.api_key}
		r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
		r.raise_for_status()
		try:
			return r.json()["candidates"][0]["content"]["parts"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError) as exc:
			raise RuntimeError(f"Unexpected Gemini response: {r.text[:500]}") from exc

	async def _openrouter(self, prompt: str, system: Optional[str], temperature: Optional[float], json_mode: bool) -> str:
		s = self._settings
		headers = {
			"Authorization": f"Bearer {s.openrouter_api_key}",
			"Content-Type": "application/json",
			"HTTP-Referer": s.openrouter_referer,
			"X-Title": s.openrouter_title,
		}
		messages: List[Dict[str, str]] = []
		if system:
			messages.append({"role": "system", "content": system})
		messages.append({"role": "user", "content": prompt})
		payload: Dict[str, Any] = {"model": s.openrouter_model, "messages": messages}
		if temperature is not None:
			payload["temperature"] = temperature
		if json_mode:
			payload["response_format"] = {"type": "json_object"}
		r = await self._fallback_client.post(s.openrouter_base_url, headers=headers, json=payload)
		r.raise_for_status()
		try:
			return r.json()["choices"][0]["message"]["content"]
		except (ValueError, KeyError, IndexError, TypeError) as exc:
			raise RuntimeError(f"Unexpected OpenRouter response: {r.text[:500]}") from exc
