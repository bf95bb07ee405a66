from __future__ import annotations
import hashlib
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Protocol

import httpx
from starlette.concurrency import run_in_threadpool

from .errors import MediaStoreError
from .settings import Settings


class MediaStore(Protocol):
	async def upload(self, data: bytes, *, name: str) -> str:
		"""Persist ``data`` and return a durable URL for it."""
		...


def cloudinary_signature(params: Dict[str, Any], api_secret: str) -> str:
	# Cloudinary signs the alphabetically sorted params joined as k=v&k=v, secret appended
	to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
	return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryMediaStore:
	"""Signed uploads to Cloudinary's REST upload endpoint.

	Audio is uploaded with resource_type "video", which is how Cloudinary
	classifies audio files.
	"""

	def __init__(self, settings: Settings, *, resource_type: str = "video") -> None:
		if not settings.cloudinary_configured:
			raise ValueError("Cloudinary is not configured")
		self._cloud_name = settings.cloudinary_cloud_name
		self._api_key = settings.cloudinary_api_key
		self._api_secret = settings.cloudinary_api_secret
		self._folder = settings.cloudinary_folder
		self._timeout = settings.upload_timeout_seconds
		self._url = f"https://api.cloudinary.com/v1_1/{self._cloud_name}/{resource_type}/upload"

	async def upload(self, data: bytes, *, name: str) -> str:
		params = {"folder": self._folder, "public_id": name, "timestamp": int(time.time())}
		form = {**{k: str(v) for k, v in params.items()}, "api_key": self._api_key, "signature": cloudinary_signature(params, self._api_secret)}
		try:
			async with httpx.AsyncClient(timeout=self._timeout) as client:
				r = await client.post(self._url, data=form, files={"file": (f"{name}.mp3", data, "audio/mpeg")})
				r.raise_for_status()
				url = r.json().get("secure_url")
		except (httpx.HTTPError, ValueError) as exc:
			raise MediaStoreError(f"Cloudinary upload failed: {exc}") from exc
		if not url:
			raise MediaStoreError("Cloudinary response did not include secure_url")
		return url


class LocalMediaStore:
	"""Writes files under ``media_root``; the app serves them at ``media_base_url``."""

	def __init__(self, root: str, base_url: str) -> None:
		self.root = Path(root)
		self.base_url = base_url.rstrip("/")

	def _write(self, filename: str, data: bytes) -> None:
		self.root.mkdir(parents=True, exist_ok=True)
		(self.root / filename).write_bytes(data)

	async def upload(self, data: bytes, *, name: str) -> str:
		filename = f"{name}-{uuid.uuid4().hex[:8]}.mp3"
		try:
			await run_in_threadpool(self._write, filename, data)
		except OSError as exc:
			raise MediaStoreError(f"could not write {filename}: {exc}") from exc
		return f"{self.base_url}/{filename}"


def build_media_store(settings: Settings) -> MediaStore:
	if settings.cloudinary_configured:
		return CloudinaryMediaStore(settings)
	return LocalMediaStore(settings.media_root, settings.media_base_url)
