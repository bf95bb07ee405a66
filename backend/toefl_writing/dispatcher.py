from __future__ import annotations
import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional, Set

logger = logging.getLogger(__name__)


class TaskDispatcher:
	"""Owns the background tasks started by request handlers.

	Tasks are keyed; a key can be held by at most one task (or one pending
	reservation) at a time, which is what keeps two grading attempts for the
	same submission from running together in this process.
	"""

	def __init__(self) -> None:
		self._tasks: Dict[str, asyncio.Task] = {}
		self._reserved: Set[str] = set()

	def in_flight(self, key: str) -> bool:
		return key in self._reserved or key in self._tasks

	def reserve(self, key: str) -> bool:
		if self.in_flight(key):
			return False
		self._reserved.add(key)
		return True

	def release(self, key: str) -> None:
		self._reserved.discard(key)

	def start(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
		"""Run ``coro`` under a key previously taken with ``reserve``."""
		self._reserved.discard(key)
		task = asyncio.create_task(coro, name=key)
		self._tasks[key] = task
		task.add_done_callback(lambda t: self._finished(key, t))
		return task

	def dispatch(self, key: str, coro: Coroutine[Any, Any, Any]) -> Optional[asyncio.Task]:
		if not self.reserve(key):
			coro.close()
			logger.info("Task %s is already running; not starting another", key)
			return None
		return self.start(key, coro)

	def _finished(self, key: str, task: asyncio.Task) -> None:
		if self._tasks.get(key) is task:
			del self._tasks[key]
		if task.cancelled():
			logger.warning("Background task %s was cancelled", key)
			return
		exc = task.exception()
		if exc is not None:
			logger.error("Background task %s crashed", key, exc_info=(type(exc), exc, exc.__traceback__))

	async def drain(self) -> None:
		"""Wait until no task is running, including tasks started meanwhile."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
			# let done-callbacks run
			await asyncio.sleep(0)

	async def shutdown(self) -> None:
		tasks = list(self._tasks.values())
		for task in tasks:
			task.cancel()
		await asyncio.gather(*tasks, return_exceptions=True)
