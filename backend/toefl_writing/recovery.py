from __future__ import annotations
import logging

from starlette.concurrency import run_in_threadpool

from .pipeline import PipelineController
from .worker import grading_key

logger = logging.getLogger(__name__)


async def requeue_pending(controller: PipelineController) -> int:
	"""Dispatch submissions that were accepted but never finished grading.

	These are left behind when the process stops between intake and the
	worker's claim, or while an attempt was running. Run at startup, before
	anything else is dispatched. Submissions that already failed or completed
	are not touched.
	"""
	interrupted = await run_in_threadpool(controller.store.requeue_interrupted)
	if interrupted:
		logger.warning("Returned %s interrupted submission(s) to the queue", interrupted)
	ids = await run_in_threadpool(controller.store.queued_submission_ids)
	started = 0
	for submission_id in ids:
		if controller.dispatcher.dispatch(grading_key(submission_id), controller.worker.run(submission_id)) is not None:
			started += 1
	if started:
		logger.info("Re-dispatched %s queued submission(s)", started)
	return started
