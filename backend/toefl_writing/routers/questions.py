from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool

from ..dependencies import get_controller
from ..pipeline import PipelineController
from .auth import User, get_current_user

router = APIRouter(prefix="/questions", tags=["questions"])


@router.get("/{item_id}")
async def get_question(item_id: int, controller: PipelineController = Depends(get_controller)):
	question = await run_in_threadpool(controller.store.get_question, item_id)
	if question is None:
		raise HTTPException(status_code=404, detail="Question not found.")
	# Lecture audio is produced in the background on first read
	if not question["audio_url"]:
		controller.request_narration(item_id)
	return question


@router.post("/{item_id}/audio")
async def generate_audio(
	item_id: int,
	user: User = Depends(get_current_user),
	controller: PipelineController = Depends(get_controller),
):
	url = await controller.narrate_now(item_id)
	if not url:
		raise HTTPException(status_code=404, detail="Question not found or audio unavailable.")
	return {"url": url}
