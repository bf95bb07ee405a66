from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from ..dependencies import get_controller
from ..pipeline import PipelineController
from .auth import User, get_current_user

router = APIRouter(prefix="/drafts", tags=["drafts"])


class DraftRequest(BaseModel):
	content: str = ""


@router.put("/{item_id}")
async def save_draft(
	item_id: int,
	req: DraftRequest,
	user: User = Depends(get_current_user),
	controller: PipelineController = Depends(get_controller),
):
	saved = await run_in_threadpool(controller.store.save_draft, user.id, item_id, req.content)
	if not saved:
		raise HTTPException(status_code=404, detail="Question not found.")
	return {"ok": True}
