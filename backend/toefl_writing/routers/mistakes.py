from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from ..dependencies import get_controller
from ..models import REVIEW_STATUSES
from ..pipeline import PipelineController
from .auth import User, get_current_user

router = APIRouter(prefix="/mistakes", tags=["mistakes"])


class ReviewStatusRequest(BaseModel):
	status: str


@router.patch("/{mistake_id}")
async def set_review_status(
	mistake_id: int,
	req: ReviewStatusRequest,
	user: User = Depends(get_current_user),
	controller: PipelineController = Depends(get_controller),
):
	status = (req.status or "").strip().lower()
	if status not in REVIEW_STATUSES:
		raise HTTPException(status_code=400, detail=f"status must be one of {list(REVIEW_STATUSES)}")
	updated = await run_in_threadpool(controller.store.set_mistake_status, mistake_id, user.id, status)
	if not updated:
		raise HTTPException(status_code=404, detail="Mistake not found.")
	return {"id": mistake_id, "status": status}
