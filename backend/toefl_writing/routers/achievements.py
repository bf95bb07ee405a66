from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from ..achievements import catalog
from ..dependencies import get_controller
from ..pipeline import PipelineController
from .auth import User, get_current_user

router = APIRouter(prefix="/achievements", tags=["achievements"])


@router.get("")
async def list_achievements(
	user: User = Depends(get_current_user),
	controller: PipelineController = Depends(get_controller),
):
	"""Every achievement, flagged with whether the caller has unlocked it."""
	unlocked = set(await run_in_threadpool(controller.store.granted_tags, user.id))
	return [{**entry, "unlocked": entry["tag"] in unlocked} for entry in catalog()]
