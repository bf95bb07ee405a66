from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from ..dependencies import get_controller
from ..pipeline import PipelineController

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(controller: PipelineController = Depends(get_controller)):
	try:
		ok = await run_in_threadpool(controller.store.ping)
	except Exception:
		ok = False
	return {"status": "ok", "database": "connected" if ok else "disconnected"}
