from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from ..dependencies import get_controller
from ..errors import RescoreConflict, SubmissionInvalid, SubmissionNotFound
from ..pipeline import PipelineController
from .auth import User, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/submissions", tags=["submissions"])


class SubmitRequest(BaseModel):
	# Loosely typed on purpose; the pipeline validates and answers 400
	item_id: Optional[int] = None
	task_category: Optional[str] = None
	text: Optional[str] = None
	word_count: Optional[int] = None


class SubmitResponse(BaseModel):
	submission_id: str
	status: str = "processing"


class StatusResponse(BaseModel):
	processing_status: str
	processing_error: Optional[str] = None
	score: Optional[int] = None


class RescoreResponse(BaseModel):
	status: str = "processing"


@router.post("", response_model=SubmitResponse, status_code=201)
async def submit(
	req: SubmitRequest,
	user: User = Depends(get_current_user),
	controller: PipelineController = Depends(get_controller),
):
	try:
		submission_id = await controller.submit(
			user_id=user.id,
			item_id=req.item_id,
			task_category=req.task_category,
			text=req.text,
			word_count=req.word_count,
		)
	except SubmissionInvalid as e:
		raise HTTPException(status_code=400, detail=str(e))
	except SQLAlchemyError:
		logger.exception("Storing a submission for user #%s failed", user.id)
		raise HTTPException(status_code=500, detail="Internal server error.")
	return SubmitResponse(submission_id=submission_id)


@router.get("/{submission_id}/status", response_model=StatusResponse)
async def status(
	submission_id: str,
	user: User = Depends(get_current_user),
	controller: PipelineController = Depends(get_controller),
):
	try:
		return StatusResponse(**await controller.get_status(submission_id, user.id))
	except SubmissionNotFound:
		raise HTTPException(status_code=404, detail="Submission not found.")


@router.post("/{submission_id}/rescore", response_model=RescoreResponse, status_code=202)
async def rescore(
	submission_id: str,
	user: User = Depends(get_current_user),
	controller: PipelineController = Depends(get_controller),
):
	try:
		await controller.rescore(submission_id, user.id)
	except SubmissionNotFound:
		raise HTTPException(status_code=404, detail="Submission not found.")
	except RescoreConflict as e:
		raise HTTPException(status_code=409, detail=str(e))
	return RescoreResponse()
