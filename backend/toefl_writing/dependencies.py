from __future__ import annotations
from fastapi import Request

from .pipeline import PipelineController
from .settings import Settings


def get_settings(request: Request) -> Settings:
	return request.app.state.settings


def get_controller(request: Request) -> PipelineController:
	return request.app.state.controller
