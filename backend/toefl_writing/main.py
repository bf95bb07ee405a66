from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from .achievements import catalog
from .db import Base, ensure_schema, make_engine, make_session_factory
from .grading_oracle import GradingOracle
from .media_store import LocalMediaStore, MediaStore
from .narration import NarrationOracle
from .pipeline import build_controller
from .recovery import requeue_pending
from .settings import Settings
from .routers import achievements, auth, drafts, health, mistakes, questions, submissions

logger = logging.getLogger(__name__)


def create_app(
	settings: Optional[Settings] = None,
	*,
	grading_oracle: Optional[GradingOracle] = None,
	narration_oracle: Optional[NarrationOracle] = None,
	media_store: Optional[MediaStore] = None,
) -> FastAPI:
	settings = settings or Settings()
	logging.basicConfig(level=settings.log_level.upper())
	logging.getLogger("httpx").setLevel(logging.WARNING)

	engine = make_engine(settings.database_url)
	session_factory = make_session_factory(engine)
	controller = build_controller(
		settings,
		session_factory,
		grading_oracle=grading_oracle,
		narration_oracle=narration_oracle,
		media_store=media_store,
	)

	app = FastAPI(title="TOEFL Writing Practice API")
	app.state.settings = settings
	app.state.engine = engine
	app.state.session_factory = session_factory
	app.state.controller = controller

	app.include_router(health.router)
	app.include_router(auth.router)
	app.include_router(submissions.router)
	app.include_router(drafts.router)
	app.include_router(mistakes.router)
	app.include_router(questions.router)
	app.include_router(achievements.router)

	# Narrated lectures are served from disk when no CDN is configured
	if isinstance(controller.narration.media, LocalMediaStore) and settings.media_base_url.startswith("/"):
		media = controller.narration.media
		app.mount(settings.media_base_url, StaticFiles(directory=Path(media.root), check_dir=False), name="media")

	@app.exception_handler(RequestValidationError)
	async def _malformed_request(request: Request, exc: RequestValidationError):
		return JSONResponse(status_code=400, content={"detail": "Request is missing required information or is malformed."})

	@app.on_event("startup")
	async def startup_event():
		# Initialize DB schema
		Base.metadata.create_all(bind=engine)
		# Apply lightweight dev migrations
		try:
			ensure_schema(engine)
		except Exception:
			logger.exception("Schema migration check failed")
		await run_in_threadpool(controller.store.seed_achievements, catalog())
		if settings.requeue_on_startup:
			await requeue_pending(controller)

	@app.on_event("shutdown")
	async def shutdown_event():
		await controller.dispatcher.shutdown()
		engine.dispose()

	return app


app = create_app()


if __name__ == "__main__":
	import uvicorn

	uvicorn.run("toefl_writing.main:app", host="127.0.0.1", port=8000, reload=True)
