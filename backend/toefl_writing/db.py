from __future__ import annotations
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base


DEFAULT_DATABASE_URL = "sqlite:///./app.db"

Base = declarative_base()


def make_engine(database_url: str | None) -> Engine:
	url = database_url or DEFAULT_DATABASE_URL
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	return create_engine(url, connect_args=connect_args, future=True, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True, expire_on_commit=False)


def get_db(request: Request) -> Iterator[Session]:
	db = request.app.state.session_factory()
	try:
		yield db
	finally:
		db.close()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(engine: Engine) -> None:
	inspector = inspect(engine)
	tables = set(inspector.get_table_names())
	if "questions" in tables:
		cols = {c["name"] for c in inspector.get_columns("questions")}
		with engine.begin() as conn:
			if "audio_url" not in cols:
				conn.exec_driver_sql("ALTER TABLE questions ADD COLUMN audio_url VARCHAR(512)")
	if "submissions" in tables:
		cols = {c["name"] for c in inspector.get_columns("submissions")}
		with engine.begin() as conn:
			if "processing_error" not in cols:
				conn.exec_driver_sql("ALTER TABLE submissions ADD COLUMN processing_error TEXT")
	if "mistakes" in tables:
		cols = {c["name"] for c in inspector.get_columns("mistakes")}
		with engine.begin() as conn:
			if "sub_type" not in cols:
				conn.exec_driver_sql("ALTER TABLE mistakes ADD COLUMN sub_type VARCHAR(64)")
