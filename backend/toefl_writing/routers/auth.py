from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies import get_settings
from ..models import UserAccount
from ..settings import Settings

router = APIRouter(prefix="/auth", tags=["auth"])

bearer_scheme = HTTPBearer(auto_error=False)


class User(BaseModel):
	id: int
	username: str


def _resolve_expiry(settings: Settings, expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	return datetime.now(timezone.utc) + delta


def create_access_token(settings: Settings, user_id: int, expires_delta: Optional[timedelta] = None) -> str:
	"""Sign a bearer token for ``user_id``; tokens are normally minted by the account service."""
	to_encode = {"sub": str(user_id), "exp": _resolve_expiry(settings, expires_delta)}
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def get_current_user(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
	db: Session = Depends(get_db),
	settings: Settings = Depends(get_settings),
) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	if credentials is None:
		raise credentials_exception
	try:
		payload = jwt.decode(credentials.credentials, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		subject: str | None = payload.get("sub")
		if subject is None:
			raise credentials_exception
		user_id = int(subject)
	except (JWTError, ValueError):
		raise credentials_exception
	row = db.get(UserAccount, user_id)
	if row is None:
		raise credentials_exception
	return User(id=row.id, username=row.username)


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user
